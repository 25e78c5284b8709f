"""
This module provides the :py:class:`Loader`, which turns a bag delivered as
a directory, an archive file, or a stream into a bag directory on local disk
and hands it out as a :py:class:`~wormbag.access.bag.Bag`.

A Loader can also fill in a bag's holes: payload listed in fetch.txt can be
supplied with :py:meth:`Loader.resolve_ref`; when the bag is then loaded,
fetch.txt and the tag manifests are brought up to date.  No other digest
verification happens here; that is left to the Bag.
"""
import os, errno, logging, shutil, tempfile
from collections import OrderedDict

from bagit import BagValidationError, ChecksumMismatch

from .constants import (REF_FILE, MANIF_FILE, DATA_PATH, manifest_name,
                        tagmanifest_name)
from .codec import format_fetch_line, format_manifest_line
from .digest import DigestWriter, TagFileWriter, file_checksums
from .archive import (check_format, strip_suffix, archive_format, sniff_format,
                      inflate)
from .access.bag import Bag
from .access.exceptions import BagError, ConfigurationError, PathConflictError

LOGGER = logging.getLogger(__name__)

class Loader(object):
    """
    a materializer of a bag from a directory, archive file, or stream.

    When given an archive file, the Loader inflates it into a sibling
    directory named for the file with its suffix stripped (and deletes the
    archive) or, if a parent directory is given, into that parent (leaving
    the archive in place).  A stream is always inflated into a directory:
    the given parent or else a new temporary one.
    """

    def __init__(self, source, parent=None, format=None):
        """
        prepare a bag for loading

        :param source:      a bag directory, an archive file (ending in
                            .zip, .tgz, or .tar.gz), or a readable binary
                            stream containing an archive
        :param str parent:  the directory to inflate an archive or stream
                            into
        :param str format:  the archive format of a stream source ("zip" or
                            "tgz"); required when source is a stream.
        :raises OSError:    if the source path does not exist
        :raises BagError:   if a source file is not a recognized archive or
                            its content does not match its suffix
        :raises ConfigurationError:  if a stream's format is missing or
                            unsupported
        """
        if source is None:
            raise ValueError("Loader: bag source not provided")
        self._refs = None
        self._additions = OrderedDict()
        self._dirty = False

        if isinstance(source, str):
            if os.path.isdir(source):
                self._base = os.path.abspath(source).rstrip(os.sep)
            elif os.path.isfile(source):
                self._base = self._from_file(source, parent)
            else:
                raise OSError(errno.ENOENT, "Missing or nonexistent bag",
                              source)
        else:
            if not format:
                raise ConfigurationError("A format is required to load a bag "
                                         "from a stream")
            self._base = self._from_stream(source, parent, format)

    def _from_file(self, path, parent):
        path = os.path.abspath(path)
        stem, fmt = strip_suffix(os.path.basename(path))
        if not fmt:
            raise BagError("Not a recognized bag archive: " + path)
        if archive_format(path) != fmt:
            raise BagError("Archive content does not match its suffix: " +
                           path)
        bagdir = inflate(path, fmt, parent or os.path.dirname(path), stem)
        if not parent:
            os.remove(path)
        return bagdir

    def _from_stream(self, stream, parent, format):
        check_format(format)
        with tempfile.TemporaryFile() as spool:
            shutil.copyfileobj(stream, spool)
            spool.seek(0)
            if sniff_format(spool) != format:
                raise BagError("Stream content is not a {0} archive"
                               .format(format))
            if not parent:
                parent = tempfile.mkdtemp(prefix="bagparent")
            return inflate(spool, format, parent)

    @property
    def bag_dir(self):
        """
        the directory holding the bag's contents
        """
        return self._base

    def _bagfile(self, relpath):
        return os.path.join(self._base, *relpath.split('/'))

    def _pending(self):
        if self._refs is None:
            self._refs = Bag(self._base).payload_refs()
        return self._refs

    def payload_refs(self):
        """
        return the payload references (holes) not yet resolved as an
        OrderedDict mapping bag-relative paths to FetchEntry (size, uri)
        tuples
        """
        return OrderedDict(self._pending())

    def resolve_ref(self, relpath, source):
        """
        fill a hole in the bag with the given content.  The content is
        checked against any checksums the bag's manifests record for the
        path; if a manifest has no entry for it, one is added when the bag
        is loaded.

        :param str relpath:  the bag-relative path of the hole as given in
                             fetch.txt (i.e. starting with "data/")
        :param source:       the path to a local file or a readable binary
                             stream providing the content
        :raises BagError:    if the path is not an unresolved reference
        :raises PathConflictError:   if a file already exists at the path
        :raises BagValidationError:  if the content does not match its
                             recorded checksums; the content is discarded.
        """
        refs = self._pending()
        if relpath not in refs:
            raise BagError("Unknown payload reference: " + relpath)
        if not relpath.startswith(DATA_PATH) or ".." in relpath.split("/"):
            raise BagError("Payload reference outside of payload directory: " +
                           relpath)
        path = self._bagfile(relpath)
        if os.path.exists(path):
            raise PathConflictError(relpath)

        bag = Bag(self._base)
        algs = bag.cs_algorithms()
        expected = OrderedDict((alg, bag.payload_manifest(alg).get(relpath))
                               for alg in algs)
        if not os.path.isdir(os.path.dirname(path)):
            os.makedirs(os.path.dirname(path))

        out = DigestWriter(open(path, 'xb'), relpath, algs)
        try:
            if isinstance(source, str):
                with open(source, 'rb') as fd:
                    shutil.copyfileobj(fd, out)
            else:
                shutil.copyfileobj(source, out)
        except Exception:
            out.discard()
            os.remove(path)
            raise
        out.close()

        mismatches = [ChecksumMismatch(relpath, alg, expected[alg],
                                       out.checksums[alg])
                      for alg in algs
                      if expected[alg] and expected[alg] != out.checksums[alg]]
        if mismatches:
            os.remove(path)
            LOGGER.error("Content supplied for %s does not match its "
                         "manifest checksums", relpath)
            raise BagValidationError("Checksum mismatch resolving payload "
                                     "reference: " + relpath, mismatches)
        if refs[relpath].size is not None and refs[relpath].size != out.size:
            LOGGER.warning("%s: resolved with %d bytes; fetch.txt declares %d",
                           relpath, out.size, refs[relpath].size)

        for alg in algs:
            if not expected[alg]:
                self._additions.setdefault(alg, []).append(
                    format_manifest_line(out.checksums[alg], relpath))
        del refs[relpath]
        self._dirty = True
        LOGGER.info("Resolved payload reference %s", relpath)

    def _rewrite(self, relpath, lines, encoding, eol):
        with TagFileWriter(open(self._bagfile(relpath), 'wb'),
                           encoding, eol) as out:
            for line in lines:
                out.write_line(line)

    def _finish(self):
        # bring fetch.txt and the manifests up to date with resolved holes
        if not self._dirty:
            return
        bag = Bag(self._base)
        enc = bag.tag_encoding()
        eol = bag.line_separator()
        algs = bag.cs_algorithms()

        # rewritten whole rather than appended so a BOM stays at the start
        for alg, lines in self._additions.items():
            manifest = bag.payload_manifest(alg)
            self._rewrite(manifest_name(alg),
                          [format_manifest_line(c, p)
                           for p, c in manifest.items()] + lines, enc, eol)

        if self._refs:
            self._rewrite(REF_FILE, [format_fetch_line(e.uri, e.size, p)
                                     for p, e in self._refs.items()], enc, eol)
        elif os.path.exists(self._bagfile(REF_FILE)):
            os.remove(self._bagfile(REF_FILE))

        # recompute the tag manifest entries of the files changed above
        recomputed = {}
        for alg in algs:
            tagman = bag.tag_manifest(alg)
            lines = []
            for path, checksum in tagman.items():
                if path == REF_FILE or path.startswith(MANIF_FILE):
                    if not os.path.isfile(self._bagfile(path)):
                        continue
                    if path not in recomputed:
                        recomputed[path] = file_checksums(self._bagfile(path),
                                                          algs)
                    checksum = recomputed[path][alg]
                lines.append(format_manifest_line(checksum, path))
            self._rewrite(tagmanifest_name(alg), lines, enc, eol)

        self._additions = OrderedDict()
        self._dirty = False
        LOGGER.debug("Updated fetch.txt and manifests for %s", self._base)

    def load(self):
        """
        return the loaded bag as an open Bag
        """
        self._finish()
        return Bag(self._base)

    def seal(self):
        """
        return the loaded bag as a sealed Bag: its contents are available
        only as streams.
        """
        self._finish()
        return Bag(self._base, sealed=True)

def load_bag(location):
    """
    load a bag from a directory or archive file and return it as an open Bag
    """
    return Loader(location).load()

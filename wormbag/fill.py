"""
This module provides the :py:class:`Filler`, the builder used to create a
new bag.  A Filler accepts payload and tag content, metadata, and
references to remote payload ("holes") while it is open; it then finalizes
the bag exactly once, writing the remaining manifests and the declaration,
and delivers the result as a directory, an archive file, or a stream.

Every byte added passes through a :py:class:`~wormbag.digest.DigestWriter`
so that manifests are filled in as content is written rather than computed
afterward.
"""
import os, io, codecs, errno, logging, shutil, tempfile
from collections import OrderedDict
from datetime import date
from urllib.parse import urlparse

from .constants import (BAGIT_VERSION, SOFTWARE_AGENT, ENCODING,
                        DEFAULT_ALGORITHMS, DEFAULT_FORMAT, DECL_FILE,
                        META_FILE, REF_FILE, MANIF_FILE, TAGMANIF_FILE,
                        DATA_DIR, DATA_PATH, VERSION_KEY, ENCODING_KEY,
                        BAGGING_DATE, BAG_SIZE, PAYLOAD_OXUM,
                        BAG_SOFTWARE_AGENT, AUTO_METADATA, EolRule,
                        line_separator, canonical_algorithm, manifest_name,
                        tagmanifest_name)
from .codec import format_fetch_line, scaled_size
from .digest import (DigestWriter, DigestReader, TagFileWriter, ManifestGroup,
                     canonical_algorithms)
from .archive import check_format, write_archive
from .access.exceptions import BagError, ConfigurationError, PathConflictError

LOGGER = logging.getLogger(__name__)

def _clean_path(relpath):
    # normalize a caller-provided relative path to "a/b/c" form
    parts = [p for p in (relpath or "").split("/") if p and p != "."]
    if not parts or ".." in parts:
        raise ConfigurationError("Invalid bag-relative path: " + str(relpath))
    return "/".join(parts)

def _is_generated(relpath):
    # True if the path names a file that only the Filler itself may write
    if relpath in (DECL_FILE, REF_FILE):
        return True
    return "/" not in relpath and relpath.endswith(".txt") and \
           (relpath.startswith(MANIF_FILE) or relpath.startswith(TAGMANIF_FILE))

class _Unclosed(object):
    # shields a caller's stream from being closed by a DigestReader
    def __init__(self, stream):
        self._stream = stream

    def read(self, size=-1):
        return self._stream.read(size)

    def close(self):
        pass

class _TransientPackage(io.BufferedReader):
    # a package stream that deletes its file once closed
    def __init__(self, path):
        super(_TransientPackage, self).__init__(io.FileIO(path, 'r'))
        self._pkgpath = path

    def close(self):
        if self.closed:
            return
        try:
            super(_TransientPackage, self).close()
        finally:
            if os.path.exists(self._pkgpath):
                os.remove(self._pkgpath)
                LOGGER.debug("Removed transient package %s", self._pkgpath)

class Filler(object):
    """
    a builder of a new bag.

    A Filler is open until it is finalized, which happens implicitly upon
    the first request for output (:py:meth:`to_directory`,
    :py:meth:`to_package`, or :py:meth:`to_stream`).  While open, content
    may be added at any path not already used; nothing is ever
    overwritten.  After finalizing, any attempt to add content raises a
    BagError.

    A Filler is not safe for use by multiple threads at once.
    """

    def __init__(self, base=None, algorithms=None, encoding=ENCODING,
                 eol=EolRule.SYSTEM, transient=None):
        """
        start a new bag

        :param str base:       the directory to build the bag in; it must be
                               empty or not exist.  If None, a temporary
                               directory is created and the bag is treated
                               as transient.
        :param algorithms:     the checksum algorithm names to use for every
                               manifest (default: ("sha512",))
        :param str encoding:   the character encoding for tag files
        :param str eol:        the EolRule value governing line termination
                               in all generated text files
        :param bool transient: if True, a package delivered via to_stream()
                               is deleted when that stream is closed; the
                               default is True only when base is None.
        :raises ConfigurationError:  if the algorithms, encoding, or eol
                               rule are not supported
        :raises PathConflictError:   if base already has content in it
        """
        self._algs = canonical_algorithms(algorithms or DEFAULT_ALGORITHMS)
        try:
            codecs.lookup(encoding)
        except LookupError:
            raise ConfigurationError("Unsupported tag file encoding: " +
                                     str(encoding))
        try:
            self._eol = line_separator(eol)
        except ValueError as ex:
            raise ConfigurationError(str(ex))
        self._encoding = encoding

        if base:
            base = os.path.abspath(base).rstrip(os.sep)
            if os.path.exists(base) and os.listdir(base):
                raise PathConflictError(base, "Bag directory is not empty: " +
                                        base)
            self._transient = bool(transient)
        else:
            base = tempfile.mkdtemp(prefix="bag")
            self._transient = transient is None or bool(transient)
        self._base = base
        if not os.path.exists(os.path.join(base, DATA_DIR)):
            os.makedirs(os.path.join(base, DATA_DIR))

        self._paths = set()
        self._writers = OrderedDict()
        self._streams = OrderedDict()
        self._autogen = list(AUTO_METADATA)
        self._built = False
        self._package = None

        # tag manifests record the digests of every other tag file,
        # including the payload manifests
        self._tagman = ManifestGroup(OrderedDict(
            (alg, TagFileWriter(self._open(tagmanifest_name(alg)),
                                encoding, self._eol))
            for alg in self._algs
        ))
        self._payman = ManifestGroup(OrderedDict(
            (alg, TagFileWriter(DigestWriter(self._open(manifest_name(alg)),
                                             manifest_name(alg), self._algs,
                                             self._tagman),
                                encoding, self._eol, record=True))
            for alg in self._algs
        ))
        LOGGER.debug("Started bag in %s using %s", base, ", ".join(self._algs))

    @property
    def base(self):
        """
        the directory the bag is being built in
        """
        return self._base

    @property
    def algorithms(self):
        return self._algs

    @property
    def is_finalized(self):
        return self._built

    def _check_open(self):
        if self._built:
            raise BagError("Bag has been finalized; no further content may "
                           "be added: " + self._base)

    def _claim(self, relpath):
        # reserve a bag-relative path, refusing any that is already in use
        if relpath in self._paths or \
           os.path.exists(os.path.join(self._base, *relpath.split("/"))):
            raise PathConflictError(relpath)
        self._paths.add(relpath)

    def _open(self, relpath):
        # create a new file in the bag, returning a binary sink
        self._claim(relpath)
        path = os.path.join(self._base, *relpath.split("/"))
        parent = os.path.dirname(path)
        if not os.path.isdir(parent):
            os.makedirs(parent)
        return open(path, 'xb')

    def _tag_path(self, relpath):
        relpath = _clean_path(relpath)
        if relpath == DATA_DIR or relpath.startswith(DATA_PATH):
            raise ConfigurationError("Tag files are not allowed in the payload "
                                     "directory: " + relpath)
        if _is_generated(relpath):
            raise PathConflictError(relpath, "Reserved tag file name: " +
                                    relpath)
        return relpath

    def _copy_in(self, sink, source):
        # copy a stream into a DigestWriter and commit it, or leave it
        # uncommitted if the copy fails
        try:
            shutil.copyfileobj(source, sink)
        except Exception:
            sink.discard()
            raise
        sink.close()
        return sink

    def payload(self, relpath, source=None):
        """
        add a payload file to the bag.

        :param str relpath:  the path relative to the payload directory
                             (i.e. without the "data/" prefix).  If source
                             is None, this is taken to be the path to a
                             local file that is added at the top of the
                             payload directory under its own name.
        :param source:       the path to a local file or a readable binary
                             stream providing the content.  A file's access
                             and modification times are carried over.
        :raises PathConflictError:  if the path is already in use
        """
        self._check_open()
        if source is None:
            source = relpath
            relpath = os.path.basename(source)
        bagpath = DATA_PATH + _clean_path(relpath)

        if isinstance(source, str):
            with open(source, 'rb') as fd:
                self._copy_in(DigestWriter(self._open(bagpath), bagpath,
                                           self._algs, self._payman), fd)
            stat = os.stat(source)
            os.utime(os.path.join(self._base, *bagpath.split("/")),
                     (stat.st_atime, stat.st_mtime))
        else:
            self._copy_in(DigestWriter(self._open(bagpath), bagpath,
                                       self._algs, self._payman), source)
        return self

    def payload_stream(self, relpath):
        """
        return a writable binary stream for a new payload file.  The
        payload is recorded in the manifests when the stream is closed (or
        when the bag is finalized, whichever comes first).

        :param str relpath:  the path relative to the payload directory
        :raises PathConflictError:  if the path is already in use
        """
        self._check_open()
        bagpath = DATA_PATH + _clean_path(relpath)
        out = DigestWriter(self._open(bagpath), bagpath, self._algs,
                           self._payman)
        self._streams[bagpath] = out
        return out

    def _check_uri(self, uri):
        if not uri or any(c.isspace() for c in uri) or \
           not urlparse(uri).scheme:
            raise ConfigurationError("Fetch URI is not absolute: " + str(uri))

    def _add_ref(self, bagpath, size, uri, checksums):
        self._claim(bagpath)
        self._writer(REF_FILE).write_line(format_fetch_line(uri, size, bagpath))
        self._payman.commit(bagpath, checksums, (size is None and -1) or size)
        LOGGER.debug("Added payload reference %s -> %s", bagpath, uri)

    def payload_ref(self, relpath, source, uri, size=None):
        """
        record a payload file that is not included in the bag but can be
        retrieved from a URI (a "hole").  The content is read only to
        compute its checksums; it is not stored.

        :param str relpath:  the path relative to the payload directory
        :param source:       the path to a local file or a readable binary
                             stream with the content
        :param str uri:      the absolute URI the content can be fetched from
        :param int size:     the size to record; if None, the number of
                             bytes read from source is used.
        :raises ConfigurationError:  if the URI is not absolute
        :raises PathConflictError:   if the path is already in use
        """
        self._check_open()
        self._check_uri(uri)
        bagpath = DATA_PATH + _clean_path(relpath)
        if bagpath in self._paths:
            raise PathConflictError(bagpath)

        if isinstance(source, str):
            source = open(source, 'rb')
        else:
            source = _Unclosed(source)
        with DigestReader(source, self._algs) as rdr:
            checksums = rdr.drain()
            if size is None:
                size = rdr.size
        self._add_ref(bagpath, size, uri, checksums)
        return self

    def payload_ref_unsafe(self, relpath, size, uri, checksums):
        """
        record a payload hole using a caller-supplied size and checksums
        that are trusted without verification.

        :param str relpath:     the path relative to the payload directory
        :param int size:        the content size (None or negative if unknown)
        :param str uri:         the absolute URI the content can be fetched
                                from
        :param dict checksums:  a map of algorithm names (in any common form)
                                to hex digests; it must cover every
                                algorithm this bag uses.
        :raises ConfigurationError:  if the URI is not absolute or a
                                checksum is missing
        """
        self._check_open()
        self._check_uri(uri)
        found = {}
        for alg, checksum in (checksums or {}).items():
            canon = canonical_algorithm(alg)
            if canon:
                found[canon] = checksum.lower()
        missing = [a for a in self._algs if not found.get(a)]
        if missing:
            raise ConfigurationError("Missing {0} checksum(s) for payload "
                                     "reference {1}".format(", ".join(missing),
                                                            relpath))
        bagpath = DATA_PATH + _clean_path(relpath)
        self._add_ref(bagpath, size, uri, found)
        return self

    def tag(self, relpath, source):
        """
        add a tag file to the bag.

        :param str relpath:  the bag-relative path; it may not be under the
                             payload directory or name a file the Filler
                             generates itself.
        :param source:       the path to a local file or a readable binary
                             stream providing the content
        :raises PathConflictError:   if the path is in use or reserved
        :raises ConfigurationError:  if the path is in the payload directory
        """
        self._check_open()
        relpath = self._tag_path(relpath)
        if relpath == META_FILE:
            raise PathConflictError(relpath, "Reserved tag file name: " +
                                    relpath)
        if isinstance(source, str):
            with open(source, 'rb') as fd:
                self._copy_in(DigestWriter(self._open(relpath), relpath,
                                           self._algs, self._tagman), fd)
        else:
            self._copy_in(DigestWriter(self._open(relpath), relpath,
                                       self._algs, self._tagman), source)
        return self

    def tag_stream(self, relpath):
        """
        return a writable binary stream for a new tag file.  The file is
        recorded in the tag manifests when the stream is closed (or when the
        bag is finalized).
        """
        self._check_open()
        relpath = self._tag_path(relpath)
        if relpath == META_FILE:
            raise PathConflictError(relpath, "Reserved tag file name: " +
                                    relpath)
        out = DigestWriter(self._open(relpath), relpath, self._algs,
                           self._tagman)
        self._streams[relpath] = out
        return out

    def _writer(self, relpath):
        # get-or-create the line writer for a generated text tag file
        writer = self._writers.get(relpath)
        if writer is None:
            out = DigestWriter(self._open(relpath), relpath, self._algs,
                               self._tagman)
            writer = TagFileWriter(out, self._encoding, self._eol)
            self._writers[relpath] = writer
        return writer

    def metadata(self, name, value):
        """
        add a metadata property to bag-info.txt.  A name may be given more
        than once; its values are kept in the order added.
        """
        return self.property(META_FILE, name, value)

    def property(self, relpath, name, value):
        """
        add a "Name: value" property to a property-formatted tag file,
        creating it on first use.  Long properties are folded.

        :param str relpath:  the bag-relative path to the tag file
        :param str name:     the property name
        :param str value:    the property value
        :raises ConfigurationError:  if the name is empty, starts with
                             whitespace, or contains a colon, or if the
                             name or value contains a line break
        :raises PathConflictError:   if the path names a file the Filler
                             generates itself or one already added as a
                             tag file
        """
        self._check_open()
        relpath = self._tag_path(relpath)
        value = str(value)
        if not name or name[0].isspace() or ":" in name:
            raise ConfigurationError("Invalid property name: " + repr(name))
        if any(c in name + value for c in "\r\n"):
            raise ConfigurationError("Line breaks are not allowed in property "
                                     + repr(name))
        self._writer(relpath).write_property(name, value)
        return self

    def auto_gen(self, names):
        """
        set which metadata properties are generated automatically when the
        bag is finalized.  Names other than Bagging-Date, Bag-Size,
        Payload-Oxum, and Bag-Software-Agent are ignored.  All four are
        generated by default.
        """
        names = set(names or [])
        self._autogen = [n for n in AUTO_METADATA if n in names]
        return self

    def no_auto_gen(self):
        """
        turn off the automatic generation of metadata
        """
        return self.auto_gen([])

    def manifest(self, alg=None):
        """
        return the payload manifest lines committed so far for a checksum
        algorithm (default: the bag's first algorithm)
        """
        if alg is None:
            alg = self._algs[0]
        canon = canonical_algorithm(alg)
        if canon not in self._algs:
            raise ConfigurationError("Algorithm not used by this bag: " +
                                     str(alg))
        return self._payman.lines(canon)

    def _generated_metadata(self, name):
        if name == BAGGING_DATE:
            return date.today().isoformat()
        if name == BAG_SIZE:
            return scaled_size(self._payman.size)
        if name == PAYLOAD_OXUM:
            return "{0}.{1}".format(self._payman.size, self._payman.count)
        if name == BAG_SOFTWARE_AGENT:
            return SOFTWARE_AGENT
        return None

    def _build(self):
        # finalize the bag; writers close in dependency order
        if self._built:
            return
        for out in self._streams.values():
            out.close()

        for name in self._autogen:
            self.metadata(name, self._generated_metadata(name))

        for writer in self._writers.values():
            writer.close()
        self._payman.close()

        decl = TagFileWriter(DigestWriter(self._open(DECL_FILE), DECL_FILE,
                                          self._algs, self._tagman),
                             ENCODING, self._eol)
        decl.write_line("{0}: {1}".format(VERSION_KEY, BAGIT_VERSION))
        decl.write_line("{0}: {1}".format(ENCODING_KEY, self._encoding))
        decl.close()

        self._tagman.close()
        self._built = True
        LOGGER.info("Finalized bag %s: %d payload file(s), %d bytes",
                    os.path.basename(self._base), self._payman.count,
                    self._payman.size)

    def _check_unpackaged(self):
        if self._package:
            raise OSError(errno.ENOENT,
                          "Bag has already been packaged and removed",
                          self._base)

    def to_directory(self):
        """
        finalize the bag and return the path to its directory
        """
        self._check_unpackaged()
        self._build()
        return self._base

    def _deflate(self, format, no_time):
        check_format(format)
        self._check_unpackaged()
        self._build()
        pkgfile = self._base + "." + format
        with open(pkgfile, 'wb') as out:
            write_archive(self._base, out, format, no_time)
        shutil.rmtree(self._base)
        self._package = pkgfile
        LOGGER.info("Packaged bag as %s", pkgfile)
        return pkgfile

    def to_package(self, format=DEFAULT_FORMAT, no_time=False):
        """
        finalize the bag and serialize it into an archive file next to the
        bag directory, which is then removed.  The Filler can deliver no
        further output afterward.

        :param str format:    the archive format, "zip" or "tgz"
        :param bool no_time:  if True, omit file times from the archive so
                              that equal content gives an equal package
        :return:  the path to the archive file
        :raises ConfigurationError:  if the format is not supported
        :raises OSError:  if the bag was already packaged
        """
        return self._deflate(format, no_time)

    def to_stream(self, format=DEFAULT_FORMAT, no_time=False):
        """
        finalize and package the bag (as with :py:meth:`to_package`) and
        return a readable binary stream of the archive.  If the bag is
        transient, the archive file is deleted when the stream is closed.
        """
        pkgfile = self._deflate(format, no_time)
        if self._transient:
            return _TransientPackage(pkgfile)
        return open(pkgfile, 'rb')

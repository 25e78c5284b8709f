"""
This module provides the read-only view of a bag stored as a directory on
local disk.  A :py:class:`Bag` reports on its completeness (every file
accounted for by the manifests, and vice versa) and its validity (every
checksum recomputed and matched), and gives access to its metadata,
manifests, and content.

Bags are normally not instantiated directly but obtained from a
:py:class:`~wormbag.load.Loader`.
"""
import os, io, codecs, threading, logging
from collections import OrderedDict

import fs.osfs

from ..constants import (DECL_FILE, META_FILE, REF_FILE, MANIF_FILE,
                         TAGMANIF_FILE, DATA_DIR, DATA_PATH, VERSION_KEY,
                         ENCODING, ENCODING_KEY, EolRule, canonical_algorithm,
                         manifest_name, tagmanifest_name)
from ..constants import (SUCCESS, FETCH_PRESENT, MISSING_DECLARATION,
                         MALFORMED_DECLARATION, UNSUPPORTED_ENCODING,
                         MISSING_PAYLOAD_DIR, MISSING_MANIFEST,
                         PAYLOAD_COUNT_MISMATCH, MISSING_PAYLOAD_FILE,
                         TAG_COUNT_MISMATCH, MISSING_TAG_FILE,
                         PAYLOAD_CHECKSUM_MISMATCH, TAG_CHECKSUM_MISMATCH,
                         MALFORMED_MANIFEST, status_labels)
from ..codec import read_manifest, read_fetch, read_properties
from ..digest import file_checksums
from .exceptions import BagAccessError, ConfigurationError

LOGGER = logging.getLogger(__name__)

class Bag(object):
    """
    a read-only view of a bag directory.

    A sealed bag does not disclose filesystem paths to its contents;
    content is then only available through the stream accessors
    (:py:meth:`payload_stream`, :py:meth:`tag_stream`).

    Metadata read from property files is cached per file on first access;
    the cache is safe for concurrent readers of the same instance.
    """

    def __init__(self, bagdir, sealed=False):
        """
        wrap a bag directory

        :param str bagdir:   the path to the bag's root directory
        :param bool sealed:  if True, path-returning accessors will raise a
                             BagAccessError
        """
        if not bagdir:
            raise ValueError("Bag: path to bag root directory not provided")
        self._dir = os.path.abspath(bagdir).rstrip(os.sep)
        self._sealed = bool(sealed)
        self._mdcache = {}
        self._mdlock = threading.Lock()

    def __str__(self):
        return "bag:" + self.name

    @property
    def name(self):
        """
        the name of the bag (i.e. the base name of its root directory)
        """
        return os.path.basename(self._dir)

    @property
    def path(self):
        """
        the bag's root directory
        :raises BagAccessError:  if the bag is sealed
        """
        if self._sealed:
            raise BagAccessError()
        return self._dir

    def is_sealed(self):
        return self._sealed

    def _bagfile(self, relpath):
        # resolve a bag-relative path, refusing to leave the bag
        path = os.path.normpath(os.path.join(self._dir, *relpath.split('/')))
        if path != self._dir and not path.startswith(self._dir + os.sep):
            raise ValueError("Path points outside of bag: " + relpath)
        return path

    def _datafile(self, relpath):
        return self._bagfile(DATA_PATH + relpath.lstrip('/'))

    def _exists(self, relpath):
        try:
            return os.path.isfile(self._bagfile(relpath))
        except ValueError:
            return False

    def _declaration(self):
        # returns the bagit.txt properties or None if the file is missing
        declfile = os.path.join(self._dir, DECL_FILE)
        if not os.path.isfile(declfile):
            return None
        with io.open(declfile, encoding="utf-8") as fd:
            return read_properties(fd)

    def bagit_version(self):
        """
        return the BagIt version declared in bagit.txt (or None if the bag
        lacks a declaration)
        """
        decl = self._declaration() or {}
        return (decl.get(VERSION_KEY) or [None])[0]

    def tag_encoding(self):
        """
        return the character encoding declared for the bag's tag files
        """
        decl = self._declaration() or {}
        return (decl.get(ENCODING_KEY) or [ENCODING])[0]

    def line_separator(self):
        """
        return the line separator used in the bag's declaration file
        """
        declfile = os.path.join(self._dir, DECL_FILE)
        with open(declfile, 'rb') as fd:
            first = fd.readline()
        return (first.endswith(b"\r\n") and "\r\n") or "\n"

    def eol_rule(self):
        """
        return the EolRule value that reproduces this bag's line termination
        """
        if self.line_separator() == "\r\n":
            return EolRule.WINDOWS
        return EolRule.UNIX

    def cs_algorithms(self):
        """
        return the list of checksum algorithms used by this bag, as
        determined by the payload manifest files present.
        """
        out = []
        for name in sorted(os.listdir(self._dir)):
            if name.startswith(MANIF_FILE) and name.endswith(".txt") and \
               os.path.isfile(os.path.join(self._dir, name)):
                alg = canonical_algorithm(name[len(MANIF_FILE):-len(".txt")])
                if alg and alg not in out:
                    out.append(alg)
        return out

    def _algorithm(self, alg):
        if alg is None:
            algs = self.cs_algorithms()
            if not algs:
                return None
            return algs[0]
        canon = canonical_algorithm(alg)
        if not canon:
            raise ConfigurationError("Unsupported checksum algorithm: "+alg)
        return canon

    def manifest(self, relpath):
        """
        return the contents of the manifest file at a bag-relative path as
        an OrderedDict mapping paths to checksums.  An empty map is returned
        if the file does not exist.
        """
        path = self._bagfile(relpath)
        if not os.path.isfile(path):
            return OrderedDict()
        with io.open(path, encoding=self.tag_encoding()) as fd:
            return read_manifest(fd, relpath)

    def payload_manifest(self, alg=None):
        """
        return the payload manifest for a checksum algorithm as an
        OrderedDict mapping bag-relative paths (starting with "data/") to
        checksums.

        :param str alg:  the algorithm name in any common form (e.g.
                         "SHA-512" or "sha512"); if None, the bag's first
                         algorithm is used.
        """
        alg = self._algorithm(alg)
        if not alg:
            return OrderedDict()
        return self.manifest(manifest_name(alg))

    def tag_manifest(self, alg=None):
        """
        return the tag manifest for a checksum algorithm as an OrderedDict
        mapping bag-relative paths to checksums.
        """
        alg = self._algorithm(alg)
        if not alg:
            return OrderedDict()
        return self.manifest(tagmanifest_name(alg))

    def payload_refs(self):
        """
        return the contents of fetch.txt as an OrderedDict mapping
        bag-relative payload paths to FetchEntry (size, uri) tuples.  The
        size is None when not known.
        """
        path = os.path.join(self._dir, REF_FILE)
        if not os.path.isfile(path):
            return OrderedDict()
        with io.open(path, encoding=self.tag_encoding()) as fd:
            return read_fetch(fd)

    def payload_file(self, relpath):
        """
        return the filesystem path to the payload file at a path relative to
        the payload directory, or None if there is no such file.

        :raises BagAccessError:  if the bag is sealed
        """
        if self._sealed:
            raise BagAccessError(relpath)
        path = self._datafile(relpath)
        return (os.path.isfile(path) and path) or None

    def payload_stream(self, relpath):
        """
        open the payload file at a path relative to the payload directory
        for reading, returning a binary file object.  This is available
        whether or not the bag is sealed.

        :raises FileNotFoundError:  if there is no such file
        """
        return open(self._datafile(relpath), 'rb')

    def tag_file(self, relpath):
        """
        return the filesystem path to the tag file at a bag-relative path,
        or None if there is no such file.

        :raises BagAccessError:  if the bag is sealed
        """
        if self._sealed:
            raise BagAccessError(relpath)
        path = self._bagfile(relpath)
        return (os.path.isfile(path) and path) or None

    def tag_stream(self, relpath):
        """
        open the tag file at a bag-relative path for reading, returning a
        binary file object.  This is available whether or not the bag is
        sealed.

        :raises FileNotFoundError:  if there is no such file
        """
        return open(self._bagfile(relpath), 'rb')

    def _properties(self, relpath):
        # get-or-compute the parsed contents of a property file
        with self._mdlock:
            props = self._mdcache.get(relpath)
            if props is None:
                props = OrderedDict()
                path = self._bagfile(relpath)
                if os.path.isfile(path):
                    with io.open(path, encoding=self.tag_encoding()) as fd:
                        props = read_properties(fd)
                self._mdcache[relpath] = props
            return props

    def property(self, relpath, name):
        """
        return the values of a property in a property (tag) file, in the
        order they appear.  An empty list is returned if the property (or
        the file) does not exist.

        :param str relpath:  the bag-relative path to the property file
        :param str name:     the property name
        """
        return list(self._properties(relpath).get(name, []))

    def property_names(self, relpath):
        """
        return the names of the properties defined in a property file, in
        the order they first appear
        """
        return list(self._properties(relpath).keys())

    def metadata(self, name):
        """
        return the values of a metadata property from bag-info.txt, in the
        order they appear.  An empty list is returned if it is not defined.
        """
        return self.property(META_FILE, name)

    def metadata_names(self):
        """
        return the names of the metadata properties defined in bag-info.txt
        """
        return self.property_names(META_FILE)

    def _file_count(self, dirfs, path="/"):
        # count the files below a directory, recursively
        return sum(1 for f in dirfs.walk.files(path))

    def _tag_file_count(self):
        # tag files are any top-level files other than the tag manifests,
        # plus every file found in top-level directories other than data/
        count = 0
        with fs.osfs.OSFS(self._dir) as bagfs:
            for info in bagfs.scandir("/"):
                if info.name.startswith(TAGMANIF_FILE) or info.name == DATA_DIR:
                    continue
                if info.is_dir:
                    count += self._file_count(bagfs, info.name)
                else:
                    count += 1
        return count

    def _readable_manifest(self, relpath):
        # the manifest's contents, or None if it cannot be decoded
        try:
            return self.manifest(relpath)
        except ValueError as ex:
            LOGGER.info("%s: unreadable manifest %s: %s", self, relpath,
                        str(ex))
            return None

    def completeness_status(self):
        """
        check whether the bag is complete and return a status code:
        SUCCESS (0) if it is; otherwise, a negative code identifying the
        first check that failed (see wormbag.constants).  Structural
        problems are reported via the code rather than by raising.
        """
        if os.path.exists(os.path.join(self._dir, REF_FILE)):
            return FETCH_PRESENT

        try:
            decl = self._declaration()
        except ValueError as ex:
            # includes UnicodeDecodeError
            LOGGER.info("%s: unreadable declaration: %s", self, str(ex))
            return MALFORMED_DECLARATION
        if decl is None:
            return MISSING_DECLARATION
        if not decl.get(VERSION_KEY) or not decl.get(ENCODING_KEY):
            return MALFORMED_DECLARATION
        try:
            codecs.lookup(decl[ENCODING_KEY][0])
        except LookupError:
            return UNSUPPORTED_ENCODING

        datadir = os.path.join(self._dir, DATA_DIR)
        if not os.path.isdir(datadir):
            return MISSING_PAYLOAD_DIR

        algs = self.cs_algorithms()
        if not algs:
            return MISSING_MANIFEST

        with fs.osfs.OSFS(datadir) as datafs:
            payload_count = self._file_count(datafs)
        tag_count = self._tag_file_count()

        for alg in algs:
            manifest = self._readable_manifest(manifest_name(alg))
            if manifest is None:
                return MALFORMED_MANIFEST
            if payload_count != len(manifest):
                LOGGER.info("%s: %d payload files found, %s manifest lists %d",
                            self, payload_count, alg, len(manifest))
                return PAYLOAD_COUNT_MISMATCH
            for path in manifest:
                if not path.startswith(DATA_PATH) or not self._exists(path):
                    LOGGER.info("%s: missing payload file: %s", self, path)
                    return MISSING_PAYLOAD_FILE

            tags = self._readable_manifest(tagmanifest_name(alg))
            if tags is None:
                return MALFORMED_MANIFEST
            if tag_count != len(tags):
                LOGGER.info("%s: %d tag files found, %s tag manifest lists %d",
                            self, tag_count, alg, len(tags))
                return TAG_COUNT_MISMATCH
            for path in tags:
                if not self._exists(path):
                    LOGGER.info("%s: missing tag file: %s", self, path)
                    return MISSING_TAG_FILE

        return SUCCESS

    def is_complete(self):
        return self.completeness_status() == SUCCESS

    def _entries(self, manifests):
        # merge per-algorithm manifests into path -> {alg: checksum}
        out = OrderedDict()
        for alg, manifest in manifests:
            for path, checksum in manifest.items():
                out.setdefault(path, OrderedDict())[alg] = checksum
        return out

    def _mismatch(self, entries, refs=None):
        # return the first path whose content does not match its checksums
        for path, expected in entries.items():
            if refs and path in refs:
                continue
            found = file_checksums(self._bagfile(path), list(expected.keys()))
            for alg, checksum in expected.items():
                if found[alg] != checksum:
                    LOGGER.warning("%s: %s checksum mismatch for %s: "
                                   "expected %s, found %s", self, alg, path,
                                   checksum, found[alg])
                    return path
        return None

    def validation_status(self):
        """
        check whether the bag is valid and return a status code:  SUCCESS
        (0) if it is; the completeness status code if the bag is not
        complete; otherwise PAYLOAD_CHECKSUM_MISMATCH or
        TAG_CHECKSUM_MISMATCH for the first file whose recomputed checksum
        does not match its manifest entry.
        """
        status = self.completeness_status()
        if status != SUCCESS:
            return status

        algs = self.cs_algorithms()
        refs = self.payload_refs()
        payloads = self._entries((a, self.payload_manifest(a)) for a in algs)
        if self._mismatch(payloads, refs):
            return PAYLOAD_CHECKSUM_MISMATCH

        tags = self._entries((a, self.tag_manifest(a)) for a in algs)
        if self._mismatch(tags):
            return TAG_CHECKSUM_MISMATCH

        return SUCCESS

    def is_valid(self):
        return self.validation_status() == SUCCESS

    @staticmethod
    def status_label(code):
        """
        return a short description of a completeness or validity status code
        """
        return status_labels.get(code, "unknown status: {0}".format(code))

"""
Stream decorators that compute checksums while bytes pass through them.

A :py:class:`DigestWriter` wraps a binary sink and feeds every written byte
to one running hash per checksum algorithm; when closed, it hands the
resulting hex digests to a *tail*--usually a :py:class:`ManifestGroup`--which
records them as manifest lines.  Tag files that must themselves be listed
in a tag manifest are written by a :py:class:`TagFileWriter` layered on top
of a DigestWriter, so that writers chain: payload stream -> payload
manifests -> tag manifests.

A :py:class:`DigestReader` is the input-side counterpart used to verify
content while it is read.
"""
import codecs, hashlib, logging
from collections import OrderedDict

from bagit import CHECKSUM_ALGOS, HASH_BLOCK_SIZE

from .constants import canonical_algorithm
from .codec import fold_property, format_manifest_line
from .access.exceptions import ConfigurationError

LOGGER = logging.getLogger(__name__)

def canonical_algorithms(algorithms):
    """
    return a tuple of canonical algorithm names for the given names,
    preserving order and dropping duplicates.

    :raises ConfigurationError:  if the set is empty or names an algorithm
                                 that is not supported
    """
    if isinstance(algorithms, str):
        algorithms = [algorithms]
    out = []
    for name in algorithms or []:
        alg = canonical_algorithm(name)
        if not alg or alg not in CHECKSUM_ALGOS:
            raise ConfigurationError("Unsupported checksum algorithm: " +
                                     str(name))
        if alg not in out:
            out.append(alg)
    if not out:
        raise ConfigurationError("At least one checksum algorithm is required")
    return tuple(out)

def hashers_for(algorithms):
    """
    return an OrderedDict mapping each canonical algorithm name to a fresh
    hashlib object.

    :raises ConfigurationError:  if the set is empty or contains an
                                 unsupported algorithm
    """
    return OrderedDict((alg, hashlib.new(alg))
                       for alg in canonical_algorithms(algorithms))

def file_checksums(path, algorithms):
    """
    return the hex digests of a file's contents for each of the given
    algorithms, reading the file only once.
    """
    LOGGER.debug("Computing %s checksums for %s", "/".join(algorithms), path)
    with DigestReader(open(path, 'rb'), algorithms) as rdr:
        return rdr.drain()

class DigestWriter(object):
    """
    an output stream decorator that forwards every byte to a sink while
    computing one digest per checksum algorithm.

    Closing the writer closes the sink, and then commits the digests by
    calling ``tail.commit(relpath, checksums, size)`` (if a tail was given).
    Closing is idempotent: the commit happens exactly once.
    """

    def __init__(self, sink, relpath, algorithms, tail=None):
        """
        wrap a binary sink

        :param sink:          a writable binary file-like object; it will be
                              closed when this writer is closed.
        :param str relpath:   the bag-relative path to record for the content
        :param algorithms:    the checksum algorithm names to compute
        :param tail:          an object with a commit(relpath, checksums, size)
                              method (e.g. a ManifestGroup) that records the
                              digests when this writer is closed.
        :raises ConfigurationError:  if the algorithms are not supported; the
                              sink is closed before raising.
        """
        try:
            self._hashers = hashers_for(algorithms)
        except ConfigurationError:
            sink.close()
            raise
        self._sink = sink
        self.relpath = relpath
        self._tail = tail
        self.size = 0
        self.checksums = None
        self._closed = False

    @property
    def closed(self):
        return self._closed

    @property
    def algorithms(self):
        if self.checksums is not None:
            return tuple(self.checksums.keys())
        return tuple(self._hashers.keys())

    def writable(self):
        return not self._closed

    def write(self, data):
        if self._closed:
            raise ValueError("I/O operation on closed stream: " + self.relpath)
        self._sink.write(data)
        for hasher in self._hashers.values():
            hasher.update(data)
        self.size += len(data)
        return len(data)

    def flush(self):
        if not self._closed:
            self._sink.flush()

    def close(self):
        """
        close the underlying sink and commit the computed digests to the
        tail.  Subsequent calls do nothing.
        """
        if self._closed:
            return
        self._closed = True
        self._sink.close()
        self.checksums = OrderedDict((alg, h.hexdigest())
                                     for alg, h in self._hashers.items())
        self._hashers = None
        if self._tail is not None:
            self._tail.commit(self.relpath, self.checksums, self.size)

    def discard(self):
        """
        close the underlying sink without committing anything to the tail.
        This is used when a copy fails part way through.
        """
        if self._closed:
            return
        self._closed = True
        self._hashers = None
        self._sink.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is not None:
            self.discard()
        else:
            self.close()

class DigestReader(object):
    """
    an input stream decorator that computes one digest per checksum
    algorithm over the bytes read through it.  The digests are only
    meaningful once the source has been consumed to its end.
    """

    def __init__(self, source, algorithms):
        try:
            self._hashers = hashers_for(algorithms)
        except ConfigurationError:
            source.close()
            raise
        self._source = source
        self.size = 0
        self._closed = False

    @property
    def closed(self):
        return self._closed

    def readable(self):
        return not self._closed

    def read(self, size=-1):
        data = self._source.read(size)
        if data:
            for hasher in self._hashers.values():
                hasher.update(data)
            self.size += len(data)
        return data

    def checksums(self):
        """
        return an OrderedDict of the hex digests of the bytes read so far
        """
        return OrderedDict((alg, h.hexdigest())
                           for alg, h in self._hashers.items())

    def drain(self, blocksize=HASH_BLOCK_SIZE):
        """
        read the remainder of the source and return the resulting checksums
        """
        while self.read(blocksize):
            pass
        return self.checksums()

    def close(self):
        if not self._closed:
            self._closed = True
            self._source.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

class TagFileWriter(object):
    """
    a writer of text lines into a tag file.  Lines are terminated with a
    fixed separator and encoded with an incremental encoder so that a
    byte-order mark, if the encoding has one, is written only at the start
    of the file.
    """

    def __init__(self, sink, encoding, eol="\n", record=False):
        """
        :param sink:          a binary sink, typically a DigestWriter
        :param str encoding:  the character encoding for the file
        :param str eol:       the line separator to append to each line
        :param bool record:   if True, keep a copy of every line written
        :raises ConfigurationError:  if the encoding is not known
        """
        try:
            self._encoder = codecs.getincrementalencoder(encoding)()
        except LookupError:
            sink.close()
            raise ConfigurationError("Unsupported tag file encoding: " +
                                     str(encoding))
        self._out = sink
        self.eol = eol
        self._lines = [] if record else None
        self._started = False
        self._closed = False

    @property
    def closed(self):
        return self._closed

    @property
    def lines(self):
        """
        the lines written so far (only kept if record=True was requested)
        """
        return list(self._lines or [])

    def _write(self, text):
        if self._closed:
            raise ValueError("I/O operation on closed tag file")
        self._out.write(self._encoder.encode(text))
        self._started = True

    def write_line(self, line):
        if self._lines is not None:
            self._lines.append(line)
        self._write(line + self.eol)

    def write_property(self, name, value):
        """
        write a "Name: value" property, folding it into continuation lines
        """
        for line in fold_property(name, value):
            self._write(line + self.eol)

    def close(self):
        if self._closed:
            return
        if self._started:
            tail = self._encoder.encode("", True)
            if tail:
                self._out.write(tail)
        self._closed = True
        self._out.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

class ManifestGroup(object):
    """
    the set of manifests--one per checksum algorithm--that record the
    digests committed by DigestWriters.  It keeps a running tally of the
    number of entries committed and the total bytes they represent.
    """

    def __init__(self, writers):
        """
        :param writers:  an OrderedDict mapping each algorithm name to the
                         TagFileWriter for its manifest file
        """
        self._writers = writers
        self.count = 0
        self.size = 0

    @property
    def algorithms(self):
        return tuple(self._writers.keys())

    def commit(self, relpath, checksums, size=-1):
        """
        append a manifest line for relpath to each manifest.

        :param str relpath:     the bag-relative path of the content
        :param dict checksums:  a mapping of algorithm name to hex digest; it
                                must include every algorithm in this group
        :param int size:        the number of bytes of content, or a negative
                                number if unknown
        :raises ConfigurationError:  if a checksum is missing for one of the
                                group's algorithms
        """
        missing = [alg for alg in self._writers if not checksums.get(alg)]
        if missing:
            raise ConfigurationError("Missing {0} checksum(s) for {1}"
                                     .format(", ".join(missing), relpath))
        for alg, writer in self._writers.items():
            writer.write_line(format_manifest_line(checksums[alg], relpath))
        self.count += 1
        if size is not None and size > 0:
            self.size += size

    def lines(self, alg):
        return self._writers[alg].lines

    def close(self):
        for writer in self._writers.values():
            writer.close()

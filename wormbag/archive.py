"""
Serialization of bag directories into archive files (ZIP or gzip-compressed
TAR) and the reverse.  Archives contain a single top-level directory named
for the bag.

Reading goes through the fs (PyFilesystem2) archive filesystems; writing
uses the standard library codecs directly so that entry timestamps can be
suppressed for reproducible packages.
"""
import os, errno, gzip, logging, shutil, tarfile, time, zipfile
from collections import OrderedDict

import fs.osfs, fs.path, fs.zipfs, fs.tarfs
from fs.copy import copy_fs

from .constants import DECL_FILE
from .access.exceptions import ConfigurationError, BagError

LOGGER = logging.getLogger(__name__)

FORMATS = ("zip", "tgz")

# longest suffix first so that compound suffixes win
_suffix_lookup = OrderedDict([
    (".tar.gz", "tgz"),
    (".tgz",    "tgz"),
    (".zip",    "zip")
])

_magic_lookup = {
    "zip": (b"PK\x03\x04", b"PK\x05\x06"),
    "tgz": (b"\x1f\x8b",)
}

_fs_lookup = {
    "zip": fs.zipfs.ZipFS,
    "tgz": fs.tarfs.TarFS
}

# earliest time a zip entry can carry
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)

def check_format(format):
    """
    return the format name if it is a supported archive format

    :raises ConfigurationError:  if it is not
    """
    if format not in FORMATS:
        raise ConfigurationError("Unsupported package format: " + str(format))
    return format

def strip_suffix(filename):
    """
    split a file name into its stem and the archive format implied by its
    suffix.  (filename, None) is returned if the suffix is not recognized.
    """
    for sfx, fmt in _suffix_lookup.items():
        if filename.endswith(sfx) and len(filename) > len(sfx):
            return filename[:-len(sfx)], fmt
    return filename, None

def sniff_format(fileobj):
    """
    return the archive format indicated by the leading bytes of a seekable
    binary file object (or None).  The file position is restored.
    """
    pos = fileobj.tell()
    head = fileobj.read(4)
    fileobj.seek(pos)
    for fmt, magics in _magic_lookup.items():
        if any(head.startswith(m) for m in magics):
            return fmt
    return None

def archive_format(path):
    """
    return the format of an archive file if both its name and its content
    identify it as a supported archive; otherwise, return None.
    """
    if not os.path.isfile(path):
        return None
    fmt = strip_suffix(os.path.basename(path))[1]
    if not fmt:
        return None
    with open(path, 'rb') as fd:
        if sniff_format(fd) != fmt:
            LOGGER.warning("%s: content does not match its %s suffix",
                           path, fmt)
            return None
    return fmt

def _walk(bagfs, path="/"):
    # yield (path, info) pairs depth-first, each directory before its contents
    entries = sorted(bagfs.scandir(path, namespaces=["details"]),
                     key=lambda i: i.name)
    for info in entries:
        subpath = fs.path.join(path, info.name)
        yield subpath, info
        if info.is_dir:
            for entry in _walk(bagfs, subpath):
                yield entry

def _zip_time(mtime, no_time):
    if no_time or mtime is None:
        return _ZIP_EPOCH
    # fs.zipfs reads entry times back as UTC
    stamp = time.gmtime(mtime)[:6]
    return max(stamp, _ZIP_EPOCH)

def _fill_zip(bagfs, name, out, no_time):
    with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as zout:
        root = zipfile.ZipInfo(name + "/", _ZIP_EPOCH)
        root.external_attr = (0o40755 << 16) | 0x10
        zout.writestr(root, b"")
        for path, info in _walk(bagfs):
            arcname = name + path
            mtime = info.get("details", "modified")
            if info.is_dir:
                zinfo = zipfile.ZipInfo(arcname + "/", _zip_time(mtime, no_time))
                zinfo.external_attr = (0o40755 << 16) | 0x10
                zout.writestr(zinfo, b"")
                continue
            zinfo = zipfile.ZipInfo(arcname, _zip_time(mtime, no_time))
            zinfo.external_attr = 0o644 << 16
            zinfo.compress_type = zipfile.ZIP_DEFLATED
            zinfo.file_size = info.size
            LOGGER.debug("Adding %s to zip archive", arcname)
            with bagfs.openbin(path) as src, zout.open(zinfo, "w") as dest:
                shutil.copyfileobj(src, dest)

def _fill_tar(bagfs, name, out, no_time):
    gzmtime = 0 if no_time else None
    with gzip.GzipFile(filename="", mode="wb", fileobj=out,
                       mtime=gzmtime) as gzout:
        with tarfile.open(fileobj=gzout, mode="w") as tout:
            root = tarfile.TarInfo(name)
            root.type = tarfile.DIRTYPE
            root.mode = 0o755
            tout.addfile(root)
            for path, info in _walk(bagfs):
                tinfo = tarfile.TarInfo(name + path)
                mtime = info.get("details", "modified")
                tinfo.mtime = 0 if no_time else int(mtime or 0)
                if info.is_dir:
                    tinfo.type = tarfile.DIRTYPE
                    tinfo.mode = 0o755
                    tout.addfile(tinfo)
                    continue
                tinfo.size = info.size
                tinfo.mode = 0o644
                LOGGER.debug("Adding %s to tar archive", tinfo.name)
                with bagfs.openbin(path) as src:
                    tout.addfile(tinfo, src)

def write_archive(bagdir, out, format="zip", no_time=False):
    """
    write the bag rooted at a directory into a binary output stream as an
    archive.

    :param str bagdir:    the bag's root directory; its base name becomes
                          the name of the archive's top-level directory.
    :param out:           a writable binary file object; it is not closed.
    :param str format:    the archive format, "zip" or "tgz"
    :param bool no_time:  if True, entry timestamps are zeroed (as is the
                          gzip header time) so that identical bag content
                          produces an identical archive.
    :raises ConfigurationError:  if the format is not supported
    """
    check_format(format)
    bagdir = bagdir.rstrip(os.sep)
    name = os.path.basename(bagdir)
    with fs.osfs.OSFS(bagdir) as bagfs:
        if format == "zip":
            _fill_zip(bagfs, name, out, no_time)
        else:
            _fill_tar(bagfs, name, out, no_time)

def open_archive(file, format):
    """
    return a read-only filesystem (an fs.base.FS instance) over the contents
    of an archive.

    :param file:        the path to the archive or a seekable binary file
                        object containing it
    :param str format:  the archive format, "zip" or "tgz"
    """
    return _fs_lookup[check_format(format)](file)

def find_bag(arcfs):
    """
    return the path within an archive filesystem to the directory that
    holds a bag (i.e. contains a bagit.txt file).

    :raises BagError:  if no such directory is found
    """
    if arcfs.isfile(DECL_FILE):
        return "/"
    for d in arcfs.walk.dirs():
        if arcfs.isfile(fs.path.join(d, DECL_FILE)):
            return d
    raise BagError("Archive does not appear to contain a serialized bag")

def inflate(file, format, parent, name=None):
    """
    extract the bag contained in an archive into a new directory and return
    that directory's path.

    :param file:        the path to the archive or a seekable binary file
                        object containing it
    :param str format:  the archive format, "zip" or "tgz"
    :param str parent:  the directory in which to create the bag directory
    :param str name:    the name to give the bag directory; if not
                        provided, the name of the bag's directory within
                        the archive is used.
    :raises OSError:    if the target bag directory already exists
    """
    with open_archive(file, format) as arcfs:
        bagpath = find_bag(arcfs)
        if not name:
            name = fs.path.basename(bagpath) or "bag"
        destdir = os.path.join(parent, name)
        if os.path.exists(destdir):
            raise OSError(errno.EEXIST, "Bag directory already exists", destdir)
        os.makedirs(destdir)
        LOGGER.info("Inflating %s bag into %s", format, destdir)
        with fs.osfs.OSFS(destdir) as destfs:
            copy_fs(arcfs.opendir(bagpath), destfs, preserve_time=True)
    return destdir

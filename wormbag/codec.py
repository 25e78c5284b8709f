"""
Parsing and serialization of the line-oriented text files found in a bag:
manifests (``<checksum> <path>``), fetch files (``<uri> <size> <path>``),
and property (tag) files made of ``Name: value`` lines with folded
continuation lines.
"""
import logging, re
from collections import OrderedDict, namedtuple

from bagit import UNICODE_BYTE_ORDER_MARK

LOGGER = logging.getLogger(__name__)

#: maximum number of characters written per property line before folding
FOLD_WIDTH = 80

#: the prefix marking a property continuation line
CONTINUATION = " "

FetchEntry = namedtuple("FetchEntry", "size uri")

_pctre = re.compile(r"%(25|0D|0A)", re.IGNORECASE)
_pctchars = { "25": "%", "0D": "\r", "0A": "\n" }
_sizescale = ["bytes", "KB", "MB", "GB", "TB"]

def _strip_bom(line):
    # a BOM left after decoding is tolerated but not expected
    if line.startswith(UNICODE_BYTE_ORDER_MARK):
        LOGGER.warning("Byte-order mark found at the start of a tag file")
        line = line.lstrip(UNICODE_BYTE_ORDER_MARK)
    return line

def encode_path(path):
    """
    percent-encode the characters of a bag-relative path that may not
    appear literally in a manifest or fetch line (%, CR, and LF)
    """
    return path.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")

def decode_path(path):
    """
    reverse encode_path() and strip any leading "./" so that the result can
    be used directly for filesystem lookup
    """
    path = _pctre.sub(lambda m: _pctchars[m.group(1).upper()], path)
    while path.startswith("./"):
        path = path[2:]
    return path

def format_manifest_line(checksum, path):
    return "{0} {1}".format(checksum, encode_path(path))

def parse_manifest_line(line):
    """
    split a manifest line into a (path, checksum) pair.  None is returned
    for blank lines and comments.

    :raises ValueError:  if the line does not contain two tokens
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    parts = line.split(None, 1)
    if len(parts) != 2:
        raise ValueError("Invalid manifest entry: " + line)
    return decode_path(parts[1].lstrip("*")), parts[0].lower()

def read_manifest(lines, source="manifest"):
    """
    load manifest lines into an OrderedDict mapping bag-relative paths to
    checksums.  Malformed lines are logged and skipped.

    :param lines:       an iterable of text lines (e.g. an open text file)
    :param str source:  a name for the manifest used in log messages
    """
    out = OrderedDict()
    for i, line in enumerate(lines):
        if i == 0:
            line = _strip_bom(line)
        try:
            entry = parse_manifest_line(line)
        except ValueError as ex:
            LOGGER.warning("%s: %s", source, str(ex))
            continue
        if entry:
            out[entry[0]] = entry[1]
    return out

def format_fetch_line(uri, size, path):
    sizestr = "-"
    if size is not None and size >= 0:
        sizestr = str(size)
    return "{0} {1} {2}".format(uri, sizestr, encode_path(path))

def parse_fetch_line(line):
    """
    split a fetch line into a (path, FetchEntry) pair, or return None for
    a blank line.  An unknown size ("-") is returned as None.

    :raises ValueError:  if the line does not contain three tokens or the
                         size is not an integer
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    parts = line.split(None, 2)
    if len(parts) != 3:
        raise ValueError("Invalid fetch entry: " + line)
    uri, size, path = parts
    size = None if size == "-" else int(size)
    return decode_path(path), FetchEntry(size, uri)

def read_fetch(lines):
    out = OrderedDict()
    for i, line in enumerate(lines):
        if i == 0:
            line = _strip_bom(line)
        entry = parse_fetch_line(line)
        if entry:
            out[entry[0]] = entry[1]
    return out

def fold_property(name, value, width=FOLD_WIDTH):
    """
    return the list of lines (without terminators) that represent a
    property.  The first line holds "Name: " and as much of the value as
    fits within width characters; the rest of the value follows in lines of
    (up to) width characters, each prefixed by a single space.  The name is
    never split, so a long name can make the first line exceed width.
    """
    head = "{0}: ".format(name)
    room = max(width - len(head), 0)
    out = [head + value[:room]]
    for offset in range(room, len(value), width):
        out.append(CONTINUATION + value[offset:offset+width])
    return out

def parse_properties(lines):
    """
    iterate through the (name, value) pairs in a property file, undoing
    line folding.  Names may repeat; pairs are yielded in file order.

    :param lines:  an iterable of text lines (e.g. an open text file)
    :raises ValueError:  if a non-continuation line has no colon
    """
    name = None
    value = None
    for i, line in enumerate(lines):
        line = line.rstrip("\r\n")
        if i == 0:
            line = _strip_bom(line)
        if line.startswith(CONTINUATION) and name is not None:
            value += line[len(CONTINUATION):]
            continue
        if not line.strip():
            continue

        if name is not None:
            yield name, value
        if ":" not in line:
            raise ValueError("Invalid property line: " + line)
        name, value = line.split(":", 1)
        name = name.strip()
        if value.startswith(" "):
            value = value[1:]

    if name is not None:
        yield name, value

def read_properties(lines):
    """
    load a property file into an OrderedDict mapping each name to the list
    of its values, in the order they appear.
    """
    out = OrderedDict()
    for name, value in parse_properties(lines):
        out.setdefault(name, []).append(value)
    return out

def scaled_size(size):
    """
    return a byte count as a short human-readable string, scaled by powers
    of 1000 (e.g. "13 KB")
    """
    index = 0
    while size >= 1000 and index < len(_sizescale) - 1:
        size //= 1000
        index += 1
    return "{0} {1}".format(size, _sizescale[index])

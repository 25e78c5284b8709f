"""
Common data about the bags produced and consumed by this package:  the
BagIt version implemented, mandated file names, checksum algorithm names,
line-termination rules, reserved metadata names, and the status codes
reported by completeness and validity checks.
"""
import os

BAGIT_VERSION = "1.0"
LIB_VERSION = "0.5"
SOFTWARE_AGENT = "wormbag v" + LIB_VERSION

ENCODING = "UTF-8"
DEFAULT_ALGORITHMS = ("sha512",)
DEFAULT_FORMAT = "zip"

# mandated file and directory names
DECL_FILE = "bagit.txt"
META_FILE = "bag-info.txt"
REF_FILE = "fetch.txt"
MANIF_FILE = "manifest-"
TAGMANIF_FILE = "tagmanifest-"
DATA_DIR = "data"
DATA_PATH = DATA_DIR + "/"

# declaration property names
VERSION_KEY = "BagIt-Version"
ENCODING_KEY = "Tag-File-Character-Encoding"

# reserved metadata property names
SOURCE_ORG = "Source-Organization"
ORG_ADDR = "Organization-Address"
CONTACT_NAME = "Contact-Name"
CONTACT_PHONE = "Contact-Phone"
CONTACT_EMAIL = "Contact-Email"
EXTERNAL_DESC = "External-Description"
EXTERNAL_ID = "External-Identifier"
BAGGING_DATE = "Bagging-Date"
BAG_SIZE = "Bag-Size"
PAYLOAD_OXUM = "Payload-Oxum"
BAG_GROUP_ID = "Bag-Group-Identifier"
BAG_COUNT = "Bag-Count"
INTERNAL_SENDER_ID = "Internal-Sender-Identifier"
INTERNAL_SENDER_DESC = "Internal-Sender-Description"
BAG_SOFTWARE_AGENT = "Bag-Software-Agent"

RESERVED_METADATA = (SOURCE_ORG, ORG_ADDR, CONTACT_NAME, CONTACT_PHONE,
                     CONTACT_EMAIL, EXTERNAL_DESC, EXTERNAL_ID, BAGGING_DATE,
                     BAG_SIZE, PAYLOAD_OXUM, BAG_GROUP_ID, BAG_COUNT,
                     INTERNAL_SENDER_ID, INTERNAL_SENDER_DESC,
                     BAG_SOFTWARE_AGENT)

# metadata a Filler can generate on its own
AUTO_METADATA = (BAGGING_DATE, BAG_SIZE, PAYLOAD_OXUM, BAG_SOFTWARE_AGENT)

# completeness and validity status codes
SUCCESS = 0
FETCH_PRESENT = -1
MISSING_DECLARATION = -2
MALFORMED_DECLARATION = -3
UNSUPPORTED_ENCODING = -4
MISSING_PAYLOAD_DIR = -5
MISSING_MANIFEST = -6
PAYLOAD_COUNT_MISMATCH = -7
MISSING_PAYLOAD_FILE = -8
TAG_COUNT_MISMATCH = -9
MISSING_TAG_FILE = -10
PAYLOAD_CHECKSUM_MISMATCH = -11
TAG_CHECKSUM_MISMATCH = -12
MALFORMED_MANIFEST = -13

status_labels = {
    SUCCESS:                   "success",
    FETCH_PRESENT:             "unresolved fetch entries present",
    MISSING_DECLARATION:       "missing bagit.txt declaration",
    MALFORMED_DECLARATION:     "malformed bagit.txt declaration",
    UNSUPPORTED_ENCODING:      "unsupported tag file encoding",
    MISSING_PAYLOAD_DIR:       "missing payload directory",
    MISSING_MANIFEST:          "no payload manifest found",
    PAYLOAD_COUNT_MISMATCH:    "payload file count differs from manifest",
    MISSING_PAYLOAD_FILE:      "payload file listed in manifest is missing",
    TAG_COUNT_MISMATCH:        "tag file count differs from tag manifest",
    MISSING_TAG_FILE:          "tag file listed in tag manifest is missing",
    PAYLOAD_CHECKSUM_MISMATCH: "payload checksum mismatch",
    TAG_CHECKSUM_MISMATCH:     "tag file checksum mismatch",
    MALFORMED_MANIFEST:        "manifest file cannot be read"
}

class EolRule(object):
    """
    the rules for choosing the line termination used in generated text
    (tag) files.  Payload bytes are never touched.
    """
    SYSTEM = "system"
    COUNTER_SYSTEM = "counter_system"
    UNIX = "unix"
    WINDOWS = "windows"

def line_separator(rule, system=None):
    """
    return the line separator string prescribed by an EolRule value.

    :param str rule:    one of the EolRule values
    :param str system:  the platform's separator; defaults to os.linesep
    :raises ValueError: if rule is not recognized
    """
    if system is None:
        system = os.linesep
    if rule == EolRule.SYSTEM:
        return system
    if rule == EolRule.UNIX:
        return "\n"
    if rule == EolRule.WINDOWS:
        return "\r\n"
    if rule == EolRule.COUNTER_SYSTEM:
        return (system == "\n" and "\r\n") or "\n"
    raise ValueError("Unrecognized line termination rule: " + str(rule))

# keys are lower-cased with '-' and '_' removed
_ALGORITHM_NAMES = {
    "md5":    "md5",
    "sha1":   "sha1",
    "sha224": "sha224",
    "sha256": "sha256",
    "sha384": "sha384",
    "sha512": "sha512"
}

def canonical_algorithm(name):
    """
    return the canonical (hashlib and manifest-file) name for a checksum
    algorithm name given in any common form ("SHA-512", "sha512", "SHA_512")
    or None if the algorithm is not supported.
    """
    if not name:
        return None
    key = name.strip().lower().replace("-", "").replace("_", "")
    return _ALGORITHM_NAMES.get(key)

def manifest_name(alg):
    return MANIF_FILE + alg + ".txt"

def tagmanifest_name(alg):
    return TAGMANIF_FILE + alg + ".txt"

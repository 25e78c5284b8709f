"""
This module creates a new bag from the contents of an existing one.  Since
bags are written once, this is the way to "change" a bag:  copy it into a
new :py:class:`~wormbag.fill.Filler`, optionally with a different set of
checksum algorithms, add to it, and finalize.
"""
import logging

from .constants import (DECL_FILE, META_FILE, REF_FILE, MANIF_FILE,
                        TAGMANIF_FILE, DATA_PATH, AUTO_METADATA)
from .digest import canonical_algorithms
from .fill import Filler
from .access.exceptions import ConfigurationError

LOGGER = logging.getLogger(__name__)

def _copied_tag(relpath):
    # True if a tag file should be carried over as-is
    if relpath in (DECL_FILE, META_FILE, REF_FILE):
        return False
    return not ("/" not in relpath and
                (relpath.startswith(MANIF_FILE) or
                 relpath.startswith(TAGMANIF_FILE)))

def copy(bag, base=None, algorithms=None):
    """
    return a new, open Filler containing a copy of a bag's payload, tag
    files, payload references, and (non-generated) metadata.  The Filler
    uses the source bag's tag file encoding and line termination.

    Only stream access to the source is used, so the source may be sealed.
    Payload references are carried over using the checksums already
    recorded in the source's manifests; their content is neither fetched
    nor re-hashed.

    :param Bag bag:        the source bag
    :param str base:       the directory to build the new bag in (see
                           Filler); if None, a transient bag is created.
    :param algorithms:     the checksum algorithms for the new bag; if
                           None, the source bag's algorithms are used.
    :raises ConfigurationError:  if the source has payload references and
                           an algorithm is requested for which the source
                           records no checksums.
    """
    srcalgs = bag.cs_algorithms()
    if algorithms:
        algs = canonical_algorithms(algorithms)
    else:
        algs = tuple(srcalgs) or None

    refs = bag.payload_refs()
    if refs and algs:
        missing = [a for a in algs if a not in srcalgs]
        if missing:
            raise ConfigurationError("Cannot compute {0} checksum(s) for "
                                     "unresolved payload references in {1}"
                                     .format(", ".join(missing), bag.name))

    filler = Filler(base, algs, bag.tag_encoding(), bag.eol_rule())

    for path in bag.payload_manifest():
        if path in refs or not path.startswith(DATA_PATH):
            continue
        relpath = path[len(DATA_PATH):]
        with bag.payload_stream(relpath) as fd:
            filler.payload(relpath, fd)

    for path in bag.tag_manifest():
        if _copied_tag(path):
            with bag.tag_stream(path) as fd:
                filler.tag(path, fd)

    manifests = dict((a, bag.payload_manifest(a)) for a in filler.algorithms)
    for path, entry in refs.items():
        checksums = dict((a, m.get(path)) for a, m in manifests.items()
                         if m.get(path))
        filler.payload_ref_unsafe(path[len(DATA_PATH):], entry.size,
                                  entry.uri, checksums)

    for name in bag.metadata_names():
        if name in AUTO_METADATA:
            continue
        for value in bag.metadata(name):
            filler.metadata(name, value)

    LOGGER.debug("Copied %s into %s", bag.name, filler.base)
    return filler

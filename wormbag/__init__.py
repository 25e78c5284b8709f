"""
a library for building and reading BagIt (version 1.0) bags, written once.

The Filler class builds a new bag, computing every checksum (for one or
more algorithms) while content is written; it can deliver the bag as a
directory, an archive file, or a stream.  The Loader class turns a bag
directory, archive, or stream back into a Bag, a read-only view that can
report whether the bag is complete and valid.  Bags may be "holey":  some
payload may be referenced by URI (via fetch.txt) rather than included;
the Loader can fill such holes.  An existing bag is changed by copying it
into a new Filler (see adapt.copy()).
"""
from .constants import EolRule
from .access.bag import Bag
from .access.exceptions import (BagError, BagValidationError, ChecksumMismatch,
                                ConfigurationError, PathConflictError,
                                BagAccessError)
from .fill import Filler
from .load import Loader, load_bag
from .adapt import copy as copy_bag
from .validate import BagValidator, BagCheckError

"""
exceptions that can be raised while building, loading, or accessing a bag
"""
from bagit import BagError, BagValidationError, ChecksumMismatch

class ConfigurationError(BagError, ValueError):
    """
    an exception indicating that a bag was requested with settings that
    cannot be honored: an unknown or empty set of checksum algorithms, an
    unsupported archive format or tag-file encoding, a relative fetch URI,
    or checksums that are not available for a requested algorithm.
    """
    pass

class PathConflictError(BagError):
    """
    an exception indicating an attempt to add content at a path already
    used within a bag under construction.  Bags are written once; the
    existing content is left untouched.
    """
    def __init__(self, path, message=None):
        """
        initialize the exception with the conflicting path
        :param str path:     the bag-relative path that is already in use
        :param str message:  the exception's message, overriding the default
                             (generated from the path)
        """
        self.path = path
        if not message:
            message = "Bag content already exists at: " + path
        super(PathConflictError, self).__init__(message)

class BagAccessError(BagError):
    """
    an exception indicating that filesystem paths within a sealed bag were
    requested.  Sealed bags only allow access to their contents via streams.
    """
    def __init__(self, path=None, message=None):
        self.path = path
        if not message:
            message = "Sealed bag: no file access allowed"
            if path:
                message += " (requested: {0})".format(path)
        super(BagAccessError, self).__init__(message)

"""
A subpackage for accessing a bag's contents.

The :py:mod:`bag` module provides the read-only view onto a bag directory,
including its completeness and validity checks.  The :py:mod:`exceptions`
module collects the errors raised across the package.
"""

"""
This module provides the validator for bags built and loaded by this
package.  It turns the status codes reported by a
:py:class:`~wormbag.access.bag.Bag` into a report of issues.
"""
import os

from .base import (Validator, ValidationResults, ValidationIssue, BagCheckError,
                   ERROR, WARN, REC, PROB)
from ..constants import (SUCCESS, DATA_PATH, PAYLOAD_OXUM, BAGGING_DATE)
from ..access.bag import Bag

class BagValidator(Validator):
    """
    A validator that tests whether a given bag is complete and valid, and
    whether its metadata is consistent with its payload.
    """

    def __init__(self, bag):
        """
        initialize the validator for a bag

        :param bag:  the target bag, either as a Bag instance or as the path
                     to a bag directory
        """
        if not isinstance(bag, Bag):
            if not os.path.isdir(bag):
                raise ValueError("BagValidator: not a bag directory: " +
                                 str(bag))
            bag = Bag(bag)
        super(BagValidator, self).__init__(str(bag))
        self.bag = bag

    def _check_complete(self, results):
        issue = ValidationIssue("Complete", ERROR,
                                "Every file must be listed in the manifests, "
                                "and every manifest entry must exist")
        status = self.bag.completeness_status()
        results._err(issue, status == SUCCESS,
                     (status != SUCCESS and Bag.status_label(status)) or None)
        return status

    def _check_valid(self, results, status):
        issue = ValidationIssue("Valid", ERROR,
                                "Bag must be complete and every checksum "
                                "must match its file")
        if status == SUCCESS:
            status = self.bag.validation_status()
        results._err(issue, status == SUCCESS,
                     (status != SUCCESS and Bag.status_label(status)) or None)

    def _payload_tally(self):
        # count and size of the payload present (references use their
        # declared sizes)
        refs = self.bag.payload_refs()
        count = 0
        size = 0
        for path in self.bag.payload_manifest():
            count += 1
            if path in refs:
                size += refs[path].size or 0
                continue
            try:
                with self.bag.payload_stream(path[len(DATA_PATH):]) as fd:
                    size += os.fstat(fd.fileno()).st_size
            except FileNotFoundError:
                pass
        return count, size

    def _check_oxum(self, results):
        oxum = self.bag.metadata(PAYLOAD_OXUM)
        if not oxum:
            return
        issue = ValidationIssue("Payload-Oxum", WARN,
                                "Payload-Oxum must match the payload's "
                                "byte and file counts")
        count, size = self._payload_tally()
        found = "{0}.{1}".format(size, count)
        results._warn(issue, oxum[0] == found,
                      (oxum[0] != found and
                       "{0} declared, {1} found".format(oxum[0], found)) or None)

    def _check_bagging_date(self, results):
        issue = ValidationIssue("Bagging-Date", REC,
                                "bag-info.txt should record the Bagging-Date")
        results._rec(issue, bool(self.bag.metadata(BAGGING_DATE)))

    def validate(self, want=PROB, results=None):
        if not results:
            results = ValidationResults(self.target, want)

        if want & ERROR:
            status = self._check_complete(results)
            self._check_valid(results, status)
        if want & WARN:
            self._check_oxum(results)
        if want & REC:
            self._check_bagging_date(results)

        return results

    def is_complete(self):
        """
        return True if the bag is complete
        """
        return self.bag.is_complete()

    def ensure_complete(self):
        """
        raise a BagValidationError if the bag is not complete

        :raise BagCheckError:  if the bag is not complete
        """
        results = ValidationResults(self.target, ERROR)
        self._check_complete(results)
        if not results.ok():
            raise BagCheckError(results)

def validate(bag, want=PROB):
    """
    validate a bag and return the results as a ValidationResults instance

    :param bag:  the target bag, either as a Bag instance or as the path to
                 a bag directory
    """
    return BagValidator(bag).validate(want)

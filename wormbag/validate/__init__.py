"""
This module provides classes and functions for reporting on whether bags
are complete and valid.
"""
from .base import (ALL, ERROR, WARN, REC, PROB, Validator, ValidationIssue,
                   ValidationResults, BagCheckError)
from .bag import BagValidator, validate

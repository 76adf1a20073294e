"""
Error hierarchy for the HSDS validator

Hierarchy:
    ValidatorError              (base)
    ├── RequestShapeError       (missing form field / query parameter)
    ├── IntakeError             (bad archive, extraction failure, path traversal)
    ├── DescriptorLoadError     (unreachable or malformed package descriptor)
    └── SchemaEngineError       (fault while validating a single resource)

Only the first three abort a request. SchemaEngineError is contained by the
orchestrators and surfaced as a failed result for that resource.
"""

from typing import Any, Dict, Optional


class ValidatorError(Exception):
    """Base exception for all validator errors"""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None,
                 cause: Optional[Exception] = None):
        self.details = details or {}
        self.cause = cause
        super().__init__(message)
        if cause and not self.__cause__:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for responses and logging"""
        d = {
            'error_type': type(self).__name__,
            'error': str(self),
        }
        if self.details:
            d['details'] = self.details
        if self.cause:
            d['cause'] = f"{type(self.cause).__name__}: {self.cause}"
        return d


class RequestShapeError(ValidatorError):
    """Raised when a required form field or query parameter is missing"""
    pass


class IntakeError(ValidatorError):
    """Raised when an uploaded archive cannot be accepted or expanded"""
    pass


class DescriptorLoadError(ValidatorError):
    """Raised when a data package descriptor cannot be loaded"""
    pass


class SchemaEngineError(ValidatorError):
    """Raised when a single resource cannot be validated at all"""
    pass

"""
Data models for validation requests and results
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

ABSENT_REASON = "resource file not found"


@dataclass(frozen=True)
class ResourceDescriptor:
    """A resource type known to the catalog and the file it is expected in"""

    name: str
    expected_file_name: str

    def to_dict(self) -> Dict[str, str]:
        return {
            'name': self.name,
            'expected_file_name': self.expected_file_name
        }


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of validating one resource against its schema

    ``valid`` is True only when the schema engine reported no errors.
    ``reason`` is set when the resource could not be validated at all.
    """

    valid: bool
    resource_name: str
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    row_count: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def from_report(cls, resource_name: str, report: Any) -> 'ValidationResult':
        """Create a result from a schema engine TableReport"""
        return cls(
            valid=not report.errors,
            resource_name=resource_name,
            errors=list(report.errors),
            warnings=list(report.warnings),
            row_count=report.row_count
        )

    @classmethod
    def failure(cls, resource_name: str, reason: str,
                error: Optional[Exception] = None) -> 'ValidationResult':
        """Create a failed result for a resource that could not be validated"""
        errors = []
        if error is not None:
            errors.append({
                'type': 'schema-engine-error',
                'message': str(error)
            })
        return cls(valid=False, resource_name=resource_name, errors=errors, reason=reason)

    def with_errors(self, extra_errors: List[Dict[str, Any]],
                    extra_warnings: Optional[List[Dict[str, Any]]] = None) -> 'ValidationResult':
        """Return a copy with additional errors and warnings attached"""
        errors = self.errors + list(extra_errors)
        return ValidationResult(
            valid=self.valid and not errors,
            resource_name=self.resource_name,
            errors=errors,
            warnings=self.warnings + list(extra_warnings or []),
            row_count=self.row_count,
            reason=self.reason
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'valid': self.valid,
            'resource_name': self.resource_name,
            'errors': self.errors,
            'warnings': self.warnings
        }
        if self.row_count is not None:
            data['row_count'] = self.row_count
        if self.reason:
            data['reason'] = self.reason
        return data


@dataclass(frozen=True)
class AbsentResource:
    """Marker for a catalog resource with no matching file in the archive"""

    valid: bool = False
    reason: str = ABSENT_REASON

    def to_dict(self) -> Dict[str, Any]:
        return {'valid': self.valid, 'reason': self.reason}


ABSENT = AbsentResource()

ResourceOutcome = Union[ValidationResult, AbsentResource]

# Keys are exactly the catalog names, in catalog order
BatchResult = Dict[str, ResourceOutcome]


def batch_to_dict(batch: BatchResult) -> Dict[str, Dict[str, Any]]:
    """Serialize a batch result for the response layer"""
    return {name: outcome.to_dict() for name, outcome in batch.items()}


def package_is_valid(results: List[ValidationResult]) -> bool:
    """Overall package validity: every declared resource passed"""
    return all(result.valid for result in results)

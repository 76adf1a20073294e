"""
Single resource validator

Adapter between the orchestrators and the schema engine: validates one data
stream against one named schema and returns a ValidationResult.
"""

import logging
import time
from typing import Any, Dict, Optional

from hsds_validator.api.models import ValidationResult
from hsds_validator.errors import SchemaEngineError
from hsds_validator.utils.logging_config import log_validation_outcome
from hsds_validator.validation.engine import Source, TableSchemaEngine
from hsds_validator.validation.registry import SchemaRegistry

logger = logging.getLogger(__name__)


class ResourceValidator:
    """
    Validates one resource at a time against the schema registry

    Schema violations are returned as an invalid ValidationResult. Only an
    unknown schema name or an unreadable source raises SchemaEngineError.
    """

    def __init__(self, registry: SchemaRegistry, engine: Optional[TableSchemaEngine] = None):
        self.registry = registry
        self.engine = engine or TableSchemaEngine()

    def validate(self, source: Source, schema_name: str,
                 resource_name: Optional[str] = None) -> ValidationResult:
        """
        Validate a data stream or file against a registered schema

        Args:
            source: Path, bytes or file object holding CSV data
            schema_name: Name of the registered resource schema
            resource_name: Name to report (defaults to the schema name)

        Raises:
            SchemaEngineError: Unknown schema name or unreadable source
        """
        return self.validate_with_schema(source, self.registry.get(schema_name),
                                         resource_name or schema_name)

    def validate_with_schema(self, source: Source, schema: Dict[str, Any],
                             resource_name: str) -> ValidationResult:
        """Validate against an explicit schema descriptor"""
        start_time = time.time()

        report = self.engine.validate(source, schema)
        result = ValidationResult.from_report(resource_name, report)

        log_validation_outcome(logger, resource_name, result.valid,
                               len(result.errors), time.time() - start_time)
        return result

    def validate_safely(self, source: Source, schema_name: str,
                        resource_name: Optional[str] = None) -> ValidationResult:
        """
        Validate without raising: engine faults become a failed result

        The fault is logged and attached to the result so callers see it.
        """
        name = resource_name or schema_name
        try:
            return self.validate(source, schema_name, name)
        except SchemaEngineError as e:
            logger.warning(f"Could not validate {name}: {e}")
            log_validation_outcome(logger, name, False, 1, 0.0, reason=str(e))
            return ValidationResult.failure(name, "validation could not be completed", e)

"""
Schema registry backed by an Open Referral data package descriptor
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from hsds_validator.errors import SchemaEngineError
from hsds_validator.settings import BUNDLED_DATAPACKAGE

logger = logging.getLogger(__name__)


class SchemaRegistry:
    """
    Named Table Schemas for the Open Referral resources

    The registry is read-only after construction and is shared between
    requests.
    """

    def __init__(self, descriptor: Dict[str, Any]):
        self.descriptor = descriptor
        self._schemas: Dict[str, Dict[str, Any]] = {}
        self._paths: Dict[str, str] = {}

        for resource in descriptor.get('resources', []):
            name = resource.get('name')
            schema = resource.get('schema')
            if not name or not isinstance(schema, dict):
                raise ValueError(f"Resource entry without a name or inline schema: {resource!r}")
            self._schemas[name] = schema
            self._paths[name] = resource.get('path', f"{name}.csv")

        logger.info(f"Loaded {len(self._schemas)} resource schemas from "
                    f"'{descriptor.get('name', 'unnamed')}' descriptor")

    @classmethod
    def from_path(cls, path: Optional[str] = None) -> 'SchemaRegistry':
        """Load a registry from a descriptor file (bundled HSDS package by default)"""
        descriptor_path = Path(path) if path else BUNDLED_DATAPACKAGE
        with open(descriptor_path, encoding='utf-8') as f:
            return cls(json.load(f))

    def names(self) -> List[str]:
        return list(self._schemas)

    def get(self, name: str) -> Dict[str, Any]:
        """
        Get the schema for a resource

        Raises:
            SchemaEngineError: If no schema is registered under the name
        """
        try:
            return self._schemas[name]
        except KeyError:
            raise SchemaEngineError(
                f"Unknown resource type '{name}'",
                details={'resource_name': name, 'known_resources': sorted(self._schemas)}
            )

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def describe(self, name: str) -> Dict[str, Any]:
        """Summary of a resource schema for listings"""
        schema = self.get(name)
        return {
            'name': name,
            'path': self._paths[name],
            'fields': [field['name'] for field in schema.get('fields', [])],
            'required': [
                field['name'] for field in schema.get('fields', [])
                if field.get('constraints', {}).get('required')
            ]
        }

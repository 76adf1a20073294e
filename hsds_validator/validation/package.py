"""
Data package validation

Loads a data package descriptor from a local path or URL, validates every
declared resource in declaration order and, on request, checks foreign-key
relations between resources in a second pass.
"""

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from hsds_validator.api.client import (
    ParsingError,
    PermanentError,
    ResourceClient,
    TransientError,
    is_remote,
    resolve_uri
)
from hsds_validator.api.models import ValidationResult
from hsds_validator.errors import DescriptorLoadError
from hsds_validator.utils.concurrency import map_in_order
from hsds_validator.validation.engine import TableSchemaEngine, as_list, make_error
from hsds_validator.validation.registry import SchemaRegistry
from hsds_validator.validation.validators import ResourceValidator

logger = logging.getLogger(__name__)

DESCRIPTOR_FILE_NAME = 'datapackage.json'


@dataclass(frozen=True)
class PackageResource:
    """One resource declared by a package descriptor"""
    name: str
    uri: str
    schema: Dict[str, Any]

    @property
    def foreign_keys(self) -> List[Dict[str, Any]]:
        return self.schema.get('foreignKeys', []) or []


class DataPackage:
    """A loaded, structurally checked data package descriptor"""

    def __init__(self, uri: str, descriptor: Dict[str, Any], resources: List[PackageResource]):
        self.uri = uri
        self.descriptor = descriptor
        self.resources = resources

    @property
    def name(self) -> str:
        return self.descriptor.get('name', 'unnamed')

    def resource_names(self) -> List[str]:
        return [resource.name for resource in self.resources]

    @classmethod
    def load(cls, uri: str, client: ResourceClient,
             registry: Optional[SchemaRegistry] = None) -> 'DataPackage':
        """
        Load and check a descriptor

        Args:
            uri: Local path (file or directory) or URL of the descriptor
            client: URI client used for the descriptor and referenced schemas
            registry: Fallback schemas for resources that declare none

        Raises:
            DescriptorLoadError: Unreachable, malformed or non-conforming descriptor
        """
        if not uri or not uri.strip():
            raise DescriptorLoadError("Descriptor URI is empty")

        uri = uri.strip()
        if not is_remote(uri) and Path(uri).is_dir():
            uri = str(Path(uri) / DESCRIPTOR_FILE_NAME)

        descriptor = cls._fetch_json(client, uri, "descriptor")

        if not isinstance(descriptor, dict):
            raise DescriptorLoadError("Descriptor must be a JSON object", details={'uri': uri})

        declared = descriptor.get('resources')
        if not isinstance(declared, list) or not declared:
            raise DescriptorLoadError("Descriptor must declare a non-empty 'resources' list",
                                      details={'uri': uri})

        resources = []
        seen: Set[str] = set()
        for position, entry in enumerate(declared, start=1):
            resource = cls._load_resource(uri, position, entry, client, registry)
            if resource.name in seen:
                raise DescriptorLoadError(f"Resource name '{resource.name}' is declared twice",
                                          details={'uri': uri})
            seen.add(resource.name)
            resources.append(resource)

        logger.info(f"Loaded data package '{descriptor.get('name', 'unnamed')}' "
                    f"with {len(resources)} resources from {uri}")
        return cls(uri, descriptor, resources)

    @staticmethod
    def _fetch_json(client: ResourceClient, uri: str, what: str) -> Any:
        try:
            return client.fetch_json(uri)
        except ParsingError as e:
            raise DescriptorLoadError(f"Malformed {what}: {e}", details={'uri': uri}, cause=e)
        except (TransientError, PermanentError) as e:
            raise DescriptorLoadError(f"Unreachable {what}: {e}", details={'uri': uri}, cause=e)

    @classmethod
    def _load_resource(cls, base_uri: str, position: int, entry: Any,
                       client: ResourceClient,
                       registry: Optional[SchemaRegistry]) -> PackageResource:
        if not isinstance(entry, dict) or not isinstance(entry.get('name'), str) or not entry['name']:
            raise DescriptorLoadError(f"Resource {position} has no name")

        name = entry['name']
        path = entry.get('path')
        if not isinstance(path, str) or not path:
            raise DescriptorLoadError(f"Resource '{name}' must declare a single 'path'",
                                      details={'resource': name})

        if not is_remote(path):
            parts = PurePosixPath(path.replace('\\', '/'))
            if parts.is_absolute() or '..' in parts.parts:
                raise DescriptorLoadError(f"Resource '{name}' path must be relative and inside the package",
                                          details={'resource': name, 'path': path})

        schema = entry.get('schema')
        if isinstance(schema, str):
            schema = cls._fetch_json(client, resolve_uri(base_uri, schema), f"schema for '{name}'")
        elif schema is None:
            if registry is None or name not in registry:
                raise DescriptorLoadError(f"Resource '{name}' has no schema",
                                          details={'resource': name})
            schema = registry.get(name)

        if not isinstance(schema, dict) or not isinstance(schema.get('fields'), list):
            raise DescriptorLoadError(f"Resource '{name}' schema has no 'fields' list",
                                      details={'resource': name})

        for foreign_key in schema.get('foreignKeys', []) or []:
            reference = foreign_key.get('reference') if isinstance(foreign_key, dict) else None
            fields = as_list(foreign_key.get('fields')) if isinstance(foreign_key, dict) else []
            if not isinstance(reference, dict) or not fields \
                    or len(fields) != len(as_list(reference.get('fields'))):
                raise DescriptorLoadError(f"Resource '{name}' has a malformed foreign key",
                                          details={'resource': name, 'foreign_key': foreign_key})

        return PackageResource(name=name, uri=resolve_uri(base_uri, path), schema=schema)


class PackageValidator:
    """
    Validates every resource of a data package

    The first pass validates each resource independently (optionally in a
    bounded pool). When relations are requested, a second pass checks
    foreign keys once every resource has been read.
    """

    def __init__(self,
                 validator: ResourceValidator,
                 client: ResourceClient,
                 registry: Optional[SchemaRegistry] = None,
                 max_workers: int = 4,
                 progress_callback: Optional[Callable[[int, int], None]] = None):
        self.validator = validator
        self.client = client
        self.registry = registry
        self.max_workers = max(1, max_workers)
        self.progress_callback = progress_callback

    @property
    def engine(self) -> TableSchemaEngine:
        return self.validator.engine

    def load(self, uri: str) -> DataPackage:
        return DataPackage.load(uri, self.client, self.registry)

    def validate_package(self, uri: str, relations: bool = False) -> List[ValidationResult]:
        """
        Validate a data package

        Args:
            uri: Descriptor location (local path, directory or URL)
            relations: Also check foreign keys between resources

        Returns:
            One ValidationResult per declared resource, in declaration order

        Raises:
            DescriptorLoadError: If the descriptor cannot be loaded
        """
        package = self.load(uri)
        total = len(package.resources)
        completed = 0

        def step():
            nonlocal completed
            completed += 1
            if self.progress_callback:
                self.progress_callback(completed, total)

        outcomes = map_in_order(self._validate_resource, package.resources,
                                self.max_workers, on_complete=step)
        results = [result for result, _ in outcomes]

        if relations:
            contents = {
                resource.name: content
                for resource, (_, content) in zip(package.resources, outcomes)
                if content is not None
            }
            results = self.check_relations(package, results, contents)

        failed = sum(1 for result in results if not result.valid)
        logger.info(f"Package '{package.name}' validated: {total - failed}/{total} resources valid"
                    f"{' (relations checked)' if relations else ''}")
        return results

    def _validate_resource(self, resource: PackageResource) -> Tuple[ValidationResult, Optional[bytes]]:
        """Read and validate one resource; faults are contained in its result"""
        try:
            content = self.client.fetch_bytes(resource.uri)
        except (TransientError, PermanentError) as e:
            logger.warning(f"Could not read data for {resource.name}: {e}")
            return ValidationResult.failure(resource.name, "resource data could not be read", e), None

        try:
            result = self.validator.validate_with_schema(content, resource.schema, resource.name)
        except Exception as e:
            logger.exception(f"Validation of {resource.name} failed")
            return ValidationResult.failure(resource.name, "validation could not be completed", e), None

        return result, content

    def check_relations(self, package: DataPackage, results: List[ValidationResult],
                        contents: Dict[str, bytes]) -> List[ValidationResult]:
        """
        Check foreign keys and attach violations to the referencing resource

        Args:
            package: Loaded package
            results: First-pass results in declaration order
            contents: Raw data of every resource that was read successfully

        Returns:
            New result list; resources without foreign keys are unchanged
        """
        declared = set(package.resource_names())
        key_cache: Dict[Tuple[str, Tuple[str, ...]], Set[Tuple[str, ...]]] = {}
        checked = list(results)

        for index, resource in enumerate(package.resources):
            if not resource.foreign_keys or resource.name not in contents:
                continue

            errors: List[Dict[str, Any]] = []
            warnings: List[Dict[str, Any]] = []
            labels = set(self.engine.read_labels(contents[resource.name]))
            missing_values = set(resource.schema.get('missingValues', ['']))

            for foreign_key in resource.foreign_keys:
                fields = as_list(foreign_key['fields'])
                reference = foreign_key['reference']
                target = reference.get('resource') or resource.name
                target_fields = tuple(as_list(reference['fields']))

                if target not in declared:
                    warnings.append(make_error(
                        'foreign-key-target-missing',
                        f"Foreign key {fields} references resource '{target}', "
                        f"which the package does not declare"
                    ))
                    continue

                if target not in contents:
                    warnings.append(make_error(
                        'foreign-key-target-unreadable',
                        f"Foreign key {fields} not checked: '{target}' could not be read"
                    ))
                    continue

                if not set(fields) <= labels:
                    continue

                referenced = self._referenced_keys(key_cache, target, target_fields, contents[target])
                errors.extend(self._find_violations(
                    contents[resource.name], fields, target, target_fields,
                    referenced, missing_values, self.engine.max_errors - len(errors)
                ))

            if errors or warnings:
                checked[index] = checked[index].with_errors(errors, warnings)
                logger.info(f"Resource {resource.name}: {len(errors)} foreign key violations")

        return checked

    def _referenced_keys(self, cache, target: str, target_fields: Tuple[str, ...],
                         content: bytes) -> Set[Tuple[str, ...]]:
        cache_key = (target, target_fields)
        if cache_key not in cache:
            cache[cache_key] = {
                tuple(row.get(field, '') for field in target_fields)
                for _, row in self.engine.iter_rows(content)
            }
        return cache[cache_key]

    def _find_violations(self, content: bytes, fields: List[str], target: str,
                         target_fields: Tuple[str, ...], referenced: Set[Tuple[str, ...]],
                         missing_values: Set[str], limit: int) -> List[Dict[str, Any]]:
        violations = []

        for row_number, row in self.engine.iter_rows(content):
            if len(violations) >= limit:
                break

            values = tuple(row.get(field, '') for field in fields)
            if any(value in missing_values for value in values):
                continue

            if values not in referenced:
                violations.append(make_error(
                    'foreign-key-error',
                    f"{', '.join(fields)} = {', '.join(values)} has no match in "
                    f"{target}.{', '.join(target_fields)}",
                    row_number=row_number,
                    field_name=fields[0] if len(fields) == 1 else None,
                    cell=values[0] if len(values) == 1 else None
                ))

        return violations

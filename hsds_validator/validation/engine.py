"""
Table Schema conformance engine for CSV resources

Checks a CSV stream against a Frictionless Table Schema descriptor and
reports header, row, type and constraint errors. Ordinary violations are
returned in a TableReport; only an unreadable source or an unusable schema
raises SchemaEngineError.
"""

import csv
import io
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union
from urllib.parse import urlparse

from hsds_validator.errors import SchemaEngineError

Source = Union[str, Path, bytes, io.IOBase]

DEFAULT_TRUE_VALUES = ['true', 'True', 'TRUE', '1']
DEFAULT_FALSE_VALUES = ['false', 'False', 'FALSE', '0']
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
INTEGER_PATTERN = re.compile(r'[+-]?[0-9]+')
NUMBER_PATTERN = re.compile(r'[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?|NaN|INF|-INF')
YEAR_PATTERN = re.compile(r'-?[0-9]{4}')
SUPPORTED_TYPES = {
    'string', 'integer', 'number', 'boolean', 'date', 'time',
    'datetime', 'year', 'any', 'array', 'object'
}


@dataclass
class TableReport:
    """Errors and warnings found in one table"""
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class FieldSpec:
    """Prepared view of one schema field"""
    name: str
    type: str
    format: str
    constraints: Dict[str, Any]
    true_values: List[str]
    false_values: List[str]

    @property
    def required(self) -> bool:
        return bool(self.constraints.get('required'))


class ErrorLimitReached(Exception):
    pass


def as_list(value: Any) -> List[str]:
    """Normalize a field-or-fields descriptor value to a list"""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def make_error(error_type: str, message: str, row_number: Optional[int] = None,
               field_name: Optional[str] = None, field_number: Optional[int] = None,
               cell: Optional[str] = None) -> Dict[str, Any]:
    """Build a diagnostic entry, omitting empty positions"""
    entry = {
        'type': error_type,
        'message': message,
        'row_number': row_number,
        'field_name': field_name,
        'field_number': field_number,
        'cell': cell
    }
    return {key: value for key, value in entry.items() if value is not None}


def read_text(source: Source) -> str:
    """
    Read a CSV source into text

    Accepts a filesystem path, raw bytes, or a binary/text file object.

    Raises:
        SchemaEngineError: If the source cannot be read or decoded
    """
    try:
        if isinstance(source, (str, Path)):
            with open(source, 'rb') as f:
                raw = f.read()
        elif isinstance(source, (bytes, bytearray)):
            raw = bytes(source)
        elif hasattr(source, 'read'):
            raw = source.read()
        else:
            raise SchemaEngineError(f"Unsupported source type: {type(source).__name__}")

        if isinstance(raw, str):
            return raw
        return raw.decode('utf-8-sig')

    except UnicodeDecodeError as e:
        raise SchemaEngineError(f"Resource is not valid UTF-8 text: {e}", cause=e)
    except OSError as e:
        raise SchemaEngineError(f"Cannot read resource: {e.strerror or e}", cause=e)


class TableSchemaEngine:
    """
    Validates CSV data against Table Schema descriptors

    The engine holds no per-table state and can be shared across threads.
    """

    def __init__(self, max_errors: int = 1000):
        self.max_errors = max_errors

    def prepare(self, schema: Dict[str, Any]) -> Tuple[List[FieldSpec], Set[str], List[str]]:
        """
        Turn a schema descriptor into field specs, missing values and primary key

        Raises:
            SchemaEngineError: If the descriptor is not a usable Table Schema
        """
        if not isinstance(schema, dict) or not isinstance(schema.get('fields'), list):
            raise SchemaEngineError("Schema descriptor must be an object with a 'fields' list")

        specs = []
        for index, descriptor in enumerate(schema['fields'], start=1):
            if not isinstance(descriptor, dict) or not descriptor.get('name'):
                raise SchemaEngineError(f"Schema field {index} has no name")

            field_type = descriptor.get('type', 'string')
            if field_type not in SUPPORTED_TYPES:
                raise SchemaEngineError(
                    f"Field '{descriptor['name']}' has unsupported type '{field_type}'"
                )

            specs.append(FieldSpec(
                name=descriptor['name'],
                type=field_type,
                format=descriptor.get('format', 'default'),
                constraints=descriptor.get('constraints', {}) or {},
                true_values=descriptor.get('trueValues', DEFAULT_TRUE_VALUES),
                false_values=descriptor.get('falseValues', DEFAULT_FALSE_VALUES)
            ))

        missing_values = set(schema.get('missingValues', ['']))
        primary_key = as_list(schema.get('primaryKey'))

        return specs, missing_values, primary_key

    def cast(self, spec: FieldSpec, raw: str) -> Any:
        """
        Cast a raw cell to the field's logical type

        Raises:
            ValueError: If the cell does not match the type or format
        """
        field_type = spec.type

        if field_type in ('string', 'any'):
            if spec.format == 'email' and not EMAIL_PATTERN.match(raw):
                raise ValueError("not a valid email address")
            if spec.format == 'uri':
                parsed = urlparse(raw)
                if not parsed.scheme or not parsed.netloc:
                    raise ValueError("not a valid URI")
            return raw

        # int() and float() also take padding, underscores and non-ASCII digits
        if field_type == 'integer':
            if not INTEGER_PATTERN.fullmatch(raw):
                raise ValueError("not an integer")
            return int(raw)

        if field_type == 'number':
            if not NUMBER_PATTERN.fullmatch(raw):
                raise ValueError("not a number")
            return float(raw)

        if field_type == 'boolean':
            if raw in spec.true_values:
                return True
            if raw in spec.false_values:
                return False
            raise ValueError("not a boolean value")

        if field_type == 'year':
            if not YEAR_PATTERN.fullmatch(raw):
                raise ValueError("not a four digit year")
            return int(raw)

        if field_type == 'date':
            return self._parse_temporal(raw, spec.format, '%Y-%m-%d').date()

        if field_type == 'time':
            return self._parse_temporal(raw, spec.format, '%H:%M:%S').time()

        if field_type == 'datetime':
            if spec.format == 'default':
                return datetime.fromisoformat(raw.replace('Z', '+00:00'))
            return self._parse_temporal(raw, spec.format, '%Y-%m-%dT%H:%M:%S')

        if field_type in ('array', 'object'):
            value = json.loads(raw)
            expected = list if field_type == 'array' else dict
            if not isinstance(value, expected):
                raise ValueError(f"not a JSON {field_type}")
            return value

        raise ValueError(f"unsupported type {field_type}")

    @staticmethod
    def _parse_temporal(raw: str, field_format: str, default_pattern: str) -> datetime:
        if field_format == 'default':
            return datetime.strptime(raw, default_pattern)
        if field_format == 'any':
            for pattern in (default_pattern, '%Y-%m-%d', '%H:%M:%S', '%H:%M',
                            '%Y-%m-%dT%H:%M:%S', '%Y-%m-%d %H:%M:%S'):
                try:
                    return datetime.strptime(raw, pattern)
                except ValueError:
                    continue
            raise ValueError("unrecognised temporal value")
        return datetime.strptime(raw, field_format)

    def _constraint_value(self, spec: FieldSpec, value: Any) -> Any:
        """Cast a constraint bound written as a string for temporal fields"""
        if isinstance(value, str) and spec.type in ('date', 'time', 'datetime', 'integer', 'number', 'year'):
            return self.cast(spec, value)
        return value

    def check_constraints(self, spec: FieldSpec, raw: str, value: Any) -> List[str]:
        """Return messages for every constraint the cast value violates"""
        problems = []
        constraints = spec.constraints

        if 'enum' in constraints:
            allowed = [self._constraint_value(spec, item) for item in constraints['enum']]
            if value not in allowed:
                problems.append(f"value is not one of {constraints['enum']}")

        if 'minLength' in constraints and hasattr(value, '__len__'):
            if len(value) < constraints['minLength']:
                problems.append(f"length is less than {constraints['minLength']}")

        if 'maxLength' in constraints and hasattr(value, '__len__'):
            if len(value) > constraints['maxLength']:
                problems.append(f"length is more than {constraints['maxLength']}")

        if 'minimum' in constraints:
            if value < self._constraint_value(spec, constraints['minimum']):
                problems.append(f"value is less than {constraints['minimum']}")

        if 'maximum' in constraints:
            if value > self._constraint_value(spec, constraints['maximum']):
                problems.append(f"value is more than {constraints['maximum']}")

        if 'pattern' in constraints:
            if not re.fullmatch(constraints['pattern'], raw):
                problems.append(f"value does not match pattern {constraints['pattern']}")

        return problems

    def validate(self, source: Source, schema: Dict[str, Any]) -> TableReport:
        """
        Validate one CSV source against a Table Schema

        Args:
            source: Path, bytes or file object holding CSV data
            schema: Table Schema descriptor

        Returns:
            TableReport with errors (validity-affecting) and warnings

        Raises:
            SchemaEngineError: If the source is unreadable or the schema unusable
        """
        specs, missing_values, primary_key = self.prepare(schema)
        report = TableReport()

        def add_error(entry: Dict[str, Any]):
            report.errors.append(entry)
            if len(report.errors) >= self.max_errors:
                raise ErrorLimitReached()

        rows = self._reader(read_text(source))

        try:
            header = next(rows, None)
            if header is None or not any(label.strip() for label in header):
                add_error(make_error('blank-header', "Header row is missing or empty", row_number=1))
                return report

            labels = [label.strip() for label in header]
            positions = self._check_header(labels, specs, report, add_error)
            self._check_rows(rows, labels, specs, positions, missing_values,
                             primary_key, report, add_error)

        except ErrorLimitReached:
            report.warnings.append(make_error(
                'error-limit',
                f"Stopped after {self.max_errors} errors; remaining rows were not checked"
            ))
        except csv.Error as e:
            raise SchemaEngineError(f"Malformed CSV data: {e}", cause=e)

        return report

    @staticmethod
    def _reader(text: str) -> Iterator[List[str]]:
        return csv.reader(io.StringIO(text, newline=''))

    def _check_header(self, labels, specs, report, add_error) -> Dict[str, int]:
        """Map schema fields to column positions and report header problems"""
        positions: Dict[str, int] = {}

        for number, label in enumerate(labels, start=1):
            if not label:
                add_error(make_error('blank-label', f"Column {number} has a blank label",
                                     row_number=1, field_number=number))
            elif label in positions:
                add_error(make_error('duplicate-label', f"Label '{label}' is duplicated",
                                     row_number=1, field_name=label, field_number=number))
            else:
                positions[label] = number - 1

        known = {spec.name for spec in specs}
        for spec in specs:
            if spec.name in positions:
                continue
            entry = make_error('missing-label', f"Column '{spec.name}' is missing",
                               row_number=1, field_name=spec.name)
            if spec.required:
                add_error(entry)
            else:
                report.warnings.append(entry)

        for label, index in positions.items():
            if label not in known:
                report.warnings.append(make_error(
                    'extra-label', f"Column '{label}' is not defined in the schema",
                    row_number=1, field_name=label, field_number=index + 1
                ))

        return positions

    def _check_rows(self, rows, labels, specs, positions, missing_values,
                    primary_key, report, add_error):
        unique_fields = [
            spec.name for spec in specs
            if spec.constraints.get('unique') and spec.name in positions
            and primary_key != [spec.name]
        ]
        seen_unique: Dict[str, Dict[Any, int]] = {name: {} for name in unique_fields}
        seen_keys: Dict[Tuple, int] = {}
        key_present = all(name in positions for name in primary_key)

        for row_number, row in enumerate(rows, start=2):
            report.row_count += 1

            if not any(cell.strip() for cell in row):
                add_error(make_error('blank-row', "Row is completely blank", row_number=row_number))
                continue

            for index in range(len(labels), len(row)):
                add_error(make_error('extra-cell', f"Row has an extra cell in column {index + 1}",
                                     row_number=row_number, field_number=index + 1, cell=row[index]))

            for index in range(len(row), len(labels)):
                add_error(make_error('missing-cell', f"Row has no cell for column '{labels[index]}'",
                                     row_number=row_number, field_name=labels[index] or None,
                                     field_number=index + 1))

            values: Dict[str, Any] = {}
            for spec in specs:
                index = positions.get(spec.name)
                if index is None or index >= len(row):
                    continue

                raw = row[index]
                field_number = index + 1

                if raw in missing_values:
                    values[spec.name] = None
                    if spec.required or spec.name in primary_key:
                        add_error(make_error(
                            'constraint-error', f"Field '{spec.name}' is required",
                            row_number=row_number, field_name=spec.name,
                            field_number=field_number, cell=raw
                        ))
                    continue

                try:
                    value = self.cast(spec, raw)
                except (ValueError, TypeError) as e:
                    add_error(make_error(
                        'type-error', f"Value '{raw}' is not a valid {spec.type}: {e}",
                        row_number=row_number, field_name=spec.name,
                        field_number=field_number, cell=raw
                    ))
                    continue

                values[spec.name] = value
                for problem in self.check_constraints(spec, raw, value):
                    add_error(make_error(
                        'constraint-error', f"Field '{spec.name}': {problem}",
                        row_number=row_number, field_name=spec.name,
                        field_number=field_number, cell=raw
                    ))

            for name in unique_fields:
                value = values.get(name)
                if value is None:
                    continue
                if isinstance(value, (list, dict)):
                    value = json.dumps(value, sort_keys=True)
                first = seen_unique[name].setdefault(value, row_number)
                if first != row_number:
                    add_error(make_error(
                        'unique-error', f"Field '{name}' value duplicates row {first}",
                        row_number=row_number, field_name=name,
                        field_number=positions[name] + 1, cell=str(row[positions[name]])
                    ))

            if primary_key and key_present:
                key = tuple(values.get(name) for name in primary_key)
                if None not in key:
                    first = seen_keys.setdefault(key, row_number)
                    if first != row_number:
                        add_error(make_error(
                            'primary-key-error',
                            f"Primary key {primary_key} duplicates row {first}",
                            row_number=row_number
                        ))

    def iter_rows(self, source: Source) -> Iterator[Tuple[int, Dict[str, str]]]:
        """
        Yield (row number, label -> raw cell) pairs for each data row

        Blank rows are skipped. Used by cross-resource checks.
        """
        rows = self._reader(read_text(source))
        try:
            header = next(rows, None)
            if header is None:
                return
            labels = [label.strip() for label in header]
            for row_number, row in enumerate(rows, start=2):
                if not any(cell.strip() for cell in row):
                    continue
                yield row_number, {label: row[index] if index < len(row) else ''
                                   for index, label in enumerate(labels) if label}
        except csv.Error as e:
            raise SchemaEngineError(f"Malformed CSV data: {e}", cause=e)

    def read_labels(self, source: Source) -> List[str]:
        """Return the stripped header labels of a CSV source"""
        try:
            header = next(self._reader(read_text(source)), None)
        except csv.Error as e:
            raise SchemaEngineError(f"Malformed CSV data: {e}", cause=e)
        return [label.strip() for label in header] if header else []

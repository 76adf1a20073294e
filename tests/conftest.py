"""Shared pytest fixtures: schemas, sample CSV builders, archives and packages."""

import csv
import io
import json
import zipfile

import pytest

from hsds_validator.settings import Settings, BUNDLED_DATAPACKAGE
from hsds_validator.validation.engine import TableSchemaEngine
from hsds_validator.validation.registry import SchemaRegistry
from hsds_validator.validation.validators import ResourceValidator


def sample_value(field, row):
    """A cell value that satisfies the field's type and constraints."""
    constraints = field.get('constraints', {})
    field_type = field.get('type', 'string')

    if 'enum' in constraints:
        return str(constraints['enum'][0])
    if field_type == 'integer':
        return str(constraints.get('minimum', 1))
    if field_type == 'number':
        return '10.5'
    if field_type == 'boolean':
        return 'true'
    if field_type == 'date':
        return '2020-01-01'
    if field_type == 'time':
        return '09:00:00'
    if field_type == 'datetime':
        return '2020-01-01T09:00:00Z'
    if field_type == 'year':
        return '2001'
    if field.get('format') == 'email':
        return f'info{row}@example.org'
    if field.get('format') == 'uri':
        return 'https://example.org'

    value = f"{field['name']}-{row}"
    if 'maxLength' in constraints:
        value = value[:constraints['maxLength']]
    return value


def render_csv(header, rows):
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue().encode('utf-8')


@pytest.fixture(scope='session')
def registry():
    return SchemaRegistry.from_path(str(BUNDLED_DATAPACKAGE))


@pytest.fixture
def engine():
    return TableSchemaEngine(max_errors=1000)


@pytest.fixture
def validator(registry, engine):
    return ResourceValidator(registry, engine)


@pytest.fixture
def make_csv(registry):
    """Build conformant CSV bytes for a resource, optionally dropping columns or overriding cells."""

    def build(resource_name, rows=2, drop=(), overrides=None):
        fields = [f for f in registry.get(resource_name)['fields'] if f['name'] not in drop]
        header = [f['name'] for f in fields]
        body = []
        for row in range(1, rows + 1):
            values = {f['name']: sample_value(f, row) for f in fields}
            values.update((overrides or {}).get(row, {}))
            body.append([values[name] for name in header])
        return render_csv(header, body)

    return build


@pytest.fixture
def make_zip():
    """Build zip archive bytes from a name -> content mapping."""

    def build(files):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zf:
            for name, content in files.items():
                zf.writestr(name, content)
        return buffer.getvalue()

    return build


@pytest.fixture
def corrupt_zip(make_zip):
    """Archive whose deflated entry has scrambled compressed bytes"""
    name = 'service.csv'
    rows = ''.join(f'svc-{n},Food {n},active\n' for n in range(500))
    archive = bytearray(make_zip({name: ('id,name,status\n' + rows).encode()}))
    # local file header is 30 bytes plus the name; compressed data follows
    start = 30 + len(name)
    for offset in range(start, start + 20):
        archive[offset] ^= 0xFF
    return bytes(archive)


@pytest.fixture
def clashing_zip(make_zip):
    """Archive with a file entry that is also used as a directory"""
    return make_zip({'data': b'plain file', 'data/service.csv': b'id\n1\n'})


@pytest.fixture
def test_settings(tmp_path):
    workspace_root = tmp_path / 'workspaces'
    workspace_root.mkdir()
    return Settings(
        datapackage_path=str(BUNDLED_DATAPACKAGE),
        workspace_root=str(workspace_root),
        max_workers=2,
        max_archive_bytes=10 * 1024 * 1024,
        max_archive_entries=100,
        max_extracted_bytes=50 * 1024 * 1024,
        max_errors=1000,
        http_timeout=5,
        http_retries=0
    )


ORGANIZATION_CSV = (
    "id,name,description\n"
    "org-1,Food Bank,Emergency food\n"
    "org-2,Shelter,Night shelter\n"
)

SERVICE_CSV = (
    "id,organization_id,name,status\n"
    "svc-1,org-1,Groceries,active\n"
    "svc-2,org-2,Beds,active\n"
)

SERVICE_BROKEN_FK_CSV = (
    "id,organization_id,name,status\n"
    "svc-1,org-1,Groceries,active\n"
    "svc-2,org-404,Beds,active\n"
)


@pytest.fixture
def make_package(tmp_path):
    """Write a local data package; returns the descriptor path."""

    def build(files, resources, name='test-package'):
        package_dir = tmp_path / name
        package_dir.mkdir()
        for file_name, content in files.items():
            target = package_dir / file_name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding='utf-8')
        descriptor = {'name': name, 'resources': resources}
        descriptor_path = package_dir / 'datapackage.json'
        descriptor_path.write_text(json.dumps(descriptor), encoding='utf-8')
        return descriptor_path

    return build


@pytest.fixture
def org_service_package(make_package):
    """Package of organization + service relying on the bundled schemas."""

    def build(service_csv=SERVICE_CSV):
        return make_package(
            {'organization.csv': ORGANIZATION_CSV, 'service.csv': service_csv},
            [
                {'name': 'organization', 'path': 'organization.csv'},
                {'name': 'service', 'path': 'service.csv'},
            ]
        )

    return build

"""Tests for data package loading and validation"""

import json

import pytest

from hsds_validator.api.client import PermanentError, ResourceClient
from hsds_validator.api.models import package_is_valid
from hsds_validator.errors import DescriptorLoadError
from hsds_validator.validation.package import DataPackage, PackageValidator

from conftest import ORGANIZATION_CSV, SERVICE_BROKEN_FK_CSV


class FakeRemoteClient(ResourceClient):
    """Serves remote URLs from memory"""

    def __init__(self, documents):
        super().__init__(max_retries=0)
        self.documents = documents
        self.requested = []

    def _get(self, url):
        self.requested.append(url)
        if url not in self.documents:
            raise PermanentError(f"404 Not Found: {url}")
        return self.documents[url]


@pytest.fixture
def package_validator(validator, registry):
    return PackageValidator(validator, ResourceClient(max_retries=0), registry, max_workers=2)


def test_valid_package(package_validator, org_service_package):
    results = package_validator.validate_package(str(org_service_package()))

    assert [r.resource_name for r in results] == ['organization', 'service']
    assert package_is_valid(results)
    assert results[1].row_count == 2


def test_directory_uri_is_accepted(package_validator, org_service_package):
    descriptor = org_service_package()

    results = package_validator.validate_package(str(descriptor.parent))

    assert package_is_valid(results)


def test_relations_are_only_checked_on_request(package_validator, org_service_package):
    uri = str(org_service_package(SERVICE_BROKEN_FK_CSV))

    without = package_validator.validate_package(uri, relations=False)
    with_relations = package_validator.validate_package(uri, relations=True)

    assert package_is_valid(without)
    assert not package_is_valid(with_relations)

    organization, service = with_relations
    assert organization.valid
    assert not service.valid
    assert [e['type'] for e in service.errors] == ['foreign-key-error']
    assert service.errors[0]['row_number'] == 3
    assert service.errors[0]['cell'] == 'org-404'
    # program is referenced by the schema but not declared by the package
    assert 'foreign-key-target-missing' in [w['type'] for w in service.warnings]


def test_relations_pass_keeps_valid_package_valid(package_validator, org_service_package):
    results = package_validator.validate_package(str(org_service_package()), relations=True)

    assert package_is_valid(results)


def test_empty_foreign_key_values_are_skipped(package_validator, make_package):
    uri = make_package(
        {'organization.csv': ORGANIZATION_CSV,
         'location.csv': 'id,organization_id,name\nloc-1,,Depot\nloc-2,org-1,Office\n'},
        [{'name': 'organization', 'path': 'organization.csv'},
         {'name': 'location', 'path': 'location.csv'}]
    )

    results = package_validator.validate_package(str(uri), relations=True)

    assert package_is_valid(results)


def test_self_referencing_foreign_key(package_validator, make_package):
    uri = make_package(
        {'taxonomy.csv': 'id,name,parent_id\nt-1,Food,\nt-2,Groceries,t-1\nt-3,Meals,t-9\n'},
        [{'name': 'taxonomy', 'path': 'taxonomy.csv'}]
    )

    (taxonomy,) = package_validator.validate_package(str(uri), relations=True)

    assert not taxonomy.valid
    assert [(e['type'], e['row_number']) for e in taxonomy.errors] == [('foreign-key-error', 4)]


def test_unreadable_resource_fails_alone(package_validator, make_package):
    uri = make_package(
        {'organization.csv': ORGANIZATION_CSV},
        [{'name': 'organization', 'path': 'organization.csv'},
         {'name': 'service', 'path': 'service.csv'}]
    )

    organization, service = package_validator.validate_package(str(uri), relations=True)

    assert organization.valid
    assert not service.valid
    assert service.reason == 'resource data could not be read'


def test_unreadable_target_is_a_warning(package_validator, make_package):
    uri = make_package(
        {'service.csv': SERVICE_BROKEN_FK_CSV},
        [{'name': 'organization', 'path': 'organization.csv'},
         {'name': 'service', 'path': 'service.csv'}]
    )

    organization, service = package_validator.validate_package(str(uri), relations=True)

    assert not organization.valid
    assert service.valid
    assert 'foreign-key-target-unreadable' in [w['type'] for w in service.warnings]


def test_inline_and_referenced_schemas(package_validator, make_package):
    schema = {'fields': [{'name': 'code', 'type': 'integer', 'constraints': {'required': True}}]}
    uri = make_package(
        {'codes.csv': 'code\n1\n2\n',
         'more.csv': 'code\n3\nthree\n',
         'schemas/code.json': json.dumps(schema)},
        [{'name': 'codes', 'path': 'codes.csv', 'schema': schema},
         {'name': 'more_codes', 'path': 'more.csv', 'schema': 'schemas/code.json'}]
    )

    codes, more_codes = package_validator.validate_package(str(uri))

    assert codes.valid
    assert not more_codes.valid
    assert more_codes.errors[0]['type'] == 'type-error'


def test_remote_package(validator, registry):
    base = 'https://data.example.org/hsds/'
    client = FakeRemoteClient({
        base + 'datapackage.json': json.dumps({
            'name': 'remote',
            'resources': [
                {'name': 'organization', 'path': 'organization.csv'},
                {'name': 'service', 'path': 'https://cdn.example.org/service.csv'},
            ]
        }).encode(),
        base + 'organization.csv': ORGANIZATION_CSV.encode(),
        'https://cdn.example.org/service.csv': SERVICE_BROKEN_FK_CSV.encode(),
    })

    results = PackageValidator(validator, client, registry).validate_package(
        base + 'datapackage.json', relations=True)

    assert [r.valid for r in results] == [True, False]
    assert 'https://cdn.example.org/service.csv' in client.requested


def test_progress_callback(validator, registry, org_service_package):
    calls = []
    package_validator = PackageValidator(validator, ResourceClient(), registry, max_workers=1,
                                         progress_callback=lambda done, total: calls.append((done, total)))

    package_validator.validate_package(str(org_service_package()))

    assert calls == [(1, 2), (2, 2)]


@pytest.mark.parametrize('descriptor', [
    'not json at all',
    json.dumps(['a', 'list']),
    json.dumps({'name': 'empty', 'resources': []}),
    json.dumps({'resources': [{'path': 'service.csv'}]}),
    json.dumps({'resources': [{'name': 'service'}]}),
    json.dumps({'resources': [{'name': 'service', 'path': ['a.csv', 'b.csv']}]}),
    json.dumps({'resources': [{'name': 'service', 'path': '../service.csv'}]}),
    json.dumps({'resources': [{'name': 'service', 'path': '/etc/service.csv'}]}),
    json.dumps({'resources': [{'name': 'widgets', 'path': 'widgets.csv'}]}),
    json.dumps({'resources': [{'name': 'x', 'path': 'x.csv', 'schema': {'fields': 'id'}}]}),
    json.dumps({'resources': [{'name': 'x', 'path': 'x.csv', 'schema': 'missing.json'}]}),
    json.dumps({'resources': [
        {'name': 'x', 'path': 'x.csv', 'schema': {'fields': [], 'foreignKeys': [{'fields': 'a'}]}}
    ]}),
    json.dumps({'resources': [
        {'name': 'service', 'path': 'a.csv'},
        {'name': 'service', 'path': 'b.csv'},
    ]}),
])
def test_bad_descriptors_are_rejected(package_validator, tmp_path, descriptor):
    path = tmp_path / 'datapackage.json'
    path.write_text(descriptor, encoding='utf-8')

    with pytest.raises(DescriptorLoadError):
        package_validator.validate_package(str(path))


def test_unreachable_descriptor(package_validator, tmp_path):
    with pytest.raises(DescriptorLoadError, match='Unreachable'):
        package_validator.validate_package(str(tmp_path / 'nowhere.json'))

    with pytest.raises(DescriptorLoadError):
        package_validator.validate_package('   ')


def test_loaded_package_resolves_paths(registry, org_service_package):
    descriptor = org_service_package()

    package = DataPackage.load(str(descriptor), ResourceClient(), registry)

    assert package.name == 'test-package'
    assert package.resource_names() == ['organization', 'service']
    assert package.resources[1].uri == str(descriptor.parent / 'service.csv')
    assert package.resources[1].foreign_keys[0]['reference']['resource'] == 'organization'

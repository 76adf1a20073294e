"""Tests for the batch orchestrator"""

from unittest.mock import patch

import pytest

from hsds_validator.api.models import ABSENT, AbsentResource, ValidationResult, batch_to_dict
from hsds_validator.storage.workspace import ArchiveIntake
from hsds_validator.validation.batch import BatchOrchestrator
from hsds_validator.validation.catalog import RESOURCE_CATALOG


@pytest.fixture
def intake(tmp_path):
    return ArchiveIntake(tmp_path / 'workspaces')


def run_batch(intake, orchestrator, archive):
    with intake.expand(archive) as workspace:
        return orchestrator.validate_batch(workspace)


def test_every_catalog_resource_has_an_entry(intake, validator, make_csv, make_zip):
    archive = make_zip({
        'service.csv': make_csv('service'),
        'phone.csv': make_csv('phone'),
        'unrelated.csv': b'a,b\n1,2\n',
    })

    batch = run_batch(intake, BatchOrchestrator(validator), archive)

    assert list(batch) == RESOURCE_CATALOG.names()
    assert batch['service'].valid
    assert batch['phone'].valid
    assert batch['contact'] is ABSENT
    absent = [name for name, outcome in batch.items() if isinstance(outcome, AbsentResource)]
    assert len(absent) == len(RESOURCE_CATALOG) - 2


def test_absent_resource_serialization(intake, validator, make_zip):
    batch = run_batch(intake, BatchOrchestrator(validator), make_zip({'readme.txt': b'hello'}))

    assert batch_to_dict(batch)['taxonomy'] == {'valid': False, 'reason': 'resource file not found'}


def test_payment_accepted_uses_plural_file_name(intake, validator, make_csv, make_zip):
    archive = make_zip({'payments_accepted.csv': make_csv('payment_accepted')})

    batch = run_batch(intake, BatchOrchestrator(validator), archive)

    assert isinstance(batch['payment_accepted'], ValidationResult)
    assert batch['payment_accepted'].valid


def test_nested_files_are_found(intake, validator, make_csv, make_zip):
    archive = make_zip({'export/2024/location.csv': make_csv('location')})

    batch = run_batch(intake, BatchOrchestrator(validator), archive)

    assert batch['location'].valid


def test_one_invalid_resource_does_not_affect_others(intake, validator, make_csv, make_zip):
    files = {
        'service.csv': make_csv('service'),
        'phone.csv': make_csv('phone'),
        'contact.csv': make_csv('contact'),
    }
    baseline = run_batch(intake, BatchOrchestrator(validator), make_zip(files))

    files['phone.csv'] = b'id,number\n\xff\xfe,1\n'
    broken = run_batch(intake, BatchOrchestrator(validator), make_zip(files))

    assert not broken['phone'].valid
    assert broken['phone'].reason == 'validation could not be completed'
    for name in ('service', 'contact'):
        assert broken[name].to_dict() == baseline[name].to_dict()


def test_unexpected_fault_is_contained(intake, validator, make_csv, make_zip):
    archive = make_zip({'service.csv': make_csv('service'), 'phone.csv': make_csv('phone')})
    real_validate = validator.validate

    def flaky(source, schema_name, resource_name=None):
        if schema_name == 'phone':
            raise RuntimeError('engine exploded')
        return real_validate(source, schema_name, resource_name)

    with patch.object(validator, 'validate', side_effect=flaky):
        batch = run_batch(intake, BatchOrchestrator(validator, max_workers=1), archive)

    assert batch['service'].valid
    assert not batch['phone'].valid
    assert batch['phone'].errors[0]['message'] == 'engine exploded'


def test_parallel_and_sequential_agree(intake, validator, make_csv, make_zip):
    files = {f"{d.expected_file_name}": make_csv(d.name) for d in RESOURCE_CATALOG}
    files['phone.csv'] = make_csv('phone', overrides={1: {'type': 'pigeon'}})
    archive = make_zip(files)

    sequential = run_batch(intake, BatchOrchestrator(validator, max_workers=1), archive)
    parallel = run_batch(intake, BatchOrchestrator(validator, max_workers=8), archive)

    assert list(parallel) == list(sequential)
    assert batch_to_dict(parallel) == batch_to_dict(sequential)
    assert not parallel['phone'].valid


def test_progress_callback_reaches_total(intake, validator, make_csv, make_zip):
    calls = []
    orchestrator = BatchOrchestrator(validator, max_workers=2,
                                     progress_callback=lambda done, total: calls.append((done, total)))

    run_batch(intake, orchestrator, make_zip({'service.csv': make_csv('service'),
                                              'phone.csv': make_csv('phone')}))

    total = len(RESOURCE_CATALOG)
    assert calls[0] == (total - 2, total)
    assert calls[-1] == (total, total)

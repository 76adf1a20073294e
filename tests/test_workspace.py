"""Tests for archive intake and workspaces"""

import io
import stat
import zipfile

import pytest

from hsds_validator.errors import IntakeError
from hsds_validator.storage.workspace import ArchiveIntake


@pytest.fixture
def intake(tmp_path):
    return ArchiveIntake(tmp_path / 'root', max_archive_bytes=1024 * 1024,
                         max_entries=10, max_extracted_bytes=1024 * 1024)


def root_contents(intake):
    return sorted(p.name for p in intake.workspace_root.iterdir())


def test_expand_and_cleanup(intake, make_zip):
    archive = make_zip({'service.csv': b'id\n1\n', 'nested/phone.csv': b'id\n1\n'})

    with intake.expand(archive) as workspace:
        assert workspace.path.is_dir()
        assert [p.name for p in workspace.files()] == ['phone.csv', 'service.csv']
        # only the workspace remains; the temporary archive is gone
        assert root_contents(intake) == [workspace.path.name]

    assert not workspace.path.exists()
    assert root_contents(intake) == []


def test_expand_accepts_streams(intake, make_zip):
    with intake.expand(io.BytesIO(make_zip({'service.csv': b'id\n1\n'}))) as workspace:
        assert workspace.find('service.csv') is not None


def test_each_request_gets_its_own_workspace(intake, make_zip):
    archive = make_zip({'service.csv': b'id\n1\n'})

    with intake.expand(archive) as first, intake.expand(archive) as second:
        assert first.path != second.path
        assert first.request_id != second.request_id


def test_cleanup_is_idempotent(intake, make_zip):
    workspace = intake.expand(make_zip({'a.csv': b'x'}))

    workspace.cleanup()
    workspace.cleanup()

    assert workspace.closed
    assert not workspace.path.exists()


def test_find_prefers_root_then_shallowest(intake, make_zip):
    archive = make_zip({
        'deep/deeper/service.csv': b'deep',
        'data/service.csv': b'shallow',
        'data/phone.csv': b'phone',
        'phone.csv': b'root',
        '__MACOSX/data/._contact.csv': b'junk',
    })

    with intake.expand(archive) as workspace:
        assert workspace.find('service.csv').read_bytes() == b'shallow'
        assert workspace.find('phone.csv').read_bytes() == b'root'
        assert workspace.find('._contact.csv') is None
        assert workspace.find('contact.csv') is None


@pytest.mark.parametrize('payload,message', [
    (None, 'missing'),
    (b'', 'empty'),
    (b'this is not a zip archive', 'not a valid zip'),
])
def test_rejects_bad_payloads(intake, payload, message):
    with pytest.raises(IntakeError, match=message):
        intake.expand(payload)

    if intake.workspace_root.exists():
        assert root_contents(intake) == []


@pytest.mark.parametrize('entry', [
    '../evil.csv',
    'data/../../evil.csv',
    '/etc/evil.csv',
    'C:/evil.csv',
])
def test_rejects_unsafe_entry_names(intake, make_zip, tmp_path, entry):
    with pytest.raises(IntakeError):
        intake.expand(make_zip({entry: b'x'}))

    assert not (tmp_path / 'evil.csv').exists()
    assert root_contents(intake) == []


def test_rejects_corrupt_entries(intake, corrupt_zip):
    with pytest.raises(IntakeError):
        intake.expand(corrupt_zip)

    assert root_contents(intake) == []


def test_rejects_clashing_entry_names(intake, clashing_zip):
    with pytest.raises(IntakeError, match='cannot be extracted'):
        intake.expand(clashing_zip)

    assert root_contents(intake) == []


def test_rejects_symlink_entries(intake):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as zf:
        link = zipfile.ZipInfo('service.csv')
        link.external_attr = (stat.S_IFLNK | 0o777) << 16
        zf.writestr(link, '/etc/passwd')

    with pytest.raises(IntakeError, match='symbolic link'):
        intake.expand(buffer.getvalue())


def test_rejects_archives_over_limits(tmp_path, make_zip):
    many = make_zip({f'{n}.csv': b'x' for n in range(11)})
    large = make_zip({'big.csv': b'0' * 4096})

    with pytest.raises(IntakeError, match='entries'):
        ArchiveIntake(tmp_path, max_entries=10).expand(many)

    with pytest.raises(IntakeError, match='expands'):
        ArchiveIntake(tmp_path, max_extracted_bytes=1024).expand(large)

    with pytest.raises(IntakeError, match='exceeds'):
        ArchiveIntake(tmp_path, max_archive_bytes=10).expand(large)

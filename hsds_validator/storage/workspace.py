"""
Archive intake and per-request workspaces

An uploaded archive is written to a uniquely named temporary file, checked,
and expanded into a uniquely named workspace directory. The workspace is a
context manager and removes itself on exit, whatever the outcome.
"""

import logging
import re
import shutil
import stat
import uuid
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import BinaryIO, List, Optional, Union

from hsds_validator.errors import IntakeError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
IGNORED_DIRECTORIES = {'__MACOSX'}


class Workspace:
    """
    Directory holding one request's expanded archive

    Owned by a single request. Use as a context manager so the directory is
    removed once validation finishes or fails.
    """

    def __init__(self, path: Path, request_id: str):
        self.path = path
        self.request_id = request_id
        self.closed = False

    def __enter__(self) -> 'Workspace':
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.cleanup()
        return False

    def _ignored(self, candidate: Path) -> bool:
        parts = candidate.relative_to(self.path).parts
        return any(part in IGNORED_DIRECTORIES or part.startswith('.') for part in parts)

    def files(self) -> List[Path]:
        """All extracted files, relative order by path"""
        return sorted(
            p for p in self.path.rglob('*')
            if p.is_file() and not self._ignored(p)
        )

    def find(self, file_name: str) -> Optional[Path]:
        """
        Locate an extracted file by name

        A file at the workspace root wins; otherwise the shallowest match at
        any depth, ties broken by path.
        """
        direct = self.path / file_name
        if direct.is_file():
            return direct

        candidates = [
            p for p in self.path.rglob(file_name)
            if p.is_file() and not self._ignored(p)
        ]
        if not candidates:
            return None

        candidates.sort(key=lambda p: (len(p.relative_to(self.path).parts), str(p)))
        return candidates[0]

    def cleanup(self):
        """Remove the workspace directory (idempotent)"""
        if self.closed:
            return
        shutil.rmtree(self.path, ignore_errors=True)
        self.closed = True
        logger.debug(f"Removed workspace {self.path}")


class ArchiveIntake:
    """
    Accepts uploaded zip archives and expands them into fresh workspaces

    Entries are checked before anything is written: absolute or
    drive-qualified names, ``..`` components and symlinks are rejected, as
    are archives over the entry-count or uncompressed-size limits.
    """

    def __init__(self,
                 workspace_root: Union[str, Path],
                 max_archive_bytes: int = 100 * 1024 * 1024,
                 max_entries: int = 1000,
                 max_extracted_bytes: int = 500 * 1024 * 1024):
        """
        Initialize archive intake

        Args:
            workspace_root: Directory under which temp files and workspaces are made
            max_archive_bytes: Largest accepted upload
            max_entries: Largest accepted number of archive entries
            max_extracted_bytes: Largest accepted total uncompressed size
        """
        self.workspace_root = Path(workspace_root)
        self.max_archive_bytes = max_archive_bytes
        self.max_entries = max_entries
        self.max_extracted_bytes = max_extracted_bytes

    def expand(self, archive: Union[bytes, BinaryIO, None]) -> Workspace:
        """
        Persist and expand an uploaded archive

        Args:
            archive: Raw archive bytes or a binary stream

        Returns:
            Workspace holding the extracted files; the caller must clean it up

        Raises:
            IntakeError: Payload missing, not a zip archive, or unsafe to extract
        """
        if archive is None:
            raise IntakeError("Archive payload is missing")

        self.workspace_root.mkdir(parents=True, exist_ok=True)
        request_id = uuid.uuid4().hex
        archive_path = self.workspace_root / f"hsds-upload-{request_id}.zip"
        workspace_path = self.workspace_root / f"hsds-workspace-{request_id}"

        try:
            self._persist(archive, archive_path)
            workspace_path.mkdir()
            workspace = Workspace(workspace_path, request_id)

            try:
                self._extract(archive_path, workspace_path)
            except BaseException:
                workspace.cleanup()
                raise

            logger.info(f"Expanded archive into workspace {workspace_path}",
                        extra={'ctx_request_id': request_id})
            return workspace

        finally:
            archive_path.unlink(missing_ok=True)

    def _persist(self, archive: Union[bytes, BinaryIO], archive_path: Path):
        """Write the upload to its temporary file, enforcing the size limit"""
        written = 0

        with open(archive_path, 'wb') as f:
            if isinstance(archive, (bytes, bytearray)):
                written = len(archive)
                if written > self.max_archive_bytes:
                    raise IntakeError(f"Archive exceeds {self.max_archive_bytes} bytes")
                f.write(archive)
            else:
                for chunk in iter(lambda: archive.read(CHUNK_SIZE), b''):
                    written += len(chunk)
                    if written > self.max_archive_bytes:
                        raise IntakeError(f"Archive exceeds {self.max_archive_bytes} bytes")
                    f.write(chunk)

        if written == 0:
            raise IntakeError("Archive payload is empty")

    def _extract(self, archive_path: Path, workspace_path: Path):
        try:
            with zipfile.ZipFile(archive_path) as zf:
                members = zf.infolist()
                self._check_members(members)
                self._extract_members(zf, members, workspace_path.resolve())
        except zipfile.BadZipFile as e:
            raise IntakeError(f"Payload is not a valid zip archive: {e}", cause=e)
        except (zipfile.LargeZipFile, NotImplementedError, RuntimeError) as e:
            raise IntakeError(f"Archive cannot be extracted: {e}", cause=e)
        except (zlib.error, EOFError) as e:
            raise IntakeError(f"Archive entry is corrupt: {e}", cause=e)
        except OSError as e:
            # entry names that clash with an existing file or directory
            raise IntakeError(f"Archive cannot be extracted: {e.strerror or e}", cause=e)

    def _check_members(self, members: List[zipfile.ZipInfo]):
        """Reject traversal, symlinks and oversized archives before extracting"""
        if len(members) > self.max_entries:
            raise IntakeError(f"Archive has {len(members)} entries; limit is {self.max_entries}")

        declared = sum(member.file_size for member in members)
        if declared > self.max_extracted_bytes:
            raise IntakeError(f"Archive expands to {declared} bytes; limit is {self.max_extracted_bytes}")

        for member in members:
            name = member.filename.replace('\\', '/')
            if name.startswith('/') or re.match(r'^[A-Za-z]:', name):
                raise IntakeError(f"Archive entry has an absolute path: {member.filename}",
                                  details={'entry': member.filename})
            if '..' in PurePosixPath(name).parts:
                raise IntakeError(f"Archive entry escapes the workspace: {member.filename}",
                                  details={'entry': member.filename})
            if stat.S_ISLNK(member.external_attr >> 16):
                raise IntakeError(f"Archive entry is a symbolic link: {member.filename}",
                                  details={'entry': member.filename})

    def _extract_members(self, zf: zipfile.ZipFile, members: List[zipfile.ZipInfo],
                         workspace_path: Path):
        extracted = 0

        for member in members:
            target = (workspace_path / member.filename.replace('\\', '/')).resolve()
            try:
                target.relative_to(workspace_path)
            except ValueError:
                raise IntakeError(f"Archive entry escapes the workspace: {member.filename}",
                                  details={'entry': member.filename})

            if member.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(member) as src, open(target, 'wb') as dst:
                for chunk in iter(lambda: src.read(CHUNK_SIZE), b''):
                    extracted += len(chunk)
                    if extracted > self.max_extracted_bytes:
                        raise IntakeError(f"Archive expands beyond {self.max_extracted_bytes} bytes")
                    dst.write(chunk)

"""
Runtime configuration loaded from environment variables

Values may also be supplied through a ``config.env`` file in the working
directory, which is loaded with python-dotenv before the environment is read.
"""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

BUNDLED_DATAPACKAGE = Path(__file__).parent / "data" / "datapackage.json"


@dataclass(frozen=True)
class Settings:
    datapackage_path: str
    workspace_root: str
    max_workers: int
    max_archive_bytes: int
    max_archive_entries: int
    max_extracted_bytes: int
    max_errors: int
    http_timeout: float
    http_retries: int


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw.strip())


def load_settings_from_env() -> Settings:
    """Build settings from ``config.env`` and the process environment"""
    load_dotenv('config.env')

    return Settings(
        datapackage_path=os.getenv('HSDS_DATAPACKAGE_PATH', '').strip() or str(BUNDLED_DATAPACKAGE),
        workspace_root=os.getenv('HSDS_WORKSPACE_ROOT', '').strip() or tempfile.gettempdir(),
        max_workers=max(1, _get_env_int('HSDS_MAX_WORKERS', 4)),
        max_archive_bytes=_get_env_int('HSDS_MAX_ARCHIVE_BYTES', 100 * 1024 * 1024),
        max_archive_entries=_get_env_int('HSDS_MAX_ARCHIVE_ENTRIES', 1000),
        max_extracted_bytes=_get_env_int('HSDS_MAX_EXTRACTED_BYTES', 500 * 1024 * 1024),
        max_errors=_get_env_int('HSDS_MAX_ERRORS', 1000),
        http_timeout=float(os.getenv('HSDS_HTTP_TIMEOUT', '30').strip() or 30),
        http_retries=_get_env_int('HSDS_HTTP_RETRIES', 3),
    )

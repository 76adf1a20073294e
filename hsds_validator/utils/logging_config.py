"""
Structured logging for the HSDS validator

Every record is rendered as one JSON object. Request-scoped values (request id,
resource name, workspace) travel on the record as ``ctx_``-prefixed attributes
and are lifted into the JSON entry without the prefix.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from hsds_validator import __version__

CONTEXT_PREFIX = 'ctx_'
TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = {
    'requests': logging.WARNING,
    'urllib3': logging.WARNING,
    'httpx': logging.WARNING,
    'multipart': logging.WARNING,
    'uvicorn.access': logging.WARNING,
}


class JSONFormatter(logging.Formatter):
    """
    Render log records as single-line JSON

    ``static_fields`` are merged into every entry (service name, version).
    """

    def __init__(self, static_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = dict(self.static_fields)
        entry.update({
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'thread': record.thread,
            'process': record.process,
        })

        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value, _ = record.exc_info
            entry['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': self.formatException(record.exc_info),
            }

        entry.update(
            (key[len(CONTEXT_PREFIX):], value)
            for key, value in vars(record).items()
            if key.startswith(CONTEXT_PREFIX)
        )

        return json.dumps(entry, default=str, ensure_ascii=False)


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps its context onto every record it emits"""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        extra.update((f'{CONTEXT_PREFIX}{key}', value) for key, value in self.extra.items())
        kwargs['extra'] = extra
        return msg, kwargs


def _context(group: str, **fields) -> Dict[str, Any]:
    """Build an ``extra`` dict of ``ctx_<group>_<field>`` entries, dropping None values"""
    return {
        f'{CONTEXT_PREFIX}{group}_{name}': value
        for name, value in fields.items()
        if value is not None
    }


def setup_logging(
    log_level: str = 'INFO',
    log_file: Optional[str] = None,
    enable_console: bool = True,
    enable_json: bool = True
) -> None:
    """
    Configure the root logger

    Console output goes to stderr so that ``--json`` reports on stdout stay
    parseable.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Also write to this file (None = console only)
        enable_console: Attach a stderr handler
        enable_json: JSON lines instead of plain text
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    if enable_json:
        formatter = JSONFormatter({'service': 'hsds-validator', 'version': __version__})
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    configure_application_loggers(level)


def configure_application_loggers(level: int = logging.INFO):
    """Set the package logger level and quieten third-party loggers"""
    logging.getLogger('hsds_validator').setLevel(level)

    for logger_name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(max(level, noisy_level))


def get_contextual_logger(name: str, **context) -> ContextAdapter:
    """
    Get a logger that tags every record with the given context

    Example:
        logger = get_contextual_logger(__name__, request_id=workspace.request_id)
        logger.info("Archive expanded")
    """
    return ContextAdapter(logging.getLogger(name), context)


def log_api_request(
    logger: logging.Logger,
    method: str,
    url: str,
    status_code: int,
    response_time: float,
    content_length: Optional[int] = None,
    error: Optional[str] = None
) -> None:
    """
    Record one remote fetch

    ``status_code`` is 0 when no response arrived. Successful fetches log at
    INFO, everything else at ERROR.
    """
    success = 200 <= status_code < 300
    extra = _context('api', method=method, url=url, status=status_code,
                     response_time=response_time, success=success,
                     content_length=content_length, error=error)

    if success:
        size = f" ({content_length} bytes)" if content_length else ""
        logger.info(f"Fetched {method} {url}{size}", extra=extra)
    else:
        detail = f" - {error}" if error else ""
        logger.error(f"Fetch failed: {method} {url} [{status_code}]{detail}", extra=extra)


def log_validation_outcome(
    logger: logging.Logger,
    resource_name: str,
    valid: bool,
    error_count: int,
    duration: float,
    reason: Optional[str] = None
) -> None:
    """
    Record the outcome of validating one resource

    A resource that could not be validated at all (``reason`` set) logs at
    WARNING; valid and invalid data both log at INFO.
    """
    extra = _context('validation', resource=resource_name, valid=valid,
                     error_count=error_count, duration=duration, reason=reason)

    if reason:
        logger.warning(f"Resource {resource_name} not validated: {reason}", extra=extra)
    elif valid:
        logger.info(f"Resource {resource_name} valid ({duration:.3f}s)", extra=extra)
    else:
        logger.info(f"Resource {resource_name} invalid: {error_count} errors ({duration:.3f}s)",
                    extra=extra)


def init_from_environment():
    """
    Configure logging from LOG_LEVEL, LOG_FILE and LOG_FORMAT

    LOG_FILE defaults to ./logs/validator.log; set it empty to log to the
    console only. LOG_FORMAT is ``json`` (default) or ``text``.
    """
    setup_logging(
        log_level=os.getenv('LOG_LEVEL', 'INFO'),
        log_file=os.getenv('LOG_FILE', './logs/validator.log') or None,
        enable_console=True,
        enable_json=os.getenv('LOG_FORMAT', 'json').lower() == 'json'
    )


def ensure_logging_configured() -> bool:
    """
    Configure logging from the environment unless the root logger has handlers

    Entry points that do not go through the CLI (``uvicorn`` pointing at the
    app, the reload worker) call this at startup.

    Returns:
        True if logging was configured by this call
    """
    if logging.getLogger().handlers:
        return False
    init_from_environment()
    return True

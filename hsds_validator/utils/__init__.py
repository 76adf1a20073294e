"""
Utility modules for the HSDS validator
"""

from .logging_config import (
    setup_logging,
    get_contextual_logger,
    log_api_request,
    log_validation_outcome,
    init_from_environment,
    ensure_logging_configured
)

__all__ = [
    'setup_logging',
    'get_contextual_logger',
    'log_api_request',
    'log_validation_outcome',
    'init_from_environment',
    'ensure_logging_configured'
]

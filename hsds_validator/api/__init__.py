"""
Models and URI client shared by the validators and the web layer
"""

from .client import ResourceClient, TransientError, PermanentError, ParsingError
from .models import (
    ABSENT,
    AbsentResource,
    BatchResult,
    ResourceDescriptor,
    ValidationResult,
    batch_to_dict,
    package_is_valid
)

__all__ = [
    'ResourceClient',
    'TransientError',
    'PermanentError',
    'ParsingError',
    'ABSENT',
    'AbsentResource',
    'BatchResult',
    'ResourceDescriptor',
    'ValidationResult',
    'batch_to_dict',
    'package_is_valid'
]

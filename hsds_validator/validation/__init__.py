"""
Validation system for Open Referral data

- Resource catalog of the accepted resource types
- Table Schema engine and schema registry
- Single resource, batch (archive) and data package validators
- Console and JSON reports
"""

from .catalog import RESOURCE_CATALOG, ResourceCatalog
from .engine import TableReport, TableSchemaEngine
from .registry import SchemaRegistry
from .validators import ResourceValidator
from .batch import BatchOrchestrator
from .package import DataPackage, PackageResource, PackageValidator
from .reports import ValidationMetrics, ValidationReport

__all__ = [
    'RESOURCE_CATALOG',
    'ResourceCatalog',
    'TableReport',
    'TableSchemaEngine',
    'SchemaRegistry',
    'ResourceValidator',
    'BatchOrchestrator',
    'DataPackage',
    'PackageResource',
    'PackageValidator',
    'ValidationMetrics',
    'ValidationReport'
]

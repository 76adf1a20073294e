"""
Batch orchestrator: validates every catalog resource found in a workspace
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from hsds_validator.api.models import ABSENT, BatchResult, ResourceDescriptor, ResourceOutcome, ValidationResult
from hsds_validator.storage.workspace import Workspace
from hsds_validator.utils.concurrency import map_in_order
from hsds_validator.utils.logging_config import get_contextual_logger
from hsds_validator.validation.catalog import RESOURCE_CATALOG, ResourceCatalog
from hsds_validator.validation.validators import ResourceValidator

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """
    Drives the single resource validator over the resource catalog

    Features:
    - One result per catalog entry, in catalog order
    - Missing files recorded as absent, not skipped
    - A fault in one resource never affects the others
    - Optional bounded thread pool; results are placed by catalog position
    """

    def __init__(self,
                 validator: ResourceValidator,
                 catalog: ResourceCatalog = RESOURCE_CATALOG,
                 max_workers: int = 4,
                 progress_callback: Optional[Callable[[int, int], None]] = None):
        """
        Initialize the orchestrator

        Args:
            validator: Single resource validator
            catalog: Resource catalog to iterate
            max_workers: Thread pool size (1 = sequential)
            progress_callback: Called with (completed, total) after each resource
        """
        self.validator = validator
        self.catalog = catalog
        self.max_workers = max(1, max_workers)
        self.progress_callback = progress_callback

    def validate_batch(self, workspace: Workspace) -> BatchResult:
        """
        Validate all catalog resources present in an expanded archive

        Returns:
            Mapping of every catalog name to its ValidationResult or ABSENT
        """
        ctx_logger = get_contextual_logger(__name__, request_id=workspace.request_id)
        entries = self.catalog.entries()
        outcomes: List[Optional[ResourceOutcome]] = [None] * len(entries)
        pending: List[Tuple[int, ResourceDescriptor, Path]] = []

        for index, descriptor in enumerate(entries):
            path = workspace.find(descriptor.expected_file_name)
            if path is None:
                ctx_logger.info(f"No {descriptor.expected_file_name} in archive; "
                                f"{descriptor.name} recorded as absent")
                outcomes[index] = ABSENT
            else:
                pending.append((index, descriptor, path))

        total = len(entries)
        completed = total - len(pending)
        self._report_progress(completed, total)

        def step():
            nonlocal completed
            completed += 1
            self._report_progress(completed, total)

        results = map_in_order(lambda task: self._validate_one(task[1], task[2]),
                               pending, self.max_workers, on_complete=step)
        for (index, _, _), result in zip(pending, results):
            outcomes[index] = result

        ctx_logger.info(
            f"Batch complete: {len(pending)} validated, {total - len(pending)} absent, "
            f"{sum(1 for o in outcomes if isinstance(o, ValidationResult) and o.valid)} valid"
        )

        return {descriptor.name: outcomes[index] for index, descriptor in enumerate(entries)}

    def _validate_one(self, descriptor: ResourceDescriptor, path: Path) -> ValidationResult:
        """Validate one resource; any fault becomes a failed result for it alone"""
        try:
            return self.validator.validate(path, descriptor.name)
        except Exception as e:
            logger.exception(f"Validation of {descriptor.name} failed")
            return ValidationResult.failure(descriptor.name, "validation could not be completed", e)

    def _report_progress(self, completed: int, total: int):
        if self.progress_callback:
            self.progress_callback(completed, total)

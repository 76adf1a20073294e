"""
Validation reporting for batch and package runs

Generates console and JSON reports from validation outcomes
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

from hsds_validator.api.models import AbsentResource, ResourceOutcome, ValidationResult

logger = logging.getLogger(__name__)

MAX_ERRORS_SHOWN = 5


@dataclass
class ValidationMetrics:
    """Validation metrics for summary reporting"""
    total_resources: int
    passed: int
    failed: int
    absent: int
    total_errors: int
    success_rate: float
    validation_duration: float

    @classmethod
    def from_outcomes(cls, outcomes: Mapping[str, ResourceOutcome],
                      duration: float = 0.0) -> 'ValidationMetrics':
        """Create metrics from named validation outcomes"""
        results = [o for o in outcomes.values() if isinstance(o, ValidationResult)]
        passed = sum(1 for r in results if r.valid)
        return cls(
            total_resources=len(outcomes),
            passed=passed,
            failed=len(results) - passed,
            absent=len(outcomes) - len(results),
            total_errors=sum(len(r.errors) for r in results),
            success_rate=passed / max(len(results), 1) * 100,
            validation_duration=duration
        )


class ValidationReport:
    """
    Report generator for a set of validation outcomes

    Accepts either a batch mapping (name -> outcome) or a package result list.
    """

    def __init__(self, outcomes: Union[Mapping[str, ResourceOutcome], List[ValidationResult]],
                 source: str = '', duration: float = 0.0):
        if isinstance(outcomes, list):
            outcomes = {result.resource_name: result for result in outcomes}
        self.outcomes: Dict[str, ResourceOutcome] = dict(outcomes)
        self.source = source
        self.metrics = ValidationMetrics.from_outcomes(self.outcomes, duration)
        self.timestamp = datetime.now()

    @property
    def valid(self) -> bool:
        """True when no validated resource failed (absent resources do not count)"""
        return self.metrics.failed == 0

    def generate_console_report(self) -> str:
        """Generate human-readable console report"""
        lines = []

        lines.append("=" * 80)
        lines.append("📊 OPEN REFERRAL VALIDATION REPORT")
        lines.append("=" * 80)
        if self.source:
            lines.append(f"Source: {self.source}")
        lines.append(f"Generated: {self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}")
        lines.append(f"Duration: {self.metrics.validation_duration:.1f} seconds")
        lines.append(f"Overall Status: {'✅ PASS' if self.valid else '❌ FAIL'}")
        lines.append("")

        lines.append("📈 SUMMARY METRICS")
        lines.append("-" * 40)
        lines.append(f"Resources: {self.metrics.total_resources}")
        lines.append(f"✅ Passed: {self.metrics.passed}")
        lines.append(f"❌ Failed: {self.metrics.failed}")
        lines.append(f"➖ Absent: {self.metrics.absent}")
        lines.append(f"Errors: {self.metrics.total_errors}")
        lines.append(f"Success Rate: {self.metrics.success_rate:.1f}%")
        lines.append("")

        lines.append("🔍 RESOURCES")
        lines.append("-" * 40)
        for name, outcome in self.outcomes.items():
            if isinstance(outcome, AbsentResource):
                lines.append(f"➖ {name}: {outcome.reason}")
                continue

            status = '✅' if outcome.valid else '❌'
            rows = f", {outcome.row_count} rows" if outcome.row_count is not None else ""
            lines.append(f"{status} {name}: {len(outcome.errors)} errors, "
                         f"{len(outcome.warnings)} warnings{rows}")
            if outcome.reason:
                lines.append(f"    - {outcome.reason}")

            for error in outcome.errors[:MAX_ERRORS_SHOWN]:
                position = f"row {error['row_number']}: " if 'row_number' in error else ""
                lines.append(f"  • [{error['type']}] {position}{error['message']}")

            if len(outcome.errors) > MAX_ERRORS_SHOWN:
                lines.append(f"    ... and {len(outcome.errors) - MAX_ERRORS_SHOWN} more")

        lines.append("")
        lines.append("=" * 80)

        return "\n".join(lines)

    def generate_json_report(self) -> Dict[str, Any]:
        """Generate machine-readable JSON report"""
        return {
            'report_metadata': {
                'generated_at': self.timestamp.isoformat(),
                'source': self.source,
                'report_version': '1.0'
            },
            'summary': {
                'valid': self.valid,
                'total_resources': self.metrics.total_resources,
                'passed': self.metrics.passed,
                'failed': self.metrics.failed,
                'absent': self.metrics.absent,
                'total_errors': self.metrics.total_errors,
                'success_rate': self.metrics.success_rate,
                'duration_seconds': self.metrics.validation_duration
            },
            'resources': {name: outcome.to_dict() for name, outcome in self.outcomes.items()}
        }

    def save_report(self, output_path: Union[str, Path]) -> Path:
        """Write the JSON report to a file"""
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.generate_json_report(), f, indent=2, default=str)

        logger.info(f"Validation report saved to {path}")
        return path

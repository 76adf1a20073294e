"""
Command-line interface for the Open Referral validator
"""

import json
import logging
import sys
import time

import click
from tqdm import tqdm

from hsds_validator.api.client import ResourceClient
from hsds_validator.errors import ValidatorError
from hsds_validator.settings import load_settings_from_env
from hsds_validator.storage.workspace import ArchiveIntake
from hsds_validator.utils.logging_config import init_from_environment
from hsds_validator.validation.batch import BatchOrchestrator
from hsds_validator.validation.catalog import RESOURCE_CATALOG
from hsds_validator.validation.engine import TableSchemaEngine
from hsds_validator.validation.package import PackageValidator
from hsds_validator.validation.registry import SchemaRegistry
from hsds_validator.validation.reports import ValidationReport
from hsds_validator.validation.validators import ResourceValidator

logger = logging.getLogger(__name__)


def _build_validator(ctx) -> ResourceValidator:
    settings = ctx.obj['settings']
    registry = SchemaRegistry.from_path(settings.datapackage_path)
    return ResourceValidator(registry, TableSchemaEngine(max_errors=settings.max_errors))


def _emit(ctx, report: ValidationReport, as_json: bool, save_report: str):
    if as_json:
        click.echo(json.dumps(report.generate_json_report(), indent=2, default=str))
    else:
        click.echo(report.generate_console_report())

    if save_report:
        path = report.save_report(save_report)
        click.echo(f"💾 Report saved to {path}", err=True)

    ctx.exit(0 if report.valid else 1)


class _ProgressBar:
    """Adapts a tqdm bar to the (completed, total) progress callback"""

    def __init__(self, description: str, enabled: bool):
        self.description = description
        self.enabled = enabled
        self.bar = None

    def __call__(self, completed: int, total: int):
        if not self.enabled:
            return
        if self.bar is None:
            self.bar = tqdm(total=total, desc=self.description, file=sys.stderr, leave=False)
        self.bar.n = completed
        self.bar.refresh()

    def close(self):
        if self.bar is not None:
            self.bar.close()


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, debug):
    """Open Referral validator - check HSDS data against the resource schemas"""

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    ctx.obj['settings'] = load_settings_from_env()


@cli.command('validate-csv')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--type', '-t', 'resource_type', required=True, help='Open Referral resource name')
@click.option('--json', 'as_json', is_flag=True, help='Print the JSON report')
@click.option('--save-report', '-o', help='Save the JSON report to a file')
@click.pass_context
def validate_csv(ctx, file, resource_type, as_json, save_report):
    """Validate one CSV file against a resource schema"""

    try:
        validator = _build_validator(ctx)
        # unknown resource types are a usage error, unreadable data is a failed result
        validator.registry.get(resource_type)
        start_time = time.time()
        result = validator.validate_safely(file, resource_type)
    except ValidatorError as e:
        click.echo(f"❌ Validation failed: {e}", err=True)
        if ctx.obj['debug']:
            raise
        ctx.exit(2)

    report = ValidationReport([result], source=file, duration=time.time() - start_time)
    _emit(ctx, report, as_json, save_report)


@cli.command('validate-zip')
@click.argument('archive', type=click.Path(exists=True, dir_okay=False))
@click.option('--json', 'as_json', is_flag=True, help='Print the JSON report')
@click.option('--save-report', '-o', help='Save the JSON report to a file')
@click.option('--progress/--no-progress', default=True, help='Show a progress bar')
@click.pass_context
def validate_zip(ctx, archive, as_json, save_report, progress):
    """Validate every catalog resource found in a zip archive"""

    settings = ctx.obj['settings']
    intake = ArchiveIntake(
        settings.workspace_root,
        max_archive_bytes=settings.max_archive_bytes,
        max_entries=settings.max_archive_entries,
        max_extracted_bytes=settings.max_extracted_bytes
    )
    bar = _ProgressBar('Validating resources', progress and not as_json)

    try:
        orchestrator = BatchOrchestrator(_build_validator(ctx), RESOURCE_CATALOG,
                                         max_workers=settings.max_workers,
                                         progress_callback=bar)
        start_time = time.time()
        with open(archive, 'rb') as f, intake.expand(f) as workspace:
            batch = orchestrator.validate_batch(workspace)
    except ValidatorError as e:
        click.echo(f"❌ Validation failed: {e}", err=True)
        if ctx.obj['debug']:
            raise
        ctx.exit(2)
    finally:
        bar.close()

    report = ValidationReport(batch, source=archive, duration=time.time() - start_time)
    _emit(ctx, report, as_json, save_report)


@cli.command('validate-package')
@click.argument('uri')
@click.option('--relations', '-r', is_flag=True, help='Check foreign keys between resources')
@click.option('--json', 'as_json', is_flag=True, help='Print the JSON report')
@click.option('--save-report', '-o', help='Save the JSON report to a file')
@click.option('--progress/--no-progress', default=True, help='Show a progress bar')
@click.pass_context
def validate_package(ctx, uri, relations, as_json, save_report, progress):
    """Validate a data package from a local path or URL"""

    settings = ctx.obj['settings']
    validator = _build_validator(ctx)
    client = ResourceClient(timeout=settings.http_timeout, max_retries=settings.http_retries)
    bar = _ProgressBar('Validating resources', progress and not as_json)

    try:
        package_validator = PackageValidator(validator, client, validator.registry,
                                             max_workers=settings.max_workers,
                                             progress_callback=bar)
        start_time = time.time()
        results = package_validator.validate_package(uri, relations=relations)
    except ValidatorError as e:
        click.echo(f"❌ Validation failed: {e}", err=True)
        if ctx.obj['debug']:
            raise
        ctx.exit(2)
    finally:
        bar.close()

    report = ValidationReport(results, source=uri, duration=time.time() - start_time)
    _emit(ctx, report, as_json, save_report)


@cli.command()
@click.pass_context
def resources(ctx):
    """List the resource types accepted in archives"""

    registry = SchemaRegistry.from_path(ctx.obj['settings'].datapackage_path)

    click.echo(f"📚 {len(RESOURCE_CATALOG)} Open Referral resources\n")
    for descriptor in RESOURCE_CATALOG:
        click.echo(f"{descriptor.name}")
        click.echo(f"   📄 File: {descriptor.expected_file_name}")
        if descriptor.name in registry:
            required = registry.describe(descriptor.name)['required']
            click.echo(f"   ⭐ Required: {', '.join(required) or '-'}")


@cli.command()
@click.option('--host', default='127.0.0.1', help='Host to bind to')
@click.option('--port', default=8000, help='Port to bind to')
@click.option('--reload', is_flag=True, help='Enable auto-reload for development')
def serve(host, port, reload):
    """Start the validation web service"""

    import uvicorn

    click.echo(f"🌐 Starting validator on http://{host}:{port}")
    click.echo(f"📖 API docs at http://{host}:{port}/docs")

    uvicorn.run(
        "hsds_validator.web.app:app",
        host=host,
        port=port,
        reload=reload
    )


def main():
    """Main entry point: structured logging from the environment, then the CLI"""
    init_from_environment()
    cli()


if __name__ == '__main__':
    main()

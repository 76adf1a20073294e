"""
FastAPI web application exposing the Open Referral validation endpoints
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from hsds_validator import __version__
from hsds_validator.api.client import ResourceClient
from hsds_validator.api.models import batch_to_dict, package_is_valid
from hsds_validator.errors import ValidatorError, RequestShapeError
from hsds_validator.settings import Settings, load_settings_from_env
from hsds_validator.storage.workspace import ArchiveIntake
from hsds_validator.utils.logging_config import ensure_logging_configured, get_contextual_logger
from hsds_validator.validation.batch import BatchOrchestrator
from hsds_validator.validation.catalog import RESOURCE_CATALOG
from hsds_validator.validation.engine import TableSchemaEngine
from hsds_validator.validation.package import PackageValidator
from hsds_validator.validation.registry import SchemaRegistry
from hsds_validator.validation.validators import ResourceValidator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # uvicorn workers started without the CLI have no log handlers yet
    if ensure_logging_configured():
        logger.info("Logging configured from environment")
    yield


app = FastAPI(
    title="Open Referral Validator",
    description="Validate Open Referral (HSDS) CSV resources, archives and data packages",
    version=__version__,
    lifespan=lifespan
)

# Initialize components (lazy loading)
settings = None
registry = None
resource_validator = None


def get_settings() -> Settings:
    global settings
    if settings is None:
        settings = load_settings_from_env()
    return settings


def get_registry() -> SchemaRegistry:
    global registry
    if registry is None:
        registry = SchemaRegistry.from_path(get_settings().datapackage_path)
    return registry


def get_resource_validator() -> ResourceValidator:
    global resource_validator
    if resource_validator is None:
        engine = TableSchemaEngine(max_errors=get_settings().max_errors)
        resource_validator = ResourceValidator(get_registry(), engine)
    return resource_validator


def get_archive_intake() -> ArchiveIntake:
    config = get_settings()
    return ArchiveIntake(
        config.workspace_root,
        max_archive_bytes=config.max_archive_bytes,
        max_entries=config.max_archive_entries,
        max_extracted_bytes=config.max_extracted_bytes
    )


def get_batch_orchestrator() -> BatchOrchestrator:
    return BatchOrchestrator(get_resource_validator(), RESOURCE_CATALOG,
                             max_workers=get_settings().max_workers)


def get_package_validator() -> PackageValidator:
    config = get_settings()
    client = ResourceClient(timeout=config.http_timeout, max_retries=config.http_retries)
    return PackageValidator(get_resource_validator(), client, get_registry(),
                            max_workers=config.max_workers)


@app.exception_handler(ValidatorError)
async def validator_error_handler(request: Request, exc: ValidatorError):
    """Request-level failures: bad form, bad archive, bad descriptor, unknown type"""
    logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed parameters are a bad request; 422 is reserved for invalid data"""
    details = [{'loc': list(error.get('loc', ())), 'msg': error.get('msg')} for error in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={'error_type': 'RequestShapeError', 'error': 'Invalid request parameters',
                 'details': details}
    )


def _require_form(resource_type: Optional[str], file: Optional[UploadFile], payload: str):
    if not resource_type:
        raise RequestShapeError('Form should contain the field "type" with a valid resource name')
    if file is None:
        raise RequestShapeError(f'Form should contain the field "file" with a valid {payload}')


@app.post("/validate/csv")
async def validate_csv(
    resource_type: Optional[str] = Form(None, alias="type"),
    file: Optional[UploadFile] = File(None),
    validator: ResourceValidator = Depends(get_resource_validator)
):
    """
    Validate a CSV data file against one Open Referral resource schema

    Returns 200 when the data conforms and 422 when it does not.
    """
    _require_form(resource_type, file, "resource data stream")

    # unknown resource types are a bad request, not a failed validation
    validator.registry.get(resource_type)

    content = await file.read()
    result = await run_in_threadpool(validator.validate_safely, content, resource_type)

    return JSONResponse(status_code=200 if result.valid else 422, content=result.to_dict())


@app.post("/validate/zip")
async def validate_zip(
    resource_type: Optional[str] = Form(None, alias="type"),
    file: Optional[UploadFile] = File(None),
    intake: ArchiveIntake = Depends(get_archive_intake),
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator)
):
    """
    Validate every catalog resource found in an uploaded zip archive

    Always answers 200 with one entry per catalog resource; callers inspect
    each entry's ``valid`` flag.
    """
    _require_form(resource_type, file, "zip archive")

    def expand_and_validate():
        with intake.expand(file.file) as workspace:
            ctx_logger = get_contextual_logger(__name__, request_id=workspace.request_id,
                                               package_type=resource_type)
            ctx_logger.info(f"Validating archive {file.filename}")
            return orchestrator.validate_batch(workspace)

    batch = await run_in_threadpool(expand_and_validate)
    return JSONResponse(status_code=200, content=batch_to_dict(batch))


@app.get("/validate/datapackage")
async def validate_datapackage(
    uri: Optional[str] = Query(None, description="Data package descriptor file URL or path"),
    relations: bool = Query(False, description="Check data relations through foreign keys"),
    package_validator: PackageValidator = Depends(get_package_validator)
):
    """
    Validate a full data package

    Returns one result per declared resource; 422 if any resource failed.
    """
    if not uri:
        raise RequestShapeError('Query should contain the parameter "uri" with a descriptor location')

    results = await run_in_threadpool(package_validator.validate_package, uri, relations)

    return JSONResponse(
        status_code=200 if package_is_valid(results) else 422,
        content=[result.to_dict() for result in results]
    )


@app.get("/resources")
async def list_resources(schemas: SchemaRegistry = Depends(get_registry)):
    """Catalog of resource types accepted in archives"""
    resources = []
    for descriptor in RESOURCE_CATALOG:
        entry = descriptor.to_dict()
        if descriptor.name in schemas:
            entry['required_fields'] = schemas.describe(descriptor.name)['required']
        resources.append(entry)
    return {"resources": resources}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        schemas = get_registry()
        return {
            "status": "healthy",
            "version": __version__,
            "catalog_resources": len(RESOURCE_CATALOG),
            "schemas": len(schemas.names())
        }
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": str(e)}
        )


if __name__ == "__main__":
    import uvicorn
    ensure_logging_configured()
    uvicorn.run(app, host="0.0.0.0", port=8000)

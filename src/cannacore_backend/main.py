from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional

from fastapi import BackgroundTasks, Body, Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from omegaconf import DictConfig

from .chunk_store import ChunkStore
from .compression import PdfSizeReducer
from .configuration import get_settings
from .errors import InvalidRequest, RelayError, ReportGenerationFailed
from .finalizer import UploadFinalizer
from .middleware import RateLimiter
from .models import (
    ChunkReceipt,
    ComplianceSubmission,
    FinalizedUpload,
    FinalizeRequest,
    PollResult,
    ReportRequest,
    SubmissionAccepted,
)
from .polling import StatusPoller
from .relay import ComplianceRelay, DirectUpload, IncomingFile
from .reports import DOCX_MEDIA_TYPE, build_report, report_filename
from .storage import ObjectStorage
from .sweeper import ExpirySweeper
from .tracking import ResultTrackingRegistry
from .workflow_client import WorkflowClient

logger = logging.getLogger(__name__)

MAX_IMAGES = 10
MAX_COA_PDFS = 10


@dataclass
class Services:
    settings: DictConfig
    storage: ObjectStorage
    chunk_store: ChunkStore
    finalizer: UploadFinalizer
    registry: ResultTrackingRegistry
    workflow_client: WorkflowClient
    relay: ComplianceRelay
    poller: Optional[StatusPoller]
    rate_limiter: RateLimiter
    sweeper: ExpirySweeper


def build_services(settings: DictConfig) -> Services:
    storage = ObjectStorage(
        bucket=settings.storage.bucket,
        region=settings.storage.region,
        public_base_url=settings.storage.public_base_url,
        endpoint_url=settings.storage.endpoint_url,
    )
    chunk_store = ChunkStore(
        session_ttl_seconds=settings.uploads.session_ttl_seconds,
        max_chunk_bytes=settings.uploads.max_chunk_bytes,
    )
    reducer = PdfSizeReducer(
        threshold_bytes=settings.compression.threshold_bytes,
        enabled=settings.compression.enabled,
        ghostscript_binary=settings.compression.ghostscript_binary,
        pdf_settings=settings.compression.pdf_settings,
        timeout_seconds=settings.compression.timeout_seconds,
    )
    finalizer = UploadFinalizer(chunk_store, storage, reducer, default_namespace=settings.storage.default_namespace)
    registry = ResultTrackingRegistry(storage, retention_seconds=settings.tracking.submission_ttl_seconds)
    workflow_client = WorkflowClient(
        api_url=settings.workflow.api_url,
        api_key=settings.workflow.api_key,
        workflow_id=settings.workflow.workflow_id,
        project_id=settings.workflow.project_id,
        submit_timeout=settings.workflow.submit_timeout_seconds,
        poll_timeout=settings.workflow.poll_timeout_seconds,
    )
    relay = ComplianceRelay(workflow_client, registry, storage)
    poller = None
    if settings.workflow.server_side_watch:
        poller = StatusPoller(
            workflow_client.check_status,
            relay.on_terminal,
            interval_seconds=settings.workflow.poll_interval_seconds,
            max_attempts=settings.workflow.max_poll_attempts,
        )
        relay.poller = poller
    rate_limiter = RateLimiter(
        max_requests=settings.rate_limit.max_requests,
        window_seconds=settings.rate_limit.window_seconds,
    )
    sweeper = ExpirySweeper(
        chunk_store,
        registry,
        session_interval=settings.uploads.session_sweep_interval_seconds,
        submission_interval=settings.tracking.submission_sweep_interval_seconds,
        rate_limiter=rate_limiter,
    )
    return Services(
        settings=settings,
        storage=storage,
        chunk_store=chunk_store,
        finalizer=finalizer,
        registry=registry,
        workflow_client=workflow_client,
        relay=relay,
        poller=poller,
        rate_limiter=rate_limiter,
        sweeper=sweeper,
    )


services = build_services(get_settings())


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=services.settings.logging.level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if not services.storage.is_configured:
        logger.warning("S3_BUCKET_NAME not configured; finalize and direct uploads will fail")
    if not services.workflow_client.is_configured:
        logger.warning("Workflow API configuration is incomplete; submissions will fail")
    services.sweeper.start()
    try:
        yield
    finally:
        await services.sweeper.stop()
        if services.poller is not None:
            await services.poller.shutdown()


app = FastAPI(title="Cannacore Compliance API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "x-upload-id", "x-chunk-index", "x-total-chunks", "x-file-name", "x-file-type"],
)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def _describe_validation_error(error: Dict) -> str:
    if error.get("type") == "json_invalid":
        return "Invalid JSON body"
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = "; ".join(_describe_validation_error(error) for error in exc.errors())
    return JSONResponse(status_code=InvalidRequest.status_code, content=InvalidRequest(message).to_body())


def get_chunk_store() -> ChunkStore:
    return services.chunk_store


def get_finalizer() -> UploadFinalizer:
    return services.finalizer


def get_relay() -> ComplianceRelay:
    return services.relay


def get_registry() -> ResultTrackingRegistry:
    return services.registry


def get_rate_limiter() -> RateLimiter:
    return services.rate_limiter


async def enforce_rate_limit(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
    await limiter(request)


def _parse_int_header(value: Optional[str], name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise InvalidRequest(f"Header {name} must be an integer") from exc


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/health")
def api_healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/upload-chunk", response_model=ChunkReceipt)
async def upload_chunk(
    request: Request,
    upload_id: Optional[str] = Header(None, alias="x-upload-id"),
    chunk_index: Optional[str] = Header(None, alias="x-chunk-index"),
    total_chunks: Optional[str] = Header(None, alias="x-total-chunks"),
    file_name: Optional[str] = Header(None, alias="x-file-name"),
    file_type: Optional[str] = Header(None, alias="x-file-type"),
    store: ChunkStore = Depends(get_chunk_store),
) -> ChunkReceipt:
    data = await request.body()
    return store.receive_chunk(
        upload_id=upload_id,
        chunk_index=_parse_int_header(chunk_index, "x-chunk-index"),
        total_chunks=_parse_int_header(total_chunks, "x-total-chunks"),
        file_name=file_name,
        file_kind=file_type,
        data=data,
    )


@app.post("/api/finalize-chunks", response_model=FinalizedUpload)
async def finalize_chunks(
    payload: FinalizeRequest = Body(...),
    finalizer: UploadFinalizer = Depends(get_finalizer),
) -> FinalizedUpload:
    return await finalizer.finalize(payload.upload_id, payload.file_type)


@app.post(
    "/api/check-compliance-urls",
    response_model=SubmissionAccepted,
    response_model_exclude_none=True,
    dependencies=[Depends(enforce_rate_limit)],
)
async def check_compliance_urls(
    submission: ComplianceSubmission,
    relay: ComplianceRelay = Depends(get_relay),
) -> SubmissionAccepted:
    return await relay.submit(submission)


async def _read_files(files: Optional[List[UploadFile]]) -> List[IncomingFile]:
    incoming = []
    for upload in files or []:
        incoming.append(
            IncomingFile(
                filename=upload.filename or "upload",
                content_type=upload.content_type or "application/octet-stream",
                data=await upload.read(),
            )
        )
        await upload.close()
    return incoming


@app.post(
    "/api/check-compliance",
    response_model=SubmissionAccepted,
    response_model_exclude_none=True,
    dependencies=[Depends(enforce_rate_limit)],
)
async def check_compliance(
    images: Optional[List[UploadFile]] = File(None),
    pdf: Optional[List[UploadFile]] = File(None),
    labelsPdf: Optional[UploadFile] = File(None),
    jurisdictions: Optional[List[str]] = Form(None),
    company_name: Optional[str] = Form(None),
    product_type: Optional[str] = Form(None),
    relay: ComplianceRelay = Depends(get_relay),
) -> SubmissionAccepted:
    if images and len(images) > MAX_IMAGES:
        raise InvalidRequest(f"At most {MAX_IMAGES} images can be uploaded")
    if pdf and len(pdf) > MAX_COA_PDFS:
        raise InvalidRequest(f"At most {MAX_COA_PDFS} COA PDFs can be uploaded")

    labels = await _read_files([labelsPdf] if labelsPdf else None)
    upload = DirectUpload(
        images=await _read_files(images),
        coa_pdfs=await _read_files(pdf),
        labels_pdf=labels[0] if labels else None,
    )
    return await relay.submit_files(
        upload,
        jurisdictions=[item for item in jurisdictions or [] if item],
        company_name=company_name,
        product_type=product_type,
    )


@app.get("/api/results/{request_id}", response_model=PollResult, response_model_exclude_none=True)
async def get_results(
    request_id: str,
    background_tasks: BackgroundTasks,
    relay: ComplianceRelay = Depends(get_relay),
    registry: ResultTrackingRegistry = Depends(get_registry),
) -> PollResult:
    outcome = await relay.poll(request_id)
    if outcome.cleanup_job_id and outcome.terminal_status:
        logger.info(f"[POLL] Results ready for {request_id}, cleaning up files...")
        background_tasks.add_task(registry.resolve, outcome.cleanup_job_id, outcome.terminal_status)
    return outcome.response


@app.post("/api/download-report")
def download_report(payload: ReportRequest = Body(...)) -> Response:
    if not payload.content:
        raise InvalidRequest("No content provided")
    try:
        document = build_report(payload.content)
    except Exception as exc:
        logger.exception("Error generating Word document")
        raise ReportGenerationFailed("Failed to generate document") from exc
    return Response(
        content=document,
        media_type=DOCX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{report_filename()}"'},
    )

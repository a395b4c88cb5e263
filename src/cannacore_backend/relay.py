"""
Compliance check submission and result relay.

This module connects stored uploads to the workflow engine:
- Validating submissions and filling metadata defaults
- Uploading directly submitted files to storage
- Submitting the workflow and tracking the URLs it consumes
- Relaying job status and triggering cleanup at terminal states

The ComplianceRelay class provides the business logic behind the submit
and poll endpoints; the HTTP layer only parses requests and schedules the
background cleanup it hands back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from .enrichment import add_reference_urls, count_issues
from .errors import InvalidRequest, NotFound, UpstreamFailure
from .models import ComplianceSubmission, JobStatus, PollResult, SubmissionAccepted
from .polling import StatusPoller, StatusReport
from .storage import ObjectStorage
from .tracking import ResultTrackingRegistry
from .utils import shorten_url
from .workflow_client import WorkflowClient

logger = logging.getLogger(__name__)

COA_PLACEHOLDER = "not provided"


@dataclass
class IncomingFile:
    """A file received in a multipart submission."""

    filename: str
    content_type: str
    data: bytes


@dataclass
class DirectUpload:
    images: List[IncomingFile] = field(default_factory=list)
    coa_pdfs: List[IncomingFile] = field(default_factory=list)
    labels_pdf: Optional[IncomingFile] = None


@dataclass
class PollOutcome:
    """Poll response plus the job whose cleanup should run after it is sent."""

    response: PollResult
    cleanup_job_id: Optional[str] = None
    terminal_status: Optional[JobStatus] = None


class ComplianceRelay:
    """
    Coordinator for compliance check submissions.

    Attributes:
        client: Workflow engine client
        registry: Tracks which storage URLs each job consumed
        storage: Object storage for direct multipart uploads
        poller: Optional server-side watcher started for each submitted job
    """

    def __init__(
        self,
        client: WorkflowClient,
        registry: ResultTrackingRegistry,
        storage: ObjectStorage,
        poller: Optional[StatusPoller] = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.storage = storage
        self.poller = poller

    async def submit(self, submission: ComplianceSubmission) -> SubmissionAccepted:
        """
        Submit pre-uploaded URLs for analysis.

        Raises:
            InvalidRequest: No file URL or no jurisdiction supplied
            UpstreamFailure: The workflow engine rejected or failed the call
        """
        if not submission.imageurl:
            raise InvalidRequest("At least one file (image or PDF) is required")
        if not submission.jurisdictions:
            raise InvalidRequest("At least one jurisdiction is required")

        now = datetime.now()
        coa_urls = submission.coaurl or [COA_PLACEHOLDER]
        outcome = await self.client.submit(
            image_urls=submission.imageurl,
            coa_urls=coa_urls,
            jurisdictions=submission.jurisdictions,
            label_urls=submission.labelurl,
            company_name=submission.company_name or "N/A",
            product_type=submission.product_type or "N/A",
            date=submission.date or now.strftime("%m/%d/%Y"),
            time=submission.time or now.strftime("%I:%M:%S %p"),
        )

        if outcome.request_id is None:
            return SubmissionAccepted(
                status=outcome.status,
                result=add_reference_urls(outcome.result),
                message="Compliance check completed.",
            )

        tracked_urls = [*submission.imageurl, *(submission.labelurl or []), *submission.coaurl]
        self.registry.record(outcome.request_id, tracked_urls)
        if self.poller is not None:
            self.poller.watch(outcome.request_id)

        return SubmissionAccepted(
            status=JobStatus.PENDING,
            request_id=outcome.request_id,
            message="Compliance check submitted. Please wait for results.",
        )

    async def _store_all(self, namespace: str, files: Sequence[IncomingFile], uploaded: List[str]) -> List[str]:
        urls = []
        for incoming in files:
            stored = await self.storage.upload(namespace, incoming.filename, incoming.data, incoming.content_type)
            uploaded.append(stored.url)
            urls.append(stored.url)
        return urls

    async def submit_files(
        self,
        upload: DirectUpload,
        jurisdictions: List[str],
        company_name: Optional[str] = None,
        product_type: Optional[str] = None,
    ) -> SubmissionAccepted:
        """
        Store multipart files, then submit them like a URL submission.

        Objects stored before a failure are tracked under no job and are
        deleted right away so they do not linger in the bucket.
        """
        if not upload.images and upload.labels_pdf is None:
            raise InvalidRequest("Please upload either product images or labels PDF")
        for image in upload.images:
            if not image.content_type.startswith("image/"):
                raise InvalidRequest("Only image files are allowed for images!")
        for document in [*upload.coa_pdfs, *([upload.labels_pdf] if upload.labels_pdf else [])]:
            if document.content_type != "application/pdf":
                raise InvalidRequest("Only PDF files are allowed!")

        uploaded: List[str] = []
        try:
            image_urls = await self._store_all("images", upload.images, uploaded)
            coa_urls = await self._store_all("pdfs", upload.coa_pdfs, uploaded)
            label_urls = await self._store_all("labels-pdfs", [upload.labels_pdf] if upload.labels_pdf else [], uploaded)
            submission = ComplianceSubmission(
                imageurl=image_urls or label_urls,
                coaurl=coa_urls,
                labelurl=[*image_urls, *label_urls],
                jurisdictions=jurisdictions,
                company_name=company_name,
                product_type=product_type,
            )
            return await self.submit(submission)
        except (InvalidRequest, UpstreamFailure):
            await self._discard_uploaded(uploaded)
            raise

    async def _discard_uploaded(self, urls: List[str]) -> None:
        for url in urls:
            try:
                await self.storage.delete(url)
            except UpstreamFailure as exc:
                logger.error(f"[CLEANUP] Failed to remove orphaned upload {shorten_url(url)}: {exc}")

    async def poll(self, request_id: str) -> PollOutcome:
        """
        Fetch the job's status and decide whether cleanup is due.

        The caller sends ``response`` first and runs
        ``registry.resolve(cleanup_job_id, terminal_status)`` afterwards.
        """
        if not request_id:
            raise InvalidRequest("requestId is required")

        report = await self.client.check_status(request_id)
        self._observe(request_id, report)

        if report.status is JobStatus.FAILED:
            logger.error(f"Workflow failed for {request_id}: {report.error}")
            return PollOutcome(
                response=PollResult(success=False, status=JobStatus.FAILED, error=report.error),
                cleanup_job_id=request_id,
                terminal_status=JobStatus.FAILED,
            )

        if report.status is JobStatus.SUCCESS:
            result = add_reference_urls(report.result)
            logger.info(f"Sending result for {request_id} with {count_issues(result)} issues")
            return PollOutcome(
                response=PollResult(success=True, status=JobStatus.SUCCESS, data=result),
                cleanup_job_id=request_id,
                terminal_status=JobStatus.SUCCESS,
            )

        return PollOutcome(
            response=PollResult(success=False, status=report.status, message="Still processing..."),
        )

    def _observe(self, request_id: str, report: StatusReport) -> None:
        if request_id not in self.registry:
            return
        try:
            self.registry.observe(request_id, report.status)
        except (NotFound, ValueError) as exc:
            logger.warning(f"[POLL] {exc}")

    async def on_terminal(self, job_id: str, report: StatusReport) -> None:
        """Terminal callback for the server-side StatusPoller."""
        await self.registry.resolve(job_id, report.status)

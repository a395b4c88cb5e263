"""
Client for the remote compliance-analysis workflow engine.

The engine exposes a GraphQL endpoint with two operations:

- ``executeWorkflow``: submit image/COA URLs plus metadata; answers either
  with an inline result or with a ``requestId`` to poll
- ``checkStatus``: report the state of a request id, with the nested
  compliance result on success or an error message on failure

Responses are normalized into SubmissionOutcome and StatusReport so the
rest of the backend never handles raw GraphQL payloads.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .errors import UpstreamFailure
from .models import JobStatus
from .polling import StatusReport

logger = logging.getLogger(__name__)

EXECUTE_WORKFLOW_QUERY = """
query executeWorkflow(
  $workflowId: String!
  $imageurl: [String]
  $coaurl: [String]
  $labelurl: [String]
  $jurisdictions: [String]
  $date: String
  $time: String
  $company_name: String
  $product_type: String
) {
  executeWorkflow(
    workflowId: $workflowId
    payload: {
      imageurl: $imageurl
      coaurl: $coaurl
      labelurl: $labelurl
      jurisdictions: $jurisdictions
      date: $date
      time: $time
      company_name: $company_name
      product_type: $product_type
    }
  ) {
    status
    result
  }
}
"""

CHECK_STATUS_QUERY = """
query checkStatus($request_id: String!) {
  checkStatus(requestId: $request_id)
}
"""

_SUCCESS_STATES = {"success", "completed", "complete", "succeeded"}
_FAILED_STATES = {"failed", "failure", "error", "errored"}
_PENDING_STATES = {"pending", "queued", "submitted"}


@dataclass
class SubmissionOutcome:
    request_id: Optional[str]
    status: JobStatus
    result: Optional[Any] = None


def _maybe_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def _first_graphql_error(body: Any) -> Optional[str]:
    if isinstance(body, dict) and body.get("errors"):
        first = body["errors"][0]
        if isinstance(first, dict):
            return first.get("message") or json.dumps(first)
        return str(first)
    return None


def normalize_status(payload: Any) -> StatusReport:
    """
    Turn a ``checkStatus`` payload into a StatusReport.

    Unknown or missing states count as processing so the caller keeps
    polling; an ``error`` field without a state counts as failed.
    """
    payload = _maybe_json(payload)
    if not isinstance(payload, dict):
        return StatusReport(status=JobStatus.PROCESSING, raw=None)

    state = str(payload.get("status") or "").lower()
    data = _maybe_json(payload.get("data"))
    output = data.get("output") if isinstance(data, dict) else None
    nested_result = output.get("result") if isinstance(output, dict) else None

    if state in _FAILED_STATES or (not state and payload.get("error")):
        message = None
        if isinstance(nested_result, dict):
            message = nested_result.get("errorMsg")
        message = message or payload.get("error") or payload.get("message") or "Unknown error from workflow"
        return StatusReport(status=JobStatus.FAILED, error=str(message), raw=payload)

    if state in _SUCCESS_STATES:
        result = _maybe_json(nested_result) if nested_result is not None else data
        return StatusReport(status=JobStatus.SUCCESS, result=result, raw=payload)

    if state in _PENDING_STATES:
        return StatusReport(status=JobStatus.PENDING, raw=payload)
    return StatusReport(status=JobStatus.PROCESSING, raw=payload)


class WorkflowClient:
    """
    Async GraphQL client for the workflow engine.

    Args:
        api_url: GraphQL endpoint
        api_key: Bearer token; never logged
        workflow_id: Workflow to execute on submit
        project_id: Sent as the ``x-project-id`` header
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        workflow_id: str,
        project_id: str,
        submit_timeout: float = 60.0,
        poll_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.workflow_id = workflow_id
        self.project_id = project_id
        self.submit_timeout = submit_timeout
        self.poll_timeout = poll_timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return all([self.api_url, self.api_key, self.workflow_id, self.project_id])

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "x-project-id": self.project_id,
        }

    async def _post(self, payload: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        if not self.is_configured:
            raise UpstreamFailure("Missing workflow API configuration")
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.error(f"Workflow API request failed: {exc}")
            raise UpstreamFailure(f"Workflow API request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}

        if response.status_code != 200:
            message = _first_graphql_error(body) or f"Workflow API returned {response.status_code}: {json.dumps(body)[:500]}"
            raise UpstreamFailure(message, {"upstreamStatus": response.status_code})

        error = _first_graphql_error(body)
        if error:
            raise UpstreamFailure(error)
        return body

    async def submit(
        self,
        image_urls: List[str],
        coa_urls: List[str],
        jurisdictions: List[str],
        label_urls: Optional[List[str]] = None,
        company_name: str = "N/A",
        product_type: str = "N/A",
        date: str = "",
        time: str = "",
    ) -> SubmissionOutcome:
        variables = {
            "workflowId": self.workflow_id,
            "imageurl": image_urls,
            "coaurl": coa_urls,
            "labelurl": label_urls if label_urls is not None else image_urls,
            "jurisdictions": jurisdictions,
            "date": date,
            "time": time,
            "company_name": company_name,
            "product_type": product_type,
        }
        logger.info(
            f"Submitting workflow with {len(image_urls)} image URLs, {len(coa_urls)} COA URLs, "
            f"jurisdictions={jurisdictions}"
        )
        body = await self._post({"query": EXECUTE_WORKFLOW_QUERY, "variables": variables}, self.submit_timeout)

        execution = (body.get("data") or {}).get("executeWorkflow")
        if not execution:
            raise UpstreamFailure("Invalid response from workflow API")
        result = _maybe_json(execution.get("result"))
        if result is None:
            raise UpstreamFailure("No output from workflow API")

        request_id = result.get("requestId") if isinstance(result, dict) else None
        if request_id:
            logger.info(f"Workflow submitted with requestId: {request_id}")
            return SubmissionOutcome(request_id=str(request_id), status=JobStatus.PENDING)

        logger.info("Workflow returned an inline result")
        return SubmissionOutcome(request_id=None, status=JobStatus.SUCCESS, result=result)

    async def check_status(self, request_id: str) -> StatusReport:
        logger.info(f"[POLL] Checking results for requestId: {request_id}")
        body = await self._post(
            {"query": CHECK_STATUS_QUERY, "variables": {"request_id": request_id}},
            self.poll_timeout,
        )
        report = normalize_status((body.get("data") or {}).get("checkStatus"))
        logger.info(f"[POLL] {request_id} is {report.status.value}")
        return report

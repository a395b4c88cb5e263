"""
Exception taxonomy for the upload and relay services.

Services raise these exceptions; the HTTP layer in ``main`` translates them
into JSON error responses in a single place. Every exception carries the
HTTP status it maps to and an optional structured payload that is merged
into the response body so clients can act on it (for example the list of
missing chunk indices).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional


class RelayError(Exception):
    """Base class for all domain errors raised by the backend."""

    status_code: int = 500

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.payload: Dict[str, Any] = dict(payload or {})

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message, **self.payload}


class InvalidRequest(RelayError):
    status_code = 400


class DuplicateChunk(RelayError):
    status_code = 409

    def __init__(self, upload_id: str, chunk_index: int) -> None:
        super().__init__(
            f"Chunk {chunk_index} already uploaded",
            {"uploadId": upload_id, "chunkIndex": chunk_index},
        )
        self.upload_id = upload_id
        self.chunk_index = chunk_index


class NotFound(RelayError):
    status_code = 404


class IncompleteUpload(RelayError):
    """Raised when finalize is attempted before every chunk has arrived."""

    status_code = 400

    def __init__(self, received: int, total: int, missing: Iterable[int]) -> None:
        self.missing: List[int] = sorted(missing)
        super().__init__(
            f"Not all chunks received. Got {received}/{total}",
            {"missingChunks": self.missing},
        )


class CorruptSlot(RelayError):
    """The received count matched but a slot was empty on verification."""

    status_code = 400

    def __init__(self, chunk_index: int) -> None:
        super().__init__(f"Chunk {chunk_index} is missing or empty", {"chunkIndex": chunk_index})
        self.chunk_index = chunk_index


class UpstreamFailure(RelayError):
    """Object storage or the remote workflow API failed."""

    status_code = 502


class RateLimited(RelayError):
    status_code = 429


class ReportGenerationFailed(RelayError):
    status_code = 500

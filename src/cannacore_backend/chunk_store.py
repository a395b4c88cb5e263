"""
In-memory chunk accumulation for large file uploads.

Clients split a file into fixed-size chunks and send them one request at a
time to stay under the platform's request-size ceiling. This module keeps
the received chunks of every in-flight upload until the upload is
finalized, expires, or fails:

- Session creation on the first chunk of an unseen upload id
- Slot-indexed chunk placement (arrival order does not matter)
- Duplicate chunk rejection
- Completeness verification and atomic claim for finalization
- Expiry of abandoned sessions

The ChunkStore is an injectable object; the clock is a constructor argument
so expiry can be tested without sleeping.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional

from .errors import CorruptSlot, DuplicateChunk, IncompleteUpload, InvalidRequest, NotFound
from .models import ChunkReceipt, SessionSnapshot, SessionState

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class UploadSession:
    """
    Server-side accumulation state for one file's chunk set.

    Attributes:
        upload_id: Client-generated identifier, unique per upload attempt
        total_chunks: Declared by the first chunk and fixed afterwards
        file_name: Original file name declared by the client
        file_kind: Client tag used to namespace the stored object
        created_at: Clock reading at first-chunk arrival, drives expiry
        slots: One entry per chunk index, None until that chunk arrives
        received_count: Number of filled slots
    """

    upload_id: str
    total_chunks: int
    file_name: str
    file_kind: Optional[str]
    created_at: float
    slots: List[Optional[bytes]] = field(default_factory=list)
    received_count: int = 0
    state: SessionState = SessionState.OPEN

    def __post_init__(self) -> None:
        if not self.slots:
            self.slots = [None] * self.total_chunks

    @property
    def is_complete(self) -> bool:
        return self.received_count == self.total_chunks

    @property
    def progress(self) -> int:
        return round(self.received_count / self.total_chunks * 100)

    def missing_indices(self) -> List[int]:
        return [index for index, chunk in enumerate(self.slots) if chunk is None]

    def verify_slots(self) -> None:
        """Full pass over every slot; raises CorruptSlot on the first empty one."""
        for index in range(self.total_chunks):
            if index >= len(self.slots) or not self.slots[index]:
                raise CorruptSlot(index)

    def assemble(self) -> bytes:
        """Concatenate the slots in ascending index order."""
        return b"".join(self.slots)  # type: ignore[arg-type]

    @property
    def size(self) -> int:
        return sum(len(chunk) for chunk in self.slots if chunk)

    def to_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            upload_id=self.upload_id,
            state=self.state,
            file_name=self.file_name,
            file_kind=self.file_kind,
            total_chunks=self.total_chunks,
            received_count=self.received_count,
            created_at=datetime.fromtimestamp(self.created_at, tz=timezone.utc),
        )


class ChunkStore:
    """
    Registry mapping upload ids to their UploadSession.

    Thread Safety:
        Every mutation happens inside ``self._lock`` and the critical
        sections never await, so two requests for the same upload id
        cannot interleave between a check and the write that depends on it.
        Finalization claims the session (verify + remove) in one critical
        section before any storage I/O starts.
    """

    def __init__(
        self,
        session_ttl_seconds: float = 30 * 60,
        max_chunk_bytes: Optional[int] = None,
        clock: Clock = time.time,
    ) -> None:
        self.session_ttl_seconds = session_ttl_seconds
        self.max_chunk_bytes = max_chunk_bytes
        self._clock = clock
        self._sessions: Dict[str, UploadSession] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, upload_id: object) -> bool:
        with self._lock:
            return upload_id in self._sessions

    def get_snapshot(self, upload_id: str) -> Optional[SessionSnapshot]:
        with self._lock:
            session = self._sessions.get(upload_id)
            return session.to_snapshot() if session else None

    def receive_chunk(
        self,
        upload_id: Optional[str],
        chunk_index: Optional[int],
        total_chunks: Optional[int],
        file_name: Optional[str],
        file_kind: Optional[str],
        data: Optional[bytes],
    ) -> ChunkReceipt:
        """
        Record one chunk into its session.

        Args:
            upload_id: Client-generated upload identifier
            chunk_index: 0-based position of this chunk
            total_chunks: Declared chunk count for the whole file
            file_name: Original file name
            file_kind: Namespace tag for the stored object (optional)
            data: Raw chunk bytes

        Returns:
            ChunkReceipt with the received count and integer progress

        Raises:
            InvalidRequest: Missing fields, empty body, index out of range,
                or a total that disagrees with the open session
            DuplicateChunk: The slot for chunk_index is already filled
        """
        if not upload_id or chunk_index is None or not total_chunks or not file_name:
            raise InvalidRequest("Missing required parameters")
        if not data:
            raise InvalidRequest("No chunk data provided")
        if total_chunks < 1:
            raise InvalidRequest("totalChunks must be a positive integer")
        if self.max_chunk_bytes and len(data) > self.max_chunk_bytes:
            raise InvalidRequest(f"Chunk exceeds the {self.max_chunk_bytes} byte limit")

        with self._lock:
            session = self._sessions.get(upload_id)
            if session is None:
                if not 0 <= chunk_index < total_chunks:
                    raise InvalidRequest(f"Chunk index {chunk_index} out of range for {total_chunks} chunks")
                session = UploadSession(
                    upload_id=upload_id,
                    total_chunks=total_chunks,
                    file_name=file_name,
                    file_kind=file_kind,
                    created_at=self._clock(),
                )
                self._sessions[upload_id] = session
                logger.info(f"Opened upload session {upload_id} for {file_name} ({total_chunks} chunks)")
            elif total_chunks != session.total_chunks:
                raise InvalidRequest(
                    f"totalChunks {total_chunks} does not match the session's {session.total_chunks}"
                )
            elif not 0 <= chunk_index < session.total_chunks:
                raise InvalidRequest(f"Chunk index {chunk_index} out of range for {session.total_chunks} chunks")

            if session.slots[chunk_index] is not None:
                raise DuplicateChunk(upload_id, chunk_index)

            session.slots[chunk_index] = bytes(data)
            session.received_count += 1
            if session.is_complete:
                session.state = SessionState.COMPLETE

            receipt = ChunkReceipt(
                upload_id=upload_id,
                chunk_index=chunk_index,
                received_chunks=session.received_count,
                total_chunks=session.total_chunks,
                progress=session.progress,
            )

        logger.debug(
            f"Stored chunk {chunk_index} of {upload_id} ({len(data)} bytes). "
            f"Progress: {receipt.received_chunks}/{receipt.total_chunks}"
        )
        return receipt

    def claim_complete(self, upload_id: Optional[str]) -> UploadSession:
        """
        Verify a session is complete and remove it from the registry.

        The returned session is owned by the caller; a concurrent finalize
        for the same id sees NotFound and a concurrent chunk opens a new
        session.

        Raises:
            InvalidRequest: upload_id missing
            NotFound: No session for upload_id
            IncompleteUpload: Received count is short; session is kept
            CorruptSlot: Count matched but a slot is empty; session is discarded
        """
        if not upload_id:
            raise InvalidRequest("Missing uploadId")

        with self._lock:
            session = self._sessions.get(upload_id)
            if session is None:
                raise NotFound("Upload not found")

            if session.received_count != session.total_chunks:
                raise IncompleteUpload(
                    received=session.received_count,
                    total=session.total_chunks,
                    missing=session.missing_indices(),
                )

            try:
                session.verify_slots()
            except CorruptSlot as exc:
                del self._sessions[upload_id]
                session.state = SessionState.DISCARDED
                logger.error(
                    f"Upload {upload_id} reported {session.received_count}/{session.total_chunks} "
                    f"chunks but slot {exc.chunk_index} is empty; session discarded"
                )
                raise

            del self._sessions[upload_id]
            return session

    def discard(self, upload_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(upload_id, None)
        if session is None:
            return False
        session.state = SessionState.DISCARDED
        logger.info(f"Discarded upload session {upload_id}")
        return True

    def sweep_expired(self) -> List[str]:
        """
        Drop every session older than the TTL.

        Returns:
            The upload ids that were discarded
        """
        now = self._clock()
        with self._lock:
            expired = [
                upload_id
                for upload_id, session in self._sessions.items()
                if now - session.created_at > self.session_ttl_seconds
            ]
            for upload_id in expired:
                self._sessions.pop(upload_id).state = SessionState.DISCARDED

        for upload_id in expired:
            logger.info(f"Cleaning up expired upload: {upload_id}")
        return expired

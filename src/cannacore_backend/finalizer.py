"""
Reassembly of chunked uploads into durable objects.

Finalizing an upload claims its session from the ChunkStore, concatenates
the chunks in index order, optionally shrinks oversized PDFs, and persists
the result through ObjectStorage. The session never survives a finalize
attempt that got past verification: success and storage failure both
retire it, so a permanently failing upload cannot pin memory. Retrying is
the client's job.
"""

from __future__ import annotations

import logging
from typing import Optional

from .chunk_store import ChunkStore
from .compression import PdfSizeReducer
from .errors import UpstreamFailure
from .models import FinalizedUpload, SessionState
from .storage import ObjectStorage

logger = logging.getLogger(__name__)


class UploadFinalizer:
    def __init__(
        self,
        store: ChunkStore,
        storage: ObjectStorage,
        reducer: Optional[PdfSizeReducer] = None,
        default_namespace: str = "uploads",
    ) -> None:
        self.store = store
        self.storage = storage
        self.reducer = reducer
        self.default_namespace = default_namespace

    async def finalize(self, upload_id: Optional[str], file_kind: Optional[str] = None) -> FinalizedUpload:
        """
        Assemble and persist a completed upload.

        Args:
            upload_id: The upload to finalize
            file_kind: Storage namespace; falls back to the kind declared
                with the chunks, then to the default namespace

        Returns:
            FinalizedUpload with the durable URL, storage key and byte size

        Raises:
            NotFound, IncompleteUpload, CorruptSlot: see ChunkStore.claim_complete
            UpstreamFailure: The storage write failed; the session is gone
        """
        session = self.store.claim_complete(upload_id)
        logger.info(f"Finalizing upload {session.upload_id}: {session.received_count}/{session.total_chunks} chunks")

        try:
            assembled = session.assemble()
            session.slots = []
            logger.info(f"Assembled buffer size: {len(assembled) / 1024 / 1024:.2f}MB")

            if self.reducer is not None and self.reducer.should_reduce(assembled, session.file_name):
                assembled = await self.reducer.reduce(assembled)

            namespace = file_kind or session.file_kind or self.default_namespace
            stored = await self.storage.upload(namespace, session.file_name, assembled)
        except UpstreamFailure:
            session.state = SessionState.DISCARDED
            logger.error(f"Finalize failed for upload {session.upload_id}; session discarded")
            raise
        except Exception as exc:
            session.state = SessionState.DISCARDED
            logger.exception(f"Unexpected error finalizing upload {session.upload_id}")
            raise UpstreamFailure(f"Failed to finalize upload: {exc}") from exc

        session.state = SessionState.FINALIZED
        logger.info(f"File uploaded to storage: {stored.url}")
        return FinalizedUpload(
            upload_id=session.upload_id,
            url=stored.url,
            file_name=stored.key,
            size=stored.size,
        )

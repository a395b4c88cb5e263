"""
Tests for chunk reception and session bookkeeping.
"""

import threading

import pytest

from cannacore_backend.chunk_store import ChunkStore, UploadSession
from cannacore_backend.errors import CorruptSlot, DuplicateChunk, IncompleteUpload, InvalidRequest, NotFound
from cannacore_backend.models import SessionState


def _send(store, upload_id, index, total, data=b"x", file_name="coa.pdf", kind="pdfs"):
    return store.receive_chunk(upload_id, index, total, file_name, kind, data)


class TestReceiveChunk:
    """Tests for ChunkStore.receive_chunk."""

    def test_first_chunk_opens_session(self, chunk_store):
        """The first chunk for an unseen id creates a session sized to the total."""
        receipt = _send(chunk_store, "up-1", 0, 4, b"abc")

        assert receipt.received_chunks == 1
        assert receipt.total_chunks == 4
        assert receipt.progress == 25
        snapshot = chunk_store.get_snapshot("up-1")
        assert snapshot.total_chunks == 4
        assert snapshot.state == SessionState.OPEN
        assert snapshot.file_kind == "pdfs"

    def test_progress_is_rounded_percent(self, chunk_store):
        _send(chunk_store, "up-1", 0, 3)
        receipt = _send(chunk_store, "up-1", 2, 3)
        assert receipt.progress == 67

    def test_last_chunk_marks_session_complete(self, chunk_store):
        _send(chunk_store, "up-1", 1, 2)
        receipt = _send(chunk_store, "up-1", 0, 2)
        assert receipt.progress == 100
        assert chunk_store.get_snapshot("up-1").state == SessionState.COMPLETE

    @pytest.mark.parametrize(
        "upload_id, index, total, file_name",
        [
            (None, 0, 2, "a.pdf"),
            ("", 0, 2, "a.pdf"),
            ("up", None, 2, "a.pdf"),
            ("up", 0, None, "a.pdf"),
            ("up", 0, 0, "a.pdf"),
            ("up", 0, 2, None),
        ],
    )
    def test_missing_fields_rejected(self, chunk_store, upload_id, index, total, file_name):
        with pytest.raises(InvalidRequest):
            chunk_store.receive_chunk(upload_id, index, total, file_name, None, b"data")
        assert len(chunk_store) == 0

    def test_empty_chunk_rejected(self, chunk_store):
        with pytest.raises(InvalidRequest, match="No chunk data"):
            _send(chunk_store, "up-1", 0, 2, b"")

    def test_index_zero_is_valid(self, chunk_store):
        """Chunk index 0 is falsy but present."""
        assert _send(chunk_store, "up-1", 0, 1).received_chunks == 1

    def test_index_out_of_range_rejected(self, chunk_store):
        _send(chunk_store, "up-1", 0, 2)
        with pytest.raises(InvalidRequest, match="out of range"):
            _send(chunk_store, "up-1", 2, 2)
        with pytest.raises(InvalidRequest, match="out of range"):
            _send(chunk_store, "up-2", -1, 2)

    def test_total_mismatch_rejected(self, chunk_store):
        _send(chunk_store, "up-1", 0, 3)
        with pytest.raises(InvalidRequest, match="does not match"):
            _send(chunk_store, "up-1", 1, 5)

    def test_oversized_chunk_rejected(self, clock):
        store = ChunkStore(max_chunk_bytes=4, clock=clock)
        with pytest.raises(InvalidRequest, match="byte limit"):
            _send(store, "up-1", 0, 1, b"12345")

    def test_duplicate_chunk_rejected_and_first_bytes_kept(self, chunk_store):
        """A resent index fails and does not overwrite the stored chunk."""
        _send(chunk_store, "up-1", 0, 2, b"first")
        with pytest.raises(DuplicateChunk) as excinfo:
            _send(chunk_store, "up-1", 0, 2, b"second")

        assert excinfo.value.chunk_index == 0
        _send(chunk_store, "up-1", 1, 2, b"-tail")
        session = chunk_store.claim_complete("up-1")
        assert session.assemble() == b"first-tail"
        assert session.received_count == 2

    def test_sessions_are_isolated(self, chunk_store):
        _send(chunk_store, "a", 0, 2, b"A0")
        _send(chunk_store, "b", 0, 2, b"B0")
        _send(chunk_store, "b", 1, 2, b"B1")

        assert chunk_store.get_snapshot("a").received_count == 1
        assert chunk_store.claim_complete("b").assemble() == b"B0B1"
        assert "a" in chunk_store


class TestClaimComplete:
    """Tests for completeness verification before finalize."""

    def test_unknown_upload(self, chunk_store):
        with pytest.raises(NotFound):
            chunk_store.claim_complete("nope")

    def test_missing_upload_id(self, chunk_store):
        with pytest.raises(InvalidRequest):
            chunk_store.claim_complete(None)

    def test_incomplete_lists_missing_indices_and_keeps_session(self, chunk_store):
        """Only chunks 0 and 2 of 3 were sent; index 1 is reported missing."""
        _send(chunk_store, "up-1", 0, 3)
        _send(chunk_store, "up-1", 2, 3)

        with pytest.raises(IncompleteUpload) as excinfo:
            chunk_store.claim_complete("up-1")

        assert excinfo.value.missing == [1]
        assert excinfo.value.to_body()["missingChunks"] == [1]
        assert "up-1" in chunk_store

    def test_resend_missing_chunk_then_claim(self, chunk_store):
        _send(chunk_store, "up-1", 0, 3, b"a")
        _send(chunk_store, "up-1", 2, 3, b"c")
        with pytest.raises(IncompleteUpload):
            chunk_store.claim_complete("up-1")

        _send(chunk_store, "up-1", 1, 3, b"b")
        assert chunk_store.claim_complete("up-1").assemble() == b"abc"

    def test_claim_removes_session(self, chunk_store):
        _send(chunk_store, "up-1", 0, 1)
        chunk_store.claim_complete("up-1")

        assert "up-1" not in chunk_store
        with pytest.raises(NotFound):
            chunk_store.claim_complete("up-1")

    def test_count_slot_divergence_raises_corrupt_slot(self, chunk_store):
        """A matching count with an empty slot is a defect; the session is dropped."""
        _send(chunk_store, "up-1", 0, 2)
        _send(chunk_store, "up-1", 1, 2)
        chunk_store._sessions["up-1"].slots[1] = None

        with pytest.raises(CorruptSlot) as excinfo:
            chunk_store.claim_complete("up-1")

        assert excinfo.value.chunk_index == 1
        assert "up-1" not in chunk_store

    def test_reupload_after_discard_is_new_session(self, chunk_store):
        _send(chunk_store, "up-1", 0, 2, b"old")
        assert chunk_store.discard("up-1") is True

        receipt = _send(chunk_store, "up-1", 0, 1, b"new")
        assert receipt.total_chunks == 1
        assert chunk_store.claim_complete("up-1").assemble() == b"new"


class TestExpiry:
    """Tests for time-based session reclamation."""

    def test_sweep_drops_sessions_past_ttl(self, chunk_store, clock):
        _send(chunk_store, "old", 0, 2)
        clock.advance(20 * 60)
        _send(chunk_store, "young", 0, 2)
        clock.advance(11 * 60)

        assert chunk_store.sweep_expired() == ["old"]
        assert "old" not in chunk_store
        assert "young" in chunk_store

    def test_session_at_exact_ttl_is_kept(self, chunk_store, clock):
        _send(chunk_store, "up-1", 0, 2)
        clock.advance(30 * 60)
        assert chunk_store.sweep_expired() == []

    def test_expired_session_is_not_finalizable_even_if_completed_later(self, chunk_store, clock):
        """Expiry drops the partial upload; the late chunk opens a fresh session."""
        _send(chunk_store, "up-1", 0, 2, b"a")
        clock.advance(31 * 60)
        chunk_store.sweep_expired()

        with pytest.raises(NotFound):
            chunk_store.claim_complete("up-1")

        _send(chunk_store, "up-1", 1, 2, b"b")
        with pytest.raises(IncompleteUpload) as excinfo:
            chunk_store.claim_complete("up-1")
        assert excinfo.value.missing == [0]

    def test_expired_complete_session_is_not_finalizable(self, chunk_store, clock):
        """Every chunk arrived, but the window passed before finalize."""
        _send(chunk_store, "up-1", 0, 2, b"a")
        _send(chunk_store, "up-1", 1, 2, b"b")
        clock.advance(31 * 60)

        assert chunk_store.sweep_expired() == ["up-1"]
        with pytest.raises(NotFound):
            chunk_store.claim_complete("up-1")


class TestUploadSession:
    def test_slots_sized_to_total(self):
        session = UploadSession("u", total_chunks=3, file_name="f", file_kind=None, created_at=0.0)
        assert session.slots == [None, None, None]
        assert session.missing_indices() == [0, 1, 2]
        assert session.size == 0


class TestConcurrentAccess:
    """The same upload id hit from several threads at once."""

    def test_racing_duplicate_chunk_accepted_once(self, chunk_store):
        barrier = threading.Barrier(2)
        outcomes = []

        def send(data):
            barrier.wait()
            try:
                outcomes.append(chunk_store.receive_chunk("up-1", 0, 2, "coa.pdf", "pdfs", data))
            except DuplicateChunk as exc:
                outcomes.append(exc)

        threads = [threading.Thread(target=send, args=(data,)) for data in (b"left", b"right")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len([item for item in outcomes if isinstance(item, DuplicateChunk)]) == 1
        assert chunk_store.get_snapshot("up-1").received_count == 1

    def test_racing_chunks_for_distinct_indices_all_land(self, chunk_store):
        total = 32
        barrier = threading.Barrier(total)

        def send(index):
            barrier.wait()
            chunk_store.receive_chunk("up-1", index, total, "coa.pdf", "pdfs", bytes([index]))

        threads = [threading.Thread(target=send, args=(index,)) for index in range(total)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert chunk_store.claim_complete("up-1").assemble() == bytes(range(total))

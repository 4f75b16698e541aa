"""Unit tests for fenced document updates and run leases."""

from __future__ import annotations

from datetime import timedelta

import pytest

from docrag.core.database import utcnow
from docrag.schemas.document import DocumentStatus
from docrag.services.document_store import DocumentRepository


@pytest.fixture
def documents(session_factory) -> DocumentRepository:
    return DocumentRepository(session_factory)


def _pending(documents: DocumentRepository, document_id: str = "doc-1", job_id: str = "job-1"):
    return documents.create(
        id=document_id,
        name="notes.txt",
        blob_path=f"{document_id}.txt",
        size=10,
        owner_id="alice",
        status=DocumentStatus.PENDING.value,
        job_id=job_id,
        version=1,
    )


class TestClaim:
    def test_claim_moves_pending_to_processing(self, documents: DocumentRepository) -> None:
        _pending(documents)

        token = documents.claim_for_job("doc-1", "job-1", 1, 60)

        claimed = documents.get("doc-1")
        assert token == claimed.version == 2
        assert claimed.status == DocumentStatus.PROCESSING.value
        assert claimed.attempts == 1
        assert claimed.lease_expires_at > utcnow()

    def test_other_job_cannot_claim(self, documents: DocumentRepository) -> None:
        _pending(documents)

        assert documents.claim_for_job("doc-1", "job-2", 1, 60) is None
        assert documents.get("doc-1").status == DocumentStatus.PENDING.value

    def test_held_lease_blocks_a_second_claim(self, documents: DocumentRepository) -> None:
        _pending(documents)
        documents.claim_for_job("doc-1", "job-1", 1, 60)

        assert documents.claim_for_job("doc-1", "job-1", 2, 60) is None
        assert documents.get("doc-1").attempts == 1

    def test_released_lease_can_be_claimed_again(self, documents: DocumentRepository) -> None:
        _pending(documents)
        token = documents.claim_for_job("doc-1", "job-1", 1, 60)

        assert documents.release_lease("doc-1", token)

        assert documents.claim_for_job("doc-1", "job-1", 2, 60) == token + 1
        assert documents.get("doc-1").attempts == 2

    def test_expired_lease_can_be_claimed_again(self, documents: DocumentRepository) -> None:
        _pending(documents)
        token = documents.claim_for_job("doc-1", "job-1", 1, 60)
        documents.update_if_version("doc-1", token, lease_expires_at=utcnow() - timedelta(seconds=1))

        assert documents.claim_for_job("doc-1", "job-1", 2, 60) == token + 1

    def test_renew_fails_once_superseded(self, documents: DocumentRepository) -> None:
        _pending(documents)
        token = documents.claim_for_job("doc-1", "job-1", 1, 60)

        assert documents.renew_lease("doc-1", token, 60)
        documents.mark_deleted("doc-1")
        assert not documents.renew_lease("doc-1", token, 60)


class TestTransitions:
    def test_fail_for_job_clears_the_lease(self, documents: DocumentRepository) -> None:
        _pending(documents)
        documents.claim_for_job("doc-1", "job-1", 1, 60)

        assert documents.fail_for_job("doc-1", "job-1", "gave up")

        failed = documents.get("doc-1")
        assert failed.status == DocumentStatus.ERROR.value
        assert failed.error_message == "gave up"
        assert failed.lease_expires_at is None

    def test_reset_for_retry_starts_a_new_job(self, documents: DocumentRepository) -> None:
        _pending(documents)
        documents.claim_for_job("doc-1", "job-1", 3, 60)
        documents.fail_for_job("doc-1", "job-1", "gave up")
        failed = documents.get("doc-1")

        assert documents.reset_for_retry("doc-1", failed.version, "job-2")

        reset = documents.get("doc-1")
        assert reset.status == DocumentStatus.PENDING.value
        assert reset.job_id == "job-2"
        assert reset.attempts == 0
        assert not documents.reset_for_retry("doc-1", failed.version, "job-3")


class TestCounts:
    def test_counts_by_status(self, documents: DocumentRepository) -> None:
        _pending(documents, "doc-1", "job-1")
        _pending(documents, "doc-2", "job-2")
        documents.claim_for_job("doc-2", "job-2", 1, 60)

        counts = documents.count_by_status()

        assert counts[DocumentStatus.PENDING.value] == 1
        assert counts[DocumentStatus.PROCESSING.value] == 1
        assert counts[DocumentStatus.ERROR.value] == 0

    def test_only_expired_leases_are_stalled(self, documents: DocumentRepository) -> None:
        _pending(documents, "doc-1", "job-1")
        _pending(documents, "doc-2", "job-2")
        documents.claim_for_job("doc-1", "job-1", 1, 60)
        token = documents.claim_for_job("doc-2", "job-2", 1, 60)
        documents.update_if_version("doc-2", token, lease_expires_at=utcnow() - timedelta(minutes=5))

        assert documents.count_stalled() == 1

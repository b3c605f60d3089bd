"""
Tests for `repositories/pending_domain_repository.py`.

Covers contract rules:
- domain_name is unique; duplicates surface as DuplicatePendingDomainError.
- Upsert by domain name keeps one record and never clears known ids.
- Upsert leaves a fresh processing lease alone and never reopens a completed record.
- The processing lease is compare-and-set and stale leases can be taken over.
- Verification writes are conditional on the record still being pending with the
  attempt counter that was read.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from domain.pending_domain import PendingDomain, PendingDomainStatus
from repositories.pending_domain_repository import (
    ClosedPendingDomainError,
    DuplicatePendingDomainError,
    PendingDomainRepository,
)


def _upsert(repo: PendingDomainRepository, clock, name: str = "foo.com", **overrides):
    values = dict(
        domain_name=name,
        order_id="ord_1",
        user_id="user-1",
        price=Decimal("899.00"),
        currency="INR",
        registration_period=1,
        reason="Insufficient funds in reseller account",
        now=clock(),
    )
    values.update(overrides)
    return repo.upsert_by_domain_name(**values)


def test_upsert_creates_then_refreshes_single_record(pending_repo, db, clock) -> None:
    first = _upsert(pending_repo, clock, customer_id="cust-1", contact_id="contact-1",
                    name_servers=("ns1.example.net",))
    clock.advance(minutes=5)
    second = _upsert(pending_repo, clock, "FOO.com", reason="Registry timeout")

    assert len(db.rows("pending_domains")) == 1
    assert second.id == first.id
    assert second.reason == "Registry timeout"
    # Known ids are carried forward, not cleared
    assert second.customer_id == "cust-1"
    assert second.contact_id == "contact-1"
    assert second.name_servers == ("ns1.example.net",)
    assert second.created_at == first.created_at


def test_create_duplicate_raises(pending_repo, clock) -> None:
    record = _upsert(pending_repo, clock)

    duplicate = PendingDomain(
        id="another-id",
        domain_name=record.domain_name,
        price=Decimal("1"),
        currency="INR",
        registration_period=1,
        user_id="user-1",
        order_id="ord_2",
    )
    with pytest.raises(DuplicatePendingDomainError):
        pending_repo.create(duplicate)


def test_list_search_matches_domain_or_order(pending_repo, clock) -> None:
    _upsert(pending_repo, clock, "alpha.com", order_id="ord_100")
    clock.advance(seconds=1)
    _upsert(pending_repo, clock, "beta.in", order_id="ord_200")

    assert [r.domain_name for r in pending_repo.list()] == ["beta.in", "alpha.com"]
    assert [r.domain_name for r in pending_repo.list("ALPHA")] == ["alpha.com"]
    assert [r.domain_name for r in pending_repo.list("ord_2")] == ["beta.in"]
    # Filter syntax characters are neutralised
    assert pending_repo.list("*),(") != []


def test_find_existing_names_is_case_insensitive(pending_repo, clock) -> None:
    _upsert(pending_repo, clock, "foo.com")

    assert pending_repo.find_existing_names(["FOO.com", "bar.com"]) == {"foo.com"}
    assert pending_repo.find_existing_names([]) == set()


def test_lease_is_compare_and_set(pending_repo, clock) -> None:
    record = _upsert(pending_repo, clock)
    grace = timedelta(minutes=15)

    leased = pending_repo.acquire_lease(record.id, now=clock(), grace=grace)
    assert leased is not None
    assert leased.status is PendingDomainStatus.PROCESSING

    assert pending_repo.acquire_lease(record.id, now=clock(), grace=grace) is None

    clock.advance(minutes=20)
    assert pending_repo.acquire_lease(record.id, now=clock(), grace=grace) is not None


def test_completed_record_cannot_be_leased(pending_repo, clock) -> None:
    record = _upsert(pending_repo, clock)
    pending_repo.update_fields(record.id, {"status": PendingDomainStatus.COMPLETED})

    assert pending_repo.acquire_lease(record.id, now=clock(), grace=timedelta(minutes=15)) is None


def test_record_verification_counts_attempts_and_is_conditional(pending_repo, clock) -> None:
    record = _upsert(pending_repo, clock)

    updated = pending_repo.record_verification(record, now=clock(), reason="still pending")
    assert updated.verification_attempts == 1
    assert updated.last_verified_at == clock()
    assert updated.reason == "still pending"

    pending_repo.acquire_lease(record.id, now=clock(), grace=timedelta(minutes=15))
    assert pending_repo.record_verification(updated, now=clock(), reason="x") is None


def test_list_ids_by_status(pending_repo, clock) -> None:
    a = _upsert(pending_repo, clock, "a.com")
    b = _upsert(pending_repo, clock, "b.com")
    pending_repo.update_fields(b.id, {"status": PendingDomainStatus.FAILED})

    assert pending_repo.list_ids_by_status(PendingDomainStatus.PENDING) == [a.id]
    assert {r.id for r in pending_repo.list_by_ids([a.id, b.id, "missing"])} == {a.id, b.id}


def test_upsert_leaves_a_fresh_lease_alone(pending_repo, clock) -> None:
    record = _upsert(pending_repo, clock)
    leased = pending_repo.acquire_lease(record.id, now=clock(), grace=timedelta(minutes=15))
    clock.advance(minutes=5)

    returned = _upsert(pending_repo, clock, order_id="ord_2", reason="Registry timeout")

    assert returned.status is PendingDomainStatus.PROCESSING
    stored = pending_repo.get_by_id(record.id)
    assert stored.status is PendingDomainStatus.PROCESSING
    assert stored.lease_acquired_at == leased.lease_acquired_at
    assert stored.order_id == "ord_1"
    assert stored.reason == "Insufficient funds in reseller account"


def test_upsert_takes_over_a_stale_lease(pending_repo, clock) -> None:
    record = _upsert(pending_repo, clock)
    pending_repo.acquire_lease(record.id, now=clock(), grace=timedelta(minutes=15))
    clock.advance(minutes=20)

    refreshed = _upsert(pending_repo, clock, order_id="ord_2", reason="Registry timeout")

    assert refreshed.id == record.id
    assert refreshed.status is PendingDomainStatus.PENDING
    assert refreshed.lease_acquired_at is None
    assert refreshed.order_id == "ord_2"


def test_upsert_refuses_to_reopen_a_completed_record(pending_repo, db, clock) -> None:
    record = _upsert(pending_repo, clock)
    pending_repo.update_fields(record.id, {"status": PendingDomainStatus.COMPLETED})

    with pytest.raises(ClosedPendingDomainError) as excinfo:
        _upsert(pending_repo, clock, order_id="ord_2")

    assert excinfo.value.record.id == record.id
    assert isinstance(excinfo.value, DuplicatePendingDomainError)
    stored = pending_repo.get_by_id(record.id)
    assert stored.status is PendingDomainStatus.COMPLETED
    assert stored.order_id == "ord_1"
    assert len(db.rows("pending_domains")) == 1


def test_concurrent_verifications_do_not_lose_an_attempt(pending_repo, clock) -> None:
    record = _upsert(pending_repo, clock)

    first = pending_repo.record_verification(record, now=clock(), reason="still pending")
    second = pending_repo.record_verification(record, now=clock(), reason="still pending")

    assert first.verification_attempts == 1
    assert second is None
    assert pending_repo.get_by_id(record.id).verification_attempts == 1

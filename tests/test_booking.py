"""
Tests for `domain/booking.py`.

Covers contract rules:
- Steps follow the transition table; out-of-order appends are rejected.
- Progress is fixed per step, non-decreasing, and domain_failed keeps the previous value.
- The last step maps deterministically to the line item status.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from domain.booking import (
    STEP_PROGRESS,
    BookingLog,
    BookingStatusEntry,
    BookingStep,
    DomainStatus,
    InvalidBookingTransitionError,
    allowed_next_steps,
    status_for_step,
)

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _log(*steps: BookingStep) -> BookingLog:
    log = BookingLog()
    for i, step in enumerate(steps):
        log = log.append(step, step.value, T0 + timedelta(seconds=i))
    return log


def test_happy_path_progress_is_fixed_per_step() -> None:
    """Verify each step records its fixed progress value."""

    log = _log(
        BookingStep.PAYMENT_VERIFIED,
        BookingStep.CUSTOMER_CREATED,
        BookingStep.CONTACT_CREATED,
        BookingStep.DOMAIN_REGISTERING,
        BookingStep.DOMAIN_REGISTERED,
        BookingStep.DNS_ACTIVATED,
    )

    assert [e.progress for e in log.entries] == [20, 40, 60, 80, 100, 100]
    assert log.status is DomainStatus.REGISTERED
    assert log.progress == 100


def test_domain_failed_keeps_previous_progress() -> None:
    log = _log(BookingStep.PAYMENT_VERIFIED, BookingStep.CUSTOMER_CREATED, BookingStep.DOMAIN_FAILED)

    assert log.last_step is BookingStep.DOMAIN_FAILED
    assert log.progress == 40
    assert log.status is DomainStatus.FAILED


def test_out_of_order_append_is_rejected() -> None:
    """Verify steps cannot be skipped or started without payment."""

    with pytest.raises(InvalidBookingTransitionError):
        BookingLog().append(BookingStep.CUSTOMER_CREATED, "x", T0)

    log = _log(BookingStep.PAYMENT_VERIFIED)
    with pytest.raises(InvalidBookingTransitionError):
        log.append(BookingStep.DOMAIN_REGISTERING, "skip", T0)

    registered = _log(
        BookingStep.PAYMENT_VERIFIED,
        BookingStep.CUSTOMER_CREATED,
        BookingStep.CONTACT_CREATED,
        BookingStep.DOMAIN_REGISTERING,
        BookingStep.DOMAIN_REGISTERED,
    )
    with pytest.raises(InvalidBookingTransitionError):
        registered.append(BookingStep.DOMAIN_FAILED, "late failure", T0)


def test_append_does_not_mutate_original_log() -> None:
    log = _log(BookingStep.PAYMENT_VERIFIED)
    extended = log.append(BookingStep.CUSTOMER_CREATED, "created", T0)

    assert len(log.entries) == 1
    assert len(extended.entries) == 2


def test_explicit_lower_progress_is_rejected() -> None:
    log = _log(BookingStep.PAYMENT_VERIFIED, BookingStep.CUSTOMER_CREATED)

    with pytest.raises(InvalidBookingTransitionError):
        log.append(BookingStep.CONTACT_CREATED, "x", T0, progress=30)


def test_retry_after_failure_can_reenter_registration() -> None:
    """Verify a failed log can resume at the step whose ids are missing."""

    failed = _log(
        BookingStep.PAYMENT_VERIFIED,
        BookingStep.CUSTOMER_CREATED,
        BookingStep.CONTACT_CREATED,
        BookingStep.DOMAIN_REGISTERING,
        BookingStep.DOMAIN_FAILED,
    )

    assert failed.can_append(BookingStep.DOMAIN_REGISTERING)
    resumed = failed.append(BookingStep.DOMAIN_REGISTERING, "retry", T0)
    assert resumed.progress == 80
    assert resumed.status is DomainStatus.PROCESSING


def test_pending_step_maps_to_pending_status() -> None:
    log = _log(
        BookingStep.PAYMENT_VERIFIED,
        BookingStep.CUSTOMER_CREATED,
        BookingStep.CONTACT_CREATED,
        BookingStep.DOMAIN_REGISTERING,
        BookingStep.DOMAIN_PENDING,
    )

    assert log.status is DomainStatus.PENDING
    assert log.can_append(BookingStep.DOMAIN_REGISTERED)


def test_progress_is_non_decreasing_along_every_allowed_path() -> None:
    """Walk every allowed transition (depth-limited) and check monotonic progress."""

    def walk(log: BookingLog, depth: int) -> None:
        values = [e.progress for e in log.entries]
        assert values == sorted(values)
        assert log.status is status_for_step(log.last_step)
        if depth == 0:
            return
        for step in allowed_next_steps(log.last_step):
            if not log.can_append(step):
                with pytest.raises(InvalidBookingTransitionError):
                    log.append(step, step.value, T0)
                continue
            walk(log.append(step, step.value, T0), depth - 1)

    walk(BookingLog(), 6)


def test_can_append_checks_progress_after_late_failure() -> None:
    failed = _log(
        BookingStep.PAYMENT_VERIFIED,
        BookingStep.CUSTOMER_CREATED,
        BookingStep.CONTACT_CREATED,
        BookingStep.DOMAIN_REGISTERING,
        BookingStep.DOMAIN_FAILED,
    )

    assert BookingStep.CUSTOMER_CREATED in allowed_next_steps(failed.last_step)
    assert not failed.can_append(BookingStep.CUSTOMER_CREATED)
    assert failed.can_append(BookingStep.DOMAIN_FAILED)


def test_status_mapping_is_fixed() -> None:
    assert status_for_step(None) is DomainStatus.PENDING
    for step in (
        BookingStep.PAYMENT_VERIFIED,
        BookingStep.CUSTOMER_CREATED,
        BookingStep.CONTACT_CREATED,
        BookingStep.DOMAIN_REGISTERING,
    ):
        assert status_for_step(step) is DomainStatus.PROCESSING
    assert status_for_step(BookingStep.DOMAIN_REGISTERED) is DomainStatus.REGISTERED
    assert status_for_step(BookingStep.DNS_ACTIVATED) is DomainStatus.REGISTERED
    assert status_for_step(BookingStep.DOMAIN_FAILED) is DomainStatus.FAILED
    assert BookingStep.DOMAIN_FAILED not in STEP_PROGRESS


def test_entry_timestamp_must_be_utc() -> None:
    with pytest.raises(ValueError):
        BookingStatusEntry(
            step=BookingStep.PAYMENT_VERIFIED,
            message="x",
            timestamp=datetime(2026, 1, 1, 12, 0, 0),
            progress=20,
        )


def test_log_serialization_preserves_entries() -> None:
    log = _log(BookingStep.PAYMENT_VERIFIED, BookingStep.CUSTOMER_CREATED)

    restored = BookingLog.from_dicts(log.to_dicts())

    assert restored == log
    assert log.to_dicts()[0]["step"] == "payment_verified"

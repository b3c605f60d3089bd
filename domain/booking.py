"""
Domain: Booking-status log and the provisioning state machine.

Each domain line item carries an append-only booking-status log. Entries record
which provisioning step was reached, a human-readable message, a timestamp and
a progress percentage.

Rules implemented here:
- Steps follow an explicit transition table; out-of-order appends are rejected.
- Progress is non-decreasing within one domain's log.
- domain_failed keeps the progress of the entry before it.
- The last entry's step determines the line item's visible status.

This module is pure: no I/O, no clock access.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Sequence, Tuple

from .time import parse_utc_datetime, require_utc_timestamp, to_iso_utc


class BookingStep(str, Enum):
    PAYMENT_VERIFIED = "payment_verified"
    CUSTOMER_CREATED = "customer_created"
    CONTACT_CREATED = "contact_created"
    DOMAIN_REGISTERING = "domain_registering"
    DOMAIN_REGISTERED = "domain_registered"
    DOMAIN_PENDING = "domain_pending"
    DOMAIN_FAILED = "domain_failed"
    DNS_ACTIVATED = "dns_activated"


class DomainStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    REGISTERED = "registered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_unfinished(self) -> bool:
        return self in (DomainStatus.PENDING, DomainStatus.PROCESSING)


# domain_failed is absent on purpose: it inherits the previous entry's progress.
STEP_PROGRESS: Mapping[BookingStep, int] = {
    BookingStep.PAYMENT_VERIFIED: 20,
    BookingStep.CUSTOMER_CREATED: 40,
    BookingStep.CONTACT_CREATED: 60,
    BookingStep.DOMAIN_REGISTERING: 80,
    BookingStep.DOMAIN_PENDING: 80,
    BookingStep.DOMAIN_REGISTERED: 100,
    BookingStep.DNS_ACTIVATED: 100,
}

_TRANSITIONS: Mapping[Optional[BookingStep], FrozenSet[BookingStep]] = {
    None: frozenset({BookingStep.PAYMENT_VERIFIED}),
    BookingStep.PAYMENT_VERIFIED: frozenset({
        BookingStep.CUSTOMER_CREATED,
        BookingStep.DOMAIN_FAILED,
    }),
    BookingStep.CUSTOMER_CREATED: frozenset({
        BookingStep.CONTACT_CREATED,
        BookingStep.DOMAIN_FAILED,
    }),
    BookingStep.CONTACT_CREATED: frozenset({
        BookingStep.DOMAIN_REGISTERING,
        BookingStep.DOMAIN_FAILED,
    }),
    BookingStep.DOMAIN_REGISTERING: frozenset({
        BookingStep.DOMAIN_REGISTERED,
        BookingStep.DOMAIN_PENDING,
        BookingStep.DOMAIN_FAILED,
    }),
    BookingStep.DOMAIN_PENDING: frozenset({
        BookingStep.DOMAIN_REGISTERING,
        BookingStep.DOMAIN_REGISTERED,
        BookingStep.DOMAIN_FAILED,
    }),
    # Retries re-enter from a failure, skipping steps whose ids are known.
    BookingStep.DOMAIN_FAILED: frozenset({
        BookingStep.CUSTOMER_CREATED,
        BookingStep.CONTACT_CREATED,
        BookingStep.DOMAIN_REGISTERING,
        BookingStep.DOMAIN_REGISTERED,
        BookingStep.DOMAIN_FAILED,
    }),
    BookingStep.DOMAIN_REGISTERED: frozenset({BookingStep.DNS_ACTIVATED}),
    BookingStep.DNS_ACTIVATED: frozenset(),
}

_STATUS_BY_STEP: Mapping[BookingStep, DomainStatus] = {
    BookingStep.PAYMENT_VERIFIED: DomainStatus.PROCESSING,
    BookingStep.CUSTOMER_CREATED: DomainStatus.PROCESSING,
    BookingStep.CONTACT_CREATED: DomainStatus.PROCESSING,
    BookingStep.DOMAIN_REGISTERING: DomainStatus.PROCESSING,
    BookingStep.DOMAIN_PENDING: DomainStatus.PENDING,
    BookingStep.DOMAIN_REGISTERED: DomainStatus.REGISTERED,
    BookingStep.DNS_ACTIVATED: DomainStatus.REGISTERED,
    BookingStep.DOMAIN_FAILED: DomainStatus.FAILED,
}


class InvalidBookingTransitionError(ValueError):
    """Raised when an append would break the step ordering or progress invariant."""

    def __init__(self, previous: Optional[BookingStep], attempted: BookingStep, detail: str = ""):
        self.previous = previous
        self.attempted = attempted
        prev = previous.value if previous is not None else "<empty>"
        message = f"Cannot append '{attempted.value}' after '{prev}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


def allowed_next_steps(previous: Optional[BookingStep]) -> FrozenSet[BookingStep]:
    return _TRANSITIONS[previous]


def status_for_step(step: Optional[BookingStep]) -> DomainStatus:
    """Fixed mapping from the last log step to the line item's visible status."""

    if step is None:
        return DomainStatus.PENDING
    return _STATUS_BY_STEP[step]


@dataclass(frozen=True, slots=True)
class BookingStatusEntry:
    step: BookingStep
    message: str
    timestamp: datetime
    progress: int

    def __post_init__(self) -> None:
        require_utc_timestamp("timestamp", self.timestamp)
        if not 0 <= self.progress <= 100:
            raise ValueError("progress must be within 0..100")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step.value,
            "message": self.message,
            "timestamp": to_iso_utc(self.timestamp, name="timestamp"),
            "progress": self.progress,
        }

    @staticmethod
    def from_dict(raw: Mapping[str, Any]) -> "BookingStatusEntry":
        return BookingStatusEntry(
            step=BookingStep(str(raw["step"])),
            message=str(raw.get("message", "")),
            timestamp=parse_utc_datetime(raw["timestamp"]),
            progress=int(raw.get("progress", 0)),
        )


@dataclass(frozen=True, slots=True)
class BookingLog:
    """
    Immutable booking-status log for one domain.

    `append` validates the transition and returns a new log; the original is
    left unchanged.
    """

    entries: Tuple[BookingStatusEntry, ...] = ()

    @staticmethod
    def from_dicts(raw: Optional[Sequence[Mapping[str, Any]]]) -> "BookingLog":
        return BookingLog(entries=tuple(BookingStatusEntry.from_dict(r) for r in (raw or [])))

    @property
    def last(self) -> Optional[BookingStatusEntry]:
        return self.entries[-1] if self.entries else None

    @property
    def last_step(self) -> Optional[BookingStep]:
        last = self.last
        return last.step if last is not None else None

    @property
    def progress(self) -> int:
        last = self.last
        return last.progress if last is not None else 0

    @property
    def status(self) -> DomainStatus:
        return status_for_step(self.last_step)

    def progress_for(self, step: BookingStep) -> int:
        if step is BookingStep.DOMAIN_FAILED:
            return self.progress
        return STEP_PROGRESS[step]

    def can_append(self, step: BookingStep) -> bool:
        """True when `step` is an allowed transition that keeps progress non-decreasing."""

        if step not in allowed_next_steps(self.last_step):
            return False
        return self.progress_for(step) >= self.progress

    def append(
        self,
        step: BookingStep,
        message: str,
        timestamp: datetime,
        progress: Optional[int] = None,
    ) -> "BookingLog":
        previous = self.last_step
        if step not in allowed_next_steps(previous):
            raise InvalidBookingTransitionError(previous, step)

        value = self.progress_for(step) if progress is None else progress
        if value < self.progress:
            raise InvalidBookingTransitionError(
                previous, step, f"progress {value} is lower than {self.progress}"
            )

        entry = BookingStatusEntry(step=step, message=message, timestamp=timestamp, progress=value)
        return BookingLog(entries=self.entries + (entry,))

    def to_dicts(self) -> list[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries]

"""
Tests for the pending-domain verification CLI helpers.
"""

from __future__ import annotations

from domain.registrar import DomainStatusReport, RegistrarDomainState, RegistrarError
from fakes import paid_line_item, paid_order
from scripts.verify_pending_domains import chunked, verify_in_batches
from services.reconciliation_service import VerificationOutcome, VerificationReport


class TestChunked:
    def test_splits_into_fixed_size_batches(self):
        assert chunked(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]

    def test_empty_input(self):
        assert chunked([], 3) == []


class TestVerifyInBatches:
    def _failed(self, provisioning, orders, registrar, clock, order_id, domain):
        orders.create_order(paid_order(order_id, [paid_line_item(domain, clock())], clock()))
        registrar.register_outcomes.append(RegistrarError("Insufficient funds"))
        return provisioning.execute(order_id, domain).pending_domain_id

    def test_batches_without_pending_records_are_skipped(
        self, provisioning, reconciliation, orders, registrar, clock
    ):
        first = self._failed(provisioning, orders, registrar, clock, "ord_1", "foo.com")
        second = self._failed(provisioning, orders, registrar, clock, "ord_2", "bar.com")
        registrar.statuses["foo.com"] = DomainStatusReport(
            domain_name="foo.com",
            state=RegistrarDomainState.ACTIVE,
            registrar_order_id="rc-9",
        )

        results = verify_in_batches(reconciliation, [first, "unknown-id", second], batch_size=1)
        report = VerificationReport(results=results)

        assert [r.domain_name for r in results] == ["foo.com", "bar.com"]
        assert report.successful == 1
        assert report.pending == 1
        assert results[1].outcome is VerificationOutcome.PENDING

#!/usr/bin/env python3
"""
Pending Domain Verification Script

Asks the registrar for the current state of pending domains and records the
outcome: active domains are completed (and their order line items marked
registered), registrar rejections are marked failed, everything else stays
pending with an updated reason.

Usage:
    python verify_pending_domains.py
    python verify_pending_domains.py --ids 3f0c... 9a1b...
    python verify_pending_domains.py --batch-size 20
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Sequence

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.pending_domain import PendingDomainStatus
from repositories.client import get_supabase
from repositories.order_repository import OrderRepository
from repositories.pending_domain_repository import PendingDomainRepository
from repositories.user_repository import UserRepository
from services.provisioning_service import DomainProvisioningService
from services.reconciliation_service import (
    NoPendingDomainsError,
    ReconciliationService,
    VerificationOutcome,
    VerificationReport,
    VerificationResult,
)
from services.registrar_client import ResellerClubClient

logger = logging.getLogger("verify_pending_domains")

DEFAULT_BATCH_SIZE = 10


def chunked(ids: Sequence[str], size: int) -> List[List[str]]:
    return [list(ids[i:i + size]) for i in range(0, len(ids), size)]


def verify_in_batches(
    service: ReconciliationService,
    ids: Sequence[str],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> List[VerificationResult]:
    """Verify `ids` batch by batch; batches without pending records are skipped."""

    results: List[VerificationResult] = []
    batches = chunked(ids, batch_size)
    for number, batch in enumerate(batches, start=1):
        logger.info(f"Batch {number}/{len(batches)}: verifying {len(batch)} domain(s)")
        try:
            report = service.verify_batch(batch)
        except NoPendingDomainsError:
            logger.info(f"Batch {number}: no pending domains left, skipping")
            continue
        results.extend(report.results)
    return results


def print_summary(report: VerificationReport) -> None:
    print()
    print("=" * 60)
    print("VERIFICATION SUMMARY")
    print("=" * 60)
    print(f"Domains checked:   {report.total}")
    print(f"  Registered:      {report.successful}")
    print(f"  Still pending:   {report.pending}")
    print(f"  Failed:          {report.failed}")

    for result in report.results:
        if result.outcome is VerificationOutcome.FAILED:
            print(f"  ✗ {result.domain_name}: {result.reason}")
        if result.integrity_error:
            print(f"  ⚠ {result.domain_name}: {result.integrity_error}")
    print("=" * 60)


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Verify pending domains against the registrar",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Verify every pending domain
  python verify_pending_domains.py

  # Verify specific records
  python verify_pending_domains.py --ids 3f0c6f1e-... 9a1b22c4-...
        """
    )

    parser.add_argument(
        "--ids",
        nargs="+",
        help="Pending domain ids (or domain names) to verify; default is all pending"
    )

    parser.add_argument(
        "--batch-size",
        "-b",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Domains per registrar batch (default: {DEFAULT_BATCH_SIZE})"
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.batch_size < 1:
        print("ERROR: --batch-size must be >= 1", file=sys.stderr)
        return 2

    registrar = None
    try:
        client = get_supabase()
        orders = OrderRepository(client)
        pending = PendingDomainRepository(client)
        registrar = ResellerClubClient.from_env()
        service = ReconciliationService(
            orders,
            pending,
            registrar,
            DomainProvisioningService(orders, pending, UserRepository(client), registrar),
        )

        ids = args.ids or pending.list_ids_by_status(PendingDomainStatus.PENDING)
        if not ids:
            print("No pending domains to verify")
            return 0

        print(f"Verifying {len(ids)} pending domain(s)...")
        report = VerificationReport(results=verify_in_batches(service, ids, args.batch_size))
        print_summary(report)

        return 1 if report.failed else 0

    except KeyboardInterrupt:
        print("\n\nVerification interrupted by user")
        return 130

    except Exception as e:
        logger.exception("Verification run failed")
        print(f"\nERROR: {e}", file=sys.stderr)
        return 1

    finally:
        if registrar is not None:
            registrar.close()


if __name__ == "__main__":
    sys.exit(main())

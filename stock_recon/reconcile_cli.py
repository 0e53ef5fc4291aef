from __future__ import annotations

import argparse
import logging
from datetime import date

from stock_recon.db import SessionLocal
from stock_recon.errors import ReconciliationError
from stock_recon.logging_config import configure_logging
from stock_recon.services.auto_compare_service import auto_compare_if_ready
from stock_recon.services.provider_factory import build_backend
from stock_recon.services.reconciliation_service import hold_comparison_key, reconcile

logger = logging.getLogger(__name__)


def run(*, store_id: int, comp_date: date, force: bool = False) -> dict:
    with SessionLocal() as db, hold_comparison_key(store_id, comp_date):
        backend = build_backend(db)
        try:
            if force:
                summary = reconcile(backend, store_id=store_id, comp_date=comp_date)
                outcome = {'compared': True, 'reason': 'forced', 'summary': summary.as_dict()}
            else:
                result = auto_compare_if_ready(backend, store_id=store_id, comp_date=comp_date)
                outcome = {
                    'compared': result.compared,
                    'reason': result.reason.value,
                    'summary': result.summary.as_dict() if result.summary else None,
                    'missing_items': [item.product_code for item in result.missing_items or []],
                }
        except ReconciliationError:
            db.rollback()
            raise
        db.commit()
    return outcome


def main() -> None:
    parser = argparse.ArgumentParser(description='Reconcile manual counts against the latest POS upload.')
    parser.add_argument('--store-id', type=int, required=True)
    parser.add_argument('--date', type=date.fromisoformat, required=True, help='Business date as YYYY-MM-DD.')
    parser.add_argument(
        '--force',
        action='store_true',
        help='Run the comparison even when one side (manual or POS) has no data for the date.',
    )
    parser.add_argument('--log-level', default=None)
    args = parser.parse_args()

    configure_logging(args.log_level)
    try:
        outcome = run(store_id=args.store_id, comp_date=args.date, force=args.force)
    except ReconciliationError as exc:
        logger.error('Reconciliation failed for store %s on %s: %s', args.store_id, args.date, exc)
        raise SystemExit(1) from exc

    summary = outcome['summary']
    if not outcome['compared']:
        print(f"No comparison for store {args.store_id} on {args.date}: {outcome['reason']}")
        return
    print(
        f"Comparison complete: total={summary['total']}, match={summary['match']}, "
        f"within_tolerance={summary['within_tolerance']}, over_tolerance={summary['over_tolerance']}, "
        f"manual_only={summary['manual_only']}, pos_only={summary['pos_only']}"
    )
    if outcome.get('missing_items'):
        print(f"Not counted manually: {', '.join(outcome['missing_items'])}")


if __name__ == '__main__':
    main()

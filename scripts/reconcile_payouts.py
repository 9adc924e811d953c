#!/usr/bin/env python3
"""List or finish payouts stuck in initiated / gateway_confirmed.

A payout ends up here when the Pi gateway completed the payment but the
ledger write after it failed (or the process died mid-payout).

Usage:
    python scripts/reconcile_payouts.py            # list only
    python scripts/reconcile_payouts.py --apply    # reconcile every stuck payout
    python scripts/reconcile_payouts.py --apply --id 42
"""

import argparse
import logging

import _bootstrap  # noqa: F401

from vocalcast.errors import VocalcastError
from vocalcast.extensions import GATEWAY_KEY
from vocalcast.main import create_app
from vocalcast.services.payout_service import PayoutService, list_unsettled_payouts

logger = logging.getLogger('reconcile_payouts')


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('--apply', action='store_true', help='Reconcile instead of just listing')
    parser.add_argument('--id', type=int, dest='payout_id', help='Only this payout')
    args = parser.parse_args()

    app = create_app()
    failures = 0
    with app.app_context():
        payouts = list_unsettled_payouts()
        if args.payout_id is not None:
            payouts = [p for p in payouts if p.id == args.payout_id]

        if not payouts:
            logger.info("No unsettled payouts")
            return 0

        service = PayoutService(gateway=app.extensions.get(GATEWAY_KEY))
        for payout in payouts:
            logger.info(
                "payout=%s creator=%s status=%s payment=%s txid=%s net=%s",
                payout.id, payout.creator_username, payout.status,
                payout.gateway_payment_id, payout.txid, payout.amount_paid,
            )
            if not args.apply:
                continue
            try:
                reconciled = service.reconcile_payout(payout.id)
                logger.info("payout=%s -> %s", payout.id, reconciled.status)
            except VocalcastError as e:
                failures += 1
                logger.error("payout=%s not reconciled: %s (%s)", payout.id, e.message, e.code)

    return 1 if failures else 0


if __name__ == '__main__':
    raise SystemExit(main())

#!/usr/bin/env python3
"""Delete all tips, payouts, payout requests and payout locks.

Meant for staging databases. Usage:
    python scripts/reset_payments.py --yes
"""

import argparse
import logging

from _bootstrap import confirm

from vocalcast.main import create_app
from vocalcast.services.maintenance import reset_payments

logger = logging.getLogger('reset_payments')


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('--yes', action='store_true', help='Skip the confirmation prompt')
    args = parser.parse_args()

    if not confirm('Delete ALL payment data?', args.yes):
        logger.info("Aborted")
        return 1

    app = create_app()
    with app.app_context():
        removed = reset_payments()
    for table, count in removed.items():
        logger.info("%-16s %s rows deleted", table, count)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())

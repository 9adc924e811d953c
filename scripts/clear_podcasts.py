#!/usr/bin/env python3
"""Delete every podcast and its flags.

Usage:
    python scripts/clear_podcasts.py
    python scripts/clear_podcasts.py --yes
"""

import argparse
import logging

from _bootstrap import confirm

from vocalcast.main import create_app
from vocalcast.services.maintenance import clear_podcasts

logger = logging.getLogger('clear_podcasts')


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('--yes', action='store_true', help='Skip the confirmation prompt')
    args = parser.parse_args()

    if not confirm('Delete ALL podcasts and flags?', args.yes):
        logger.info("Aborted")
        return 1

    app = create_app()
    with app.app_context():
        removed = clear_podcasts()
    logger.info("Deleted %s podcasts", removed)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())

#!/usr/bin/env python3
"""Print every table and column in the configured database.

Usage:
    python scripts/inspect_schema.py
    python scripts/inspect_schema.py --table payouts
"""

import argparse

import _bootstrap  # noqa: F401

from vocalcast.main import create_app
from vocalcast.services.maintenance import inspect_schema


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('--table', help='Only show this table')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        schema = inspect_schema()

    if args.table:
        if args.table not in schema:
            print(f"Table {args.table} not found")
            return 1
        schema = {args.table: schema[args.table]}

    for table, columns in schema.items():
        print(f"\n{table}")
        for column in columns:
            nullable = 'NULL' if column['nullable'] else 'NOT NULL'
            print(f"  {column['name']:<24} {column['type']:<20} {nullable}")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())

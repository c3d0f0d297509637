#!/usr/bin/env python3
"""
Batch repairs over lead_records and campaign_stats.

Jobs:
    merge-duplicates  fold conversions created as new rows back into their lead
    backfill-dates    give undated rows the day of their created_at
    rebuild-stats     recompute campaign_stats from lead_records

Usage:
    python scripts/repair_data.py rebuild-stats
    python scripts/repair_data.py merge-duplicates rebuild-stats --dry-run
    python scripts/repair_data.py all

Jobs are idempotent; `all` runs them in the order listed above.
"""
import sys
import os
import argparse
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from leadtrack.database import get_session
from leadtrack.logging_config import configure_logging
from leadtrack.services.repairs import JOBS, run_jobs

logger = logging.getLogger('scripts.repair_data')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Repair lead records and campaign counters')
    parser.add_argument('jobs', nargs='+', choices=sorted(JOBS) + ['all'], help='Jobs to run, in order')
    parser.add_argument('--dry-run', action='store_true', help='Report changes without committing')
    parser.add_argument('--verbose', action='store_true', help='Print per-row details')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    configure_logging()

    names = list(JOBS) if 'all' in args.jobs else args.jobs
    session = get_session()
    try:
        reports = run_jobs(session, names, dry_run=args.dry_run)
    finally:
        session.close()

    for report in reports:
        print(f'{report.job}: {report.examined} examined, {report.changed} changed')
        if args.verbose:
            for line in report.details:
                print(f'    {line}')
    if args.dry_run:
        print('Dry run: nothing committed.')
    return 0


if __name__ == '__main__':
    sys.exit(main())

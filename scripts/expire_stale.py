"""
Expire pending proposals that are past their SLA.

Intended for a scheduler (cron, systemd timer). Safe to run concurrently
with reviewers and with itself; a proposal already resolved is skipped.

Usage:
    python scripts/expire_stale.py
    python scripts/expire_stale.py --loop 300    # run every 5 minutes
"""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import time

from server import app
from core.governance.proposals import expire_stale


def run_once():
    with app.app_context():
        count = expire_stale()
    print(f"[governance] expired {count} proposal(s)")
    return count


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--loop', type=int, metavar='SECONDS',
                        help='Keep running, sweeping every SECONDS')
    args = parser.parse_args(argv)

    if not args.loop:
        run_once()
        return 0

    while True:
        run_once()
        time.sleep(args.loop)


if __name__ == '__main__':
    sys.exit(main())

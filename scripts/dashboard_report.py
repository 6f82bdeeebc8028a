"""Print a user's dashboard statistics as JSON.

Usage::

    python -m scripts.dashboard_report --user-id 64f0c2 [--window trailing]
"""

import argparse
import json
import logging
import sys

from skinscan import db as db_module
from skinscan.config import Settings
from skinscan.db import init_db
from skinscan.logger import setup_logging
from skinscan.services.stats import WINDOWS, compute_dashboard_stats

logger = logging.getLogger("dashboard_report")


def build_report(user_id: str, window: str) -> dict:
    with db_module.SessionLocal() as db:
        return compute_dashboard_stats(db, user_id, window=window)


def main(argv: list[str] | None = None) -> int:
    settings = Settings()
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--user-id", required=True)
    parser.add_argument(
        "--window", choices=WINDOWS, default=settings.stats_monthly_window
    )
    args = parser.parse_args(argv)

    setup_logging(settings.log_level)
    init_db(settings)
    try:
        report = build_report(args.user_id, args.window)
    except Exception:
        logger.exception("Failed to build dashboard report")
        return 1
    json.dump(report, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

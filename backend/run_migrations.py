from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from bootstrap import (
    MIGRATION_MARKER_KEY,
    clear_bootstrap_marker,
    has_bootstrap_marker,
    run_bootstrap_migrations,
    set_bootstrap_marker,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create the fest tables, the first admin account and default settings.")
    parser.add_argument("--force", action="store_true", help="Bootstrap again even when the marker row exists.")
    parser.add_argument("--status", action="store_true", help="Report whether the database was bootstrapped and exit.")
    parser.add_argument("--reset", action="store_true", help=f"Delete the `{MIGRATION_MARKER_KEY}` marker and exit.")
    parser.add_argument("--admin-user-id", help="User ID for the first admin (overrides DEFAULT_ADMIN_USER_ID).")
    parser.add_argument("--admin-password", help="Password for the first admin (overrides DEFAULT_ADMIN_PASSWORD).")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.status:
        state = "bootstrapped" if has_bootstrap_marker() else "not bootstrapped"
        logger.info("Database is %s (marker `%s`).", state, MIGRATION_MARKER_KEY)
        return 0

    if args.reset:
        if clear_bootstrap_marker():
            logger.info("Removed marker `%s`.", MIGRATION_MARKER_KEY)
        else:
            logger.info("Marker `%s` was not set.", MIGRATION_MARKER_KEY)
        return 0

    if args.admin_user_id:
        os.environ["DEFAULT_ADMIN_USER_ID"] = args.admin_user_id
    if args.admin_password:
        os.environ["DEFAULT_ADMIN_PASSWORD"] = args.admin_password

    if has_bootstrap_marker() and not args.force:
        logger.info("Already bootstrapped; pass --force to run again.")
        return 0

    run_bootstrap_migrations()
    set_bootstrap_marker()
    logger.info("Bootstrap finished, marker `%s` written.", MIGRATION_MARKER_KEY)
    return 0


if __name__ == "__main__":
    sys.exit(main())

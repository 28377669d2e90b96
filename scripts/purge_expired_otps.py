#!/usr/bin/env python3
# scripts/purge_expired_otps.py
"""
Expired OTP sweep for the shared otp_codes table.

Pending verifications are expired lazily when someone tries to use them, so
abandoned flows leave rows behind. This job deletes every row whose
expires_at has passed.

Behavior:
- Deletes rows with expires_at < now (a row at exactly expires_at is kept)
- Never touches unexpired rows, so in-flight verifications are unaffected
- Safe to run repeatedly

Usage:
    # Dry run (count only)
    python scripts/purge_expired_otps.py --dry-run

    # Delete expired rows
    python scripts/purge_expired_otps.py

    # Verbose output
    python scripts/purge_expired_otps.py --verbose

Cron example (every 30 minutes):
    */30 * * * * /path/to/venv/bin/python /path/to/scripts/purge_expired_otps.py >> /var/log/otp_purge.log 2>&1

Environment Variables Required:
    SUPABASE_URL: Database URL
    SUPABASE_KEY: Service role key
"""

from __future__ import annotations

import os
import sys
import argparse
import logging
from datetime import datetime, timezone
from typing import Any, Dict

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shopnest.db import get_supabase_client  # noqa: E402
from shopnest.accounts.otp import SupabaseOTPStore  # noqa: E402

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
log = logging.getLogger("purge_expired_otps")


def _elapsed_ms(start: datetime) -> int:
    return int((datetime.now(timezone.utc) - start).total_seconds() * 1000)


def run_purge(dry_run: bool = False, verbose: bool = False, client=None) -> Dict[str, Any]:
    """
    Purge expired OTP rows.

    Args:
        dry_run: If True, only count the rows that would be deleted
        verbose: If True, enable debug logging
        client: Supabase client (defaults to the shared singleton)

    Returns:
        Summary of job execution
    """
    if verbose:
        log.setLevel(logging.DEBUG)

    start_time = datetime.now(timezone.utc)
    log.info("=" * 60)
    log.info("OTP PURGE STARTED (mode: %s)", "DRY RUN" if dry_run else "LIVE")
    log.info("=" * 60)

    client = client or get_supabase_client()
    if not client:
        log.error("Failed to get database client")
        return {"status": "error", "message": "Database connection failed"}

    store = SupabaseOTPStore(client=client)

    try:
        if dry_run:
            expired = store.count_expired()
            log.info("[DRY RUN] Would delete %d expired OTP rows", expired)
            deleted = 0
        else:
            expired = deleted = store.purge_expired()
            log.debug("Deleted %d rows", deleted)
    except Exception as e:
        log.error("Purge failed with error: %s", e)
        return {"status": "error", "message": str(e), "duration_ms": _elapsed_ms(start_time)}

    summary = {
        "status": "success",
        "expired": expired,
        "deleted": deleted,
        "dry_run": dry_run,
        "duration_ms": _elapsed_ms(start_time),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    log.info("OTP PURGE COMPLETED: expired=%d deleted=%d (%dms)", expired, deleted, summary["duration_ms"])
    return summary


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Delete expired rows from the otp_codes table")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Count expired rows without deleting them",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) output",
    )

    args = parser.parse_args(argv)
    summary = run_purge(dry_run=args.dry_run, verbose=args.verbose)

    sys.exit(1 if summary.get("status") == "error" else 0)


if __name__ == "__main__":
    main()

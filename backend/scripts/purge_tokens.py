"""
Delete expired or revoked refresh tokens, expired password reset tokens and
finished background tasks.

  python scripts/purge_tokens.py               # purge now
  python scripts/purge_tokens.py --days 7      # custom retention
  python scripts/purge_tokens.py --enqueue     # hand off to the task worker
"""

import argparse
import logging
from datetime import datetime, timedelta

from growi_api.config import settings
from growi_api.core.database import SessionLocal
from growi_api.services.task_queue import PURGE_EXPIRED_TOKENS, task_queue
from growi_api.services.token_service import token_service


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge dead token rows and finished background tasks")
    parser.add_argument("--days", type=int, default=settings.TOKEN_RETENTION_DAYS)
    parser.add_argument("--enqueue", action="store_true", help="Queue a purge task instead")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    db = SessionLocal()
    try:
        if args.enqueue:
            key = f"purge:{datetime.utcnow():%Y-%m-%d}"
            task_queue.enqueue(
                db, PURGE_EXPIRED_TOKENS, {"retention_days": args.days}, idempotency_key=key
            )
            print(f"Queued {PURGE_EXPIRED_TOKENS} ({key})")
            return
        cutoff = datetime.utcnow() - timedelta(days=args.days)
        result = token_service.purge_expired(db, cutoff)
        tasks = task_queue.purge_finished(db, cutoff)
        print(
            f"Deleted {result['refresh_tokens']} refresh token(s), "
            f"{result['password_reset_tokens']} password reset token(s), "
            f"{tasks} finished task(s)"
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()

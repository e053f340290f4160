"""Print the persistent failure store: one line per user with lock status.

Usage: python scripts/check_failures.py [user_id]
"""
import os
import sys
from datetime import datetime, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

from sqlalchemy import select

from facegate.infrastructure.database.connection import session_factory_from_env
from facegate.infrastructure.database.models import UserFailureModel
from facegate.infrastructure.tracking.sql_tracker import _as_utc

sf = session_factory_from_env("DATABASE_URL")
now = datetime.now(timezone.utc)

stmt = select(UserFailureModel).order_by(UserFailureModel.last_failure.desc())
if len(sys.argv) > 1:
    stmt = stmt.where(UserFailureModel.user_id == sys.argv[1])

with sf() as session:
    rows = session.execute(stmt).scalars().all()
    for r in rows:
        locked_until = _as_utc(r.locked_until)
        status = "LOCKED" if locked_until and locked_until > now else "open"
        print(
            f"user_id={r.user_id}  failures={r.failure_count}  "
            f"last_failure={_as_utc(r.last_failure).isoformat()}  "
            f"locked_until={locked_until.isoformat() if locked_until else '-'}  [{status}]"
        )

if not rows:
    print("No failure records.")

sf.dispose()

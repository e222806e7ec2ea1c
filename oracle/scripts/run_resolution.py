import argparse
import json
from datetime import datetime, timezone

from oracle.core.logging_config import configure_logging
from oracle.db import session_scope
from oracle.jobs.tasks import run_resolution


def _parse_now(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one resolution pass over all due markets and polls.")
    parser.add_argument("--now", help="ISO timestamp to evaluate due dates against (default: current UTC time)")
    args = parser.parse_args()

    configure_logging()
    with session_scope() as db:
        result = run_resolution(db, now_ts=_parse_now(args.now))
    print(json.dumps(result, indent=2, ensure_ascii=True))


if __name__ == "__main__":
    main()

import json
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from ...auth import admin_key_auth
from ...db import get_db
from ...external import LLM_BREAKER
from ...jobs.tasks import RESOLUTION_LAST_RESULT_KEY, RESOLUTION_LAST_TS_KEY, redis_conn
from ...models import Market, QuickPlayMarket, QuickPoll

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/admin/resolution/status")
def resolution_status(
    db: Session = Depends(get_db),
    _=Depends(admin_key_auth),
):
    last_ts = None
    last_result = None
    try:
        raw_ts = redis_conn.get(RESOLUTION_LAST_TS_KEY)
        raw_result = redis_conn.get(RESOLUTION_LAST_RESULT_KEY)
        last_ts = raw_ts.decode() if isinstance(raw_ts, (bytes, bytearray)) else raw_ts
        if raw_result:
            last_result = json.loads(raw_result)
    except Exception:
        logger.exception("resolution_status_read_failed")

    pending = {}
    retrying = {}
    for name, model in (
        ("standard_markets", Market),
        ("quick_polls", QuickPoll),
        ("quick_plays", QuickPlayMarket),
    ):
        pending[name] = (
            db.query(func.count())
            .select_from(model)
            .filter(model.is_resolved.is_(False))
            .scalar()
        ) or 0
        retrying[name] = (
            db.query(func.count())
            .select_from(model)
            .filter(model.is_resolved.is_(False), model.retry_attempts > 0)
            .scalar()
        ) or 0
    return {
        "last_run_time": last_ts,
        "last_run_result": last_result,
        "pending": pending,
        "retrying": retrying,
        "verifier_circuit": LLM_BREAKER.snapshot(),
    }

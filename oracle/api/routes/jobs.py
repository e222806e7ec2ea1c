import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...auth import verify_cron_secret
from ...db import get_db
from ...jobs import tasks

router = APIRouter()
logger = logging.getLogger(__name__)


class RunJobsPayload(BaseModel):
    key: str | None = None


@router.post("/api/run-jobs")
def run_jobs(payload: RunJobsPayload, db: Session = Depends(get_db)):
    verify_cron_secret(payload.key)
    try:
        summary = tasks.run_resolution(db)
    except Exception:
        logger.exception("run_jobs_failed")
        return JSONResponse({"error": "Oracle job execution failed."}, status_code=500)
    return {"success": True, "message": "Oracle jobs ran successfully.", "summary": summary}

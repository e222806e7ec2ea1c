from ..db import session_scope
from .tasks import run_resolution


def resolution_sync_wrapper():
    with session_scope() as db:
        return run_resolution(db)

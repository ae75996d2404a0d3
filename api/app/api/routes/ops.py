from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import require_ops_admin
from app.models.user import User
from app.services.task_queue import task_queue

router = APIRouter()


@router.get("/queues", tags=["ops"])
async def queue_health(_: User = Depends(require_ops_admin)) -> dict:
    """Redis/RQ health for operators."""
    return task_queue.snapshot()


@router.post("/taste-decay", tags=["ops"])
async def run_taste_decay(current_user: User = Depends(require_ops_admin)) -> dict:
    """Run the monthly taste decay sweep now and report the counts."""
    result = await task_queue.enqueue_taste_decay(requested_by=current_user.email)
    return {"success": True, "result": result}

"""System API — health check and scheduler status."""

from fastapi import APIRouter, Depends, Request

from tradesim.api.deps import get_current_user, get_services
from tradesim.services.container import Services

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check(services: Services = Depends(get_services)):
    return {
        "status": "ok",
        "model_version": services.predictions.model_version,
    }


@router.get("/scheduler", dependencies=[Depends(get_current_user)])
def scheduler_status(request: Request):
    """Current scheduler state with job details."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return {"running": False, "job_count": 0, "jobs": []}
    return scheduler.status()

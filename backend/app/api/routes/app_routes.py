from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/")
def root():
    return "Delay Risk Assessment API"


@router.get("/health")
def health(request: Request):
    """Process-level health: unhealthy when the outbound channel keeps rejecting writes."""
    timestamp = datetime.now(timezone.utc).isoformat()
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        return {"status": "ok", "pipeline": "disabled", "timestamp": timestamp}

    body = {**pipeline.health(), "timestamp": timestamp}
    task = getattr(request.app.state, "pipeline_task", None)
    if task is not None and task.done() and not task.cancelled():
        body["status"] = "unhealthy"
        body["detail"] = "pipeline worker stopped"
    if body["status"] != "ok":
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body

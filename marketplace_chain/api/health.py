from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/healthz")
async def health_check(request: Request) -> Dict[str, Any]:
    """Connection readiness, endpoint health and active subscriptions"""
    service = getattr(request.app.state, "transaction_service", None)
    supervisor = getattr(request.app.state, "supervisor", None)

    if service is None:
        return {"status": "unavailable", "ready": False}

    status = await service.health()
    if supervisor is not None:
        status["supervisor"] = {
            "status": supervisor.state.status,
            "consecutive_failures": supervisor.state.consecutive_failures,
            "reconnects": supervisor.state.reconnects,
        }
    if status.get("status") != "healthy":
        status["status"] = "degraded" if status.get("ready") else "unavailable"
    return status

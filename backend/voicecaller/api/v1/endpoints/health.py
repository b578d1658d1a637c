"""
Health Check Endpoint
Provides health status for Docker health checks and monitoring
"""
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Request, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request) -> Dict[str, Any]:
    """
    Health check endpoint for Docker and monitoring systems.

    Returns:
        Dict with status, timestamp and live per-call resource counts
    """
    health: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "service": "voicecaller",
    }

    services = getattr(request.app.state, "services", None)
    if services is None:
        health["status"] = "starting"
        return health

    health["telephony"] = {
        "provider": services.telephony.name,
        "simulated": getattr(services.telephony, "simulated", False),
    }
    health["active"] = {
        "recognition_sessions": services.recognition.active_count,
        "conversations": services.coordinator.active_count,
        "silence_timers": services.watchdog.armed_count,
    }
    health["reconciler"] = services.reconciler.get_stats()
    return health

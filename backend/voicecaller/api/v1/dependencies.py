"""
API Dependencies
Access to the process-wide call services built at startup
"""
from fastapi import HTTPException, Request, status

from voicecaller.core.container import CallServices
from voicecaller.domain.services.call_orchestrator import CallOrchestrator
from voicecaller.domain.services.webhook_dispatcher import WebhookDispatcher


def get_services(request: Request) -> CallServices:
    """
    Services stored on app.state by the lifespan handler.

    Raises:
        HTTPException: 503 if startup has not completed
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Call services are not initialized",
        )
    return services


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return get_services(request).dispatcher


def get_orchestrator(request: Request) -> CallOrchestrator:
    return get_services(request).orchestrator

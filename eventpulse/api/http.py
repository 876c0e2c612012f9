"""HTTP trigger for cron and serverless deployments.

``POST /api/events/process`` runs one processing batch on demand and
``GET /api/events/stats`` reports a tenant's event counts. Both are internal
endpoints protected by a static bearer token.
"""

import hmac
import logging

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse

from eventpulse.core.service import EventService
from eventpulse.core.settings import WorkerSettings

logger = logging.getLogger("eventpulse.http")


def _token_matches(authorization: str | None, expected: str | None) -> bool:
    if not authorization or not expected:
        return False
    return hmac.compare_digest(authorization.encode(), f"Bearer {expected}".encode())


def _error(code: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


def create_router(service: EventService, api_token: str | None) -> APIRouter:
    """Build the ``/api/events`` router bound to a service and token."""
    router = APIRouter(prefix="/api/events", tags=["events"])

    async def require_internal_token(authorization: str | None = Header(default=None)) -> None:
        if not _token_matches(authorization, api_token):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid internal API token",
            )

    @router.post("/process", dependencies=[Depends(require_internal_token)])
    async def process_events(batch_size: int | None = Query(default=None, ge=1, le=1000)):
        """Process one batch of pending events."""
        try:
            result = await service.process_pending_events(batch_size)
        except Exception as e:
            logger.error(f"Event processing endpoint error: {e}", extra={"error": str(e)})
            return _error("PROCESSING_ERROR", "Failed to process events", 500)
        return {
            "success": True,
            "data": result.as_dict(),
            "message": "Events processed successfully",
        }

    @router.get("/stats", dependencies=[Depends(require_internal_token)])
    async def event_stats(
        organization_id: str = Query(alias="organizationId", min_length=1),
        hours: float = Query(default=24, gt=0),
    ):
        """Per-type, per-status counts for one tenant over a trailing window."""
        try:
            stats = await service.get_event_stats(organization_id, hours)
        except Exception as e:
            logger.error(f"Event stats endpoint error: {e}", extra={"error": str(e)})
            return _error("STATS_ERROR", "Failed to get event statistics", 500)
        return {
            "success": True,
            "data": stats,
            "message": "Event statistics retrieved successfully",
        }

    return router


def create_app(
    service: EventService,
    settings: WorkerSettings | None = None,
    api_token: str | None = None,
) -> FastAPI:
    """Create the FastAPI app exposing the event trigger endpoints.

    The handler registry is initialized here as well as in the worker; the
    registry's once-guard makes the second call a no-op.

    Args:
        service: Service the endpoints call into.
        settings: Source of ``internal_api_token`` when ``api_token`` is None.
        api_token: Explicit bearer token. With no token configured every
            request is rejected.
    """
    if api_token is None and settings is not None and settings.internal_api_token is not None:
        api_token = settings.internal_api_token.get_secret_value()

    service.registry.initialize()

    app = FastAPI(title="eventpulse")
    app.include_router(create_router(service, api_token))
    return app

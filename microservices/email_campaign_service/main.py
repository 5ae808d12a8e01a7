"""
Email Campaign Service Main Application

FastAPI host for the email campaign engine: scheduling, send-now,
cancellation, tracking endpoints and analytics.
Port: 8252
"""

import base64
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlparse

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from core.config import get_settings

from .factory import EmailCampaignServiceFactory
from .models import (
    CampaignAnalytics,
    CampaignAnalyticsResponse,
    CampaignCreateRequest,
    CampaignResponse,
    CampaignStatus,
    CampaignUpdateRequest,
    CancelJobResponse,
    DeliveryWebhookEvent,
    HealthResponse,
    LivenessResponse,
    ReadinessResponse,
    ScheduledJobListResponse,
    ScheduleRequest,
    ScheduleResponse,
    SendResponse,
)
from .protocols import (
    CampaignNotFoundError,
    CampaignValidationError,
    InvalidCampaignStateError,
    InvalidScheduleError,
)

# Configure logging
settings = get_settings()
settings.logging.configure()
logger = logging.getLogger(__name__)

# Service configuration
SERVICE_NAME = "email_campaign_service"
SERVICE_PORT = int(os.getenv("SERVICE_PORT", "8252"))
SERVICE_VERSION = "1.0.0"

# 1x1 transparent GIF
TRACKING_PIXEL = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

# Track startup time for uptime calculation
startup_time = time.time()


def create_app(factory: Optional[EmailCampaignServiceFactory] = None) -> FastAPI:
    """Build the FastAPI application around a service factory"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        logger.info(f"Starting {SERVICE_NAME} on port {SERVICE_PORT}")

        service_factory = factory or EmailCampaignServiceFactory()
        await service_factory.initialize()
        app.state.factory = service_factory

        try:
            await service_factory.scheduler.recover_on_startup()
        except Exception as e:
            logger.error(f"Scheduler recovery failed: {e}", exc_info=True)

        yield

        # Cleanup
        logger.info(f"Shutting down {SERVICE_NAME}")
        await service_factory.close()
        app.state.factory = None

    app = FastAPI(
        title="Email Campaign Service",
        description="Scheduling and delivery engine for email marketing campaigns",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.factory = None

    _register_exception_handlers(app)
    _register_routes(app)
    return app


# ====================
# Exception Handlers
# ====================


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(CampaignNotFoundError)
    async def campaign_not_found_handler(request: Request, exc: CampaignNotFoundError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": str(exc)},
        )

    @app.exception_handler(InvalidCampaignStateError)
    async def invalid_state_handler(request: Request, exc: InvalidCampaignStateError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "detail": str(exc),
                "current_status": exc.current_status.value if exc.current_status else None,
            },
        )

    @app.exception_handler(InvalidScheduleError)
    async def invalid_schedule_handler(request: Request, exc: InvalidScheduleError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    @app.exception_handler(CampaignValidationError)
    async def validation_error_handler(request: Request, exc: CampaignValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc), "field": exc.field},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error", "type": type(exc).__name__},
        )


# ====================
# Dependencies
# ====================


def get_factory(request: Request) -> EmailCampaignServiceFactory:
    """Get the service factory from application state"""
    factory = getattr(request.app.state, "factory", None)
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory


def get_service(factory: EmailCampaignServiceFactory = Depends(get_factory)):
    """Get email campaign service from factory"""
    return factory.service


def get_auth_context(request: Request) -> dict:
    """Extract auth context from request headers"""
    return {
        "user_id": request.headers.get("X-User-ID", "system"),
        "role": request.headers.get("X-User-Role", "user"),
    }


def _register_routes(app: FastAPI) -> None:

    # ====================
    # Health Endpoints
    # ====================

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint"""
        dependencies = {}
        factory = getattr(request.app.state, "factory", None)

        if factory:
            try:
                db_healthy = await factory.store.health_check()
                dependencies["postgres"] = "healthy" if db_healthy else "unhealthy"
            except Exception:
                dependencies["postgres"] = "unhealthy"
            dependencies["scheduler"] = "stopped" if factory.scheduler.is_closed else "running"

        return HealthResponse(
            status="healthy",
            service=SERVICE_NAME,
            port=SERVICE_PORT,
            version=SERVICE_VERSION,
            dependencies=dependencies,
        )

    @app.get("/health/ready", response_model=ReadinessResponse, tags=["Health"])
    async def readiness_check(request: Request):
        """Readiness check endpoint"""
        checks = {}
        details = {}
        factory = getattr(request.app.state, "factory", None)

        if factory:
            try:
                db_healthy = await factory.store.health_check()
                checks["database"] = db_healthy
                details["database"] = "Connected" if db_healthy else "Connection failed"
            except Exception as e:
                checks["database"] = False
                details["database"] = str(e)

            checks["scheduler"] = not factory.scheduler.is_closed
            details["scheduler"] = f"{len(factory.scheduler.get_scheduled_jobs())} triggers armed"
        else:
            checks["factory"] = False
            details["factory"] = "Factory not initialized"

        ready = all(checks.get(k, False) for k in ["database", "scheduler"])

        return ReadinessResponse(
            ready=ready,
            checks=checks,
            details=details,
        )

    @app.get("/health/live", response_model=LivenessResponse, tags=["Health"])
    async def liveness_check():
        """Liveness check endpoint"""
        return LivenessResponse(
            alive=True,
            uptime_seconds=time.time() - startup_time,
        )

    # ====================
    # Campaign Endpoints
    # ====================

    @app.post(
        "/api/v1/email-campaigns",
        response_model=CampaignResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Campaigns"],
    )
    async def create_campaign(
        request: CampaignCreateRequest,
        service=Depends(get_service),
        auth: dict = Depends(get_auth_context),
    ):
        """Create a campaign; a future scheduled_at schedules it right away"""
        campaign = await service.create_campaign(request, created_by=auth["user_id"])
        return CampaignResponse(campaign=campaign, message="Campaign created successfully")

    @app.get(
        "/api/v1/email-campaigns/jobs",
        response_model=ScheduledJobListResponse,
        tags=["Scheduling"],
    )
    async def list_scheduled_jobs(service=Depends(get_service)):
        """List armed triggers"""
        jobs = service.get_scheduled_jobs()
        return ScheduledJobListResponse(jobs=jobs, total=len(jobs))

    @app.delete(
        "/api/v1/email-campaigns/jobs/{job_id}",
        response_model=CancelJobResponse,
        tags=["Scheduling"],
    )
    async def cancel_scheduled_job(job_id: str, service=Depends(get_service)):
        """Disarm a pending trigger"""
        cancelled = await service.cancel_scheduled_campaign(job_id)
        return CancelJobResponse(job_id=job_id, cancelled=cancelled)

    @app.post(
        "/api/v1/email-campaigns/webhooks/delivery",
        status_code=status.HTTP_202_ACCEPTED,
        tags=["Tracking"],
    )
    async def delivery_webhook(event: DeliveryWebhookEvent, service=Depends(get_service)):
        """Provider delivery/bounce/engagement callback"""
        recorded = await service.record_delivery_event(event)
        return {"recorded": recorded is not None}

    @app.get(
        "/api/v1/email-campaigns/{campaign_id}",
        response_model=CampaignResponse,
        tags=["Campaigns"],
    )
    async def get_campaign(campaign_id: str, service=Depends(get_service)):
        """Get a campaign"""
        campaign = await service.get_campaign(campaign_id)
        return CampaignResponse(campaign=campaign)

    @app.put(
        "/api/v1/email-campaigns/{campaign_id}",
        response_model=CampaignResponse,
        tags=["Campaigns"],
    )
    async def update_campaign(
        campaign_id: str,
        request: CampaignUpdateRequest,
        service=Depends(get_service),
        auth: dict = Depends(get_auth_context),
    ):
        """Edit a draft or scheduled campaign"""
        campaign = await service.update_campaign(campaign_id, request, updated_by=auth["user_id"])
        return CampaignResponse(campaign=campaign, message="Campaign updated successfully")

    @app.delete(
        "/api/v1/email-campaigns/{campaign_id}",
        tags=["Campaigns"],
    )
    async def delete_campaign(
        campaign_id: str,
        service=Depends(get_service),
        auth: dict = Depends(get_auth_context),
    ):
        """Soft delete a campaign"""
        await service.delete_campaign(campaign_id, deleted_by=auth["user_id"])
        return {"message": "Campaign deleted successfully", "campaign_id": campaign_id}

    @app.post(
        "/api/v1/email-campaigns/{campaign_id}/schedule",
        response_model=ScheduleResponse,
        tags=["Scheduling"],
    )
    async def schedule_campaign(
        campaign_id: str,
        request: ScheduleRequest,
        service=Depends(get_service),
        auth: dict = Depends(get_auth_context),
    ):
        """Schedule a campaign for a future time"""
        job_id = await service.schedule_campaign(
            campaign_id, request.scheduled_at, scheduled_by=auth["user_id"]
        )
        campaign = await service.get_campaign(campaign_id)
        return ScheduleResponse(
            campaign_id=campaign_id,
            job_id=job_id,
            scheduled_at=campaign.scheduled_at,
        )

    @app.post(
        "/api/v1/email-campaigns/{campaign_id}/send",
        response_model=SendResponse,
        status_code=status.HTTP_202_ACCEPTED,
        tags=["Sending"],
    )
    async def send_campaign(campaign_id: str, service=Depends(get_service)):
        """Send a campaign now; delivery continues in the background"""
        await service.send_campaign_now(campaign_id)
        return SendResponse(
            campaign_id=campaign_id,
            status=CampaignStatus.SENDING,
            message="Campaign sending started",
        )

    @app.post(
        "/api/v1/email-campaigns/{campaign_id}/cancel",
        response_model=CampaignResponse,
        tags=["Campaigns"],
    )
    async def cancel_campaign(
        campaign_id: str,
        service=Depends(get_service),
        auth: dict = Depends(get_auth_context),
    ):
        """Cancel a campaign and disarm its trigger"""
        campaign = await service.cancel_campaign(campaign_id, cancelled_by=auth["user_id"])
        return CampaignResponse(campaign=campaign, message="Campaign cancelled")

    @app.get(
        "/api/v1/email-campaigns/{campaign_id}/analytics",
        response_model=CampaignAnalyticsResponse,
        tags=["Analytics"],
    )
    async def get_campaign_analytics(campaign_id: str, service=Depends(get_service)):
        """Rollup counters, per-type breakdown and recent events"""
        return await service.get_campaign_analytics(campaign_id)

    @app.post(
        "/api/v1/email-campaigns/{campaign_id}/analytics/rebuild",
        response_model=CampaignAnalytics,
        tags=["Analytics"],
    )
    async def rebuild_campaign_analytics(campaign_id: str, service=Depends(get_service)):
        """Recompute rollup counters from the event log"""
        return await service.rebuild_analytics(campaign_id)

    # ====================
    # Tracking Endpoints
    # ====================

    @app.get("/api/email/track/open/{campaign_id}/{email}", tags=["Tracking"])
    async def track_open(
        campaign_id: str,
        email: str,
        request: Request,
        service=Depends(get_service),
    ):
        """Open-tracking pixel; always returns the image"""
        try:
            await service.record_open(
                campaign_id,
                email,
                user_agent=request.headers.get("user-agent"),
                ip_address=request.client.host if request.client else None,
            )
        except Exception as e:
            logger.error(f"Failed to track open for campaign {campaign_id}: {e}")

        return Response(
            content=TRACKING_PIXEL,
            media_type="image/gif",
            headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
        )

    @app.get("/api/email/track/click/{campaign_id}/{email}", tags=["Tracking"])
    async def track_click(
        campaign_id: str,
        email: str,
        request: Request,
        url: str = Query(..., description="Original link target"),
        service=Depends(get_service),
    ):
        """Click-tracking redirect"""
        if urlparse(url).scheme not in ("http", "https"):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid redirect URL")

        try:
            await service.record_click(
                campaign_id,
                email,
                url,
                user_agent=request.headers.get("user-agent"),
                ip_address=request.client.host if request.client else None,
            )
        except Exception as e:
            logger.error(f"Failed to track click for campaign {campaign_id}: {e}")

        return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.default_host, port=SERVICE_PORT)

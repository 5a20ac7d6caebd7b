"""
FastAPI Application — REST API for scheduling notifications.

Provides:
- Batch creation, lookup, listing and cancellation of notification jobs
- Template upsert and listing
- Health endpoint with worker pool, queue and channel diagnostics
- Dispatch loop / queue poll loop running inside the app lifespan
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.errors import EmptyBatchError, JobConflictError, JobNotFoundError
from core.runtime import NotificationRuntime
from models.schemas import (
    CreateNotificationRequest, JobStatus, NotificationJob, NotificationResponse, TemplateRequest,
)

logger = structlog.get_logger()


def create_app(runtime: NotificationRuntime = None, run_loops: bool = True) -> FastAPI:
    """
    Build the app. Without an explicit runtime one is constructed from
    settings when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rt = runtime or NotificationRuntime()
        app.state.runtime = rt
        await rt.start(run_loops=run_loops)
        logger.info("notification_scheduler_started", app=rt.settings.app_name)
        yield
        await rt.stop()
        logger.info("notification_scheduler_stopped")

    app = FastAPI(
        title="Notification Scheduler API",
        description="Scheduled multi-channel notification dispatch",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ══════════════════════════════════════════════════════════════
    #  ERROR MAPPING
    # ══════════════════════════════════════════════════════════════

    @app.exception_handler(JobNotFoundError)
    async def job_not_found(request: Request, exc: JobNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(JobConflictError)
    async def job_conflict(request: Request, exc: JobConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc), "status": exc.status})

    @app.exception_handler(EmptyBatchError)
    async def empty_batch(request: Request, exc: EmptyBatchError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    def service(request: Request):
        return request.app.state.runtime.service

    # ══════════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════════

    @app.get("/health")
    async def health(request: Request):
        runtime_health = await request.app.state.runtime.health()
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **runtime_health,
        }

    # ══════════════════════════════════════════════════════════════
    #  NOTIFICATIONS
    # ══════════════════════════════════════════════════════════════

    @app.post("/api/notifications", status_code=201, response_model=list[NotificationResponse])
    async def create_notifications(request: Request, body: list[CreateNotificationRequest]):
        return await service(request).create_jobs(body)

    @app.get("/api/notifications", response_model=list[NotificationJob])
    async def list_notifications(request: Request, status: Optional[JobStatus] = Query(None)):
        return await service(request).list_jobs(status)

    @app.get("/api/notifications/{job_id}", response_model=NotificationJob)
    async def get_notification(request: Request, job_id: str):
        return await service(request).get_job(job_id)

    @app.delete("/api/notifications/{job_id}", response_model=NotificationResponse)
    async def cancel_notification(request: Request, job_id: str):
        job = await service(request).cancel_job(job_id)
        return NotificationResponse.from_job(job)

    # ══════════════════════════════════════════════════════════════
    #  TEMPLATES
    # ══════════════════════════════════════════════════════════════

    @app.put("/api/templates/{key}")
    async def upsert_template(request: Request, key: str, body: TemplateRequest):
        await service(request).upsert_template(key, body.content)
        return {"key": key, "status": "saved"}

    @app.get("/api/templates")
    async def list_templates(request: Request):
        return await service(request).list_templates()

    return app


app = create_app()


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

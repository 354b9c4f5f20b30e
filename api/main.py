"""
Scheduled Publisher API - FastAPI Backend
Creates and inspects scheduled jobs and destination post jobs, exposes
their execution logs, and hosts the job and post pollers.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from adapters.base import IMAGE_POLICY_FAIL, IMAGE_POLICY_SKIP, PostParams
from adapters.dcinside import DCInsideAdapter, validate_dcinside_params
from api.config import config
from api.database import (
    JOB_TYPE_BLOG_POST,
    JOB_TYPE_GENERATE_TOPIC,
    create_blog_post_job,
    create_post_job,
    create_topic_job,
    delete_job,
    delete_post_job,
    get_app_settings,
    get_blog_job,
    get_job,
    get_job_logs,
    get_latest_job_log,
    get_post_job,
    get_topic_job,
    init_database,
    list_jobs,
    list_post_jobs,
    retry_job,
    retry_post_job,
    save_app_settings,
)
from api.errors import JobNotFoundError, JobStateError, PostJobValidationError
from api.job_processor import build_default_registry
from api.job_scheduler import JobScheduler
from api.logging_config import log_request, logger
from api.orphan_recovery import recover_orphans
from api.post_queue import PostQueue
from api.post_scheduler import PostScheduler
from core.browser import get_browser_manager
from core.cookie_store import get_cookie_store


# === Lifespan Management ===

async def start_background_services(app: FastAPI):
    """Recover orphans, then start both pollers. Recovery always runs first."""
    report = await recover_orphans()
    if report.total:
        logger.warning(f"Startup recovery failed {report.total} interrupted job(s)")

    queue = PostQueue()
    job_scheduler = JobScheduler(registry=build_default_registry())
    post_scheduler = PostScheduler(queue=queue)
    job_scheduler.start()
    post_scheduler.start()

    app.state.post_queue = queue
    app.state.job_scheduler = job_scheduler
    app.state.post_scheduler = post_scheduler


async def stop_background_services(app: FastAPI):
    for name in ("job_scheduler", "post_scheduler", "post_queue"):
        service = getattr(app.state, name, None)
        if service is not None:
            await service.stop()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting Scheduled Publisher API...")
    await init_database()
    logger.info("Database initialized")

    if config.SCHEDULER_ENABLED:
        await start_background_services(app)
        logger.info("Schedulers enabled")
    else:
        logger.info("Schedulers disabled")

    yield
    # Shutdown
    logger.info("Shutting down Scheduled Publisher API...")
    await stop_background_services(app)
    await get_browser_manager().close_all()
    logger.info("Browser sessions closed")


# Initialize FastAPI app
app = FastAPI(
    title="Scheduled Publisher API",
    description="Scheduled blog and forum publishing with browser automation",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if config.DEBUG else None,
    redoc_url="/redoc" if config.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type"],
)


# === Request Logging Middleware ===

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    start_time = datetime.now()
    response = await call_next(request)
    duration = (datetime.now() - start_time).total_seconds() * 1000
    log_request(request.method, request.url.path, response.status_code, duration)
    return response


# === Error Mapping ===

@app.exception_handler(JobNotFoundError)
async def job_not_found_handler(request: Request, exc: JobNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(JobStateError)
async def job_state_handler(request: Request, exc: JobStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "status": exc.status})


@app.exception_handler(PostJobValidationError)
async def post_job_validation_handler(request: Request, exc: PostJobValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})


# === Pydantic Models with Validation ===

class BlogPostJobRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    content: str = ""
    labels: List[str] = Field(default_factory=list)
    subject: Optional[str] = None
    description: Optional[str] = None
    priority: int = 0
    scheduled_at: Optional[datetime] = None


class TopicJobRequest(BaseModel):
    topic: str = Field(..., min_length=1, max_length=300)
    limit: int = Field(default=10, ge=1, le=50)
    description: Optional[str] = None
    priority: int = 0
    scheduled_at: Optional[datetime] = None


class PostJobRequest(BaseModel):
    gallery_url: str
    title: str
    content_html: str
    password: Optional[str] = None
    nickname: Optional[str] = None
    headtext: Optional[str] = None
    image_paths: List[str] = Field(default_factory=list)
    login_id: Optional[str] = None
    login_password: Optional[str] = None
    scheduled_at: Optional[datetime] = None

    @field_validator("image_paths", mode="before")
    @classmethod
    def split_image_paths(cls, v):
        # Forms send a single newline- or comma-separated string.
        if v is None:
            return []
        if isinstance(v, str):
            return [p.strip() for p in v.replace("\n", ",").split(",") if p.strip()]
        return v

    def to_params(self) -> PostParams:
        return PostParams(**self.model_dump(exclude={"scheduled_at"}))


class BulkIdsRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class AppSettingsRequest(BaseModel):
    show_browser_window: Optional[bool] = None
    task_delay_seconds: Optional[float] = Field(default=None, ge=0)
    image_upload_failure_action: Optional[str] = None
    openai_api_key: Optional[str] = None
    blogger_blog_id: Optional[str] = None
    blogger_access_token: Optional[str] = None

    @field_validator("image_upload_failure_action")
    @classmethod
    def known_policy(cls, v):
        if v is not None and v not in (IMAGE_POLICY_FAIL, IMAGE_POLICY_SKIP):
            raise ValueError(f"image_upload_failure_action must be '{IMAGE_POLICY_FAIL}' or '{IMAGE_POLICY_SKIP}'")
        return v


class LoginRequest(BaseModel):
    login_id: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# === Helpers ===

async def _job_detail(job: Dict[str, Any]) -> Dict[str, Any]:
    detail = dict(job)
    if job["type"] == JOB_TYPE_BLOG_POST:
        detail["payload"] = await get_blog_job(job["id"])
    elif job["type"] == JOB_TYPE_GENERATE_TOPIC:
        detail["payload"] = await get_topic_job(job["id"])
    return detail


def _redact_post_job(job: Dict[str, Any]) -> Dict[str, Any]:
    redacted = dict(job)
    for key in ("password", "login_password"):
        if redacted.get(key):
            redacted[key] = "********"
    return redacted


async def _bulk(ids: List[str], action) -> Dict[str, Any]:
    """Apply action to every id; one bad id never stops the others."""
    results = []
    for job_id in ids:
        try:
            await action(job_id)
            results.append({"id": job_id, "success": True})
        except (JobNotFoundError, JobStateError) as e:
            results.append({"id": job_id, "success": False, "error": str(e)})
    succeeded = sum(1 for r in results if r["success"])
    return {"succeeded": succeeded, "failed": len(results) - succeeded, "results": results}


# === Health ===

@app.get("/")
async def root():
    return {"service": "Scheduled Publisher API", "version": "1.0.0"}


@app.get("/health")
async def health_check(request: Request):
    return {
        "status": "healthy",
        "schedulers_running": getattr(request.app.state, "job_scheduler", None) is not None,
        "browser": get_browser_manager().get_stats(),
        "timestamp": datetime.now().isoformat(),
    }


# === Jobs ===

@app.post("/jobs/blog-post", status_code=201)
async def create_blog_post(req: BlogPostJobRequest):
    job_id = await create_blog_post_job(
        req.title,
        req.content,
        req.labels,
        subject=req.subject,
        description=req.description,
        priority=req.priority,
        scheduled_at=req.scheduled_at,
    )
    logger.info(f"Blog post job created: {job_id}")
    return await _job_detail(await get_job(job_id))


@app.post("/jobs/topic", status_code=201)
async def create_topic(req: TopicJobRequest):
    job_id = await create_topic_job(
        req.topic,
        req.limit,
        description=req.description,
        priority=req.priority,
        scheduled_at=req.scheduled_at,
    )
    logger.info(f"Topic job created: {job_id}")
    return await _job_detail(await get_job(job_id))


@app.get("/jobs")
async def get_jobs(
    status: Optional[str] = None,
    type: Optional[str] = None,
    search: Optional[str] = None,
    order_by: str = "created_at",
    order: str = "desc",
    limit: int = 100,
):
    jobs = await list_jobs(status=status, job_type=type, search=search, order_by=order_by, order=order, limit=limit)
    return {"jobs": jobs, "count": len(jobs)}


@app.post("/jobs/bulk/retry")
async def bulk_retry_jobs(req: BulkIdsRequest):
    return await _bulk(req.ids, retry_job)


@app.post("/jobs/bulk/delete")
async def bulk_delete_jobs(req: BulkIdsRequest):
    return await _bulk(req.ids, delete_job)


@app.get("/jobs/{job_id}")
async def get_job_detail(job_id: str):
    job = await get_job(job_id)
    if not job:
        raise JobNotFoundError(job_id)
    return await _job_detail(job)


@app.get("/jobs/{job_id}/logs")
async def get_job_log_entries(job_id: str):
    if not await get_job(job_id):
        raise JobNotFoundError(job_id)
    return {"logs": await get_job_logs(job_id)}


@app.get("/jobs/{job_id}/logs/latest")
async def get_job_latest_log(job_id: str):
    if not await get_job(job_id):
        raise JobNotFoundError(job_id)
    return {"log": await get_latest_job_log(job_id)}


@app.post("/jobs/{job_id}/retry")
async def retry_job_endpoint(job_id: str):
    return await retry_job(job_id)


@app.delete("/jobs/{job_id}")
async def delete_job_endpoint(job_id: str):
    await delete_job(job_id)
    return {"deleted": job_id}


# === Destination Post Jobs ===

@app.post("/post-jobs", status_code=201)
async def create_post_job_endpoint(req: PostJobRequest):
    problems = validate_dcinside_params(req.to_params())
    if problems:
        raise PostJobValidationError(problems)

    post_id = await create_post_job(req.model_dump(exclude={"scheduled_at"}), scheduled_at=req.scheduled_at)
    logger.info(f"Post job created: {post_id}")
    return _redact_post_job(await get_post_job(post_id))


@app.get("/post-jobs")
async def get_post_jobs(
    status: Optional[str] = None,
    search: Optional[str] = None,
    order_by: str = "scheduled_at",
    order: str = "desc",
    limit: int = 100,
):
    jobs = await list_post_jobs(status=status, search=search, order_by=order_by, order=order, limit=limit)
    return {"post_jobs": [_redact_post_job(j) for j in jobs], "count": len(jobs)}


@app.get("/post-jobs/{post_id}")
async def get_post_job_detail(post_id: str):
    job = await get_post_job(post_id)
    if not job:
        raise JobNotFoundError(post_id)
    return _redact_post_job(job)


@app.get("/post-jobs/{post_id}/logs")
async def get_post_job_logs(post_id: str):
    if not await get_post_job(post_id):
        raise JobNotFoundError(post_id)
    return {"logs": await get_job_logs(post_id)}


@app.post("/post-jobs/{post_id}/retry")
async def retry_post_job_endpoint(post_id: str):
    return _redact_post_job(await retry_post_job(post_id))


@app.delete("/post-jobs/{post_id}")
async def delete_post_job_endpoint(post_id: str):
    await delete_post_job(post_id)
    return {"deleted": post_id}


# === Settings ===

@app.get("/settings/app")
async def get_settings_endpoint():
    return await get_app_settings()


@app.put("/settings/app")
async def update_settings_endpoint(req: AppSettingsRequest):
    return await save_app_settings(req.model_dump(exclude_none=True))


# === DCInside Login ===

@app.post("/dcinside/login")
async def dcinside_login(req: LoginRequest):
    settings = await get_app_settings()
    adapter = DCInsideAdapter(get_browser_manager())
    result = await adapter.login(req.login_id, req.password, headless=not settings["show_browser_window"])
    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)
    return {"success": True, "message": result.message}


@app.delete("/dcinside/login/{login_id}")
async def dcinside_logout(login_id: str):
    """Forget the saved session for a login id."""
    if not get_cookie_store().delete(DCInsideAdapter.PLATFORM, login_id):
        raise HTTPException(status_code=404, detail=f"No saved session for {login_id}")
    return {"deleted": login_id}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)

"""
Database module for Scheduled Publisher.
Implements SQLite persistence with async support.

Jobs and destination post jobs share one lifecycle:

    pending -> processing -> completed | failed
    failed  -> pending            (retry)

`processing` is entered only through a conditional update on a
`pending` row, so concurrent pollers can never both claim one job.
Terminal states are written only against `processing` rows.
"""

import os
import json
import uuid
import aiosqlite
from datetime import date, datetime, time
from typing import Optional, List, Dict, Any, Union
from pathlib import Path
from contextlib import asynccontextmanager

from api.config import config
from api.errors import JobNotFoundError, JobStateError

# Database configuration
DB_PATH = Path(os.getenv("DATABASE_PATH", Path(__file__).parent.parent / "data" / "publisher.db"))
DB_PATH.parent.mkdir(parents=True, exist_ok=True)

JOB_TYPE_BLOG_POST = "post"
JOB_TYPE_GENERATE_TOPIC = "generate_topic"

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

LOG_LEVELS = ("info", "warn", "error")

_JOB_SORT_COLUMNS = {"created_at", "updated_at", "scheduled_at", "priority", "status", "subject"}

TimeLike = Union[datetime, date, str, None]


def _now() -> str:
    return to_db_time(datetime.now())


def to_db_time(value: TimeLike) -> Optional[str]:
    """Normalize a timestamp to the naive local ISO form stored in every table."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif not isinstance(value, datetime):
        value = datetime.combine(value, time())
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


async def init_database():
    """Initialize the database schema."""
    async with aiosqlite.connect(DB_PATH) as db:
        # Generic jobs
        await db.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                priority INTEGER NOT NULL DEFAULT 0,
                subject TEXT,
                description TEXT,
                scheduled_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                result_url TEXT,
                result_msg TEXT,
                error_message TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Blog post payloads (one per BLOG_POST job)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS blog_jobs (
                job_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                content TEXT,
                labels TEXT,
                FOREIGN KEY (job_id) REFERENCES jobs(id)
            )
        """)

        # Topic generation payloads (one per GENERATE_TOPIC job)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS topic_jobs (
                job_id TEXT PRIMARY KEY,
                topic TEXT NOT NULL,
                "limit" INTEGER NOT NULL DEFAULT 10,
                result_json TEXT,
                FOREIGN KEY (job_id) REFERENCES jobs(id)
            )
        """)

        # Destination post jobs (forum gallery posts)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS post_jobs (
                id TEXT PRIMARY KEY,
                gallery_url TEXT NOT NULL,
                title TEXT NOT NULL,
                content_html TEXT NOT NULL,
                password TEXT,
                nickname TEXT,
                headtext TEXT,
                image_paths TEXT,
                login_id TEXT,
                login_password TEXT,
                scheduled_at TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                started_at TEXT,
                completed_at TEXT,
                result_msg TEXT,
                result_url TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Append-only progress log, shared by jobs and post jobs
        await db.execute("""
            CREATE TABLE IF NOT EXISTS job_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                message TEXT NOT NULL,
                level TEXT NOT NULL DEFAULT 'info',
                created_at TEXT NOT NULL
            )
        """)

        # Operator settings (key/value JSON)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """)

        # Create indexes
        await db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status_scheduled ON jobs(status, scheduled_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_type ON jobs(type)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_post_jobs_status_scheduled ON post_jobs(status, scheduled_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_job_logs_job_id ON job_logs(job_id, created_at)")

        await db.commit()


@asynccontextmanager
async def get_db():
    """Get a database connection."""
    db = await aiosqlite.connect(DB_PATH)
    db.row_factory = aiosqlite.Row
    try:
        yield db
    finally:
        await db.close()


# Shared lifecycle primitives. `table` is always one of the constants below.

_JOBS = "jobs"
_POST_JOBS = "post_jobs"


async def _claim(table: str, job_id: str) -> bool:
    now = _now()
    async with get_db() as db:
        cursor = await db.execute(
            f"""UPDATE {table}
                SET status = 'processing', started_at = ?, updated_at = ?
                WHERE id = ? AND status = 'pending'""",
            (now, now, job_id),
        )
        await db.commit()
        return cursor.rowcount == 1


async def _finish(table: str, job_id: str, status: str, fields: Dict[str, Any]) -> bool:
    now = _now()
    assignments = ", ".join(f"{col} = ?" for col in fields)
    async with get_db() as db:
        cursor = await db.execute(
            f"""UPDATE {table}
                SET status = ?, {assignments}, completed_at = ?, updated_at = ?
                WHERE id = ? AND status = 'processing'""",
            (status, *fields.values(), now, now, job_id),
        )
        await db.commit()
        return cursor.rowcount == 1


async def _get_row(table: str, job_id: str) -> Optional[Dict[str, Any]]:
    async with get_db() as db:
        cursor = await db.execute(f"SELECT * FROM {table} WHERE id = ?", (job_id,))
        row = await cursor.fetchone()
        return dict(row) if row else None


async def _retry(table: str, job_id: str, cleared: List[str]) -> Dict[str, Any]:
    now = _now()
    resets = ", ".join(f"{col} = NULL" for col in cleared)
    async with get_db() as db:
        cursor = await db.execute(
            f"""UPDATE {table}
                SET status = 'pending', {resets}, started_at = NULL, completed_at = NULL, updated_at = ?
                WHERE id = ? AND status = 'failed'""",
            (now, job_id),
        )
        if cursor.rowcount != 1:
            await db.rollback()
            row = await _get_row(table, job_id)
            if row is None:
                raise JobNotFoundError(job_id)
            raise JobStateError(job_id, row["status"], "Only failed jobs can be retried")

        await db.execute(
            "INSERT INTO job_logs (job_id, message, level, created_at) VALUES (?, ?, 'info', ?)",
            (job_id, "Job reset to pending for retry", now),
        )
        await db.commit()

    return await _get_row(table, job_id)


async def _delete(table: str, job_id: str, payload_tables: List[str]):
    async with get_db() as db:
        cursor = await db.execute(
            f"DELETE FROM {table} WHERE id = ? AND status != 'processing'",
            (job_id,),
        )
        if cursor.rowcount != 1:
            await db.rollback()
            row = await _get_row(table, job_id)
            if row is None:
                raise JobNotFoundError(job_id)
            raise JobStateError(job_id, row["status"], "Cannot delete a job while it is processing")

        for payload_table in payload_tables:
            await db.execute(f"DELETE FROM {payload_table} WHERE job_id = ?", (job_id,))
        await db.execute("DELETE FROM job_logs WHERE job_id = ?", (job_id,))
        await db.commit()


async def _ids_with_status(table: str, status: str) -> List[str]:
    async with get_db() as db:
        cursor = await db.execute(f"SELECT id FROM {table} WHERE status = ? ORDER BY created_at", (status,))
        return [row["id"] for row in await cursor.fetchall()]


# Job operations

async def _insert_job(
    db: aiosqlite.Connection,
    job_type: str,
    subject: str,
    description: Optional[str],
    priority: int,
    scheduled_at: TimeLike,
) -> str:
    job_id = _new_id("job")
    now = _now()
    await db.execute(
        """INSERT INTO jobs
           (id, type, status, priority, subject, description, scheduled_at, created_at, updated_at)
           VALUES (?, ?, 'pending', ?, ?, ?, ?, ?, ?)""",
        (job_id, job_type, int(priority), subject, description, to_db_time(scheduled_at) or now, now, now),
    )
    return job_id


async def create_blog_post_job(
    title: str,
    content: str = "",
    labels: Optional[List[str]] = None,
    *,
    subject: Optional[str] = None,
    description: Optional[str] = None,
    priority: int = 0,
    scheduled_at: TimeLike = None,
) -> str:
    """Create a pending BLOG_POST job with its payload row and return the job id."""
    async with get_db() as db:
        job_id = await _insert_job(
            db, JOB_TYPE_BLOG_POST, subject or title, description, priority, scheduled_at
        )
        await db.execute(
            "INSERT INTO blog_jobs (job_id, title, content, labels) VALUES (?, ?, ?, ?)",
            (job_id, title, content, json.dumps(labels or [])),
        )
        await db.commit()
    return job_id


async def create_topic_job(
    topic: str,
    limit: int = 10,
    *,
    description: Optional[str] = None,
    priority: int = 0,
    scheduled_at: TimeLike = None,
) -> str:
    """Create a pending GENERATE_TOPIC job with its payload row and return the job id."""
    async with get_db() as db:
        job_id = await _insert_job(
            db, JOB_TYPE_GENERATE_TOPIC, topic, description, priority, scheduled_at
        )
        await db.execute(
            'INSERT INTO topic_jobs (job_id, topic, "limit") VALUES (?, ?, ?)',
            (job_id, topic, int(limit)),
        )
        await db.commit()
    return job_id


async def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    """Get a job by id."""
    return await _get_row(_JOBS, job_id)


async def get_blog_job(job_id: str) -> Optional[Dict[str, Any]]:
    async with get_db() as db:
        cursor = await db.execute("SELECT * FROM blog_jobs WHERE job_id = ?", (job_id,))
        row = await cursor.fetchone()
        if not row:
            return None
        payload = dict(row)
        payload["labels"] = json.loads(payload.get("labels") or "[]")
        return payload


async def get_topic_job(job_id: str) -> Optional[Dict[str, Any]]:
    async with get_db() as db:
        cursor = await db.execute("SELECT * FROM topic_jobs WHERE job_id = ?", (job_id,))
        row = await cursor.fetchone()
        if not row:
            return None
        payload = dict(row)
        payload["result"] = json.loads(payload.get("result_json") or "null")
        return payload


async def save_topic_result(job_id: str, topics: List[Dict[str, Any]]):
    async with get_db() as db:
        await db.execute(
            "UPDATE topic_jobs SET result_json = ? WHERE job_id = ?",
            (json.dumps(topics, ensure_ascii=False), job_id),
        )
        await db.commit()


async def list_jobs(
    status: Optional[str] = None,
    job_type: Optional[str] = None,
    search: Optional[str] = None,
    order_by: str = "created_at",
    order: str = "desc",
    limit: int = 100,
) -> List[Dict[str, Any]]:
    """List jobs with optional filters."""
    clauses = []
    params: List[Any] = []
    if status:
        clauses.append("status = ?")
        params.append(status)
    if job_type:
        clauses.append("type = ?")
        params.append(job_type)
    if search:
        clauses.append("(subject LIKE ? OR description LIKE ?)")
        params.extend([f"%{search}%", f"%{search}%"])

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    column = order_by if order_by in _JOB_SORT_COLUMNS else "created_at"
    direction = "ASC" if order.lower() == "asc" else "DESC"

    async with get_db() as db:
        cursor = await db.execute(
            f"SELECT * FROM jobs {where} ORDER BY {column} {direction} LIMIT ?",
            (*params, int(limit)),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


async def list_due_jobs(now: TimeLike = None) -> List[Dict[str, Any]]:
    """Pending jobs whose scheduled time has passed, highest priority first."""
    cutoff = to_db_time(now) or _now()
    async with get_db() as db:
        cursor = await db.execute(
            """SELECT * FROM jobs
               WHERE status = 'pending' AND scheduled_at <= ?
               ORDER BY priority DESC, scheduled_at ASC""",
            (cutoff,),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


async def claim_job(job_id: str) -> bool:
    """
    Atomically move a job from pending to processing.
    Returns False if another poller claimed it first or it is not pending.
    """
    return await _claim(_JOBS, job_id)


async def complete_job(job_id: str, result_url: Optional[str] = None, result_msg: Optional[str] = None) -> bool:
    return await _finish(_JOBS, job_id, STATUS_COMPLETED, {
        "result_url": result_url,
        "result_msg": result_msg,
        "error_message": None,
    })


async def fail_job(job_id: str, error: str) -> bool:
    return await _finish(_JOBS, job_id, STATUS_FAILED, {"error_message": error})


async def retry_job(job_id: str) -> Dict[str, Any]:
    """Reset a failed job to pending. Raises JobNotFoundError / JobStateError."""
    return await _retry(_JOBS, job_id, ["result_url", "result_msg", "error_message"])


async def delete_job(job_id: str):
    """Delete a job with its payload and logs. Refused while processing."""
    await _delete(_JOBS, job_id, ["blog_jobs", "topic_jobs"])


async def list_jobs_by_status(status: str) -> List[str]:
    """Ids of every job currently in the given status."""
    return await _ids_with_status(_JOBS, status)


# Destination post job operations

_POST_JOB_SORT_COLUMNS = {"created_at", "scheduled_at", "status", "title"}


def _post_job_from_row(row) -> Dict[str, Any]:
    job = dict(row)
    job["image_paths"] = json.loads(job.get("image_paths") or "[]")
    return job


async def create_post_job(params: Dict[str, Any], scheduled_at: TimeLike = None) -> str:
    """Create a pending destination post job from posting params."""
    post_id = _new_id("post")
    now = _now()
    async with get_db() as db:
        await db.execute(
            """INSERT INTO post_jobs
               (id, gallery_url, title, content_html, password, nickname, headtext,
                image_paths, login_id, login_password, scheduled_at, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)""",
            (
                post_id,
                params["gallery_url"],
                params["title"],
                params["content_html"],
                params.get("password"),
                params.get("nickname"),
                params.get("headtext"),
                json.dumps(list(params.get("image_paths") or []), ensure_ascii=False),
                params.get("login_id"),
                params.get("login_password"),
                to_db_time(scheduled_at) or now,
                now,
                now,
            ),
        )
        await db.commit()
    return post_id


async def get_post_job(post_id: str) -> Optional[Dict[str, Any]]:
    row = await _get_row(_POST_JOBS, post_id)
    if row is None:
        return None
    return _post_job_from_row(row)


async def list_post_jobs(
    status: Optional[str] = None,
    search: Optional[str] = None,
    order_by: str = "scheduled_at",
    order: str = "desc",
    limit: int = 100,
) -> List[Dict[str, Any]]:
    clauses = []
    params: List[Any] = []
    if status:
        clauses.append("status = ?")
        params.append(status)
    if search:
        clauses.append("(title LIKE ? OR gallery_url LIKE ?)")
        params.extend([f"%{search}%", f"%{search}%"])
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    column = order_by if order_by in _POST_JOB_SORT_COLUMNS else "scheduled_at"
    direction = "ASC" if order.lower() == "asc" else "DESC"
    async with get_db() as db:
        cursor = await db.execute(
            f"SELECT * FROM post_jobs {where} ORDER BY {column} {direction} LIMIT ?",
            (*params, int(limit)),
        )
        rows = await cursor.fetchall()
        return [_post_job_from_row(row) for row in rows]


async def list_due_post_jobs(now: TimeLike = None) -> List[Dict[str, Any]]:
    cutoff = to_db_time(now) or _now()
    async with get_db() as db:
        cursor = await db.execute(
            """SELECT * FROM post_jobs
               WHERE status = 'pending' AND scheduled_at <= ?
               ORDER BY scheduled_at ASC""",
            (cutoff,),
        )
        rows = await cursor.fetchall()
        return [_post_job_from_row(row) for row in rows]


async def claim_post_job(post_id: str) -> bool:
    return await _claim(_POST_JOBS, post_id)


async def complete_post_job(post_id: str, result_msg: Optional[str] = None, result_url: Optional[str] = None) -> bool:
    return await _finish(_POST_JOBS, post_id, STATUS_COMPLETED, {
        "result_msg": result_msg,
        "result_url": result_url,
    })


async def fail_post_job(post_id: str, error: str) -> bool:
    return await _finish(_POST_JOBS, post_id, STATUS_FAILED, {"result_msg": error})


async def retry_post_job(post_id: str) -> Dict[str, Any]:
    row = await _retry(_POST_JOBS, post_id, ["result_msg", "result_url"])
    return _post_job_from_row(row)


async def delete_post_job(post_id: str):
    await _delete(_POST_JOBS, post_id, [])


async def list_post_jobs_by_status(status: str) -> List[str]:
    return await _ids_with_status(_POST_JOBS, status)


# Job log operations

async def add_job_log(job_id: str, message: str, level: str = "info") -> int:
    """Append a log entry for a job or post job."""
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}")
    async with get_db() as db:
        cursor = await db.execute(
            "INSERT INTO job_logs (job_id, message, level, created_at) VALUES (?, ?, ?, ?)",
            (job_id, message, level, _now()),
        )
        await db.commit()
        return cursor.lastrowid


async def get_job_logs(job_id: str) -> List[Dict[str, Any]]:
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT * FROM job_logs WHERE job_id = ? ORDER BY created_at ASC, id ASC",
            (job_id,),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


async def get_latest_job_log(job_id: str) -> Optional[Dict[str, Any]]:
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT * FROM job_logs WHERE job_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (job_id,),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None


# Settings operations

APP_SETTINGS_KEY = "app"


def default_app_settings() -> Dict[str, Any]:
    return {
        "show_browser_window": config.SHOW_BROWSER_WINDOW,
        "task_delay_seconds": config.TASK_DELAY_SECONDS,
        "image_upload_failure_action": config.IMAGE_UPLOAD_FAILURE_ACTION,
        "openai_api_key": config.OPENAI_API_KEY,
        "blogger_blog_id": config.BLOGGER_BLOG_ID,
        "blogger_access_token": config.BLOGGER_ACCESS_TOKEN,
    }


async def get_app_settings() -> Dict[str, Any]:
    """Operator settings, stored values merged over environment defaults."""
    settings = default_app_settings()
    async with get_db() as db:
        cursor = await db.execute("SELECT value FROM app_settings WHERE key = ?", (APP_SETTINGS_KEY,))
        row = await cursor.fetchone()
    if row:
        stored = json.loads(row["value"] or "{}")
        settings.update({k: v for k, v in stored.items() if v is not None})
    return settings


async def save_app_settings(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Merge updates into the stored operator settings and return the effective settings."""
    async with get_db() as db:
        # Merge with existing settings so omitted keys do not get wiped.
        cursor = await db.execute("SELECT value FROM app_settings WHERE key = ?", (APP_SETTINGS_KEY,))
        row = await cursor.fetchone()
        merged = json.loads(row["value"] or "{}") if row else {}
        merged.update({k: v for k, v in (updates or {}).items() if v is not None})

        await db.execute(
            "INSERT OR REPLACE INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)",
            (APP_SETTINGS_KEY, json.dumps(merged), _now()),
        )
        await db.commit()

    return await get_app_settings()

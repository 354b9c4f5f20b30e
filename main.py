#!/usr/bin/env python3
"""
Scheduled Publisher - Main Entry Point

Usage:
    # Run API server (schedulers run inside it unless SCHEDULER_ENABLED=false)
    python main.py server

    # Run the pollers without the HTTP surface
    python main.py worker

    # Fail jobs left in processing by a crashed process, then exit
    python main.py recover

    # Bulk-create destination post jobs from a YAML file
    python main.py import-posts posts.yaml
"""

import sys
import asyncio
import argparse
import logging

import yaml

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def check_environment():
    """Report configuration problems. Missing keys only disable the features that need them."""
    from api.config import config

    problems = config.validate()
    if problems:
        print("⚠️  Configuration warnings:")
        for problem in problems:
            print(f"  - {problem}")
    else:
        print("✅ Configuration OK")
    return True


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = False):
    """Run the FastAPI server."""
    import uvicorn

    print(f"🚀 Starting server on {host}:{port}")
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


async def run_worker():
    """Run orphan recovery and both pollers until interrupted."""
    from api.database import init_database
    from api.job_processor import build_default_registry
    from api.job_scheduler import JobScheduler
    from api.orphan_recovery import recover_orphans
    from api.post_queue import PostQueue
    from api.post_scheduler import PostScheduler
    from core.browser import get_browser_manager

    await init_database()
    report = await recover_orphans()
    logger.info(f"Recovered {report.total} interrupted job(s)")

    queue = PostQueue()
    job_scheduler = JobScheduler(registry=build_default_registry())
    post_scheduler = PostScheduler(queue=queue)
    job_scheduler.start()
    post_scheduler.start()

    try:
        await asyncio.Event().wait()
    finally:
        await job_scheduler.stop()
        await post_scheduler.stop()
        await queue.stop()
        await get_browser_manager().close_all()


async def run_recover():
    """Fail orphaned jobs and exit."""
    from api.database import init_database
    from api.orphan_recovery import recover_orphans

    await init_database()
    report = await recover_orphans()
    print(f"Failed {len(report.jobs)} job(s) and {len(report.post_jobs)} post job(s)")
    for job_id in report.jobs + report.post_jobs:
        print(f"  - {job_id}")


def load_post_entries(path: str) -> list:
    """Read post job entries from YAML: a list, or a mapping with a `posts` list."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or []

    if isinstance(data, dict):
        data = data.get("posts", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of posts")
    return data


async def import_posts(path: str) -> int:
    """Create one pending post job per valid YAML entry. Returns the number created."""
    from adapters.base import PostParams
    from adapters.dcinside import validate_dcinside_params
    from api.database import create_post_job, init_database, to_db_time

    await init_database()
    created = 0
    for index, entry in enumerate(load_post_entries(path), start=1):
        try:
            entry = dict(entry)
            scheduled_at = to_db_time(entry.pop("scheduled_at", None))
            if isinstance(entry.get("image_paths"), str):
                entry["image_paths"] = [p.strip() for p in entry["image_paths"].split(",") if p.strip()]
            params = PostParams(**entry)
        except (TypeError, ValueError) as e:
            logger.error(f"Entry {index}: {e}")
            continue

        problems = validate_dcinside_params(params)
        if problems:
            logger.error(f"Entry {index} skipped: {', '.join(problems)}")
            continue

        post_id = await create_post_job(entry, scheduled_at=scheduled_at)
        logger.info(f"Entry {index}: created {post_id} ({params.title})")
        created += 1

    return created


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Scheduled Publisher - scheduled blog and forum publishing"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Server command
    server_parser = subparsers.add_parser('server', help='Run API server')
    server_parser.add_argument('--host', default='0.0.0.0', help='Host to bind to')
    server_parser.add_argument('--port', type=int, default=8080, help='Port to bind to')
    server_parser.add_argument('--reload', action='store_true', help='Enable auto-reload')

    subparsers.add_parser('worker', help='Run schedulers without the API')
    subparsers.add_parser('recover', help='Fail jobs interrupted by a restart')

    import_parser = subparsers.add_parser('import-posts', help='Create post jobs from YAML')
    import_parser.add_argument('file', help='Path to posts YAML')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    check_environment()

    # Run command
    if args.command == 'server':
        run_server(args.host, args.port, args.reload)

    elif args.command == 'worker':
        try:
            asyncio.run(run_worker())
        except KeyboardInterrupt:
            logger.info("Worker stopped")

    elif args.command == 'recover':
        asyncio.run(run_recover())

    elif args.command == 'import-posts':
        created = asyncio.run(import_posts(args.file))
        print(f"Created {created} post job(s)")
        if created == 0:
            sys.exit(1)


if __name__ == "__main__":
    main()

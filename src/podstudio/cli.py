import argparse
import asyncio
import os
import sys

from databases import Database
from sqlalchemy import create_engine

from .api.db_models import Base
from .clients import ClientCache
from .config import get_database_url, resolve_config
from .errors import PodStudioError
from .jobs.models import JobStatus
from .log import setup_logging
from .records import JobRecordStore


def init_db(database_url: str) -> None:
    engine = create_engine(database_url)
    Base.metadata.create_all(engine)
    engine.dispose()


async def fetch_jobs(database_url: str, status=None, limit: int = 20):
    database = Database(database_url)
    await database.connect()
    try:
        store = JobRecordStore(database)
        if status:
            return await store.list_by_status(JobStatus(status))
        return await store.list_recent(limit)
    finally:
        await database.disconnect()


def main():
    parser = argparse.ArgumentParser(
        prog="podstudio", description="GPU media job orchestration service"
    )
    parser.add_argument("--log-level", type=str, help="Logging level (DEBUG, INFO, ...)")
    subparsers = parser.add_subparsers(dest="command", help="Subcommands")

    # INIT-DB
    init_parser = subparsers.add_parser("init-db", help="Create database tables")
    init_parser.add_argument("--database-url", type=str, help="Override DATABASE_URL")

    # SERVE
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", type=str, default="0.0.0.0", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")
    serve_parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    # LS
    ls_parser = subparsers.add_parser("ls", help="List object store contents")
    ls_parser.add_argument("prefix", nargs="?", default="", help="Folder prefix")
    ls_parser.add_argument("--bucket", type=str, help="Override bucket")

    # JOBS
    jobs_parser = subparsers.add_parser("jobs", help="Show recent jobs")
    jobs_parser.add_argument(
        "--status", choices=[s.value for s in JobStatus], help="Only jobs in this status"
    )
    jobs_parser.add_argument("--limit", type=int, default=20, help="Max jobs to show")
    jobs_parser.add_argument("--database-url", type=str, help="Override DATABASE_URL")

    args = parser.parse_args()

    if args.command == "init-db":
        database_url = args.database_url or get_database_url()
        print(f"Creating tables in {database_url}...")
        init_db(database_url)
        print("Tables created.")

    elif args.command == "serve":
        import uvicorn

        if args.log_level:
            os.environ["PODSTUDIO_LOG_LEVEL"] = args.log_level
        uvicorn.run(
            "podstudio.api.main:app", host=args.host, port=args.port, reload=args.reload
        )

    elif args.command == "ls":
        cli_dict = {k: v for k, v in vars(args).items() if v is not None}
        config = resolve_config(cli_dict)
        setup_logging(config.log_level)
        try:
            entries = ClientCache(config).store().list(args.prefix)
        except PodStudioError as e:
            print(f"Error: {e.message}")
            sys.exit(1)
        for entry in entries:
            if entry.kind == "directory":
                print(f"{'DIR':>12}  {entry.key}")
            else:
                print(f"{entry.size:>12}  {entry.key}")
        print(f"{len(entries)} entries")

    elif args.command == "jobs":
        database_url = args.database_url or get_database_url()
        jobs = asyncio.run(fetch_jobs(database_url, status=args.status, limit=args.limit))
        print("\n" + "=" * 60)
        print("JOBS")
        print("=" * 60)
        for job in jobs:
            created = job.created_at.strftime("%Y-%m-%d %H:%M") if job.created_at else "-"
            print(f"{job.id}  {job.status.value:<10}  {job.type:<16}  {created}  {job.result_url or ''}")
        print("=" * 60)
        print(f"Total: {len(jobs)}")

    else:
        parser.print_help()


if __name__ == "__main__":
    main()

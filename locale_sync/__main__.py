"""
Command-line entry point.

Usage:
    python -m locale_sync serve [--port 5000] [--production]
    python -m locale_sync sync --task-id 123
    python -m locale_sync upload
"""
import argparse
import asyncio
import json
import logging
import os
import sys

from locale_sync.app import build_services, close_services
from locale_sync.app_config import load_app_config

logger = logging.getLogger("locale_sync")


async def run_sync(task_id: int) -> int:
    """Run the sync pipeline for one task, as a webhook delivery would."""
    services = build_services(load_app_config(), show_progress=True)
    try:
        report = await services.pipeline.run(task_id)
    finally:
        await close_services(services)
    for result in report.results:
        if not result.success:
            logger.error(f"Failed: {result.key}: {result.error}")
    return 1 if report.failed else 0


async def run_upload() -> int:
    services = build_services(load_app_config())
    try:
        report = await services.uploader.upload()
    finally:
        await close_services(services)
    print(json.dumps(report.to_dict(), indent=2))
    return 1 if report.errors else 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "locale_sync.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        workers=args.workers if args.production else None,
        reload=not args.production,
    )
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog='locale_sync', description='Lokalise to storage localization sync')
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve_parser = subparsers.add_parser('serve', help='Run the HTTP server')
    serve_parser.add_argument('--port', type=int, default=int(os.environ.get('PORT', 5000)),
                              help='Port to listen on (default: 5000)')
    serve_parser.add_argument('--host', default='0.0.0.0', help='Host to bind to (default: 0.0.0.0)')
    serve_parser.add_argument('--production', action='store_true', help='Run in production mode')
    serve_parser.add_argument('--workers', type=int, default=1,
                              help='Number of workers (production). Syncs are only serialized within one worker.')

    sync_parser = subparsers.add_parser('sync', help='Download and publish the translations of one closed task')
    sync_parser.add_argument('--task-id', type=int, required=True)

    subparsers.add_parser('upload', help='Upload the default-language source files to Lokalise')

    args = parser.parse_args(argv)

    if args.command == 'serve':
        return serve(args)
    try:
        if args.command == 'sync':
            return asyncio.run(run_sync(args.task_id))
        return asyncio.run(run_upload())
    except Exception as main_exc:
        logger.error(f"An unexpected error occurred during execution: {main_exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

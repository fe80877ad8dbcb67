#!/usr/bin/env python3
"""Run the Agent Marketplace API.

Usage:
    python run.py [--host HOST] [--port PORT] [--reload] [--workers N] [--no-scheduler]

Examples:
    python run.py                      # Run with defaults (localhost:8000)
    python run.py --reload             # Auto-reload with console logs
    python run.py --workers 4          # 4 worker processes
    python run.py --no-scheduler       # Serve only; run the auto-approve sweep elsewhere
"""

import argparse
import os

import uvicorn


def main():
    parser = argparse.ArgumentParser(
        description="Run the Agent Marketplace API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload on code changes (development mode)",
    )
    parser.add_argument("--workers", type=int, default=1, help="Number of worker processes (default: 1)")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default="info",
        help="Logging level (default: info)",
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Do not run the auto-approve sweep inside the server",
    )

    args = parser.parse_args()

    # Read by AppSettings in every worker process.
    os.environ.setdefault("APP_LOG_LEVEL", args.log_level.upper())
    if args.reload:
        os.environ.setdefault("APP_LOG_FORMAT", "console")
    if args.no_scheduler:
        os.environ["APP_ENABLE_SCHEDULER"] = "false"

    print(f"Agent Marketplace listening on http://{args.host}:{args.port} (docs at /docs)")

    uvicorn.run(
        "marketplace.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers if not args.reload else 1,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Start the Batch OCR API server.

Usage:
    python run_server.py
    python run_server.py --port 8080 --reload
"""

import argparse

import uvicorn

from config.logging_config import get_logger
from config.settings import settings

logger = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Batch OCR API server")
    parser.add_argument("--host", default=settings.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.port, help="Port")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    parser.add_argument("--show-config", action="store_true", help="Print configuration and exit")
    args = parser.parse_args()

    if args.show_config:
        settings.print_config()
        return

    if not settings.openrouter_api_key:
        logger.warning("OPENROUTER_API_KEY is not set; every OCR request will fail")

    logger.info(f"Starting Batch OCR API on http://{args.host}:{args.port}")
    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Simple run script for the Blockflow server.

Usage:
    python run.py

Or with custom settings:
    HOST=127.0.0.1 PORT=8080 python run.py
"""

import uvicorn

from blockflow.config import settings


def main():
    """Run the FastAPI application."""
    host = settings.HOST
    port = settings.PORT

    print(f"""
  Blockflow {settings.APP_VERSION}
  Server:    http://{host}:{port}
  API Docs:  http://{host}:{port}/docs
  Demo workflow ID: demo-diamond
    """)

    uvicorn.run(
        "blockflow.main:app",
        host=host,
        port=port,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()

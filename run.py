#!/usr/bin/env python3
"""
RBAC Permissions Operator

Starts the reconcile controller together with the health/metrics server.

Usage:
  python run.py

Set DRY_RUN=true to log planned binding changes without applying them.
"""

import uvicorn
from dotenv import load_dotenv

# Load env vars from .env for local/dev runs.
load_dotenv()

from permissions_operator.config import get_settings
from permissions_operator.core.logging import setup_logging

# The operator's own logging config; uvicorn's default log_config would replace it
setup_logging()

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "permissions_operator.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )

# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

This module builds a BulkSenderCore from :func:`load_config` and exposes it
through the FastAPI application, starting and stopping the worker pool with
the application lifespan.

Usage:
    uvicorn bulk_sender.server:app --host 0.0.0.0 --port 8000

Environment variables:
    BULK_CONFIG: Path to the INI configuration file (default: bulk_sender.ini)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config_loader import load_config
from .core import BulkSenderCore
from .logger import configure_logging

_config = load_config()
configure_logging(_config.log_level)

_core = BulkSenderCore(_config)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler - starts and stops the core service."""
    await _core.start()
    yield
    await _core.stop()


app = create_app(_core, api_token=_config.api_token, lifespan=lifespan)

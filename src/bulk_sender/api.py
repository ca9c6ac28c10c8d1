# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory for the bulk sender.

This module provides the REST API interface of the dispatcher:

- Submitting bulk sends and reading back batch outcomes
- Operator control of the worker pool (cancel/resume)
- Health checks, status and Prometheus metrics
- Authentication via API token in the X-API-Token header

Example:
    Creating and running the API application::

        from bulk_sender.core import BulkSenderCore
        from bulk_sender.api import create_app

        core = BulkSenderCore(load_config())
        app = create_app(core, api_token="secret-token")
        uvicorn.run(app, host="0.0.0.0", port=8000)
"""

import logging
from typing import AsyncContextManager, Callable

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader

from .core import BulkSenderCore
from .models import (
    BatchResponse,
    BulkAccepted,
    BulkSendPayload,
    CommandStatus,
    FailuresResponse,
    StatusResponse,
    TasksResponse,
    TaskState,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Bulk Sender")
service: BulkSenderCore | None = None
API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)
app.state.api_token = None


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    When no token has been configured through :func:`create_app` the check
    is skipped.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


def _service() -> BulkSenderCore:
    if not service:
        raise HTTPException(500, "Service not initialized")
    return service


def create_app(
    svc: BulkSenderCore,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        Instance of :class:`bulk_sender.core.BulkSenderCore` executing each
        command.
    api_token:
        Optional secret protecting every endpoint except ``/health``.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn.
    """
    global service
    service = svc

    if lifespan is not None:
        api = FastAPI(title="Bulk Sender", lifespan=lifespan)
    else:
        api = app

    api.state.api_token = api_token
    router = APIRouter(prefix="/commands", tags=["commands"], dependencies=[auth_dependency])

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.error("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @api.get("/health")
    async def health():
        """Health check endpoint (no authentication required)."""
        return {"status": "ok"}

    @api.get("/status", response_model=StatusResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def get_status():
        result = await _service().handle_command("status", {})
        return StatusResponse.model_validate(result)

    @router.post("/send-bulk", response_model=BulkAccepted, response_model_exclude_none=True)
    async def send_bulk(payload: BulkSendPayload):
        """Validate and enqueue a bulk send. Rejections answer 400."""
        result = await _service().handle_command("sendBulk", payload.model_dump())
        if not result.get("ok"):
            return JSONResponse(status_code=400, content=BulkAccepted.model_validate(result).model_dump(exclude_none=True))
        return BulkAccepted.model_validate(result)

    @router.post("/cancel", response_model=CommandStatus, response_model_exclude_none=True)
    async def cancel():
        """Stop pulling tasks; queued tasks are kept for resume."""
        result = await _service().handle_command("cancel", {})
        return CommandStatus.model_validate(result)

    @router.post("/resume", response_model=CommandStatus, response_model_exclude_none=True)
    async def resume():
        result = await _service().handle_command("resume", {})
        return CommandStatus.model_validate(result)

    @api.get("/batches/{batch_id}", response_model=BatchResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def get_batch(batch_id: str):
        result = await _service().handle_command("getBatch", {"batch_id": batch_id})
        if not result.get("ok"):
            raise HTTPException(404, result.get("error") or "batch not found")
        return BatchResponse.model_validate(result)

    @api.get("/tasks", response_model=TasksResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def list_tasks(batch_id: str | None = None, state: TaskState | None = None):
        payload = {"batch_id": batch_id, "state": state.value if state else None}
        result = await _service().handle_command("listTasks", payload)
        return TasksResponse.model_validate(result)

    @api.get("/failures", response_model=FailuresResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def list_failures(limit: int | None = Query(default=None, ge=0)):
        result = await _service().handle_command("listFailures", {"limit": limit})
        return FailuresResponse.model_validate(result)

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics():
        """Expose Prometheus metrics."""
        return Response(content=_service().metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    api.include_router(router)
    return api

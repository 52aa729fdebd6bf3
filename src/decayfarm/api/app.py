from __future__ import annotations

import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from decayfarm.api.request_logging import RequestLogMiddleware
from decayfarm.api.routes_public import public_router
from decayfarm.runtime.config import apply_config_to_env, load_controller_config
from decayfarm.runtime.errors import AuthorizationError, LifecycleError, RewardError
from decayfarm.runtime.service import RewardService
from decayfarm.runtime.service import build_service as _build_service
from decayfarm.runtime.structured_logging import configure_structured_logging


def build_service() -> RewardService:
    """Build the RewardService for API runtime.

    This wrapper exists so tests can monkeypatch `decayfarm.api.app.build_service`
    without reaching into runtime modules.
    """
    return _build_service()


def _status_for(err: RewardError) -> int:
    if isinstance(err, LifecycleError) and err.code == "not_registered":
        return 404
    if isinstance(err, AuthorizationError):
        return 403
    if isinstance(err, LifecycleError):
        return 409
    return 400


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load config, configure logging, attach app.state.service
      - False: keep lightweight for unit tests; tests attach their own service
    """
    mode = os.environ.get("DECAYFARM_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="decayfarm", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="decayfarm")

    if boot_runtime:
        cfg = load_controller_config()
        apply_config_to_env(cfg)
        configure_structured_logging(cfg.log_level)
        app.state.service = build_service()
    else:
        app.state.service = None

    app.add_middleware(RequestLogMiddleware)

    @app.exception_handler(RewardError)
    async def _reward_error(request: Request, exc: RewardError) -> JSONResponse:
        return JSONResponse(
            status_code=_status_for(exc),
            content={"ok": False, "error": {"code": exc.code, "reason": exc.reason, "details": exc.details}},
        )

    app.include_router(public_router)
    return app

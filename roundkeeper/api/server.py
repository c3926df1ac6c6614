"""HTTP trigger for scheduled keeper invocations.

A cron service hits ``/cron/new-round`` every few minutes and
``/cron/betting-closed`` once per round. Both require the cron bearer
secret. Usage:

    roundkeeper --serve
"""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException

from roundkeeper.core.errors import AccountNotFoundError, KeeperError
from roundkeeper.core.logging import get_logger
from roundkeeper.keeper import RoundKeeper
from roundkeeper.models.reports import ActionStatus

logger = get_logger(__name__)


def create_app(
    keeper: RoundKeeper,
    cron_secret: str,
    *,
    allow_unauthenticated: bool = False,
) -> FastAPI:
    """Build the FastAPI app around an already-wired keeper."""
    if not cron_secret and not allow_unauthenticated:
        msg = "cron secret is required unless api.allow_unauthenticated is set"
        raise ValueError(msg)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await keeper.close()

    app = FastAPI(title="Round Keeper", version="0.4.0", lifespan=lifespan)

    def require_cron_auth(authorization: str | None = Header(default=None)) -> None:
        if allow_unauthenticated and not cron_secret:
            return
        expected = f"Bearer {cron_secret}"
        if authorization is None or not secrets.compare_digest(authorization, expected):
            logger.warning("api.unauthorized")
            raise HTTPException(status_code=401, detail="Unauthorized")

    def _fail(route: str, exc: KeeperError) -> HTTPException:
        logger.error("api.keeper_error", route=route, error=str(exc), retryable=exc.retryable)
        return HTTPException(
            status_code=503 if exc.retryable else 500,
            detail={"error": type(exc).__name__, "message": str(exc)},
        )

    @app.api_route("/cron/new-round", methods=["GET", "POST"], dependencies=[Depends(require_cron_auth)])
    async def cron_new_round() -> dict[str, Any]:
        try:
            report = await keeper.run_once()
        except KeeperError as exc:
            raise _fail("new-round", exc) from exc
        failed = any(a.status is ActionStatus.FAILED for a in report.actions)
        return {
            "success": not failed and not report.errors,
            "round_id": report.active_round_id,
            "wait_seconds": report.wait_seconds,
            "actions": [a.model_dump(mode="json", exclude={"payouts"}) for a in report.actions],
            "signatures": [s for a in report.actions for s in a.signatures],
            "payout_mismatches": [m.model_dump() for m in report.payout_mismatches],
            "errors": report.errors,
        }

    @app.api_route(
        "/cron/betting-closed", methods=["GET", "POST"], dependencies=[Depends(require_cron_auth)],
    )
    async def cron_betting_closed() -> dict[str, Any]:
        try:
            result = await keeper.announce_betting_closed()
        except KeeperError as exc:
            raise _fail("betting-closed", exc) from exc
        return {
            "success": result.status is not ActionStatus.FAILED,
            "round_id": result.round_id,
            "status": result.status.value,
            "detail": result.detail,
        }

    @app.get("/rounds/{round_id}")
    async def get_round(round_id: int) -> dict[str, Any]:
        if round_id < 0:
            raise HTTPException(status_code=422, detail="round_id must be >= 0")
        try:
            return await keeper.describe_round(round_id)
        except AccountNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except KeeperError as exc:
            raise _fail("rounds", exc) from exc

    @app.get("/health")
    def get_health() -> dict[str, Any]:
        return {
            "server_ok": True,
            "program_id": keeper.settings.ledger.program_id,
            "assets": [a.symbol for a in keeper.settings.assets],
        }

    return app


def serve(config_dir: str = "config", env: str | None = None) -> int:
    """Load config and credentials, then run the app under uvicorn."""
    import uvicorn

    from roundkeeper.config.loader import ConfigLoader
    from roundkeeper.config.settings import load_settings, require_credentials
    from roundkeeper.keeper import create_keeper

    loader = ConfigLoader(config_dir=config_dir, env=env)
    loader.load()
    settings = load_settings(loader)
    credentials = require_credentials(need_cron_secret=not settings.api.allow_unauthenticated)
    keeper = create_keeper(settings, credentials)
    app = create_app(
        keeper,
        credentials.cron_secret,
        allow_unauthenticated=settings.api.allow_unauthenticated,
    )
    uvicorn.run(app, host=settings.api.host, port=settings.api.port)
    return 0

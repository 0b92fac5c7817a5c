"""Callback listener: FastAPI app notified by the backend when an order is accepted."""

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from typing import Any

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from resolver.config.schema import CallbackConfig
from resolver.context import ResolverContext
from resolver.models.common import same_address, utc_now_iso
from resolver.models.health import HealthStatus

logger = logging.getLogger(__name__)

ORDER_ACCEPTED = "ORDER_ACCEPTED"


class OrderAcceptedNotification(BaseModel):
    type: str
    orderId: str
    resolverAddress: str
    details: dict[str, Any] | None = None


def health_status(context: ResolverContext) -> HealthStatus:
    return HealthStatus(
        status="healthy",
        resolver=context.resolver_address,
        timestamp=utc_now_iso(),
        mode=context.health.mode.value,
        watermark=context.health.last_seen_block,
        processing=context.registry.processing_count,
        processed=context.registry.processed_count,
        active_auctions=len(context.auctions),
    )


def create_callback_app(
    context: ResolverContext,
    schedule_settlement: Callable[[str], object],
) -> FastAPI:
    """Build the listener app. `schedule_settlement` must not block."""
    app = FastAPI(title="Resolver Callback Listener", version="0.1.0")

    @app.get("/health")
    async def get_health():
        return dataclasses.asdict(health_status(context))

    @app.post("/callback/order-accepted")
    async def order_accepted(notification: OrderAcceptedNotification):
        logger.info(
            "Callback received: type=%s order=%s resolver=%s",
            notification.type, notification.orderId, notification.resolverAddress,
        )
        try:
            if notification.type == ORDER_ACCEPTED and same_address(
                notification.resolverAddress, context.resolver_address
            ):
                logger.info("Order %s accepted by us, scheduling settlement", notification.orderId)
                schedule_settlement(notification.orderId)
        except Exception as e:
            logger.exception("Error handling callback for order %s", notification.orderId)
            return JSONResponse(status_code=500, content={"error": str(e)})
        return {"success": True, "message": "Callback received"}

    return app


class CallbackServer:
    """Runs the listener with uvicorn inside the resolver's event loop."""

    def __init__(self, config: CallbackConfig, app: FastAPI):
        self.config = config
        self.app = app
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        server_config = uvicorn.Config(
            app=self.app,
            host=self.config.host,
            port=self.config.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(server_config)
        self._task = asyncio.create_task(self._server.serve(), name="callback_server")
        await asyncio.sleep(0.1)
        logger.info("Callback listener on port %d (%s)", self.config.port, self.config.callback_url)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        self._server = None
        self._task = None
        logger.info("Callback listener stopped")

from __future__ import annotations

import time
from typing import Any

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query

from stock_monitor import __version__
from stock_monitor.api.auth import require_api_key
from stock_monitor.api.schema import (
    CreateCheckRequest,
    CreateCheckResponse,
    DeleteCheckResponse,
    SubscriptionsResponse,
)
from stock_monitor.config import MonitoringConfig, load_config
from stock_monitor.errors import ValidationError
from stock_monitor.service import ItemSpec, StockMonitorService, SubscriberSpec


logger = structlog.get_logger(__name__)


def create_app(config: MonitoringConfig | None = None, service: StockMonitorService | None = None) -> FastAPI:
    app = FastAPI(title="Stock Monitor", version=__version__)
    app.state.config = config or (service.config if service else load_config())
    app.state.service = service or StockMonitorService(app.state.config)

    @app.on_event("startup")
    async def _startup() -> None:
        svc: StockMonitorService = app.state.service
        restored = await svc.start()
        logger.info("Stock monitor API started", monitors=restored)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        svc: StockMonitorService = app.state.service
        await svc.stop()

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "ts": time.time()}

    @app.get("/status", dependencies=[Depends(require_api_key)])
    async def status() -> dict[str, Any]:
        svc: StockMonitorService = app.state.service
        return svc.status()

    @app.post("/checks", status_code=201, response_model=CreateCheckResponse, dependencies=[Depends(require_api_key)])
    async def create_check(req: CreateCheckRequest) -> CreateCheckResponse:
        svc: StockMonitorService = app.state.service
        try:
            result = await svc.register_subscription(
                ItemSpec(
                    url=req.product_url or "",
                    location_filter=req.delivery_pincode or "",
                    interval_minutes=req.interval_minutes,
                ),
                SubscriberSpec(email=req.email or "", phone_number=req.phone_number or ""),
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("Failed to create subscription", error=str(exc))
            raise HTTPException(status_code=500, detail=f"subscription_create_failed: {exc}") from exc

        return CreateCheckResponse(**result.to_dict())

    @app.get("/subscriptions", response_model=SubscriptionsResponse, dependencies=[Depends(require_api_key)])
    async def list_subscriptions(email: str = Query("")) -> SubscriptionsResponse:
        svc: StockMonitorService = app.state.service
        try:
            rows = await svc.subscriptions_for(email)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("Failed to fetch subscriptions", error=str(exc))
            raise HTTPException(status_code=500, detail=f"subscription_lookup_failed: {exc}") from exc
        return SubscriptionsResponse(email=email.strip(), subscriptions=rows)

    @app.delete("/checks/{subscription_id}", response_model=DeleteCheckResponse, dependencies=[Depends(require_api_key)])
    async def delete_check(subscription_id: str) -> DeleteCheckResponse:
        svc: StockMonitorService = app.state.service
        try:
            sid = int(subscription_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid_subscription_id") from exc

        try:
            result = await svc.unsubscribe(sid)
        except Exception as exc:
            logger.exception("Failed to delete subscription", subscription_id=sid, error=str(exc))
            raise HTTPException(status_code=500, detail=f"subscription_delete_failed: {exc}") from exc

        if not result.removed:
            raise HTTPException(status_code=404, detail="subscription_not_found")
        return DeleteCheckResponse(status=result.status, status_changed_at_ts=result.status_changed_at_ts)

    return app

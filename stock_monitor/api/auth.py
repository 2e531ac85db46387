from __future__ import annotations

import hmac
from typing import Any

from fastapi import Depends, HTTPException, Request

from stock_monitor.config import MonitoringConfig


def _auth_header_token(req: Request) -> str:
    raw = req.headers.get("authorization") or ""
    if not raw:
        return ""
    parts = raw.split(None, 1)
    if len(parts) != 2:
        return ""
    scheme, rest = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer":
        return ""
    return rest


def get_config(req: Request) -> MonitoringConfig:
    config: Any = getattr(req.app.state, "config", None)
    if not isinstance(config, MonitoringConfig):
        raise RuntimeError("Stock monitor config not configured")
    return config


def require_api_key(req: Request, config: MonitoringConfig = Depends(get_config)) -> None:
    token = _auth_header_token(req)
    if not token:
        raise HTTPException(status_code=401, detail="missing_bearer_token")
    if not config.api_key:
        raise HTTPException(status_code=503, detail="api_key_not_configured")
    if not hmac.compare_digest(token.encode("utf-8"), config.api_key.strip().encode("utf-8")):
        raise HTTPException(status_code=403, detail="invalid_token")

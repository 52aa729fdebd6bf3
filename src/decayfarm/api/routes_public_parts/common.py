from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, Request

from decayfarm.ledger.types import Period, Pool

Json = Dict[str, Any]


def _service(request: Request):
    svc = getattr(request.app.state, "service", None)
    if svc is None:
        raise HTTPException(status_code=503, detail={"code": "not_ready", "message": "service not attached"})
    return svc


def period_json(p: Period) -> Json:
    return p.to_json()


def pool_json(p: Pool) -> Json:
    return {**p.to_json(), "key": p.key}

from __future__ import annotations

from fastapi import APIRouter, Request

from decayfarm.api.routes_public_parts.common import _service, pool_json
from decayfarm.api.schemas import PendingOut, PoolDetailOut, PoolListOut
from decayfarm.ledger.types import pool_key

router = APIRouter()


@router.get("/pools", response_model=PoolListOut)
def pools(request: Request):
    svc = _service(request)
    status = svc.clock_status()
    return {"pools": [pool_json(p) for p in svc.pools()], "total_weight": status["total_weight"]}


@router.get("/pools/{market}/{kind}", response_model=PoolDetailOut)
def pool_detail(market: str, kind: str, request: Request):
    return _service(request).pool_summary(market, kind)


@router.get("/pools/{market}/{kind}/pending/{participant}", response_model=PendingOut)
def pool_pending(market: str, kind: str, participant: str, request: Request):
    amount = _service(request).pending(market, kind, participant)
    return {"pool": pool_key(market, kind), "participant": participant, "pending": amount}

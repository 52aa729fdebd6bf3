from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from decayfarm.api.routes_public_parts.common import _service, period_json
from decayfarm.api.schemas import CurrentPeriodOut, PeriodListOut, PeriodOut

router = APIRouter()


@router.get("/periods", response_model=PeriodListOut)
def periods(request: Request):
    svc = _service(request)
    status = svc.clock_status()
    return {"periods": [period_json(p) for p in svc.periods()], "current": status["period"]}


@router.get("/periods/current", response_model=CurrentPeriodOut)
def current_period(request: Request):
    return _service(request).current_period_status()


@router.get("/periods/{index}", response_model=PeriodOut)
def period(index: int, request: Request):
    p = _service(request).period(index)
    if p is None:
        # Never entered, or skipped by a multi-period jump.
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": f"no record for period {index}"})
    return period_json(p)

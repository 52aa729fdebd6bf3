from __future__ import annotations

from typing import List

from fastapi import APIRouter, Request

from decayfarm.api.routes_public_parts.common import _service
from decayfarm.api.schemas import ClockOut, ScheduleRowOut

router = APIRouter()


@router.get("/clock", response_model=ClockOut)
def clock(request: Request):
    """Phase, active period, time to the next boundary and to the end of the schedule."""
    return _service(request).clock_status()


@router.get("/schedule", response_model=List[ScheduleRowOut])
def schedule(request: Request):
    return _service(request).schedule()

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    svc = getattr(request.app.state, "service", None)
    return {"ok": True, "ready": svc is not None}

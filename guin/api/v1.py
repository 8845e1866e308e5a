from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session, select

from ..database import get_db
from ..models.service_start import ServiceStart

router = APIRouter(prefix="/api/v1", tags=["v1"])


@router.get("/version")
def version(request: Request) -> Dict[str, Any]:
    return {"version": request.app.version}


@router.get("/starts")
def recent_starts(
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Most recent process starts, newest first."""
    rows = db.exec(
        select(ServiceStart).order_by(ServiceStart.started_at.desc(), ServiceStart.id.desc()).limit(limit)
    ).all()
    return [
        {
            "id": r.id,
            "service_name": r.service_name,
            "port": r.port,
            "started_at": r.started_at.isoformat(),
        }
        for r in rows
    ]

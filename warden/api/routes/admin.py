"""
warden.api.routes.admin — Admin audit & approval endpoints (JWT‑protected)
===========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from warden.api.deps import get_config, get_current_admin, get_engine, http_error, local_now
from warden.config import WardenConfig
from warden.database.engine import run_db
from warden.errors import WardenError
from warden.services import audit_service, guardian_service

router = APIRouter(prefix="/admin", tags=["admin"])


class ApproveBody(BaseModel):
    display_name: str | None = None
    team: str | None = None
    reason: str | None = None


@router.get("/audit")
async def audit_members(
    team: str | None = None,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
):
    results = await run_db(
        audit_service.audit_all, engine, cfg.game, today=local_now(cfg).date(), team=team
    )
    return {
        "members": [r.as_dict() for r in results],
        "flagged": sum(1 for r in results if r.result.flags.count),
    }


@router.get("/audit/{user_id}")
async def audit_member(
    user_id: str,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
):
    try:
        result = await run_db(
            audit_service.audit_user, engine, cfg.game, user_id, today=local_now(cfg).date()
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return result.as_dict()


@router.post("/users/{user_id}/approve")
async def approve(
    user_id: str,
    body: ApproveBody | None = None,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    body = body or ApproveBody()
    try:
        ledger = await run_db(
            guardian_service.approve_user,
            engine,
            user_id,
            actor_id=str(admin["sub"]),
            display_name=body.display_name,
            team=body.team,
            reason=body.reason,
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return {
        "user_id": ledger.user_id,
        "status": "approved",
        "energy": {"current": ledger.current, "total_earned": ledger.total_earned},
    }

"""
warden.api.routes.members — Member endpoints (JWT‑protected)
=============================================================

Reports, guardians, missions and the profile read model.  Handlers are
``async`` and push the blocking service calls to a worker thread through
:func:`~warden.database.engine.run_db`.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from warden.api.deps import (
    get_config,
    get_current_user,
    get_engine,
    get_hub,
    http_error,
    local_now,
)
from warden.config import WardenConfig
from warden.database.engine import run_db
from warden.engine.events import LedgerEventHub
from warden.engine.snapshots import LedgerSnapshot, ReportSnapshot
from warden.errors import TerminalStage, WardenError
from warden.services import guardian_service, ledger_service, mission_service, report_service

router = APIRouter(tags=["members"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ReportSubmit(BaseModel):
    date: str | None = None          # YYYY-MM-DD, defaults to today
    team: str | None = None
    metrics: dict[str, int] = Field(default_factory=dict)
    comment: str | None = None


class InvestBody(BaseModel):
    amount: int


class MemoBody(BaseModel):
    memo: str | None = None
    nickname: str | None = None


class PageVisit(BaseModel):
    page: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _ledger_dict(ledger: LedgerSnapshot | None) -> dict | None:
    if ledger is None:
        return None
    return {"current": ledger.current, "total_earned": ledger.total_earned}


def _report_dict(r: ReportSnapshot) -> dict:
    return {
        "id": r.id,
        "date": r.date.isoformat(),
        "team": r.team,
        "metrics": r.metrics,
        "follower_growth": r.follower_growth,
        "comment": r.comment,
        "modify_count": r.modify_count,
        "energy_awarded": r.energy_awarded,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "modified_at": r.modified_at.isoformat() if r.modified_at else None,
    }


def _missions_dict(view: mission_service.DailyMissionsView) -> dict:
    return {
        "date": view.date.isoformat(),
        "missions": [asdict(m) for m in view.missions],
        "all_completed": view.all_completed,
        "bonus_claimed": view.bonus_claimed,
        "bonus_reward": view.bonus_reward,
        "total_reward_earned": view.total_reward_earned,
        "claimable": view.claimable,
    }


def _tx_options(cfg: WardenConfig) -> dict:
    return {
        "retries": cfg.max_transaction_retries,
        "timeout_ms": cfg.transaction_timeout_ms,
    }


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
@router.post("/reports")
async def submit_report(
    body: ReportSubmit,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
    hub: LedgerEventHub = Depends(get_hub),
):
    now = local_now(cfg)
    try:
        result = await run_db(
            report_service.submit_or_update_report,
            engine,
            cfg.game,
            user["sub"],
            body.date or now.date().isoformat(),
            body.team,
            body.metrics,
            comment=body.comment,
            now=now,
            hub=hub,
            **_tx_options(cfg),
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return {
        "created": result.created,
        "report": _report_dict(result.report),
        "energy_awarded": result.energy_awarded,
        "breakdown": result.award.as_dict() if result.award else None,
        "streak": asdict(result.streak) if result.streak else None,
        "energy": _ledger_dict(result.ledger),
        "warning": result.warning,
        "modifications_left": max(0, cfg.game.max_modify - result.report.modify_count),
    }


@router.get("/me/reports")
async def my_reports(
    limit: int = Query(30, ge=1, le=365),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    reports = await run_db(report_service.get_reports, engine, user["sub"], limit=limit)
    return {"reports": [_report_dict(r) for r in reports]}


# ---------------------------------------------------------------------------
# Guardians
# ---------------------------------------------------------------------------
@router.post("/guardians/{guardian_id}/invest")
async def invest(
    guardian_id: str,
    body: InvestBody,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
    hub: LedgerEventHub = Depends(get_hub),
):
    try:
        result = await run_db(
            guardian_service.invest_guardian_energy,
            engine,
            cfg.game,
            user["sub"],
            guardian_id,
            body.amount,
            now=local_now(cfg),
            hub=hub,
            **_tx_options(cfg),
        )
    except TerminalStage as exc:
        return {"no_op": True, "code": exc.code, "message": exc.message, "steps": []}
    except WardenError as exc:
        raise http_error(exc) from exc
    return {
        "no_op": False,
        "steps": [list(step) for step in result.steps],
        "final_stage": result.final_stage,
        "final_invested_energy": result.final_invested_energy,
        "energy": _ledger_dict(result.ledger),
    }


@router.post("/guardians/{guardian_id}/unlock")
async def unlock(
    guardian_id: str,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
    hub: LedgerEventHub = Depends(get_hub),
):
    try:
        result = await run_db(
            guardian_service.unlock_guardian,
            engine,
            cfg.game,
            user["sub"],
            guardian_id,
            now=local_now(cfg),
            hub=hub,
            **_tx_options(cfg),
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return {
        "guardian_id": result.guardian.guardian_id,
        "stage": result.guardian.stage,
        "cost": result.cost,
        "energy": _ledger_dict(result.ledger),
    }


@router.put("/guardians/{guardian_id}/active")
async def set_active(
    guardian_id: str,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    try:
        g = await run_db(guardian_service.switch_active_guardian, engine, user["sub"], guardian_id)
    except WardenError as exc:
        raise http_error(exc) from exc
    return {"active_guardian_id": g.guardian_id}


@router.put("/guardians/{guardian_id}/memo")
async def set_memo(
    guardian_id: str,
    body: MemoBody,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    try:
        g = await run_db(
            guardian_service.update_guardian_memo,
            engine,
            user["sub"],
            guardian_id,
            body.memo,
            nickname=body.nickname,
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return {"guardian_id": g.guardian_id, "memo": g.memo, "nickname": g.nickname}


# ---------------------------------------------------------------------------
# Profile & history
# ---------------------------------------------------------------------------
@router.get("/me/profile")
async def my_profile(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
):
    try:
        return await run_db(
            guardian_service.get_profile, engine, cfg.game, user["sub"], now=local_now(cfg)
        )
    except WardenError as exc:
        raise http_error(exc) from exc


@router.get("/me/energy-history")
async def my_energy_history(
    days: int = Query(7, ge=1, le=90),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
):
    try:
        history = await run_db(
            ledger_service.get_energy_history,
            engine,
            user["sub"],
            days,
            today=local_now(cfg).date(),
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return {
        "days": [
            {"date": d.date.isoformat(), "total": d.total, "by_kind": d.by_kind}
            for d in history.days
        ],
        "total": history.total,
        "daily_average": history.daily_average,
        "best_day": history.best_day.date.isoformat() if history.best_day else None,
    }


# ---------------------------------------------------------------------------
# Missions
# ---------------------------------------------------------------------------
@router.get("/missions/today")
async def today_missions(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
):
    try:
        view = await run_db(
            mission_service.get_today_missions,
            engine,
            cfg.game,
            user["sub"],
            now=local_now(cfg),
            **_tx_options(cfg),
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return _missions_dict(view)


@router.post("/missions/visit")
async def visit_page(
    body: PageVisit,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
):
    try:
        completed = await run_db(
            mission_service.trigger_page_visit,
            engine,
            cfg.game,
            user["sub"],
            body.page,
            now=local_now(cfg),
            **_tx_options(cfg),
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return {"completed": completed}


@router.post("/missions/bonus/claim")
async def claim_bonus(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
    hub: LedgerEventHub = Depends(get_hub),
):
    try:
        result = await run_db(
            mission_service.claim_all_completed_bonus,
            engine,
            cfg.game,
            user["sub"],
            now=local_now(cfg),
            hub=hub,
            **_tx_options(cfg),
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return {"mission_id": result.mission_id, "reward": result.reward,
            "energy": _ledger_dict(result.ledger)}


@router.post("/missions/{mission_id}/claim")
async def claim_mission(
    mission_id: str,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    cfg: WardenConfig = Depends(get_config),
    hub: LedgerEventHub = Depends(get_hub),
):
    try:
        result = await run_db(
            mission_service.claim_mission_reward,
            engine,
            cfg.game,
            user["sub"],
            mission_id,
            now=local_now(cfg),
            hub=hub,
            **_tx_options(cfg),
        )
    except WardenError as exc:
        raise http_error(exc) from exc
    return {"mission_id": result.mission_id, "reward": result.reward,
            "energy": _ledger_dict(result.ledger)}

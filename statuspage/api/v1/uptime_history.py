from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query

from statuspage.dependencies import get_uptime_recorder, require_admin
from statuspage.schemas.uptime import UptimeBackfillResponse, UptimeCalculationResponse, UptimeHistoryResponse
from statuspage.services.entities import parse_entity_type
from statuspage.services.health import EntityRef
from statuspage.services.uptime_history import MAX_HISTORY_DAYS, UptimeHistoryService
from statuspage.services.uptime_recorder import UptimeRecorder

router = APIRouter()

_history_service = UptimeHistoryService()


@router.get("/api/uptime-history/{entity_type}/{entity_id}")
async def get_uptime_history(
    entity_type: str,
    entity_id: str,
    days: int = Query(90, ge=1, le=MAX_HISTORY_DAYS),
) -> UptimeHistoryResponse:
    """Daily uptime for the last ``days`` days, gaps filled as fully operational."""
    return await _history_service.get_uptime_history(EntityRef(parse_entity_type(entity_type), entity_id), days)


@router.post("/api/uptime-history/calculate", dependencies=[Depends(require_admin)])
async def calculate_uptime(
    day: date | None = Query(None, alias="date", description="UTC date, defaults to yesterday"),
    recorder: UptimeRecorder = Depends(get_uptime_recorder),
) -> UptimeCalculationResponse:
    """Recompute one day's uptime rows for every entity."""
    target = day or recorder.today() - timedelta(days=1)
    summary = await recorder.record_day(target)
    return UptimeCalculationResponse(date=target, recorded=summary.recorded, skipped=summary.skipped)


@router.post("/api/uptime-history/backfill", dependencies=[Depends(require_admin)])
async def backfill_uptime(
    days: int = Query(7, ge=1, le=MAX_HISTORY_DAYS),
    recorder: UptimeRecorder = Depends(get_uptime_recorder),
) -> UptimeBackfillResponse:
    """Recompute the last ``days`` days before today."""
    window = recorder.backfill_range(days)
    summary = await recorder.backfill(days)
    return UptimeBackfillResponse(
        days=days,
        start_date=window[0],
        end_date=window[-1],
        recorded=summary.recorded,
        skipped=summary.skipped,
    )


@router.post("/api/uptime-history/trigger-daily", dependencies=[Depends(require_admin)])
async def trigger_daily_uptime(
    recorder: UptimeRecorder = Depends(get_uptime_recorder),
) -> UptimeCalculationResponse:
    """Run the daily job now (records yesterday)."""
    target = recorder.today() - timedelta(days=1)
    summary = await recorder.record_day(target)
    return UptimeCalculationResponse(date=target, recorded=summary.recorded, skipped=summary.skipped)

from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from fsfollower.core.config import load_config, missing_sync_settings, redacted_dump
from fsfollower.core.errors import ConfigError, LedgerError
from fsfollower.providers.file_service import EventLedger
from fsfollower.providers.file_service.db import init_db
from fsfollower.runtime import build_sync_engine

router = APIRouter(prefix="/api")

SCHEDULER_STATE_LOCK = threading.Lock()
SCHEDULER_POLL_GRANULARITY_SEC = 1
SCHEDULER_MIN_INTERVAL_SEC = 1
SCHEDULER_MAX_INTERVAL_SEC = 86400

_scheduler_task: asyncio.Task | None = None
_scheduler_stop_event: asyncio.Event | None = None
_scheduler_state: dict[str, object] = {
    "running": False,
    "enabled": False,
    "configured_interval_sec": 0,
    "effective_interval_sec": 0,
    "last_started_at": None,
    "last_finished_at": None,
    "last_result": None,
    "last_error": None,
    "next_run_at": None,
    "skipped_busy_count": 0,
    "run_count": 0,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def _sanitize_poll_interval(raw_value: object) -> int:
    raw = _as_int(raw_value, 0)
    if raw <= 0:
        return 0
    return min(max(raw, SCHEDULER_MIN_INTERVAL_SEC), SCHEDULER_MAX_INTERVAL_SEC)


def _iso_from_ts(ts: object) -> str | None:
    if not isinstance(ts, (int, float)) or isinstance(ts, bool):
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _scheduler_state_update(**kwargs) -> None:
    with SCHEDULER_STATE_LOCK:
        _scheduler_state.update(kwargs)


def _scheduler_state_snapshot() -> dict[str, object]:
    with SCHEDULER_STATE_LOCK:
        snap = dict(_scheduler_state)

    next_run_at = snap.get("next_run_at")
    next_run_in_sec = None
    if isinstance(next_run_at, (int, float)):
        next_run_in_sec = max(int(next_run_at - time.time()), 0)

    return {
        "running": bool(snap.get("running")),
        "enabled": bool(snap.get("enabled")),
        "configured_interval_sec": _as_int(snap.get("configured_interval_sec"), 0),
        "effective_interval_sec": _as_int(snap.get("effective_interval_sec"), 0),
        "last_started_at": _iso_from_ts(snap.get("last_started_at")),
        "last_finished_at": _iso_from_ts(snap.get("last_finished_at")),
        "next_run_at": _iso_from_ts(next_run_at),
        "next_run_in_sec": next_run_in_sec,
        "last_result": snap.get("last_result"),
        "last_error": snap.get("last_error"),
        "run_count": _as_int(snap.get("run_count"), 0),
        "skipped_busy_count": _as_int(snap.get("skipped_busy_count"), 0),
    }


async def _wait_stop_or_timeout(stop_event: asyncio.Event, timeout_sec: float) -> bool:
    if timeout_sec <= 0:
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_sec)
        return True
    except asyncio.TimeoutError:
        return False


def _run_sync_once(run_type: str) -> dict:
    _cfg, engine = build_sync_engine()
    return engine.run_once(run_type=run_type)


def _build_readiness_payload() -> dict:
    checks: dict[str, bool] = {
        "config_load": False,
        "sync_settings_complete": False,
        "database_ready": False,
        "log_parent_ready": False,
        "file_base_ready": False,
        "scheduler_running": False,
        "scheduler_enabled": False,
    }
    warnings: list[str] = []
    errors: list[str] = []
    scheduler = _scheduler_state_snapshot()
    checks["scheduler_running"] = bool(scheduler.get("running"))
    checks["scheduler_enabled"] = bool(scheduler.get("enabled"))

    cfg = None
    try:
        cfg = load_config()
        checks["config_load"] = True
    except Exception as e:
        errors.append(f"config_load_failed: {e}")

    if cfg is not None:
        missing = missing_sync_settings(cfg)
        checks["sync_settings_complete"] = not missing
        if missing:
            errors.append(f"missing_config: {', '.join(missing)}")

        try:
            init_db(cfg.database.path)
            checks["database_ready"] = True
        except LedgerError as e:
            errors.append(f"database_unavailable: {e}")

        try:
            Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
            checks["log_parent_ready"] = True
        except OSError as e:
            errors.append(f"log_parent_unavailable: {e}")

        if cfg.file.base:
            checks["file_base_ready"] = Path(cfg.file.base).is_dir()
            if not checks["file_base_ready"]:
                warnings.append(f"file_base_missing: {cfg.file.base}")

    if checks["scheduler_enabled"] and not checks["scheduler_running"]:
        warnings.append("scheduler_enabled_but_not_running")

    ok = (
        checks["config_load"]
        and checks["sync_settings_complete"]
        and checks["database_ready"]
        and checks["log_parent_ready"]
    )
    return {
        "ok": ok,
        "checked_at": _now_iso(),
        "checks": checks,
        "warnings": warnings,
        "errors": errors,
        "scheduler": scheduler,
    }


async def _scheduler_loop(stop_event: asyncio.Event) -> None:
    logger = logging.getLogger("scheduler")
    next_run_at_ts: float | None = None
    previous_effective_interval: int | None = None
    _scheduler_state_update(
        running=True,
        last_error=None,
        last_result=None,
    )
    logger.info("scheduler_started")

    try:
        while not stop_event.is_set():
            try:
                cfg = load_config()
            except ConfigError as e:
                _scheduler_state_update(enabled=False, last_result="failed", last_error=str(e), next_run_at=None)
                logger.error("scheduler_stopped_on_config_error error=%s", e)
                return
            except Exception as e:
                _scheduler_state_update(last_result="failed", last_error=str(e), next_run_at=None)
                logger.exception("scheduler_config_load_failed: %s", e)
                await _wait_stop_or_timeout(stop_event, SCHEDULER_POLL_GRANULARITY_SEC)
                continue

            configured_interval = int(cfg.sync.poll_interval_sec or 0)
            effective_interval = _sanitize_poll_interval(configured_interval)
            enabled = configured_interval > 0

            _scheduler_state_update(
                enabled=enabled,
                configured_interval_sec=configured_interval,
                effective_interval_sec=effective_interval,
            )

            if not enabled:
                next_run_at_ts = None
                previous_effective_interval = None
                _scheduler_state_update(next_run_at=None)
                await _wait_stop_or_timeout(stop_event, SCHEDULER_POLL_GRANULARITY_SEC)
                continue

            now_ts = time.time()
            if next_run_at_ts is None:
                next_run_at_ts = now_ts + effective_interval
            elif previous_effective_interval is not None and previous_effective_interval != effective_interval:
                next_run_at_ts = now_ts + effective_interval
            previous_effective_interval = effective_interval
            _scheduler_state_update(next_run_at=next_run_at_ts)

            wait_sec = next_run_at_ts - now_ts
            if wait_sec > 0:
                await _wait_stop_or_timeout(stop_event, min(wait_sec, SCHEDULER_POLL_GRANULARITY_SEC))
                continue

            started_ts = time.time()
            _scheduler_state_update(last_started_at=started_ts, last_result="running", last_error=None)
            try:
                summary = await asyncio.to_thread(_run_sync_once, "scheduled")
                snap = _scheduler_state_snapshot()
                run_count = _as_int(snap.get("run_count"), 0) + 1
                if summary.get("skipped"):
                    _scheduler_state_update(
                        skipped_busy_count=_as_int(snap.get("skipped_busy_count"), 0) + 1,
                        last_finished_at=time.time(),
                        last_result="skipped_busy",
                        last_error=str(summary.get("reason") or "sync_busy"),
                    )
                    logger.warning("scheduled_sync_skipped reason=%s", summary.get("reason"))
                else:
                    fatal = summary.get("fatal_error")
                    _scheduler_state_update(
                        last_finished_at=time.time(),
                        last_result="failed" if fatal else "success",
                        last_error=str(fatal) if fatal else None,
                        run_count=run_count,
                    )
                    logger.info(
                        "scheduled_sync_completed state=%s applied=%s last_event_id=%s",
                        summary.get("state"),
                        summary.get("applied", 0),
                        summary.get("last_event_id"),
                    )
            except ConfigError as e:
                _scheduler_state_update(
                    enabled=False,
                    last_finished_at=time.time(),
                    last_result="failed",
                    last_error=str(e),
                )
                logger.error("scheduler_stopped_on_config_error error=%s", e)
                return
            except Exception as e:
                run_count = _as_int(_scheduler_state_snapshot().get("run_count"), 0) + 1
                _scheduler_state_update(
                    last_finished_at=time.time(),
                    last_result="failed",
                    last_error=str(e),
                    run_count=run_count,
                )
                logger.exception("scheduled_sync_failed: %s", e)
            finally:
                next_run_at_ts = time.time() + effective_interval
                _scheduler_state_update(next_run_at=next_run_at_ts)
    finally:
        _scheduler_state_update(running=False, next_run_at=None)
        logger.info("scheduler_stopped")


def start_scheduler() -> None:
    global _scheduler_task, _scheduler_stop_event
    if _scheduler_task and not _scheduler_task.done():
        return

    _scheduler_stop_event = asyncio.Event()
    _scheduler_task = asyncio.create_task(_scheduler_loop(_scheduler_stop_event), name="fsfollower_scheduler")


async def stop_scheduler() -> None:
    global _scheduler_task, _scheduler_stop_event
    if _scheduler_stop_event is not None:
        _scheduler_stop_event.set()

    if _scheduler_task is not None:
        try:
            await _scheduler_task
        except Exception:
            logging.getLogger("scheduler").exception("scheduler_stop_error")

    _scheduler_task = None
    _scheduler_stop_event = None
    _scheduler_state_update(running=False, next_run_at=None)


def _ledger() -> EventLedger:
    cfg = load_config()
    init_db(cfg.database.path)
    return EventLedger(cfg.database.path)


@router.get("/healthz")
def healthz():
    return {
        "ok": True,
        "status": "alive",
        "checked_at": _now_iso(),
    }


@router.get("/readyz")
def readyz():
    payload = _build_readiness_payload()
    return JSONResponse(status_code=200 if payload["ok"] else 503, content=payload)


@router.get("/config")
def get_config():
    cfg = load_config()
    return {
        **redacted_dump(cfg),
        "_scheduler": {
            "configured_poll_interval_sec": int(cfg.sync.poll_interval_sec or 0),
            "effective_poll_interval_sec": _sanitize_poll_interval(cfg.sync.poll_interval_sec),
            "auto_sync_enabled": int(cfg.sync.poll_interval_sec or 0) > 0,
        },
    }


@router.get("/status/scheduler")
def scheduler_status():
    return {
        "ok": True,
        "checked_at": _now_iso(),
        **_scheduler_state_snapshot(),
    }


@router.post("/sync/run")
def run_sync_now():
    try:
        summary = _run_sync_once("manual_api")
    except ConfigError as e:
        raise HTTPException(status_code=503, detail=str(e))
    status_code = 409 if summary.get("skipped") else 200
    return JSONResponse(status_code=status_code, content={"ok": not summary.get("fatal_error"), "summary": summary})


@router.get("/ledger/summary")
def ledger_summary(runs: int = 10):
    ledger = _ledger()
    return {
        "ok": True,
        "checked_at": _now_iso(),
        "last_event_id": ledger.find_last_event_id(),
        "counts": ledger.count_by_status(),
        "recent_runs": ledger.recent_runs(limit=min(max(int(runs), 0), 200)),
    }


@router.get("/ledger/events")
def ledger_events(limit: int = 50, status: str | None = None):
    if status and status.upper() not in ("FETCHED", "ACKED"):
        raise HTTPException(status_code=400, detail=f"invalid_status: {status}")
    ledger = _ledger()
    records = ledger.list_events(limit=min(max(int(limit), 1), 1000), status=status)
    return {
        "ok": True,
        "count": len(records),
        "items": [r.model_dump(mode="json") for r in records],
    }

"""Reconciliation API Router.

Endpoints to start a payout reconciliation run, poll its progress, and read
or update the allow-listed configuration properties.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from src.payout_recon.config.settings import ConfigManager
from src.payout_recon.errors import ConfigError
from src.payout_recon.use_cases.ledger_scanner import parse_date_bound
from src.payout_recon.use_cases.payout_reconciliation import PayoutReconciliationEngine
from src.payout_recon.use_cases.run_context import ReconciliationRun
from src.payout_recon.use_cases.run_log import (
    MESSAGE_TTL_SECONDS,
    RunLogStore,
    install_run_log_handler,
    run_log_store,
)

logger = logging.getLogger(__name__)

recon_router = APIRouter(prefix="/reconcile", tags=["Reconciliation"])

# Runs started by this process, by run id. Finished runs are kept as long as
# their progress messages.
_RUNS: Dict[str, ReconciliationRun] = {}
RUN_RETENTION = timedelta(seconds=MESSAGE_TTL_SECONDS)


def _evict_finished_runs(now: Optional[datetime] = None) -> None:
    cutoff = (now or datetime.now(timezone.utc)) - RUN_RETENTION
    stale = [k for k, r in _RUNS.items() if r.finished_at is not None and r.finished_at < cutoff]
    for k in stale:
        del _RUNS[k]


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------


class ReconcileRequest(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class PropertyUpdate(BaseModel):
    key: str
    value: str
    scope: str = "user"


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_config_manager() -> ConfigManager:
    return ConfigManager.from_env()


def get_engine() -> PayoutReconciliationEngine:
    return PayoutReconciliationEngine.from_env()


def get_run_log_store() -> RunLogStore:
    return run_log_store


def _mask(value: str) -> str:
    if not value:
        return ""
    return "*" * max(len(value) - 4, 4) + value[-4:]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@recon_router.post("/payouts")
async def start_payout_reconciliation(
    body: ReconcileRequest,
    background_tasks: BackgroundTasks,
    engine: PayoutReconciliationEngine = Depends(get_engine),
    store: RunLogStore = Depends(get_run_log_store),
):
    """Start a reconciliation run in the background and return its id."""

    try:
        start = parse_date_bound(body.start_date)
        end = parse_date_bound(body.end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    comparable = start and end and (start.tzinfo is None) == (end.tzinfo is None)
    if comparable and start > end:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    install_run_log_handler(store)
    _evict_finished_runs()
    run = ReconciliationRun(start=start, end=end)
    _RUNS[run.run_id] = run
    background_tasks.add_task(engine.run, run=run)
    logger.info("Queued reconciliation run %s", run.run_id)
    return {"run_id": run.run_id}


@recon_router.get("/status/{run_id}")
async def reconciliation_status(run_id: str, store: RunLogStore = Depends(get_run_log_store)):
    """Drain the progress messages queued for `run_id`."""

    _evict_finished_runs()
    messages = store.drain(run_id)
    run = _RUNS.get(run_id)
    if run is None and not messages:
        raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")

    payload = {"run_id": run_id, "messages": messages}
    if run is not None:
        payload.update(
            {
                "finished": run.finished_at is not None,
                "reconciled": len(run.reconciled),
                "failed": len(run.failed),
                "files_added": len(run.files_added),
                "urls_accessed": len(run.urls_accessed),
                "fatal_error": run.fatal_error,
            }
        )
    return payload


@recon_router.get("/config")
async def get_config(manager: ConfigManager = Depends(get_config_manager)):
    """Allow-listed properties with their current values (secrets masked)."""

    props = manager.list_properties()
    for p in props:
        if p["type"] == "password":
            p["value"] = _mask(p["value"])
    return {"properties": props, "missing_required": manager.missing_required()}


@recon_router.put("/config")
async def update_config(
    updates: List[PropertyUpdate],
    manager: ConfigManager = Depends(get_config_manager),
):
    """Apply property writes; unknown keys and forbidden scopes are reported, not fatal."""

    updated: List[str] = []
    skipped: List[str] = []
    errors: List[str] = []
    for u in updates:
        if u.key not in manager.definitions:
            logger.warning('Skipping unknown property "%s"', u.key)
            skipped.append(u.key)
            continue
        try:
            updated.append(manager.set_property(u.key, u.value, u.scope))
        except ConfigError as e:
            errors.append(str(e))
    return {"updated": updated, "skipped": skipped, "errors": errors}

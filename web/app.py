"""
Production Progress Engine - FastAPI Web Backend
"""

import logging
import os
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from production_engine import __version__
from production_engine.constants import (
    DEFAULT_CONSTANTS,
    EngineConstants,
    constants_from_dict,
    constants_to_dict,
    load_constants_from_yaml,
    save_constants_to_yaml,
)
from production_engine.data_loader import (
    HistoryEvent,
    Job,
    ProductionRun,
    Workflow,
    event_from_dict,
    job_from_dict,
    packaging_from_dict,
    parse_timestamp,
    production_specs_from_dict,
    run_from_dict,
    workflow_from_dict,
)
from production_engine.errors import ProductionEngineError, ValidationError as EngineValidationError
from production_engine.packing import plan_packing
from production_engine.progress import (
    calculate_job_progress,
    calculate_stage_progress,
    detect_stuck_job,
    summarize_current_stage,
    summarize_workflow_path,
)
from production_engine.report_generator import generate_timeline_report, to_jsonable
from production_engine.sheet_layout import plan_sheet_layout
from production_engine.stage_quantity import resolve_stage_quantity, resolve_stage_quantity_detail
from production_engine.threshold import evaluate_threshold, find_threshold_met_at
from production_engine.timeline import reconstruct_stage_timeline
from production_engine.validator import validate_job


logger = logging.getLogger("production_engine.web")

# Initialize FastAPI app
app = FastAPI(
    title="Production Progress Engine",
    description="Packing, sheet layout, stage quantity and stage timeline calculations",
    version=__version__
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Active engine constants; replaced on startup and by POST /api/config
constants: EngineConstants = DEFAULT_CONSTANTS


def get_base_path():
    return Path(__file__).parent.parent


def get_config_path():
    override = os.environ.get("PRODUCTION_ENGINE_CONFIG")
    if override:
        return Path(override)
    return get_base_path() / "config" / "constants.yaml"


class PackingRequest(BaseModel):
    quantity: float = 0
    unit: str = "pcs"
    packaging: dict[str, Any] = Field(default_factory=dict)


class SheetLayoutRequest(BaseModel):
    quantity: float = 0
    unit: str = "pcs"
    packaging: dict[str, Any] = Field(default_factory=dict)
    production_specs: dict[str, Any] = Field(default_factory=dict)


class JobContext(BaseModel):
    """Job, workflow, runs and history in the document-store shape."""
    job: dict[str, Any]
    workflow: dict[str, Any]
    runs: list[dict[str, Any]] = Field(default_factory=list)
    history: list[dict[str, Any]] = Field(default_factory=list)


class StageQuantityRequest(JobContext):
    strict: bool = False


class ThresholdRequest(JobContext):
    planned_qty: Optional[float] = None


class TimelineRequest(JobContext):
    include_report: bool = False


class ProgressRequest(JobContext):
    now: Optional[str] = None


class ConfigUpdate(BaseModel):
    thresholds: Optional[dict[str, float]] = None
    sheet_buffer: Optional[dict[str, float]] = None
    exclude_transfer_runs: Optional[bool] = None
    uom_aliases: Optional[dict[str, list[str]]] = None
    conversions: Optional[list[dict[str, str]]] = None


def parse_context(
    context: JobContext
) -> tuple[Job, Workflow, list[ProductionRun], list[HistoryEvent]]:
    """Parse request documents into engine snapshots."""
    job = job_from_dict(context.job)
    workflow = workflow_from_dict(context.workflow)
    runs = [run_from_dict(r, row=i + 1) for i, r in enumerate(context.runs)]
    history = [event_from_dict(e, row=i + 1) for i, e in enumerate(context.history)]
    return job, workflow, runs, history


@app.on_event("startup")
async def load_data():
    """Load constants on startup."""
    global constants

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    config_path = get_config_path()

    if not config_path.exists():
        logger.warning("No config at %s; using built-in defaults", config_path)
        constants = DEFAULT_CONSTANTS
        return

    try:
        constants = load_constants_from_yaml(config_path)
    except ProductionEngineError as e:
        logger.error("ERROR loading constants: %s", e)
        raise

    logger.info("Ready - %d UOM conversions registered", len(constants.conversions))


@app.exception_handler(EngineValidationError)
async def validation_error_handler(request: Request, exc: EngineValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.message, "details": exc.details})


@app.exception_handler(ProductionEngineError)
async def engine_error_handler(request: Request, exc: ProductionEngineError):
    return JSONResponse(status_code=400, content={"detail": exc.message, "details": exc.details})


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": __version__}


@app.get("/api/config")
async def get_config():
    """Get the active engine constants."""
    return {
        "version": __version__,
        "config_path": str(get_config_path()),
        "constants": constants_to_dict(constants),
    }


@app.post("/api/config")
async def update_config(update: ConfigUpdate):
    """Update engine constants and save them to YAML."""
    global constants

    data = constants_to_dict(constants)
    for key, value in update.model_dump(exclude_none=True).items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value

    new_constants = constants_from_dict(data, source="api/config")

    # Save to YAML
    save_constants_to_yaml(new_constants, get_config_path())
    constants = new_constants
    logger.info("Engine constants updated and saved to %s", get_config_path())

    return {"success": True, "constants": constants_to_dict(constants)}


# ============ CALCULATION ENDPOINTS ============

@app.post("/api/packing")
async def packing(request: PackingRequest):
    """Outers, pallets and leftover for a requested quantity."""
    plan = plan_packing(request.quantity, request.unit.strip().lower(), packaging_from_dict(request.packaging))
    return {**asdict(plan), "pallet_mismatch": plan.pallet_mismatch}


@app.post("/api/sheet-layout")
async def sheet_layout(request: SheetLayoutRequest):
    """Required sheets with buffer, overs and wastage."""
    plan = plan_sheet_layout(
        production_specs_from_dict(request.production_specs),
        request.quantity,
        request.unit.strip().lower(),
        packaging_from_dict(request.packaging),
        constants,
    )
    return {**asdict(plan), "number_up_mismatch": plan.number_up_mismatch}


@app.post("/api/stages/{stage_id}/quantity")
async def stage_quantity(stage_id: str, request: StageQuantityRequest):
    """Planned quantity of a stage with its derivation."""
    job, workflow, runs, _ = parse_context(request)
    detail = resolve_stage_quantity_detail(stage_id, job, workflow, runs, constants, strict=request.strict)
    return {
        **to_jsonable(detail),
        "is_reliable": detail.is_reliable,
        "warnings": detail.warnings,
    }


@app.post("/api/stages/{stage_id}/threshold")
async def stage_threshold(stage_id: str, request: ThresholdRequest):
    """Completion threshold verdict for a stage."""
    job, workflow, runs, _ = parse_context(request)
    planned = request.planned_qty
    if planned is None:
        planned = resolve_stage_quantity(stage_id, job, workflow, runs, constants)

    result = evaluate_threshold(stage_id, planned, runs, constants)
    return {
        **to_jsonable(result),
        "remaining": result.remaining,
        "over_produced": result.over_produced,
        "threshold_met_at": to_jsonable(find_threshold_met_at(stage_id, planned, runs, constants)),
    }


@app.post("/api/timeline")
async def timeline(request: TimelineRequest):
    """Stage timeline rows for a job, optionally with a text report."""
    job, workflow, runs, history = parse_context(request)
    rows = reconstruct_stage_timeline(job, workflow, runs, history, constants)

    response = {"job_id": job.job_id, "rows": to_jsonable(rows)}
    if request.include_report:
        progress = calculate_job_progress(job, workflow, runs, constants)
        response["report"] = generate_timeline_report(job, rows, progress)
    return response


@app.post("/api/progress")
async def progress(request: ProgressRequest):
    """Stage and job progress, workflow path chips, current stage and stuck status."""
    job, workflow, runs, history = parse_context(request)
    now = parse_timestamp(request.now, "now") or datetime.now(timezone.utc)

    stages = [
        calculate_stage_progress(stage_id, job, workflow, runs, constants)
        for stage_id in job.planned_stage_ids
    ]
    return {
        "job_id": job.job_id,
        "job": to_jsonable(calculate_job_progress(job, workflow, runs, constants)),
        "stages": to_jsonable([s for s in stages if s is not None]),
        "workflow_path": to_jsonable(summarize_workflow_path(job, workflow, runs, history, constants)),
        "current_stage": to_jsonable(summarize_current_stage(job, workflow, runs, constants)),
        "stuck": to_jsonable(detect_stuck_job(job, workflow, runs, now, constants)),
    }


@app.post("/api/validate")
async def validate(request: JobContext):
    """Consistency errors and warnings for a job."""
    job, workflow, runs, _ = parse_context(request)
    result = validate_job(job, workflow, runs, constants)
    return {
        "is_valid": result.is_valid,
        "errors": [
            {"field": e.field, "value": repr(e.value), "reason": e.reason, "row": e.row, "message": e.message}
            for e in result.errors
        ],
        "warnings": [asdict(w) for w in result.warnings],
    }

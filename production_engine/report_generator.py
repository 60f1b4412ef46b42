# Report generation for the production engine.
# Version: 1.0.0
# Generates plain-text timeline and packing reports and JSON exports.

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any

from .data_loader import Job
from .packing import PackingPlan
from .progress import JobProgress, StuckJob
from .sheet_layout import SheetLayoutPlan
from .timeline import StageTimelineRow


STATUS_MARKERS = {
    "DONE": "[x]",
    "CURRENT": "[>]",
    "NOT_STARTED": "[ ]",
}


def _format_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _format_count(value: float | None) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return f"{value:,}" if isinstance(value, int) else f"{value:,.2f}"


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, tuples and datetimes into JSON-compatible values."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def generate_timeline_report(
    job: Job,
    rows: list[StageTimelineRow],
    progress: JobProgress | None = None,
    stuck: StuckJob | None = None
) -> str:
    """Generate a text report of a job's stage timeline.

    Args:
        job: Job the timeline belongs to.
        rows: Timeline rows from reconstruct_stage_timeline.
        progress: Optional overall job progress.
        stuck: Optional stuck-job finding for the job.

    Returns:
        Multi-line report string.
    """
    lines = []

    lines.append("=" * 72)
    lines.append(f"STAGE TIMELINE - JOB {job.job_id or '(unnamed)'}")
    lines.append("=" * 72)
    lines.append(f"Status: {job.status}")
    lines.append(f"Current stage: {job.current_stage_id or '-'}")
    if progress is not None:
        lines.append(
            f"Progress: {_format_count(progress.produced)} / {_format_count(progress.planned)} "
            f"{progress.uom} ({progress.percentage:.1f}%)"
        )
    lines.append("")

    lines.append(f"    {'Stage':<24} {'Started':<17} {'Finished':<17} Phase")
    lines.append("-" * 72)
    for row in rows:
        marker = STATUS_MARKERS.get(row.status, "[ ]")
        lines.append(
            f"{marker} {row.stage_name[:24]:<24} {_format_time(row.started_at):<17} "
            f"{_format_time(row.finished_at):<17} {row.phase}"
        )

    if stuck is not None:
        lines.append("")
        lines.append("-" * 72)
        lines.append("STUCK")
        lines.append("-" * 72)
        lines.append(
            f"{_format_count(stuck.wip_quantity)} {stuck.uom} waiting from "
            f"{stuck.from_stage_name} to {stuck.to_stage_name} "
            f"for {stuck.days_in_transition:.1f} days ({stuck.reason})"
        )

    return "\n".join(lines)


def generate_packing_report(
    job: Job,
    plan: PackingPlan,
    layout: SheetLayoutPlan | None = None
) -> str:
    """Generate a text summary of a job's packing plan and sheet requirements.

    Args:
        job: Job the plan was computed for.
        plan: Packing plan.
        layout: Optional sheet layout plan.

    Returns:
        Multi-line report string.
    """
    lines = []
    lines.append(f"=== Packing Plan: {job.job_id or '(unnamed)'} ===")
    lines.append(f"Quantity: {_format_count(job.quantity)} {job.unit}")
    lines.append(f"Outers: {_format_count(plan.planned_outers)}")
    lines.append(f"Pieces by pack: {_format_count(plan.planned_qty_by_pack)}")
    lines.append(f"Leftover: {_format_count(plan.leftover)}")
    lines.append(
        f"Pallets: {_format_count(plan.pallets)} "
        f"({_format_count(plan.full_pallets)} full, {plan.remainder_outers} outers on last)"
    )
    if plan.pallet_mismatch:
        lines.append(
            f"WARNING: pallet override {_format_count(plan.pallet_override)} "
            f"differs from computed {_format_count(plan.pallets_auto)}"
        )

    if layout is not None:
        lines.append("")
        lines.append("--- Sheets ---")
        lines.append(f"Number-up: {_format_count(layout.number_up)} "
                     f"(theoretical {_format_count(layout.theoretical_number_up)})")
        lines.append(f"Base sheets: {_format_count(layout.base_required_sheets)}")
        lines.append(f"With buffer: {_format_count(layout.sheets_needed)}")
        lines.append(f"With overs: {_format_count(layout.sheets_needed_with_overs)}")
        lines.append(f"With wastage: {_format_count(layout.sheets_needed_with_wastage)}")
        if layout.number_up_mismatch:
            lines.append("WARNING: number-up differs from the theoretical layout")

    return "\n".join(lines)


def export_to_json(
    job: Job,
    rows: list[StageTimelineRow] | None = None,
    packing: PackingPlan | None = None,
    layout: SheetLayoutPlan | None = None,
    progress: JobProgress | None = None,
    pretty: bool = True
) -> str:
    """Export a job's calculation results to JSON.

    Args:
        job: Job the results belong to.
        rows: Optional timeline rows.
        packing: Optional packing plan.
        layout: Optional sheet layout plan.
        progress: Optional overall progress.
        pretty: Whether to format with indentation.

    Returns:
        JSON string.
    """
    data = {
        "job_id": job.job_id,
        "status": job.status,
        "current_stage_id": job.current_stage_id,
        "timeline": to_jsonable(rows) if rows is not None else None,
        "packing": to_jsonable(packing) if packing else None,
        "sheet_layout": to_jsonable(layout) if layout else None,
        "progress": to_jsonable(progress) if progress else None,
    }
    if packing is not None:
        data["packing"]["pallet_mismatch"] = packing.pallet_mismatch
    if layout is not None:
        data["sheet_layout"]["number_up_mismatch"] = layout.number_up_mismatch

    indent = 2 if pretty else None
    return json.dumps(data, indent=indent)

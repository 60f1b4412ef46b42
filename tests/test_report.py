import json
from dataclasses import replace

from production_engine.packing import plan_packing_for_job
from production_engine.progress import calculate_job_progress, detect_stuck_job
from production_engine.report_generator import (
    export_to_json,
    generate_packing_report,
    generate_timeline_report,
    to_jsonable,
)
from production_engine.sheet_layout import plan_sheet_layout_for_job
from production_engine.timeline import reconstruct_stage_timeline

from conftest import at


def test_timeline_report(job, workflow, print_runs, moved_history):
    rows = reconstruct_stage_timeline(job, workflow, print_runs, moved_history)
    progress = calculate_job_progress(job, workflow, print_runs)
    stuck = detect_stuck_job(job, workflow, print_runs, now=at(4, 15))

    report = generate_timeline_report(job, rows, progress, stuck)

    assert "STAGE TIMELINE - JOB J-100" in report
    assert "[x] Printing" in report
    assert "[>] Die cutting" in report
    assert "[ ] Gluing" in report
    assert "2026-03-02 15:00" in report
    assert "STUCK" in report
    assert "1,700 sheets waiting from Printing to Die cutting" in report


def test_packing_report(job):
    job = replace(job, packaging=replace(job.packaging, planned_pallets=12))

    report = generate_packing_report(job, plan_packing_for_job(job), plan_sheet_layout_for_job(job))

    assert "Outers: 90" in report
    assert "Pallets: 12 (9 full, 0 outers on last)" in report
    assert "WARNING: pallet override 12 differs from computed 9" in report
    assert "With buffer: 1,450" in report
    assert "number-up differs" not in report


def test_export_to_json(job, workflow, print_runs, moved_history):
    rows = reconstruct_stage_timeline(job, workflow, print_runs, moved_history)

    data = json.loads(export_to_json(
        job,
        rows=rows,
        packing=plan_packing_for_job(job),
        layout=plan_sheet_layout_for_job(job),
    ))

    assert data["job_id"] == "J-100"
    assert data["timeline"][0]["finished_at"] == "2026-03-02T15:00:00+00:00"
    assert data["packing"]["planned_outers"] == 90
    assert data["packing"]["pallet_mismatch"] is False
    assert data["sheet_layout"]["sheets_needed"] == 1450
    assert data["progress"] is None


def test_to_jsonable_handles_nested_values():
    assert to_jsonable({"when": at(1), "items": (1, 2)}) == {
        "when": "2026-03-01T08:00:00+00:00",
        "items": [1, 2],
    }

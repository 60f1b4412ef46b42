from datetime import datetime, timezone

import pytest

from production_engine.data_loader import (
    BomLine,
    Dimensions,
    HistoryEvent,
    Job,
    PackagingConfig,
    ProductionRun,
    ProductionSpecs,
    Stage,
    Workflow,
)


def at(day: int, hour: int = 8) -> datetime:
    """Timestamp on a day of March 2026, UTC."""
    return datetime(2026, 3, day, hour, tzinfo=timezone.utc)


def build_workflow() -> Workflow:
    return Workflow(
        workflow_id="wf-carton",
        name="Folding carton",
        stages=(
            Stage("print", "Printing", "sheets", "sheets", 0),
            Stage("diecut", "Die cutting", "sht", "cartoon", 1),
            Stage("glue", "Gluing", "cartoon", "cartoon", 2),
        ),
    )


def build_job() -> Job:
    """9000 pcs carton job sitting in die cutting; 2000 sheets on the BOM."""
    return Job(
        job_id="J-100",
        quantity=9000,
        unit="pcs",
        packaging=PackagingConfig(pcs_per_box=100, boxes_per_pallet=10),
        workflow_id="wf-carton",
        planned_stage_ids=("print", "diecut", "glue"),
        current_stage_id="diecut",
        bom=(BomLine(sku="BRD-1", name="Board", uom="sht", qty_required=2000),),
        production_specs=ProductionSpecs(
            sheet=Dimensions(900, 600),
            cut_to=Dimensions(300, 200),
            number_up=9,
        ),
        status="active",
    )


def build_run(stage_id, qty_good, when=None, transfer=()) -> ProductionRun:
    return ProductionRun(
        stage_id=stage_id,
        qty_good=qty_good,
        at=when,
        transfer_source_run_ids=tuple(transfer),
    )


def build_event(previous, new, when, threshold_met_at=None, event_type="stage_change") -> HistoryEvent:
    return HistoryEvent(
        previous_stage_id=previous,
        new_stage_id=new,
        at=when,
        previous_stage_threshold_met_at=threshold_met_at,
        type=event_type,
    )


@pytest.fixture()
def workflow() -> Workflow:
    return build_workflow()


@pytest.fixture()
def job() -> Job:
    return build_job()


@pytest.fixture()
def make_run():
    return build_run


@pytest.fixture()
def make_event():
    return build_event


@pytest.fixture()
def print_runs(make_run):
    """Printing output crossing its 1600-sheet lower threshold at 15:00 on day 2."""
    return [
        make_run("print", 1000, at(2, 9)),
        make_run("print", 700, at(2, 15)),
    ]


@pytest.fixture()
def moved_history(make_event):
    """Job released into printing on day 1 and moved to die cutting on day 3."""
    return [
        make_event(None, "print", at(1)),
        make_event("print", "diecut", at(3)),
    ]

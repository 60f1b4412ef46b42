# Progress views built on the stage calculations.
# Version: 1.0.0
# Stage/job progress, workflow path chips, current-stage summary and stuck-job detection.

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Mapping

from .constants import CARTOON_UOM, DEFAULT_CONSTANTS, SHEETS_UOM, EngineConstants
from .data_loader import (
    HistoryEvent,
    Job,
    ProductionRun,
    Workflow,
    as_utc,
    clamp_quantity,
    safe_divisor,
)
from .stage_quantity import planned_boxes, planned_sheets, resolve_stage_quantity
from .threshold import (
    evaluate_threshold,
    scaled_tolerance_band,
    stage_runs,
    total_produced,
)
from .uom import default_registry


# Output units that count packed boxes
BOX_OUTPUT_UOMS: frozenset[str] = frozenset({CARTOON_UOM, "box", "boxes"})

StuckReason = Literal["awaiting_start", "ready_to_move"]


@dataclass(frozen=True)
class StageProgress:
    """Output progress of a single stage."""
    stage_id: str
    stage_name: str
    produced: float
    planned: float
    percentage: float
    uom: str
    is_current: bool


@dataclass(frozen=True)
class JobProgress:
    """Overall output progress of a job."""
    produced: float
    planned: float
    percentage: float
    uom: str


@dataclass(frozen=True)
class WorkflowPathStep:
    """Chip state for one planned stage on the workflow path."""
    stage_id: str
    stage_name: str
    is_current: bool
    is_done: bool
    threshold_met: bool


@dataclass(frozen=True)
class CurrentStageSummary:
    """Production summary for the stage the job currently sits in.

    Attributes:
        stage_id: Current stage.
        input_uom: Unit the stage consumes.
        output_uom: Unit the stage produces.
        number_up: Units per sheet used for conversions.
        total_produced: Good output recorded for the stage.
        planned_qty: Planned quantity in the output UOM.
        completion_threshold: Lower edge of the scaled tolerance band.
        completion_threshold_upper: Upper edge of the scaled tolerance band.
    """
    stage_id: str
    input_uom: str
    output_uom: str
    number_up: float | None
    total_produced: float
    planned_qty: float
    completion_threshold: float
    completion_threshold_upper: float

    def convert_to_output_uom(
        self,
        qty_in_input_uom: float,
        constants: EngineConstants = DEFAULT_CONSTANTS
    ) -> float:
        """Express a quantity counted in the input UOM in the output UOM."""
        return default_registry(constants).convert(
            qty_in_input_uom, self.input_uom, self.output_uom, self.number_up
        ).value


@dataclass(frozen=True)
class StuckJob:
    """A job whose output is waiting between two stages.

    Attributes:
        job_id: Job identifier.
        from_stage_id: Stage holding the output.
        from_stage_name: Display name of from_stage_id.
        to_stage_id: Stage that has not started on it.
        to_stage_name: Display name of to_stage_id.
        wip_quantity: Output waiting.
        uom: Unit of wip_quantity.
        last_output_at: Last run recorded on the from stage.
        days_in_transition: Days since last_output_at.
        reason: awaiting_start (current stage has no runs) or ready_to_move
            (current stage met its threshold, next stage has no runs).
    """
    job_id: str
    from_stage_id: str
    from_stage_name: str
    to_stage_id: str
    to_stage_name: str
    wip_quantity: float
    uom: str
    last_output_at: datetime | None
    days_in_transition: float
    reason: StuckReason


def _percentage(produced: float, planned: float) -> float:
    return min(100.0, produced / planned * 100) if planned > 0 else 0.0


def calculate_stage_progress(
    stage_id: str,
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> StageProgress | None:
    """Progress of one stage against its planned quantity.

    Returns:
        StageProgress, or None if the workflow does not define the stage.
    """
    stage = workflow.get_stage(stage_id)
    if stage is None:
        return None

    produced = total_produced(stage_id, runs, constants)
    planned = resolve_stage_quantity(stage_id, job, workflow, runs, constants)
    return StageProgress(
        stage_id=stage_id,
        stage_name=workflow.stage_name(stage_id),
        produced=produced,
        planned=planned,
        percentage=_percentage(produced, planned),
        uom=stage.output_uom or stage.input_uom or SHEETS_UOM,
        is_current=job.current_stage_id == stage_id,
    )


def calculate_job_progress(
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> JobProgress:
    """Overall progress of a job.

    With stored planned boxes, only the last carton-output stage counts and
    its output is expressed in boxes; intermediate stages never count toward
    packed progress. Otherwise the final stage's output is compared with the
    planned sheet (or carton) quantity.
    """
    pcs_per_box = safe_divisor(job.packaging.pcs_per_box)
    stored_boxes = clamp_quantity(job.packaging.planned_boxes)

    if stored_boxes > 0:
        for stage_id in reversed(job.planned_stage_ids):
            stage = workflow.get_stage(stage_id)
            if stage and constants.canonical_uom(stage.output_uom) == CARTOON_UOM:
                produced_boxes = total_produced(stage_id, runs, constants) / pcs_per_box
                return JobProgress(
                    produced=produced_boxes,
                    planned=stored_boxes,
                    percentage=_percentage(produced_boxes, stored_boxes),
                    uom="box",
                )
        return JobProgress(produced=0, planned=stored_boxes, percentage=0.0, uom="box")

    last_stage_id = job.planned_stage_ids[-1] if job.planned_stage_ids else job.current_stage_id
    last_stage = workflow.get_stage(last_stage_id)
    first_output_uom = job.output[0].uom if job.output else ""
    final_uom = (last_stage.output_uom if last_stage else "") or first_output_uom or job.unit or SHEETS_UOM

    produced = 0
    for stage_id in reversed(job.planned_stage_ids):
        stage = workflow.get_stage(stage_id)
        if stage and stage.output_uom == final_uom:
            produced = total_produced(stage_id, runs, constants)
            break
    if produced == 0:
        produced = sum(
            clamp_quantity(r.qty_good) for r in runs
            if not (constants.exclude_transfer_runs and r.is_transfer)
        )

    if constants.canonical_uom(final_uom) in BOX_OUTPUT_UOMS:
        planned = planned_boxes(job) * pcs_per_box
        uom = CARTOON_UOM
    else:
        planned, _ = planned_sheets(job, constants)
        uom = final_uom

    return JobProgress(produced=produced, planned=planned, percentage=_percentage(produced, planned), uom=uom)


def summarize_workflow_path(
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    history: list[HistoryEvent],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> list[WorkflowPathStep]:
    """Chip states for the planned stages of a job.

    A stage is done when the job is done, when it was visited and is not
    the current stage, when it precedes the current stage, or when its
    threshold is met. A current stage whose threshold is met shows as done.
    """
    visited = {e.new_stage_id for e in history if e.is_stage_change and e.new_stage_id}
    planned = job.planned_stage_ids
    current_index = planned.index(job.current_stage_id) if job.current_stage_id in planned else -1

    steps = []
    for index, stage_id in enumerate(planned):
        is_current_stage = job.is_active and stage_id == job.current_stage_id
        planned_qty = resolve_stage_quantity(stage_id, job, workflow, runs, constants)
        threshold_met = evaluate_threshold(stage_id, planned_qty, runs, constants).met

        is_done = (
            job.is_done
            or (stage_id in visited and not is_current_stage)
            or (0 <= current_index and index < current_index)
            or threshold_met
        )
        steps.append(WorkflowPathStep(
            stage_id=stage_id,
            stage_name=workflow.stage_name(stage_id),
            is_current=is_current_stage and not threshold_met,
            is_done=is_done,
            threshold_met=threshold_met,
        ))
    return steps


def summarize_current_stage(
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> CurrentStageSummary | None:
    """Production summary of the current stage with a size-scaled tolerance band.

    Returns:
        CurrentStageSummary, or None when the job has no current stage.
    """
    stage_id = job.current_stage_id
    if not stage_id:
        return None

    stage = workflow.get_stage(stage_id)
    planned = resolve_stage_quantity(stage_id, job, workflow, runs, constants)
    band = scaled_tolerance_band(planned)

    return CurrentStageSummary(
        stage_id=stage_id,
        input_uom=stage.input_uom if stage else "",
        output_uom=stage.output_uom if stage else "",
        number_up=job.production_specs.number_up,
        total_produced=total_produced(stage_id, runs, constants),
        planned_qty=planned,
        completion_threshold=max(0, planned - band.lower),
        completion_threshold_upper=planned + band.upper,
    )


def _last_run_at(runs: list[ProductionRun]) -> datetime | None:
    stamps = [r.at for r in runs if r.at is not None]
    return max(stamps) if stamps else None


def detect_stuck_job(
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    now: datetime,
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> StuckJob | None:
    """Detect output waiting between two stages.

    Case 1: the previous stage has output but the current stage has no runs.
    Case 2: the current stage met its threshold but the next stage has no runs.
    Case 1 wins when both apply. Done and cancelled jobs are never stuck.

    Args:
        job: Job snapshot.
        workflow: Workflow with stage definitions.
        runs: All production runs of the job.
        now: Reference time for days in transition (naive means UTC).
        constants: Engine constants.

    Returns:
        StuckJob, or None if the job is flowing.
    """
    if job.status in ("done", "cancelled"):
        return None
    current_id = job.current_stage_id
    if not current_id or current_id not in job.planned_stage_ids:
        return None

    current_runs = stage_runs(current_id, runs, constants)
    previous_id = job.previous_stage_id(current_id)
    next_id = job.next_stage_id(current_id)

    from_id = to_id = None
    waiting: list[ProductionRun] = []
    reason: StuckReason | None = None

    if previous_id and not current_runs:
        previous_runs = stage_runs(previous_id, runs, constants)
        if sum(clamp_quantity(r.qty_good) for r in previous_runs) > 0:
            from_id, to_id, waiting, reason = previous_id, current_id, previous_runs, "awaiting_start"

    if reason is None and current_runs and next_id and not stage_runs(next_id, runs, constants):
        planned = resolve_stage_quantity(current_id, job, workflow, runs, constants)
        if evaluate_threshold(current_id, planned, runs, constants).met:
            from_id, to_id, waiting, reason = current_id, next_id, current_runs, "ready_to_move"

    if reason is None:
        return None

    from_stage = workflow.get_stage(from_id)
    last_output_at = _last_run_at(waiting)
    days = (as_utc(now) - last_output_at).total_seconds() / 86400 if last_output_at else 0.0

    return StuckJob(
        job_id=job.job_id,
        from_stage_id=from_id,
        from_stage_name=workflow.stage_name(from_id),
        to_stage_id=to_id,
        to_stage_name=workflow.stage_name(to_id),
        wip_quantity=sum(clamp_quantity(r.qty_good) for r in waiting),
        uom=(from_stage.output_uom or from_stage.input_uom) if from_stage else SHEETS_UOM,
        last_output_at=last_output_at,
        days_in_transition=max(0.0, days),
        reason=reason,
    )


def detect_stuck_jobs(
    jobs: list[Job],
    runs_by_job: Mapping[str, list[ProductionRun]],
    workflows: list[Workflow],
    now: datetime,
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> list[StuckJob]:
    """Detect stuck jobs across a job list, longest waiting first."""
    workflows_by_id = {w.workflow_id: w for w in workflows}
    stuck = []
    for job in jobs:
        workflow = workflows_by_id.get(job.workflow_id)
        if workflow is None:
            continue
        found = detect_stuck_job(job, workflow, runs_by_job.get(job.job_id, []), now, constants)
        if found is not None:
            stuck.append(found)
    stuck.sort(key=lambda s: s.days_in_transition, reverse=True)
    return stuck

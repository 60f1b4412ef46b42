# Stage timeline reconstruction for the production engine.
# Version: 1.0.0
# Folds stage-change history and production runs into start/finish times per stage.

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from functools import reduce
from typing import Callable, Literal, Mapping

from .constants import DEFAULT_CONSTANTS, JOB_FINISHED_LABEL, EngineConstants
from .data_loader import HistoryEvent, Job, ProductionRun, Workflow
from .stage_quantity import resolve_stage_quantity
from .threshold import find_threshold_met_at


logger = logging.getLogger(__name__)

TimelinePhase = Literal["NOT_STARTED", "STARTED", "THRESHOLD_MET", "DONE"]
DisplayStatus = Literal["DONE", "CURRENT", "NOT_STARTED"]
FinishSource = Literal["history_hint", "threshold", "stage_change", "in_place"]

# Finish sources recorded when the job moved out of the stage
_LEFT_STAGE_SOURCES: frozenset[str] = frozenset({"history_hint", "threshold", "stage_change"})

ThresholdLookup = Callable[[str], datetime | None]


@dataclass(frozen=True)
class TimelineState:
    """Inferred timing of one stage.

    Attributes:
        stage_id: Stage described.
        started_at: First time the job entered the stage.
        finished_at: When the stage was finished, never before started_at.
        finish_source: history_hint (event payload), threshold (runs, at move),
            stage_change (move time), or in_place (runs, job not moved yet).
    """
    stage_id: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    finish_source: FinishSource | None = None

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None

    @property
    def phase(self) -> TimelinePhase:
        """Inferred phase: NOT_STARTED -> STARTED -> THRESHOLD_MET | DONE."""
        if self.finish_source in _LEFT_STAGE_SOURCES:
            return "DONE"
        if self.finish_source == "in_place":
            return "THRESHOLD_MET"
        if self.started_at is not None:
            return "STARTED"
        return "NOT_STARTED"


@dataclass(frozen=True)
class StageTimelineRow:
    """One row of the stage timeline.

    Attributes:
        stage_id: Stage the row describes; None for the Job Finished row.
        stage_name: Display name.
        started_at: Stage start, if known.
        finished_at: Stage finish, if known.
        status: DONE, CURRENT or NOT_STARTED.
        phase: Inferred phase of the stage.
    """
    stage_id: str | None
    stage_name: str
    started_at: datetime | None
    finished_at: datetime | None
    status: DisplayStatus
    phase: TimelinePhase

    @property
    def is_job_finished_row(self) -> bool:
        return self.stage_id is None


def fold_stage_history(
    history: list[HistoryEvent],
    threshold_met_at: ThresholdLookup
) -> dict[str, TimelineState]:
    """Fold stage-change events, oldest first, into per-stage timeline states.

    The first entry into a stage is its start. The first exit finishes it,
    at the threshold time carried by the event or found from runs, or at
    the move time when that threshold time would precede the stage start.

    Args:
        history: Job history events in any order; non stage_change events are ignored.
        threshold_met_at: Returns when a stage's output first met its threshold.

    Returns:
        Mapping of stage ID to TimelineState for every stage the history mentions.
    """
    events = sorted((e for e in history if e.is_stage_change), key=lambda e: e.at)
    return reduce(
        lambda states, event: _apply_stage_change(states, event, threshold_met_at),
        events,
        {},
    )


def _apply_stage_change(
    states: dict[str, TimelineState],
    event: HistoryEvent,
    threshold_met_at: ThresholdLookup
) -> dict[str, TimelineState]:
    new_id = event.new_stage_id
    if new_id:
        entered = states.get(new_id, TimelineState(new_id))
        if entered.started_at is None:
            states = {**states, new_id: replace(entered, started_at=event.at)}

    prev_id = event.previous_stage_id
    if not prev_id:
        return states

    left = states.get(prev_id, TimelineState(prev_id))
    if left.is_finished:
        return states

    if event.previous_stage_threshold_met_at is not None:
        candidate, source = event.previous_stage_threshold_met_at, "history_hint"
    else:
        candidate, source = threshold_met_at(prev_id), "threshold"

    stage_start = left.started_at or event.at
    if candidate is not None and candidate >= stage_start:
        finished = candidate
    else:
        finished, source = max(event.at, stage_start), "stage_change"

    return {**states, prev_id: replace(left, finished_at=finished, finish_source=source)}


def finish_in_place(
    states: Mapping[str, TimelineState],
    planned_stage_ids: tuple[str, ...],
    threshold_met_at: ThresholdLookup
) -> dict[str, TimelineState]:
    """Finish planned stages whose threshold was met before any move recorded it.

    A threshold time earlier than the stage start is ignored.
    """
    result = dict(states)
    for stage_id in planned_stage_ids:
        state = result.get(stage_id, TimelineState(stage_id))
        if state.is_finished:
            continue
        met_at = threshold_met_at(stage_id)
        if met_at is None:
            continue
        if state.started_at is None or met_at >= state.started_at:
            result[stage_id] = replace(state, finished_at=met_at, finish_source="in_place")
    return result


def clamp_timeline(states: Mapping[str, TimelineState]) -> dict[str, TimelineState]:
    """Return states with every finish moved to no earlier than its start."""
    clamped = {}
    for stage_id, state in states.items():
        if state.started_at and state.finished_at and state.finished_at < state.started_at:
            logger.debug("Clamping finish of stage %s to its start", stage_id)
            state = replace(state, finished_at=state.started_at)
        clamped[stage_id] = state
    return clamped


def build_timeline_states(
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    history: list[HistoryEvent],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> dict[str, TimelineState]:
    """Timeline state for every planned stage (and any stage the history mentions)."""
    stage_ids = set(job.planned_stage_ids)
    for event in history:
        if event.is_stage_change and event.previous_stage_id:
            stage_ids.add(event.previous_stage_id)

    # Planned quantities depend only on runs, so resolve each stage once
    planned_qty = {
        sid: resolve_stage_quantity(sid, job, workflow, runs, constants) for sid in stage_ids
    }

    def threshold_met_at(stage_id: str) -> datetime | None:
        return find_threshold_met_at(stage_id, planned_qty.get(stage_id, 0), runs, constants)

    states = fold_stage_history(history, threshold_met_at)
    states = finish_in_place(states, job.planned_stage_ids, threshold_met_at)
    return clamp_timeline(states)


def _display_status(job: Job, stage_id: str, state: TimelineState) -> DisplayStatus:
    if job.is_done or state.is_finished:
        return "DONE"
    if stage_id == job.current_stage_id and job.status != "draft":
        return "CURRENT"
    return "NOT_STARTED"


def reconstruct_stage_timeline(
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    history: list[HistoryEvent],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> list[StageTimelineRow]:
    """Reconstruct start/finish times and status for each planned stage.

    Args:
        job: Job snapshot.
        workflow: Workflow holding stage names and UOMs.
        runs: All production runs of the job.
        history: Job history events.
        constants: Engine constants.

    Returns:
        One row per planned stage in plan order, plus a trailing Job Finished
        row when the job is done.
    """
    states = build_timeline_states(job, workflow, runs, history, constants)

    rows = []
    for stage_id in job.planned_stage_ids:
        state = states.get(stage_id, TimelineState(stage_id))
        rows.append(StageTimelineRow(
            stage_id=stage_id,
            stage_name=workflow.stage_name(stage_id),
            started_at=state.started_at,
            finished_at=state.finished_at,
            status=_display_status(job, stage_id, state),
            phase="DONE" if job.is_done else state.phase,
        ))

    if job.is_done:
        finished = job.finished_at
        rows.append(StageTimelineRow(
            stage_id=None,
            stage_name=JOB_FINISHED_LABEL,
            started_at=finished,
            finished_at=finished,
            status="DONE",
            phase="DONE",
        ))
    return rows

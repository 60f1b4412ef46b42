# Threshold evaluation for the production engine.
# Version: 1.0.0
# Decides whether a stage's good output falls inside the completion tolerance band.

import math
from dataclasses import dataclass
from datetime import datetime

from .constants import DEFAULT_CONSTANTS, EngineConstants
from .data_loader import ProductionRun, clamp_quantity


# Scaled tolerance tiers: (planned quantity below, tolerance fraction)
TOLERANCE_TIERS: tuple[tuple[float, float], ...] = (
    (1000, 0.10),
    (5000, 0.075),
    (10000, 0.05),
)
TOLERANCE_TOP_FRACTION = 0.03
TOLERANCE_MIN_UNITS = 50
TOLERANCE_MAX_UNITS = 2000


@dataclass(frozen=True)
class ThresholdResult:
    """Completion test for one stage.

    Attributes:
        stage_id: Stage evaluated.
        met: True if planned > 0 and produced lies inside the band.
        total_produced: Good output recorded for the stage.
        planned_qty: Planned quantity in the stage's output UOM.
        completion_threshold: Lower edge of the band (never below 0).
        completion_threshold_upper: Upper edge of the band.
    """
    stage_id: str
    met: bool
    total_produced: float
    planned_qty: float
    completion_threshold: float
    completion_threshold_upper: float

    @property
    def remaining(self) -> float:
        """Output still needed to reach the lower edge of the band."""
        return max(0, self.completion_threshold - self.total_produced)

    @property
    def over_produced(self) -> bool:
        """Check if output has gone past the upper edge of the band."""
        return self.total_produced > self.completion_threshold_upper


@dataclass(frozen=True)
class ToleranceBand:
    """Symmetric tolerance in units around a planned quantity."""
    lower: int
    upper: int


def stage_runs(
    stage_id: str,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> list[ProductionRun]:
    """Runs recorded against a stage, without WIP transfers when so configured."""
    return [
        r for r in runs
        if r.stage_id == stage_id and not (constants.exclude_transfer_runs and r.is_transfer)
    ]


def total_produced(
    stage_id: str,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> float:
    """Sum of good output recorded against a stage."""
    return sum(clamp_quantity(r.qty_good) for r in stage_runs(stage_id, runs, constants))


def completion_band(
    planned_qty: float,
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> tuple[float, float]:
    """Lower and upper completion thresholds around a planned quantity."""
    planned = clamp_quantity(planned_qty)
    lower = max(0, planned - constants.wastage_threshold_lower)
    upper = planned + constants.wastage_threshold_upper
    return lower, upper


def evaluate_threshold(
    stage_id: str,
    planned_qty: float,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> ThresholdResult:
    """Check whether a stage's cumulative output meets its completion band.

    A stage with no planned quantity is never met. Being met does not
    require the job to have moved past the stage.

    Args:
        stage_id: Stage to evaluate.
        planned_qty: Planned quantity in the stage's output UOM.
        runs: All production runs of the job.
        constants: Engine constants supplying the tolerance band.

    Returns:
        ThresholdResult with the verdict and the band used.
    """
    planned = clamp_quantity(planned_qty)
    lower, upper = completion_band(planned, constants)
    produced = total_produced(stage_id, runs, constants)

    return ThresholdResult(
        stage_id=stage_id,
        met=planned > 0 and lower <= produced <= upper,
        total_produced=produced,
        planned_qty=planned,
        completion_threshold=lower,
        completion_threshold_upper=upper,
    )


def find_threshold_met_at(
    stage_id: str,
    planned_qty: float,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> datetime | None:
    """Find when a stage's cumulative output first reached its lower threshold.

    Runs are walked chronologically; runs without a timestamp sort first
    and add to the total but are never the returned run.

    Returns:
        Timestamp of the run that crossed the threshold, or None if it was
        never reached or nothing is planned.
    """
    planned = clamp_quantity(planned_qty)
    if planned <= 0:
        return None

    threshold, _ = completion_band(planned, constants)
    candidates = stage_runs(stage_id, runs, constants)
    untimed = [r for r in candidates if r.at is None]
    ordered = untimed + sorted((r for r in candidates if r.at is not None), key=lambda r: r.at)

    cumulative = 0
    for run in ordered:
        cumulative += clamp_quantity(run.qty_good)
        if cumulative >= threshold and run.at is not None:
            return run.at
    return None


def scaled_tolerance_band(planned_qty: float) -> ToleranceBand:
    """Tolerance that scales with order size, as used on the scanner.

    10% below 1000 units, 7.5% below 5000, 5% below 10000, 3% above;
    rounded and held between 50 and 2000 units.
    """
    planned = clamp_quantity(planned_qty)
    fraction = TOLERANCE_TOP_FRACTION
    for limit, tier_fraction in TOLERANCE_TIERS:
        if planned < limit:
            fraction = tier_fraction
            break

    units = math.floor(planned * fraction + 0.5)
    units = max(TOLERANCE_MIN_UNITS, min(units, TOLERANCE_MAX_UNITS))
    return ToleranceBand(lower=units, upper=units)

# Planned quantity resolution for workflow stages.
# Version: 1.0.0
# Derives each stage's planned quantity from packaging, BOM or the previous stage's output.

from dataclasses import dataclass
from typing import Literal

from .constants import CARTOON_UOM, DEFAULT_CONSTANTS, SHEETS_UOM, EngineConstants
from .data_loader import Job, ProductionRun, Stage, Workflow, clamp_quantity, safe_divisor
from .errors import UnknownConversionError
from .packing import plan_packing_for_job
from .threshold import total_produced
from .uom import ConversionResult, default_registry


QuantitySource = Literal["previous_stage", "no_previous_output", "packaging", "bom", "output", "quantity"]


@dataclass(frozen=True)
class StageQuantity:
    """Planned quantity for a stage together with how it was derived.

    Attributes:
        stage_id: Stage resolved.
        quantity: Planned quantity in the stage's output UOM.
        uom: Stage output UOM.
        source: Where the quantity came from.
        previous_stage_id: Planned predecessor, if any.
        previous_output: Predecessor's good output before conversion.
        conversions: Conversion steps applied (previous output -> input -> output).
    """
    stage_id: str
    quantity: float
    uom: str
    source: QuantitySource
    previous_stage_id: str | None = None
    previous_output: float | None = None
    conversions: tuple[ConversionResult, ...] = ()

    @property
    def is_reliable(self) -> bool:
        """Check if every conversion step had a usable rule."""
        return all(c.is_known for c in self.conversions)

    @property
    def warnings(self) -> list[str]:
        """Human-readable notes for conversions that passed values through."""
        notes = []
        for c in self.conversions:
            if c.status == "unknown":
                notes.append(f"No conversion from '{c.from_uom}' to '{c.to_uom}'; quantity passed through")
            elif c.status == "unguarded":
                notes.append(f"Conversion from '{c.from_uom}' to '{c.to_uom}' needs numberUp; quantity passed through")
        return notes


def resolve_stage_quantity_detail(
    stage_id: str,
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS,
    strict: bool = False
) -> StageQuantity:
    """Resolve a stage's planned quantity with provenance.

    A stage with a planned predecessor is planned from the predecessor's
    actual good output, converted predecessor output UOM -> stage input UOM
    -> stage output UOM. A first stage is planned from packaging (carton
    output) or from the sheet BOM line, first output row, or job quantity.

    Args:
        stage_id: Stage to resolve.
        job: Job snapshot.
        workflow: Workflow holding the stage definitions.
        runs: All production runs of the job.
        constants: Engine constants (aliases, conversions, transfer handling).
        strict: Raise instead of passing through unknown UOM pairings.

    Returns:
        StageQuantity for the stage.

    Raises:
        UnknownConversionError: If strict and a conversion pairing is unknown.
    """
    stage = workflow.get_stage(stage_id) or Stage(stage_id=stage_id)
    previous_id = job.previous_stage_id(stage_id)

    if previous_id is None:
        quantity, source = _first_stage_quantity(stage, job, constants)
        return StageQuantity(stage_id=stage_id, quantity=quantity, uom=stage.output_uom, source=source)

    previous_output = total_produced(previous_id, runs, constants)
    if previous_output <= 0:
        # No work has arrived from the previous stage yet
        return StageQuantity(
            stage_id=stage_id,
            quantity=0,
            uom=stage.output_uom,
            source="no_previous_output",
            previous_stage_id=previous_id,
            previous_output=0,
        )

    previous = workflow.get_stage(previous_id) or Stage(stage_id=previous_id)
    number_up = job.production_specs.number_up
    registry = default_registry(constants)

    to_input = registry.convert(previous_output, previous.output_uom, stage.input_uom, number_up)
    to_output = registry.convert(to_input.value, stage.input_uom, stage.output_uom, number_up)

    if strict:
        for step in (to_input, to_output):
            if step.status == "unknown":
                raise UnknownConversionError(step.from_uom, step.to_uom, stage_id)

    return StageQuantity(
        stage_id=stage_id,
        quantity=clamp_quantity(to_output.value),
        uom=stage.output_uom,
        source="previous_stage",
        previous_stage_id=previous_id,
        previous_output=previous_output,
        conversions=(to_input, to_output),
    )


def resolve_stage_quantity(
    stage_id: str,
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> float:
    """Planned quantity for a stage in its own output UOM."""
    return resolve_stage_quantity_detail(stage_id, job, workflow, runs, constants).quantity


def planned_boxes(job: Job) -> float:
    """Box count for the job: the stored value, else the packing plan's outers."""
    stored = clamp_quantity(job.packaging.planned_boxes)
    if stored > 0:
        return stored
    return plan_packing_for_job(job).planned_outers


def planned_sheets(job: Job, constants: EngineConstants = DEFAULT_CONSTANTS) -> tuple[float, QuantitySource]:
    """Baseline sheet quantity: sheet BOM line, else first output row, else job quantity."""
    for line in job.bom:
        if constants.canonical_uom(line.uom) == SHEETS_UOM:
            return clamp_quantity(line.qty_required), "bom"

    if job.output:
        qty_planned = clamp_quantity(job.output[0].qty_planned)
        if qty_planned > 0:
            return qty_planned, "output"

    return clamp_quantity(job.quantity), "quantity"


def _first_stage_quantity(
    stage: Stage,
    job: Job,
    constants: EngineConstants
) -> tuple[float, QuantitySource]:
    if constants.canonical_uom(stage.output_uom) == CARTOON_UOM:
        return planned_boxes(job) * safe_divisor(job.packaging.pcs_per_box), "packaging"
    return planned_sheets(job, constants)

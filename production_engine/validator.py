# Job consistency validation for the production engine.
# Version: 1.0.0
# Checks a job snapshot against its workflow and runs, collecting errors and warnings.

from dataclasses import dataclass, field

from .constants import DEFAULT_CONSTANTS, VALID_UNITS, EngineConstants
from .data_loader import Job, ProductionRun, Workflow
from .errors import ValidationError
from .packing import plan_packing_for_job
from .sheet_layout import plan_sheet_layout_for_job
from .uom import default_registry


@dataclass
class ValidationWarning:
    """A non-fatal issue that should be shown to the operator but doesn't block calculation.

    Attributes:
        job_id: Job identifier.
        field: Field name related to the warning.
        message: Human-readable warning message.
    """
    job_id: str
    field: str
    message: str


@dataclass
class ValidationResult:
    """Result of validating a job.

    Attributes:
        is_valid: True if no blocking errors found.
        errors: List of ValidationError exceptions.
        warnings: List of non-blocking ValidationWarning instances.
    """
    is_valid: bool = True
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    def add_error(self, error: ValidationError) -> None:
        """Add a validation error and mark the result invalid."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: ValidationWarning) -> None:
        self.warnings.append(warning)


def validate_job(
    job: Job,
    workflow: Workflow,
    runs: list[ProductionRun],
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> ValidationResult:
    """Validate a job against its workflow and production runs.

    Performs checks:
    1. Planned stages are unique and defined by the workflow
    2. An active job's current stage is part of its plan
    3. Run quantities are non-negative
    4. Quantity unit is recognised (warning; packing treats it as pieces)
    5. Sheet layout and pallet override agree with computed values (warnings)
    6. Adjacent stages have a usable UOM conversion (warnings)

    Args:
        job: Job snapshot to validate.
        workflow: Workflow the job follows.
        runs: Production runs recorded for the job.
        constants: Engine constants supplying the conversion rules.

    Returns:
        ValidationResult with errors and warnings.
    """
    result = ValidationResult()

    _validate_planned_stages(job, workflow, result)
    _validate_current_stage(job, result)
    _validate_runs(runs, result)
    _check_unit_warning(job, result)
    _check_layout_warnings(job, constants, result)
    _check_conversion_warnings(job, workflow, constants, result)

    return result


def _validate_planned_stages(job: Job, workflow: Workflow, result: ValidationResult) -> None:
    seen: set[str] = set()
    for stage_id in job.planned_stage_ids:
        if stage_id in seen:
            result.add_error(
                ValidationError(
                    field="planned_stage_ids",
                    value=stage_id,
                    reason="Stage is planned more than once"
                )
            )
        seen.add(stage_id)

        if workflow.get_stage(stage_id) is None:
            result.add_error(
                ValidationError(
                    field="planned_stage_ids",
                    value=stage_id,
                    reason=f"Stage not defined in workflow '{workflow.workflow_id}'"
                )
            )


def _validate_current_stage(job: Job, result: ValidationResult) -> None:
    if not job.is_active:
        return
    if job.current_stage_id not in job.planned_stage_ids:
        result.add_error(
            ValidationError(
                field="current_stage_id",
                value=job.current_stage_id,
                reason="Active job's current stage is not in its planned stages"
            )
        )


def _validate_runs(runs: list[ProductionRun], result: ValidationResult) -> None:
    for row, run in enumerate(runs, start=1):
        if run.qty_good is not None and run.qty_good < 0:
            result.add_error(
                ValidationError(
                    field="qty_good",
                    value=run.qty_good,
                    reason="Good quantity cannot be negative",
                    row=row
                )
            )


def _check_unit_warning(job: Job, result: ValidationResult) -> None:
    if job.unit not in VALID_UNITS:
        result.add_warning(
            ValidationWarning(
                job_id=job.job_id,
                field="unit",
                message=f"Unknown unit '{job.unit}'; quantity is treated as pieces"
            )
        )


def _check_layout_warnings(job: Job, constants: EngineConstants, result: ValidationResult) -> None:
    layout = plan_sheet_layout_for_job(job, constants)
    if layout.number_up_mismatch:
        result.add_warning(
            ValidationWarning(
                job_id=job.job_id,
                field="number_up",
                message=f"Entered number-up {layout.number_up} differs from "
                        f"theoretical {layout.theoretical_number_up} for the sheet and cut sizes"
            )
        )

    packing = plan_packing_for_job(job)
    if packing.pallet_mismatch:
        result.add_warning(
            ValidationWarning(
                job_id=job.job_id,
                field="planned_pallets",
                message=f"Pallet override {packing.pallet_override} differs from "
                        f"computed {packing.pallets_auto}; confirm before packing"
            )
        )


def _check_conversion_warnings(
    job: Job,
    workflow: Workflow,
    constants: EngineConstants,
    result: ValidationResult
) -> None:
    registry = default_registry(constants)
    number_up = job.production_specs.number_up
    stages = job.planned_stage_ids

    for previous_id, stage_id in zip(stages, stages[1:]):
        previous = workflow.get_stage(previous_id)
        stage = workflow.get_stage(stage_id)
        if previous is None or stage is None:
            continue

        # Probe with a unit quantity; only the status matters
        steps = (
            registry.convert(1, previous.output_uom, stage.input_uom, number_up),
            registry.convert(1, stage.input_uom, stage.output_uom, number_up),
        )
        for step in steps:
            if step.status == "unknown":
                message = f"No conversion from '{step.from_uom}' to '{step.to_uom}'"
            elif step.status == "unguarded":
                message = f"Conversion from '{step.from_uom}' to '{step.to_uom}' needs a number-up"
            else:
                continue
            result.add_warning(
                ValidationWarning(
                    job_id=job.job_id,
                    field=f"stages.{stage_id}",
                    message=f"{message}; planned quantity for '{stage_id}' is passed through"
                )
            )

# Sheet layout calculations for the production engine.
# Version: 1.0.0
# Computes theoretical number-up and required sheet counts with overs and wastage.

import math
from dataclasses import dataclass

from .constants import DEFAULT_CONSTANTS, EngineConstants
from .data_loader import Job, PackagingConfig, ProductionSpecs, clamp_quantity, optional_positive
from .packing import to_piece_count


@dataclass(frozen=True)
class SheetLayoutPlan:
    """Sheet requirements for a job.

    Every count is None when its prerequisites (dimensions or number-up)
    are missing; callers treat None as "cannot be determined yet".

    Attributes:
        theoretical_number_up: Units that fit on a sheet by dimensions alone.
        number_up: Operator-entered number-up used for the sheet counts.
        piece_count: Requested quantity expressed in pieces.
        base_required_sheets: Sheets needed with no allowances.
        sheets_needed: Base sheets plus production buffer and makeready sheets.
        sheets_needed_with_overs: Sheets needed including customer overs.
        sheets_needed_with_wastage: Sheets needed including wastage sheets.
    """
    theoretical_number_up: int | None
    number_up: float | None
    piece_count: float
    base_required_sheets: int | None
    sheets_needed: int | None
    sheets_needed_with_overs: int | None
    sheets_needed_with_wastage: float | None

    @property
    def number_up_mismatch(self) -> bool:
        """Check if the entered number-up differs from the theoretical layout."""
        return (
            self.theoretical_number_up is not None
            and self.number_up is not None
            and self.number_up != self.theoretical_number_up
        )


def theoretical_number_up(specs: ProductionSpecs) -> int | None:
    """Units per sheet when cut pieces are tiled along both sheet edges.

    Returns:
        floor(sheet_w / cut_w) * floor(sheet_l / cut_l), or None when any
        dimension is missing or not positive.
    """
    sheet_w = optional_positive(specs.sheet.width)
    sheet_l = optional_positive(specs.sheet.length)
    cut_w = optional_positive(specs.cut_to.width)
    cut_l = optional_positive(specs.cut_to.length)
    if sheet_w is None or sheet_l is None or cut_w is None or cut_l is None:
        return None
    return math.floor(sheet_w / cut_w) * math.floor(sheet_l / cut_l)


def plan_sheet_layout(
    specs: ProductionSpecs,
    quantity: float,
    unit: str | None,
    packaging: PackagingConfig,
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> SheetLayoutPlan:
    """Calculate required sheets for a job quantity.

    Args:
        specs: Sheet/cut dimensions, number-up, overs and wastage.
        quantity: Requested quantity.
        unit: Unit the quantity is expressed in.
        packaging: Packaging config used to convert boxes/pallets to pieces.
        constants: Engine constants supplying the sheet buffers.

    Returns:
        SheetLayoutPlan with each count or None.
    """
    piece_count = to_piece_count(quantity, unit, packaging)
    number_up = optional_positive(specs.number_up)

    base_required = None
    sheets_needed = None
    with_overs = None
    with_wastage = None

    if number_up is not None:
        base_required = math.ceil(piece_count / number_up)
        # Percentage buffer first, then the fixed makeready sheets
        sheets_needed = math.ceil(
            base_required * constants.sheet_buffer_factor + constants.sheet_buffer_sheets
        )
        overs_pct = clamp_quantity(specs.overs_pct)
        with_overs = math.ceil(sheets_needed * (1 + overs_pct / 100))
        with_wastage = with_overs + clamp_quantity(specs.sheet_wastage)

    return SheetLayoutPlan(
        theoretical_number_up=theoretical_number_up(specs),
        number_up=number_up,
        piece_count=piece_count,
        base_required_sheets=base_required,
        sheets_needed=sheets_needed,
        sheets_needed_with_overs=with_overs,
        sheets_needed_with_wastage=with_wastage,
    )


def plan_sheet_layout_for_job(
    job: Job,
    constants: EngineConstants = DEFAULT_CONSTANTS
) -> SheetLayoutPlan:
    """Calculate required sheets from a job's specs, quantity and packaging."""
    return plan_sheet_layout(job.production_specs, job.quantity, job.unit, job.packaging, constants)

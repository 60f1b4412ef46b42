# Packing plan calculations for the production engine.
# Version: 1.0.0
# Converts a requested quantity into outers, pallets and leftover pieces.

import logging
import math
from dataclasses import dataclass

from .constants import BOX_UNITS
from .data_loader import Job, PackagingConfig, clamp_quantity, optional_positive, safe_divisor


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackingPlan:
    """Packing breakdown for a job quantity.

    Attributes:
        planned_outers: Outers (boxes) needed.
        pallets: Reported pallet count (operator override when set, else computed).
        planned_qty_by_pack: Pieces packed when every outer is full.
        leftover: Extra pieces packed beyond the requested quantity.
        full_pallets: Completely filled pallets.
        remainder_outers: Outers on the last, partially filled pallet.
        pallets_auto: Computed pallet count, kept for mismatch comparison.
        pallet_override: Operator pallet override, if any.
    """
    planned_outers: int
    pallets: float
    planned_qty_by_pack: float
    leftover: float
    full_pallets: float
    remainder_outers: int
    pallets_auto: float
    pallet_override: float | None = None

    @property
    def pallet_mismatch(self) -> bool:
        """Check if a positive override disagrees with the computed pallet count."""
        return (
            self.pallet_override is not None
            and self.pallet_override > 0
            and self.pallet_override != self.pallets_auto
        )


def plan_packing(
    quantity: float,
    unit: str | None,
    packaging: PackagingConfig
) -> PackingPlan:
    """Calculate the packing plan for a requested quantity.

    Quantity semantics depend on ``unit``: ``pcs`` (and any unknown unit)
    counts pieces, ``box``/``units`` count outers, ``pallets`` counts pallets.

    Args:
        quantity: Requested quantity (negative or NaN treated as 0).
        unit: Unit the quantity is expressed in.
        packaging: Pieces per box, boxes per pallet and optional pallet override.

    Returns:
        PackingPlan with outers, pallets and leftover.
    """
    qty = clamp_quantity(quantity)
    pcs_per_box = safe_divisor(packaging.pcs_per_box)
    boxes_per_pallet = safe_divisor(packaging.boxes_per_pallet)
    override = clamp_quantity(packaging.planned_pallets) or None

    if unit in BOX_UNITS:
        # Quantity counts boxes; pallets come straight from the box count
        total_pieces = qty * pcs_per_box
        planned_outers = math.ceil(total_pieces / pcs_per_box)
        full_pallets = math.floor(qty / boxes_per_pallet)
        remainder_boxes = qty - full_pallets * boxes_per_pallet
        pallets_auto = full_pallets + (1 if remainder_boxes > 0 else 0)

        plan = PackingPlan(
            planned_outers=planned_outers,
            pallets=pallets_auto,
            planned_qty_by_pack=total_pieces,
            leftover=0,
            full_pallets=full_pallets,
            remainder_outers=0,
            pallets_auto=pallets_auto,
            pallet_override=override,
        )
    elif unit == "pallets":
        planned_outers = math.ceil(qty * boxes_per_pallet)
        plan = PackingPlan(
            planned_outers=planned_outers,
            pallets=override if override else qty,
            planned_qty_by_pack=planned_outers * pcs_per_box,
            leftover=0,
            full_pallets=qty,
            remainder_outers=0,
            pallets_auto=qty,
            pallet_override=override,
        )
    else:
        planned_outers = math.ceil(qty / pcs_per_box)
        planned_qty_by_pack = planned_outers * pcs_per_box

        full_pallets = planned_outers // boxes_per_pallet
        remainder_outers = planned_outers - full_pallets * boxes_per_pallet
        pallets_auto = full_pallets + (1 if remainder_outers > 0 else 0)

        plan = PackingPlan(
            planned_outers=planned_outers,
            pallets=override if override else pallets_auto,
            planned_qty_by_pack=planned_qty_by_pack,
            leftover=planned_qty_by_pack - qty,
            full_pallets=full_pallets,
            remainder_outers=remainder_outers,
            pallets_auto=pallets_auto,
            pallet_override=override,
        )

    if plan.pallet_mismatch:
        logger.debug(
            "Pallet override %s differs from computed %s", plan.pallet_override, plan.pallets_auto
        )
    return plan


def plan_packing_for_job(job: Job) -> PackingPlan:
    """Calculate the packing plan from a job's quantity, unit and packaging."""
    return plan_packing(job.quantity, job.unit, job.packaging)


def has_pallet_mismatch(plan: PackingPlan) -> bool:
    """Check whether a plan needs operator confirmation of its pallet override."""
    return plan.pallet_mismatch


def to_piece_count(quantity: float, unit: str | None, packaging: PackagingConfig) -> float:
    """Convert a job quantity into pieces.

    Unlike the packing plan, fractional per-pack counts are used as given;
    only missing or non-positive counts default to 1.

    Args:
        quantity: Requested quantity.
        unit: pcs, box/units or pallets.
        packaging: Packaging configuration supplying the multipliers.

    Returns:
        Piece count (negative or NaN quantities treated as 0).
    """
    qty = clamp_quantity(quantity)
    pcs_per_box = optional_positive(packaging.pcs_per_box) or 1
    if unit in BOX_UNITS:
        return qty * pcs_per_box
    if unit == "pallets":
        return qty * (optional_positive(packaging.boxes_per_pallet) or 1) * pcs_per_box
    return qty

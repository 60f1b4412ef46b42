from hypothesis import given, settings, strategies as st

from production_engine.constants import EngineConstants
from production_engine.data_loader import Dimensions, PackagingConfig, ProductionSpecs
from production_engine.sheet_layout import (
    plan_sheet_layout,
    plan_sheet_layout_for_job,
    theoretical_number_up,
)


PACKAGING = PackagingConfig(pcs_per_box=100, boxes_per_pallet=10)


def specs(number_up=9, overs_pct=0, sheet_wastage=0, sheet=(900, 600), cut=(300, 200)):
    return ProductionSpecs(
        sheet=Dimensions(*sheet),
        cut_to=Dimensions(*cut),
        number_up=number_up,
        overs_pct=overs_pct,
        sheet_wastage=sheet_wastage,
    )


class TestTheoreticalNumberUp:
    def test_tiles_cut_size_along_both_edges(self):
        assert theoretical_number_up(specs()) == 9

    def test_partial_fit_is_floored(self):
        assert theoretical_number_up(specs(sheet=(1000, 650))) == 9

    def test_missing_dimension_gives_none(self):
        assert theoretical_number_up(specs(cut=(300, None))) is None
        assert theoretical_number_up(specs(sheet=(0, 600))) is None


class TestRequiredSheets:
    def test_buffer_and_makeready_sheets(self):
        plan = plan_sheet_layout(specs(), 9000, "pcs", PACKAGING)

        assert plan.base_required_sheets == 1000
        assert plan.sheets_needed == 1450
        assert plan.sheets_needed_with_overs == 1450
        assert plan.sheets_needed_with_wastage == 1450

    def test_overs_and_wastage_stack(self):
        plan = plan_sheet_layout(specs(overs_pct=100, sheet_wastage=50), 9000, "pcs", PACKAGING)

        assert plan.sheets_needed_with_overs == 2900
        assert plan.sheets_needed_with_wastage == 2950

    def test_negative_overs_treated_as_zero(self):
        plan = plan_sheet_layout(specs(overs_pct=-20), 9000, "pcs", PACKAGING)

        assert plan.sheets_needed_with_overs == plan.sheets_needed

    def test_box_quantity_converted_to_pieces(self):
        plan = plan_sheet_layout(specs(number_up=4), 10, "box", PACKAGING)

        assert plan.piece_count == 1000
        assert plan.base_required_sheets == 250

    def test_pallet_quantity_converted_to_pieces(self):
        plan = plan_sheet_layout(specs(number_up=4), 1, "pallets", PACKAGING)

        assert plan.piece_count == 1000
        assert plan.base_required_sheets == 250

    def test_missing_number_up_propagates_none(self):
        plan = plan_sheet_layout(specs(number_up=None), 9000, "pcs", PACKAGING)

        assert plan.theoretical_number_up == 9
        assert plan.base_required_sheets is None
        assert plan.sheets_needed is None
        assert plan.sheets_needed_with_overs is None
        assert plan.sheets_needed_with_wastage is None

    def test_configured_buffers(self):
        no_buffer = EngineConstants(sheet_buffer_pct=0, sheet_buffer_sheets=0)
        plan = plan_sheet_layout(specs(), 9000, "pcs", PACKAGING, no_buffer)

        assert plan.sheets_needed == plan.base_required_sheets == 1000


def test_number_up_mismatch_is_flagged_not_corrected():
    plan = plan_sheet_layout(specs(number_up=8), 8000, "pcs", PACKAGING)

    assert plan.number_up_mismatch
    assert plan.number_up == 8
    assert plan.base_required_sheets == 1000


def test_plan_for_job(job):
    plan = plan_sheet_layout_for_job(job)

    assert not plan.number_up_mismatch
    assert plan.sheets_needed == 1450


@given(
    number_up=st.integers(min_value=1, max_value=40),
    overs_pct=st.sampled_from([0, 2.5, 5, 10, 15]),
    sheet_wastage=st.integers(min_value=0, max_value=300),
    quantity=st.integers(min_value=1, max_value=250_000),
    unit=st.sampled_from(["pcs", "box", "pallets"]),
)
@settings(max_examples=200, deadline=None)
def test_sheet_counts_are_ordered(number_up, overs_pct, sheet_wastage, quantity, unit):
    plan = plan_sheet_layout(
        specs(number_up=number_up, overs_pct=overs_pct, sheet_wastage=sheet_wastage),
        quantity,
        unit,
        PACKAGING,
    )

    assert plan.sheets_needed >= 400
    assert plan.sheets_needed_with_overs >= plan.sheets_needed
    assert plan.sheets_needed_with_wastage >= plan.sheets_needed_with_overs

from datetime import datetime, timezone

import pandas as pd
import pytest

from production_engine.data_loader import (
    HistoryEvent,
    Job,
    ProductionRun,
    clamp_quantity,
    event_from_dict,
    job_from_dict,
    load_production_runs,
    load_stage_history,
    optional_positive,
    parse_timestamp,
    run_from_dict,
    safe_divisor,
    workflow_from_dict,
)
from production_engine.errors import FileLoadError, ValidationError

from conftest import at


JOB_DOC = {
    "id": "J-100",
    "quantity": 9000,
    "unit": "PCS",
    "packaging": {"pcsPerBox": 100, "boxesPerPallet": 10, "plannedPallets": None},
    "workflowId": "wf-carton",
    "plannedStageIds": ["print", "diecut", "glue"],
    "currentStageId": "diecut",
    "bom": [{"sku": "BRD-1", "name": "Board", "uom": "sht", "qtyRequired": 2000}],
    "output": [{"uom": "cartoon", "qtyPlanned": 9000, "qtyProduced": 0}],
    "productionSpecs": {
        "sheet": {"width": 900, "length": 600},
        "cutTo": {"width": 300, "length": 200},
        "numberUp": 9,
        "oversPct": 5,
    },
    "status": "done",
    "updatedAt": {"seconds": 1773144000},
}


@pytest.mark.parametrize("value, expected", [
    (12, 12),
    (12.5, 12.5),
    ("40", 40),
    (-3, 0),
    (float("nan"), 0),
    (float("inf"), 0),
    (None, 0),
    (True, 0),
    ("abc", 0),
])
def test_clamp_quantity(value, expected):
    assert clamp_quantity(value) == expected


def test_safe_divisor_and_optional_positive():
    assert safe_divisor(None) == 1
    assert safe_divisor(0) == 1
    assert safe_divisor(2.7) == 2
    assert optional_positive(0) is None
    assert optional_positive(4) == 4


class TestParseTimestamp:
    def test_iso_string_with_offset(self):
        assert parse_timestamp("2026-03-02T09:00:00Z") == at(2, 9)

    def test_naive_values_are_utc(self):
        assert parse_timestamp("2026-03-02 09:00") == at(2, 9)
        assert parse_timestamp(datetime(2026, 3, 2, 9)) == at(2, 9)

    def test_seconds_mapping(self):
        expected = datetime(2026, 3, 2, 9, tzinfo=timezone.utc)
        seconds = int(expected.timestamp())

        assert parse_timestamp({"seconds": seconds, "nanoseconds": 0}) == expected
        assert parse_timestamp({"_seconds": seconds}) == expected

    def test_epoch_seconds_and_millis(self):
        seconds = int(at(2, 9).timestamp())

        assert parse_timestamp(seconds) == at(2, 9)
        assert parse_timestamp(seconds * 1000) == at(2, 9)

    def test_pandas_timestamp(self):
        assert parse_timestamp(pd.Timestamp("2026-03-02 09:00", tz="UTC")) == at(2, 9)

    @pytest.mark.parametrize("value", [None, "", "   ", pd.NaT, float("nan")])
    def test_empty_values(self, value):
        assert parse_timestamp(value) is None

    @pytest.mark.parametrize("value", [
        "not a date",
        {"minutes": 3},
        [2026, 3, 2],
        {"seconds": "x"},
        {"seconds": 1e30},
        1e30,
        -1e30,
        float("inf"),
    ])
    def test_unparseable_values(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_timestamp(value, "startedAt")

        assert exc_info.value.field == "startedAt"


class TestDocumentParsers:
    def test_job_document(self):
        job = job_from_dict(JOB_DOC)

        assert job.job_id == "J-100"
        assert job.unit == "pcs"
        assert job.packaging.pcs_per_box == 100
        assert job.packaging.planned_pallets is None
        assert job.planned_stage_ids == ("print", "diecut", "glue")
        assert job.bom[0].qty_required == 2000
        assert job.output[0].qty_planned == 9000
        assert job.production_specs.cut_to.width == 300
        assert job.production_specs.number_up == 9
        assert job.production_specs.overs_pct == 5
        assert job.is_done
        assert job.finished_at == datetime.fromtimestamp(1773144000, tz=timezone.utc)

    def test_snake_case_job_document(self):
        job = job_from_dict({"job_id": "J-2", "planned_stage_ids": ["a"], "current_stage_id": "a"})

        assert job.job_id == "J-2"
        assert job.current_stage_id == "a"
        assert job.status == "active"
        assert job.finished_at is None

    def test_planned_stages_must_be_a_list(self):
        with pytest.raises(ValidationError):
            job_from_dict({"plannedStageIds": "print,diecut"})

    def test_workflow_document(self):
        workflow = workflow_from_dict({
            "id": "wf-carton",
            "stages": [
                {"id": "print", "name": "Printing", "inputUOM": "sheets", "outputUOM": "sheets"},
                {"id": "diecut", "name": "Die cutting", "inputUOM": "sht", "outputUOM": "cartoon"},
            ],
        })

        assert workflow.get_stage("diecut").output_uom == "cartoon"
        assert workflow.get_stage("diecut").order == 1
        assert workflow.stage_name("glue") == "glue"

    def test_workflow_stage_needs_id(self):
        with pytest.raises(ValidationError) as exc_info:
            workflow_from_dict({"stages": [{"name": "Printing"}]})

        assert exc_info.value.row == 1

    def test_run_document(self):
        run = run_from_dict({
            "id": "r-9",
            "stageId": "glue",
            "qtyGood": "450",
            "at": "2026-03-05T08:00:00Z",
            "transferSourceRunIds": "r-1; r-2",
        })

        assert run.qty_good == 450
        assert run.at == at(5)
        assert run.transfer_source_run_ids == ("r-1", "r-2")
        assert run.is_transfer

    def test_run_needs_stage_and_numeric_quantity(self):
        with pytest.raises(ValidationError):
            run_from_dict({"qtyGood": 5})
        with pytest.raises(ValidationError) as exc_info:
            run_from_dict({"stageId": "print", "qtyGood": "many"}, row=4)
        assert exc_info.value.row == 4

    def test_event_payload_is_merged(self):
        event = event_from_dict({
            "type": "stage_change",
            "at": "2026-03-03T08:00:00Z",
            "payload": {
                "previousStageId": "print",
                "newStageId": "diecut",
                "previousStageThresholdMetAt": "2026-03-02T15:00:00Z",
            },
        })

        assert event.previous_stage_id == "print"
        assert event.new_stage_id == "diecut"
        assert event.at == at(3)
        assert event.previous_stage_threshold_met_at == at(2, 15)
        assert event.is_stage_change

    def test_event_needs_timestamp(self):
        with pytest.raises(ValidationError):
            event_from_dict({"newStageId": "print"})


class TestRecordTimestamps:
    def test_naive_run_time_is_utc(self):
        run = ProductionRun(stage_id="print", qty_good=10, at=datetime(2026, 3, 2, 9))

        assert run.at == at(2, 9)
        assert run.at.tzinfo is not None

    def test_naive_event_times_are_utc(self):
        event = HistoryEvent("print", "diecut", datetime(2026, 3, 3, 8), datetime(2026, 3, 2, 15))

        assert event.at == at(3)
        assert event.previous_stage_threshold_met_at == at(2, 15)

    def test_naive_job_dates_are_utc(self):
        job = Job(status="done", updated_at=datetime(2026, 3, 10, 12))

        assert job.finished_at == at(10, 12)


class TestFileLoaders:
    def test_runs_from_csv(self, tmp_path):
        path = tmp_path / "runs.csv"
        path.write_text(
            "stage_id,qty_good,at,run_id,transfer_source_run_ids\n"
            "print,1000,2026-03-02T09:00:00Z,r-1,\n"
            "print,700,2026-03-02T15:00:00Z,r-2,\n"
            "diecut,300,2026-03-03T10:00:00Z,r-3,r-1;r-2\n"
        )

        runs = load_production_runs(path)

        assert [r.qty_good for r in runs] == [1000, 700, 300]
        assert runs[1].at == at(2, 15)
        assert not runs[0].is_transfer
        assert runs[2].transfer_source_run_ids == ("r-1", "r-2")

    def test_runs_from_excel(self, tmp_path):
        path = tmp_path / "runs.xlsx"
        pd.DataFrame({
            "STAGE_ID": ["print"],
            "QTY_GOOD": [1000],
            "AT": ["2026-03-02T09:00:00Z"],
        }).to_excel(path, index=False)

        runs = load_production_runs(path)

        assert runs[0].stage_id == "print"
        assert runs[0].at == at(2, 9)

    def test_history_from_csv(self, tmp_path):
        path = tmp_path / "history.csv"
        path.write_text(
            "previous_stage_id,new_stage_id,at\n"
            ",print,2026-03-01T08:00:00Z\n"
            "print,diecut,2026-03-03T08:00:00Z\n"
        )

        events = load_stage_history(path)

        assert events[0].previous_stage_id is None
        assert events[0].new_stage_id == "print"
        assert events[1].at == at(3)
        assert all(e.is_stage_change for e in events)

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "runs.csv"
        path.write_text("stage_id,at\nprint,2026-03-02T09:00:00Z\n")

        with pytest.raises(ValidationError) as exc_info:
            load_production_runs(path)

        assert "QTY_GOOD" in exc_info.value.reason

    def test_bad_row_reports_row_number(self, tmp_path):
        path = tmp_path / "runs.csv"
        path.write_text("stage_id,qty_good,at\nprint,10,2026-03-02T09:00:00Z\n,5,2026-03-02T10:00:00Z\n")

        with pytest.raises(ValidationError) as exc_info:
            load_production_runs(path)

        assert exc_info.value.row == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileLoadError):
            load_stage_history(tmp_path / "history.csv")

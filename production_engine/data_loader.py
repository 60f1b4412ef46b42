# Job, workflow, production-run and history records for the production engine.
# Version: 1.0.0
# Parses document-store records and CSV/Excel exports into immutable snapshots.

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import pandas as pd

from .constants import STAGE_CHANGE_EVENT, JobStatus, Unit
from .errors import FileLoadError, ValidationError


# Statuses in which a job has no active stage
INACTIVE_STATUSES: frozenset[str] = frozenset({"draft", "done", "cancelled"})

# Epoch values above this are treated as milliseconds
_EPOCH_MILLIS_CUTOFF = 1e11


def clamp_quantity(value: Any) -> float:
    """Coerce a quantity to a finite, non-negative number.

    None, NaN, infinities, negatives and non-numeric values all become 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0
    return int(number) if number.is_integer() else number


def safe_divisor(value: Any) -> int:
    """Coerce a per-pack count to an integer divisor of at least 1.

    Fractional values truncate; missing or invalid values default to 1.
    """
    number = clamp_quantity(value)
    return max(1, int(number))


def optional_positive(value: Any) -> float | None:
    """Return the value as a number when it is > 0, else None."""
    number = clamp_quantity(value)
    return number if number > 0 else None


def as_utc(value: datetime | None) -> datetime | None:
    """Return a datetime with naive values interpreted as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Any, field_name: str = "at") -> datetime | None:
    """Parse a timestamp in any of the shapes the document store produces.

    Accepts datetime objects, pandas Timestamps, ISO strings, epoch seconds
    (or milliseconds), and ``{"seconds": n}`` mappings. Naive results are
    interpreted as UTC.

    Args:
        value: Value to parse.
        field_name: Field name for error messages.

    Returns:
        Timezone-aware datetime, or None for empty values.

    Raises:
        ValidationError: If a non-empty value cannot be parsed.
    """
    if value is None or value is pd.NaT:
        return None

    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            raise ValidationError(field=field_name, value=value, reason="Timestamp mapping needs 'seconds'")
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        try:
            return datetime.fromtimestamp(float(seconds) + float(nanos) / 1e9, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            raise ValidationError(field=field_name, value=value, reason="Timestamp mapping holds no valid epoch")

    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return None
        parsed = value.to_pydatetime()
    elif isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if math.isnan(value):
            return None
        seconds = value / 1000 if abs(value) > _EPOCH_MILLIS_CUTOFF else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            raise ValidationError(field=field_name, value=value, reason="Epoch value out of range")
    elif isinstance(value, str):
        if not value.strip():
            return None
        try:
            parsed = pd.Timestamp(value.strip()).to_pydatetime()
        except (ValueError, TypeError):
            raise ValidationError(field=field_name, value=value, reason="Cannot parse as timestamp")
    else:
        raise ValidationError(field=field_name, value=value, reason="Unsupported timestamp type")

    return as_utc(parsed)


@dataclass(frozen=True)
class PackagingConfig:
    """Packaging settings of a job.

    Attributes:
        pcs_per_box: Pieces in one outer.
        boxes_per_pallet: Outers on one pallet.
        planned_pallets: Optional operator override of the pallet count.
        planned_boxes: Box count stored when the job was created.
    """
    pcs_per_box: float | None = None
    boxes_per_pallet: float | None = None
    planned_pallets: float | None = None
    planned_boxes: float | None = None


@dataclass(frozen=True)
class Dimensions:
    """Width/length pair in millimetres."""
    width: float | None = None
    length: float | None = None


@dataclass(frozen=True)
class ProductionSpecs:
    """Sheet layout specs of a job.

    Attributes:
        sheet: Printed sheet size.
        cut_to: Size each sheet is cut to before die cutting.
        forme: Cutting forme size.
        number_up: Product units laid out per sheet (operator entered).
        overs_pct: Customer overs allowance in percent.
        sheet_wastage: Additional sheets reserved for wastage.
    """
    sheet: Dimensions = field(default_factory=Dimensions)
    cut_to: Dimensions = field(default_factory=Dimensions)
    forme: Dimensions = field(default_factory=Dimensions)
    number_up: float | None = None
    overs_pct: float = 0
    sheet_wastage: float = 0


@dataclass(frozen=True)
class BomLine:
    """A bill-of-materials line."""
    sku: str = ""
    name: str = ""
    uom: str = ""
    qty_required: float = 0


@dataclass(frozen=True)
class OutputLine:
    """A planned/produced output record of a job."""
    sku: str = ""
    name: str = ""
    uom: str = ""
    qty_planned: float = 0
    qty_produced: float = 0


@dataclass(frozen=True)
class Stage:
    """A workflow stage definition.

    Attributes:
        stage_id: Unique stage identifier.
        name: Display name.
        input_uom: Unit the stage consumes.
        output_uom: Unit the stage produces (and runs are recorded in).
        order: Position within the workflow definition.
    """
    stage_id: str
    name: str = ""
    input_uom: str = ""
    output_uom: str = ""
    order: int = 0


@dataclass(frozen=True)
class Workflow:
    """An ordered list of stage definitions."""
    workflow_id: str = ""
    name: str = ""
    stages: tuple[Stage, ...] = ()

    def get_stage(self, stage_id: str | None) -> Stage | None:
        """Find a stage by ID.

        Args:
            stage_id: Stage identifier to find.

        Returns:
            Stage if found, None otherwise.
        """
        if not stage_id:
            return None
        for stage in self.stages:
            if stage.stage_id == stage_id:
                return stage
        return None

    def stage_name(self, stage_id: str) -> str:
        """Display name for a stage, falling back to its ID."""
        stage = self.get_stage(stage_id)
        return stage.name if stage and stage.name else stage_id


@dataclass(frozen=True)
class ProductionRun:
    """A production run recorded against a stage.

    Attributes:
        stage_id: Stage the run was recorded for.
        qty_good: Good output in the stage's output UOM.
        at: When the run was recorded.
        run_id: Run identifier.
        qty_scrap: Scrapped output.
        transfer_source_run_ids: Runs this WIP transfer moved output from.
    """
    stage_id: str
    qty_good: float = 0
    at: datetime | None = None
    run_id: str = ""
    qty_scrap: float = 0
    transfer_source_run_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "at", as_utc(self.at))

    @property
    def is_transfer(self) -> bool:
        """Check if this run is a WIP transfer rather than production."""
        return len(self.transfer_source_run_ids) > 0


@dataclass(frozen=True)
class HistoryEvent:
    """A job history event; stage_change events drive the stage timeline.

    Attributes:
        previous_stage_id: Stage the job left.
        new_stage_id: Stage the job entered.
        at: When the move was recorded.
        previous_stage_threshold_met_at: When the left stage met its threshold, if captured.
        type: Event type.
    """
    previous_stage_id: str | None
    new_stage_id: str | None
    at: datetime
    previous_stage_threshold_met_at: datetime | None = None
    type: str = STAGE_CHANGE_EVENT

    def __post_init__(self) -> None:
        """Interpret naive timestamps as UTC so events sort against parsed ones."""
        object.__setattr__(self, "at", as_utc(self.at))
        object.__setattr__(
            self, "previous_stage_threshold_met_at", as_utc(self.previous_stage_threshold_met_at)
        )

    @property
    def is_stage_change(self) -> bool:
        """Check if this event records a stage move."""
        return self.type == STAGE_CHANGE_EVENT


@dataclass(frozen=True)
class Job:
    """Represents a production job as supplied by the collaborator layer.

    Attributes:
        job_id: Job identifier.
        quantity: Requested quantity in ``unit``.
        unit: pcs, box, units or pallets.
        packaging: Packaging configuration.
        workflow_id: Workflow the job follows.
        planned_stage_ids: Ordered stages the job will pass through.
        current_stage_id: Stage the job currently sits in.
        bom: Bill-of-materials lines.
        output: Planned/produced output records.
        production_specs: Sheet layout specs.
        status: Job lifecycle status.
        updated_at: Last update timestamp.
        qa_accepted_at: QA acceptance timestamp.
        customer_accepted_at: Customer acceptance timestamp.
    """
    job_id: str = ""
    quantity: float = 0
    unit: Unit = "pcs"
    packaging: PackagingConfig = field(default_factory=PackagingConfig)
    workflow_id: str = ""
    planned_stage_ids: tuple[str, ...] = ()
    current_stage_id: str | None = None
    bom: tuple[BomLine, ...] = ()
    output: tuple[OutputLine, ...] = ()
    production_specs: ProductionSpecs = field(default_factory=ProductionSpecs)
    status: JobStatus = "active"
    updated_at: datetime | None = None
    qa_accepted_at: datetime | None = None
    customer_accepted_at: datetime | None = None

    def __post_init__(self) -> None:
        for name in ("updated_at", "qa_accepted_at", "customer_accepted_at"):
            object.__setattr__(self, name, as_utc(getattr(self, name)))

    @property
    def is_done(self) -> bool:
        """Check if the job is finished."""
        return self.status == "done"

    @property
    def is_active(self) -> bool:
        """Check if the job has a live current stage."""
        return self.status not in INACTIVE_STATUSES

    @property
    def finished_at(self) -> datetime | None:
        """Completion timestamp of a done job.

        Prefers ``updated_at``, then customer and QA acceptance dates.
        """
        if not self.is_done:
            return None
        return self.updated_at or self.customer_accepted_at or self.qa_accepted_at

    def previous_stage_id(self, stage_id: str) -> str | None:
        """Planned predecessor of a stage, or None for the first/unknown stage."""
        if stage_id not in self.planned_stage_ids:
            return None
        index = self.planned_stage_ids.index(stage_id)
        return self.planned_stage_ids[index - 1] if index > 0 else None

    def next_stage_id(self, stage_id: str) -> str | None:
        """Planned successor of a stage, or None for the last/unknown stage."""
        if stage_id not in self.planned_stage_ids:
            return None
        index = self.planned_stage_ids.index(stage_id)
        if index + 1 < len(self.planned_stage_ids):
            return self.planned_stage_ids[index + 1]
        return None


# ============ DOCUMENT PARSERS ============

def _get(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key, accepting camelCase and snake_case spellings."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _optional_number(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return int(number) if number.is_integer() else number


def _required_number(value: Any, field_name: str, row: int | None = None) -> float:
    number = _optional_number(value)
    if number is None:
        raise ValidationError(field=field_name, value=value, reason="Must be a number", row=row)
    return number


def _dimensions_from_dict(data: Mapping[str, Any] | None) -> Dimensions:
    data = data or {}
    return Dimensions(
        width=_optional_number(_get(data, "width")),
        length=_optional_number(_get(data, "length")),
    )


def packaging_from_dict(data: Mapping[str, Any] | None) -> PackagingConfig:
    """Parse a packaging mapping (camelCase or snake_case)."""
    data = data or {}
    return PackagingConfig(
        pcs_per_box=_optional_number(_get(data, "pcsPerBox", "pcs_per_box")),
        boxes_per_pallet=_optional_number(_get(data, "boxesPerPallet", "boxes_per_pallet")),
        planned_pallets=_optional_number(_get(data, "plannedPallets", "planned_pallets")),
        planned_boxes=_optional_number(_get(data, "plannedBoxes", "planned_boxes")),
    )


def production_specs_from_dict(data: Mapping[str, Any] | None) -> ProductionSpecs:
    """Parse a productionSpecs mapping."""
    data = data or {}
    return ProductionSpecs(
        sheet=_dimensions_from_dict(_get(data, "sheet")),
        cut_to=_dimensions_from_dict(_get(data, "cutTo", "cut_to")),
        forme=_dimensions_from_dict(_get(data, "forme")),
        number_up=_optional_number(_get(data, "numberUp", "number_up")),
        overs_pct=_optional_number(_get(data, "oversPct", "overs_pct")) or 0,
        sheet_wastage=_optional_number(_get(data, "sheetWastage", "sheet_wastage")) or 0,
    )


def job_from_dict(data: Mapping[str, Any]) -> Job:
    """Parse a job document into a Job snapshot.

    Args:
        data: Job document as stored by the collaborator layer.

    Returns:
        Parsed Job.

    Raises:
        ValidationError: If planned stages are not a list or timestamps are malformed.
    """
    planned = _get(data, "plannedStageIds", "planned_stage_ids", default=[])
    if not isinstance(planned, (list, tuple)):
        raise ValidationError(field="plannedStageIds", value=planned, reason="Must be a list of stage IDs")

    bom = tuple(
        BomLine(
            sku=str(_get(item, "sku", default="")),
            name=str(_get(item, "name", default="")),
            uom=str(_get(item, "uom", default="")),
            qty_required=_optional_number(_get(item, "qtyRequired", "qty_required")) or 0,
        )
        for item in (_get(data, "bom", default=[]) or [])
    )
    output = tuple(
        OutputLine(
            sku=str(_get(item, "sku", default="")),
            name=str(_get(item, "name", default="")),
            uom=str(_get(item, "uom", default="")),
            qty_planned=_optional_number(_get(item, "qtyPlanned", "qty_planned")) or 0,
            qty_produced=_optional_number(_get(item, "qtyProduced", "qty_produced")) or 0,
        )
        for item in (_get(data, "output", default=[]) or [])
    )

    current = _get(data, "currentStageId", "current_stage_id")
    return Job(
        job_id=str(_get(data, "id", "jobId", "job_id", default="")),
        quantity=_optional_number(_get(data, "quantity")) or 0,
        unit=str(_get(data, "unit", default="pcs")).strip().lower() or "pcs",
        packaging=packaging_from_dict(_get(data, "packaging")),
        workflow_id=str(_get(data, "workflowId", "workflow_id", default="")),
        planned_stage_ids=tuple(str(s) for s in planned),
        current_stage_id=str(current) if current else None,
        bom=bom,
        output=output,
        production_specs=production_specs_from_dict(_get(data, "productionSpecs", "production_specs")),
        status=str(_get(data, "status", default="active")),
        updated_at=parse_timestamp(_get(data, "updatedAt", "updated_at"), "updatedAt"),
        qa_accepted_at=parse_timestamp(_get(data, "qaAcceptedAt", "qa_accepted_at"), "qaAcceptedAt"),
        customer_accepted_at=parse_timestamp(
            _get(data, "customerAcceptedAt", "customer_accepted_at"), "customerAcceptedAt"
        ),
    )


def workflow_from_dict(data: Mapping[str, Any]) -> Workflow:
    """Parse a workflow document with its stage definitions."""
    stages = []
    for idx, s in enumerate(_get(data, "stages", default=[]) or []):
        stage_id = _get(s, "id", "stageId", "stage_id")
        if not stage_id:
            raise ValidationError(field="stages.id", value=stage_id, reason="Stage ID cannot be empty", row=idx + 1)
        stages.append(Stage(
            stage_id=str(stage_id),
            name=str(_get(s, "name", default="")),
            input_uom=str(_get(s, "inputUOM", "input_uom", default="")),
            output_uom=str(_get(s, "outputUOM", "output_uom", default="")),
            order=int(_optional_number(_get(s, "order")) or idx),
        ))
    return Workflow(
        workflow_id=str(_get(data, "id", "workflowId", "workflow_id", default="")),
        name=str(_get(data, "name", default="")),
        stages=tuple(stages),
    )


def run_from_dict(data: Mapping[str, Any], row: int | None = None) -> ProductionRun:
    """Parse a production run document.

    Raises:
        ValidationError: If the stage ID is missing or qtyGood is not numeric.
    """
    stage_id = _get(data, "stageId", "stage_id")
    if not stage_id:
        raise ValidationError(field="stageId", value=stage_id, reason="Run must reference a stage", row=row)

    transfers = _get(data, "transferSourceRunIds", "transfer_source_run_ids", default=()) or ()
    if isinstance(transfers, str):
        transfers = [t for t in transfers.split(";") if t.strip()]

    return ProductionRun(
        stage_id=str(stage_id),
        qty_good=_required_number(_get(data, "qtyGood", "qty_good", default=0), "qtyGood", row),
        at=parse_timestamp(_get(data, "at"), "at"),
        run_id=str(_get(data, "id", "runId", "run_id", default="")),
        qty_scrap=_optional_number(_get(data, "qtyScrap", "qty_scrap")) or 0,
        transfer_source_run_ids=tuple(str(t).strip() for t in transfers),
    )


def event_from_dict(data: Mapping[str, Any], row: int | None = None) -> HistoryEvent:
    """Parse a history event; stage fields may sit in a ``payload`` mapping.

    Raises:
        ValidationError: If the event has no timestamp.
    """
    payload = _get(data, "payload", default={}) or {}
    merged = {**payload, **{k: v for k, v in data.items() if k != "payload"}}

    at = parse_timestamp(_get(merged, "at"), "at")
    if at is None:
        raise ValidationError(field="at", value=None, reason="History event needs a timestamp", row=row)

    previous = _get(merged, "previousStageId", "previous_stage_id")
    new = _get(merged, "newStageId", "new_stage_id")
    return HistoryEvent(
        previous_stage_id=str(previous) if previous else None,
        new_stage_id=str(new) if new else None,
        at=at,
        previous_stage_threshold_met_at=parse_timestamp(
            _get(merged, "previousStageThresholdMetAt", "previous_stage_threshold_met_at"),
            "previousStageThresholdMetAt",
        ),
        type=str(_get(merged, "type", default=STAGE_CHANGE_EVENT)),
    )


# ============ FILE LOADERS ============

def _read_table(filepath: str | Path) -> pd.DataFrame:
    """Read a CSV or Excel export into a DataFrame with upper-cased columns."""
    filepath = Path(filepath)
    try:
        if filepath.suffix.lower() in (".xlsx", ".xls"):
            df = pd.read_excel(filepath)
        else:
            df = pd.read_csv(filepath)
    except FileNotFoundError as e:
        raise FileLoadError(str(filepath), e)
    except Exception as e:
        raise FileLoadError(str(filepath), e)

    df.columns = [str(c).strip().upper() for c in df.columns]
    return df


def _require_columns(df: pd.DataFrame, required: set[str]) -> None:
    missing_columns = required - set(df.columns)
    if missing_columns:
        raise ValidationError(
            field="columns",
            value=list(df.columns),
            reason=f"Missing required columns: {', '.join(sorted(missing_columns))}"
        )


def _cell(row: pd.Series, column: str) -> Any:
    if column not in row.index:
        return None
    value = row[column]
    return None if pd.isna(value) else value


def load_production_runs(filepath: str | Path) -> list[ProductionRun]:
    """Load production runs from a CSV or Excel export.

    Required columns: STAGE_ID, QTY_GOOD, AT. Optional: RUN_ID, QTY_SCRAP,
    TRANSFER_SOURCE_RUN_IDS (semicolon separated).

    Args:
        filepath: Path to the export.

    Returns:
        Runs in file order.

    Raises:
        FileLoadError: If file cannot be read.
        ValidationError: If required columns are missing or a row is invalid.
    """
    df = _read_table(filepath)
    _require_columns(df, {"STAGE_ID", "QTY_GOOD", "AT"})

    runs = []
    for idx, row in df.iterrows():
        row_num = idx + 2  # 1-indexed, plus header
        runs.append(run_from_dict({
            "stage_id": _cell(row, "STAGE_ID"),
            "qty_good": _cell(row, "QTY_GOOD"),
            "at": _cell(row, "AT"),
            "run_id": _cell(row, "RUN_ID"),
            "qty_scrap": _cell(row, "QTY_SCRAP"),
            "transfer_source_run_ids": _cell(row, "TRANSFER_SOURCE_RUN_IDS"),
        }, row=row_num))
    return runs


def load_stage_history(filepath: str | Path) -> list[HistoryEvent]:
    """Load stage-change history from a CSV or Excel export.

    Required columns: PREVIOUS_STAGE_ID, NEW_STAGE_ID, AT. Optional: TYPE,
    PREVIOUS_STAGE_THRESHOLD_MET_AT.

    Raises:
        FileLoadError: If file cannot be read.
        ValidationError: If required columns are missing or a row is invalid.
    """
    df = _read_table(filepath)
    _require_columns(df, {"PREVIOUS_STAGE_ID", "NEW_STAGE_ID", "AT"})

    events = []
    for idx, row in df.iterrows():
        row_num = idx + 2
        events.append(event_from_dict({
            "previous_stage_id": _cell(row, "PREVIOUS_STAGE_ID"),
            "new_stage_id": _cell(row, "NEW_STAGE_ID"),
            "at": _cell(row, "AT"),
            "previous_stage_threshold_met_at": _cell(row, "PREVIOUS_STAGE_THRESHOLD_MET_AT"),
            "type": _cell(row, "TYPE"),
        }, row=row_num))
    return events

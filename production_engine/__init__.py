# Production Progress Engine - Core Package
# Version: 1.0.0

"""
Production progress and packing calculation engine for printing and
packaging jobs.

Plans outers, pallets and sheets for a job, resolves each workflow stage's
planned quantity across unit-of-measure changes, decides when a stage has
met its completion threshold, and reconstructs stage start/finish times
from stage-change history and production runs.
"""

__version__ = "1.0.0"

from .errors import (
    ProductionEngineError,
    ValidationError,
    ConfigurationError,
    FileLoadError,
    UnknownConversionError,
)

from .constants import (
    EngineConstants,
    ConversionRule,
    DEFAULT_CONSTANTS,
    load_constants_from_yaml,
    load_engine_constants,
    save_constants_to_yaml,
)

from .data_loader import (
    Job,
    Workflow,
    Stage,
    ProductionRun,
    HistoryEvent,
    PackagingConfig,
    ProductionSpecs,
    job_from_dict,
    workflow_from_dict,
    run_from_dict,
    event_from_dict,
    load_production_runs,
    load_stage_history,
)

from .packing import (
    PackingPlan,
    plan_packing,
    plan_packing_for_job,
)

from .sheet_layout import (
    SheetLayoutPlan,
    plan_sheet_layout,
    plan_sheet_layout_for_job,
)

from .uom import (
    ConversionRegistry,
    ConversionResult,
    default_registry,
)

from .stage_quantity import (
    StageQuantity,
    resolve_stage_quantity,
    resolve_stage_quantity_detail,
)

from .threshold import (
    ThresholdResult,
    evaluate_threshold,
    find_threshold_met_at,
)

from .timeline import (
    StageTimelineRow,
    reconstruct_stage_timeline,
)

from .progress import (
    StageProgress,
    JobProgress,
    StuckJob,
    calculate_stage_progress,
    calculate_job_progress,
    summarize_workflow_path,
    summarize_current_stage,
    detect_stuck_job,
    detect_stuck_jobs,
)

from .validator import (
    ValidationResult,
    ValidationWarning,
    validate_job,
)

from .report_generator import (
    generate_timeline_report,
    generate_packing_report,
    export_to_json,
)

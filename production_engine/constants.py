# Load and structure engine constants from YAML config file.
# Version: 1.0.0
# Provides tolerance bands, sheet buffers, UOM aliases and conversion rules.

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml

from .errors import ConfigurationError, FileLoadError


logger = logging.getLogger(__name__)

# Type aliases for clarity
Unit = Literal["pcs", "box", "units", "pallets"]
JobStatus = Literal["draft", "released", "active", "paused", "blocked", "done", "cancelled"]
ConversionOperation = Literal["identity", "multiply_number_up", "divide_number_up"]

# Valid job quantity units
VALID_UNITS: frozenset[str] = frozenset({"pcs", "box", "units", "pallets"})

# Units where the job quantity counts boxes rather than pieces
BOX_UNITS: frozenset[str] = frozenset({"box", "units"})

# Valid conversion operations
VALID_OPERATIONS: frozenset[str] = frozenset({"identity", "multiply_number_up", "divide_number_up"})

# Canonical unit tokens used by workflows
SHEETS_UOM = "sheets"
CARTOON_UOM = "cartoon"

# History event type that records a stage move
STAGE_CHANGE_EVENT = "stage_change"

# Label of the synthetic trailing timeline row
JOB_FINISHED_LABEL = "Job Finished"

# Fixed tolerance band around planned quantity (expected press scrap)
WASTAGE_THRESHOLD_LOWER = 400
WASTAGE_THRESHOLD_UPPER = 500

# Press makeready allowance: 5% production buffer plus a 400 sheet floor
SHEET_BUFFER_PCT = 5.0
SHEET_BUFFER_SHEETS = 400


@dataclass(frozen=True)
class ConversionRule:
    """A registered unit-of-measure conversion.

    Attributes:
        from_uom: Canonical source unit.
        to_uom: Canonical target unit.
        operation: How numberUp relates the two units.
    """
    from_uom: str
    to_uom: str
    operation: ConversionOperation


DEFAULT_UOM_ALIASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    (SHEETS_UOM, ("sht", "sheet", "sheets")),
    (CARTOON_UOM, ("cartoon",)),
)

DEFAULT_CONVERSIONS: tuple[ConversionRule, ...] = (
    ConversionRule(SHEETS_UOM, CARTOON_UOM, "multiply_number_up"),
    ConversionRule(CARTOON_UOM, SHEETS_UOM, "divide_number_up"),
)


@dataclass(frozen=True)
class EngineConstants:
    """Container for all engine constants loaded from YAML.

    Attributes:
        wastage_threshold_lower: Units below planned still counted as complete.
        wastage_threshold_upper: Units above planned still counted as complete.
        sheet_buffer_pct: Percentage production buffer added to required sheets.
        sheet_buffer_sheets: Fixed makeready sheets added after the percentage buffer.
        exclude_transfer_runs: Whether WIP transfer runs are left out of produced totals.
        uom_aliases: (canonical unit, raw tokens) pairs; a mapping is accepted
            and stored as pairs so the constants stay hashable.
        conversions: Registered conversion rules between canonical units.
    """
    wastage_threshold_lower: float = WASTAGE_THRESHOLD_LOWER
    wastage_threshold_upper: float = WASTAGE_THRESHOLD_UPPER
    sheet_buffer_pct: float = SHEET_BUFFER_PCT
    sheet_buffer_sheets: int = SHEET_BUFFER_SHEETS
    exclude_transfer_runs: bool = True
    uom_aliases: tuple[tuple[str, tuple[str, ...]], ...] = DEFAULT_UOM_ALIASES
    conversions: tuple[ConversionRule, ...] = DEFAULT_CONVERSIONS

    def __post_init__(self) -> None:
        aliases = self.uom_aliases
        if isinstance(aliases, Mapping):
            aliases = aliases.items()
        object.__setattr__(self, "uom_aliases", tuple(
            (str(canonical), tuple(tokens)) for canonical, tokens in aliases
        ))
        object.__setattr__(self, "conversions", tuple(self.conversions))

    @property
    def sheet_buffer_factor(self) -> float:
        """Multiplier applied to base required sheets (1.05 for 5%)."""
        return 1 + self.sheet_buffer_pct / 100

    def canonical_uom(self, token: str | None) -> str:
        """Map a raw unit token to its canonical name.

        Args:
            token: Unit token as stored on a stage or BOM line.

        Returns:
            Canonical unit name, or the lower-cased token when no alias matches.
        """
        raw = str(token or "").strip().lower()
        for canonical, aliases in self.uom_aliases:
            if raw == canonical or raw in aliases:
                return canonical
        return raw


DEFAULT_CONSTANTS = EngineConstants()


def load_constants_from_yaml(yaml_path: str | Path) -> EngineConstants:
    """Load engine constants from YAML file.

    Args:
        yaml_path: Path to the YAML config file.

    Returns:
        EngineConstants object with all loaded data.

    Raises:
        FileLoadError: If file cannot be read.
        ConfigurationError: If file format is invalid.
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise FileLoadError(str(yaml_path), FileNotFoundError("Config file not found"))

    try:
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise FileLoadError(str(yaml_path), e)

    if not isinstance(data, dict):
        raise ConfigurationError(yaml_path.name, "Top level must be a mapping")

    constants = constants_from_dict(data, source=yaml_path.name)
    logger.info(
        "Loaded engine constants from %s (band -%s/+%s, %d conversions)",
        yaml_path, constants.wastage_threshold_lower,
        constants.wastage_threshold_upper, len(constants.conversions),
    )
    return constants


def constants_from_dict(data: dict[str, Any], source: str = "constants") -> EngineConstants:
    """Build EngineConstants from a parsed mapping, applying defaults.

    Args:
        data: Mapping as produced by yaml.safe_load.
        source: Name used in configuration error messages.

    Returns:
        EngineConstants object.

    Raises:
        ConfigurationError: If any value is malformed.
    """
    thresholds = data.get('thresholds', {}) or {}
    sheets = data.get('sheet_buffer', {}) or {}

    lower = _non_negative(thresholds.get('lower', WASTAGE_THRESHOLD_LOWER), 'thresholds.lower', source)
    upper = _non_negative(thresholds.get('upper', WASTAGE_THRESHOLD_UPPER), 'thresholds.upper', source)
    buffer_pct = _non_negative(sheets.get('percent', SHEET_BUFFER_PCT), 'sheet_buffer.percent', source)
    buffer_sheets = _non_negative(sheets.get('sheets', SHEET_BUFFER_SHEETS), 'sheet_buffer.sheets', source)

    exclude_transfers = data.get('exclude_transfer_runs', True)
    if not isinstance(exclude_transfers, bool):
        raise ConfigurationError(source, f"exclude_transfer_runs must be true/false, got {exclude_transfers!r}")

    # Parse UOM aliases - canonical name -> list of tokens
    uom_aliases = dict(DEFAULT_CONSTANTS.uom_aliases)
    for canonical, aliases in (data.get('uom_aliases') or {}).items():
        if isinstance(aliases, str):
            aliases = [aliases]
        if not isinstance(aliases, (list, tuple)):
            raise ConfigurationError(source, f"uom_aliases.{canonical} must be a list of tokens")
        uom_aliases[str(canonical).strip().lower()] = tuple(
            str(a).strip().lower() for a in aliases
        )

    # Parse conversions
    if 'conversions' in data:
        conversions = []
        for idx, c in enumerate(data.get('conversions') or []):
            try:
                from_uom = str(c['from']).strip().lower()
                to_uom = str(c['to']).strip().lower()
                operation = str(c['operation']).strip().lower()
            except (KeyError, TypeError):
                raise ConfigurationError(source, f"conversions[{idx}] needs from, to and operation")
            if operation not in VALID_OPERATIONS:
                raise ConfigurationError(
                    source,
                    f"conversions[{idx}] has unknown operation '{operation}'. "
                    f"Valid: {', '.join(sorted(VALID_OPERATIONS))}"
                )
            conversions.append(ConversionRule(from_uom, to_uom, operation))
        conversion_rules = tuple(conversions)
    else:
        conversion_rules = DEFAULT_CONVERSIONS

    return EngineConstants(
        wastage_threshold_lower=lower,
        wastage_threshold_upper=upper,
        sheet_buffer_pct=buffer_pct,
        sheet_buffer_sheets=int(buffer_sheets),
        exclude_transfer_runs=exclude_transfers,
        uom_aliases=uom_aliases,
        conversions=conversion_rules,
    )


def constants_to_dict(constants: EngineConstants) -> dict[str, Any]:
    """Mapping in the constants.yaml layout, as read back by constants_from_dict."""
    return {
        'thresholds': {
            'lower': constants.wastage_threshold_lower,
            'upper': constants.wastage_threshold_upper,
        },
        'sheet_buffer': {
            'percent': constants.sheet_buffer_pct,
            'sheets': constants.sheet_buffer_sheets,
        },
        'exclude_transfer_runs': constants.exclude_transfer_runs,
        'uom_aliases': {
            canonical: list(aliases) for canonical, aliases in constants.uom_aliases
        },
        'conversions': [
            {'from': c.from_uom, 'to': c.to_uom, 'operation': c.operation}
            for c in constants.conversions
        ],
    }


def save_constants_to_yaml(constants: EngineConstants, yaml_path: str | Path) -> None:
    """Save engine constants to YAML file.

    Args:
        constants: EngineConstants object to save.
        yaml_path: Path to save the YAML config file.
    """
    data = constants_to_dict(constants)
    yaml_path = Path(yaml_path)
    with open(yaml_path, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def load_engine_constants(path: str | Path | None = None) -> EngineConstants:
    """Load engine constants, falling back to the built-in defaults.

    Args:
        path: Optional path to a YAML config file.

    Returns:
        EngineConstants from the file, or DEFAULT_CONSTANTS when no path is given.
    """
    if path is None:
        return DEFAULT_CONSTANTS
    return load_constants_from_yaml(path)


def _non_negative(value: Any, key: str, source: str) -> float:
    """Coerce a config value to a finite, non-negative number."""
    if isinstance(value, bool):
        raise ConfigurationError(source, f"{key} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(source, f"{key} must be a number, got {value!r}")
    if math.isnan(number) or math.isinf(number) or number < 0:
        raise ConfigurationError(source, f"{key} must be a non-negative number, got {value!r}")
    return number

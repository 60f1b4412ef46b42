from pathlib import Path

import pytest
import yaml

from production_engine.constants import (
    DEFAULT_CONSTANTS,
    ConversionRule,
    EngineConstants,
    constants_from_dict,
    load_constants_from_yaml,
    load_engine_constants,
    save_constants_to_yaml,
)
from production_engine.errors import ConfigurationError, FileLoadError


REPO_CONFIG = Path(__file__).resolve().parents[1] / "config" / "constants.yaml"


def write_yaml(tmp_path, data) -> Path:
    path = tmp_path / "constants.yaml"
    path.write_text(yaml.dump(data))
    return path


def test_defaults():
    assert DEFAULT_CONSTANTS.wastage_threshold_lower == 400
    assert DEFAULT_CONSTANTS.wastage_threshold_upper == 500
    assert DEFAULT_CONSTANTS.sheet_buffer_factor == pytest.approx(1.05)
    assert DEFAULT_CONSTANTS.sheet_buffer_sheets == 400
    assert DEFAULT_CONSTANTS.exclude_transfer_runs
    assert load_engine_constants() is DEFAULT_CONSTANTS


def test_shipped_config_matches_defaults():
    assert load_constants_from_yaml(REPO_CONFIG) == DEFAULT_CONSTANTS


def test_save_then_load(tmp_path):
    constants = EngineConstants(
        wastage_threshold_lower=250,
        wastage_threshold_upper=300,
        sheet_buffer_pct=3,
        sheet_buffer_sheets=150,
        exclude_transfer_runs=False,
        uom_aliases={"sheets": ("sht", "sheets"), "cartoon": ("cartoon", "ctn")},
        conversions=(ConversionRule("sheets", "cartoon", "multiply_number_up"),),
    )
    path = tmp_path / "constants.yaml"

    save_constants_to_yaml(constants, path)

    assert load_engine_constants(path) == constants


def test_missing_keys_take_defaults(tmp_path):
    path = write_yaml(tmp_path, {"thresholds": {"lower": 100}})

    constants = load_constants_from_yaml(path)

    assert constants.wastage_threshold_lower == 100
    assert constants.wastage_threshold_upper == 500
    assert constants.conversions == DEFAULT_CONSTANTS.conversions


def test_constants_are_hashable():
    custom = EngineConstants(uom_aliases={"sheets": ["sht"], "cartoon": ["ctn"]})

    assert hash(DEFAULT_CONSTANTS) == hash(EngineConstants())
    assert {DEFAULT_CONSTANTS, custom} == {EngineConstants(), custom}
    assert custom.uom_aliases == (("sheets", ("sht",)), ("cartoon", ("ctn",)))
    assert custom.canonical_uom("CTN") == "cartoon"


def test_extra_aliases_are_merged():
    constants = constants_from_dict({"uom_aliases": {"Litre": ["l", "ltr"]}})

    assert constants.canonical_uom("LTR") == "litre"
    assert constants.canonical_uom("sht") == "sheets"


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "constants.yaml"
    path.write_text("")

    assert load_constants_from_yaml(path) == DEFAULT_CONSTANTS


def test_missing_file(tmp_path):
    with pytest.raises(FileLoadError) as exc_info:
        load_constants_from_yaml(tmp_path / "nope.yaml")

    assert exc_info.value.details["cause_type"] == "FileNotFoundError"


@pytest.mark.parametrize("data, fragment", [
    ({"thresholds": {"lower": -5}}, "thresholds.lower"),
    ({"thresholds": {"upper": "lots"}}, "thresholds.upper"),
    ({"sheet_buffer": {"percent": True}}, "sheet_buffer.percent"),
    ({"exclude_transfer_runs": "yes"}, "exclude_transfer_runs"),
    ({"uom_aliases": {"sheets": 5}}, "uom_aliases.sheets"),
    ({"conversions": [{"from": "sheets", "to": "cartoon"}]}, "conversions[0]"),
    ({"conversions": [{"from": "sheets", "to": "cartoon", "operation": "square"}]}, "unknown operation"),
])
def test_malformed_values(tmp_path, data, fragment):
    path = write_yaml(tmp_path, data)

    with pytest.raises(ConfigurationError) as exc_info:
        load_constants_from_yaml(path)

    assert fragment in exc_info.value.issue


def test_top_level_must_be_mapping(tmp_path):
    path = tmp_path / "constants.yaml"
    path.write_text("- 1\n- 2\n")

    with pytest.raises(ConfigurationError):
        load_constants_from_yaml(path)

import pytest

from flux_intervals.ci_spec import IntervalSpec, from_dict, validate_probabilities
from flux_intervals.errors import ConfigurationError
from flux_intervals.utils import get_paths, load_config


@pytest.mark.parametrize("kwargs", [
    {"n_boot": 0},
    {"n_kalman": -1},
    {"n_boot": 2.5},
    {"rho": 1.0},
    {"rho": -0.2},
    {"probabilities": ()},
    {"probabilities": (0.0, 0.5)},
    {"probabilities": (0.5, 0.5)},
    {"resample": "wild"},
    {"block_length": 0},
    {"year_start_month": 13},
    {"workers": 0},
])
def test_invalid_settings_raise(kwargs):
    with pytest.raises(ConfigurationError):
        IntervalSpec(**kwargs).validate()


def test_defaults_are_valid():
    spec = IntervalSpec().validate()
    assert spec.n_columns == 100
    assert spec.probabilities == (0.05, 0.5, 0.95)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        validate_probabilities([0.9, 0.1])


def test_from_dict_accepts_camel_case_keys():
    spec = from_dict({"nBoot": 20, "nKalman": 5, "blockLength": 100, "rho": 0.8, "site": "A"})
    assert (spec.n_boot, spec.n_kalman, spec.block_length, spec.rho) == (20, 5, 100, 0.8)
    assert spec.extra == {"site": "A"}
    with pytest.raises(ConfigurationError):
        from_dict({"n_boot": 0})


def test_yaml_config_round_trip(tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        "paths:\n"
        "  daily_csv: data/q.csv\n"
        "intervals:\n"
        "  n_boot: 3\n"
        "  probabilities: [0.1, 0.5, 0.9]\n"
        "  ledger_path: out/ledger.jsonl\n",
        encoding="utf-8",
    )
    cfg = load_config(cfg_path)
    spec = from_dict(cfg["intervals"])
    assert spec.n_boot == 3 and spec.probabilities == (0.1, 0.5, 0.9)
    paths = get_paths(cfg)
    assert paths["daily_csv"] == (tmp_path / "data" / "q.csv").resolve()
    assert paths["sample_csv"] is None


@pytest.mark.parametrize("section", [
    {"probabilities": 0.5},
    {"probabilities": "0.05,0.95"},
    {"probabilities": [0.05, "high"]},
    {"jitter_v": "x"},
    {"flux_factor": "x"},
    {"rho": None},
    {"jitter": "maybe"},
    {"jitter": 2},
    {"seed": "abc"},
    {"n_boot": "10"},
])
def test_malformed_config_values_raise_configuration_error(section):
    with pytest.raises(ConfigurationError):
        from_dict(section)


def test_string_flags_are_parsed():
    assert from_dict({"jitter": "false"}).jitter is False
    assert from_dict({"jitter": "Yes"}).jitter is True


def test_non_boolean_jitter_is_rejected_on_direct_construction():
    with pytest.raises(ConfigurationError):
        IntervalSpec(jitter="false").validate()

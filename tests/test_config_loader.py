"""Tests for config loading and validation."""

from __future__ import annotations

import json

import pytest

from parkevo.configs.loader import ConfigLoader, ConfigurationError, build_config
from parkevo.main import DEFAULT_CONFIG_PATH


def test_load_json_config_with_defaults_and_extras(tmp_path) -> None:
    config_path = tmp_path / "config.json"
    payload = {
        "generation_size": 10,
        "batch_size": 4,
        "generation_lifetime": 17,
        "note": "demo",
    }
    config_path.write_text(json.dumps(payload), encoding="utf-8")

    config = ConfigLoader.load(config_path)

    assert config.generation_size == 10
    assert config.generation_lifetime == 17.0
    assert config.generation_lifetime_ms == 17000.0
    assert config.batch_size == 4
    assert config.mutation_probability == 0.04
    assert config.long_living_champions_percentage == 6.0
    assert config.genome_length == 180
    assert config.gene_alphabet == (0, 1)
    assert config.get("note") == "demo"
    assert config.to_dict()["note"] == "demo"


def test_load_yaml_config(tmp_path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "generation_size: 6\nbatch_size: 6\ngeneration_lifetime: 0.5\ngene_alphabet: [0, 1, 2, 2]\nseed: 3\n",
        encoding="utf-8",
    )

    config = ConfigLoader.load(config_path)

    assert config.batch_size == 6
    assert config.gene_alphabet == (0, 1, 2)
    assert config.seed == 3


def test_example_config_is_valid() -> None:
    config = ConfigLoader.load(DEFAULT_CONFIG_PATH)

    assert config.generation_size % config.batch_size == 0
    assert config.get("factory") == "elitist"


def test_invalid_config_missing_required_key(tmp_path) -> None:
    config_path = tmp_path / "invalid.json"
    config_path.write_text(json.dumps({"generation_size": 10, "batch_size": 2}), encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Missing required config keys"):
        ConfigLoader.load(config_path)


@pytest.mark.parametrize(
    "overrides",
    [
        {"generation_size": 0},
        {"batch_size": -1},
        {"generation_lifetime": 0},
        {"mutation_probability": 1.5},
        {"long_living_champions_percentage": 101},
        {"generation_size": "many"},
    ],
)
def test_invalid_values_are_rejected(overrides) -> None:
    payload = {"generation_size": 10, "batch_size": 2, "generation_lifetime": 1.0}
    payload.update(overrides)

    with pytest.raises(ConfigurationError):
        build_config(payload)


def test_unreadable_files_raise_configuration_error(tmp_path) -> None:
    broken = tmp_path / "broken.yaml"
    broken.write_text("generation_size: [1,\n", encoding="utf-8")
    unsupported = tmp_path / "config.toml"
    unsupported.write_text("generation_size = 1\n", encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]", encoding="utf-8")

    for path in (broken, unsupported, listing, tmp_path / "missing.json"):
        with pytest.raises(ConfigurationError):
            ConfigLoader.load(path)


def test_replace_validates_changes() -> None:
    config = build_config({"generation_size": 10, "batch_size": 2, "generation_lifetime": 1.0})

    assert config.replace(batch_size=5).batch_size == 5
    with pytest.raises(ConfigurationError):
        config.replace(batch_size=0)

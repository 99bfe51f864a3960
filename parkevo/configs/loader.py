"""Configuration loading and validation utilities for evolution runs."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml


DEFAULT_GENOME_LENGTH = 180

_REQUIRED_KEYS: tuple[str, ...] = (
    "generation_size",
    "batch_size",
    "generation_lifetime",
)

_OPTIONAL_DEFAULTS: dict[str, Any] = {
    "mutation_probability": 0.04,
    "long_living_champions_percentage": 6.0,
    "genome_length": DEFAULT_GENOME_LENGTH,
    "gene_alphabet": (0, 1),
    "performance_boost": False,
    "seed": 0,
    "generations": 10,
    "checkpoint_interval": 0,
}


class ConfigurationError(ValueError):
    """Raised when evolution hyperparameters cannot produce a valid run."""


@dataclass(frozen=True)
class EvolutionConfig:
    """Validated hyperparameters of one evolution run.

    ``generation_lifetime`` is the wall-clock window of every batch, in
    seconds, independent of how many cars the batch holds. Unknown keys are
    preserved in ``extras`` and reachable through ``get``.
    """

    generation_size: int
    batch_size: int
    generation_lifetime: float
    mutation_probability: float = 0.04
    long_living_champions_percentage: float = 6.0
    genome_length: int = DEFAULT_GENOME_LENGTH
    gene_alphabet: tuple[int, ...] = (0, 1)
    performance_boost: bool = False
    seed: int = 0
    generations: int = 10
    checkpoint_interval: int = 0
    extras: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Return a configuration value by key.

        Args:
            key: Configuration key name.
            default: Value to return if key does not exist.

        Returns:
            Value associated with ``key`` or ``default``.
        """
        if key != "extras" and hasattr(self, key):
            return getattr(self, key)
        return self.extras.get(key, default)

    @property
    def generation_lifetime_ms(self) -> float:
        return self.generation_lifetime * 1000.0

    def validate(self) -> "EvolutionConfig":
        """Raise ``ConfigurationError`` unless the hyperparameters are usable."""
        if self.generation_size <= 0:
            raise ConfigurationError("generation_size must be > 0")
        if self.batch_size <= 0:
            raise ConfigurationError("batch_size must be > 0")
        if self.generation_lifetime <= 0:
            raise ConfigurationError("generation_lifetime must be > 0")
        if not 0.0 <= self.mutation_probability <= 1.0:
            raise ConfigurationError("mutation_probability must be in [0.0, 1.0]")
        if not 0.0 <= self.long_living_champions_percentage <= 100.0:
            raise ConfigurationError("long_living_champions_percentage must be in [0, 100]")
        if self.genome_length <= 0:
            raise ConfigurationError("genome_length must be > 0")
        if len(set(self.gene_alphabet)) < 1:
            raise ConfigurationError("gene_alphabet must be non-empty")
        if self.generations < 0:
            raise ConfigurationError("generations must be >= 0")
        if self.checkpoint_interval < 0:
            raise ConfigurationError("checkpoint_interval must be >= 0")
        return self

    def replace(self, **changes: Any) -> "EvolutionConfig":
        """Return a validated copy with ``changes`` applied."""
        return dataclasses.replace(self, **changes).validate()

    def to_dict(self) -> dict[str, Any]:
        """Return a full dictionary view of the configuration."""
        payload = {
            "generation_size": self.generation_size,
            "batch_size": self.batch_size,
            "generation_lifetime": self.generation_lifetime,
            "mutation_probability": self.mutation_probability,
            "long_living_champions_percentage": self.long_living_champions_percentage,
            "genome_length": self.genome_length,
            "gene_alphabet": list(self.gene_alphabet),
            "performance_boost": self.performance_boost,
            "seed": self.seed,
            "generations": self.generations,
            "checkpoint_interval": self.checkpoint_interval,
        }
        payload.update(self.extras)
        return payload


class ConfigLoader:
    """Load and validate evolution configuration files (YAML or JSON)."""

    @staticmethod
    def load(path: str | Path) -> EvolutionConfig:
        """Load a single evolution config from ``path``.

        Args:
            path: Path to a YAML or JSON config file.

        Returns:
            A validated ``EvolutionConfig`` instance.
        """
        payload = _read_config_payload(path)
        if not isinstance(payload, Mapping):
            raise ConfigurationError("Config file must contain a mapping object.")
        return build_config(payload)


def _read_config_payload(path: str | Path) -> Any:
    """Read raw config payload from JSON or YAML file."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")
    suffix = config_path.suffix.lower()
    content = config_path.read_text(encoding="utf-8")

    try:
        if suffix == ".json":
            return json.loads(content)
        if suffix in {".yaml", ".yml"}:
            return yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Failed to parse config '{config_path}': {exc}") from exc

    raise ConfigurationError(f"Unsupported config extension: {suffix}")


def build_config(payload: Mapping[str, Any]) -> EvolutionConfig:
    """Validate raw mapping and build ``EvolutionConfig``."""
    missing = [key for key in _REQUIRED_KEYS if key not in payload]
    if missing:
        raise ConfigurationError(f"Missing required config keys: {', '.join(missing)}")

    merged = dict(_OPTIONAL_DEFAULTS)
    merged.update(payload)

    try:
        alphabet = tuple(int(allele) for allele in merged["gene_alphabet"])
        config = EvolutionConfig(
            generation_size=int(merged["generation_size"]),
            batch_size=int(merged["batch_size"]),
            generation_lifetime=float(merged["generation_lifetime"]),
            mutation_probability=float(merged["mutation_probability"]),
            long_living_champions_percentage=float(merged["long_living_champions_percentage"]),
            genome_length=int(merged["genome_length"]),
            gene_alphabet=tuple(dict.fromkeys(alphabet)),
            performance_boost=bool(merged["performance_boost"]),
            seed=int(merged["seed"]),
            generations=int(merged["generations"]),
            checkpoint_interval=int(merged["checkpoint_interval"]),
            extras={k: v for k, v in payload.items() if k not in _REQUIRED_KEYS and k not in _OPTIONAL_DEFAULTS},
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid config value: {exc}") from exc

    return config.validate()

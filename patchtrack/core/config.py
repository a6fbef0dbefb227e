"""
Configuration management for the patchtrack framework.

Provides a small configuration system supporting JSON files
and environment variables.
"""

import json
import os
from dataclasses import dataclass, asdict, fields
from enum import Enum
from pathlib import Path
from typing import Any


class PeakModel(Enum):
    """Curve fitted through the three peak heights for sub-pixel refinement."""
    GAUSSIAN = "gaussian"    # a*exp(-(d-b)^2/c)
    PARABOLA = "parabola"    # a*(1-(d-b)^2/c)


@dataclass
class MatcherConfig:
    """
    Settings for a TemplateMatcher.

    Attributes:
        peak_model: Curve used for sub-pixel peak fitting
        fit_tolerance: Maximum RMS residual of an accepted 3-point fit
        max_iterations: Newton iterations allowed per starting width
        good_match_threshold: Peak height above which a match is usable
        evolve_alpha: Opacity (0-255) used when evolving the template

    Example:
        config = MatcherConfig.load("matcher.json")
        matcher = TemplateMatcher(sample, config=config)
    """
    peak_model: PeakModel = PeakModel.GAUSSIAN
    fit_tolerance: float = 0.01
    max_iterations: int = 25
    good_match_threshold: float = 5.0
    evolve_alpha: int = 63

    def __post_init__(self):
        if not isinstance(self.peak_model, PeakModel):
            self.peak_model = PeakModel(str(self.peak_model).lower())
        self.fit_tolerance = float(self.fit_tolerance)
        self.max_iterations = int(self.max_iterations)
        self.good_match_threshold = float(self.good_match_threshold)
        self.evolve_alpha = int(self.evolve_alpha)
        if self.fit_tolerance <= 0:
            raise ValueError(f"fit_tolerance must be positive, got {self.fit_tolerance}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {self.max_iterations}")
        if not 0 <= self.evolve_alpha <= 255:
            raise ValueError(f"evolve_alpha must be in 0-255, got {self.evolve_alpha}")

    @classmethod
    def load(cls, path: str | Path) -> "MatcherConfig":
        """Load configuration from a JSON file."""
        return load_config(path)

    @classmethod
    def from_env(cls, prefix: str = "PATCHTRACK_", base: "MatcherConfig | None" = None) -> "MatcherConfig":
        """
        Apply environment overrides on top of a base configuration.

        Example:
            PATCHTRACK_PEAK_MODEL=parabola -> peak_model=PeakModel.PARABOLA
        """
        values = (base or cls()).to_dict()
        known = {f.name for f in fields(cls)}
        for key, value in get_env_config(prefix).items():
            if key in known:
                values[key] = value
        return cls(**values)

    def save(self, path: str | Path) -> None:
        """Save configuration to a JSON file."""
        save_config(self, path)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a JSON-friendly dictionary."""
        data = asdict(self)
        data["peak_model"] = self.peak_model.value
        return data


def load_config(path: str | Path) -> MatcherConfig:
    """
    Load configuration from a JSON file.

    Missing keys take their default values.

    Args:
        path: Path to the JSON configuration file

    Returns:
        Parsed MatcherConfig object

    Raises:
        FileNotFoundError: If the config file doesn't exist
        json.JSONDecodeError: If the JSON is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    defaults = MatcherConfig()
    return MatcherConfig(
        peak_model=data.get("peak_model", defaults.peak_model.value),
        fit_tolerance=data.get("fit_tolerance", defaults.fit_tolerance),
        max_iterations=data.get("max_iterations", defaults.max_iterations),
        good_match_threshold=data.get("good_match_threshold", defaults.good_match_threshold),
        evolve_alpha=data.get("evolve_alpha", defaults.evolve_alpha),
    )


def save_config(config: MatcherConfig, path: str | Path) -> None:
    """
    Save configuration to a JSON file.

    Args:
        config: Configuration object to save
        path: Output path for the JSON file
    """
    path = Path(path)
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)


def create_example_config(path: str | Path = "matcher_config.json") -> MatcherConfig:
    """
    Create an example configuration file.

    Args:
        path: Output path for the example config

    Returns:
        The created MatcherConfig object
    """
    config = MatcherConfig()
    config.save(path)
    print(f"Created example configuration: {path}")
    return config


def get_env_config(prefix: str = "PATCHTRACK_") -> dict[str, Any]:
    """
    Get configuration from environment variables.

    All environment variables starting with the prefix will be included.
    Variable names are converted to lowercase with the prefix removed.

    Example:
        PATCHTRACK_FIT_TOLERANCE=0.05 -> {"fit_tolerance": "0.05"}
    """
    config = {}
    for key, value in os.environ.items():
        if key.startswith(prefix):
            config_key = key[len(prefix):].lower()
            config[config_key] = value
    return config

"""
Configuration records for the disease-control SDP pipeline.

A configuration record holds everything one solve needs: grid bounds and steps
for the state (prevalence) and action (capital fraction) spaces, the discount
factor, horizon, numerical tolerances and the epidemiological parameter set
consumed by the reference dynamics. Records are frozen pydantic models; a
parameter change means building a new record and rebuilding every array.

Usage Example:
----------
```python
config = SDPConfig.from_yaml("configs/scenarios.yaml")
high = config.with_overrides(model={"beta_env": 0.9})

scenarios = load_scenarios("configs/scenarios.yaml")
for name, scenario in scenarios.items():
    result = SDPPipeline(scenario).run()
```
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigError

logger = logging.getLogger(__name__)


class GridConfig(BaseModel):
    """Bounds and step of an evenly spaced grid over [lo, hi]"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    lo: float = 0.0
    hi: float = 1.0
    step: float = Field(0.01, gt=0, description="Spacing between grid points")

    @model_validator(mode="after")
    def check_bounds(self) -> "GridConfig":
        if self.hi <= self.lo:
            raise ValueError(f"hi ({self.hi}) must be greater than lo ({self.lo})")
        return self


class ToleranceConfig(BaseModel):
    """
    Numerical tolerances.

    grid: allowed deviation from even spacing (epsilon_grid)
    probability: allowed deviation of a transition row sum from 1 (epsilon_prob)
    snap: maximum distance between a computed next state and its grid point;
          None means half the state step plus `grid`
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    grid: float = Field(1e-9, gt=0)
    probability: float = Field(1e-6, gt=0)
    snap: Optional[float] = Field(None, gt=0)


class TransmissionParams(BaseModel):
    """
    Parameters of the reservoir SIS model.

    Rates are per unit time; `period` is the length of one decision period.
    The action is the capital fraction spent on treatment, the remainder goes
    to environmental control.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    beta_direct: float = Field(0.2, ge=0, description="Direct (host to host) transmission rate")
    beta_env: float = Field(0.8, ge=0, description="Transmission rate from the environmental reservoir")
    shedding: float = Field(0.5, ge=0, description="Rate at which infected hosts contaminate the reservoir")
    recovery: float = Field(0.3, gt=0, description="Natural recovery rate")
    env_decay: float = Field(0.6, gt=0, description="Decay rate of the environmental reservoir")
    treatment_efficacy: float = Field(0.5, ge=0, description="Extra recovery per unit of capital on treatment")
    sanitation_efficacy: float = Field(0.8, ge=0, description="Extra decay per unit of capital on sanitation")
    budget: float = Field(1.0, ge=0, description="Capital available per period")
    period: float = Field(1.0, gt=0, description="Length of one decision period")


class SDPConfig(BaseModel):
    """Master configuration record for one solve"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state_grid: GridConfig = Field(default_factory=GridConfig)
    action_grid: GridConfig = Field(default_factory=GridConfig)
    discount: float = Field(0.95, gt=0, le=1)
    horizon: int = Field(20, ge=1)
    tolerances: ToleranceConfig = Field(default_factory=ToleranceConfig)
    rounding_digits: int = Field(6, ge=0, description="Decimal places used to detect tied actions")
    cost_per_case: float = Field(100.0, gt=0)
    n_workers: int = Field(1, ge=1)
    backend: Literal["numpy", "torch"] = "numpy"
    device: str = "auto"
    keep_history: bool = False
    model: TransmissionParams = Field(default_factory=TransmissionParams)

    @property
    def snap_tolerance(self) -> float:
        """Snap tolerance actually applied to computed next states"""
        if self.tolerances.snap is not None:
            return self.tolerances.snap
        return 0.5 * self.state_grid.step + self.tolerances.grid

    def with_overrides(self, **changes: Any) -> "SDPConfig":
        """Return a new validated record with `changes` deep-merged onto this one"""
        return load_config(_deep_merge(self.model_dump(), changes))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SDPConfig":
        return load_config(data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SDPConfig":
        """
        Load a record from YAML.

        A file with a top-level `base:` key (scenario file) yields its base record.
        """
        data = _read_yaml(path)
        if "base" in data:
            data = data["base"] or {}
        return load_config(data)


def load_config(data: Mapping[str, Any]) -> SDPConfig:
    """
    Validate a mapping into an SDPConfig.

    Raises:
        ConfigError: If any field is missing, mistyped or out of range
    """
    try:
        return SDPConfig.model_validate(dict(data))
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ConfigError(f"Invalid configuration: {exc}", field=field,
                          value=first.get("input")) from exc


def load_scenarios(path: Union[str, Path]) -> Dict[str, SDPConfig]:
    """
    Load named scenario records from a YAML file.

    The file holds a `base` record and a `scenarios` mapping of partial
    overrides; each scenario is the base deep-merged with its overrides.
    The base itself is returned under the name "base".
    """
    data = _read_yaml(path)
    base = data.get("base") or {}
    overrides = data.get("scenarios") or {}
    if not isinstance(overrides, dict):
        raise ConfigError(f"'scenarios' in {path} must be a mapping", field="scenarios")

    scenarios = {"base": load_config(base)}
    for name, changes in overrides.items():
        scenarios[name] = load_config(_deep_merge(base, changes or {}))
    logger.info("Loaded %d scenario(s) from %s", len(scenarios), path)
    return scenarios


def _read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def _deep_merge(base: Mapping[str, Any], changes: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(dict(base))
    for key, value in changes.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged

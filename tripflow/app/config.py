"""Planner configuration loaded from YAML."""

import pathlib

import pydantic
import yaml

from common import settings
from tripflow.core import zones

CONFIG_PATH = pathlib.Path(__file__).resolve().parent / 'config.yaml'


class DirectionsConfig(pydantic.BaseModel):
    """Directions provider endpoint and timeouts (seconds)."""

    base_url: str = 'https://maps.googleapis.com/maps/api/directions/json'
    connect_timeout: float = pydantic.Field(default=10.0, gt=0)
    read_timeout: float = pydantic.Field(default=15.0, gt=0)
    request_timeout: float = pydantic.Field(default=30.0, gt=0)


class MarkerConfig(pydantic.BaseModel):
    capacity: int = pydantic.Field(default=100, ge=1)
    render_timeout: float = pydantic.Field(default=5.0, gt=0)
    prewarm: bool = True


class ZoneConfig(pydantic.BaseModel):
    default_threshold_m: float = zones.DEFAULT_THRESHOLD_M

    @pydantic.field_validator('default_threshold_m')
    @classmethod
    def _in_bounds(cls, value: float) -> float:
        return zones.validate_threshold(value)


class StoreConfig(pydantic.BaseModel):
    noise_threshold_m: float = pydantic.Field(default=20.0, ge=0)


class PlannerConfig(pydantic.BaseModel):
    """Represents the top-level YAML config file"""

    directions: DirectionsConfig = pydantic.Field(default_factory=DirectionsConfig)
    markers: MarkerConfig = pydantic.Field(default_factory=MarkerConfig)
    zones: ZoneConfig = pydantic.Field(default_factory=ZoneConfig)
    store: StoreConfig = pydantic.Field(default_factory=StoreConfig)


def load_config(path: pathlib.Path | str | None = None) -> PlannerConfig:
    """Load YAML into pydantic schema.

    *path* defaults to ``TRIPFLOW_CONFIG`` when set, else the packaged file.
    An empty file yields the defaults.
    """
    if path is None:
        path = settings.TRIPFLOW_CONFIG or CONFIG_PATH
    with pathlib.Path(path).open() as f:
        config = yaml.safe_load(f) or {}
    return PlannerConfig.model_validate(config)

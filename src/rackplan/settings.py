#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import datetime
import functools
from importlib import resources
from typing import NamedTuple

from omegaconf import DictConfig, OmegaConf

ENGINE_CONFIG_PACKAGE = "rackplan.configs.engine"
DEFAULT_ENGINE_CONFIG = "default.yaml"


class EngineSettings(NamedTuple):
    """Knobs of the capacity engine.

    Parameters
    ----------
    slot_minutes
        Width of a schedule slot.
    first_slot, last_slot
        Start of the first and last slot of a day, inclusive.
    open_day_end
        End time proposed for a new rule when no later rule exists that day.
    default_booking_capacity
        Capacity consumed by a booking instance that does not declare one.
    capacity_check_minutes
        Spacing of the instants at which a proposed booking is checked.
    """

    slot_minutes: int = 30
    first_slot: datetime.time = datetime.time(0, 0)
    last_slot: datetime.time = datetime.time(23, 30)
    open_day_end: datetime.time = datetime.time(23, 59)
    default_booking_capacity: int = 1
    capacity_check_minutes: int = 15

    @classmethod
    def from_config(cls, cfg: DictConfig) -> "EngineSettings":
        return cls(
            slot_minutes=int(cfg.slot_minutes),
            first_slot=datetime.time.fromisoformat(cfg.first_slot),
            last_slot=datetime.time.fromisoformat(cfg.last_slot),
            open_day_end=datetime.time.fromisoformat(cfg.open_day_end),
            default_booking_capacity=int(cfg.default_booking_capacity),
            capacity_check_minutes=int(cfg.capacity_check_minutes),
        )


def load_engine_config(name: str = DEFAULT_ENGINE_CONFIG) -> DictConfig:
    config_file = resources.files(ENGINE_CONFIG_PACKAGE) / name
    with config_file.open("r") as f:
        cfg = OmegaConf.load(f)
    assert isinstance(cfg, DictConfig)
    return cfg


@functools.cache
def get_settings() -> EngineSettings:
    """Engine settings loaded from the packaged default config."""
    settings = EngineSettings.from_config(load_engine_config())
    if settings.slot_minutes <= 0 or 60 % settings.slot_minutes:
        raise ValueError(
            f"slot_minutes must divide an hour, got {settings.slot_minutes}"
        )
    return settings

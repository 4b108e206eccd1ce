#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import datetime
from importlib.metadata import PackageNotFoundError, version  # pragma: no cover
from pathlib import Path

from omegaconf import OmegaConf

try:
    # Change here if project is renamed and does not equal the package name
    dist_name = "rackplan"
    __version__ = version(dist_name)
except PackageNotFoundError:  # pragma: no cover
    __version__ = "unknown"
finally:
    del version, PackageNotFoundError


def _resolve_root() -> Path:
    return Path(__file__).resolve().parent.parent.parent


def _today() -> str:
    return datetime.date.today().isoformat()


OmegaConf.register_new_resolver("root", lambda path: f"{_resolve_root() / path}")
OmegaConf.register_new_resolver("today", _today)

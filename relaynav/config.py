"""Runtime configuration for relaynav."""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path

from rich.logging import RichHandler

_TRUE = {"on", "true", "yes", "1"}
_FALSE = {"off", "false", "no", "0"}

_TOGGLES = ("checkpoints", "path_rectification")
_THRESHOLDS = ("max_signal", "tolerance")


@dataclass
class LocatorConfig:
    # Features
    checkpoints: bool = True
    path_rectification: bool = True

    # Signal thresholds
    max_signal: float = 0.9  # raised at runtime by stronger relay readings
    tolerance: float = 0.1

    # Clock sync error between sensors, in ticks
    time_tolerance: int = 3


def read_config_file(path: Path) -> dict:
    """Read locator settings from a TOML file.

    Settings may sit at the top level or in a `[locator]` table, the table
    winning on conflicts. A missing file has no settings.
    """
    if not path.exists():
        return {}
    data = tomllib.loads(path.read_text())
    settings = {k: v for k, v in data.items() if not isinstance(v, dict)}
    settings.update(data.get("locator", {}))
    return settings


def apply_overrides(config: LocatorConfig, overrides: dict) -> LocatorConfig:
    """Set toggles, thresholds and the clock tolerance from loosely typed values.

    Unknown keys are left alone so one file can carry settings for other tools.
    """
    for key, value in overrides.items():
        if key in _TOGGLES:
            setattr(config, key, parse_toggle(value))
        elif key in _THRESHOLDS:
            setattr(config, key, float(value))
        elif key == "time_tolerance":
            config.time_tolerance = int(value)
    return config


def load_config(path: Path, **overrides) -> LocatorConfig:
    """Defaults, then the file at `path`, then keyword overrides.

    A `debug` setting routes logging through the rich console handler.
    """
    settings = read_config_file(path)
    settings.update(overrides)
    if "debug" in settings:
        configure_logging(parse_toggle(settings.pop("debug")))
    return apply_overrides(LocatorConfig(), settings)


def parse_toggle(value: bool | str) -> bool:
    """Parse a feature toggle: a bool or 'on'/'off', 'true'/'false'."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"not a toggle value: {value!r}")


def configure_logging(debug: bool = False) -> None:
    """Send every relaynav logger to a rich console handler."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
        force=True,
    )

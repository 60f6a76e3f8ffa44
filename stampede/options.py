"""
Run options.

Turns the ``options`` mapping a load script exports (and the overrides
given on the command line or in a thresholds YAML file) into a
:class:`~stampede.models.RunConfig`::

    options = {
        "stages": [
            {"duration": "30s", "target": 50},
            {"duration": "1m", "target": 50},
            {"duration": "10s", "target": 0},
        ],
        "thresholds": {
            "http_req_duration": ["p(95)<300"],
            "http_req_failed": ["rate<0.001"],
        },
    }
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from stampede.durations import parse_duration
from stampede.exceptions import ConfigError
from stampede.models import RunConfig, Stage
from stampede.thresholds import parse_thresholds

logger = logging.getLogger(__name__)

KNOWN_OPTIONS = {"vus", "duration", "stages", "startVUs", "thresholds", "gracefulStop", "seed"}


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def parse_stage(raw: Mapping[str, Any] | str) -> Stage:
    """
    Parse one stage.

    Accepts ``{"duration": "30s", "target": 50}`` or the command-line
    shorthand ``"30s:50"``.
    """
    if isinstance(raw, str):
        duration, sep, target = raw.rpartition(":")
        if not sep or not duration:
            raise ConfigError(f"Stage must look like DURATION:TARGET, got {raw!r}")
        return Stage(duration_s=parse_duration(duration), target=_as_int(target, "stage target"))

    if not isinstance(raw, Mapping) or "duration" not in raw or "target" not in raw:
        raise ConfigError(f"Stage needs 'duration' and 'target': {raw!r}")
    return Stage(
        duration_s=parse_duration(raw["duration"]),
        target=_as_int(raw["target"], "stage target"),
    )


def parse_stages(raw: Sequence[Mapping[str, Any] | str] | None) -> tuple[Stage, ...]:
    return tuple(parse_stage(item) for item in (raw or ()))


def parse_options(raw: Mapping[str, Any] | None) -> RunConfig:
    """
    Build a :class:`RunConfig` from a script's ``options`` mapping.

    When both ``stages`` and ``vus``/``duration`` are present the stages
    win and a warning is logged.

    Raises:
        ConfigError: If any option is malformed.
    """
    raw = dict(raw or {})
    unknown = sorted(set(raw) - KNOWN_OPTIONS)
    if unknown:
        logger.warning("Ignoring unknown options: %s", ", ".join(unknown))

    stages = parse_stages(raw.get("stages"))
    if stages and ("vus" in raw or "duration" in raw):
        logger.warning("Both stages and vus/duration given; stages take precedence")

    duration = raw.get("duration")
    graceful_stop = raw.get("gracefulStop")
    seed = raw.get("seed")
    return RunConfig(
        vus=_as_int(raw.get("vus", 1), "vus"),
        duration_s=parse_duration(duration) if duration is not None else None,
        stages=stages,
        start_vus=_as_int(raw.get("startVUs", 0), "startVUs"),
        thresholds=parse_thresholds(raw.get("thresholds")),
        graceful_stop_s=parse_duration(graceful_stop) if graceful_stop is not None else None,
        seed=_as_int(seed, "seed") if seed is not None else None,
    )


def load_thresholds_file(path: Path) -> dict[str, Any]:
    """
    Read raw threshold rules from a YAML file.

    The file may hold the mapping at its top level or under a
    ``thresholds`` key.

    Raises:
        ConfigError: If the file is not a mapping of metric keys to rules.
    """
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if isinstance(data, Mapping) and "thresholds" in data:
        data = data["thresholds"]
    if not isinstance(data, Mapping):
        raise ConfigError(f"{path} must map metric names to threshold rules")
    return dict(data)


def apply_overrides(
    config: RunConfig,
    *,
    vus: int | None = None,
    duration: str | None = None,
    stages: Sequence[str] | None = None,
    thresholds: Mapping[str, Any] | None = None,
    replace_thresholds: bool = False,
    seed: int | None = None,
    graceful_stop: str | None = None,
) -> RunConfig:
    """
    Return *config* with command-line overrides applied.

    ``--vus``/``--duration`` switch a staged script to fixed mode;
    ``--stage`` flags replace the script's stages.  Override thresholds
    are merged per metric key unless *replace_thresholds* is set.
    """
    changes: dict[str, Any] = {}

    if stages:
        changes["stages"] = parse_stages(stages)
    elif vus is not None or duration is not None:
        changes["stages"] = ()
        if vus is not None:
            changes["vus"] = vus
        if duration is not None:
            changes["duration_s"] = parse_duration(duration)
        elif config.duration_s is None:
            changes["duration_s"] = config.total_duration_s

    if thresholds is not None:
        parsed = parse_thresholds(thresholds)
        changes["thresholds"] = parsed if replace_thresholds else {**config.thresholds, **parsed}

    if seed is not None:
        changes["seed"] = seed
    if graceful_stop is not None:
        changes["graceful_stop_s"] = parse_duration(graceful_stop)

    return replace(config, **changes) if changes else config

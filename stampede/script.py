"""
Load scripts.

A load script is a plain Python module that exports:

- ``scenarios`` (required): a list of :class:`~stampede.models.Scenario`.
- ``options`` (optional): the run options mapping, see
  :mod:`stampede.options`.
- ``setup(client)`` (optional): runs once before the main phase; its
  return value becomes the shared setup context.
- ``teardown(client, data)`` (optional): runs once after the main phase.

Scripts can also be assembled in code by building a :class:`Script`
directly, which is what the test suite does.
"""

from __future__ import annotations

import importlib.util
import logging
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any

from stampede.exceptions import ScriptError
from stampede.lifecycle import SetupFn, TeardownFn
from stampede.models import Scenario

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Script:
    """
    Everything a run needs besides the engine settings.

    Attributes:
        scenarios: Weighted scenarios executed by the VUs.
        options: Raw run options (parsed by :func:`stampede.options.parse_options`).
        setup: Optional one-shot setup callable.
        teardown: Optional one-shot teardown callable.
        name: Display name, usually the script's file name.
    """

    scenarios: Sequence[Scenario]
    options: Mapping[str, Any] = field(default_factory=dict)
    setup: SetupFn | None = None
    teardown: TeardownFn | None = None
    name: str = "script"


def script_from_module(module: ModuleType, name: str | None = None) -> Script:
    """
    Build a :class:`Script` from a module's exported attributes.

    Raises:
        ScriptError: If ``scenarios`` is missing, empty or holds
            something other than ``Scenario`` objects, or if
            ``setup``/``teardown`` are not callable.
    """
    name = name or module.__name__
    scenarios = getattr(module, "scenarios", None)
    if not scenarios:
        raise ScriptError(f"{name} does not define a non-empty 'scenarios' list")
    if isinstance(scenarios, Scenario):
        scenarios = [scenarios]
    bad = [item for item in scenarios if not isinstance(item, Scenario)]
    if bad:
        raise ScriptError(f"{name}: 'scenarios' must only contain Scenario objects, got {bad[0]!r}")

    options = getattr(module, "options", None) or {}
    if not isinstance(options, Mapping):
        raise ScriptError(f"{name}: 'options' must be a mapping")

    setup = getattr(module, "setup", None)
    teardown = getattr(module, "teardown", None)
    for hook_name, hook in (("setup", setup), ("teardown", teardown)):
        if hook is not None and not callable(hook):
            raise ScriptError(f"{name}: '{hook_name}' must be callable")

    return Script(
        scenarios=tuple(scenarios),
        options=options,
        setup=setup,
        teardown=teardown,
        name=name,
    )


def load_script(path: str | Path) -> Script:
    """
    Import the load script at *path* and wrap it in a :class:`Script`.

    The script's directory is put on ``sys.path`` for the duration of
    the import so sibling helper modules resolve.

    Raises:
        ScriptError: If the file is missing or fails to import.
    """
    path = Path(path).resolve()
    if not path.is_file():
        raise ScriptError(f"Script not found: {path}")

    module_name = f"stampede_script_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ScriptError(f"Cannot import {path}")

    module = importlib.util.module_from_spec(spec)
    script_dir = str(path.parent)
    added = script_dir not in sys.path
    if added:
        sys.path.insert(0, script_dir)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise ScriptError(f"Failed to import {path.name}: {type(exc).__name__}: {exc}") from exc
    finally:
        if added:
            sys.path.remove(script_dir)

    logger.info("Loaded script %s", path.name)
    return script_from_module(module, name=path.name)

"""Scenario loading.

Reads scenario JSON from disk (or a dict) and validates it, turning every
problem into a ConfigurationError before a run can begin.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import orjson
from pydantic import ValidationError

from stampede.core.definition import ScenarioDefinition
from stampede.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"  {location}: {item['msg']}")
    return "\n".join(lines)


def scenario_from_dict(data: Any, source: str = "<dict>") -> ScenarioDefinition:
    """Validate a decoded scenario.

    Raises:
        ConfigurationError: If the data is not a valid scenario
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source}: scenario root must be a JSON object")
    try:
        return ScenarioDefinition.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"{source}: invalid scenario\n{_format_validation_error(e)}"
        ) from e


def load_scenario(file_path: str | Path) -> ScenarioDefinition:
    """Load and validate a scenario file.

    Args:
        file_path: Path to a JSON scenario file

    Returns:
        Validated scenario definition

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid
    """
    path = Path(file_path)
    try:
        content = path.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Cannot read scenario {path}: {e.strerror or e}") from e

    try:
        data = orjson.loads(content)
    except orjson.JSONDecodeError as e:
        raise ConfigurationError(f"{path}: invalid JSON ({e})") from e

    scenario = scenario_from_dict(data, source=str(path))
    logger.debug(f"Loaded scenario '{scenario.name}' from {path}")
    return scenario

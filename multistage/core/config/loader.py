"""
Configuration loader — reads multistage.yml into a CompileRequest.

The file is plain YAML; its top-level keys are the fields of
``CompileRequest``.  Every failure surfaces as ``ConfigError``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from multistage.core.models.request import CompileRequest

logger = logging.getLogger(__name__)

# Default config filename
TEST_CONFIG_FILE = "multistage.yml"


class ConfigError(Exception):
    """Raised when test configuration is invalid or missing."""


def find_test_file(start_dir: Path | None = None) -> Path | None:
    """Search for multistage.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to multistage.yml, or None if not found.
    """
    start = (start_dir or Path.cwd()).resolve()
    for directory in (start, *start.parents):
        candidate = directory / TEST_CONFIG_FILE
        if candidate.is_file():
            return candidate
    return None


def parse_request(data: object, source: str = "<config>") -> CompileRequest:
    """Validate already-parsed YAML data.

    Raises:
        ConfigError: If the data is not a mapping or fails validation.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    try:
        return CompileRequest.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid test configuration in {source}: {e}") from e


def load_request(path: Path | None = None) -> CompileRequest:
    """Load and validate test configuration.

    Args:
        path: Explicit path to multistage.yml. If None, searches upward.

    Returns:
        Validated CompileRequest.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_test_file()

    if path is None:
        raise ConfigError(
            f"No {TEST_CONFIG_FILE} found. Specify one with --config."
        )

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading test config from %s", path)

    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    request = parse_request(data, str(path))
    logger.info("Loaded test '%s' with %d steps", request.test, len(request.steps))
    return request

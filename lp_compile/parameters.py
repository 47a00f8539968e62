"""
Model parameter support for lp-compile.

This module handles:
1. Parsing parameter tables (JSON or dict format)
2. Parsing dotted-path overrides such as "foods.bread.cost=2.5"
3. Applying overrides to a copy of the base parameters
"""

import copy
import json
from pathlib import Path
from typing import Any, Union

import numpy as np


def parse_parameters_json(parameters_json: str) -> dict[str, Any]:
    """
    Parse a JSON string holding a parameter table.

    Format: {"name": value, ...} where values may nest arbitrarily.

    Raises:
        ValueError: If JSON is invalid or not an object
    """
    try:
        data = json.loads(parameters_json)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid parameters JSON: {e}")
    if not isinstance(data, dict):
        raise ValueError("Invalid parameters JSON: top level must be an object")
    return data


def load_parameters(path: Union[str, Path]) -> dict[str, Any]:
    with open(path) as f:
        return parse_parameters_json(f.read())


def parse_override(text: str) -> tuple[str, Any]:
    """
    Parse one "path=value" override.

    The value is read as JSON when possible ("2.5", "[1, 2]", "true"),
    otherwise kept as a plain string.

    Raises:
        ValueError: If there is no "=" or the path is empty
    """
    path, sep, raw = text.partition("=")
    path = path.strip()
    if not sep or not path:
        raise ValueError(f"Invalid override {text!r}: expected path=value")
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw.strip()
    return path, value


def apply_overrides(
    base_params: dict[str, Any],
    overrides: dict[str, Any],
) -> dict[str, Any]:
    """
    Apply dotted-path overrides to base parameter values.

    "foods.bread.cost" sets base["foods"]["bread"]["cost"]; a numeric
    segment indexes a list. Missing intermediate tables are created.

    Returns:
        New dictionary with overridden values (base_params unchanged)

    Raises:
        KeyError: If a path walks into a non-container value
    """
    result = copy.deepcopy(base_params)

    for path, value in overrides.items():
        parts = path.split(".")
        node = result
        for part in parts[:-1]:
            node = _step(node, part, path, create=True)
        _assign(node, parts[-1], value, path)

    return result


def _step(node: Any, part: str, path: str, create: bool) -> Any:
    if isinstance(node, dict):
        if part not in node and create:
            node[part] = {}
        return node[part]
    if isinstance(node, list) and part.isdigit():
        return node[int(part)]
    raise KeyError(f"Cannot follow {path!r}: {part!r} is not addressable")


def _assign(node: Any, part: str, value: Any, path: str):
    if isinstance(node, dict):
        node[part] = value
    elif isinstance(node, list) and part.isdigit():
        node[int(part)] = value
    else:
        raise KeyError(f"Cannot set {path!r}: parent is not a container")


def as_arrays(parameters: dict[str, Any]) -> dict[str, Any]:
    """
    Convert flat numeric lists to numpy arrays.

    Nested tables are converted recursively; lists holding strings or
    mixed values are left alone so they stay usable as domains.
    """
    result = {}
    for name, value in parameters.items():
        if isinstance(value, dict):
            result[name] = as_arrays(value)
        elif (
            isinstance(value, list)
            and value
            and all(
                isinstance(v, (int, float)) and not isinstance(v, bool)
                for v in value
            )
        ):
            result[name] = np.asarray(value)
        else:
            result[name] = value
    return result

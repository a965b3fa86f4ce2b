"""
Canonical serialization of entity parameters.

Two parameter maps that are semantically equal must always produce the same
string, because the string is part of the entity key used for lease lookup
and history. Keys are sorted (recursively) and the encoding is compact:

    {"b": 2, "a": 1}  ->  '{"a":1,"b":2}'

An absent or empty map serializes to None, which is distinct from any
non-empty map.
"""

import json
from typing import Any, Mapping, Optional

from synclease.errors import ConfigurationError


def serialize_parameters(parameters: Optional[Mapping[str, Any]]) -> Optional[str]:
    """
    Serialize parameters to canonical JSON.

    Args:
        parameters: Mapping of string keys to JSON-serializable values

    Returns:
        Compact JSON with sorted keys, or None if parameters are None or empty

    Raises:
        ConfigurationError: If a key is not a string or a value is not JSON-serializable
    """
    if not parameters:
        return None

    non_string = [k for k in parameters if not isinstance(k, str)]
    if non_string:
        raise ConfigurationError(f"Parameter keys must be strings, got: {non_string}")

    try:
        return json.dumps(dict(parameters), sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Parameters are not JSON-serializable: {e}") from e


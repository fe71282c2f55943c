"""Settings validation helpers shared by the relay and the peer client."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo

# List-typed settings that may be given as CSV in the environment.
STRING_LIST_FIELDS = frozenset({"cors_origins", "ice_servers"})


def _require_items(items: list[str]) -> list[str]:
    if not items:
        raise ValueError("String list value must not be empty")
    return items


def parse_string_list(value: str | list[str]) -> list[str]:
    """Parse a non-empty list of strings.

    Accepts a list (returned as-is), a JSON array string such as
    '["stun:a","stun:b"]', or a comma-separated string such as 'stun:a,stun:b'.
    Raises ValueError on empty input or malformed JSON.
    """
    if isinstance(value, list):
        return _require_items(value)

    stripped = value.strip()
    if not stripped.startswith("["):
        return _require_items([item.strip() for item in stripped.split(",") if item.strip()])

    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON array: {e}") from e
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        raise ValueError("JSON value must be an array of strings")
    return _require_items(parsed)


class StringListEnvSettingsSource(EnvSettingsSource):
    """Env source that hands string-list fields to validators as raw strings.

    pydantic-settings would otherwise JSON-decode list fields itself and reject
    the CSV form before parse_string_list gets a chance to run.
    """

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in STRING_LIST_FIELDS and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)

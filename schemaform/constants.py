from typing import Any, Dict

from schemaform.exceptions import InvalidSchemaError

# Time constants, milliseconds

# How long resolved dynamic options stay cached (5 minutes)
DEFAULT_OPTIONS_CACHE_TTL = 1000 * 60 * 5

# How long a persisted snapshot stays valid (24 hours)
DEFAULT_PERSIST_TTL = 24 * 60 * 60 * 1000

# Quiet period before a persistence write
PERSIST_DEBOUNCE_MS = 300

STORAGE_KEY_PREFIX = "schemaform:"

# Layout

GRID_COLUMNS = 12

DEFAULT_LAYOUT: Dict[str, Any] = {
    "cols": 0,
    "labelWidth": None,
    "labelPosition": "right",
    "labelAlign": "left",
    "showLabel": True,
}


def merge_layout_config(global_layout: Dict[str, Any] = None, field_layout: Dict[str, Any] = None) -> Dict[str, Any]:
    """Merges layout settings; field settings win over form settings, which win over defaults."""
    merged = {**DEFAULT_LAYOUT, **(global_layout or {}), **(field_layout or {})}
    span = merged.get("span")
    if span is not None:
        if isinstance(span, bool) or not isinstance(span, (int, float)):
            raise InvalidSchemaError(f"Layout span must be a number, got {span!r}")
        merged["span"] = min(GRID_COLUMNS, max(1, int(round(span))))
    return merged

from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Sequence

from .constants import DEFAULT_CHUNK_TYPE, DEFAULT_MAX_ECHO

FENCE = "```"


def format_option_value(value: Any) -> str:
    """Render an option value the way it is written in a chunk header."""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, Mapping):
        inner = ", ".join(f"{k}={format_option_value(v)}" for k, v in value.items())
        return f"list({inner})"
    if isinstance(value, (list, tuple)):
        return "c(" + ", ".join(format_option_value(v) for v in value) + ")"
    raise TypeError(f"unsupported chunk option value: {value!r}")


def chunk_header(label: Optional[str] = None, *, chunk_type: str = DEFAULT_CHUNK_TYPE, **options: Any) -> str:
    head = chunk_type if not label else f"{chunk_type} {label}"
    parts = [head] + [f"{k}={format_option_value(v)}" for k, v in options.items() if v is not None]
    return FENCE + "{" + ", ".join(parts) + "}"


def create_chunk(text: str, label: Optional[str] = None, *, chunk_type: str = DEFAULT_CHUNK_TYPE, **options: Any) -> str:
    """Wrap encoded text in a fenced data chunk.

    Example:
        >>> print(create_chunk("AQIDBA==", "blob", format="binary", encoding="base64"))
        ```{data blob, format="binary", encoding="base64"}
        AQIDBA==
        ```
    """
    body = text if text.endswith("\n") or not text else text + "\n"
    return chunk_header(label, chunk_type=chunk_type, **options) + "\n" + body + FENCE


def render_echo(lines: Sequence[str], max_echo: int = DEFAULT_MAX_ECHO) -> str:
    """Echo text for a chunk body, truncated to ``max_echo`` lines."""
    shown = list(lines[:max_echo])
    hidden = len(lines) - len(shown)
    if hidden > 0:
        shown.append(f"... ({hidden} more line{'s' if hidden != 1 else ''})")
    return "\n".join(shown)

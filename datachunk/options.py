from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .codec import CodecRegistry, default_registry
from .constants import (
    DEFAULT_ENCODING,
    DEFAULT_LINE_SEP,
    DEFAULT_MAX_ECHO,
    ENCODING_ASIS,
    FORMAT_TEXT,
    FORMATS,
)
from .errors import (
    IncompatibleFormatEncoding,
    InvalidEncoding,
    InvalidFormat,
    InvalidOptionsType,
    MissingOutputTarget,
)
from .external import substitute_body


# Alternative spellings -> canonical field names (after normalization)
_ALIASES = {
    "decoding_options": "decoding_ops",
    "decodingoptions": "decoding_ops",
    "outputvariable": "output_var",
    "outputfile": "output_file",
    "externalfile": "external_file",
    "newlinejoiner": "line_sep",
}

_FIELDS = (
    "format",
    "encoding",
    "decoding_ops",
    "output_var",
    "output_file",
    "external_file",
    "line_sep",
    "md5sum",
    "echo",
    "max_echo",
)


def normalize_key(key: str) -> str:
    """``output.var``, ``output-var`` and ``Output_Var`` all map to ``output_var``."""
    k = str(key).strip().lower().replace(".", "_").replace("-", "_")
    return _ALIASES.get(k, k)


@dataclass
class ChunkOptions:
    """Recognized chunk options, as authored (not yet validated).

    Keys the engine does not know about (they belong to the host pipeline) are
    kept in ``extra`` and otherwise ignored.
    """

    format: Any = None
    encoding: Any = None
    decoding_ops: Any = None
    output_var: Any = None
    output_file: Any = None
    external_file: Any = None
    line_sep: Any = None
    md5sum: Any = None
    echo: Any = False
    max_echo: Any = DEFAULT_MAX_ECHO
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "ChunkOptions":
        known: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in (raw or {}).items():
            name = normalize_key(key)
            if name in _FIELDS:
                known[name] = value
            else:
                extra[key] = value
        return cls(extra=extra, **known)


@dataclass(frozen=True)
class Directive:
    """A validated data chunk. Immutable once resolved."""

    label: Optional[str]
    body: Tuple[str, ...]
    format: str
    encoding: str
    decoding_ops: Mapping[str, Any]
    output_var: Optional[str] = None
    output_file: Optional[str] = None
    external_file: Optional[str] = None
    line_sep: str = DEFAULT_LINE_SEP
    md5sum: Optional[str] = None
    echo: bool = False
    max_echo: int = DEFAULT_MAX_ECHO

    @property
    def as_text(self) -> bool:
        return self.format == FORMAT_TEXT


def _is_set(value: Any) -> bool:
    return value is not None and value != ""


def _string_option(name: str, value: Any, label: Optional[str], *, path: bool = False) -> Optional[str]:
    if not _is_set(value):
        return None
    if path and isinstance(value, os.PathLike):
        return os.fspath(value)
    if not isinstance(value, str):
        raise InvalidOptionsType(f"{name} must be a string, got {type(value).__name__}", chunk=label)
    return value


def _bool_option(name: str, value: Any, label: Optional[str]) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise InvalidOptionsType(f"{name} must be a boolean, got {value!r}", chunk=label)


def resolve_directive(
    raw: Optional[Mapping[str, Any]],
    body: Sequence[str] = (),
    *,
    label: Optional[str] = None,
    registry: Optional[CodecRegistry] = None,
) -> Directive:
    """Validate chunk options and build a :class:`Directive`.

    Args:
        raw: Option mapping attached to the chunk.
        body: Chunk body lines.
        label: Chunk identifier, used in diagnostics.
        registry: Codec registry to validate the encoding against.

    Raises:
        ConfigurationError: for any invalid option combination.
        ExternalFileUnreadable: if ``external_file`` cannot be read.
    """
    registry = registry or default_registry
    opts = raw if isinstance(raw, ChunkOptions) else ChunkOptions.from_mapping(raw)

    output_var = _string_option("output_var", opts.output_var, label)
    output_file = _string_option("output_file", opts.output_file, label, path=True)
    if output_var is None and output_file is None:
        raise MissingOutputTarget("data chunk needs output_var and/or output_file", chunk=label)

    lines = [str(line) for line in (body or ())]
    external_file = _string_option("external_file", opts.external_file, label, path=True)
    if external_file is not None:
        lines = substitute_body(lines, external_file, chunk=label)

    fmt = FORMAT_TEXT if not _is_set(opts.format) else opts.format
    if not isinstance(fmt, str) or fmt.strip().lower() not in FORMATS:
        raise InvalidFormat(f"format must be one of {', '.join(FORMATS)}; got {fmt!r}", chunk=label)
    fmt = fmt.strip().lower()

    encoding = DEFAULT_ENCODING[fmt] if not _is_set(opts.encoding) else opts.encoding
    if not isinstance(encoding, str) or encoding.strip().lower() not in registry:
        raise InvalidEncoding(
            f"encoding must be one of {', '.join(registry.names())}; got {encoding!r}", chunk=label
        )
    encoding = encoding.strip().lower()

    decoding_ops = {} if opts.decoding_ops is None else opts.decoding_ops
    if not isinstance(decoding_ops, Mapping):
        raise InvalidOptionsType(
            f"decoding_ops must be a key-value mapping, got {type(decoding_ops).__name__}", chunk=label
        )

    if encoding == ENCODING_ASIS and fmt != FORMAT_TEXT:
        raise IncompatibleFormatEncoding("asis encoding is only valid with format='text'", chunk=label)

    line_sep = opts.line_sep
    if line_sep is not None and not isinstance(line_sep, str):
        raise InvalidOptionsType(f"line_sep must be a string, got {type(line_sep).__name__}", chunk=label)
    md5sum = _string_option("md5sum", opts.md5sum, label)
    echo = _bool_option("echo", opts.echo, label)
    max_echo = opts.max_echo
    if isinstance(max_echo, bool) or not isinstance(max_echo, int) or max_echo < 0:
        raise InvalidOptionsType(f"max_echo must be a non-negative integer, got {max_echo!r}", chunk=label)

    return Directive(
        label=label,
        body=tuple(lines),
        format=fmt,
        encoding=encoding,
        decoding_ops=MappingProxyType(dict(decoding_ops)),
        output_var=output_var,
        output_file=output_file,
        external_file=external_file,
        line_sep=DEFAULT_LINE_SEP if line_sep is None else line_sep,
        md5sum=md5sum.strip().lower() if md5sum else None,
        echo=echo,
        max_echo=max_echo,
    )

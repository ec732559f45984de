from __future__ import annotations

import hashlib
import os
from typing import Any, Mapping, Optional, Sequence, Union

from .binder import Namespace, bind_outputs, write_atomic
from .chunk import render_echo
from .codec import CodecRegistry, default_registry
from .constants import ENCODING_ASIS
from .errors import (
    ChecksumMismatch,
    DataChunkError,
    DecodeError,
    ExternalFileUnreadable,
    InvalidEncoding,
    MissingNamespace,
    UnknownEncoding,
    UnsupportedEncodeEncoding,
)
from .options import Directive, resolve_directive


def _verify_md5(value: Union[str, bytes], directive: Directive) -> None:
    raw = value.encode("utf-8") if isinstance(value, str) else value
    digest = hashlib.md5(raw).hexdigest()
    if digest != directive.md5sum:
        raise ChecksumMismatch(
            f"md5 of decoded data is {digest}, expected {directive.md5sum}",
            chunk=directive.label,
            encoding=directive.encoding,
        )


def decode_directive(directive: Directive, registry: Optional[CodecRegistry] = None) -> Union[str, bytes]:
    """Decode a resolved directive into text (format=text) or bytes (format=binary)."""
    if directive.encoding == ENCODING_ASIS:
        value: Union[str, bytes] = directive.line_sep.join(directive.body)
    else:
        registry = registry or default_registry
        try:
            entry = registry.lookup(directive.encoding)
        except UnknownEncoding as exc:
            exc.chunk = directive.label
            exc.encoding = directive.encoding
            raise
        try:
            value = entry.decode(
                directive.body,
                as_text=directive.as_text,
                options=directive.decoding_ops,
                line_sep=directive.line_sep,
            )
        except DataChunkError as exc:
            if exc.chunk is None:
                exc.chunk = directive.label
            if exc.encoding is None:
                exc.encoding = directive.encoding
            raise
        except (ValueError, RuntimeError, OSError) as exc:
            raise DecodeError(
                f"decoding failed: {exc}",
                chunk=directive.label,
                encoding=directive.encoding,
            ) from exc
    if directive.as_text and not isinstance(value, str):
        raise DecodeError(
            "codec returned bytes for a text chunk",
            chunk=directive.label,
            encoding=directive.encoding,
        )
    if not directive.as_text and not isinstance(value, bytes):
        raise DecodeError(
            "codec returned text for a binary chunk",
            chunk=directive.label,
            encoding=directive.encoding,
        )
    if directive.md5sum:
        _verify_md5(value, directive)
    return value


def run_chunk(
    options: Optional[Mapping[str, Any]],
    body: Sequence[str] = (),
    namespace: Optional[Namespace] = None,
    *,
    label: Optional[str] = None,
    registry: Optional[CodecRegistry] = None,
) -> str:
    """Process one data chunk on behalf of a rendering pipeline.

    Resolves the options, decodes the body, binds the value to its output
    targets and returns the rendered output (empty unless ``echo`` is set).
    """
    directive = resolve_directive(options, body, label=label, registry=registry)
    if directive.output_var is not None and namespace is None:
        raise MissingNamespace(
            f"output_var '{directive.output_var}' needs a namespace to bind into", chunk=label
        )
    value = decode_directive(directive, registry)
    bind_outputs(value, directive, namespace)
    if directive.echo:
        return render_echo(directive.body, directive.max_echo)
    return ""


def encode_file(
    path: Union[str, "os.PathLike[str]"],
    encoding: str = "base64",
    options: Optional[Mapping[str, Any]] = None,
    output: Optional[Union[str, "os.PathLike[str]"]] = None,
    *,
    registry: Optional[CodecRegistry] = None,
) -> str:
    """Encode a file's bytes as text suitable for a data chunk body.

    Args:
        path: Source file.
        encoding: Registered encoding name (not ``asis``).
        options: Codec options; ``pgp`` requires ``receiver``.
        output: Optional destination for the encoded text.

    Returns:
        The encoded text (also written to ``output`` when given).
    """
    registry = registry or default_registry
    name = str(encoding).strip().lower()
    if name == ENCODING_ASIS:
        raise UnsupportedEncodeEncoding("asis has no encoded form; use base64 or pgp")
    if name not in registry:
        raise InvalidEncoding(f"encoding must be one of {', '.join(registry.names())}; got {encoding!r}")
    entry = registry.lookup(name)
    if entry.encode is None:
        raise UnsupportedEncodeEncoding(f"{name} does not support encoding")
    try:
        with open(path, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        raise ExternalFileUnreadable(f"cannot read {os.fspath(path)}: {exc}") from exc
    try:
        text = entry.encode(data, options=dict(options or {}))
    except DataChunkError as exc:
        if exc.encoding is None:
            exc.encoding = name
        raise
    if output is not None:
        write_atomic(output, text)
    return text

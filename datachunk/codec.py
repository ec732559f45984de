from __future__ import annotations

import base64
import binascii
import os
import sys
import tempfile
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from . import encryption
from .constants import (
    BASE64_LINE_WIDTH,
    DEFAULT_LINE_SEP,
    ENCODING_ASIS,
    ENCODING_BASE64,
    ENCODING_GPG,
    ENCODING_PGP,
)
from .errors import CodecError, DecodeError, MissingRecipient, UnknownEncoding


Decoded = Union[str, bytes]
DecodeFn = Callable[..., Decoded]
EncodeFn = Callable[..., str]

# Option keys understood by the pgp codec; anything else in the mapping is ignored
PGP_DECODE_KEYS = ("key", "passphrase")
PGP_RECIPIENT_KEYS = ("receiver", "recipient")


@dataclass(frozen=True)
class CodecEntry:
    name: str
    decode: DecodeFn
    encode: Optional[EncodeFn] = None


class CodecRegistry:
    """Name -> codec lookup. Populated at start-up, read-only afterwards."""

    def __init__(self):
        self._entries: Dict[str, CodecEntry] = {}
        self._frozen = False

    def register(self, name: str, decode: DecodeFn, encode: Optional[EncodeFn] = None) -> CodecEntry:
        if self._frozen:
            raise RuntimeError(f"codec registry is frozen; cannot register {name}")
        if name in self._entries:
            raise ValueError(f"codec already registered: {name}")
        entry = CodecEntry(name, decode, encode)
        self._entries[name] = entry
        return entry

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, name: str) -> CodecEntry:
        try:
            return self._entries[name]
        except KeyError:
            raise UnknownEncoding(f"unknown encoding: {name!r}") from None

    def names(self) -> List[str]:
        return sorted(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries


# -------- asis --------

def decode_asis(lines: Sequence[str], *, as_text: bool = True, options: Optional[Mapping] = None, line_sep: str = DEFAULT_LINE_SEP) -> str:
    if not as_text:
        raise CodecError("asis encoding only produces text")
    return line_sep.join(lines)


# -------- base64 --------

def decode_base64(lines: Sequence[str], *, as_text: bool = False, options: Optional[Mapping] = None, line_sep: str = DEFAULT_LINE_SEP) -> Decoded:
    """Strict base64 decode of the chunk body; whitespace between lines is ignored."""
    compact = "".join("".join(lines).split())
    try:
        raw = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"malformed base64 payload: {exc}", encoding=ENCODING_BASE64) from exc
    if as_text:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("base64 payload is not valid UTF-8 text", encoding=ENCODING_BASE64) from exc
    return raw


def wrap_lines(text: str, width: int = BASE64_LINE_WIDTH) -> List[str]:
    return [text[i : i + width] for i in range(0, len(text), width)]


def encode_base64(data: bytes, *, options: Optional[Mapping] = None) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return "\n".join(wrap_lines(encoded))


# -------- pgp --------

def _remove_quietly(path: str) -> None:
    """Remove a temporary file; failures are reported, never raised."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        print(f"Warning: failed to remove temporary file {path}: {exc}", file=sys.stderr)


def decode_pgp(lines: Sequence[str], *, as_text: bool = False, options: Optional[Mapping] = None, line_sep: str = DEFAULT_LINE_SEP) -> Decoded:
    """Decrypt an armored chunk body.

    Bodies must be datachunk messages (see ``encryption``); OpenPGP output from
    gpg is not accepted.

    The body is staged in a temporary file which is passed by path to the
    decryption primitive and removed on every exit path.
    """
    opts = {k: v for k, v in (options or {}).items() if k in PGP_DECODE_KEYS}
    fh = tempfile.NamedTemporaryFile("w", encoding="utf-8", suffix=".asc", delete=False)
    tmp_path = fh.name
    try:
        with fh:
            fh.write("\n".join(lines))
            fh.write("\n")
        return encryption.decrypt_file(tmp_path, as_text=as_text, **opts)
    finally:
        _remove_quietly(tmp_path)


def recipients_from(options: Optional[Mapping]):
    opts = options or {}
    for name in PGP_RECIPIENT_KEYS:
        value = opts.get(name)
        if value:
            return value
    return None


def encode_pgp(data: bytes, *, options: Optional[Mapping] = None) -> str:
    receiver = recipients_from(options)
    if not receiver:
        raise MissingRecipient("pgp encoding requires options.receiver (a recipient public key)")
    passphrase = (options or {}).get("passphrase")
    try:
        return encryption.encrypt(data, receiver, passphrase=passphrase)
    except ValueError as exc:
        raise CodecError(str(exc)) from exc


# -------- default registry --------

default_registry = CodecRegistry()
default_registry.register(ENCODING_ASIS, decode_asis, None)
default_registry.register(ENCODING_BASE64, decode_base64, encode_base64)
default_registry.register(ENCODING_PGP, decode_pgp, encode_pgp)
default_registry.register(ENCODING_GPG, decode_pgp, encode_pgp)
default_registry.freeze()


__all__ = [
    "CodecEntry",
    "CodecRegistry",
    "default_registry",
    "decode_asis",
    "decode_base64",
    "encode_base64",
    "decode_pgp",
    "encode_pgp",
]

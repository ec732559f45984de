from __future__ import annotations

from typing import Optional


class DataChunkError(Exception):
    """Base class for datachunk errors.

    ``chunk`` is the label of the chunk being processed and ``encoding`` the
    codec involved, when known; both are prepended to the message so the host
    can point at the offending chunk.
    """

    def __init__(self, message: str, *, chunk: Optional[str] = None, encoding: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.chunk = chunk
        self.encoding = encoding

    def __str__(self) -> str:
        prefix = []
        if self.chunk:
            prefix.append(f"chunk '{self.chunk}'")
        if self.encoding:
            prefix.append(f"[{self.encoding}]")
        if prefix:
            return f"{' '.join(prefix)}: {self.message}"
        return self.message


# Configuration errors (detected before any decode)
class ConfigurationError(DataChunkError):
    pass


class MissingOutputTarget(ConfigurationError):
    pass


class InvalidFormat(ConfigurationError):
    pass


class InvalidEncoding(ConfigurationError):
    pass


class InvalidOptionsType(ConfigurationError):
    pass


class IncompatibleFormatEncoding(ConfigurationError):
    pass


class MissingRecipient(ConfigurationError):
    pass


class MissingNamespace(ConfigurationError):
    pass


class UnsupportedEncodeEncoding(ConfigurationError):
    pass


# I/O
class ChunkIOError(DataChunkError):
    pass


class ExternalFileUnreadable(ChunkIOError):
    pass


class OutputWriteError(ChunkIOError):
    pass


# Codec
class CodecError(DataChunkError):
    pass


class UnknownEncoding(CodecError):
    pass


class DecodeError(CodecError):
    """Underlying codec failure, wrapped with the encoding name."""


class DecryptionError(CodecError):
    pass


class ChecksumMismatch(CodecError):
    pass

"""
datachunk: embed data inside literate documents.

A document carries its data in "data chunks": named blocks whose body is
encoded text rather than prose. This package provides:

- A chunk option resolver that turns the raw options attached to a chunk into
  a validated, immutable directive.
- A codec registry with built-in ``asis``, ``base64`` and ``pgp`` codecs.
- Hybrid public-key encryption for the ``pgp`` codec (RSA-OAEP key slots,
  optional Argon2id passphrase slot, XChaCha20-Poly1305 payload) via
  PyCryptodomex.
- An output binder that binds decoded values into an explicit namespace and/or
  writes them to disk.
- The reverse path: encode a file's bytes into chunk-ready text, and a CLI.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "codec",
    "encryption",
    "options",
    "engine",
    "binder",
    "chunk",
]

# The host-facing API is engine.run_chunk (per-chunk decode) and
# engine.encode_file (the mirror operation).

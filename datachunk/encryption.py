"""Public-key encryption behind the ``pgp`` codec.

Messages use a hybrid construction in the spirit of ``gpg --encrypt``: a random
session key protects the payload with XChaCha20-Poly1305, and that key is
wrapped once per recipient with RSA-OAEP (SHA-256). An optional passphrase slot
wraps the same session key under an Argon2id-derived key, so a message can be
opened either with a recipient's private key or with the passphrase.

The format is specific to datachunk and is not OpenPGP: bodies produced by
``gpg --armor --encrypt`` cannot be decoded here, and gpg cannot read ours.

Wire layout (before armoring)::

    magic "DCHK" | version u8 | slot count u8 | slots... | nonce 24 | ciphertext | tag 16
    slot: kind u8 | length u16 | data

Everything before the nonce is authenticated as associated data.
"""

from __future__ import annotations

import base64
import binascii
import os
import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

try:  # pragma: no cover - availability depends on environment
    from Cryptodome.Cipher import ChaCha20_Poly1305, PKCS1_OAEP  # type: ignore
    from Cryptodome.Hash import SHA256  # type: ignore
    from Cryptodome.PublicKey import RSA  # type: ignore
    _HAS_CRYPTODOME = True
except ImportError:  # pragma: no cover - graceful fallback
    ChaCha20_Poly1305 = PKCS1_OAEP = SHA256 = RSA = None  # type: ignore
    _HAS_CRYPTODOME = False

try:  # pragma: no cover - availability depends on environment
    from argon2.low_level import Type as _ArgonType, hash_secret_raw as _argon_hash  # type: ignore
    _HAS_ARGON2 = True
except ImportError:  # pragma: no cover - graceful fallback
    _ArgonType = None  # type: ignore
    _argon_hash = None  # type: ignore
    _HAS_ARGON2 = False

from .constants import (
    ARMOR_BEGIN,
    ARMOR_END,
    BASE64_LINE_WIDTH,
    MESSAGE_MAGIC,
    MESSAGE_VERSION,
    SLOT_PASSPHRASE,
    SLOT_RSA,
)
from .errors import DecryptionError, MissingRecipient


NONCE_SIZE = 24
TAG_SIZE = 16
KEY_SIZE = 32
SALT_SIZE = 16
KEY_ID_SIZE = 8

# Argon2id parameters for the passphrase slot; stored in the slot so they can change later
ARGON_TIME_COST = 3
ARGON_MEMORY_COST_KIB = 64 * 1024  # 64 MiB
ARGON_PARALLELISM = 4
# Upper bounds accepted when reading a slot
ARGON_MAX_TIME_COST = 16
ARGON_MAX_MEMORY_COST_KIB = 1024 * 1024

_HDR_STRUCT = struct.Struct("<4sBB")
_SLOT_HDR_STRUCT = struct.Struct("<BH")
_PASS_SLOT_STRUCT = struct.Struct("<16sIIB24s32s16s")

KeySource = Union[str, bytes, "os.PathLike[str]"]


@dataclass
class KeySlot:
    kind: int
    data: bytes


@dataclass
class Message:
    slots: List[KeySlot]
    header: bytes
    nonce: bytes
    ciphertext: bytes
    tag: bytes


def _ensure_backend(need_argon: bool = False) -> None:
    if not _HAS_CRYPTODOME:
        raise RuntimeError("PyCryptodomex is required for pgp encryption support")
    if need_argon and not _HAS_ARGON2:
        raise RuntimeError("argon2-cffi is required for passphrase-protected messages")


def _read_pem(source: KeySource) -> bytes:
    """Return PEM bytes from inline key text or a path to a key file."""
    if isinstance(source, bytes):
        return source
    if isinstance(source, str) and "-----BEGIN" in source:
        return source.encode("ascii")
    with open(os.fspath(source), "rb") as fh:
        return fh.read()


def _as_list(receiver) -> List[KeySource]:
    if receiver is None:
        return []
    if isinstance(receiver, (str, bytes, os.PathLike)):
        return [receiver]
    return list(receiver)


def key_id(public_key) -> bytes:
    """Short identifier of an RSA public key (SHA-256 of its DER form, truncated)."""
    return SHA256.new(public_key.export_key(format="DER")).digest()[:KEY_ID_SIZE]


def load_public_key(source: KeySource):
    _ensure_backend()
    try:
        pem = _read_pem(source)
    except OSError as exc:
        raise ValueError(f"cannot read recipient key {source}: {exc}") from exc
    try:
        key = RSA.import_key(pem)
    except (ValueError, IndexError, TypeError) as exc:
        raise ValueError(f"invalid recipient key {source!r:.60}: {exc}") from exc
    return key.publickey()


def load_private_key(source: KeySource, passphrase: Optional[str] = None):
    _ensure_backend()
    try:
        pem = _read_pem(source)
    except OSError as exc:
        raise DecryptionError(f"cannot read private key {source}: {exc}") from exc
    try:
        key = RSA.import_key(pem, passphrase=passphrase)
    except (ValueError, IndexError, TypeError) as exc:
        raise DecryptionError(
            "cannot load private key (wrong or missing passphrase?)"
        ) from exc
    if not key.has_private():
        raise DecryptionError("decryption key is a public key; a private key is required")
    return key


def generate_keypair(passphrase: Optional[str] = None, bits: int = 2048) -> Tuple[str, str]:
    """Create an RSA key pair and return ``(private_pem, public_pem)``.

    When ``passphrase`` is given the private key is exported as encrypted PKCS#8.
    """
    _ensure_backend()
    key = RSA.generate(bits)
    if passphrase:
        private_pem = key.export_key(
            format="PEM",
            passphrase=passphrase,
            pkcs=8,
            protection="PBKDF2WithHMAC-SHA1AndAES256-CBC",
        )
    else:
        private_pem = key.export_key(format="PEM")
    public_pem = key.publickey().export_key(format="PEM")
    return private_pem.decode("ascii"), public_pem.decode("ascii")


def _derive_passphrase_key(passphrase: str, salt: bytes, time_cost: int, memory_cost_kib: int, parallelism: int) -> bytes:
    return _argon_hash(
        passphrase.encode("utf-8"),
        salt,
        time_cost=time_cost,
        memory_cost=memory_cost_kib,
        parallelism=parallelism,
        hash_len=KEY_SIZE,
        type=_ArgonType.ID,
    )


def _rsa_slot(public_key, session_key: bytes) -> KeySlot:
    wrapped = PKCS1_OAEP.new(public_key, hashAlgo=SHA256).encrypt(session_key)
    return KeySlot(SLOT_RSA, key_id(public_key) + wrapped)


def _passphrase_slot(passphrase: str, session_key: bytes) -> KeySlot:
    salt = os.urandom(SALT_SIZE)
    kek = _derive_passphrase_key(passphrase, salt, ARGON_TIME_COST, ARGON_MEMORY_COST_KIB, ARGON_PARALLELISM)
    nonce = os.urandom(NONCE_SIZE)
    cipher = ChaCha20_Poly1305.new(key=kek, nonce=nonce)
    cipher.update(salt)
    wrapped, tag = cipher.encrypt_and_digest(session_key)
    data = _PASS_SLOT_STRUCT.pack(
        salt, ARGON_TIME_COST, ARGON_MEMORY_COST_KIB, ARGON_PARALLELISM, nonce, wrapped, tag
    )
    return KeySlot(SLOT_PASSPHRASE, data)


def _pack_header(slots: Sequence[KeySlot]) -> bytes:
    if len(slots) > 255:
        raise ValueError("too many key slots (max 255)")
    parts = [_HDR_STRUCT.pack(MESSAGE_MAGIC, MESSAGE_VERSION, len(slots))]
    for slot in slots:
        parts.append(_SLOT_HDR_STRUCT.pack(slot.kind, len(slot.data)))
        parts.append(slot.data)
    return b"".join(parts)


def armor(payload: bytes) -> str:
    encoded = base64.b64encode(payload).decode("ascii")
    lines = [encoded[i : i + BASE64_LINE_WIDTH] for i in range(0, len(encoded), BASE64_LINE_WIDTH)]
    return "\n".join([ARMOR_BEGIN, ""] + lines + [ARMOR_END])


def dearmor(text: str) -> bytes:
    lines = [ln.strip() for ln in text.splitlines()]
    try:
        start = lines.index(ARMOR_BEGIN)
        end = lines.index(ARMOR_END, start + 1)
    except ValueError:
        raise DecryptionError("message armor not found (expected DATACHUNK MESSAGE block)")
    body = "".join(ln for ln in lines[start + 1 : end] if ln)
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError(f"malformed message armor: {exc}") from exc


def parse_message(payload: bytes) -> Message:
    if len(payload) < _HDR_STRUCT.size:
        raise DecryptionError("encrypted message too short")
    magic, version, count = _HDR_STRUCT.unpack_from(payload, 0)
    if magic != MESSAGE_MAGIC:
        raise DecryptionError("not a datachunk encrypted message")
    if version != MESSAGE_VERSION:
        raise DecryptionError(f"unsupported message version {version}")
    pos = _HDR_STRUCT.size
    slots: List[KeySlot] = []
    for _ in range(count):
        if pos + _SLOT_HDR_STRUCT.size > len(payload):
            raise DecryptionError("truncated key slot header")
        kind, length = _SLOT_HDR_STRUCT.unpack_from(payload, pos)
        pos += _SLOT_HDR_STRUCT.size
        if pos + length > len(payload):
            raise DecryptionError("truncated key slot")
        slots.append(KeySlot(kind, payload[pos : pos + length]))
        pos += length
    if len(payload) - pos < NONCE_SIZE + TAG_SIZE:
        raise DecryptionError("encrypted payload too short")
    header = payload[:pos]
    nonce = payload[pos : pos + NONCE_SIZE]
    return Message(
        slots=slots,
        header=header,
        nonce=nonce,
        ciphertext=payload[pos + NONCE_SIZE : -TAG_SIZE],
        tag=payload[-TAG_SIZE:],
    )


def _open_rsa_slots(slots: Iterable[KeySlot], private_key) -> Optional[bytes]:
    own_id = key_id(private_key.publickey())
    rsa_slots = [s for s in slots if s.kind == SLOT_RSA and len(s.data) > KEY_ID_SIZE]
    # Slots addressed to this key first, then the rest
    rsa_slots.sort(key=lambda s: s.data[:KEY_ID_SIZE] != own_id)
    oaep = PKCS1_OAEP.new(private_key, hashAlgo=SHA256)
    for slot in rsa_slots:
        try:
            session_key = oaep.decrypt(slot.data[KEY_ID_SIZE:])
        except ValueError:
            continue
        if len(session_key) == KEY_SIZE:
            return session_key
    return None


def _open_passphrase_slots(slots: Iterable[KeySlot], passphrase: str) -> Optional[bytes]:
    for slot in slots:
        if slot.kind != SLOT_PASSPHRASE or len(slot.data) != _PASS_SLOT_STRUCT.size:
            continue
        salt, t_cost, m_cost, par, nonce, wrapped, tag = _PASS_SLOT_STRUCT.unpack(slot.data)
        if not (1 <= t_cost <= ARGON_MAX_TIME_COST and 8 <= m_cost <= ARGON_MAX_MEMORY_COST_KIB and par >= 1):
            raise DecryptionError("unsupported Argon2 parameters in passphrase slot")
        kek = _derive_passphrase_key(passphrase, salt, t_cost, m_cost, par)
        cipher = ChaCha20_Poly1305.new(key=kek, nonce=nonce)
        cipher.update(salt)
        try:
            return cipher.decrypt_and_verify(wrapped, tag)
        except ValueError:
            continue
    return None


def encrypt(data: bytes, receiver, passphrase: Optional[str] = None) -> str:
    """Encrypt ``data`` for one or more recipients and return armored text.

    Args:
        data: Plaintext bytes.
        receiver: A PEM public key (inline text or a path), or a list of them.
        passphrase: Optional passphrase that can also open the message.
    """
    recipients = _as_list(receiver)
    if not recipients:
        raise MissingRecipient("encryption requires at least one recipient key")
    _ensure_backend(need_argon=bool(passphrase))
    session_key = os.urandom(KEY_SIZE)
    slots = [_rsa_slot(load_public_key(r), session_key) for r in recipients]
    if passphrase:
        slots.append(_passphrase_slot(passphrase, session_key))
    header = _pack_header(slots)
    nonce = os.urandom(NONCE_SIZE)
    cipher = ChaCha20_Poly1305.new(key=session_key, nonce=nonce)
    cipher.update(header)
    ciphertext, tag = cipher.encrypt_and_digest(data)
    return armor(header + nonce + ciphertext + tag)


def decrypt(text: str, *, as_text: bool = False, key: Optional[KeySource] = None, passphrase: Optional[str] = None) -> Union[str, bytes]:
    """Decrypt an armored message.

    Args:
        text: Armored message text.
        as_text: Return UTF-8 text instead of bytes.
        key: PEM private key (inline text or a path). May be passphrase-protected.
        passphrase: Opens a protected private key and/or the passphrase slot.
    """
    _ensure_backend()
    if key is None and not passphrase:
        raise DecryptionError("decryption requires a private key or a passphrase")
    message = parse_message(dearmor(text))
    session_key = None
    if key is not None:
        session_key = _open_rsa_slots(message.slots, load_private_key(key, passphrase))
    if session_key is None and passphrase:
        _ensure_backend(need_argon=True)
        session_key = _open_passphrase_slots(message.slots, passphrase)
    if session_key is None:
        raise DecryptionError("no key slot could be opened with the supplied key or passphrase")
    cipher = ChaCha20_Poly1305.new(key=session_key, nonce=message.nonce)
    cipher.update(message.header)
    try:
        plaintext = cipher.decrypt_and_verify(message.ciphertext, message.tag)
    except ValueError as exc:
        raise DecryptionError("message authentication failed (corrupt ciphertext?)") from exc
    if as_text:
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("decrypted payload is not valid UTF-8 text") from exc
    return plaintext


def decrypt_file(path: Union[str, "os.PathLike[str]"], *, as_text: bool = False, key: Optional[KeySource] = None, passphrase: Optional[str] = None) -> Union[str, bytes]:
    """Decrypt the armored message stored at ``path``."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            text = fh.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise DecryptionError(f"cannot read encrypted message {path}: {exc}") from exc
    return decrypt(text, as_text=as_text, key=key, passphrase=passphrase)


_HAS_CRYPTO = bool(_HAS_CRYPTODOME and _HAS_ARGON2)

__all__ = [
    "encrypt",
    "decrypt",
    "decrypt_file",
    "generate_keypair",
    "load_public_key",
    "load_private_key",
    "_HAS_CRYPTO",
]

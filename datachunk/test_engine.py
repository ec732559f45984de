from __future__ import annotations

import contextlib
import hashlib
import io
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from datachunk.binder import Namespace, bind_outputs, write_atomic
from datachunk.codec import CodecRegistry, decode_asis, encode_base64
from datachunk.encryption import _HAS_CRYPTO, generate_keypair
from datachunk.engine import decode_directive, encode_file, run_chunk
from datachunk.errors import (
    ChecksumMismatch,
    DecodeError,
    DecryptionError,
    ExternalFileUnreadable,
    IncompatibleFormatEncoding,
    InvalidEncoding,
    MissingOutputTarget,
    MissingNamespace,
    MissingRecipient,
    OutputWriteError,
    UnknownEncoding,
    UnsupportedEncodeEncoding,
)
from datachunk.options import resolve_directive


class RunChunkTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_asis_text_binding(self):
        ns = Namespace()
        out = run_chunk(
            {"format": "text", "encoding": "asis", "output.var": "t1"},
            ["1,2,3,4,5,6", "7,8,9"],
            ns,
            label="t1",
        )
        self.assertEqual(out, "")
        self.assertEqual(ns["t1"], "1,2,3,4,5,6\n7,8,9")

    def test_custom_line_sep(self):
        ns = Namespace()
        run_chunk({"output.var": "t", "line.sep": " | "}, ["a", "b", "c"], ns)
        self.assertEqual(ns["t"], "a | b | c")

    def test_base64_binary_binding(self):
        ns = Namespace()
        run_chunk({"format": "binary", "encoding": "base64", "output.var": "raw"}, ["AQIDBA=="], ns)
        self.assertEqual(ns["raw"], bytes([0x01, 0x02, 0x03, 0x04]))
        self.assertIsInstance(ns["raw"], bytes)

    def test_base64_text_binding(self):
        ns = Namespace()
        run_chunk({"format": "text", "encoding": "base64", "output.var": "s"}, ["aGVsbG8="], ns)
        self.assertEqual(ns["s"], "hello")

    def test_binary_output_file_exact(self):
        def scenario(tmp: Path):
            payload = bytes(range(256)) + b"\r\n\n"
            dest = tmp / "out.bin"
            lines = encode_base64(payload).split("\n")
            run_chunk({"format": "binary", "output.file": str(dest)}, lines, label="bin")
            self.assertEqual(dest.read_bytes(), payload)
            self.assertEqual([p.name for p in tmp.iterdir()], ["out.bin"])

        self.run_with_tmpdir(scenario)

    def test_text_output_file_and_variable(self):
        def scenario(tmp: Path):
            ns = Namespace({"t": "stale"})
            dest = tmp / "out.csv"
            run_chunk({"output.var": "t", "output.file": dest}, ["a,b", "1,2"], ns)
            self.assertEqual(ns["t"], "a,b\n1,2")
            self.assertEqual(dest.read_text(encoding="utf-8"), "a,b\n1,2\n")

        self.run_with_tmpdir(scenario)

    def test_external_file_wins_over_inline_body(self):
        def scenario(tmp: Path):
            ext = tmp / "payload.b64"
            ext.write_text("AQIDBA==\n", encoding="utf-8")
            ns = Namespace()
            err = io.StringIO()
            with contextlib.redirect_stderr(err):
                run_chunk(
                    {"format": "binary", "external.file": str(ext), "output.var": "v"},
                    ["////"],
                    ns,
                    label="ext",
                )
            self.assertEqual(ns["v"], b"\x01\x02\x03\x04")
            self.assertIn("Warning", err.getvalue())

        self.run_with_tmpdir(scenario)

    def test_validation_errors_surface(self):
        with self.assertRaises(MissingOutputTarget):
            run_chunk({"format": "binary"}, ["AQIDBA=="], Namespace())
        with self.assertRaises(IncompatibleFormatEncoding):
            run_chunk({"format": "binary", "encoding": "asis", "output.var": "x"}, ["a"], Namespace())

    def test_codec_error_carries_context(self):
        with self.assertRaises(DecodeError) as ctx:
            run_chunk({"format": "binary", "output.var": "x"}, ["@@@"], Namespace(), label="broken")
        self.assertEqual(ctx.exception.chunk, "broken")
        self.assertEqual(ctx.exception.encoding, "base64")
        self.assertIn("chunk 'broken'", str(ctx.exception))
        self.assertIn("[base64]", str(ctx.exception))

    def test_md5sum(self):
        ns = Namespace()
        digest = hashlib.md5(b"\x01\x02\x03\x04").hexdigest()
        run_chunk({"format": "binary", "output.var": "ok", "md5sum": digest.upper()}, ["AQIDBA=="], ns)
        self.assertEqual(ns["ok"], b"\x01\x02\x03\x04")
        with self.assertRaises(ChecksumMismatch):
            run_chunk({"format": "binary", "output.var": "bad", "md5sum": "0" * 32}, ["AQIDBA=="], ns)
        self.assertNotIn("bad", ns)

    def test_echo(self):
        ns = Namespace()
        body = [f"line {i}" for i in range(5)]
        out = run_chunk({"output.var": "e", "echo": True, "max.echo": 2}, body, ns)
        self.assertEqual(out, "line 0\nline 1\n... (3 more lines)")
        out = run_chunk({"output.var": "e", "echo": "TRUE"}, body, ns)
        self.assertEqual(out, "\n".join(body))

    def test_output_write_failure(self):
        def scenario(tmp: Path):
            dest = tmp / "missing-dir" / "out.txt"
            with self.assertRaises(OutputWriteError):
                run_chunk({"output.file": str(dest)}, ["x"], label="w")

        self.run_with_tmpdir(scenario)

    def test_pgp_decode_failure_wrapped_and_cleaned(self):
        seen = {}

        def failing(path, **kwargs):
            seen["path"] = path
            raise DecryptionError("bad key")

        with mock.patch("datachunk.encryption.decrypt_file", side_effect=failing):
            with self.assertRaises(DecryptionError) as ctx:
                run_chunk({"format": "binary", "encoding": "pgp", "output.var": "p"}, ["x"], Namespace(), label="sec")
        self.assertEqual(ctx.exception.chunk, "sec")
        self.assertEqual(ctx.exception.encoding, "pgp")
        self.assertEqual(str(ctx.exception), "chunk 'sec' [pgp]: bad key")
        self.assertFalse(os.path.exists(seen["path"]))

    def test_output_var_without_namespace_fails_before_decode(self):
        def scenario(tmp: Path):
            dest = tmp / "out.bin"
            codec_fn = mock.Mock(return_value=b"\x01")
            registry = CodecRegistry()
            registry.register("asis", decode_asis)
            registry.register("base64", codec_fn)
            with self.assertRaises(MissingNamespace) as ctx:
                run_chunk(
                    {"format": "binary", "output.var": "v", "output.file": str(dest)},
                    ["AQIDBA=="],
                    label="c9",
                    registry=registry,
                )
            codec_fn.assert_not_called()
            self.assertEqual(ctx.exception.chunk, "c9")
            self.assertIn("chunk 'c9'", str(ctx.exception))
            self.assertFalse(dest.exists())

        self.run_with_tmpdir(scenario)

    @unittest.skipUnless(_HAS_CRYPTO, "PyCryptodomex and argon2-cffi required")
    def test_pgp_end_to_end(self):
        def scenario(tmp: Path):
            private_pem, public_pem = generate_keypair()
            src = tmp / "secret.bin"
            src.write_bytes(b"\x00top secret\xff")
            text = encode_file(src, "pgp", {"receiver": public_pem})
            ns = Namespace()
            run_chunk(
                {"format": "binary", "encoding": "pgp", "output.var": "s", "decoding.ops": {"key": private_pem}},
                text.splitlines(),
                ns,
            )
            self.assertEqual(ns["s"], b"\x00top secret\xff")

        self.run_with_tmpdir(scenario)


class DecodeDirectiveTests(unittest.TestCase):
    def test_registry_miss(self):
        registry = CodecRegistry()
        registry.register("asis", decode_asis)
        registry.register("mystery", lambda lines, **kw: b"")
        directive = resolve_directive(
            {"output.var": "x", "format": "binary", "encoding": "mystery"}, ["a"], registry=registry
        )
        with self.assertRaises(UnknownEncoding):
            decode_directive(directive, CodecRegistry())

    def test_codec_must_honour_format(self):
        registry = CodecRegistry()
        registry.register("asis", decode_asis)
        registry.register("sloppy", lambda lines, **kw: b"bytes")
        directive = resolve_directive({"output.var": "x", "encoding": "sloppy"}, ["a"], registry=registry)
        with self.assertRaises(DecodeError):
            decode_directive(directive, registry)

    def test_plain_codec_exceptions_wrapped(self):
        registry = CodecRegistry()
        registry.register("asis", decode_asis)

        def broken(lines, **kw):
            raise ValueError("nope")

        registry.register("broken", broken)
        directive = resolve_directive(
            {"output.var": "x", "format": "binary", "encoding": "broken"}, ["a"], label="b", registry=registry
        )
        with self.assertRaises(DecodeError) as ctx:
            decode_directive(directive, registry)
        self.assertEqual(ctx.exception.encoding, "broken")
        self.assertIsInstance(ctx.exception.__cause__, ValueError)


class BinderTests(unittest.TestCase):
    def test_namespace(self):
        ns = Namespace()
        ns.bind("a", 1)
        ns.bind("a", 2)
        ns["b"] = b"x"
        self.assertEqual(ns.names(), ["a", "b"])
        self.assertEqual(ns["a"], 2)
        self.assertEqual(len(ns), 2)
        self.assertEqual(ns.get("missing"), None)

    def test_bind_without_namespace(self):
        directive = resolve_directive({"output.var": "x"}, ["a"], label="b1")
        with self.assertRaises(MissingNamespace) as ctx:
            bind_outputs("a", directive, None)
        self.assertEqual(ctx.exception.chunk, "b1")

    def test_write_atomic_replaces_existing(self):
        with tempfile.TemporaryDirectory() as tmp:
            dest = Path(tmp) / "f.txt"
            dest.write_text("old contents that are longer\n")
            write_atomic(dest, "new")
            self.assertEqual(dest.read_text(), "new\n")
            write_atomic(dest, b"\x00")
            self.assertEqual(dest.read_bytes(), b"\x00")
            self.assertEqual(sorted(p.name for p in Path(tmp).iterdir()), ["f.txt"])


class EncodeFileTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_base64_roundtrip_through_chunk(self):
        def scenario(tmp: Path):
            data = os.urandom(1500)
            src = tmp / "blob.bin"
            src.write_bytes(data)
            out = tmp / "blob.b64"
            text = encode_file(src, "base64", output=out)
            self.assertTrue(all(len(line) <= 64 for line in text.split("\n")))
            self.assertEqual(out.read_text(encoding="utf-8"), text + "\n")
            ns = Namespace()
            run_chunk({"format": "binary", "external.file": str(out), "output.var": "b"}, [], ns)
            self.assertEqual(ns["b"], data)

        self.run_with_tmpdir(scenario)

    def test_asis_not_encodable(self):
        def scenario(tmp: Path):
            src = tmp / "a.txt"
            src.write_text("x")
            with self.assertRaises(UnsupportedEncodeEncoding):
                encode_file(src, "asis")

        self.run_with_tmpdir(scenario)

    def test_unknown_encoding(self):
        def scenario(tmp: Path):
            src = tmp / "a.txt"
            src.write_text("x")
            with self.assertRaises(InvalidEncoding):
                encode_file(src, "uuencode")

        self.run_with_tmpdir(scenario)

    def test_missing_source(self):
        def scenario(tmp: Path):
            with self.assertRaises(ExternalFileUnreadable):
                encode_file(tmp / "nope.bin", "base64")

        self.run_with_tmpdir(scenario)

    def test_pgp_requires_recipient(self):
        def scenario(tmp: Path):
            src = tmp / "a.bin"
            src.write_bytes(b"x")
            with mock.patch("datachunk.encryption.encrypt") as primitive:
                with self.assertRaises(MissingRecipient) as ctx:
                    encode_file(src, "pgp", {})
                self.assertEqual(ctx.exception.encoding, "pgp")
                primitive.assert_not_called()

        self.run_with_tmpdir(scenario)


if __name__ == "__main__":
    unittest.main()

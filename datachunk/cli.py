from __future__ import annotations

import argparse
import getpass as _getpass
import os
import sys
from typing import Dict, List, Optional

from datachunk.binder import write_atomic
from datachunk.chunk import create_chunk
from datachunk.codec import default_registry
from datachunk.engine import encode_file, run_chunk
from datachunk.encryption import generate_keypair
from datachunk.errors import DataChunkError


def cmd_encode(
    source: str,
    *,
    encoding: str = "base64",
    receivers: Optional[List[str]] = None,
    passphrase: Optional[str] = None,
    output: Optional[str] = None,
    chunk_label: Optional[str] = None,
) -> str:
    """Encode a file for pasting into a data chunk.

    Args:
        source: File whose bytes are encoded.
        encoding: "base64" (default) or "pgp".
        receivers: Recipient public keys (paths) for pgp.
        passphrase: Optional passphrase slot for pgp.
        output: Write the result here instead of printing it.
        chunk_label: When set, wrap the encoded text in a complete data chunk
            whose options decode it back to ``source``'s file name.
    """
    options: Dict[str, object] = {}
    if receivers:
        options["receiver"] = receivers
    if passphrase:
        options["passphrase"] = passphrase
    text = encode_file(source, encoding, options)
    if chunk_label is not None:
        text = create_chunk(
            text,
            chunk_label,
            format="binary",
            encoding=encoding,
            **{"output.file": os.path.basename(source)},
        )
    if output:
        write_atomic(output, text)
        print(f"Encoded {source} ({encoding}) -> {output}")
    else:
        print(text)
    return text


def cmd_decode(
    source: str,
    *,
    output_file: str,
    fmt: str = "binary",
    encoding: Optional[str] = None,
    key: Optional[str] = None,
    passphrase: Optional[str] = None,
    line_sep: Optional[str] = None,
) -> bool:
    """Decode a file holding chunk body text (as an external-file chunk would).

    Args:
        source: Text file with the encoded chunk body.
        output_file: Destination for the decoded data.
        fmt: "text" or "binary".
        encoding: Encoding name; defaults by format.
        key: Private key path for pgp.
        passphrase: Passphrase for the private key or passphrase slot.
        line_sep: Line separator for asis decoding.
    """
    decoding_ops: Dict[str, object] = {}
    if key:
        decoding_ops["key"] = key
    if passphrase:
        decoding_ops["passphrase"] = passphrase
    options = {
        "format": fmt,
        "encoding": encoding,
        "external_file": source,
        "output_file": output_file,
        "decoding_ops": decoding_ops,
        "line_sep": line_sep,
    }
    run_chunk(options, label=os.path.basename(source))
    print(f"Decoded {source} -> {output_file}")
    return True


def cmd_keygen(prefix: str, *, passphrase: Optional[str] = None, bits: int = 2048) -> bool:
    """Write an RSA key pair to ``PREFIX.pem`` (private) and ``PREFIX.pub.pem``."""
    private_pem, public_pem = generate_keypair(passphrase=passphrase, bits=bits)
    private_path = f"{prefix}.pem"
    public_path = f"{prefix}.pub.pem"
    write_atomic(private_path, private_pem)
    try:
        os.chmod(private_path, 0o600)
    except OSError as exc:
        print(f"Warning: failed to set mode on {private_path}: {exc}", file=sys.stderr)
    write_atomic(public_path, public_pem)
    print(f"Private key: {private_path}")
    print(f"Public key:  {public_path}")
    return True


PGP_NOTE = (
    "pgp chunks use datachunk's own message format; they are not interoperable "
    "with GnuPG or other OpenPGP tools. Use datachunk keygen for key pairs."
)


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="datachunk",
        description="Encode and decode data chunks for literate documents",
        epilog=PGP_NOTE,
    )
    sub = ap.add_subparsers(dest="cmd", required=True)
    encodings = [n for n in default_registry.names() if n != "asis"]

    ap_encode = sub.add_parser("encode", help="Encode a file as chunk text", epilog=PGP_NOTE)
    ap_encode.add_argument("source", help="File to encode")
    ap_encode.add_argument("--encoding", choices=encodings, default="base64", help="Encoding (default: base64)")
    ap_encode.add_argument("--receiver", action="append", help="Recipient public key file (pgp; repeatable)")
    ap_encode.add_argument("--passphrase", help="Also allow opening with this passphrase (pgp)")
    ap_encode.add_argument("--output", "-o", help="Write encoded text to this path")
    ap_encode.add_argument("--chunk", metavar="LABEL", help="Emit a complete data chunk with this label")

    ap_decode = sub.add_parser("decode", help="Decode a file of chunk text", epilog=PGP_NOTE)
    ap_decode.add_argument("source", help="Text file holding the encoded chunk body")
    ap_decode.add_argument("--output-file", "-o", required=True, help="Destination for decoded data")
    ap_decode.add_argument("--format", choices=["text", "binary"], default="binary", help="Decoded format (default: binary)")
    ap_decode.add_argument("--encoding", choices=default_registry.names(), help="Encoding (default depends on format)")
    ap_decode.add_argument("--key", help="Private key file (pgp)")
    ap_decode.add_argument("--passphrase", help="Private key or message passphrase (pgp)")
    ap_decode.add_argument("--ask-passphrase", action="store_true", help="Prompt for the passphrase")
    ap_decode.add_argument("--line-sep", help="Line separator for asis decoding")

    ap_keygen = sub.add_parser("keygen", help="Generate an RSA key pair for pgp chunks")
    ap_keygen.add_argument("prefix", help="Output prefix (writes PREFIX.pem and PREFIX.pub.pem)")
    ap_keygen.add_argument("--passphrase", help="Protect the private key with a passphrase")
    ap_keygen.add_argument("--bits", type=int, default=2048, help="RSA modulus size (default 2048)")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "encode":
            cmd_encode(
                args.source,
                encoding=args.encoding,
                receivers=args.receiver,
                passphrase=args.passphrase,
                output=args.output,
                chunk_label=args.chunk,
            )
        elif args.cmd == "decode":
            passphrase = args.passphrase
            if passphrase is None and args.ask_passphrase:
                passphrase = _getpass.getpass("Passphrase: ")
            cmd_decode(
                args.source,
                output_file=args.output_file,
                fmt=args.format,
                encoding=args.encoding,
                key=args.key,
                passphrase=passphrase,
                line_sep=args.line_sep,
            )
        elif args.cmd == "keygen":
            cmd_keygen(args.prefix, passphrase=args.passphrase, bits=args.bits)
        else:
            raise RuntimeError("Unknown command")
    except (DataChunkError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()

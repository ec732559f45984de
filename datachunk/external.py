from __future__ import annotations

import os
import sys
from typing import List, Optional, Sequence, Union

from .errors import ExternalFileUnreadable


def read_lines(path: Union[str, "os.PathLike[str]"], *, chunk: Optional[str] = None) -> List[str]:
    """Read a text file as a list of lines (line terminators removed)."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return fh.read().splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise ExternalFileUnreadable(f"cannot read external file {os.fspath(path)}: {exc}", chunk=chunk) from exc


def substitute_body(body: Sequence[str], external_file, *, chunk: Optional[str] = None) -> List[str]:
    """Replace a chunk body with the contents of ``external_file``.

    A non-empty inline body is ignored with a warning.
    """
    if any(line.strip() for line in body):
        label = f"chunk '{chunk}'" if chunk else "chunk"
        print(
            f"Warning: {label}: ignoring inline content in favour of external file {os.fspath(external_file)}",
            file=sys.stderr,
        )
    return read_lines(external_file, chunk=chunk)

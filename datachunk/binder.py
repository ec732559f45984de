from __future__ import annotations

import os
from collections.abc import MutableMapping
from typing import Any, Dict, Iterator, List, Optional, Union

from .errors import MissingNamespace, OutputWriteError


class Namespace(MutableMapping):
    """Evaluation namespace shared by the chunks of one document.

    Decoded values are bound here by name; later chunks read them back.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})

    def bind(self, name: str, value: Any) -> None:
        """Insert or overwrite ``name``."""
        self._values[name] = value

    def names(self) -> List[str]:
        return sorted(self._values)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.bind(name, value)

    def __delitem__(self, name: str) -> None:
        del self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Namespace({self.names()!r})"


def write_atomic(path: Union[str, "os.PathLike[str]"], value: Union[str, bytes], *, chunk: Optional[str] = None) -> None:
    """Write ``value`` to ``path`` all-or-nothing.

    Text is written line-oriented in text mode (terminated by a newline); bytes
    are written exactly. Data goes to a staging file in the destination
    directory which is then renamed over ``path``.
    """
    dest = os.fspath(path)
    dest_dir = os.path.dirname(os.path.abspath(dest))
    staging = os.path.join(dest_dir, f".{os.path.basename(dest)}.{os.getpid()}.tmp")
    try:
        if isinstance(value, bytes):
            with open(staging, "wb") as fh:
                fh.write(value)
        else:
            with open(staging, "w", encoding="utf-8") as fh:
                fh.write(value)
                if not value.endswith("\n"):
                    fh.write("\n")
        os.replace(staging, dest)
    except OSError as exc:
        try:
            os.remove(staging)
        except OSError:
            pass
        raise OutputWriteError(f"cannot write output file {dest}: {exc}", chunk=chunk) from exc


def bind_outputs(value: Union[str, bytes], directive, namespace: Optional[Namespace]) -> None:
    """Deliver a decoded value to the directive's output targets."""
    if directive.output_var is not None:
        if namespace is None:
            raise MissingNamespace(
                f"output_var '{directive.output_var}' needs a namespace to bind into", chunk=directive.label
            )
        namespace.bind(directive.output_var, value)
    if directive.output_file is not None:
        write_atomic(directive.output_file, value, chunk=directive.label)

from __future__ import annotations

import sys
import uuid
from pathlib import Path
from typing import TextIO


class OutputWriter:
    """Emits named outputs as ``name=value`` lines to a file or a stream."""

    def __init__(self, path: Path | None = None, stream: TextIO | None = None) -> None:
        self.path = path
        self.stream = stream or sys.stdout

    def _format(self, name: str, value: str) -> str:
        if "\n" not in value:
            return f"{name}={value}\n"
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        return f"{name}<<{delimiter}\n{value}\n{delimiter}\n"

    def set_output(self, name: str, value: object) -> None:
        line = self._format(name, "" if value is None else str(value))
        if self.path is None:
            self.stream.write(line)
            self.stream.flush()
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line)

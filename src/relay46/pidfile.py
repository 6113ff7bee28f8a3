from __future__ import annotations

import os
from pathlib import Path


class PidFile:
    """Write the process id on enter, remove the file on exit."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def write(self) -> None:
        self.path.write_text(f"{os.getpid()}\n", encoding="ascii")

    def remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> "PidFile":
        self.write()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.remove()

from __future__ import annotations

import re
from pathlib import Path
from typing import Protocol


_UNSAFE_KEY_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]")


def record_key(endpoint: str) -> str:
    """
    Deterministic, filesystem-safe record key for an endpoint URL.
    "https://a.example/x?y=1" -> "https___a.example_x_y_1"
    """
    s = str(endpoint or "").strip()
    if not s:
        raise ValueError("endpoint is required")
    return _UNSAFE_KEY_CHARS_RE.sub("_", s)


class PersistenceBackend(Protocol):
    def write_record(self, key: str, data: bytes) -> None: ...

    def read_record(self, key: str) -> bytes | None: ...


class FileBackend:
    """One `<key>.json` file per endpoint under data_dir."""

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    def ensure_writable(self) -> None:
        """Create data_dir if needed and prove it accepts writes. Raises OSError otherwise."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        probe = self.data_dir / ".write-test"
        probe.write_text("test", encoding="utf-8")
        probe.unlink()

    def path_for(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def write_record(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.tmp")
        tmp.write_bytes(data)
        tmp.replace(path)

    def read_record(self, key: str) -> bytes | None:
        try:
            return self.path_for(key).read_bytes()
        except FileNotFoundError:
            return None


class MemoryBackend:
    def __init__(self) -> None:
        self.records: dict[str, bytes] = {}
        # Set to an exception instance to make writes fail.
        self.fail_writes: Exception | None = None

    def write_record(self, key: str, data: bytes) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        self.records[key] = bytes(data)

    def read_record(self, key: str) -> bytes | None:
        return self.records.get(key)

"""Safe file I/O, JSONL/YAML helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

import yaml


def ensure_dir(path: Union[str, Path]) -> Path:
    """Create directory and parents if needed, return Path."""
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML file and return parsed contents."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def write_yaml(path: Union[str, Path], data: Dict[str, Any]) -> Path:
    """Write data to a YAML file."""
    p = Path(path)
    ensure_dir(p.parent)
    with open(p, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    return p


def append_jsonl(path: Union[str, Path], row: Dict[str, Any]) -> None:
    """Append one compact JSON line and flush it."""
    p = Path(path)
    ensure_dir(p.parent)
    with open(p, "a", encoding="utf-8") as f:
        f.write(json.dumps(row, separators=(",", ":")) + "\n")
        f.flush()


def iter_jsonl(
    path: Union[str, Path],
    on_error: Optional[Callable[[int, str], None]] = None,
) -> Iterator[Dict[str, Any]]:
    """Yield parsed rows from a JSONL file, skipping blank lines.

    An unparseable line raises, unless on_error is given: it is then called
    with the 1-based line number and the parse error, and reading continues.
    """
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except ValueError as e:
                if on_error is None:
                    raise
                on_error(lineno, str(e))
                continue
            yield row

"""Crash-safe file writes.

Every persisted file (ledgers, session cache) goes through ``atomic_write_text``:
the data is written to a temporary file in the destination directory, flushed
and fsync'ed, then moved over the destination with ``os.replace``. A reader sees
either the previous content or the new content, never a partial write.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union

from playtime_farmer.core.infra.retry import get_replace_retry

PathLike = Union[str, Path]


@get_replace_retry()
def _replace(source: str, destination: Path) -> None:
    os.replace(source, destination)


def atomic_write_text(path: PathLike, text: str) -> None:
    """
    Atomically replace ``path`` with ``text``.

    Args:
        path: Destination file
        text: Full new content

    Raises:
        OSError: If the write or the final rename fails; the destination is untouched
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        _replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_write_json(path: PathLike, data: Any) -> None:
    """Serialize ``data`` as JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2, sort_keys=True))


def read_json(path: PathLike) -> Any:
    """
    Read a JSON document.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the content is not valid JSON
    """
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)

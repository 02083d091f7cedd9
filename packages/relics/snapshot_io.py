"""Reading pipeline inputs and writing snapshot files."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterator, Union

from .errors import FatalInputError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def read_json_input(path: PathLike, expect: type = dict) -> Any:
    """Load a required JSON input file.

    Raises:
        FatalInputError: The file is missing, unreadable, not UTF-8, not JSON, or its
            top-level value is not of type ``expect``
    """
    input_path = Path(path)
    if not input_path.exists():
        raise FatalInputError(str(input_path), "input file not found")
    try:
        raw = input_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FatalInputError(str(input_path), f"could not read file: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise FatalInputError(str(input_path), f"not valid UTF-8: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FatalInputError(str(input_path), f"failed to parse JSON: {exc}") from exc
    if not isinstance(payload, expect):
        raise FatalInputError(
            str(input_path),
            f"expected a JSON {expect.__name__}, got {type(payload).__name__}",
        )
    return payload


def dumps_snapshot(payload: Any) -> str:
    """Serialize deterministically: sorted keys, two-space indent, trailing newline."""
    return json.dumps(payload, indent=2, sort_keys=True, allow_nan=False) + "\n"


def write_json_atomic(path: PathLike, payload: Any) -> Path:
    """Write ``payload`` to ``path`` through a temp file and ``os.replace``.

    Readers see either the previous file or the complete new one.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    text = dumps_snapshot(payload)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{output_path.name}.", suffix=".tmp", dir=str(output_path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, output_path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
    logger.debug("Wrote %d bytes to %s", len(text), output_path)
    return output_path


def lock_path_for(path: PathLike) -> Path:
    output_path = Path(path)
    return output_path.with_name(output_path.name + ".lock")


@contextlib.contextmanager
def exclusive_output(path: PathLike) -> Iterator[Path]:
    """Hold ``<path>.lock`` for the duration of the block.

    Raises:
        FatalInputError: Another run already owns the output path
    """
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as exc:
        raise FatalInputError(
            str(path),
            f"output is locked by another run (remove {lock_path} if stale)",
        ) from exc
    try:
        os.write(fd, str(os.getpid()).encode("ascii"))
    finally:
        os.close(fd)
    try:
        yield Path(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(str(lock_path))

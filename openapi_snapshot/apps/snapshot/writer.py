"""
Output Writer - Serialization and Atomic File Commit

Serializes projected values with orjson (pretty by default, minified on
request) and commits them either to stdout or to a file. File writes go to a
temporary file in the destination directory which is then renamed over the
final path, so readers only ever see the previous or the new content.

Usage:
    from openapi_snapshot.apps.snapshot.writer import serialize, write_atomic

    write_atomic(Path("openapi/backend_openapi.json"), serialize(value, minify=False))
"""

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, BinaryIO

import orjson

from openapi_snapshot.utils.errors import ShapeError, WriteError

logger = logging.getLogger(__name__)


def serialize(value: Any, minify: bool = False) -> bytes:
    """
    Serialize a JSON value.

    Pretty output is indented with two spaces and ends with a newline;
    minified output is a single line without one. Key order is preserved.

    Raises:
        ShapeError: If the value holds something JSON cannot represent
    """
    option = 0 if minify else orjson.OPT_INDENT_2 | orjson.OPT_APPEND_NEWLINE
    try:
        return orjson.dumps(value, option=option)
    except orjson.JSONEncodeError as e:
        raise ShapeError(f"value is not serializable as JSON: {e}") from e


def write_stream(payload: bytes, stream: BinaryIO | None = None) -> None:
    """Write raw bytes to a binary stream (stdout by default), newline terminated."""
    target = stream if stream is not None else sys.stdout.buffer
    target.write(payload if payload.endswith(b"\n") else payload + b"\n")
    target.flush()


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove temp file: path=%s, error=%s", path, e)


def write_atomic(path: Path, payload: bytes) -> None:
    """
    Replace `path` with `payload` without exposing partial content.

    Creates missing parent directories, writes and fsyncs a temp file in the
    same directory, then renames it over the destination. The temp file is
    removed on any failure, including interruption before the rename.

    Args:
        path: Final destination
        payload: Serialized bytes

    Raises:
        WriteError: If the directory, temp file or rename step fails
    """
    parent = path.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WriteError(str(path), f"failed to create output directory: {e}") from e

    if path.is_dir():
        raise WriteError(str(path), "destination is a directory")

    try:
        fd, temp_path = tempfile.mkstemp(dir=parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise WriteError(str(path), f"failed to create temp file: {e}") from e

    stage = "write temp file"
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        stage = "move temp file"
        # mkstemp creates 0600 files
        os.chmod(temp_path, 0o644)
        os.replace(temp_path, path)
    except OSError as e:
        _remove_quietly(temp_path)
        raise WriteError(str(path), f"failed to {stage}: {e}") from e
    except BaseException:
        _remove_quietly(temp_path)
        raise

    logger.debug("Wrote %d bytes to %s", len(payload), path)

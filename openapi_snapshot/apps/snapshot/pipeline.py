"""
Snapshot Pipeline - One Fetch, Every Configured Target

Runs a single fetch -> project -> write pass. The document is fetched once
and projected for each configured target:

- full profile: the (optionally reduced) document to `out`, plus an outline
  to `outline_out` when configured
- outline profile: the outline to `out`

Shared by one-shot mode and by every watch cycle.
"""

import logging
from typing import Any, NamedTuple

import httpx

from openapi_snapshot.apps.snapshot.fetcher import fetch_document
from openapi_snapshot.apps.snapshot.projector import outline_document, project
from openapi_snapshot.apps.snapshot.writer import serialize, write_atomic, write_stream
from openapi_snapshot.utils.config import SnapshotConfig
from openapi_snapshot.utils.schemas import ProjectionKind

logger = logging.getLogger(__name__)


class OutputPayloads(NamedTuple):
    primary: bytes
    outline: bytes | None = None


def build_outputs(config: SnapshotConfig, document: Any) -> OutputPayloads:
    """
    Project and serialize a fetched document for every configured target.

    Both payloads are built before anything is written, so a projection
    failure leaves every output untouched.

    Raises:
        ShapeError: If a projection fails
    """
    primary = serialize(project(document, config.projection), config.minify)

    outline = None
    if config.projection.kind != ProjectionKind.OUTLINE and config.outline_out is not None:
        outline = serialize(outline_document(document), config.minify)

    return OutputPayloads(primary=primary, outline=outline)


def write_outputs(config: SnapshotConfig, outputs: OutputPayloads) -> list[str]:
    """
    Commit payloads to stdout or to their files.

    Returns:
        Destinations written ("stdout" or file paths)

    Raises:
        WriteError: If a file cannot be committed
    """
    if config.stdout:
        write_stream(outputs.primary)
        return ["stdout"]

    written: list[str] = []
    if config.out is not None:
        write_atomic(config.out, outputs.primary)
        written.append(str(config.out))
    if outputs.outline is not None and config.outline_out is not None:
        write_atomic(config.outline_out, outputs.outline)
        written.append(str(config.outline_out))
    return written


async def run_once(
    config: SnapshotConfig,
    url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[str]:
    """
    Fetch once, project and write every configured target.

    Args:
        config: Validated run configuration
        url: Override for config.url (the watch controller's resolved URL)
        transport: Optional httpx transport

    Returns:
        Destinations written

    Raises:
        SnapshotError: Any fetch, projection or write failure
    """
    document = await fetch_document(
        url or config.url,
        headers=config.headers,
        timeout_ms=config.timeout_ms,
        retry_policy=config.retry,
        transport=transport,
    )
    outputs = build_outputs(config, document)
    return write_outputs(config, outputs)

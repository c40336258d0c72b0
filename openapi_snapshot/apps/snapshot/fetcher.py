"""
Document Fetcher - HTTP GET with Bounded Retry

Retrieves the OpenAPI document and classifies the outcome:
- 2xx with a JSON body: parsed document
- Non-2xx: HttpStatusError with the status and a bounded body snippet
- Connection, DNS or timeout failure: TransportError
- Redirect loop or undecodable body: TransportError marked terminal
- Body that is not JSON: ParseError

Transient TransportErrors and 5xx responses are retried with exponential backoff via
tenacity; 4xx and parse failures are returned immediately. After the last
attempt the final transient error is raised unchanged.

Usage:
    from openapi_snapshot.apps.snapshot.fetcher import fetch_document

    document = await fetch_document("http://localhost:3000/api-docs/openapi.json")
"""

import logging
from typing import Any, Mapping

import httpx
import orjson
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from openapi_snapshot.utils.errors import (
    FetchError,
    HttpStatusError,
    ParseError,
    TransportError,
    UsageError,
)
from openapi_snapshot.utils.schemas import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_HEADERS: dict[str, str] = {"Accept": "application/json"}


def merge_headers(headers: Mapping[str, str] | None = None) -> httpx.Headers:
    """Merge caller headers over the defaults. Caller values win, case-insensitively."""
    merged = httpx.Headers(DEFAULT_HEADERS)
    if headers:
        merged.update(headers)
    return merged


def body_snippet(content: bytes, limit: int) -> str:
    """First `limit` bytes of a response body, invalid UTF-8 replaced."""
    return content[:limit].decode("utf-8", errors="replace")


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.is_transient


async def fetch_once(
    client: httpx.AsyncClient,
    url: str,
    headers: httpx.Headers,
    snippet_bytes: int = 512,
) -> Any:
    """
    Issue a single GET and return the parsed JSON body.

    Args:
        client: Open HTTP client
        url: Document URL
        headers: Request headers (already merged with defaults)
        snippet_bytes: Maximum body bytes kept in an HttpStatusError

    Returns:
        Parsed JSON value

    Raises:
        TransportError: On connection failure, timeout, redirect loop or undecodable body
        HttpStatusError: On a non-2xx response
        ParseError: If the body is not valid JSON
        UsageError: If the URL cannot be parsed
    """
    try:
        response = await client.get(url, headers=headers)
    except httpx.InvalidURL as e:
        raise UsageError(f"invalid URL {url!r}: {e}") from e
    except httpx.TimeoutException as e:
        raise TransportError(url, f"timed out ({type(e).__name__})") from e
    except httpx.TransportError as e:
        raise TransportError(url, str(e) or type(e).__name__) from e
    except httpx.TooManyRedirects as e:
        raise TransportError(url, f"too many redirects: {e}", transient=False) from e
    except httpx.RequestError as e:
        # DecodingError and anything httpx adds later
        raise TransportError(url, f"{type(e).__name__}: {e}", transient=False) from e

    if not response.is_success:
        raise HttpStatusError(
            url,
            response.status_code,
            body_snippet(response.content, snippet_bytes),
        )

    try:
        return orjson.loads(response.content)
    except orjson.JSONDecodeError as e:
        raise ParseError(url, str(e)) from e


async def fetch_document(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout_ms: int = 10_000,
    retry_policy: RetryPolicy | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Any:
    """
    Fetch and parse the document, retrying transient failures.

    Args:
        url: Document URL
        headers: Extra request headers
        timeout_ms: Per-attempt timeout
        retry_policy: Retry cap and backoff, defaults to RetryPolicy()
        transport: Optional httpx transport (tests inject a MockTransport)

    Returns:
        Parsed JSON document

    Raises:
        FetchError: Terminal failure, or the last transient failure once retries are exhausted
    """
    policy = retry_policy or RetryPolicy()
    merged = merge_headers(headers)
    attempts = policy.max_retries + 1

    def log_retry(retry_state: RetryCallState) -> None:
        sleep = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Fetch attempt %d/%d failed, retrying in %.2fs: %s",
            retry_state.attempt_number,
            attempts,
            sleep,
            retry_state.outcome.exception() if retry_state.outcome else None,
            extra={"url": url},
        )

    retrying = AsyncRetrying(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay_ms / 1000,
            max=policy.max_delay_ms / 1000,
        ),
        before_sleep=log_retry,
        reraise=True,
    )

    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_ms / 1000),
        follow_redirects=True,
        transport=transport,
    ) as client:
        async for attempt in retrying:
            with attempt:
                document = await fetch_once(client, url, merged, policy.body_snippet_bytes)

    logger.debug("Fetched document", extra={"url": url})
    return document


async def check_reachable(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout_ms: int = 10_000,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """
    Single unretried attempt used to decide whether to offer a replacement URL.

    Any fetch failure (connection, status or body) counts as unreachable.
    """
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_ms / 1000),
        follow_redirects=True,
        transport=transport,
    ) as client:
        try:
            await fetch_once(client, url, merge_headers(headers))
        except FetchError as e:
            logger.info("Endpoint not reachable: %s", e, extra={"url": url})
            return False
    return True

"""
Error Taxonomy - Snapshot Failure Categories

Every failure the snapshot pipeline can produce is a SnapshotError subclass.
Each category maps to a distinct process exit code so callers of the one-shot
mode can branch on the outcome:

- FetchError (TransportError, HttpStatusError): 1
- UsageError: 2 (shared with click's own usage errors)
- ParseError: 3
- ShapeError (missing keys, outline malformation, conflicting projection): 4
- WriteError: 5

Usage:
    from openapi_snapshot.utils.errors import SnapshotError

    try:
        run_once(config)
    except SnapshotError as e:
        sys.exit(e.exit_code)
"""


class SnapshotError(Exception):
    """Base class for all snapshot failures."""

    exit_code = 1


class UsageError(SnapshotError):
    """Invalid option values that the CLI layer could not reject itself."""

    exit_code = 2


class FetchError(SnapshotError):
    """Failure while retrieving the remote document."""

    exit_code = 1

    @property
    def is_transient(self) -> bool:
        """Whether the retry layer may attempt the request again."""
        return False


class TransportError(FetchError):
    """Connection refused, DNS failure, timeout or another request-level failure.

    Transient unless raised with transient=False (redirect loops, undecodable
    bodies).
    """

    def __init__(self, url: str, reason: str, transient: bool = True) -> None:
        self.url = url
        self.reason = reason
        self.transient = transient
        super().__init__(f"request to {url} failed: {reason}")

    @property
    def is_transient(self) -> bool:
        return self.transient


class HttpStatusError(FetchError):
    """Non-2xx response. 5xx is transient, 4xx is terminal."""

    def __init__(self, url: str, status: int, body_snippet: str) -> None:
        self.url = url
        self.status = status
        self.body_snippet = body_snippet
        message = f"unexpected status {status} from {url}"
        if body_snippet:
            message = f"{message}: {body_snippet}"
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        return self.status >= 500


class ParseError(FetchError):
    """Response body is not valid JSON. Never retried."""

    exit_code = 3

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"invalid JSON from {url}: {reason}")


class ShapeError(SnapshotError):
    """Document or configuration does not have the shape a projection needs."""

    exit_code = 4


class InvalidDocument(ShapeError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class MissingKey(ShapeError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"missing top-level key: {key}")


class InvalidPathItem(ShapeError):
    def __init__(self, path: str, method: str | None = None) -> None:
        self.path = path
        self.method = method
        if method:
            super().__init__(f"operation must be an object: {path} {method}")
        else:
            super().__init__(f"path item must be an object: {path}")


class InvalidParameter(ShapeError):
    def __init__(self, path: str, method: str) -> None:
        self.path = path
        self.method = method
        super().__init__(f"parameter must be an object: {path} {method}")


class MissingParameterName(ShapeError):
    def __init__(self, path: str, method: str) -> None:
        self.path = path
        self.method = method
        super().__init__(f"query parameter missing name: {path} {method}")


class UnsupportedContentType(ShapeError):
    def __init__(self, path: str, method: str, media_type: str) -> None:
        self.path = path
        self.method = method
        self.media_type = media_type
        super().__init__(
            f"unsupported parameter content type {media_type!r}: {path} {method}"
        )


class MalformedSchema(ShapeError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"schema must be an object: {name}")


class UnresolvedReference(ShapeError):
    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__(f"schema reference does not resolve: {ref}")


class ConflictingProjection(ShapeError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class InvalidReduceList(ShapeError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class WriteError(SnapshotError):
    """Directory creation, temp file write or rename failed."""

    exit_code = 5

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"failed to write {path}: {reason}")

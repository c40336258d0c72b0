"""
Document Projector - Reduced and Outline Views

Pure functions mapping a fetched OpenAPI document to the value that gets
written:

- Full: the document unchanged
- Reduce: a new object holding only the requested top-level keys, always in
  the order paths, components, values copied verbatim
- Outline: {"paths": ..., "schemas": ...} with query parameter names, request
  and response schema references per operation, plus a one-level summary of
  every component schema reachable from those references

Shape problems raise ShapeError subclasses naming the offending path, method
or schema. Nothing is coerced silently.

Usage:
    from openapi_snapshot.apps.snapshot.projector import project
    from openapi_snapshot.utils.schemas import ProjectionRequest

    outline = project(document, ProjectionRequest.outline())
"""

import logging
from typing import Any

from openapi_snapshot.utils.errors import (
    InvalidDocument,
    InvalidParameter,
    InvalidPathItem,
    MalformedSchema,
    MissingKey,
    MissingParameterName,
    UnresolvedReference,
    UnsupportedContentType,
)
from openapi_snapshot.utils.schemas import (
    REDUCE_ORDER,
    OutlineOperation,
    OutlineSchema,
    ProjectionKind,
    ProjectionRequest,
    ReduceKey,
)

logger = logging.getLogger(__name__)

HTTP_METHODS = frozenset({"get", "put", "post", "delete", "options", "head", "patch", "trace"})
JSON_MEDIA_TYPE = "application/json"
SCHEMA_REF_PREFIX = "#/components/schemas/"
PARAMETER_REF_PREFIX = "#/components/parameters/"
COMPOSITE_KEYWORDS = ("allOf", "oneOf", "anyOf")


def project(document: Any, request: ProjectionRequest) -> Any:
    """
    Apply a projection request to a document.

    Raises:
        ShapeError: If the document lacks the shape the projection needs
    """
    if request.kind == ProjectionKind.FULL:
        return document
    if request.kind == ProjectionKind.REDUCE:
        return reduce_document(document, request.keys)
    return outline_document(document)


def reduce_document(document: Any, keys: tuple[ReduceKey, ...]) -> dict[str, Any]:
    """
    Keep only the requested top-level keys.

    Args:
        document: Full OpenAPI document
        keys: Keys to keep; output order is fixed regardless of this order

    Returns:
        New object with exactly the requested keys

    Raises:
        InvalidDocument: If the document is not a JSON object
        MissingKey: If a requested key is absent
    """
    if not isinstance(document, dict):
        raise InvalidDocument("OpenAPI document must be a JSON object")

    reduced: dict[str, Any] = {}
    for key in REDUCE_ORDER:
        if key not in keys:
            continue
        if key.value not in document:
            raise MissingKey(key.value)
        reduced[key.value] = document[key.value]
    return reduced


def _unescape_pointer(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


class _Outliner:
    """Builds one outline. Collects schema references as operations are read."""

    def __init__(self, components: dict[str, Any]) -> None:
        self.components = components
        self.refs: list[str] = []

    def describe(self, schema: Any) -> str:
        """Single-string form of a schema: its $ref, or a synthesized type literal."""
        if not isinstance(schema, dict):
            return "any"

        ref = schema.get("$ref")
        if isinstance(ref, str):
            self.refs.append(ref)
            return ref

        for keyword in COMPOSITE_KEYWORDS:
            members = schema.get(keyword)
            if isinstance(members, list):
                return f"{keyword}[{'|'.join(self.describe(m) for m in members)}]"

        schema_type = schema.get("type")
        if schema_type == "array":
            return f"array[{self.describe(schema['items']) if 'items' in schema else 'any'}]"
        if isinstance(schema_type, str):
            return schema_type
        if isinstance(schema_type, list):
            return "|".join(str(t) for t in schema_type)
        if "properties" in schema:
            return "object"
        return "any"

    def json_schema(self, content: Any) -> str | None:
        if not isinstance(content, dict):
            return None
        media = content.get(JSON_MEDIA_TYPE)
        if not isinstance(media, dict) or "schema" not in media:
            return None
        return self.describe(media["schema"])

    def resolve_parameter(self, param: dict[str, Any]) -> Any:
        ref = param["$ref"]
        if not isinstance(ref, str) or not ref.startswith(PARAMETER_REF_PREFIX):
            return None
        parameters = self.components.get("parameters")
        if not isinstance(parameters, dict):
            return None
        return parameters.get(_unescape_pointer(ref[len(PARAMETER_REF_PREFIX):]))

    def query_names(self, path: str, method: str, params: list[Any]) -> list[str]:
        names: list[str] = []
        for param in params:
            if not isinstance(param, dict):
                raise InvalidParameter(path, method)
            if "$ref" in param:
                resolved = self.resolve_parameter(param)
                if resolved is None:
                    logger.debug("Skipping unresolved parameter %s", param["$ref"])
                    continue
                if not isinstance(resolved, dict):
                    raise InvalidParameter(path, method)
                param = resolved

            if param.get("in") != "query":
                continue

            name = param.get("name")
            if not isinstance(name, str) or not name:
                raise MissingParameterName(path, method)

            content = param.get("content")
            if isinstance(content, dict):
                for media_type in content:
                    if media_type != JSON_MEDIA_TYPE:
                        raise UnsupportedContentType(path, method, media_type)

            if name not in names:
                names.append(name)
        return names

    def request_ref(self, path: str, method: str, operation: dict[str, Any]) -> str | None:
        body = operation.get("requestBody")
        if body is None:
            return None
        if not isinstance(body, dict):
            raise InvalidDocument(f"requestBody must be an object: {path} {method}")
        if isinstance(body.get("$ref"), str):
            return body["$ref"]
        return self.json_schema(body.get("content"))

    def response_refs(
        self, path: str, method: str, operation: dict[str, Any]
    ) -> dict[str, str | None]:
        responses = operation.get("responses", {})
        if not isinstance(responses, dict):
            raise InvalidDocument(f"responses must be an object: {path} {method}")

        outlined: dict[str, str | None] = {}
        for code, response in responses.items():
            if not isinstance(response, dict):
                raise InvalidDocument(f"response must be an object: {path} {method} {code}")
            if isinstance(response.get("$ref"), str):
                outlined[str(code)] = response["$ref"]
            else:
                outlined[str(code)] = self.json_schema(response.get("content"))
        return outlined

    def outline_paths(self, paths: dict[str, Any]) -> dict[str, Any]:
        outlined: dict[str, Any] = {}
        for path, item in paths.items():
            if not isinstance(item, dict):
                raise InvalidPathItem(path)

            shared = item.get("parameters", [])
            methods: dict[str, Any] = {}
            for method, operation in item.items():
                if method not in HTTP_METHODS:
                    continue
                if not isinstance(operation, dict):
                    raise InvalidPathItem(path, method)

                params = operation.get("parameters", [])
                if not isinstance(shared, list) or not isinstance(params, list):
                    raise InvalidParameter(path, method)

                methods[method] = OutlineOperation(
                    query=self.query_names(path, method, shared + params),
                    request=self.request_ref(path, method, operation),
                    responses=self.response_refs(path, method, operation),
                ).model_dump()
            outlined[path] = methods
        return outlined

    def outline_schema(self, schema: dict[str, Any]) -> dict[str, Any]:
        if isinstance(schema.get("$ref"), str):
            return OutlineSchema(allOf=[self.describe(schema)]).model_dump(exclude_none=True)

        schema_type = schema.get("type")
        if isinstance(schema_type, list):
            schema_type = "|".join(str(t) for t in schema_type)

        required = schema.get("required")
        properties = schema.get("properties")
        entry = OutlineSchema(
            type=schema_type if isinstance(schema_type, str) else "object",
            required=[r for r in required if isinstance(r, str)] if isinstance(required, list) else [],
            properties=(
                {name: self.describe(value) for name, value in properties.items()}
                if isinstance(properties, dict)
                else {}
            ),
        )
        if schema_type == "array":
            entry.items = self.describe(schema["items"]) if "items" in schema else "any"
        for keyword in COMPOSITE_KEYWORDS:
            members = schema.get(keyword)
            if isinstance(members, list):
                setattr(entry, keyword, [self.describe(m) for m in members])
        return entry.model_dump(exclude_none=True)

    def outline_schemas(self) -> dict[str, Any]:
        """Summarize every component schema reachable from the collected references.

        Each entry is one level deep; nested detail stays as reference strings
        that are queued in turn. Each name is visited once, so cycles end.
        """
        schemas = self.components.get("schemas")
        entries: dict[str, Any] = {}
        seen: set[str] = set()

        while self.refs:
            ref = self.refs.pop(0)
            if ref in seen or not ref.startswith(SCHEMA_REF_PREFIX):
                continue
            seen.add(ref)

            if schemas is None:
                raise MissingKey("components.schemas")
            if not isinstance(schemas, dict):
                raise InvalidDocument("components.schemas must be an object")

            name = _unescape_pointer(ref[len(SCHEMA_REF_PREFIX):])
            if name not in schemas:
                raise UnresolvedReference(ref)
            schema = schemas[name]
            if not isinstance(schema, dict):
                raise MalformedSchema(name)
            entries[name] = self.outline_schema(schema)

        if not entries:
            return {}
        return {name: entries[name] for name in schemas if name in entries}


def outline_document(document: Any) -> dict[str, Any]:
    """
    Build the compact outline of an OpenAPI document.

    Returns:
        {"paths": {path: {method: {query, request, responses}}}, "schemas": {name: {...}}}

    Raises:
        InvalidDocument: If the document or one of its containers is not an object
        MissingKey: If paths is absent, or references are used without components.schemas
        InvalidPathItem: If a path item or operation is not an object
        MissingParameterName: If a query parameter has no name
        UnsupportedContentType: If a query parameter uses non-JSON content
        UnresolvedReference: If a schema reference names an absent schema
        MalformedSchema: If a referenced schema entry is not an object
    """
    if not isinstance(document, dict):
        raise InvalidDocument("OpenAPI document must be a JSON object")
    if "paths" not in document:
        raise MissingKey("paths")
    paths = document["paths"]
    if not isinstance(paths, dict):
        raise InvalidDocument("paths must be an object")

    components = document.get("components", {})
    if not isinstance(components, dict):
        raise InvalidDocument("components must be an object")

    outliner = _Outliner(components)
    outlined_paths = outliner.outline_paths(paths)
    return {
        "paths": outlined_paths,
        "schemas": outliner.outline_schemas(),
    }

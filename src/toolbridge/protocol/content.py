"""Rendering of ``tools/call`` result payloads into text for the model."""

import json
from typing import Any, List, cast

from mcp.types import CallToolResult, EmbeddedResource, ImageContent, TextContent
from pydantic import ValidationError


def _dump(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def render_call_result(raw: Any) -> str:
    """Render a raw ``tools/call`` result as text.

    Payloads following the MCP content-block model are flattened block by block;
    anything else is serialized as JSON.

    Args:
        raw: The result payload returned by a tool server.

    Returns:
        A text representation suitable for a tool message.
    """
    if raw is None:
        return "Success"

    try:
        result = CallToolResult.model_validate(raw)
    except ValidationError:
        return _dump(raw)

    output: List[str] = []
    for c in result.content:
        if c.type == "text":
            output.append(cast(TextContent, c).text)
        elif c.type == "image":
            output.append(f"[Image: {cast(ImageContent, c).mimeType}]")
        elif c.type == "resource":
            output.append(f"[Resource: {cast(EmbeddedResource, c).resource.uri}]")
        elif c.type == "resource_link":
            output.append(f"[Resource: {getattr(c, 'uri', '')}]")
        else:
            output.append(f"[Unknown content type: {c.type}]")

    structured = getattr(result, "structuredContent", None)
    if not output and structured:
        return _dump(structured)

    return "\n".join(output) if output else "Success"


def error_text(raw: Any) -> str:
    """Extract the message of a result flagged with ``isError``."""
    text = render_call_result(raw)
    return "Tool reported an error." if text == "Success" else text

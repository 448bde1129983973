"""Human-readable narration for tool calls.

Parameter summaries, success summaries and failure explanations shown
in the activity log, plus the remediation hint returned to the model
when a tool fails.
"""

from __future__ import annotations

import json
from typing import Any

MAX_VALUE_LENGTH = 100
MAX_ERROR_LENGTH = 200
MAX_PREVIEW_LENGTH = 50

_FILE_READ_TOOLS = frozenset({"getFileContent", "getRawFileContent"})
_LINE_EDIT_TOOLS = frozenset(
    {
        "replaceLines",
        "insertLines",
        "deleteLines",
        "editCode",
        "addCode",
        "removeCode",
        "createFile",
    }
)
_MESSAGE_TOOLS = frozenset({"sendSlackMessage", "sendChannelMessage", "sendDirectMessage"})


def _preview(value: Any, limit: int = MAX_VALUE_LENGTH) -> str:  # noqa: ANN401
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= limit else f"{text[:limit]}..."


def _file_path(params: dict[str, Any]) -> str | None:
    return params.get("file_path") or params.get("path")


def _line_range(params: dict[str, Any]) -> str | None:
    start = params.get("start_line_one_indexed", params.get("start_line"))
    end = params.get("end_line_one_indexed_inclusive", params.get("end_line"))
    if start is None and params.get("line_number") is not None:
        return f"line {params['line_number']}"
    if start is None:
        return None
    return f"lines {start}-{end}" if end is not None else f"from line {start}"


def format_parameters(tool_name: str, params: dict[str, Any] | None) -> str:
    """Short summary of a tool call's parameters.

    Common tools get a dedicated form; anything else falls back to
    ``key: value`` pairs with each value truncated.
    """
    params = params or {}

    if tool_name == "searchEmbeddedCode":
        summary = f'query "{params.get("query", "")}"'
        if params.get("repository"):
            summary += f" in {params['repository']}"
        if params.get("fileFilter"):
            summary += f" (filter: {params['fileFilter']})"
        return summary

    if tool_name in _FILE_READ_TOOLS:
        summary = str(_file_path(params) or "unknown file")
        if params.get("repository"):
            summary += f" in {params['repository']}"
        if params.get("should_read_entire_file"):
            summary += " (entire file)"
        elif line_range := _line_range(params):
            summary += f" ({line_range})"
        return summary

    if tool_name == "createPullRequest":
        return (
            f'"{params.get("title", "")}" '
            f"({params.get('head', '?')} → {params.get('base', '?')})"
        )

    if tool_name == "createBranch":
        branch = params.get("branch") or params.get("branchName") or "?"
        base = params.get("baseBranch") or params.get("base") or "default branch"
        summary = f"{branch} from {base}"
        if params.get("repository"):
            summary += f" in {params['repository']}"
        return summary

    if tool_name in _LINE_EDIT_TOOLS:
        summary = str(_file_path(params) or "unknown file")
        if params.get("repository"):
            summary += f" in {params['repository']}"
        if line_range := _line_range(params):
            summary += f" ({line_range})"
        return summary

    if tool_name == "updateIssueStatus":
        return f"{params.get('issueId', '?')} → {params.get('status', '?')}"

    if tool_name == "createLinearComment":
        return f"{params.get('issueId', '?')}: {_preview(params.get('body', ''), 80)}"

    if tool_name in _MESSAGE_TOOLS:
        target = params.get("channel") or params.get("userId") or "?"
        return f"{target}: {_preview(params.get('text', ''), 80)}"

    return ", ".join(f"{key}: {_preview(value)}" for key, value in params.items())


def summarize_success(
    tool_name: str, result: Any, params: dict[str, Any] | None  # noqa: ANN401
) -> str:
    """Short description of what a successful call returned."""
    params = params or {}
    if not result:
        return "Completed successfully"

    mapping = result if isinstance(result, dict) else {}

    if "search" in tool_name.lower():
        if isinstance(result, list):
            count: Any = len(result)
        elif isinstance(mapping.get("results"), list):
            count = len(mapping["results"])
        else:
            count = "unknown"
        return f"Found {count} results"

    if "file" in tool_name.lower():
        if mapping.get("totalLines"):
            return f"Read {mapping['totalLines']} lines from {_file_path(params)}"
        content = mapping.get("content") if mapping else result
        if isinstance(content, str):
            return f"Processed {len(content)} characters"

    if tool_name == "createPullRequest" and mapping.get("number"):
        return f"Created PR #{mapping['number']}"

    if tool_name.startswith("create"):
        ident = mapping.get("id") or mapping.get("url") or mapping.get("number")
        return f"Created successfully ({ident})" if ident else "Created successfully"

    if tool_name.startswith("update"):
        return "Updated successfully"

    if isinstance(result, str):
        preview = result
    else:
        preview = str(mapping.get("text") or mapping.get("message") or "Success")
    return _preview(preview, MAX_PREVIEW_LENGTH)


def _is_not_found(error: str) -> bool:
    return "File not found" in error or "404" in error


def _is_permission(error: str) -> bool:
    return "permission" in error.lower() or "403" in error


def _is_rate_limit(error: str) -> bool:
    return "rate limit" in error.lower() or "429" in error


def describe_failure(tool_name: str, error: str, params: dict[str, Any] | None) -> str:
    """Explain a tool failure in one line."""
    params = params or {}
    if _is_not_found(error):
        return f"File/resource not found: {_file_path(params) or 'unknown'}"
    if _is_permission(error):
        return "Permission denied - check access rights"
    if _is_rate_limit(error):
        return "Rate limit exceeded - wait before retrying"
    return _preview(error, MAX_ERROR_LENGTH)


def failure_guidance(tool_name: str, error: str) -> str:
    """Remediation hint returned to the model alongside a failure."""
    if _is_not_found(error):
        return "Try checking if the file path is correct or use a different file."
    if _is_permission(error):
        return "Verify you have the necessary permissions for this operation."
    if "Old code not found" in error or "not match" in error:
        return "Read the current file content first and use exact code for editing."
    if _is_rate_limit(error):
        return "Wait a moment before trying again, or use a different approach."
    if "network" in error.lower() or "timeout" in error.lower():
        return "Check your connection or try the operation again."
    return "Consider trying a different approach or checking the input parameters."

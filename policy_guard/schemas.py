"""Tool event schemas.

The envelope is validated first; ``tool_input`` is then validated against the
model registered for ``tool_name``. Unknown tools keep their raw input.
Unexpected extra keys are ignored so newer agent versions keep working.
"""

from typing import Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
)

from policy_guard.errors import SchemaMismatch

Number = Union[StrictInt, StrictFloat]


class _ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EditInput(_ToolInput):
    file_path: StrictStr
    old_string: StrictStr
    new_string: StrictStr
    replace_all: StrictBool | None = None


class EditOperation(_ToolInput):
    old_string: StrictStr
    new_string: StrictStr
    replace_all: StrictBool | None = None


class MultiEditInput(_ToolInput):
    file_path: StrictStr
    edits: list[EditOperation]


class WriteInput(_ToolInput):
    file_path: StrictStr
    content: StrictStr


class BashInput(_ToolInput):
    command: StrictStr
    description: StrictStr | None = None
    timeout: Number | None = None
    run_in_background: StrictBool | None = None


class ReadInput(_ToolInput):
    file_path: StrictStr
    offset: Number | None = None
    limit: Number | None = None


class GrepInput(_ToolInput):
    pattern: StrictStr
    path: StrictStr | None = None
    glob: StrictStr | None = None
    output_mode: Literal["content", "files_with_matches", "count"] | None = None
    after_context: Number | None = Field(None, alias="-A")
    before_context: Number | None = Field(None, alias="-B")
    context: Number | None = Field(None, alias="-C")
    ignore_case: StrictBool | None = Field(None, alias="-i")
    line_numbers: StrictBool | None = Field(None, alias="-n")
    type: StrictStr | None = None
    head_limit: Number | None = None
    multiline: StrictBool | None = None


class ExitPlanModeInput(_ToolInput):
    plan: StrictStr


class LSInput(_ToolInput):
    path: StrictStr
    ignore: list[StrictStr] | None = None


class WebFetchInput(_ToolInput):
    url: StrictStr
    prompt: StrictStr


class GlobInput(_ToolInput):
    pattern: StrictStr
    path: StrictStr | None = None


class NotebookReadInput(_ToolInput):
    notebook_path: StrictStr
    cell_id: StrictStr | None = None


class NotebookEditInput(_ToolInput):
    notebook_path: StrictStr
    new_source: StrictStr
    cell_id: StrictStr | None = None
    cell_type: Literal["code", "markdown"] | None = None
    edit_mode: Literal["replace", "insert", "delete"] | None = None


class WebSearchInput(_ToolInput):
    query: StrictStr
    allowed_domains: list[StrictStr] | None = None
    blocked_domains: list[StrictStr] | None = None


class BashOutputInput(_ToolInput):
    bash_id: StrictStr
    filter: StrictStr | None = None


class KillBashInput(_ToolInput):
    shell_id: StrictStr


TOOL_INPUT_MODELS = {
    "Edit": EditInput,
    "MultiEdit": MultiEditInput,
    "Write": WriteInput,
    "Bash": BashInput,
    "Read": ReadInput,
    "Grep": GrepInput,
    "ExitPlanMode": ExitPlanModeInput,
    "LS": LSInput,
    "WebFetch": WebFetchInput,
    "Glob": GlobInput,
    "NotebookRead": NotebookReadInput,
    "NotebookEdit": NotebookEditInput,
    "WebSearch": WebSearchInput,
    "BashOutput": BashOutputInput,
    "KillBash": KillBashInput,
}


class ToolEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: StrictStr
    transcript_path: StrictStr | None = None
    tool_name: StrictStr
    tool_input: Any = None


def _describe(exc):
    """One line per pydantic error: ``location: message``."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error["loc"]) or "<root>"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def parse_event(raw):
    """Validate a decoded hook payload into a ToolEvent.

    Raises SchemaMismatch when the envelope is invalid or a known tool's
    input does not match its schema.
    """
    try:
        event = ToolEvent.model_validate(raw)
    except ValidationError as e:
        raise SchemaMismatch(f"Invalid hook input: {_describe(e)}") from e
    model = TOOL_INPUT_MODELS.get(event.tool_name)
    if model is None:
        return event
    try:
        tool_input = model.model_validate(event.tool_input)
    except ValidationError as e:
        raise SchemaMismatch(f"Invalid {event.tool_name} tool input: {_describe(e)}") from e
    return event.model_copy(update={"tool_input": tool_input})

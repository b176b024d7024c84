"""Tool catalog exposed to the model and the executor that runs it.

Arguments arrive as loosely typed JSON; each tool has a pydantic model and the
calls form a union tagged by tool name, so nothing runs unvalidated.
"""

import json
import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from vibeprompt.errors import NoProjectLoaded
from vibeprompt.session import ProjectSession

logger = logging.getLogger(__name__)

DEFAULT_READ_LIMIT = 10_000


class NoArgs(BaseModel):
    pass


class ReadFileArgs(BaseModel):
    path: str = Field(description="Exact file path as returned by list_files")


class PathsArgs(BaseModel):
    paths: List[str] = Field(description="File paths as returned by list_files")


class UpdateInstructionArgs(BaseModel):
    text: str = Field(description="The detailed instruction text")


class ListFilesCall(BaseModel):
    name: Literal["list_files"]
    args: NoArgs = Field(default_factory=NoArgs)


class ReadFileCall(BaseModel):
    name: Literal["read_file"]
    args: ReadFileArgs


class SelectFilesCall(BaseModel):
    name: Literal["select_files"]
    args: PathsArgs


class DeselectFilesCall(BaseModel):
    name: Literal["deselect_files"]
    args: PathsArgs


class UpdateInstructionCall(BaseModel):
    name: Literal["update_instruction"]
    args: UpdateInstructionArgs


class SuggestTemplatesCall(BaseModel):
    name: Literal["suggest_templates"]
    args: NoArgs = Field(default_factory=NoArgs)


ToolCall = Annotated[
    Union[
        ListFilesCall,
        ReadFileCall,
        SelectFilesCall,
        DeselectFilesCall,
        UpdateInstructionCall,
        SuggestTemplatesCall,
    ],
    Field(discriminator="name"),
]

_TOOL_CALL = TypeAdapter(ToolCall)

TOOL_DESCRIPTIONS = {
    "list_files": ("List all file paths in the project to understand structure.", NoArgs),
    "read_file": ("Read the content of a file.", ReadFileArgs),
    "select_files": ("Add files to the prompt context.", PathsArgs),
    "deselect_files": ("Remove files from the prompt context.", PathsArgs),
    "update_instruction": ("Write or replace the instruction for the final prompt.", UpdateInstructionArgs),
    "suggest_templates": (
        "Analyze the project structure and add tailored prompt templates to the user's library suggestions.",
        NoArgs,
    ),
}


class ToolArgumentError(ValueError):
    pass


def tool_catalog() -> List[Dict[str, Any]]:
    schemas = []
    for name, (description, args_model) in TOOL_DESCRIPTIONS.items():
        parameters = args_model.model_json_schema()
        parameters.pop("title", None)
        schemas.append({
            "type": "function",
            "function": {
                "name": name,
                "description": description,
                "parameters": parameters,
            },
        })
    return schemas


def parse_tool_call(name: str, arguments: Union[str, Dict[str, Any], None]):
    if name not in TOOL_DESCRIPTIONS:
        raise ToolArgumentError(f"Unknown tool: {name}")
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolArgumentError(f"Arguments for {name} are not valid JSON: {e}")
    try:
        return _TOOL_CALL.validate_python({"name": name, "args": arguments or {}})
    except ValidationError as e:
        raise ToolArgumentError(f"Invalid arguments for {name}: {e.errors(include_url=False)}")


class ToolExecutor:
    def __init__(self, session: ProjectSession, assistant=None, read_limit: int = DEFAULT_READ_LIMIT):
        self.session = session
        self.assistant = assistant
        self.read_limit = read_limit

    async def run(self, name: str, arguments) -> Dict[str, Any]:
        """Execute one tool call; failures come back as {"error": ...}."""
        try:
            call = parse_tool_call(name, arguments)
            return await self.execute(call)
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            return {"error": str(e)}

    async def execute(self, call) -> Dict[str, Any]:
        handler = getattr(self, f"_{call.name}")
        return await handler(call.args)

    async def _list_files(self, args: NoArgs):
        return {"files": self.session.all_file_paths()}

    async def _read_file(self, args: ReadFileArgs):
        node = self.session.find_node(args.path)
        if node is None or not node.is_file:
            return {"error": "File not found"}
        content = await self.session.read_file(node.path)
        return {"content": content[:self.read_limit]}

    async def _select_files(self, args: PathsArgs):
        return {"count": self.session.select(args.paths)}

    async def _deselect_files(self, args: PathsArgs):
        return {"count": self.session.deselect(args.paths)}

    async def _update_instruction(self, args: UpdateInstructionArgs):
        self.session.set_instruction(args.text)
        return {"status": "ok"}

    async def _suggest_templates(self, args: NoArgs):
        if self.session.tree is None:
            raise NoProjectLoaded()
        if self.assistant is None:
            return {"error": "Template suggestions are not available"}
        suggestions = await self.assistant.suggest_templates(self.session.all_file_paths())
        self.session.suggested_templates = suggestions
        return {"message": "Templates generated and added to Library > Suggested tab."}

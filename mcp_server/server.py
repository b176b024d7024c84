import logging
from typing import Dict, List, Optional

from mcp.server.fastmcp import Context, FastMCP
from pydantic import Field

from vibe_agent.assist import PromptAssistant
from vibe_agent.orchestrator import create_agent
from vibeprompt.bundle import BundleOptions
from vibeprompt.compile import ContextMode
from vibeprompt.config import load_settings
from vibeprompt.errors import ConfigError
from vibeprompt.session import ProjectSession
from vibeprompt.storage import StateStore

logger = logging.getLogger(__name__)

mcp = FastMCP("VibePrompt", log_level="ERROR")
settings = load_settings()

_session: Optional[ProjectSession] = None
_agent = None
_assistant: Optional[PromptAssistant] = None


def set_session(session: Optional[ProjectSession]):
    global _session, _agent
    _session = session
    _agent = None


def get_session() -> ProjectSession:
    global _session
    if _session is None:
        if settings.workspace is None:
            raise ConfigError("VIBEPROMPT_WORKSPACE cannot be empty. Update .env")
        session = ProjectSession(store=StateStore(settings.state_dir))
        session.open_local(settings.workspace)
        _session = session
    return _session


def get_agent():
    global _agent
    if _agent is None:
        _agent = create_agent(get_session(), settings)
    return _agent


def get_assistant() -> PromptAssistant:
    global _assistant
    if _assistant is None:
        _assistant = PromptAssistant(model=settings.model, fast_model=settings.fast_model,
                                     api_key=settings.openai_api_key)
    return _assistant


@mcp.tool(
    name="list_files",
    description="List every file path in the loaded project"
)
async def list_files(ctx: Context = None) -> List[str]:
    session = get_session()
    paths = session.all_file_paths()
    await ctx.info(f"Project has {len(paths)} files")
    return paths


@mcp.tool(
    name="read_file",
    description="Read the contents of a file in the loaded project"
)
async def read_file(
    path: str = Field(description="File path exactly as returned by list_files"),
    ctx: Context = None
) -> str:
    await ctx.info(f"Reading file: {path}")
    content = await get_session().read_file(path)
    await ctx.info(f"Read {len(content)} characters from file")
    return content


@mcp.tool(
    name="select_files",
    description="Add files to the prompt context"
)
async def select_files(
    paths: List[str] = Field(description="File paths to add"),
    ctx: Context = None
) -> Dict:
    count = get_session().select(paths)
    await ctx.info(f"{count} files selected")
    return {"count": count}


@mcp.tool(
    name="deselect_files",
    description="Remove files from the prompt context"
)
async def deselect_files(
    paths: List[str] = Field(description="File paths to remove"),
    ctx: Context = None
) -> Dict:
    count = get_session().deselect(paths)
    await ctx.info(f"{count} files selected")
    return {"count": count}


@mcp.tool(
    name="update_instruction",
    description="Replace the draft instruction of the prompt"
)
async def update_instruction(
    text: str = Field(description="The detailed instruction text"),
    ctx: Context = None
) -> Dict:
    get_session().set_instruction(text)
    await ctx.info("Instruction updated")
    return {"status": "ok"}


@mcp.tool(
    name="compile_prompt",
    description="Compile the selected files and instruction into one prompt"
)
async def compile_prompt(
    embed: bool = Field(default=False, description="Embed file bodies instead of @path references"),
    ctx: Context = None
) -> str:
    session = get_session()
    if embed:
        for path in sorted(session.selected):
            try:
                await session.read_file(path)
            except Exception as e:
                await ctx.warning(f"Could not load {path}: {e}")
    return session.compile(ContextMode.EMBED if embed else ContextMode.REFERENCE)


@mcp.tool(
    name="build_bundle",
    description="Bundle every non-ignored file of the project into one XML context document"
)
async def build_bundle(
    respect_gitignore: bool = Field(default=True, description="Apply the project's root .gitignore"),
    ctx: Context = None
) -> Dict:
    await ctx.info("Scanning project for bundling")

    def report(progress):
        logger.debug("Bundled %d/%d", progress.scanned, progress.total)

    result = await get_session().bundle(
        BundleOptions(respect_ignore_file=respect_gitignore, batch_size=settings.batch_size),
        on_progress=report,
    )
    await ctx.info(f"Bundled {result.file_count} of {result.candidate_count} files")
    return {
        "artifact": result.artifact,
        "byte_size": result.byte_size,
        "file_count": result.file_count,
        "candidate_count": result.candidate_count,
        "approx_tokens": result.approx_tokens,
    }


@mcp.tool(
    name="ask",
    description="Ask the prompt architect agent to explore the project and draft the prompt"
)
async def ask(
    message: str = Field(description="What the user wants the final prompt to achieve"),
    ctx: Context = None
) -> str:
    await ctx.info("Starting agent turn...")
    agent = get_agent()
    await agent.send_message(message)
    reply = agent.last_reply()
    if reply is None:
        return "No response"
    return reply.text or "No response"


@mcp.tool(
    name="smart_select",
    description="Select the files relevant to an instruction (defaults to the draft instruction)"
)
async def smart_select(
    instruction: Optional[str] = Field(default=None, description="Instruction to match files against"),
    ctx: Context = None
) -> Dict:
    await ctx.info("Looking for relevant files...")
    session = get_session()
    relevant = await session.smart_select(get_assistant(), instruction)
    await ctx.info(f"Smart-selected {len(relevant)} file(s)")
    return {"selected": relevant, "count": len(session.selected)}


@mcp.tool(
    name="refine_instruction",
    description="Rewrite the draft instruction into a structured prompt using the selected files"
)
async def refine_instruction(ctx: Context = None) -> str:
    await ctx.info("Refining instruction...")
    return await get_session().refine_instruction(get_assistant())


@mcp.tool(
    name="import_repo",
    description="Load a GitHub repository as the current project"
)
async def import_repo(
    url: str = Field(description="GitHub repository URL, e.g. https://github.com/owner/repo"),
    ctx: Context = None
) -> Dict:
    session = _session or ProjectSession(store=StateStore(settings.state_dir))
    token = settings.github_token or (session.store.github_token() if session.store else None)
    await ctx.info(f"Importing {url}")
    tree = await session.import_github(url, token)
    if session is not _session:
        set_session(session)
    return {"project": tree.name, "files": len(tree.files()), "truncated": tree.truncated}


@mcp.tool(
    name="refresh_project",
    description="Pull the latest code for an imported GitHub repository, keeping the selection"
)
async def refresh_project(ctx: Context = None) -> Dict:
    session = get_session()
    tree = await session.refresh()
    if tree is None:
        await ctx.info("Project is not a GitHub import; nothing to refresh")
        return {"refreshed": False}
    await ctx.info(f"Repository updated: {len(tree.files())} files")
    return {"refreshed": True, "files": len(tree.files()), "selected": len(session.selected)}


@mcp.tool(
    name="list_templates",
    description="List saved prompt templates and the latest suggested ones"
)
async def list_templates(ctx: Context = None) -> Dict:
    session = get_session()
    return {
        "saved": [p.model_dump() for p in session.saved_prompts()],
        "suggested": [p.model_dump() for p in session.suggested_templates],
    }


@mcp.tool(
    name="save_template",
    description="Save a prompt template to the library"
)
async def save_template(
    name: str = Field(description="Short title"),
    template: str = Field(description="Prompt text"),
    tags: List[str] = Field(default_factory=list, description="Tags; defaults to ['custom']"),
    ctx: Context = None
) -> Dict:
    prompt = get_session().save_prompt(name, template, tags)
    await ctx.info(f"Saved template {prompt.name}")
    return prompt.model_dump()


if __name__ == "__main__":
    mcp.run(transport="stdio")

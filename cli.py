import argparse
import asyncio
import logging
import sys
from pathlib import Path

from vibe_agent.assist import PromptAssistant
from vibe_agent.orchestrator import AgentState, create_agent
from vibeprompt.bundle import BundleOptions
from vibeprompt.compile import ContextMode
from vibeprompt.config import load_settings
from vibeprompt.errors import WorkbenchError
from vibeprompt.github import GithubClient
from vibeprompt.session import ProjectSession
from vibeprompt.storage import StateStore
from vibeprompt.tree import Node


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def is_remote(source: str) -> bool:
    return source.startswith(("http://", "https://"))


async def open_source(session: ProjectSession, source: str, token=None):
    if is_remote(source):
        return await session.import_github(source, token)
    return session.open_local(source)


def render_tree(node: Node, depth: int, level: int = 0) -> list[str]:
    suffix = "/" if node.is_dir else ""
    lines = ["  " * level + node.name + suffix]
    if level < depth:
        for child in node.children:
            lines.extend(render_tree(child, depth, level + 1))
    return lines


def format_size(byte_size: int) -> str:
    return f"{byte_size / 1024 / 1024:.2f} MB"


async def cmd_tree(args, session, settings):
    tree = session.require_tree()
    print("\n".join(render_tree(tree.root, args.depth)))
    if tree.truncated:
        print("(repository listing was truncated by GitHub; some files may be missing)")


async def cmd_bundle(args, session, settings):
    tree = session.require_tree()

    def report(progress):
        print(f"\rScanning {progress.scanned}/{progress.total} ({progress.percent}%)", end="", file=sys.stderr)

    result = await session.bundle(
        BundleOptions(respect_ignore_file=not args.no_gitignore, batch_size=settings.batch_size),
        on_progress=report,
    )
    print(file=sys.stderr)

    output = Path(args.output or f"{tree.name}-context.xml")
    output.write_text(result.artifact, encoding="utf-8")
    print(f"Wrote {output}")
    print(f"Files: {result.file_count} of {result.candidate_count} candidates")
    print(f"Size: {format_size(result.byte_size)}  (~{result.approx_tokens} tokens, estimated)")
    if result.over_token_budget:
        print("Warning: bundle exceeds 1M estimated tokens and may not fit a model context window")


def make_assistant(settings) -> PromptAssistant:
    return PromptAssistant(model=settings.model, fast_model=settings.fast_model, api_key=settings.openai_api_key)


async def cmd_compile(args, session, settings):
    session.select(args.select)
    if args.instruction:
        session.set_instruction(args.instruction)
    if args.smart_select or args.refine:
        assistant = make_assistant(settings)
        if args.smart_select:
            relevant = await session.smart_select(assistant)
            print(f"Smart-selected {len(relevant)} file(s)", file=sys.stderr)
        if args.refine:
            await session.refine_instruction(assistant)
    mode = ContextMode.EMBED if args.embed else ContextMode.REFERENCE
    if mode is ContextMode.EMBED:
        for path in sorted(session.selected):
            try:
                await session.read_file(path)
            except WorkbenchError as e:
                logging.getLogger("cli").warning("Could not load %s: %s", path, e)
    print(session.compile(mode))


async def cmd_chat(args, session, settings):
    def on_event(event):
        if event.kind == "activity" and event.activity.state is AgentState.EXECUTING_TOOL:
            print(f"  [{event.activity.description}]")

    agent = create_agent(session, settings, on_event=on_event)
    print("Type a message, /refresh to pull the latest code, or 'exit' to quit.")
    try:
        while True:
            try:
                text = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            if text.strip() in ("exit", "quit"):
                break
            if not text.strip():
                continue
            if text.strip() == "/refresh":
                tree = await session.refresh()
                print("Repository updated" if tree else "Only GitHub imports can be refreshed")
                continue
            await agent.send_message(text)
            reply = agent.last_reply()
            if reply is not None:
                print(reply.text)
        if session.instruction:
            print("\n--- FINAL PROMPT ---")
            print(session.compile())
    finally:
        await agent.close()


def cmd_recent(store: StateStore):
    repos = store.recent_repos()
    if not repos:
        print("No recent repositories")
    for url in repos:
        print(url)


def cmd_templates(args, store: StateStore):
    session = ProjectSession(store=store)
    if args.add:
        name, template = args.add
        prompt = session.save_prompt(name, template, args.tag)
        print(f"Saved template {prompt.name} ({prompt.id})")
        return
    if args.delete:
        session.delete_prompt(args.delete)
        print(f"Deleted template {args.delete}")
        return
    prompts = session.saved_prompts()
    if not prompts:
        print("No saved templates")
    for prompt in prompts:
        print(f"{prompt.id}  {prompt.name}  [{', '.join(prompt.tags)}]")


async def main():
    parser = argparse.ArgumentParser(
        prog="vibeprompt",
        description="Prompt workbench: curate project context and draft prompts"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--token", help="GitHub access token (defaults to GITHUB_TOKEN or the remembered token)")

    subparser = parser.add_subparsers(dest="command", required=True)

    tree = subparser.add_parser("tree", help="Show the project tree")
    tree.add_argument("source", help="Directory, zip archive or GitHub URL")
    tree.add_argument("--depth", type=int, default=4, help="Maximum directory depth (default = 4)")

    bundle = subparser.add_parser("bundle", help="Bundle the project into one XML context file")
    bundle.add_argument("source", help="Directory, zip archive or GitHub URL")
    bundle.add_argument("-o", "--output", help="Output file (default: <project>-context.xml)")
    bundle.add_argument("--no-gitignore", action="store_true", help="Do not apply the root .gitignore")

    compile_parser = subparser.add_parser("compile", help="Compile selected files and an instruction into a prompt")
    compile_parser.add_argument("source", help="Directory, zip archive or GitHub URL")
    compile_parser.add_argument("--select", nargs="+", default=[], help="File paths to include")
    compile_parser.add_argument("--instruction", default="", help="Instruction text")
    compile_parser.add_argument("--embed", action="store_true", help="Embed file contents instead of @references")
    compile_parser.add_argument("--smart-select", action="store_true",
                                help="Let the model add the files relevant to the instruction")
    compile_parser.add_argument("--refine", action="store_true", help="Refine the instruction with the model")

    chat = subparser.add_parser("chat", help="Let the agent explore the project and draft the prompt")
    chat.add_argument("source", help="Directory, zip archive or GitHub URL")

    subparser.add_parser("recent", help="List recently imported GitHub repositories")

    templates = subparser.add_parser("templates", help="List or edit saved prompt templates")
    templates.add_argument("--add", nargs=2, metavar=("NAME", "TEXT"), help="Save a new template")
    templates.add_argument("--tag", action="append", default=[], help="Tag for --add (repeatable)")
    templates.add_argument("--delete", metavar="ID", help="Delete a saved template")

    args = parser.parse_args()
    setup_logging(args.verbose)

    settings = load_settings()
    store = StateStore(settings.state_dir)

    if args.command == "recent":
        cmd_recent(store)
        return
    if args.command == "templates":
        cmd_templates(args, store)
        return

    if args.token:
        store.remember_github_token(args.token)
    token = args.token or settings.github_token or store.github_token()
    session = ProjectSession(
        store=store,
        github_factory=lambda t: GithubClient(
            t, api_base=settings.github_api_base, raw_base=settings.raw_github_base
        ),
    )

    commands = {
        "tree": cmd_tree,
        "bundle": cmd_bundle,
        "compile": cmd_compile,
        "chat": cmd_chat,
    }

    try:
        await open_source(session, args.source, token)
        await commands[args.command](args, session, settings)
    except WorkbenchError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        await session.aclose()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()

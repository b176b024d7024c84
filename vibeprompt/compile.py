from enum import Enum
from typing import Iterable, Mapping


class ContextMode(str, Enum):
    REFERENCE = "reference"
    EMBED = "embed"


def compile_prompt(
    selected: Iterable[str],
    contents: Mapping[str, str],
    instruction: str,
    mode: ContextMode = ContextMode.REFERENCE,
) -> str:
    """Inline prompt: selected files (as @refs or embedded bodies) then the instruction."""
    paths = list(selected)
    header = f"--- CONTEXT FILES ({len(paths)}) ---\n" if paths else ""

    body = []
    for path in paths:
        if mode is ContextMode.REFERENCE:
            body.append(f"@{path}\n")
        else:
            content = contents.get(path) or "(Content not loaded)"
            body.append(f"File: {path}\n```\n{content}\n```\n\n")

    return f"{header}{''.join(body)}\n--- INSTRUCTION ---\n{instruction}"

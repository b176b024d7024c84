"""Export bundling: walk the tree, filter, read every file, emit one document.

Artifact layout::

    <project name="NAME">
      <file path="PATH">
    <![CDATA[
    ...raw text...
    ]]>
      </file>
    </project>
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol
from xml.sax.saxutils import escape

from vibeprompt.content import ContentAccessor
from vibeprompt.errors import WorkbenchError
from vibeprompt.ignore import (
    IGNORE_FILE_NAME,
    IgnoreRuleSet,
    is_system_ignored,
    matches_ignore_rules,
    parse_ignore_file,
)
from vibeprompt.tree import Node, ProjectTree, relative_path

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
# roughly four characters per token; an estimate, not a tokenizer count
TOKENS_PER_BYTE = 0.25
TOKEN_WARNING_THRESHOLD = 1_000_000


class CancelFlag(Protocol):
    def is_set(self) -> bool: ...


class BundleState(str, Enum):
    READY = "ready"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class BundleOptions:
    respect_ignore_file: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE


@dataclass(frozen=True)
class BundleProgress:
    scanned: int
    total: int

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return round(self.scanned * 100 / self.total)


@dataclass(frozen=True)
class BundleResult:
    state: BundleState
    project_name: str
    artifact: str = ""
    byte_size: int = 0
    file_count: int = 0
    candidate_count: int = 0

    @property
    def approx_tokens(self) -> int:
        """Heuristic token estimate (bytes / 4); not an exact count."""
        return approximate_tokens(self.byte_size)

    @property
    def over_token_budget(self) -> bool:
        return self.approx_tokens > TOKEN_WARNING_THRESHOLD

    @property
    def cancelled(self) -> bool:
        return self.state is BundleState.CANCELLED


def approximate_tokens(byte_size: int) -> int:
    return math.floor(byte_size * TOKENS_PER_BYTE)


def _attr(value: str) -> str:
    return escape(value, {'"': "&quot;"})


def _cdata(text: str) -> str:
    return text.replace("]]>", "]]]]><![CDATA[>")


def project_open_tag(name: str) -> str:
    return f'<project name="{_attr(name)}">\n'


PROJECT_CLOSE_TAG = "</project>"


def file_record(path: str, content: str) -> str:
    return f'  <file path="{_attr(path)}">\n<![CDATA[\n{_cdata(content)}\n]]>\n  </file>\n'


async def load_ignore_rules(tree: ProjectTree, accessor: ContentAccessor) -> IgnoreRuleSet:
    node = next((c for c in tree.root.children if c.name == IGNORE_FILE_NAME and c.is_file), None)
    try:
        if node is not None:
            content = await accessor.read(node)
        elif tree.ignore_source is not None:
            content = await accessor.read_ref(tree.ignore_source)
        else:
            return ()
    except (WorkbenchError, OSError) as e:
        logger.warning("Could not read %s: %s", IGNORE_FILE_NAME, e)
        return ()
    return parse_ignore_file(content)


def collect_candidates(tree: ProjectTree, rules: IgnoreRuleSet = ()) -> List[Node]:
    """Depth-first list of file nodes that survive system and pattern rules."""
    candidates: List[Node] = []
    root = tree.root

    def visit(node: Node):
        if is_system_ignored(node.name):
            return
        rel = relative_path(root, node)
        if rules and rel and matches_ignore_rules(rel, rules):
            return
        if node.is_file:
            candidates.append(node)
        for child in node.children:
            visit(child)

    visit(root)
    return candidates


async def _read_record(accessor: ContentAccessor, node: Node) -> Optional[str]:
    try:
        content = await accessor.read(node)
    except (WorkbenchError, OSError) as e:
        logger.debug("Skipping unreadable file %s: %s", node.path, e)
        return None
    if not content or "\0" in content:
        logger.debug("Skipping empty or binary file %s", node.path)
        return None
    return file_record(node.path, content)


async def build_bundle(
    tree: ProjectTree,
    accessor: ContentAccessor,
    options: BundleOptions = BundleOptions(),
    on_progress: Optional[Callable[[BundleProgress], None]] = None,
    cancel: Optional[CancelFlag] = None,
) -> BundleResult:
    rules: IgnoreRuleSet = ()
    if options.respect_ignore_file:
        rules = await load_ignore_rules(tree, accessor)

    candidates = collect_candidates(tree, rules)
    total = len(candidates)
    batch_size = max(1, options.batch_size)
    logger.info("Bundling %s: %d candidate files", tree.name, total)

    records: List[str] = []
    scanned = 0
    for start in range(0, total, batch_size):
        if cancel is not None and cancel.is_set():
            logger.info("Bundling of %s cancelled after %d files", tree.name, scanned)
            return BundleResult(state=BundleState.CANCELLED, project_name=tree.name, candidate_count=total)

        batch = candidates[start:start + batch_size]
        # gather keeps candidate order regardless of completion order
        results = await asyncio.gather(*(_read_record(accessor, node) for node in batch))
        records.extend(r for r in results if r)

        scanned += len(batch)
        if on_progress is not None:
            on_progress(BundleProgress(scanned=scanned, total=total))
        await asyncio.sleep(0)

    if cancel is not None and cancel.is_set():
        return BundleResult(state=BundleState.CANCELLED, project_name=tree.name, candidate_count=total)

    artifact = project_open_tag(tree.name) + "".join(records) + PROJECT_CLOSE_TAG
    result = BundleResult(
        state=BundleState.READY,
        project_name=tree.name,
        artifact=artifact,
        byte_size=len(artifact.encode("utf-8")),
        file_count=len(records),
        candidate_count=total,
    )
    logger.info(
        "Bundled %d/%d files from %s (%d bytes, ~%d tokens)",
        result.file_count, total, tree.name, result.byte_size, result.approx_tokens,
    )
    return result

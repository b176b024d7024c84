"""Single owner of the loaded tree, selection, content cache and draft text.

Every mutation goes through a named method here; the bundler and the agent
only read through the session, so the single-writer rule stays auditable.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Union

from vibeprompt.archive import load_archive_entries
from vibeprompt.bundle import BundleOptions, BundleProgress, BundleResult, CancelFlag, build_bundle
from vibeprompt.compile import ContextMode, compile_prompt
from vibeprompt.content import ContentAccessor
from vibeprompt.errors import DirectoryAccessUnsupported, NoProjectLoaded, WorkbenchError
from vibeprompt.github import GithubClient
from vibeprompt.storage import PromptTemplate, StateStore
from vibeprompt.tree import Node, ProjectTree, build_flat_tree, build_native_tree

logger = logging.getLogger(__name__)


class SelectionPolicy(str, Enum):
    KEEP = "keep"
    PRUNE = "prune"


class ProjectKind(str, Enum):
    LOCAL = "local"
    GITHUB = "github"


@dataclass
class ProjectMetadata:
    kind: ProjectKind
    url: Optional[str] = None
    token: Optional[str] = None
    last_synced: float = 0.0


class ProjectSession:
    def __init__(
        self,
        accessor: Optional[ContentAccessor] = None,
        store: Optional[StateStore] = None,
        github_factory: Callable[[Optional[str]], GithubClient] = GithubClient,
        selection_policy: SelectionPolicy = SelectionPolicy.KEEP,
    ):
        self.accessor = accessor or ContentAccessor()
        self.store = store
        self.github_factory = github_factory
        self.selection_policy = selection_policy

        self.tree: Optional[ProjectTree] = None
        self.metadata: Optional[ProjectMetadata] = None
        self.selected: Set[str] = set()
        self.expanded: Set[str] = set()
        self.cache: Dict[str, str] = {}
        self.instruction = ""
        self.suggested_templates: List[PromptTemplate] = []
        self.busy = False

    # ------------------------------------------------------------------
    # tree lifecycle

    def require_tree(self) -> ProjectTree:
        if self.tree is None:
            raise NoProjectLoaded()
        return self.tree

    def replace_tree(self, tree: ProjectTree, keep_selection: bool = False) -> None:
        self.tree = tree
        self.cache.clear()
        if not keep_selection:
            self.selected.clear()
        elif self.selection_policy is SelectionPolicy.PRUNE:
            existing = set(tree.files())
            dropped = self.selected - existing
            if dropped:
                logger.info("Pruned %d dangling selections after refresh", len(dropped))
            self.selected &= existing

    def load_project(self, tree: ProjectTree) -> None:
        self.replace_tree(tree)
        self.metadata = ProjectMetadata(kind=ProjectKind.LOCAL, last_synced=time.time())
        logger.info("Local project %s loaded", tree.name)

    def open_local(self, source: Union[str, Path]) -> ProjectTree:
        """Native traversal, falling back to archive (flat-list) upload."""
        try:
            tree = build_native_tree(source)
        except DirectoryAccessUnsupported as e:
            logger.info("%s; falling back to archive upload", e)
            tree = build_flat_tree(load_archive_entries(source))
            if tree is None:
                raise WorkbenchError(f"No files found in {source}")
        self.load_project(tree)
        return tree

    async def import_github(self, url: str, token: Optional[str] = None) -> ProjectTree:
        with self.operation():
            async with self.github_factory(token) as client:
                tree = await client.load_repo(url)
        self.replace_tree(tree)
        self.metadata = ProjectMetadata(kind=ProjectKind.GITHUB, url=url, token=token, last_synced=time.time())
        if self.store is not None:
            self.store.add_recent_repo(url)
        logger.info("Latest code pulled from GitHub: %s", url)
        return tree

    async def refresh(self) -> Optional[ProjectTree]:
        meta = self.metadata
        if meta is None or meta.kind is not ProjectKind.GITHUB or not meta.url:
            return None
        with self.operation():
            async with self.github_factory(meta.token) as client:
                tree = await client.load_repo(meta.url)
        self.replace_tree(tree, keep_selection=True)
        meta.last_synced = time.time()
        logger.info("Repository %s updated", meta.url)
        return tree

    def close(self) -> None:
        self.tree = None
        self.metadata = None
        self.selected.clear()
        self.expanded.clear()
        self.cache.clear()
        self.suggested_templates = []
        logger.info("Project closed")

    @contextmanager
    def operation(self):
        """Marks a long-running operation (import, refresh, bundle, agent turn)."""
        self._ensure_idle()
        self.busy = True
        try:
            yield
        finally:
            self.busy = False

    def _ensure_idle(self):
        if self.busy:
            raise WorkbenchError("Another long-running operation is in progress")

    # ------------------------------------------------------------------
    # selection & expansion

    def select(self, paths) -> int:
        self.selected.update(paths)
        return len(self.selected)

    def deselect(self, paths) -> int:
        self.selected.difference_update(paths)
        return len(self.selected)

    async def toggle_selection(self, path: str) -> bool:
        if path in self.selected:
            self.selected.discard(path)
            return False
        self.selected.add(path)
        # preload so embed mode has the text ready
        if path not in self.cache:
            try:
                await self.read_file(path)
            except (WorkbenchError, OSError) as e:
                logger.warning("Could not preload %s: %s", path, e)
        return True

    def clear_selection(self) -> None:
        self.selected.clear()

    def toggle_directory(self, path: str) -> bool:
        if path in self.expanded:
            self.expanded.discard(path)
            return False
        self.expanded.add(path)
        return True

    async def smart_select(self, assistant, instruction: Optional[str] = None) -> List[str]:
        """Ask the assistant which files matter for the instruction and add them."""
        tree = self.require_tree()
        effective = (self.instruction if instruction is None else instruction).strip()
        if not effective:
            raise WorkbenchError("Add an instruction first so I know what to select")
        relevant = await assistant.suggest_relevant_files(effective, tree.files())
        if relevant:
            self.select(relevant)
            logger.info("Smart-selected %d file(s)", len(relevant))
        else:
            logger.info("No relevant files detected from the instruction")
        return relevant

    # ------------------------------------------------------------------
    # content

    def all_file_paths(self) -> List[str]:
        return self.require_tree().files()

    def find_node(self, path: str) -> Optional[Node]:
        return self.require_tree().find(path)

    async def read_file(self, path: str) -> str:
        if path in self.cache:
            return self.cache[path]
        node = self.find_node(path)
        if node is None or not node.is_file:
            raise WorkbenchError(f"File not found: {path}")
        content = await self.accessor.read(node)
        self.cache[path] = content
        return content

    async def preview(self, path: str) -> str:
        try:
            return await self.read_file(path)
        except (WorkbenchError, OSError) as e:
            logger.debug("Preview of %s failed: %s", path, e)
            return "Error loading preview"

    def set_instruction(self, text: str) -> None:
        self.instruction = text

    async def refine_instruction(self, assistant) -> str:
        current = self.instruction.strip()
        if not current:
            raise WorkbenchError("Add an instruction first to refine")
        refined = await assistant.refine_instruction(current, sorted(self.selected))
        self.set_instruction(refined)
        return refined

    def compile(self, mode: ContextMode = ContextMode.REFERENCE) -> str:
        return compile_prompt(sorted(self.selected), self.cache, self.instruction, mode)

    async def bundle(
        self,
        options: BundleOptions = BundleOptions(),
        on_progress: Optional[Callable[[BundleProgress], None]] = None,
        cancel: Optional[CancelFlag] = None,
    ) -> BundleResult:
        tree = self.require_tree()
        with self.operation():
            return await build_bundle(tree, self.accessor, options, on_progress, cancel)

    # ------------------------------------------------------------------
    # prompt library

    def _require_store(self) -> StateStore:
        if self.store is None:
            raise WorkbenchError("No state directory configured")
        return self.store

    def saved_prompts(self) -> List[PromptTemplate]:
        return self._require_store().saved_prompts()

    def save_prompt(self, name: str, template: str, tags: Optional[List[str]] = None) -> PromptTemplate:
        store = self._require_store()
        prompt = PromptTemplate(
            id=uuid.uuid4().hex[:12],
            name=name,
            template=template,
            tags=tags or ["custom"],
        )
        store.save_prompts([prompt] + store.saved_prompts())
        return prompt

    def delete_prompt(self, prompt_id: str) -> None:
        store = self._require_store()
        store.save_prompts([p for p in store.saved_prompts() if p.id != prompt_id])

    async def aclose(self) -> None:
        await self.accessor.close()

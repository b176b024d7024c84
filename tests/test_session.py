import asyncio
import zipfile

import pytest

from conftest import flat_tree
from vibeprompt.compile import ContextMode
from vibeprompt.content import ContentAccessor
from vibeprompt.errors import NoProjectLoaded, RepositoryNotFound, WorkbenchError
from vibeprompt.session import ProjectKind, ProjectSession, SelectionPolicy
from vibeprompt.storage import StateStore


class CountingAccessor(ContentAccessor):
    def __init__(self):
        super().__init__(http=object())
        self.calls = 0

    async def read(self, node):
        self.calls += 1
        return await super().read(node)


class FakeGithub:
    """Returns queued trees (or raises queued errors) from load_repo."""

    def __init__(self, results):
        self.results = results
        self.tokens = []

    def __call__(self, token):
        self.tokens.append(token)
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def load_repo(self, url):
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


URL = "https://github.com/acme/Proj"


def test_open_local_directory(make_project_dir, project_files):
    session = ProjectSession()

    tree = session.open_local(make_project_dir(project_files))

    assert session.tree is tree
    assert session.metadata.kind is ProjectKind.LOCAL
    assert session.all_file_paths() == ["Proj/src/utils/helpers.ts", "Proj/src/app.ts", "Proj/README.md"]


def test_open_local_falls_back_to_archive(tmp_path):
    archive = tmp_path / "upload.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("Proj/a.ts", "a")
    session = ProjectSession()

    tree = session.open_local(archive)

    assert tree.files() == ["Proj/a.ts"]


def test_operations_without_project_fail():
    session = ProjectSession()

    with pytest.raises(NoProjectLoaded):
        session.all_file_paths()
    with pytest.raises(NoProjectLoaded):
        asyncio.run(session.bundle())


def test_read_file_is_memoized():
    accessor = CountingAccessor()
    session = ProjectSession(accessor=accessor)
    session.load_project(flat_tree({"Proj/a.ts": "content"}))

    assert asyncio.run(session.read_file("Proj/a.ts")) == "content"
    assert asyncio.run(session.read_file("Proj/a.ts")) == "content"
    assert accessor.calls == 1


def test_read_file_rejects_unknown_paths_and_directories():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/src/a.ts": "a"}))

    for path in ("Proj/missing.ts", "Proj/src"):
        with pytest.raises(WorkbenchError):
            asyncio.run(session.read_file(path))


def test_preview_returns_error_text_instead_of_raising():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/a.ts": "a"}))

    assert asyncio.run(session.preview("Proj/nope.ts")) == "Error loading preview"


def test_selection_is_idempotent():
    session = ProjectSession()

    assert session.select(["a", "b"]) == 2
    assert session.select(["a"]) == 2
    assert session.deselect(["c"]) == 2
    assert session.deselect(["a", "a"]) == 1
    assert session.selected == {"b"}


def test_toggle_selection_preloads_content():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/a.ts": "body"}))

    assert asyncio.run(session.toggle_selection("Proj/a.ts")) is True
    assert session.cache["Proj/a.ts"] == "body"
    assert asyncio.run(session.toggle_selection("Proj/a.ts")) is False
    assert session.selected == set()


def test_toggle_directory():
    session = ProjectSession()

    assert session.toggle_directory("Proj/src") is True
    assert session.toggle_directory("Proj/src") is False


def test_loading_a_project_resets_selection_and_cache():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/a.ts": "a"}))
    session.select(["Proj/a.ts"])
    session.cache["Proj/a.ts"] = "a"

    session.load_project(flat_tree({"Other/b.ts": "b"}))

    assert session.selected == set()
    assert session.cache == {}


def test_import_github_records_metadata_and_recent_repo(tmp_path):
    store = StateStore(tmp_path)
    github = FakeGithub([flat_tree({"Proj/a.ts": "a"})])
    session = ProjectSession(store=store, github_factory=github)

    asyncio.run(session.import_github(URL, token="tok"))

    assert session.metadata.kind is ProjectKind.GITHUB
    assert session.metadata.url == URL
    assert github.tokens == ["tok"]
    assert store.recent_repos() == [URL]
    assert not session.busy


def test_import_failure_keeps_previous_project():
    github = FakeGithub([RepositoryNotFound("Repository not found.")])
    session = ProjectSession(github_factory=github)
    previous = flat_tree({"Proj/a.ts": "a"})
    session.load_project(previous)

    with pytest.raises(RepositoryNotFound):
        asyncio.run(session.import_github(URL))

    assert session.tree is previous
    assert not session.busy


@pytest.mark.parametrize("policy, expected", [
    (SelectionPolicy.KEEP, {"Proj/a.ts", "Proj/gone.ts"}),
    (SelectionPolicy.PRUNE, {"Proj/a.ts"}),
])
def test_refresh_replaces_tree_and_applies_selection_policy(policy, expected):
    first = flat_tree({"Proj/a.ts": "a", "Proj/gone.ts": "g"})
    second = flat_tree({"Proj/a.ts": "a2", "Proj/new.ts": "n"})
    session = ProjectSession(github_factory=FakeGithub([first, second]), selection_policy=policy)
    asyncio.run(session.import_github(URL))
    session.select(["Proj/a.ts", "Proj/gone.ts"])
    asyncio.run(session.read_file("Proj/a.ts"))

    asyncio.run(session.refresh())

    assert session.tree is second
    assert session.selected == expected
    assert session.cache == {}
    assert asyncio.run(session.read_file("Proj/a.ts")) == "a2"


def test_refresh_is_a_no_op_for_local_projects():
    session = ProjectSession(github_factory=FakeGithub([]))
    session.load_project(flat_tree({"Proj/a.ts": "a"}))

    assert asyncio.run(session.refresh()) is None


def test_busy_session_rejects_a_second_long_operation():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/a.ts": "a"}))
    session.busy = True

    with pytest.raises(WorkbenchError):
        asyncio.run(session.bundle())


def test_close_clears_everything():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/a.ts": "a"}))
    session.select(["Proj/a.ts"])
    session.toggle_directory("Proj")

    session.close()

    assert session.tree is None
    assert session.metadata is None
    assert not session.selected and not session.expanded and not session.cache


def test_compile_uses_selection_cache_and_instruction():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/a.ts": "const a = 1;", "Proj/b.ts": "b"}))
    session.select(["Proj/a.ts"])
    asyncio.run(session.read_file("Proj/a.ts"))
    session.set_instruction("Explain a.ts")

    assert session.compile() == "--- CONTEXT FILES (1) ---\n@Proj/a.ts\n\n--- INSTRUCTION ---\nExplain a.ts"
    assert "```\nconst a = 1;\n```" in session.compile(ContextMode.EMBED)


def test_bundle_through_session():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/a.ts": "a"}))

    result = asyncio.run(session.bundle())

    assert result.file_count == 1
    assert not session.busy


class FakeAssistant:
    def __init__(self, relevant=(), refined="Refined"):
        self.relevant = list(relevant)
        self.refined = refined
        self.calls = []

    async def suggest_relevant_files(self, instruction, paths):
        self.calls.append(("select", instruction, list(paths)))
        return self.relevant

    async def refine_instruction(self, instruction, selected):
        self.calls.append(("refine", instruction, list(selected)))
        return self.refined


def test_smart_select_adds_relevant_files_to_the_selection():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/a.ts": "a", "Proj/b.ts": "b"}))
    session.select(["Proj/b.ts"])
    session.set_instruction("  Fix a  ")
    assistant = FakeAssistant(relevant=["Proj/a.ts"])

    assert asyncio.run(session.smart_select(assistant)) == ["Proj/a.ts"]
    assert session.selected == {"Proj/a.ts", "Proj/b.ts"}
    assert assistant.calls == [("select", "Fix a", ["Proj/a.ts", "Proj/b.ts"])]


def test_smart_select_needs_an_instruction():
    session = ProjectSession()
    session.load_project(flat_tree({"Proj/a.ts": "a"}))

    with pytest.raises(WorkbenchError):
        asyncio.run(session.smart_select(FakeAssistant(), "   "))


def test_refine_replaces_the_instruction():
    session = ProjectSession()
    session.select(["Proj/b.ts", "Proj/a.ts"])
    session.set_instruction("make it fast")
    assistant = FakeAssistant(refined="Optimize the hot path in a.ts")

    assert asyncio.run(session.refine_instruction(assistant)) == "Optimize the hot path in a.ts"
    assert session.instruction == "Optimize the hot path in a.ts"
    assert assistant.calls == [("refine", "make it fast", ["Proj/a.ts", "Proj/b.ts"])]

    session.set_instruction("")
    with pytest.raises(WorkbenchError):
        asyncio.run(session.refine_instruction(assistant))


def test_prompt_library_round_trip(tmp_path):
    session = ProjectSession(store=StateStore(tmp_path))

    first = session.save_prompt("Review", "Review this code")
    second = session.save_prompt("Tests", "Write tests", ["testing"])

    assert [p.name for p in session.saved_prompts()] == ["Tests", "Review"]
    assert first.tags == ["custom"]
    assert second.tags == ["testing"]

    session.delete_prompt(second.id)
    assert [p.name for p in session.saved_prompts()] == ["Review"]


def test_prompt_library_needs_a_store():
    with pytest.raises(WorkbenchError):
        ProjectSession().saved_prompts()

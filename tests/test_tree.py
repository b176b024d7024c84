import asyncio
import zipfile

import pytest

from conftest import FakeHttp, FakeResponse, flat_tree
from vibeprompt.archive import load_archive_entries
from vibeprompt.errors import DirectoryAccessUnsupported
from vibeprompt.github import GithubClient
from vibeprompt.tree import (
    BlobRef,
    FlatEntry,
    NativeRef,
    Node,
    NodeKind,
    all_file_paths,
    build_flat_tree,
    build_native_tree,
    collation_key,
    iter_nodes,
)


def names(node):
    return [c.name for c in node.children]


def child(node, name):
    return next(c for c in node.children if c.name == name)


def shape(node):
    """Per-directory child ordering, keyed by path."""
    return {n.path: names(n) for n in iter_nodes(node) if n.is_dir}


def test_flat_list_builds_sorted_tree(project_files):
    tree = flat_tree(project_files)

    assert tree.root.name == "Proj"
    assert names(tree.root) == ["src", "README.md"]
    src = child(tree.root, "src")
    assert names(src) == ["utils", "app.ts"]
    assert names(child(src, "utils")) == ["helpers.ts"]


def test_flat_list_skips_entries_with_ignored_segments():
    tree = flat_tree({
        "Proj/src/app.ts": "a",
        "Proj/node_modules/lib/index.js": "b",
        "Proj/.git/config": "c",
    })

    assert names(tree.root) == ["src"]
    assert tree.files() == ["Proj/src/app.ts"]


def test_flat_list_empty_input_returns_none():
    assert build_flat_tree([]) is None


def test_flat_list_attaches_blobs_and_identity():
    tree = flat_tree({"Proj/a.txt": "hello"})
    node = tree.find("Proj/a.txt")

    assert node.id == node.path == "Proj/a.txt"
    assert node.kind is NodeKind.FILE
    assert node.source == BlobRef(b"hello")


def test_flat_list_captures_root_ignore_file():
    tree = flat_tree({"Proj/.gitignore": "*.log\n", "Proj/a.txt": "x"})

    assert tree.ignore_source == BlobRef(b"*.log\n")
    assert tree.files() == ["Proj/a.txt"]


def test_directories_first_then_case_aware_order():
    tree = flat_tree({
        "P/b.txt": "1",
        "P/B.txt": "1",
        "P/a.txt": "1",
        "P/A.txt": "1",
        "P/Zeta/x.txt": "1",
        "P/docs/y.txt": "1",
    })

    assert names(tree.root) == ["docs", "Zeta", "a.txt", "A.txt", "b.txt", "B.txt"]


def test_ordering_invariant_holds_everywhere(project_files):
    tree = flat_tree(project_files)

    for node in iter_nodes(tree.root):
        kinds = [c.is_dir for c in node.children]
        assert kinds == sorted(kinds, reverse=True)
        assert node.is_dir or node.children == []


def test_file_node_rejects_children():
    leaf = Node(id="a", name="a", kind=NodeKind.FILE, path="a")
    with pytest.raises(ValueError):
        Node(id="b", name="b", kind=NodeKind.FILE, path="b", children=[leaf])


def test_native_traversal(make_project_dir, project_files):
    root_dir = make_project_dir({
        **project_files,
        "Proj/node_modules/x/index.js": "x",
        "Proj/.gitignore": "*.log\n",
        "Proj/logo.png": b"\x89PNG",
    })

    tree = build_native_tree(root_dir)

    assert tree.root.name == "Proj"
    assert names(tree.root) == ["src", "README.md"]
    assert names(child(tree.root, "src")) == ["utils", "app.ts"]
    assert tree.find("Proj/src/app.ts").source == NativeRef(root_dir.resolve() / "src" / "app.ts")
    assert tree.ignore_source == NativeRef(root_dir.resolve() / ".gitignore")


def test_native_traversal_keeps_empty_directories(make_project_dir):
    root_dir = make_project_dir({"Proj/a.txt": "a"})
    (root_dir / "empty").mkdir()

    tree = build_native_tree(root_dir)

    empty = child(tree.root, "empty")
    assert empty.is_dir and empty.children == []


def test_native_traversal_unsupported_for_non_directories(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("x")

    with pytest.raises(DirectoryAccessUnsupported):
        build_native_tree(target)


def test_archive_entries_feed_flat_reconstruction(tmp_path):
    archive = tmp_path / "upload.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("Proj/src/app.ts", "a")
        zf.writestr("Proj/README.md", "r")

    tree = build_flat_tree(load_archive_entries(archive))

    assert tree.root.name == "Proj"
    assert tree.files() == ["Proj/src/app.ts", "Proj/README.md"]


def test_archive_without_wrapper_folder_uses_archive_name(tmp_path):
    archive = tmp_path / "upload.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("app.ts", "a")
        zf.writestr("lib/util.ts", "u")

    entries = load_archive_entries(archive)

    assert sorted(e.path for e in entries) == ["upload/app.ts", "upload/lib/util.ts"]


def test_non_archive_file_is_unsupported(tmp_path):
    target = tmp_path / "notes.txt"
    target.write_text("x")

    with pytest.raises(DirectoryAccessUnsupported):
        load_archive_entries(target)


def test_all_three_providers_agree(make_project_dir, project_files):
    native = build_native_tree(make_project_dir(project_files))
    flat = flat_tree(project_files)

    manifest = [
        {"path": "src", "type": "tree"},
        {"path": "README.md", "type": "blob"},
        {"path": "src/utils/helpers.ts", "type": "blob"},
        {"path": "src/utils", "type": "tree"},
        {"path": "src/app.ts", "type": "blob"},
    ]
    http = FakeHttp({
        "https://api.github.com/repos/acme/Proj": FakeResponse(json_data={"default_branch": "main"}),
        "https://api.github.com/repos/acme/Proj/git/trees/main?recursive=1": FakeResponse(
            json_data={"tree": manifest, "truncated": False}
        ),
    })
    remote = asyncio.run(GithubClient(http=http).load_repo("https://github.com/acme/Proj"))

    assert sorted(native.files()) == sorted(flat.files()) == sorted(remote.files())
    assert shape(native.root) == shape(flat.root) == shape(remote.root)


def test_all_file_paths_handles_missing_root():
    assert all_file_paths(None) == []


def test_file_path_reused_as_a_parent_is_skipped():
    tree = build_flat_tree([
        FlatEntry(path="P/a", data=b"file"),
        FlatEntry(path="P/a/b", data=b"nested"),
        FlatEntry(path="P/c.txt", data=b"c"),
    ])

    assert tree.files() == ["P/a", "P/c.txt"]
    assert tree.find("P/a").children == []
    assert tree.find("P/a/b") is None


def test_punctuation_digits_and_accents_follow_locale_order():
    names_in = ["b.txt", "a-b", "B", "é", "a_b", "10", "e", "2", "a", "f"]

    assert sorted(names_in, key=collation_key) == ["10", "2", "a", "a_b", "a-b", "B", "b.txt", "e", "é", "f"]

"""System ignore list and a small .gitignore-style matcher.

Only three pattern shapes are understood: ``*suffix``, ``dir/`` and plain
names (exact match or path prefix). Negation, character classes and
mid-pattern wildcards fall through to the plain-name shape.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

IGNORE_FILE_NAME = ".gitignore"

IGNORED_NAMES = frozenset({
    # directories & metadata
    "node_modules", "bower_components", "jspm_packages",
    ".git", ".svn", ".hg", ".DS_Store", "Thumbs.db",
    ".idea", ".vscode", ".history",
    # build & output
    "dist", "build", "out", "target", "bin", "obj",
    ".next", ".nuxt", ".output", ".serverless", ".terraform",
    # dependencies & environments
    "venv", ".venv", "env", ".env", "virtualenv",
    "__pycache__", ".pytest_cache", ".mypy_cache", ".cache",
    "coverage", ".gradle",
    # logs
    "npm-debug.log", "yarn-error.log", "yarn-debug.log", "pnpm-debug.log",
    # lock files
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "bun.lockb",
    "composer.lock", "Gemfile.lock", "poetry.lock",
})

IGNORED_EXTENSIONS = frozenset({
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".bmp", ".tiff",
    ".mp4", ".webm", ".mp3", ".wav", ".ogg", ".m4a", ".flac", ".aac",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".tar", ".gz", ".rar", ".7z", ".jar", ".war", ".ear",
    ".exe", ".dll", ".so", ".dylib", ".class", ".node",
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
    ".apk", ".aab", ".ipa", ".iso", ".img", ".dmg",
})


def is_system_ignored(name: str) -> bool:
    """Check a single path segment against the system ignore rules."""
    name = name.strip()
    if name.startswith(".") and name != ".":
        return True
    if name in IGNORED_NAMES:
        return True
    dot = name.rfind(".")
    if dot > 0 and name[dot:] in IGNORED_EXTENSIONS:
        return True
    return False


def is_path_system_ignored(path: str) -> bool:
    return any(is_system_ignored(part) for part in path.split("/"))


class RuleKind(Enum):
    SUFFIX = "suffix-wildcard"
    DIRECTORY = "directory-anchor"
    EXACT = "exact-or-prefix"


@dataclass(frozen=True)
class IgnoreRule:
    kind: RuleKind
    pattern: str

    def matches(self, path: str) -> bool:
        if self.kind is RuleKind.SUFFIX:
            return path.endswith(self.pattern)
        if self.kind is RuleKind.DIRECTORY:
            if not self.pattern:
                return False
            return (
                path == self.pattern
                or path.startswith(self.pattern + "/")
                or f"/{self.pattern}/" in path
                or path.endswith("/" + self.pattern)
            )
        return path == self.pattern or path.startswith(self.pattern + "/")


IgnoreRuleSet = Tuple[IgnoreRule, ...]


def _classify(line: str) -> IgnoreRule:
    if line.startswith("*"):
        return IgnoreRule(RuleKind.SUFFIX, line[1:])
    if line.endswith("/"):
        return IgnoreRule(RuleKind.DIRECTORY, line[:-1])
    return IgnoreRule(RuleKind.EXACT, line)


def parse_ignore_file(content: str) -> IgnoreRuleSet:
    rules = []
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("/"):
            line = line[1:]
        if not line:
            continue
        rules.append(_classify(line))
    return tuple(rules)


def matches_ignore_rules(relative_path: str, rules: IgnoreRuleSet) -> bool:
    return any(rule.matches(relative_path) for rule in rules)

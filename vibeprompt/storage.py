import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

SAVED_PROMPTS_KEY = "vb_saved_prompts"
RECENT_REPOS_KEY = "vb_recent_repos"
GITHUB_TOKEN_KEY = "vb_github_token"

MAX_RECENT_REPOS = 5


class PromptTemplate(BaseModel):
    id: str
    name: str
    template: str
    tags: List[str] = Field(default_factory=lambda: ["custom"])

    @field_validator("tags", mode="before")
    @classmethod
    def _default_tags(cls, value):
        # older saves may have no tags or a non-list value
        if not isinstance(value, list) or not value:
            return ["custom"]
        return value


class StateStore:
    """Named slots persisted as one JSON document under the state directory."""

    def __init__(self, state_dir: Path, filename: str = "state.json"):
        self.path = Path(state_dir) / filename

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, key: str, value) -> None:
        data = self._load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    # templates

    def saved_prompts(self) -> List[PromptTemplate]:
        prompts = []
        for raw in self._load().get(SAVED_PROMPTS_KEY, []):
            try:
                prompts.append(PromptTemplate.model_validate(raw))
            except ValidationError as e:
                logger.warning("Dropping malformed saved prompt: %s", e)
        return prompts

    def save_prompts(self, prompts: List[PromptTemplate]) -> None:
        self._write(SAVED_PROMPTS_KEY, [p.model_dump() for p in prompts])

    # recent repositories

    def recent_repos(self) -> List[str]:
        repos = self._load().get(RECENT_REPOS_KEY, [])
        return [r for r in repos if isinstance(r, str)]

    def add_recent_repo(self, url: str) -> List[str]:
        repos = [url] + [r for r in self.recent_repos() if r != url]
        repos = repos[:MAX_RECENT_REPOS]
        self._write(RECENT_REPOS_KEY, repos)
        return repos

    def remove_recent_repo(self, url: str) -> List[str]:
        repos = [r for r in self.recent_repos() if r != url]
        self._write(RECENT_REPOS_KEY, repos)
        return repos

    # credential

    def github_token(self) -> Optional[str]:
        return self._load().get(GITHUB_TOKEN_KEY) or None

    def remember_github_token(self, token: Optional[str]) -> None:
        self._write(GITHUB_TOKEN_KEY, token or None)

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from vibeprompt.errors import ConfigError

load_dotenv()

DEFAULT_MODEL = "gpt-4o-mini"
GITHUB_API_BASE = "https://api.github.com/repos"
RAW_GITHUB_BASE = "https://raw.githubusercontent.com"


@dataclass(frozen=True)
class Settings:
    model: str = DEFAULT_MODEL
    fast_model: str = DEFAULT_MODEL
    openai_api_key: Optional[str] = None
    github_token: Optional[str] = None
    state_dir: Path = Path.home() / ".vibeprompt"
    workspace: Optional[Path] = None
    batch_size: int = 5
    max_tool_rounds: int = 20
    read_limit: int = 10_000
    github_api_base: str = GITHUB_API_BASE
    raw_github_base: str = RAW_GITHUB_BASE


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_settings() -> Settings:
    model = os.getenv("VIBEPROMPT_MODEL", DEFAULT_MODEL)
    workspace = os.getenv("VIBEPROMPT_WORKSPACE")
    state_dir = os.getenv("VIBEPROMPT_STATE_DIR")

    return Settings(
        model=model,
        fast_model=os.getenv("VIBEPROMPT_FAST_MODEL", model),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        github_token=os.getenv("GITHUB_TOKEN") or None,
        state_dir=Path(state_dir).expanduser() if state_dir else Path.home() / ".vibeprompt",
        workspace=Path(workspace).resolve() if workspace else None,
        batch_size=_int_env("VIBEPROMPT_BATCH_SIZE", 5),
        max_tool_rounds=_int_env("VIBEPROMPT_MAX_TOOL_ROUNDS", 20),
        read_limit=_int_env("VIBEPROMPT_READ_LIMIT", 10_000),
        github_api_base=os.getenv("GITHUB_API_BASE", GITHUB_API_BASE).rstrip("/"),
        raw_github_base=os.getenv("GITHUB_RAW_BASE", RAW_GITHUB_BASE).rstrip("/"),
    )

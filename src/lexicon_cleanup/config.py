"""Configuration management for lexicon cleanup."""

import logging
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Python < 3.11

logger = logging.getLogger(__name__)

REPO_CONFIG_DIR = ".lexicon-cleanup"


def _find_repo_root(start_dir: Path) -> Path:
    """Find repository root by walking upward looking for .git or pyproject.toml."""
    current_dir = start_dir

    while True:
        if (current_dir / ".git").exists() or (current_dir / "pyproject.toml").exists():
            return current_dir

        parent_dir = current_dir.parent

        # Stop at filesystem root
        if parent_dir == current_dir:
            return start_dir

        current_dir = parent_dir


def _load_repo_config_data(repo_root: Path) -> Optional[dict]:
    """Load repo config data from .lexicon-cleanup/config.toml if it exists."""
    config_file = repo_root / REPO_CONFIG_DIR / "config.toml"

    if not config_file.exists():
        return None

    try:
        with open(config_file, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring malformed config file {config_file}: {e}")
        return None


def _get_repo_config_value(data: Optional[dict], keys: list[str]) -> Any:
    """Safely get a nested repo config value."""
    if not data:
        return None
    current: Any = data
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _setting(name: str, repo_data: Optional[dict], keys: list[str], default: Any) -> Any:
    """Environment variable wins, then repo config, then the default."""
    env_value = os.environ.get(name)
    if env_value is not None and env_value != "":
        return env_value
    repo_value = _get_repo_config_value(repo_data, keys)
    if repo_value is not None:
        return repo_value
    return default


class GenerationConfig(BaseModel):
    """Settings for the external text-generation service."""

    model: str = Field(default="gpt-4o-mini")
    api_url: str = Field(default="https://api.openai.com/v1/chat/completions")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=800, gt=0)
    timeout_seconds: float = Field(default=60.0, gt=0)


class CleanupConfig(BaseModel):
    """Configuration for a lexicon cleanup workspace and its runs."""

    state_dir: Path = Field(
        default_factory=lambda: Path(os.environ.get("LEXICON_CLEANUP_STATE_DIR", "./lexicon_state"))
    )
    engine: Literal["auto", "fake", "openai"] = Field(default="auto")
    field: Literal["text", "title"] = Field(default="text")
    batch_size: int = Field(default=20, gt=0)

    # Engine-level retry and pacing; the generation client itself never retries
    max_attempts: int = Field(default=1, ge=1)
    retry_delay_seconds: float = Field(default=2.0, ge=0.0)
    request_delay_seconds: float = Field(default=0.0, ge=0.0)

    # Reject generations that change words rather than layout
    require_content_preserved: bool = Field(default=False)

    generation: GenerationConfig = Field(default_factory=GenerationConfig)

    model_config = {"frozen": False}

    @classmethod
    def from_env(cls, cli_state_dir: Optional[str] = None) -> "CleanupConfig":
        """Load configuration with the following precedence:

        1. CLI --state-dir option (state directory only)
        2. LEXICON_CLEANUP_* environment variables
        3. repo-local .lexicon-cleanup/config.toml (found by walking up from CWD)
        4. Built-in defaults

        Args:
            cli_state_dir: State directory from the CLI, if given
        """
        repo_root = _find_repo_root(Path.cwd())
        repo = _load_repo_config_data(repo_root)

        state_dir_value = cli_state_dir or _setting(
            "LEXICON_CLEANUP_STATE_DIR", repo, ["state_dir"], "./lexicon_state"
        )
        state_dir = Path(str(state_dir_value)).expanduser()
        if not state_dir.is_absolute() and not cli_state_dir and _get_repo_config_value(repo, ["state_dir"]):
            # Paths in the repo config are relative to the repo root
            state_dir = repo_root / state_dir

        return cls(
            state_dir=state_dir,
            engine=_setting("LEXICON_CLEANUP_ENGINE", repo, ["engine"], "auto"),
            field=_setting("LEXICON_CLEANUP_FIELD", repo, ["field"], "text"),
            batch_size=int(_setting("LEXICON_CLEANUP_BATCH_SIZE", repo, ["batch_size"], 20)),
            max_attempts=int(_setting("LEXICON_CLEANUP_MAX_ATTEMPTS", repo, ["max_attempts"], 1)),
            retry_delay_seconds=float(
                _setting("LEXICON_CLEANUP_RETRY_DELAY_SECONDS", repo, ["retry_delay_seconds"], 2.0)
            ),
            request_delay_seconds=float(
                _setting("LEXICON_CLEANUP_REQUEST_DELAY_SECONDS", repo, ["request_delay_seconds"], 0.0)
            ),
            require_content_preserved=_env_bool(
                "LEXICON_CLEANUP_REQUIRE_CONTENT_PRESERVED",
                bool(_get_repo_config_value(repo, ["require_content_preserved"]) or False),
            ),
            generation=GenerationConfig(
                model=_setting("LEXICON_CLEANUP_MODEL", repo, ["generation", "model"], "gpt-4o-mini"),
                api_url=_setting(
                    "LEXICON_CLEANUP_API_URL",
                    repo,
                    ["generation", "api_url"],
                    "https://api.openai.com/v1/chat/completions",
                ),
                temperature=float(_setting("LEXICON_CLEANUP_TEMPERATURE", repo, ["generation", "temperature"], 0.1)),
                max_tokens=int(_setting("LEXICON_CLEANUP_MAX_TOKENS", repo, ["generation", "max_tokens"], 800)),
                timeout_seconds=float(
                    _setting("LEXICON_CLEANUP_TIMEOUT_SECONDS", repo, ["generation", "timeout_seconds"], 60.0)
                ),
            ),
        )

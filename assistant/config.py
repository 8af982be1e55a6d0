"""
Configuration management for the assistant CLI.

This module centralizes loading of configuration values from the JSON
settings file and the environment.  It defines sane defaults and
provides an immutable snapshot for the rest of the application to read.

The configuration file `config.json` lives in the user's config
directory (`$ASSISTANT_CONFIG_DIR`, else `$XDG_CONFIG_HOME/assistant-cli`,
else `~/.config/assistant-cli`).  If the file is absent, defaults are
written to it on first load.  Settings are stored as JSON; a `config.toml`
left by earlier TOML-based releases of the tool is not read.

Scan limits for the context packet are derived from the same snapshot so
that every component observes one consistent set of settings per run.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
APP_DIR_NAME = "assistant-cli"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful coding assistant running in the user's terminal. "
    "Answer concisely and use the project context below when it is relevant."
)

# Directory names pruned before descending.  Hidden entries are pruned by
# prefix in addition to these.
DEFAULT_EXCLUDED_NAMES: FrozenSet[str] = frozenset({
    "node_modules",
    "target",
    "build",
    "dist",
    "__pycache__",
    "venv",
    "vendor",
    "coverage",
})

HIDDEN_PREFIX = "."
DEFAULT_MAX_DEPTH = 3


@dataclass(frozen=True)
class ScanLimits:
    """Bounds for one directory walk.

    Attributes
    ----------
    max_depth: int
        Entries deeper than this many levels below the root are not
        visited.  The root itself is depth 0.

    max_files: int
        Maximum number of candidate files returned.

    max_file_bytes: int
        Files larger than this are counted but never become candidates.

    excluded_names: FrozenSet[str]
        Exact basenames that are never visited.  Names starting with
        `hidden_prefix` are excluded as well.
    """

    max_depth: int = DEFAULT_MAX_DEPTH
    max_files: int = 50
    max_file_bytes: int = 10_000
    excluded_names: FrozenSet[str] = DEFAULT_EXCLUDED_NAMES
    hidden_prefix: str = HIDDEN_PREFIX

    def is_excluded(self, name: str) -> bool:
        """Return True if an entry with this basename must be skipped."""
        if self.hidden_prefix and name.startswith(self.hidden_prefix):
            return True
        return name in self.excluded_names


def default_config_dir() -> Path:
    """Return the directory holding `config.json`."""
    override = os.environ.get("ASSISTANT_CONFIG_DIR")
    if override:
        return Path(override)
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / APP_DIR_NAME


def default_config_path() -> Path:
    return default_config_dir() / CONFIG_FILE


def _normalize_host(host: str) -> str:
    host = host.strip().rstrip("/")
    if "://" not in host:
        host = f"http://{host}"
    return host


@dataclass(frozen=True)
class AssistantConfig:
    """Top‑level settings for the assistant CLI.

    Attributes
    ----------
    default_model: str
        Model used when `--model` is not given.

    ollama_host: str
        Base URL of the text-generation service.  `OLLAMA_HOST` in the
        environment overrides the stored value for the current run.

    temperature: float
        Sampling temperature, conventionally within [0.0, 1.0].

    stream: bool
        Whether replies are streamed fragment by fragment.

    system_prompt: str
        Static instruction text placed before the context packet.

    include_context: bool
        When False no directory scan happens and no packet is sent.

    max_context_files: int
        Maximum number of files listed in the context packet.

    max_file_size: int
        Maximum size in bytes of any listed or inlined file.
    """

    default_model: str = "llama3.2"
    ollama_host: str = "http://host.docker.internal:11434"
    temperature: float = 0.7
    stream: bool = True
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    include_context: bool = True
    max_context_files: int = 50
    max_file_size: int = 10_000
    excluded_names: FrozenSet[str] = field(default=DEFAULT_EXCLUDED_NAMES, repr=False, compare=False)

    def scan_limits(self) -> ScanLimits:
        """Derive the scan bounds for the context packet."""
        return ScanLimits(
            max_depth=DEFAULT_MAX_DEPTH,
            max_files=self.max_context_files,
            max_file_bytes=self.max_file_size,
            excluded_names=self.excluded_names,
        )

    def with_default_model(self, model: str) -> "AssistantConfig":
        return replace(self, default_model=model)

    def with_overrides(self, **changes: Any) -> "AssistantConfig":
        """Return a copy with the given settings replaced for this run."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("excluded_names", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssistantConfig":
        """Build a snapshot from parsed JSON, ignoring unknown keys.

        Raises
        ------
        TypeError
            If a known key holds a value of the wrong type.
        ValueError
            If a count or size limit is negative.
        """
        defaults = {f.name: f.default for f in fields(cls) if f.name != "excluded_names"}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in defaults:
                continue
            expected = type(defaults[key])
            # bool is an int subclass; it is never accepted as a number.
            if isinstance(value, bool) and expected is not bool:
                raise TypeError(f"'{key}' must be {expected.__name__}, got bool")
            if expected is float and isinstance(value, int):
                value = float(value)
            if not isinstance(value, expected):
                raise TypeError(f"'{key}' must be {expected.__name__}, got {type(value).__name__}")
            if expected is int and value < 0:
                raise ValueError(f"'{key}' must not be negative")
            values[key] = value
        return cls(**values)

    def save(self, path: Path) -> None:
        """Write the settings to `path` as pretty JSON."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
            f.write("\n")
        logger.debug("Saved configuration to %s", path)

    @staticmethod
    def load(path: Optional[Path] = None) -> "AssistantConfig":
        """Load settings from `path` and the environment.

        Parameters
        ----------
        path: Path, optional
            Location of the JSON settings file.  Defaults to
            `default_config_path()`.

        Returns
        -------
        AssistantConfig
            A populated, immutable configuration snapshot.
        """
        path = path or default_config_path()
        config: AssistantConfig
        if path.exists():
            try:
                with path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("top-level value is not an object")
                config = AssistantConfig.from_dict(data)
            except (OSError, ValueError, TypeError) as exc:
                logger.warning("Failed to parse %s: %s. Using defaults.", path, exc)
                config = AssistantConfig()
        else:
            config = AssistantConfig()
            try:
                config.save(path)
                logger.info("Wrote default configuration to %s", path)
            except OSError as exc:
                logger.warning("Could not write default configuration to %s: %s", path, exc)

        host = os.environ.get("OLLAMA_HOST")
        if host:
            config = replace(config, ollama_host=_normalize_host(host))
        return config

"""
Corpus configuration — loads wlindex.yaml and provides defaults.

Supports:
- repos_dir: where the repository checkouts live
- database: output SQLite path
- repos: which checkouts to index, with gitignore-style excludes and an
  optional origin URL override
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import pathspec
import yaml

CONFIG_NAMES = ("wlindex.yaml", "wlindex.yml")


class ConfigError(Exception):
    """Configuration file could not be read or has the wrong shape."""

    def __init__(self, path: Path | str, reason: str):
        super().__init__(f"Failed to parse config at {path}: {reason}")
        self.path = str(path)
        self.reason = reason


@dataclass
class RepoConfig:
    """One source repository checkout under repos_dir."""
    dir: str = ""
    exclude: list[str] = field(default_factory=list)  # gitwildmatch, repo-relative
    url: Optional[str] = None  # skips `git remote get-url` when set

    def exclude_spec(self) -> Optional[pathspec.PathSpec]:
        if not self.exclude:
            return None
        return pathspec.PathSpec.from_lines("gitwildmatch", self.exclude)


DEFAULT_REPOS: tuple[RepoConfig, ...] = (
    RepoConfig("cosmic-protocols"),
    RepoConfig("external"),
    RepoConfig("hyprland-protocols"),
    RepoConfig("jay-protocols"),
    RepoConfig("plasma-wayland-protocols"),
    RepoConfig("river", exclude=["/protocol/upstream/"]),
    RepoConfig("treeland-protocols"),
    RepoConfig("wayland", exclude=["/tests/", "/protocol/tests.xml"]),
    RepoConfig("wayland-protocols"),
    RepoConfig("weston"),
    RepoConfig("wlr-protocols"),
)


def _default_repos() -> list[RepoConfig]:
    return [RepoConfig(r.dir, list(r.exclude), r.url) for r in DEFAULT_REPOS]


@dataclass
class CorpusConfig:
    """Corpus configuration from wlindex.yaml."""
    repos_dir: str = "repos"
    database: str = "wayland.db"
    repos: list[RepoConfig] = field(default_factory=_default_repos)

    @classmethod
    def load(cls, root: Path) -> "CorpusConfig":
        """Load config from wlindex.yaml in root, or return defaults."""
        for name in CONFIG_NAMES:
            config_path = root / name
            if config_path.exists():
                break
        else:
            return cls()

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(config_path, str(e)) from e
        if not isinstance(data, dict):
            raise ConfigError(config_path, "top level must be a mapping")
        return cls._from_dict(data, config_path)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], source: Path | str = "<dict>") -> "CorpusConfig":
        config = cls()
        for key in ("repos_dir", "database"):
            if key in data:
                value = data[key]
                if not isinstance(value, str) or not value:
                    raise ConfigError(source, f"'{key}' must be a non-empty string")
                setattr(config, key, value)

        if "repos" in data:
            repos_raw = data["repos"]
            if not isinstance(repos_raw, list):
                raise ConfigError(source, "'repos' must be a list")
            config.repos = [_repo_from_dict(r, source) for r in repos_raw]
        return config

    def to_dict(self) -> dict[str, Any]:
        return {
            "repos_dir": self.repos_dir,
            "database": self.database,
            "repos": [
                {
                    "dir": r.dir,
                    **({"exclude": r.exclude} if r.exclude else {}),
                    **({"url": r.url} if r.url else {}),
                }
                for r in self.repos
            ],
        }

    def repos_path(self, root: Path) -> Path:
        return root / self.repos_dir

    def database_path(self, root: Path) -> Path:
        return root / self.database


def _repo_from_dict(raw: Any, source: Path | str) -> RepoConfig:
    # "- wayland" is shorthand for {"dir": "wayland"}
    if isinstance(raw, str):
        raw = {"dir": raw}
    if not isinstance(raw, dict) or not isinstance(raw.get("dir"), str) or not raw["dir"]:
        raise ConfigError(source, f"repo entry {raw!r} needs a 'dir'")

    exclude = raw.get("exclude", [])
    if isinstance(exclude, str):
        exclude = [exclude]
    if not isinstance(exclude, list) or not all(isinstance(p, str) for p in exclude):
        raise ConfigError(source, f"'exclude' of repo {raw['dir']!r} must be a list of patterns")

    url = raw.get("url")
    if url is not None and not isinstance(url, str):
        raise ConfigError(source, f"'url' of repo {raw['dir']!r} must be a string")
    return RepoConfig(dir=raw["dir"], exclude=list(exclude), url=url)

"""
Indexer — collect protocol documents from repository checkouts, store the model.

Handles corpus discovery and full rebuild.
"""

from __future__ import annotations

import os
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ..config import CorpusConfig, RepoConfig
from ..store.db import Database
from ..store.models import IndexStats
from .builder import BuildResult, Document, RepoDocuments, build_model
from .logging import get_logger

log = get_logger("wlindex.indexer")

SKIP_DIRS = {".git"}
DOCUMENT_SUFFIX = ".xml"


def get_origin_url(repo_dir: Path) -> Optional[str]:
    """`git remote get-url origin` for a checkout, or None if git can't tell."""
    try:
        proc = subprocess.run(
            ["git", "-C", str(repo_dir), "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError) as e:
        log.warning("repo_url_failed", repo=repo_dir.name, reason=str(e))
        return None
    if proc.returncode != 0:
        log.warning("repo_url_failed", repo=repo_dir.name, reason=proc.stderr.strip())
        return None
    return proc.stdout.strip()


class Indexer:
    """Build the protocol index from the configured checkouts."""

    def __init__(self, db: Database, root: Path, config: Optional[CorpusConfig] = None,
                 url_lookup: Callable[[Path], Optional[str]] = get_origin_url):
        self.db = db
        self.root = root.resolve()
        self.config = config or CorpusConfig.load(self.root)
        self.url_lookup = url_lookup

    @property
    def repos_path(self) -> Path:
        return self.config.repos_path(self.root)

    def discover_documents(self, repo: RepoConfig) -> list[Document]:
        """Walk a checkout in sorted order, return its candidate documents."""
        repo_dir = self.repos_path / repo.dir
        spec = repo.exclude_spec()
        documents = []

        for dirpath, dirnames, filenames in os.walk(repo_dir):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)

            rel_dir = Path(dirpath).relative_to(repo_dir).as_posix()
            prefix = "" if rel_dir == "." else f"{rel_dir}/"
            if spec:
                dirnames[:] = [
                    d for d in dirnames
                    if not spec.match_file(f"{prefix}{d}/")
                ]

            for fname in sorted(filenames):
                if not fname.endswith(DOCUMENT_SUFFIX):
                    continue
                abs_path = Path(dirpath) / fname
                rel_path = abs_path.relative_to(repo_dir).as_posix()
                if spec and spec.match_file(rel_path):
                    continue
                documents.append(Document(
                    path=rel_path,
                    source=abs_path,
                ))

        return documents

    def collect(self) -> list[RepoDocuments]:
        """Every configured repository that exists and has an origin URL."""
        if not self.repos_path.is_dir():
            raise FileNotFoundError(f"repos directory not found: {self.repos_path}")

        collected = []
        for repo in self.config.repos:
            repo_dir = self.repos_path / repo.dir
            if not repo_dir.is_dir():
                log.warning("repo_missing", repo=repo.dir, path=str(repo_dir))
                continue
            url = repo.url if repo.url is not None else self.url_lookup(repo_dir)
            if url is None:
                continue
            collected.append(RepoDocuments(
                name=repo.dir,
                url=url.strip(),
                documents=self.discover_documents(repo),
            ))
        return collected

    def build(self) -> BuildResult:
        return build_model(self.collect())

    def full_rebuild(self) -> IndexStats:
        """Full rebuild: drop everything, re-parse the whole corpus."""
        t0 = time.time()
        result = self.build()

        self.db.reset()
        with self.db.transaction():
            self.db.write_model(result.model)
        self.db.optimize()

        elapsed = time.time() - t0
        stats = self.db.get_stats()
        stats.unresolved_interface_refs = result.resolution.unresolved_interface_refs
        stats.unresolved_enum_refs = result.resolution.unresolved_enum_refs
        stats.skipped_documents = len(result.failures)

        self.db.set_meta("last_rebuild", {
            "timestamp": datetime.now().isoformat(),
            "elapsed_seconds": round(elapsed, 2),
            "protocols_indexed": stats.total_protocols,
            "unresolved_interface_refs": stats.unresolved_interface_refs,
            "unresolved_enum_refs": stats.unresolved_enum_refs,
            "failures": [f.to_dict() for f in result.failures],
        })

        return stats

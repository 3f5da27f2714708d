"""Protocol definitions for the remote collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Protocol

from kegbin.core.models import GitTag


@dataclass(frozen=True)
class CloneOptions:
    """Flags passed to ``git clone``."""

    depth: int | None = None
    quiet: bool = False
    single_branch: bool = False
    dissociate: bool = False
    filter: str | None = None


FORMULA_CLONE_OPTIONS = CloneOptions(
    depth=1,
    quiet=True,
    single_branch=True,
    dissociate=True,
    filter="tree:0",
)


class RepositoryClient(Protocol):
    """Protocol for version-control access to remote repositories."""

    async def clone(self, url: str, dest: Path, options: CloneOptions) -> None:
        """Clone ``url`` into ``dest``, which must not exist yet."""
        ...

    async def exists(self, url: str) -> bool:
        """Whether the remote repository exists."""
        ...

    async def list_tags(self, url: str) -> List[GitTag]:
        """List (commit hash, tag name) pairs of the remote."""
        ...


class FileDownloader(Protocol):
    """Protocol for fetching remote files."""

    def download(self, url: str, dest: Path) -> Path:
        """Stream ``url`` into ``dest``, replacing any existing file."""
        ...

"""Git repository client backed by the ``git`` executable."""

from __future__ import annotations

import time
from pathlib import Path
from typing import List

from kegbin.core.errors import CommandFailed, RepositoryNotFound, StoreError
from kegbin.core.logging import get_logger
from kegbin.core.models import GitTag
from kegbin.core.shell import run_capture
from kegbin.providers.base import CloneOptions

log = get_logger(__name__)

GIT_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_SSH_COMMAND": "ssh -oBatchMode=yes",
}

# git exits with 128 when the remote can not be found or read
EXIT_REMOTE_NOT_FOUND = 128


def clone_args(options: CloneOptions) -> list[str]:
    args: list[str] = []
    if options.depth is not None:
        args.append(f"--depth={options.depth}")
    if options.quiet:
        args.append("--quiet")
    if options.dissociate:
        args.append("--dissociate")
    if options.single_branch:
        args.append("--single-branch")
    if options.filter:
        args.append(f"--filter={options.filter}")
    return args


def parse_tags(output: str) -> List[GitTag]:
    """Parse ``git ls-remote -t`` output.

    Peeled entries (``refs/tags/v1^{}``) duplicate annotated tags and are
    skipped.
    """
    tags: List[GitTag] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split()
        if len(parts) < 2:
            raise CommandFailed(
                "Can not get tag from git output",
                command="git ls-remote -t",
                context={"row": line}
            )
        hash_, ref = parts[0], parts[1]
        if ref.endswith("^{}"):
            continue
        tags.append(GitTag(hash=hash_, tag=ref.removeprefix("refs/tags/")))
    return tags


class GitClient:
    """Runs git subprocesses with deadlines.

    Exit code 128 is reported as RepositoryNotFound, any other failure as
    CommandFailed, and a run past its deadline as CommandTimeout.
    """

    def __init__(
        self,
        exists_timeout: float = 30,
        clone_timeout: float = 300,
        list_tags_timeout: float = 30,
    ) -> None:
        self.exists_timeout = exists_timeout
        self.clone_timeout = clone_timeout
        self.list_tags_timeout = list_tags_timeout

    async def clone(self, url: str, dest: Path, options: CloneOptions) -> None:
        if dest.exists():
            raise StoreError(
                "Repository destination already exists",
                path=str(dest),
                operation="clone"
            )

        start = time.perf_counter()
        log.info("git_clone_start", url=url, path=str(dest))

        cmd = ("git", "clone", url, *clone_args(options), str(dest))
        _, err, code = await run_capture(*cmd, timeout=self.clone_timeout, env=GIT_ENV)
        self._check(cmd, url, code, err)

        log.info(
            "git_clone_complete",
            url=url,
            duration_ms=int((time.perf_counter() - start) * 1000)
        )

    async def exists(self, url: str) -> bool:
        cmd = ("git", "ls-remote", "-h", url)
        _, err, code = await run_capture(*cmd, timeout=self.exists_timeout, env=GIT_ENV)

        if code == 0:
            return True
        if code == EXIT_REMOTE_NOT_FOUND:
            log.debug("git_remote_missing", url=url)
            return False
        raise CommandFailed(command=" ".join(cmd), returncode=code, error=err, context={"url": url})

    async def list_tags(self, url: str) -> List[GitTag]:
        cmd = ("git", "ls-remote", "-t", url)
        out, err, code = await run_capture(*cmd, timeout=self.list_tags_timeout, env=GIT_ENV)
        self._check(cmd, url, code, err)

        tags = parse_tags(out)
        log.debug("git_tags_listed", url=url, count=len(tags))
        return tags

    @staticmethod
    def _check(cmd: tuple[str, ...], url: str, code: int, err: str) -> None:
        if code == 0:
            return
        if code == EXIT_REMOTE_NOT_FOUND:
            raise RepositoryNotFound(url=url, context={"error": err} if err else None)
        raise CommandFailed(command=" ".join(cmd), returncode=code, error=err, context={"url": url})

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional

from models import GitCommit, GitStatus


logger = logging.getLogger("devflow-deployer.git")

COMMIT_SHA_PATTERN = re.compile(r"^[0-9a-f]{7,40}$")
LOG_FORMAT = "--pretty=format:%H%x1f%s%x1f%an%x1f%aI"


class CommandExecutionError(RuntimeError):
    """Raised when a git subprocess exits non-zero."""

    def __init__(self, command: list[str], cwd: Optional[Path], returncode: int, stdout: str, stderr: str) -> None:
        self.command = command
        self.cwd = cwd
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = stderr or stdout or f"return code {returncode}"
        super().__init__(f"command failed ({' '.join(command)}): {message}")


class GitInspector:
    """Reads branch state and changed files from a local working tree.

    Each git call is independent: a failing command leaves the corresponding
    fields as ``None`` so callers receive partial data instead of an error.
    """

    def __init__(self, repo_path: Optional[str | Path], *, dry_run: bool = False) -> None:
        self.repo_path = Path(repo_path) if repo_path else None
        self.dry_run = dry_run

    @staticmethod
    def looks_like_commit(value: Optional[str]) -> bool:
        return bool(value and COMMIT_SHA_PATTERN.match(value))

    async def get_status(self, since_commit: Optional[str] = None) -> GitStatus:
        if self.dry_run:
            return GitStatus(
                branch="main",
                last_commit=GitCommit(message="dry-run"),
                ahead_by=0,
                behind_by=0,
                is_dirty=False,
                uncommitted_changes=0,
            )

        status = GitStatus()
        status.branch = await self._git_output(["rev-parse", "--abbrev-ref", "HEAD"])
        status.last_commit = await self._last_commit()

        porcelain = await self._git_output(["status", "--porcelain"])
        if porcelain is not None:
            changes = [line for line in porcelain.splitlines() if line.strip()]
            status.uncommitted_changes = len(changes)
            status.is_dirty = bool(changes)

        if self.looks_like_commit(since_commit):
            count = await self._git_output(["rev-list", "--count", f"{since_commit}..HEAD"])
            if count is not None and count.isdigit():
                status.ahead_by = int(count)
            upstream = await self._upstream_counts()
            if upstream is not None:
                status.behind_by = upstream[1]
        else:
            upstream = await self._upstream_counts()
            if upstream is not None:
                status.ahead_by, status.behind_by = upstream
        return status

    async def get_changed_files_since(self, commit: Optional[str]) -> List[str]:
        """Files changed between ``commit`` and HEAD, or in HEAD alone without a base."""
        if self.dry_run:
            return []
        if self.looks_like_commit(commit):
            output = await self._git_output(["diff", "--name-only", f"{commit}..HEAD"])
        else:
            output = await self._git_output(["show", "--name-only", "--pretty=format:", "HEAD"])
        if output is None:
            return []
        return sorted({line.strip() for line in output.splitlines() if line.strip()})

    async def _last_commit(self) -> Optional[GitCommit]:
        output = await self._git_output(["log", "-1", LOG_FORMAT])
        if not output:
            return None
        sha, message, author, date = (output.split("\x1f") + ["", "", "", ""])[:4]
        return GitCommit(
            hash=sha or None,
            message=message or None,
            author=author or None,
            date=date or None,
        )

    async def _upstream_counts(self) -> Optional[tuple[int, int]]:
        output = await self._git_output(
            ["rev-list", "--left-right", "--count", "HEAD...@{upstream}"]
        )
        if not output:
            return None
        parts = output.split()
        if len(parts) != 2 or not all(part.isdigit() for part in parts):
            return None
        return int(parts[0]), int(parts[1])

    async def _git_output(self, args: list[str]) -> Optional[str]:
        try:
            return await self._run_command(["git", *args])
        except (CommandExecutionError, OSError) as exc:
            logger.warning("git %s failed in %s: %s", args[0], self.repo_path, exc)
            return None

    async def _run_command(self, command: list[str]) -> str:
        if self.repo_path is None or not self.repo_path.exists():
            raise OSError(f"repository path missing: {self.repo_path}")

        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(self.repo_path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode(errors="replace").strip()
        stderr = stderr_bytes.decode(errors="replace").strip()
        if process.returncode != 0:
            raise CommandExecutionError(command, self.repo_path, process.returncode, stdout, stderr)
        return stdout

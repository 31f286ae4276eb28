from __future__ import annotations

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_STRICTLY_UNSAFE = (
    "/usr",
    "/etc",
    "/private/etc",
    "/bin",
    "/sbin",
    "/boot",
    "/System",
    "/Library",
    "/Applications",
    "/dev",
    "/proc",
    "/sys",
)
_TOP_LEVEL_UNSAFE = ("/var", "/tmp", "/Volumes")
_SAFE_PREFIXES = ("/usr/local/", "/usr/src/", "/Volumes/")


@dataclass(frozen=True)
class GitInfo:
    in_git_repo: bool
    repo_root: str
    mode: str
    ref: str
    changed_files: tuple[str, ...] = field(default_factory=tuple)

    def environment(self) -> dict[str, str]:
        if not self.in_git_repo:
            return {}
        files = list(self.changed_files)
        return {
            "DEVPIPE_GIT_MODE": self.mode,
            "DEVPIPE_GIT_REF": self.ref,
            "DEVPIPE_CHANGED_FILES_COUNT": str(len(files)),
            "DEVPIPE_CHANGED_FILES": "\n".join(files),
            "DEVPIPE_CHANGED_FILES_JSON": json.dumps(files),
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "inGitRepo": self.in_git_repo,
            "repoRoot": self.repo_root,
            "mode": self.mode,
            "ref": self.ref,
            "changedFiles": list(self.changed_files),
        }


def _git(args: list[str], cwd: str | Path) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
        )
    except OSError as exc:
        logger.debug("git %s failed to start: %s", " ".join(args), exc)
        return None


def detect_project_root(start: str | Path | None = None) -> tuple[str, bool]:
    directory = str(Path(start) if start is not None else Path.cwd())
    result = _git(["rev-parse", "--show-toplevel"], directory)
    if result is None or result.returncode != 0:
        return directory, False

    root = result.stdout.strip()
    if not root:
        return directory, False
    return root, True


def detect_changed_files(root: str | Path, in_git_repo: bool, mode: str, ref: str) -> GitInfo:
    if not in_git_repo:
        return GitInfo(False, str(root), mode, ref)

    match mode:
        case "staged":
            args = ["diff", "--cached", "--name-only"]
        case "ref":
            args = ["diff", "--name-only", ref]
        case "staged_unstaged":
            args = ["diff", "--name-only", "HEAD"]
        case _:
            logger.warning("Unknown git mode %r, using staged_unstaged", mode)
            mode = "staged_unstaged"
            args = ["diff", "--name-only", "HEAD"]

    result = _git(args, root)
    if result is None or result.returncode != 0:
        stderr = result.stderr.strip() if result is not None else ""
        logger.warning("git diff failed: %s", stderr or "git unavailable")
        return GitInfo(True, str(root), mode, ref)

    files = tuple(line for line in result.stdout.splitlines() if line.strip())
    return GitInfo(True, str(root), mode, ref, files)


def is_safe_directory(directory: str | Path) -> bool:
    path = str(directory)
    if path in ("", ".") or not path.startswith("/"):
        return True

    path = os.path.normpath(path)
    if path in ("/", "//"):
        return False

    if any(path.startswith(prefix) for prefix in _SAFE_PREFIXES):
        return True

    for unsafe in _STRICTLY_UNSAFE:
        if path == unsafe or path.startswith(unsafe + "/"):
            return False

    return path not in _TOP_LEVEL_UNSAFE

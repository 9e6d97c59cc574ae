"""Per-user workspace layout for agent sessions.

Every worker runs its agent inside a working directory derived from the
caller's identity. Users get ``<users_base>/<slug>``; anonymous workers
share ``<users_base>/_anonymous``, whose persisted agent memory is purged
before each warm-up so unrelated anonymous callers never see each other's
context. Each user workspace may hold a ``CLAUDE.md`` profile that seeds
the warm-up prompt.

With isolation disabled (development), every worker runs in the current
directory and no filesystem preparation happens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

import git
from git import GitCommandError

from agentgate.config import RuntimeConfig
from agentgate.logging import get_logger

logger = get_logger(__name__)

ANONYMOUS_SLUG = "_anonymous"
PROFILE_FILENAME = "CLAUDE.md"
DEFAULT_WARMUP_PROMPT = "hi"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9]")


def sanitize_user_id(user_id: str) -> str:
    """Map a user identifier onto a filesystem-safe directory slug.

    Lowercases, replaces every character outside ``[a-z0-9]`` with ``_``,
    and truncates to 64 characters.
    """
    return _UNSAFE_CHARS.sub("_", user_id.lower())[:64]


def project_key(directory: Path) -> str:
    """Name under which the agent stores per-project state for a directory."""
    return str(directory).lstrip("/").replace("/", "-")


@dataclass(frozen=True)
class WorkspaceLayout:
    """Resolves and prepares worker directories.

    Attributes:
        users_base: Parent of all user workspaces
        claude_home: Agent state directory (holds ``projects/<key>/memory``)
        isolate: When False, every worker uses the current directory
    """

    users_base: Path
    claude_home: Path
    isolate: bool = True

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> WorkspaceLayout:
        return cls(
            users_base=config.users_base,
            claude_home=config.claude_home,
            isolate=config.isolate_workspaces,
        )

    def directory_for(self, user_id: str | None) -> Path:
        if not self.isolate:
            return Path.cwd()
        slug = sanitize_user_id(user_id) if user_id else ANONYMOUS_SLUG
        return self.users_base / slug

    def is_anonymous(self, directory: Path) -> bool:
        return self.isolate and directory.name == ANONYMOUS_SLUG

    def memory_file(self, directory: Path) -> Path:
        return self.claude_home / "projects" / project_key(directory) / "memory" / "MEMORY.md"

    def prepare(self, directory: Path) -> None:
        """Create the workspace and reset anonymous memory.

        Creates the directory, initialises it as a git repository when it is
        not one yet, and for the anonymous workspace deletes the agent's
        persisted memory file. Blocking; run it off the event loop.
        """
        if not self.isolate:
            return

        directory.mkdir(parents=True, exist_ok=True)

        if not (directory / ".git").exists():
            try:
                git.Repo.init(directory)
            except (GitCommandError, OSError) as e:
                logger.warning(
                    "workspace_git_init_failed",
                    directory=str(directory),
                    error=str(e),
                )

        if self.is_anonymous(directory):
            self.memory_file(directory).unlink(missing_ok=True)

    def profile_path(self, user_id: str) -> Path:
        return self.users_base / sanitize_user_id(user_id) / PROFILE_FILENAME

    def read_profile(self, user_id: str) -> str:
        path = self.profile_path(user_id)
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def write_profile(self, user_id: str, content: str) -> Path:
        path = self.profile_path(user_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info("profile_saved", path=str(path), length=len(content))
        return path

    def warmup_prompt(self, directory: Path) -> str:
        """Build the first message sent to a fresh conversation.

        Seeds the conversation with the workspace profile when one exists,
        otherwise returns a trivial greeting.
        """
        if not self.isolate:
            return DEFAULT_WARMUP_PROMPT

        profile = directory / PROFILE_FILENAME
        try:
            content = profile.read_text(encoding="utf-8").strip() if profile.exists() else ""
        except OSError as e:
            logger.warning("profile_read_failed", path=str(profile), error=str(e))
            content = ""

        if not content:
            return DEFAULT_WARMUP_PROMPT
        return (
            f"[Personal settings]\n{content}\n\n"
            'Remember the above. Reply "ok" when ready.'
        )

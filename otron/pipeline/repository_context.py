"""Repository context block for the system prompt."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from otron.core.models import RepoDefinition
    from otron.core.protocols import RepositorySource

logger = logging.getLogger(__name__)

_GUIDELINES = (
    "**Repository Guidelines:**\n"
    "- When working with code, consider the repository context above\n"
    "- Use the appropriate repository for each task based on the descriptions\n"
    "- Reference repository purposes when making architectural decisions\n"
    "- Consider cross-repository dependencies when making changes\n\n"
)


def build_repository_context(repos: Sequence[RepoDefinition]) -> str:
    """Render active repositories as a markdown block.

    Returns:
        The block, or an empty string when no repository is active.
    """
    active = sorted((r for r in repos if r.is_active), key=lambda r: r.name.lower())
    if not active:
        return ""

    parts = [
        "## Repository Context\n\n"
        "The following repositories are available in this environment:\n\n"
    ]
    for index, repo in enumerate(active, start=1):
        lines = [
            f"### {index}. {repo.name} ({repo.owner}/{repo.repo})",
            f"- **Description**: {repo.description}",
        ]
        if repo.purpose:
            lines.append(f"- **Purpose**: {repo.purpose}")
        if repo.context_description:
            lines.append(f"- **Context**: {repo.context_description}")
        if repo.tags:
            lines.append(f"- **Tags**: {', '.join(repo.tags)}")
        lines.append(f"- **GitHub**: {repo.github_url}")
        parts.append("\n".join(lines) + "\n\n")
    parts.append(_GUIDELINES)
    return "".join(parts)


async def load_repository_context(source: RepositorySource | None) -> str:
    """Fetch repositories from ``source`` and render them.

    Never raises: a missing source or any failure yields an empty block.
    """
    if source is None:
        return ""
    try:
        repos = await source.list_repositories()
    except Exception:
        logger.warning("Failed to load repository definitions", exc_info=True)
        return ""
    return build_repository_context(repos)

"""Repository definition sources.

- KeyValueRepositorySource: ``repo_definitions`` set plus
  ``repo_definition:{id}`` JSON documents in the key-value store
- YamlRepositorySource: ``repositories:`` list in a YAML file

Example otron.yaml:

    repositories:
      - id: api
        name: API
        owner: acme
        repo: api
        description: Public REST API
        purpose: Serves the mobile apps
        tags: [python, fastapi]
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import yaml

from otron.core.models import RepoDefinition

if TYPE_CHECKING:
    from pathlib import Path

    from otron.core.protocols import KeyValueClient

logger = logging.getLogger(__name__)

REPO_INDEX = "repo_definitions"
REPO_KEY = "repo_definition:{}"


class KeyValueRepositorySource:
    """Reads repository definitions stored by the repository manager."""

    def __init__(self, kv: KeyValueClient) -> None:
        self._kv = kv

    async def list_repositories(self) -> list[RepoDefinition]:
        repos: list[RepoDefinition] = []
        for repo_id in sorted(await self._kv.smembers(REPO_INDEX)):
            raw = await self._kv.get(REPO_KEY.format(repo_id))
            if raw is None:
                continue
            try:
                repos.append(RepoDefinition.from_dict(json.loads(raw)))
            except (json.JSONDecodeError, TypeError) as e:
                # One bad record must not hide the others
                logger.warning("Skipping repository definition %s: %s", repo_id, e)
        return repos

    async def save_repository(self, repo: RepoDefinition) -> None:
        payload: dict[str, Any] = {
            "id": repo.id,
            "name": repo.name,
            "description": repo.description,
            "purpose": repo.purpose,
            "githubUrl": repo.github_url,
            "owner": repo.owner,
            "repo": repo.repo,
            "isActive": repo.is_active,
            "tags": repo.tags,
            "contextDescription": repo.context_description,
            "createdAt": repo.created_at,
            "updatedAt": repo.updated_at,
        }
        await self._kv.set(REPO_KEY.format(repo.id), json.dumps(payload))
        await self._kv.sadd(REPO_INDEX, repo.id)


class YamlRepositorySource:
    """Reads repository definitions from a YAML file.

    A missing file yields no repositories.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    async def list_repositories(self) -> list[RepoDefinition]:
        if not self.path.exists():
            return []
        try:
            data = yaml.safe_load(self.path.read_text())
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {self.path}: {e}") from e

        if data is None:
            return []
        if not isinstance(data, dict):
            raise ValueError(f"{self.path}: top level must be a mapping")
        entries = data.get("repositories") or []
        if not isinstance(entries, list):
            raise ValueError(f"{self.path}: 'repositories' must be a list")

        repos: list[RepoDefinition] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ValueError(f"{self.path}: repositories[{index}] must be a mapping")
            missing = [k for k in ("name", "owner", "repo") if not entry.get(k)]
            if missing:
                raise ValueError(
                    f"{self.path}: repositories[{index}] missing {', '.join(missing)}"
                )
            entry = {"id": entry.get("id") or f"{entry['owner']}/{entry['repo']}", **entry}
            repos.append(RepoDefinition.from_dict(entry))
        return repos

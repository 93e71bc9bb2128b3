"""
kumo.media — Content-reconciled media synchronization.

The remote service rewrites media URLs on upload, so desired and current
media cannot be compared by URL. Each URL is reduced to a fingerprint that
survives the rewrite, and the authored URL is stored in the created item's
metadata so it can be recovered on the next run.
"""

import re
from typing import Any, Iterable
from urllib.parse import urlparse

from kumo.config import MediaConfig
from kumo.errors import MediaOperationError, wrap_operation
from kumo.logger import get_logger
from kumo.models import Entity, MediaInput, MediaItem
from kumo.repository import Repository


def extract_fingerprint(url: str, remote_pattern: re.Pattern[str] | str) -> str:
    """
    Compute a rewrite-resistant identity for a media URL.

    - remote URLs (matching ``remote_pattern``): ``remote:<media-id>``
    - other URLs: ``external:<lowercased host>:<filename>``
    - unparseable URLs: ``raw:<lowercased url>``
    """
    pattern = re.compile(remote_pattern) if isinstance(remote_pattern, str) else remote_pattern

    match = pattern.search(url)
    if match:
        return f"remote:{match.group(1)}"

    try:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        if not host:
            raise ValueError("no host")
        filename = parsed.path.rstrip("/").rsplit("/", 1)[-1]
        return f"external:{host}:{filename}"
    except ValueError:
        return f"raw:{url.lower()}"


def _normalize_alt(alt: str | None) -> str | None:
    if alt is None:
        return None
    trimmed = alt.strip()
    return trimmed or None


def normalize_media(items: Iterable[MediaInput]) -> list[MediaInput]:
    """Drop empty URLs, trim, and dedupe by URL keeping the first alt text."""
    seen: set[str] = set()
    result = []
    for item in items:
        url = (item.url or "").strip()
        if not url:
            continue
        key = url.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(MediaInput(url=url, alt=item.alt))
    return result


def media_equivalent(
    desired: list[MediaInput],
    existing: list[MediaItem],
    config: MediaConfig,
) -> bool:
    """
    True when ``existing`` already holds exactly the ``desired`` content.

    Existing items are compared by their recovered source URL when present,
    falling back to the stored URL.
    """
    if len(desired) != len(existing):
        return False
    if not desired:
        return True

    pattern = re.compile(config.remote_pattern)

    desired_map = {
        extract_fingerprint(item.url, pattern): _normalize_alt(item.alt) for item in desired
    }
    existing_map = {
        extract_fingerprint(item.source_url(config.source_url_key) or item.url, pattern):
            _normalize_alt(item.alt)
        for item in existing
    }

    if desired_map.keys() != existing_map.keys():
        return False

    return all(existing_map[fp] == alt for fp, alt in desired_map.items())


class MediaReconciler:
    """Brings an entity's media in line with the desired list."""

    def __init__(self, repository: Repository, config: MediaConfig):
        self._repository = repository
        self._config = config
        self._logger = get_logger()

    def _create_inputs(self, entity: Entity, desired: list[MediaInput]) -> list[dict[str, Any]]:
        inputs = []
        for item in desired:
            payload: dict[str, Any] = {
                "product": entity.id,
                "mediaUrl": item.url,
                "metadata": [{"key": self._config.source_url_key, "value": item.url}],
            }
            if item.alt:
                payload["alt"] = item.alt
            inputs.append(payload)
        return inputs

    async def sync(self, entity: Entity, desired_media: Iterable[MediaInput]) -> list[MediaItem]:
        """
        Replace the entity's media when its content differs from ``desired_media``.

        Returns the media now attached to the entity.

        Raises:
            MediaOperationError: If listing or replacing media fails.
        """
        desired = normalize_media(desired_media)

        current = await wrap_operation(
            "list media",
            "entity",
            entity.slug,
            lambda: self._repository.list_media(entity.id),
            MediaOperationError,
        )

        if media_equivalent(desired, current, self._config):
            self._logger.debug(
                f"Media unchanged ({len(current)} items)",
                entity=entity.slug,
                stage="media",
            )
            return current

        self._logger.info(
            f"Replacing media: {len(current)} -> {len(desired)} items",
            entity=entity.slug,
            stage="media",
        )

        return await wrap_operation(
            "replace media",
            "entity",
            entity.slug,
            lambda: self._repository.replace_all_media(
                entity.id, self._create_inputs(entity, desired)
            ),
            MediaOperationError,
        )

"""
kumo.cache — Run-scoped memoization of name → remote ID lookups.

One ReferenceCache lives for exactly one reconciliation run and is passed
to every component that resolves references. Entries are never
invalidated. Concurrent resolution of the same cold key may hit the
repository more than once; the results are identical, so the last write
simply wins.
"""

import asyncio
from typing import Awaitable, Callable, Iterable

from kumo.errors import EntityNotFoundError
from kumo.logger import get_logger
from kumo.models import AttributeDefinition, ReferenceKind
from kumo.repository import Repository


def _category_suggestions(path: str) -> tuple[str, ...]:
    if "/" in path:
        parent, _, leaf = path.rpartition("/")
        return (
            f"Nested category paths resolve by their last segment; check that a "
            f"category named '{leaf}' exists under '{parent}'",
            "Use the category slug alone if the name is not unique",
        )
    return (
        f"Check that a category named '{path}' exists",
        "For a nested category use the 'Parent/Child' path form",
    )


def _suggestions(kind: ReferenceKind, key: str) -> tuple[str, ...]:
    if kind == ReferenceKind.CATEGORY:
        return _category_suggestions(key)
    if kind == ReferenceKind.TYPE:
        return (f"Create the product type '{key}' before deploying products that use it",)
    if kind == ReferenceKind.CHANNEL:
        return (f"Check the channel slug '{key}'; channel references use slugs, not names",)
    return (f"Check that the {kind.value} '{key}' exists",)


class ReferenceCache:
    """Lazily populated (kind, lowercased key) → ID mapping."""

    def __init__(self, repository: Repository):
        self._repository = repository
        self._ids: dict[tuple[ReferenceKind, str], str] = {}
        self._attributes: dict[str, AttributeDefinition] = {}
        self._logger = get_logger()

    def _lookup(self, kind: ReferenceKind) -> Callable[[str], Awaitable[dict | None]]:
        if kind == ReferenceKind.TYPE:
            return self._repository.get_type_by_name
        if kind == ReferenceKind.CATEGORY:
            return self._repository.get_category_by_path
        if kind == ReferenceKind.CHANNEL:
            return self._repository.get_channel_by_slug
        raise ValueError(f"No lookup for reference kind: {kind}")

    def get(self, kind: ReferenceKind, key: str) -> str | None:
        return self._ids.get((kind, key.lower()))

    def prime(self, kind: ReferenceKind, key: str, id: str) -> None:
        self._ids[(kind, key.lower())] = id

    async def resolve(self, kind: ReferenceKind, key: str) -> str:
        """
        Resolve a reference to its remote ID.

        Raises:
            EntityNotFoundError: If the repository has no match.
        """
        cached = self.get(kind, key)
        if cached is not None:
            return cached

        if kind == ReferenceKind.ATTRIBUTE:
            attribute = await self.get_attribute(key)
            found_id = attribute.id if attribute else None
        else:
            found = await self._lookup(kind)(key)
            found_id = found["id"] if found else None

        if not found_id:
            raise EntityNotFoundError(
                message=f"{kind.value.capitalize()} '{key}' not found",
                entity=key,
                stage="resolve",
                suggestions=_suggestions(kind, key),
                kind=kind.value,
                key=key,
            )

        self.prime(kind, key, found_id)
        return found_id

    async def get_attribute(self, name: str) -> AttributeDefinition | None:
        """Full attribute definition (choices included), cached by name."""
        cache_key = name.lower()
        if cache_key in self._attributes:
            return self._attributes[cache_key]

        attribute = await self._repository.get_attribute_by_name(name)
        if attribute is not None:
            self._attributes[cache_key] = attribute
            self.prime(ReferenceKind.ATTRIBUTE, name, attribute.id)
        return attribute

    async def warm(self, kind: ReferenceKind, keys: Iterable[str]) -> list[EntityNotFoundError | Exception]:
        """
        Resolve many keys concurrently.

        Failures are logged and returned, never raised: a key that stays
        cold is resolved again on first use.
        """
        unique = sorted({k for k in keys if k and self.get(kind, k) is None})
        if not unique:
            return []

        results = await asyncio.gather(
            *(self.resolve(kind, key) for key in unique),
            return_exceptions=True,
        )

        failures = []
        for key, result in zip(unique, results):
            if isinstance(result, Exception):
                self._logger.warn(
                    f"Could not pre-resolve {kind.value} '{key}': {result}",
                    entity=key,
                    stage="cache_warm",
                )
                failures.append(result)

        self._logger.debug(
            f"Warmed {len(unique) - len(failures)}/{len(unique)} {kind.value} references",
            stage="cache_warm",
        )
        return failures

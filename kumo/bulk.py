"""
kumo.bulk — Batch reconciliation with partial-failure reporting.

New entities are created through the nested bulk-create call, with the
ignore-failed policy so one bad item does not block its siblings. Existing
entities have no bulk-update counterpart and go through the single-entity
path, a bounded number at a time. Every item is attempted; failures are
collected and raised together at the end.
"""

import asyncio
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from kumo.cache import ReferenceCache
from kumo.config import KumoConfig
from kumo.errors import BatchError, EntityOperationError, GraphQLError, wrap_operation
from kumo.hasher import with_payload_hash
from kumo.logger import entity_context, get_logger
from kumo.models import (
    Action,
    BatchFailure,
    BatchSummary,
    Entity,
    EntityInput,
    ReferenceKind,
)
from kumo.reconciler import EntityReconciler
from kumo.repository import Repository

T = TypeVar("T")
R = TypeVar("R")


def split_into_chunks(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    return [list(items[i:i + chunk_size]) for i in range(0, len(items), chunk_size)]


async def process_in_chunks(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    chunk_size: int,
    delay_ms: int = 0,
    label: str = "items",
) -> tuple[list[tuple[T, R]], list[tuple[T, Exception]]]:
    """
    Run ``fn`` over ``items``, ``chunk_size`` at a time.

    Items within a chunk run concurrently; chunks run one after another
    with ``delay_ms`` between them. Never raises for item failures.

    Returns:
        Tuple of (successes, failures), each in input order.
    """
    logger = get_logger()
    successes: list[tuple[T, R]] = []
    failures: list[tuple[T, Exception]] = []

    if not items:
        return successes, failures

    chunks = split_into_chunks(items, max(1, chunk_size))
    logger.debug(
        f"Processing {len(items)} {label} in {len(chunks)} chunks",
        stage="chunks",
        chunk_size=chunk_size,
        delay_ms=delay_ms,
    )

    for index, chunk in enumerate(chunks):
        results = await asyncio.gather(*(fn(item) for item in chunk), return_exceptions=True)

        for item, result in zip(chunk, results):
            if isinstance(result, Exception):
                failures.append((item, result))
            else:
                successes.append((item, result))

        if index < len(chunks) - 1 and delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000.0)

    if failures:
        logger.warn(
            f"Processed {label} with {len(failures)} failures",
            stage="chunks",
            successes=len(successes),
            failures=len(failures),
        )
    return successes, failures


class BulkOrchestrator:
    """Reconciles many entities in one run."""

    def __init__(
        self,
        repository: Repository,
        config: KumoConfig,
        cache: ReferenceCache | None = None,
        reconciler: EntityReconciler | None = None,
    ):
        self._repository = repository
        self._config = config
        self._cache = cache or ReferenceCache(repository)
        self._reconciler = reconciler or EntityReconciler(repository, self._cache, config.media)
        self._logger = get_logger()

    async def bootstrap_many(self, inputs: Sequence[EntityInput]) -> BatchSummary:
        """
        Reconcile every input, then report.

        Raises:
            BatchError: If at least one entity failed. Entities that
                succeeded stay committed.
        """
        summary = BatchSummary(total=len(inputs))
        if not inputs:
            return summary

        failures: list[BatchFailure] = []

        existing = await self._fetch_existing(inputs)
        to_create = [i for i in inputs if i.slug not in existing]
        to_update = [(i, existing[i.slug]) for i in inputs if i.slug in existing]

        self._logger.info(
            f"Partitioned {len(inputs)} entities: {len(to_create)} to create, "
            f"{len(to_update)} to update",
            stage="partition",
        )

        await self._warm_cache(inputs)

        await self._create_all(to_create, summary, failures)
        await self._update_all(to_update, summary, failures)

        summary.failed = len(failures)
        self._logger.info("Batch complete", stage="complete", **summary.to_dict())

        if failures:
            raise BatchError(failures, len(inputs))
        return summary

    async def _fetch_existing(self, inputs: Sequence[EntityInput]) -> dict[str, Entity]:
        slugs = sorted({i.slug for i in inputs})
        entities = await wrap_operation(
            "look up entities",
            "entity",
            f"{len(slugs)} slugs",
            lambda: self._repository.get_entities_by_slugs(slugs),
            EntityOperationError,
        )
        return {entity.slug: entity for entity in entities}

    async def _warm_cache(self, inputs: Sequence[EntityInput]) -> None:
        types = {i.type_name for i in inputs if i.type_name}
        categories = {i.category for i in inputs if i.category}
        channels = {listing.channel for i in inputs for listing in i.channel_listings}
        channels.update(
            listing.channel
            for i in inputs
            for variant in i.variants
            for listing in variant.channel_listings
        )

        await asyncio.gather(
            self._cache.warm(ReferenceKind.TYPE, types),
            self._cache.warm(ReferenceKind.CATEGORY, categories),
            self._cache.warm(ReferenceKind.CHANNEL, channels),
        )

    async def build_bulk_input(self, entity_input: EntityInput) -> dict[str, Any]:
        """
        Nested create payload: attributes, channel listings and variants inline.

        Media is not inlined; see _create_all.

        Raises:
            EntityNotFoundError: If the type or category cannot be resolved.
        """
        reconciler = self._reconciler
        type_id, category_id = await reconciler.resolve_references(entity_input)
        content = await reconciler.build_content(entity_input, category_id)

        extra: dict[str, Any] = {}
        if type_id:
            extra["productType"] = type_id

        if entity_input.channel_listings:
            try:
                payload = await reconciler.channels.entity_listings_payload(
                    entity_input.channel_listings
                )
                extra["channelListings"] = payload["updateChannels"]
            except Exception as e:
                self._logger.warn(
                    f"Channel listings left out of create: {e}",
                    entity=entity_input.slug,
                    stage="channels",
                )

        if entity_input.variants:
            variants = []
            for variant_input in entity_input.variants:
                variant_payload = await reconciler.variants.build_create_input(variant_input)
                if variant_input.channel_listings:
                    try:
                        variant_payload["channelListings"] = (
                            await reconciler.channels.variant_listings_payload(
                                variant_input.channel_listings
                            )
                        )
                    except Exception as e:
                        self._logger.warn(
                            f"Variant channel listings left out of create: {e}",
                            entity=variant_input.sku,
                            stage="channels",
                        )
                variants.append(variant_payload)
            extra["variants"] = variants

        return with_payload_hash(content, extra)

    async def _create_all(
        self,
        to_create: list[EntityInput],
        summary: BatchSummary,
        failures: list[BatchFailure],
    ) -> None:
        if not to_create:
            return

        async def prepare(entity_input: EntityInput) -> dict[str, Any]:
            with entity_context(entity_input.slug):
                return await self.build_bulk_input(entity_input)

        execution = self._config.execution
        prepared, prep_failures = await process_in_chunks(
            to_create,
            prepare,
            execution.concurrency,
            label="create payloads",
        )
        failures.extend(BatchFailure(i.label, e) for i, e in prep_failures)

        created: list[tuple[EntityInput, Entity]] = []
        chunks = split_into_chunks(prepared, execution.chunk_size)

        for index, chunk in enumerate(chunks):
            try:
                result = await self._repository.bulk_create_entities(
                    [payload for _, payload in chunk], execution.error_policy
                )
            except Exception as e:
                self._logger.error(
                    f"Bulk create failed for chunk {index + 1}/{len(chunks)}: {e}",
                    stage="bulk_create",
                )
                failures.extend(BatchFailure(i.label, e) for i, _ in chunk)
            else:
                if result.errors:
                    self._logger.warn(
                        f"Bulk create reported {len(result.errors)} errors",
                        stage="bulk_create",
                        errors=result.errors,
                    )

                for position, (entity_input, _) in enumerate(chunk):
                    item = result.results[position] if position < len(result.results) else None
                    if item is None:
                        failures.append(BatchFailure(
                            entity_input.label,
                            GraphQLError(message="Failed to create entity: no result returned"),
                        ))
                    elif item.errors or item.entity is None:
                        failures.append(BatchFailure(
                            entity_input.label,
                            GraphQLError.from_errors("Failed to create entity", item.errors),
                        ))
                    else:
                        created.append((entity_input, item.entity))

            if index < len(chunks) - 1 and execution.chunk_delay_ms > 0:
                await asyncio.sleep(execution.chunk_delay_ms / 1000.0)

        summary.created += len(created)
        self._logger.info(
            f"Created {len(created)}/{len(to_create)} entities",
            stage="bulk_create",
        )

        # The nested create cannot attach source-URL metadata to media, so
        # media goes through the content-reconciled path after creation.
        with_media = [(i, e) for i, e in created if i.media is not None]
        _, media_failures = await process_in_chunks(
            with_media,
            lambda pair: self._reconciler.media.sync(pair[1], pair[0].media),
            execution.concurrency,
            execution.chunk_delay_ms,
            label="media syncs",
        )
        failures.extend(BatchFailure(i.label, e) for (i, _), e in media_failures)

    async def _update_all(
        self,
        to_update: list[tuple[EntityInput, Entity]],
        summary: BatchSummary,
        failures: list[BatchFailure],
    ) -> None:
        if not to_update:
            return

        execution = self._config.execution
        results, update_failures = await process_in_chunks(
            to_update,
            lambda pair: self._reconciler.bootstrap(pair[0], existing=pair[1]),
            execution.concurrency,
            execution.chunk_delay_ms,
            label="entity updates",
        )

        for _, result in results:
            if result.action == Action.SKIPPED:
                summary.skipped += 1
            else:
                summary.updated += 1

        failures.extend(BatchFailure(i.label, e) for (i, _), e in update_failures)

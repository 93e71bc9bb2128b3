"""
kumo.reconciler — Per-entity reconciliation.

Each entity goes through a fixed sequence of steps; every step needs the
ID or state produced by the one before it, so nothing within one entity
runs concurrently:

1. resolve type and category (required)
2. resolve attribute values (never fatal)
3. upsert the entity by slug (required)
4. sync media, when the input lists media (required once attempted)
5. upsert variants (required)
6. update entity channel listings (optional)
7. update variant channel listings (optional)
"""

import re
from typing import Any

from kumo.attributes import AttributeValueResolver, PageResolver, rich_text
from kumo.cache import ReferenceCache
from kumo.channels import ChannelListingResolver
from kumo.config import MediaConfig
from kumo.errors import EntityOperationError, wrap_operation
from kumo.hasher import is_unchanged, with_payload_hash
from kumo.logger import entity_context, get_logger
from kumo.media import MediaReconciler
from kumo.models import Action, BootstrapResult, Entity, EntityInput, ReferenceKind, Variant
from kumo.repository import Repository
from kumo.variants import VariantReconciler

# The remote service sometimes rejects a description it produced itself.
# It exposes no error code for this, so the trigger is the message text.
DESCRIPTION_ERROR_PATTERN = re.compile(r"description|json|string", re.IGNORECASE)

_UNSET: Any = object()


def matches_remote(existing: Entity, content: dict[str, Any]) -> bool:
    """True when the fields the service reports back already hold ``content``."""
    if existing.name != content["name"] or existing.slug != content["slug"]:
        return False
    return "category" not in content or existing.category_id == content["category"]


class EntityReconciler:
    """Reconciles one catalog entity and everything nested under it."""

    def __init__(
        self,
        repository: Repository,
        cache: ReferenceCache,
        media_config: MediaConfig | None = None,
        page_resolver: PageResolver | None = None,
    ):
        self._repository = repository
        self._cache = cache
        self._logger = get_logger()

        self.attributes = AttributeValueResolver(
            repository, cache, page_resolver or repository.get_page_by_slug
        )
        self.variants = VariantReconciler(repository, self.attributes)
        self.media = MediaReconciler(repository, media_config or MediaConfig())
        self.channels = ChannelListingResolver(repository, cache)

    async def resolve_references(self, entity_input: EntityInput) -> tuple[str | None, str | None]:
        """
        Resolve the type and category of an entity.

        Raises:
            EntityNotFoundError: If either reference does not exist.
        """
        type_id = None
        if entity_input.type_name:
            type_id = await self._cache.resolve(ReferenceKind.TYPE, entity_input.type_name)

        category_id = None
        if entity_input.category:
            category_id = await self._cache.resolve(ReferenceKind.CATEGORY, entity_input.category)

        return type_id, category_id

    async def build_content(
        self, entity_input: EntityInput, category_id: str | None
    ) -> dict[str, Any]:
        """Entity fields shared by create and update payloads."""
        payload: dict[str, Any] = {
            "name": entity_input.name,
            "slug": entity_input.slug,
            "attributes": await self.attributes.resolve_all(
                entity_input.attributes, entity=entity_input.slug
            ),
        }
        if category_id:
            payload["category"] = category_id
        if entity_input.description:
            payload["description"] = rich_text(entity_input.description)
        return payload

    async def _update(self, existing: Entity, content: dict[str, Any]) -> Entity:
        stamped = with_payload_hash(content)
        try:
            return await self._repository.update_entity(existing.id, stamped)
        except Exception as e:
            if "description" not in content or not DESCRIPTION_ERROR_PATTERN.search(str(e)):
                raise

            self._logger.warn(
                f"Update failed, retrying without description: {e}",
                entity=existing.slug,
                stage="upsert",
            )
            # Keeps the full content hash so the next run sees no change.
            fallback = {k: v for k, v in stamped.items() if k != "description"}
            return await self._repository.update_entity(existing.id, fallback)

    async def upsert(
        self,
        entity_input: EntityInput,
        type_id: str | None,
        category_id: str | None,
        existing: Entity | None,
    ) -> tuple[Entity, Action]:
        slug = entity_input.slug
        content = await self.build_content(entity_input, category_id)

        if existing is not None:
            if is_unchanged(existing.metadata, content) and matches_remote(existing, content):
                self._logger.debug("Entity unchanged", entity=slug, stage="upsert")
                return existing, Action.SKIPPED

            self._logger.info(f"Updating entity: {entity_input.name}", entity=slug, stage="upsert")
            entity = await wrap_operation(
                "update entity",
                "entity",
                slug,
                lambda: self._update(existing, content),
                EntityOperationError,
            )
            return entity, Action.UPDATED

        extra = {"productType": type_id} if type_id else {}
        self._logger.info(f"Creating entity: {entity_input.name}", entity=slug, stage="upsert")
        entity = await wrap_operation(
            "create entity",
            "entity",
            slug,
            lambda: self._repository.create_entity(with_payload_hash(content, extra)),
            EntityOperationError,
        )
        return entity, Action.CREATED

    async def bootstrap(
        self, entity_input: EntityInput, existing: Entity | None = _UNSET
    ) -> BootstrapResult:
        """
        Reconcile one entity end to end.

        ``existing`` may carry the result of an earlier slug lookup (None
        meaning "known not to exist"); when omitted the lookup is done here.

        Raises:
            EntityNotFoundError: If the type or category cannot be resolved.
            OperationError: If the upsert, media or a variant fails.
        """
        with entity_context(entity_input.slug):
            return await self._bootstrap(entity_input, existing)

    async def _bootstrap(self, entity_input: EntityInput, existing: Entity | None) -> BootstrapResult:
        slug = entity_input.slug

        type_id, category_id = await self.resolve_references(entity_input)

        if existing is _UNSET:
            existing = await wrap_operation(
                "look up entity",
                "entity",
                slug,
                lambda: self._repository.get_entity_by_slug(slug),
                EntityOperationError,
            )

        entity, action = await self.upsert(entity_input, type_id, category_id, existing)

        if entity_input.media is not None:
            await self.media.sync(entity, entity_input.media)

        variants = await self.variants.reconcile(entity, entity_input.variants)

        if entity_input.channel_listings:
            try:
                entity = await self.channels.apply_to_entity(entity, entity_input.channel_listings)
            except Exception as e:
                self._logger.warn(
                    f"Channel listings not updated: {e}",
                    entity=slug,
                    stage="channels",
                )

        variants = await self._apply_variant_listings(entity_input, variants)

        self._logger.info(
            f"Reconciled entity ({action.value})",
            entity=slug,
            stage="complete",
            entity_id=entity.id,
            variants=len(variants),
        )
        return BootstrapResult(entity=entity, variants=variants, action=action)

    async def _apply_variant_listings(
        self, entity_input: EntityInput, variants: list[Variant]
    ) -> list[Variant]:
        listings_by_sku = {
            v.sku: v.channel_listings for v in entity_input.variants if v.channel_listings
        }
        if not listings_by_sku:
            return variants

        result = []
        for variant in variants:
            listings = listings_by_sku.get(variant.sku)
            if listings:
                try:
                    variant = await self.channels.apply_to_variant(variant, listings)
                except Exception as e:
                    self._logger.warn(
                        f"Variant channel listings not updated: {e}",
                        entity=variant.sku,
                        stage="channels",
                    )
            result.append(variant)
        return result

"""Shared fixtures: an in-memory repository that records every write."""

import itertools
from dataclasses import replace
from typing import Any

import pytest

from kumo.cache import ReferenceCache
from kumo.config import ApiConfig, ErrorPolicy, ExecutionConfig, KumoConfig, RetryConfig
from kumo.models import (
    AttributeChoice,
    AttributeDefinition,
    BulkItemResult,
    BulkResult,
    ChannelListing,
    Entity,
    MediaItem,
    Variant,
    VariantChannelListing,
)


def _metadata(input: dict[str, Any]) -> dict[str, str]:
    return {item["key"]: item["value"] for item in input.get("metadata") or []}


def _entity_listings(items: list[dict[str, Any]]) -> list[ChannelListing]:
    return [
        ChannelListing(
            channel_id=item["channelId"],
            is_published=item.get("isPublished", False),
            visible_in_listings=item.get("visibleInListings", False),
            is_available_for_purchase=item.get("isAvailableForPurchase", False),
            published_at=item.get("publishedAt"),
            available_for_purchase_at=item.get("availableForPurchaseAt"),
        )
        for item in items
    ]


def _variant_listings(items: list[dict[str, Any]]) -> list[VariantChannelListing]:
    return [
        VariantChannelListing(
            channel_id=item["channelId"],
            price=item.get("price"),
            cost_price=item.get("costPrice"),
        )
        for item in items
    ]


class FakeRepository:
    """
    In-memory stand-in for the remote catalog.

    ``writes`` records (method, args) for every mutating call. ``failures``
    maps a method name to exceptions raised by its next calls, one per
    call; ``broken`` maps a method name to an exception raised every time.
    Media URLs are rewritten on create the way the real service does.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.entities: dict[str, Entity] = {}
        self.variants: dict[str, Variant] = {}
        self.variant_parents: dict[str, str] = {}
        self.media: dict[str, list[MediaItem]] = {}
        self.types: dict[str, dict[str, str]] = {}
        self.categories: dict[str, dict[str, str]] = {}
        self.channels: dict[str, dict[str, str]] = {}
        self.pages: dict[str, dict[str, str]] = {}
        self.attributes: dict[str, AttributeDefinition] = {}
        self.bulk_rejected: set[str] = set()
        self.writes: list[tuple[str, Any]] = []
        self.lookups: list[tuple[str, Any]] = []
        self.failures: dict[str, list[Exception]] = {}
        self.broken: dict[str, Exception] = {}

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _check(self, method: str) -> None:
        if method in self.broken:
            raise self.broken[method]
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def _write(self, method: str, *args: Any) -> None:
        self._check(method)
        self.writes.append((method, args))

    def _lookup(self, method: str, key: Any) -> None:
        self._check(method)
        self.lookups.append((method, key))

    def write_names(self) -> list[str]:
        return [name for name, _ in self.writes]

    def lookup_count(self, method: str) -> int:
        return sum(1 for name, _ in self.lookups if name == method)

    # Seeding

    def add_type(self, name: str) -> str:
        id = self._next_id("type")
        self.types[name.lower()] = {"id": id, "name": name}
        return id

    def add_category(self, name: str) -> str:
        id = self._next_id("category")
        self.categories[name.lower()] = {"id": id, "name": name}
        return id

    def add_channel(self, slug: str) -> str:
        id = self._next_id("channel")
        self.channels[slug.lower()] = {"id": id, "slug": slug}
        return id

    def add_page(self, slug: str) -> str:
        id = self._next_id("page")
        self.pages[slug.lower()] = {"id": id, "slug": slug}
        return id

    def add_attribute(
        self,
        name: str,
        input_type: str | None,
        choices: tuple[str, ...] = (),
        entity_type: str | None = None,
    ) -> AttributeDefinition:
        attribute = AttributeDefinition(
            id=self._next_id("attribute"),
            name=name,
            input_type=input_type,
            entity_type=entity_type,
            choices=tuple(
                AttributeChoice(id=self._next_id("choice"), name=c, value=c.lower())
                for c in choices
            ),
        )
        self.attributes[name.lower()] = attribute
        return attribute

    def add_entity(self, name: str, slug: str, **kwargs: Any) -> Entity:
        entity = Entity(id=self._next_id("entity"), name=name, slug=slug, **kwargs)
        self.entities[entity.id] = entity
        return entity

    def add_variant(self, parent_id: str, sku: str, **kwargs: Any) -> Variant:
        variant = Variant(id=self._next_id("variant"), sku=sku, **kwargs)
        self.variants[variant.id] = variant
        self.variant_parents[variant.id] = parent_id
        return variant

    # Entities

    def _store_entity(self, input: dict[str, Any]) -> Entity:
        entity = Entity(
            id=self._next_id("entity"),
            name=input["name"],
            slug=input["slug"],
            type_id=input.get("productType"),
            category_id=input.get("category"),
            channel_listings=_entity_listings(input.get("channelListings") or []),
            metadata=_metadata(input),
        )
        self.entities[entity.id] = entity
        for variant_input in input.get("variants") or []:
            self._store_variant(entity.id, variant_input)
        return entity

    def _store_variant(self, parent_id: str, input: dict[str, Any]) -> Variant:
        variant = Variant(
            id=self._next_id("variant"),
            sku=input["sku"],
            name=input.get("name", ""),
            weight=input.get("weight"),
            channel_listings=_variant_listings(input.get("channelListings") or []),
            metadata=_metadata(input),
        )
        self.variants[variant.id] = variant
        self.variant_parents[variant.id] = parent_id
        return variant

    async def create_entity(self, input):
        self._write("create_entity", input)
        return self._store_entity(input)

    async def update_entity(self, id, input):
        self._write("update_entity", id, input)
        current = self.entities[id]
        updated = replace(
            current,
            name=input.get("name", current.name),
            slug=input.get("slug", current.slug),
            category_id=input.get("category", current.category_id),
            metadata={**current.metadata, **_metadata(input)},
        )
        self.entities[id] = updated
        return updated

    async def get_entity_by_slug(self, slug):
        self._lookup("get_entity_by_slug", slug)
        return next((e for e in self.entities.values() if e.slug == slug), None)

    async def get_entities_by_slugs(self, slugs):
        self._lookup("get_entities_by_slugs", tuple(slugs))
        wanted = set(slugs)
        return [e for e in self.entities.values() if e.slug in wanted]

    async def get_entity_by_name(self, name):
        self._lookup("get_entity_by_name", name)
        return next((e for e in self.entities.values() if e.name == name), None)

    # Variants

    async def get_variant_by_sku(self, sku):
        self._lookup("get_variant_by_sku", sku)
        return next((v for v in self.variants.values() if v.sku == sku), None)

    async def create_variant(self, input):
        self._write("create_variant", input)
        return self._store_variant(input.get("product", ""), input)

    async def update_variant(self, id, input):
        self._write("update_variant", id, input)
        current = self.variants[id]
        updated = replace(
            current,
            name=input.get("name", current.name),
            weight=input.get("weight", current.weight),
            metadata={**current.metadata, **_metadata(input)},
        )
        self.variants[id] = updated
        return updated

    # References

    async def get_type_by_name(self, name):
        self._lookup("get_type_by_name", name)
        return self.types.get(name.lower())

    async def get_category_by_path(self, path):
        self._lookup("get_category_by_path", path)
        leaf = path.split("/")[-1].strip()
        return self.categories.get(leaf.lower())

    async def get_attribute_by_name(self, name):
        self._lookup("get_attribute_by_name", name)
        return self.attributes.get(name.lower())

    async def get_channel_by_slug(self, slug):
        self._lookup("get_channel_by_slug", slug)
        return self.channels.get(slug.lower())

    async def get_page_by_slug(self, slug):
        self._lookup("get_page_by_slug", slug)
        return self.pages.get(slug.lower())

    # Channel listings

    async def update_entity_channel_listings(self, id, input):
        self._write("update_entity_channel_listings", id, input)
        updated = replace(
            self.entities[id],
            channel_listings=_entity_listings(input["updateChannels"]),
        )
        self.entities[id] = updated
        return updated

    async def update_variant_channel_listings(self, id, input):
        self._write("update_variant_channel_listings", id, input)
        updated = replace(self.variants[id], channel_listings=_variant_listings(input))
        self.variants[id] = updated
        return updated

    # Media

    async def list_media(self, entity_id):
        self._lookup("list_media", entity_id)
        return list(self.media.get(entity_id, []))

    async def create_media(self, input):
        self._write("create_media", input)
        id = self._next_id("media")
        item = MediaItem(
            id=id,
            url=f"https://cdn.example.com/media/thumbnail/{id}/4096/",
            alt=input.get("alt"),
            metadata=_metadata(input),
        )
        self.media.setdefault(input["product"], []).append(item)
        return item

    async def delete_media(self, id):
        self._write("delete_media", id)
        for items in self.media.values():
            items[:] = [m for m in items if m.id != id]

    async def replace_all_media(self, entity_id, inputs):
        self._write("replace_all_media", entity_id, inputs)
        self.media[entity_id] = []
        created = []
        for input in inputs:
            created.append(await self.create_media({**input, "product": entity_id}))
        return created

    # Bulk

    async def bulk_create_entities(self, inputs, error_policy):
        self._write("bulk_create_entities", inputs, error_policy)
        results = []
        for input in inputs:
            if input["slug"] in self.bulk_rejected:
                results.append(BulkItemResult(
                    errors=[{"field": "slug", "message": "Rejected by the service"}],
                ))
            else:
                results.append(BulkItemResult(entity=self._store_entity(input)))
        created = sum(1 for r in results if r.entity is not None)
        return BulkResult(count=created, results=results)

    async def bulk_create_variants(self, parent_id, inputs, error_policy):
        self._write("bulk_create_variants", parent_id, inputs, error_policy)
        return BulkResult(
            count=len(inputs),
            results=[
                BulkItemResult(entity=self._store_variant(parent_id, input))
                for input in inputs
            ],
        )


@pytest.fixture
def repository() -> FakeRepository:
    """Repository seeded with the references most tests need."""
    repo = FakeRepository()
    repo.add_type("Simple")
    repo.add_category("Shoes")
    repo.add_category("Shirts")
    repo.add_channel("default-channel")
    repo.add_attribute("Material", "PLAIN_TEXT")
    repo.add_attribute("Waterproof", "BOOLEAN")
    repo.add_attribute("Weight", "NUMERIC")
    repo.add_attribute("Size", "DROPDOWN", choices=("Small", "Large"))
    repo.add_attribute("Tags", "MULTISELECT", choices=("Sale", "New"))
    repo.add_attribute("Care", "RICH_TEXT")
    return repo


@pytest.fixture
def cache(repository: FakeRepository) -> ReferenceCache:
    return ReferenceCache(repository)


@pytest.fixture
def config() -> KumoConfig:
    """Valid configuration with delays disabled."""
    return KumoConfig(
        execution=ExecutionConfig(
            concurrency=5,
            chunk_size=10,
            chunk_delay_ms=0,
            error_policy=ErrorPolicy.IGNORE_FAILED,
        ),
        api=ApiConfig(url="https://shop.example.com/graphql/", token="secret"),
        retry=RetryConfig(max_attempts=3, initial_delay_ms=1, max_delay_ms=5),
    )

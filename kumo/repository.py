"""
kumo.repository — Read/write operations the engine needs from the remote
catalog service.

Implementations surface transport and business errors verbatim; adding
business context is the engine's job (see kumo.errors.wrap_operation).
"""

from typing import Any, Protocol

from kumo.config import ErrorPolicy
from kumo.models import AttributeDefinition, BulkResult, Entity, MediaItem, Variant


class Repository(Protocol):
    # Entities
    async def create_entity(self, input: dict[str, Any]) -> Entity: ...

    async def update_entity(self, id: str, input: dict[str, Any]) -> Entity: ...

    async def get_entity_by_slug(self, slug: str) -> Entity | None: ...

    async def get_entities_by_slugs(self, slugs: list[str]) -> list[Entity]: ...

    async def get_entity_by_name(self, name: str) -> Entity | None: ...

    # Variants
    async def get_variant_by_sku(self, sku: str) -> Variant | None: ...

    async def create_variant(self, input: dict[str, Any]) -> Variant: ...

    async def update_variant(self, id: str, input: dict[str, Any]) -> Variant: ...

    # References
    async def get_type_by_name(self, name: str) -> dict[str, str] | None: ...

    async def get_category_by_path(self, path: str) -> dict[str, str] | None: ...

    async def get_attribute_by_name(self, name: str) -> AttributeDefinition | None: ...

    async def get_channel_by_slug(self, slug: str) -> dict[str, str] | None: ...

    async def get_page_by_slug(self, slug: str) -> dict[str, str] | None: ...

    # Channel listings
    async def update_entity_channel_listings(
        self, id: str, input: dict[str, Any]
    ) -> Entity | None: ...

    async def update_variant_channel_listings(
        self, id: str, input: list[dict[str, Any]]
    ) -> Variant | None: ...

    # Media
    async def list_media(self, entity_id: str) -> list[MediaItem]: ...

    async def create_media(self, input: dict[str, Any]) -> MediaItem: ...

    async def delete_media(self, id: str) -> None: ...

    async def replace_all_media(
        self, entity_id: str, inputs: list[dict[str, Any]]
    ) -> list[MediaItem]: ...

    # Bulk
    async def bulk_create_entities(
        self, inputs: list[dict[str, Any]], error_policy: ErrorPolicy
    ) -> BulkResult: ...

    async def bulk_create_variants(
        self, parent_id: str, inputs: list[dict[str, Any]], error_policy: ErrorPolicy
    ) -> BulkResult: ...

"""
kumo.channels — Channel-scoped publish, visibility and pricing payloads.

Channel slugs are resolved through the run's ReferenceCache. Updates are
only issued when the current listings differ from the desired ones.
"""

from datetime import date, datetime, time, timezone
from typing import Any, Iterable

from kumo.cache import ReferenceCache
from kumo.errors import ChannelListingError, wrap_operation
from kumo.logger import get_logger
from kumo.models import (
    ChannelListing,
    ChannelListingInput,
    Entity,
    ReferenceKind,
    Variant,
    VariantChannelListing,
    VariantChannelListingInput,
)
from kumo.repository import Repository


def _default_true(value: bool | None) -> bool:
    return True if value is None else value


def _same_amount(current: float | None, desired: Any) -> bool:
    if desired is None:
        return True
    if current is None:
        return False
    return float(current) == float(desired)


def _moment(value: Any) -> Any:
    """Timestamps as aware datetimes; date-only and naive values are UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _same_moment(current: Any, desired: Any) -> bool:
    return _moment(current) == _moment(desired)


def entity_listings_match(current: list[ChannelListing], update_channels: list[dict[str, Any]]) -> bool:
    by_channel = {listing.channel_id: listing for listing in current}
    for desired in update_channels:
        listing = by_channel.get(desired["channelId"])
        if listing is None:
            return False
        if (
            listing.is_published != desired["isPublished"]
            or listing.visible_in_listings != desired["visibleInListings"]
            or listing.is_available_for_purchase != desired["isAvailableForPurchase"]
        ):
            return False
        if "publishedAt" in desired and not _same_moment(listing.published_at, desired["publishedAt"]):
            return False
        if (
            "availableForPurchaseAt" in desired
            and not _same_moment(
                listing.available_for_purchase_at, desired["availableForPurchaseAt"]
            )
        ):
            return False
    return True


def variant_listings_match(
    current: list[VariantChannelListing], listings: list[dict[str, Any]]
) -> bool:
    by_channel = {listing.channel_id: listing for listing in current}
    for desired in listings:
        listing = by_channel.get(desired["channelId"])
        if listing is None:
            return False
        if not _same_amount(listing.price, desired.get("price")):
            return False
        if not _same_amount(listing.cost_price, desired.get("costPrice")):
            return False
    return True


class ChannelListingResolver:
    """Builds and applies channel listing updates for entities and variants."""

    def __init__(self, repository: Repository, cache: ReferenceCache):
        self._repository = repository
        self._cache = cache
        self._logger = get_logger()

    async def entity_listings_payload(
        self, listings: Iterable[ChannelListingInput]
    ) -> dict[str, Any]:
        update_channels = []
        for listing in listings:
            channel_id = await self._cache.resolve(ReferenceKind.CHANNEL, listing.channel)
            item: dict[str, Any] = {
                "channelId": channel_id,
                "isPublished": _default_true(listing.is_published),
                "visibleInListings": _default_true(listing.visible_in_listings),
                "isAvailableForPurchase": _default_true(listing.is_available_for_purchase),
            }
            if listing.published_at:
                item["publishedAt"] = listing.published_at
            if listing.available_for_purchase_at:
                item["availableForPurchaseAt"] = listing.available_for_purchase_at
            update_channels.append(item)
        return {"updateChannels": update_channels}

    async def variant_listings_payload(
        self, listings: Iterable[VariantChannelListingInput]
    ) -> list[dict[str, Any]]:
        payload = []
        for listing in listings:
            channel_id = await self._cache.resolve(ReferenceKind.CHANNEL, listing.channel)
            item: dict[str, Any] = {"channelId": channel_id}
            if listing.price is not None:
                item["price"] = listing.price
            if listing.cost_price is not None:
                item["costPrice"] = listing.cost_price
            payload.append(item)
        return payload

    async def apply_to_entity(
        self, entity: Entity, listings: Iterable[ChannelListingInput]
    ) -> Entity:
        payload = await self.entity_listings_payload(listings)

        if entity_listings_match(entity.channel_listings, payload["updateChannels"]):
            self._logger.debug("Channel listings unchanged", entity=entity.slug, stage="channels")
            return entity

        updated = await wrap_operation(
            "update channel listings",
            "entity",
            entity.slug,
            lambda: self._repository.update_entity_channel_listings(entity.id, payload),
            ChannelListingError,
        )
        return updated or entity

    async def apply_to_variant(
        self, variant: Variant, listings: Iterable[VariantChannelListingInput]
    ) -> Variant:
        payload = await self.variant_listings_payload(listings)

        if variant_listings_match(variant.channel_listings, payload):
            self._logger.debug("Channel listings unchanged", entity=variant.sku, stage="channels")
            return variant

        updated = await wrap_operation(
            "update channel listings",
            "variant",
            variant.sku,
            lambda: self._repository.update_variant_channel_listings(variant.id, payload),
            ChannelListingError,
        )
        return updated or variant

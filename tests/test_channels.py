"""Tests for kumo.channels."""

import asyncio

import pytest

from kumo.channels import ChannelListingResolver, entity_listings_match
from kumo.errors import ChannelListingError, EntityNotFoundError
from kumo.models import (
    ChannelListing,
    ChannelListingInput,
    VariantChannelListing,
    VariantChannelListingInput,
)


@pytest.fixture
def resolver(repository, cache) -> ChannelListingResolver:
    return ChannelListingResolver(repository, cache)


@pytest.fixture
def channel_id(repository) -> str:
    return repository.channels["default-channel"]["id"]


class TestEntityListingsPayload:
    def test_defaults_to_published_and_visible(self, resolver, channel_id):
        payload = asyncio.run(resolver.entity_listings_payload([
            ChannelListingInput(channel="default-channel"),
        ]))

        assert payload == {
            "updateChannels": [
                {
                    "channelId": channel_id,
                    "isPublished": True,
                    "visibleInListings": True,
                    "isAvailableForPurchase": True,
                },
            ],
        }

    def test_explicit_values_and_dates(self, resolver):
        payload = asyncio.run(resolver.entity_listings_payload([
            ChannelListingInput(
                channel="default-channel",
                is_published=False,
                published_at="2024-06-01",
                available_for_purchase_at="2024-06-02",
            ),
        ]))

        item = payload["updateChannels"][0]
        assert item["isPublished"] is False
        assert item["publishedAt"] == "2024-06-01"
        assert item["availableForPurchaseAt"] == "2024-06-02"

    def test_unknown_channel(self, resolver):
        with pytest.raises(EntityNotFoundError):
            asyncio.run(resolver.entity_listings_payload([ChannelListingInput(channel="mars")]))


class TestVariantListingsPayload:
    def test_prices(self, resolver, channel_id):
        payload = asyncio.run(resolver.variant_listings_payload([
            VariantChannelListingInput(channel="default-channel", price=10, cost_price=4),
        ]))

        assert payload == [{"channelId": channel_id, "price": 10, "costPrice": 4}]

    def test_omits_missing_prices(self, resolver, channel_id):
        payload = asyncio.run(resolver.variant_listings_payload([
            VariantChannelListingInput(channel="default-channel"),
        ]))

        assert payload == [{"channelId": channel_id}]


class TestApply:
    def test_updates_entity(self, repository, resolver, channel_id):
        entity = repository.add_entity("Shoe", "shoe")

        updated = asyncio.run(resolver.apply_to_entity(
            entity, [ChannelListingInput(channel="default-channel")]
        ))

        assert repository.write_names() == ["update_entity_channel_listings"]
        assert updated.channel_listings[0].channel_id == channel_id

    def test_matching_listings_skip(self, repository, resolver, channel_id):
        entity = repository.add_entity(
            "Shoe",
            "shoe",
            channel_listings=[
                ChannelListing(
                    channel_id=channel_id,
                    is_published=True,
                    visible_in_listings=True,
                    is_available_for_purchase=True,
                ),
            ],
        )

        result = asyncio.run(resolver.apply_to_entity(
            entity, [ChannelListingInput(channel="default-channel")]
        ))

        assert result is entity
        assert repository.writes == []

    def test_equivalent_timestamps_match(self, channel_id):
        current = [
            ChannelListing(
                channel_id=channel_id,
                is_published=True,
                visible_in_listings=True,
                is_available_for_purchase=True,
                published_at="2024-06-01T00:00:00+00:00",
                available_for_purchase_at="2024-06-02T08:30:00+00:00",
            ),
        ]
        desired = {
            "channelId": channel_id,
            "isPublished": True,
            "visibleInListings": True,
            "isAvailableForPurchase": True,
            "publishedAt": "2024-06-01",
            "availableForPurchaseAt": "2024-06-02T08:30:00Z",
        }

        assert entity_listings_match(current, [desired])
        assert not entity_listings_match(current, [{**desired, "publishedAt": "2024-06-03"}])

    def test_variant_price_change(self, repository, resolver, channel_id):
        parent = repository.add_entity("Shoe", "shoe")
        variant = repository.add_variant(
            parent.id,
            "SHOE-1",
            channel_listings=[VariantChannelListing(channel_id=channel_id, price=10.0)],
        )

        asyncio.run(resolver.apply_to_variant(
            variant, [VariantChannelListingInput(channel="default-channel", price=10)]
        ))
        assert repository.writes == []

        asyncio.run(resolver.apply_to_variant(
            variant, [VariantChannelListingInput(channel="default-channel", price=12)]
        ))
        assert repository.write_names() == ["update_variant_channel_listings"]

    def test_failure_is_wrapped(self, repository, resolver):
        repository.broken["update_entity_channel_listings"] = RuntimeError("denied")
        entity = repository.add_entity("Shoe", "shoe")

        with pytest.raises(ChannelListingError):
            asyncio.run(resolver.apply_to_entity(
                entity, [ChannelListingInput(channel="default-channel")]
            ))

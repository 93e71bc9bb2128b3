"""
kumo.models — Domain models for the reconciliation engine.

Desired state (EntityInput and friends) is parsed from catalog data and
never mutated. Remote state (Entity, Variant, MediaItem, ...) is built by
the repository from service responses.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from kumo.errors import ValidationError


class InputType(str, Enum):
    PLAIN_TEXT = "PLAIN_TEXT"
    NUMERIC = "NUMERIC"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    DATE_TIME = "DATE_TIME"
    RICH_TEXT = "RICH_TEXT"
    FILE = "FILE"
    DROPDOWN = "DROPDOWN"
    MULTISELECT = "MULTISELECT"
    SWATCH = "SWATCH"
    REFERENCE = "REFERENCE"


class ReferenceEntityType(str, Enum):
    PRODUCT = "PRODUCT"
    PRODUCT_VARIANT = "PRODUCT_VARIANT"
    PAGE = "PAGE"


class ReferenceKind(str, Enum):
    TYPE = "type"
    CATEGORY = "category"
    CHANNEL = "channel"
    ATTRIBUTE = "attribute"


class Action(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


AttributeValue = str | int | float | bool | list | tuple


# Desired state


def _timestamp(value: Any) -> str | None:
    """YAML loads unquoted timestamps as date objects; the API wants ISO text."""
    if isinstance(value, date):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class ChannelListingInput:
    channel: str
    is_published: bool | None = None
    published_at: str | None = None
    visible_in_listings: bool | None = None
    is_available_for_purchase: bool | None = None
    available_for_purchase_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChannelListingInput":
        return cls(
            channel=data.get("channel") or data.get("channelSlug", ""),
            is_published=data.get("isPublished"),
            published_at=_timestamp(data.get("publishedAt")),
            visible_in_listings=data.get("visibleInListings"),
            is_available_for_purchase=data.get("isAvailableForPurchase"),
            available_for_purchase_at=_timestamp(data.get("availableForPurchaseAt")),
        )


@dataclass(frozen=True)
class VariantChannelListingInput:
    channel: str
    price: float | None = None
    cost_price: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VariantChannelListingInput":
        return cls(
            channel=data.get("channel") or data.get("channelSlug", ""),
            price=data.get("price"),
            cost_price=data.get("costPrice"),
        )


@dataclass(frozen=True)
class MediaInput:
    url: str
    alt: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> "MediaInput":
        if isinstance(data, str):
            return cls(url=data)
        return cls(url=data.get("url") or "", alt=data.get("alt"))


def _parse_attributes(raw: Any) -> dict[str, AttributeValue]:
    """Accept either a name→value mapping or a list of {name, value}."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    values = {}
    for item in raw:
        if not isinstance(item, dict) or not item.get("name"):
            raise ValidationError(
                message="Attribute is missing a name",
                stage="parse",
                payload={"attribute": item},
            )
        values[item["name"]] = item.get("value", "")
    return values


@dataclass(frozen=True)
class VariantInput:
    sku: str
    name: str = ""
    weight: float | None = None
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    channel_listings: tuple[VariantChannelListingInput, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VariantInput":
        if not data.get("sku"):
            raise ValidationError(
                message="Variant is missing a SKU",
                stage="parse",
                payload={"variant": data},
            )
        return cls(
            sku=str(data["sku"]),
            name=data.get("name") or str(data["sku"]),
            weight=data.get("weight"),
            attributes=_parse_attributes(data.get("attributes")),
            channel_listings=tuple(
                VariantChannelListingInput.from_dict(item)
                for item in data.get("channelListings") or []
            ),
        )


@dataclass(frozen=True)
class EntityInput:
    name: str
    slug: str
    type_name: str = ""
    category: str | None = None
    description: str | None = None
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    channel_listings: tuple[ChannelListingInput, ...] = ()
    media: tuple[MediaInput, ...] | None = None
    variants: tuple[VariantInput, ...] = ()

    @property
    def label(self) -> str:
        return self.slug or self.name

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EntityInput":
        """Parse a catalog entry from a dictionary."""
        name = data.get("name", "")
        if not name:
            raise ValidationError(
                message="Entity is missing a name",
                stage="parse",
                payload={"entity": data},
            )

        media_data = data.get("media")
        media = None
        if media_data is not None:
            media = tuple(MediaInput.from_dict(item) for item in media_data)

        return cls(
            name=name,
            slug=data.get("slug") or _slugify(name),
            type_name=data.get("productType") or data.get("type", ""),
            category=data.get("category"),
            description=data.get("description"),
            attributes=_parse_attributes(data.get("attributes")),
            channel_listings=tuple(
                ChannelListingInput.from_dict(item)
                for item in data.get("channelListings") or []
            ),
            media=media,
            variants=tuple(
                VariantInput.from_dict(item) for item in data.get("variants") or []
            ),
        )


def _slugify(text: str) -> str:
    """Convert text to URL-safe slug."""
    import re
    import unicodedata

    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^\w\s-]", "", text.lower())
    text = re.sub(r"[-\s]+", "-", text).strip("-")
    return text


# Remote state


@dataclass(frozen=True)
class AttributeChoice:
    id: str
    name: str
    value: str | None = None


@dataclass(frozen=True)
class AttributeDefinition:
    id: str
    name: str
    input_type: str | None = None
    entity_type: str | None = None
    choices: tuple[AttributeChoice, ...] = ()


@dataclass
class ChannelListing:
    channel_id: str
    is_published: bool = False
    visible_in_listings: bool = False
    is_available_for_purchase: bool = False
    published_at: str | None = None
    available_for_purchase_at: str | None = None


@dataclass
class VariantChannelListing:
    channel_id: str
    price: float | None = None
    cost_price: float | None = None


@dataclass
class Entity:
    id: str
    name: str
    slug: str
    type_id: str | None = None
    category_id: str | None = None
    channel_listings: list[ChannelListing] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class Variant:
    id: str
    sku: str
    name: str = ""
    weight: float | None = None
    channel_listings: list[VariantChannelListing] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class MediaItem:
    id: str
    url: str
    alt: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def source_url(self, key: str) -> str | None:
        """Authored URL recorded at creation time, if any."""
        return self.metadata.get(key) or None


@dataclass
class BulkItemResult:
    entity: Entity | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class BulkResult:
    count: int = 0
    results: list[BulkItemResult] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)


# Outcomes


@dataclass
class BootstrapResult:
    entity: Entity
    variants: list[Variant] = field(default_factory=list)
    action: Action = Action.UPDATED


@dataclass
class BatchFailure:
    entity_label: str
    error: Exception


@dataclass
class BatchSummary:
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
        }

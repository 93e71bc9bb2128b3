"""
kumo.attributes — Typed attribute value resolution.

Maps loosely typed catalog values onto the remote service's attribute value
payloads. The payload shape is chosen by the attribute's declared input
type; each assignment carries exactly one value property.

Resolution never fails the owning entity: an attribute that cannot be
resolved is logged and omitted.
"""

import hashlib
import json
from typing import Any, Awaitable, Callable

from kumo.cache import ReferenceCache
from kumo.logger import get_logger
from kumo.models import (
    AttributeDefinition,
    AttributeValue,
    InputType,
    ReferenceEntityType,
)
from kumo.repository import Repository

TRUTHY = frozenset({"true", "1", "yes", "y"})
FALSY = frozenset({"false", "0", "no", "n"})

RICH_TEXT_VERSION = "2.24.3"

PageResolver = Callable[[str], Awaitable[dict[str, str] | None]]


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def normalize_to_list(value: AttributeValue | None) -> list[str]:
    """Wrap scalars in a one-element list; stringify every element."""
    if isinstance(value, (list, tuple)):
        return [_to_text(v) for v in value]
    return [_to_text(value)]


def rich_text(value: str) -> str:
    """
    Return a structured rich-text JSON string for ``value``.

    Values that already look like a JSON object pass through verbatim.
    Plain text becomes a single paragraph block. The block id is derived
    from the text so the envelope is stable across runs.
    """
    trimmed = value.strip()
    if trimmed.startswith("{") and trimmed.endswith("}"):
        return value

    block_id = hashlib.sha1(value.encode("utf-8")).hexdigest()[:10]
    return json.dumps(
        {
            "blocks": [
                {
                    "id": block_id,
                    "type": "paragraph",
                    "data": {"text": value},
                }
            ],
            "version": RICH_TEXT_VERSION,
        },
        ensure_ascii=False,
    )


def parse_boolean(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in TRUTHY:
        return True
    if lowered in FALSY:
        return False
    return len(lowered) > 0


def _find_choice(attribute: AttributeDefinition, value: str) -> dict[str, str] | None:
    for choice in attribute.choices:
        if choice.name == value or choice.value == value:
            return {"id": choice.id}
    return None


class AttributeValueResolver:
    """Resolves named catalog values into attribute value payloads."""

    def __init__(
        self,
        repository: Repository,
        cache: ReferenceCache,
        page_resolver: PageResolver | None = None,
    ):
        self._repository = repository
        self._cache = cache
        self._page_resolver = page_resolver
        self._logger = get_logger()

    async def resolve_all(
        self, attributes: dict[str, AttributeValue], entity: str | None = None
    ) -> list[dict[str, Any]]:
        """Resolve every attribute, dropping the ones that cannot be resolved."""
        resolved = []
        for name, value in attributes.items():
            payload = await self.resolve(name, value, entity=entity)
            if payload is not None:
                resolved.append(payload)

        self._logger.debug(
            f"Resolved {len(resolved)}/{len(attributes)} attributes",
            entity=entity,
            stage="attributes",
        )
        return resolved

    async def resolve(
        self, name: str, value: AttributeValue, entity: str | None = None
    ) -> dict[str, Any] | None:
        try:
            attribute = await self._cache.get_attribute(name)
            if attribute is None:
                self._logger.warn(
                    f"Attribute '{name}' not found, skipping",
                    entity=entity,
                    stage="attributes",
                )
                return None

            if not attribute.input_type:
                self._logger.warn(
                    f"Attribute '{name}' has no input type, skipping",
                    entity=entity,
                    stage="attributes",
                )
                return None

            try:
                input_type = InputType(attribute.input_type)
            except ValueError:
                self._logger.warn(
                    f"Unsupported attribute input type: {attribute.input_type}",
                    entity=entity,
                    stage="attributes",
                    attribute=name,
                )
                return None

            return await self._dispatch(input_type, attribute, normalize_to_list(value), entity)

        except Exception as e:
            self._logger.error(
                f"Failed to resolve attribute '{name}'",
                entity=entity,
                stage="attributes",
                attribute=name,
                value=value,
                error=str(e),
            )
            return None

    async def _dispatch(
        self,
        input_type: InputType,
        attribute: AttributeDefinition,
        values: list[str],
        entity: str | None,
    ) -> dict[str, Any] | None:
        first = values[0] if values else ""
        attr_id = attribute.id

        match input_type:
            case InputType.PLAIN_TEXT:
                return {"id": attr_id, "plainText": first}
            case InputType.NUMERIC:
                return {"id": attr_id, "numeric": first}
            case InputType.BOOLEAN:
                return {"id": attr_id, "boolean": parse_boolean(first)}
            case InputType.DATE:
                return {"id": attr_id, "date": first}
            case InputType.DATE_TIME:
                return {"id": attr_id, "dateTime": first}
            case InputType.RICH_TEXT:
                return {"id": attr_id, "richText": rich_text(first)}
            case InputType.FILE:
                return {"id": attr_id, "file": first}
            case InputType.DROPDOWN:
                return {"id": attr_id, "dropdown": self._choices(attribute, values, entity)[0]}
            case InputType.SWATCH:
                return {"id": attr_id, "swatch": self._choices(attribute, values, entity)[0]}
            case InputType.MULTISELECT:
                return {"id": attr_id, "multiselect": self._choices(attribute, values, entity)}
            case InputType.REFERENCE:
                references = await self._references(attribute, values, entity)
                if not references:
                    return None
                return {"id": attr_id, "references": references}

    def _choices(
        self, attribute: AttributeDefinition, values: list[str], entity: str | None
    ) -> list[dict[str, str]]:
        resolved = []
        for value in values:
            choice = _find_choice(attribute, value)
            if choice is None:
                self._logger.warn(
                    f"Choice '{value}' not found for attribute '{attribute.name}', "
                    "falling back to value-based resolution",
                    entity=entity,
                    stage="attributes",
                )
                choice = {"value": value}
            resolved.append(choice)
        return resolved

    async def _references(
        self, attribute: AttributeDefinition, values: list[str], entity: str | None
    ) -> list[str]:
        resolved = []
        for value in values:
            try:
                ref_id = await self._resolve_reference(attribute, value)
            except Exception as e:
                self._logger.warn(
                    f"Failed to resolve reference '{value}' for attribute '{attribute.name}': {e}",
                    entity=entity,
                    stage="attributes",
                )
                ref_id = None

            if ref_id:
                resolved.append(ref_id)
            else:
                self._logger.warn(
                    f"Referenced entity '{value}' not found for attribute '{attribute.name}'",
                    entity=entity,
                    stage="attributes",
                )
        return resolved

    async def _resolve_reference(self, attribute: AttributeDefinition, value: str) -> str | None:
        entity_type = attribute.entity_type

        if entity_type == ReferenceEntityType.PRODUCT_VARIANT.value:
            variant = await self._repository.get_variant_by_sku(value)
            return variant.id if variant else None

        if entity_type == ReferenceEntityType.PAGE.value:
            if self._page_resolver is None:
                return None
            page = await self._page_resolver(value)
            return page["id"] if page else None

        # PRODUCT, or no declared type
        found = await self._repository.get_entity_by_name(value)
        return found.id if found else None

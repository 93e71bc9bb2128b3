"""
kumo.variants — SKU-keyed variant upsert.

Variants are processed one at a time in input order so batch output is
reported deterministically. A failing variant aborts the owning entity.
"""

from typing import Any, Iterable

from kumo.attributes import AttributeValueResolver
from kumo.errors import VariantOperationError, wrap_operation
from kumo.hasher import is_unchanged, with_payload_hash
from kumo.logger import get_logger
from kumo.models import Entity, Variant, VariantInput
from kumo.repository import Repository


def matches_remote(existing: Variant, content: dict[str, Any]) -> bool:
    """True when the variant's reported name and weight already hold ``content``."""
    if existing.name != content["name"]:
        return False
    if "weight" not in content:
        return True
    return existing.weight is not None and float(existing.weight) == float(content["weight"])


class VariantReconciler:
    """Creates or updates an entity's variants by SKU."""

    def __init__(self, repository: Repository, attributes: AttributeValueResolver):
        self._repository = repository
        self._attributes = attributes
        self._logger = get_logger()

    async def build_content(self, variant_input: VariantInput) -> dict[str, Any]:
        """Mutable variant fields; SKU and parent are fixed once created."""
        payload: dict[str, Any] = {
            "name": variant_input.name,
            "attributes": await self._attributes.resolve_all(
                variant_input.attributes, entity=variant_input.sku
            ),
        }
        if variant_input.weight is not None:
            payload["weight"] = variant_input.weight
        return payload

    async def build_create_input(
        self, variant_input: VariantInput, parent_id: str | None = None
    ) -> dict[str, Any]:
        extra: dict[str, Any] = {"sku": variant_input.sku}
        if parent_id is not None:
            extra["product"] = parent_id
        return with_payload_hash(await self.build_content(variant_input), extra)

    async def reconcile(
        self, entity: Entity, variant_inputs: Iterable[VariantInput]
    ) -> list[Variant]:
        """
        Upsert each variant in order.

        Raises:
            VariantOperationError: On the first variant that cannot be
                looked up, created or updated.
        """
        variants = []
        for variant_input in variant_inputs:
            try:
                variants.append(await self._reconcile_one(entity, variant_input))
            except Exception as e:
                self._logger.error(
                    f"Variant reconciliation failed: {e}",
                    entity=variant_input.sku,
                    stage="variants",
                    entity_id=entity.id,
                )
                raise
        return variants

    async def _reconcile_one(self, entity: Entity, variant_input: VariantInput) -> Variant:
        sku = variant_input.sku

        existing = await wrap_operation(
            "look up variant",
            "variant",
            sku,
            lambda: self._repository.get_variant_by_sku(sku),
            VariantOperationError,
        )

        if existing is not None:
            content = await self.build_content(variant_input)
            if is_unchanged(existing.metadata, content) and matches_remote(existing, content):
                self._logger.debug("Variant unchanged", entity=sku, stage="variants")
                return existing

            self._logger.info(f"Updating variant {sku}", entity=sku, stage="variants")
            return await wrap_operation(
                "update variant",
                "variant",
                sku,
                lambda: self._repository.update_variant(existing.id, with_payload_hash(content)),
                VariantOperationError,
            )

        payload = await self.build_create_input(variant_input, parent_id=entity.id)
        self._logger.info(f"Creating variant {sku}", entity=sku, stage="variants")
        return await wrap_operation(
            "create variant",
            "variant",
            sku,
            lambda: self._repository.create_variant(payload),
            VariantOperationError,
        )

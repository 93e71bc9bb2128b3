"""Tests for kumo.variants."""

import asyncio
from dataclasses import replace

import pytest

from kumo.attributes import AttributeValueResolver
from kumo.errors import VariantOperationError
from kumo.hasher import PAYLOAD_HASH_KEY, is_unchanged
from kumo.models import VariantInput
from kumo.variants import VariantReconciler


@pytest.fixture
def reconciler(repository, cache) -> VariantReconciler:
    return VariantReconciler(repository, AttributeValueResolver(repository, cache))


@pytest.fixture
def parent(repository):
    return repository.add_entity("Trail Runner", "trail-runner")


class TestBuildCreateInput:
    def test_payload(self, repository, reconciler):
        payload = asyncio.run(reconciler.build_create_input(
            VariantInput(sku="TR-42", name="Size 42", weight=0.8, attributes={"Size": "Large"}),
            parent_id="entity-1",
        ))

        assert payload["sku"] == "TR-42"
        assert payload["product"] == "entity-1"
        assert payload["name"] == "Size 42"
        assert payload["weight"] == 0.8
        assert payload["attributes"][0]["dropdown"] == {
            "id": repository.attributes["size"].choices[1].id,
        }
        assert payload["metadata"][0]["key"] == PAYLOAD_HASH_KEY

    def test_nested_payload_has_no_parent(self, reconciler):
        payload = asyncio.run(reconciler.build_create_input(VariantInput(sku="TR-42")))
        assert "product" not in payload


class TestReconcile:
    def test_one_existing_one_new(self, repository, reconciler, parent):
        existing = repository.add_variant(parent.id, "TR-41", name="Old name")

        variants = asyncio.run(reconciler.reconcile(parent, [
            VariantInput(sku="TR-41", name="Size 41"),
            VariantInput(sku="TR-42", name="Size 42"),
        ]))

        assert repository.write_names() == ["update_variant", "create_variant"]
        assert [v.sku for v in variants] == ["TR-41", "TR-42"]
        assert variants[0].id == existing.id
        assert variants[0].name == "Size 41"
        assert repository.variant_parents[variants[1].id] == parent.id

    def test_second_run_is_noop(self, repository, reconciler, parent):
        inputs = [VariantInput(sku="TR-42", name="Size 42", weight=0.8)]

        asyncio.run(reconciler.reconcile(parent, inputs))
        repository.writes.clear()
        asyncio.run(reconciler.reconcile(parent, inputs))

        assert repository.writes == []

    def test_remote_drift_is_reverted(self, repository, reconciler, parent):
        inputs = [VariantInput(sku="TR-42", name="Size 42", weight=0.8)]
        created = asyncio.run(reconciler.reconcile(parent, inputs))[0]
        repository.variants[created.id] = replace(
            repository.variants[created.id], name="Renamed", weight=2.0
        )
        repository.writes.clear()

        variant = asyncio.run(reconciler.reconcile(parent, inputs))[0]

        assert repository.write_names() == ["update_variant"]
        assert variant.name == "Size 42"
        assert variant.weight == 0.8

    def test_update_after_create_carries_same_hash(self, repository, reconciler, parent):
        inputs = [VariantInput(sku="TR-42", name="Size 42")]
        created = asyncio.run(reconciler.reconcile(parent, inputs))[0]

        content = asyncio.run(reconciler.build_content(inputs[0]))
        assert is_unchanged(created.metadata, content)

    def test_failure_aborts_remaining(self, repository, reconciler, parent):
        repository.broken["create_variant"] = RuntimeError("duplicate sku")

        with pytest.raises(VariantOperationError) as exc_info:
            asyncio.run(reconciler.reconcile(parent, [
                VariantInput(sku="TR-41"),
                VariantInput(sku="TR-42"),
            ]))

        assert "TR-41" in str(exc_info.value)
        assert repository.lookup_count("get_variant_by_sku") == 1

    def test_no_variants(self, repository, reconciler, parent):
        assert asyncio.run(reconciler.reconcile(parent, [])) == []
        assert repository.writes == []

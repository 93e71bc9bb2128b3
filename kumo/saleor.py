"""
kumo.saleor — GraphQL repository for a Saleor-compatible catalog API.

Handles all remote interactions: products, variants, references, channel
listings, media and bulk creation. HTTP runs on worker threads through
``asyncio.to_thread``; rate limiting and transport retries happen inside
the thread. Errors are surfaced verbatim, without business context.
"""

import asyncio
from typing import Any

import requests

from kumo.config import ErrorPolicy, KumoConfig
from kumo.errors import AuthError, GraphQLError, TransportError
from kumo.logger import get_logger
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
from kumo.rate_limiter import TokenBucketRateLimiter
from kumo.retry import RetryHandler

PRODUCT_FIELDS = """
fragment ProductFields on Product {
  id
  name
  slug
  productType { id }
  category { id }
  metadata { key value }
  channelListings {
    channel { id slug }
    isPublished
    publishedAt
    visibleInListings
    isAvailableForPurchase
    availableForPurchaseAt
  }
}
"""

VARIANT_FIELDS = """
fragment VariantFields on ProductVariant {
  id
  name
  sku
  weight { value }
  metadata { key value }
  channelListings {
    channel { id }
    price { amount }
    costPrice { amount }
  }
}
"""

MUTATION_ERRORS = "errors { field message code }"

GET_PRODUCT_BY_SLUG = PRODUCT_FIELDS + """
query GetProductBySlug($slug: String!) {
  product(slug: $slug) { ...ProductFields }
}
"""

GET_PRODUCTS_BY_SLUGS = PRODUCT_FIELDS + """
query GetProductsBySlugs($slugs: [String!], $first: Int!) {
  products(first: $first, filter: { slugs: $slugs }) {
    edges { node { ...ProductFields } }
  }
}
"""

GET_PRODUCT_BY_NAME = PRODUCT_FIELDS + """
query GetProductByName($name: String!) {
  products(first: 20, filter: { search: $name }) {
    edges { node { ...ProductFields } }
  }
}
"""

GET_VARIANT_BY_SKU = VARIANT_FIELDS + """
query GetVariantBySku($sku: String!) {
  productVariant(sku: $sku) { ...VariantFields }
}
"""

GET_PRODUCT_TYPE_BY_NAME = """
query GetProductTypeByName($name: String!) {
  productTypes(first: 20, filter: { search: $name }) {
    edges { node { id name } }
  }
}
"""

GET_CATEGORY_BY_NAME = """
query GetCategoryByName($name: String!) {
  categories(first: 20, filter: { search: $name }) {
    edges { node { id name slug } }
  }
}
"""

GET_ATTRIBUTE_BY_NAME = """
query GetAttributeByName($name: String!) {
  attributes(first: 20, filter: { search: $name }) {
    edges {
      node {
        id
        name
        slug
        inputType
        entityType
        choices(first: 100) { edges { node { id name value } } }
      }
    }
  }
}
"""

GET_CHANNEL_BY_SLUG = """
query GetChannelBySlug($slug: String!) {
  channel(slug: $slug) { id slug name }
}
"""

GET_PAGE_BY_SLUG = """
query GetPageBySlug($slug: String!) {
  page(slug: $slug) { id slug }
}
"""

LIST_MEDIA = """
query ListProductMedia($id: ID!) {
  product(id: $id) {
    media { id url alt metadata { key value } }
  }
}
"""

CREATE_PRODUCT = PRODUCT_FIELDS + f"""
mutation CreateProduct($input: ProductCreateInput!) {{
  productCreate(input: $input) {{
    product {{ ...ProductFields }}
    {MUTATION_ERRORS}
  }}
}}
"""

UPDATE_PRODUCT = PRODUCT_FIELDS + f"""
mutation UpdateProduct($id: ID!, $input: ProductInput!) {{
  productUpdate(id: $id, input: $input) {{
    product {{ ...ProductFields }}
    {MUTATION_ERRORS}
  }}
}}
"""

CREATE_VARIANT = VARIANT_FIELDS + f"""
mutation CreateProductVariant($input: ProductVariantCreateInput!) {{
  productVariantCreate(input: $input) {{
    productVariant {{ ...VariantFields }}
    {MUTATION_ERRORS}
  }}
}}
"""

UPDATE_VARIANT = VARIANT_FIELDS + f"""
mutation UpdateProductVariant($id: ID!, $input: ProductVariantInput!) {{
  productVariantUpdate(id: $id, input: $input) {{
    productVariant {{ ...VariantFields }}
    {MUTATION_ERRORS}
  }}
}}
"""

UPDATE_PRODUCT_CHANNEL_LISTINGS = PRODUCT_FIELDS + f"""
mutation UpdateProductChannelListings($id: ID!, $input: ProductChannelListingUpdateInput!) {{
  productChannelListingUpdate(id: $id, input: $input) {{
    product {{ ...ProductFields }}
    {MUTATION_ERRORS}
  }}
}}
"""

UPDATE_VARIANT_CHANNEL_LISTINGS = VARIANT_FIELDS + f"""
mutation UpdateVariantChannelListings($id: ID!, $input: [ProductVariantChannelListingAddInput!]!) {{
  productVariantChannelListingUpdate(id: $id, input: $input) {{
    variant {{ ...VariantFields }}
    {MUTATION_ERRORS}
  }}
}}
"""

CREATE_MEDIA = f"""
mutation CreateProductMedia($input: ProductMediaCreateInput!) {{
  productMediaCreate(input: $input) {{
    media {{ id url alt metadata {{ key value }} }}
    {MUTATION_ERRORS}
  }}
}}
"""

DELETE_MEDIA = f"""
mutation DeleteProductMedia($id: ID!) {{
  productMediaDelete(id: $id) {{
    {MUTATION_ERRORS}
  }}
}}
"""

UPDATE_METADATA = f"""
mutation UpdateMetadata($id: ID!, $input: [MetadataInput!]!) {{
  updateMetadata(id: $id, input: $input) {{
    {MUTATION_ERRORS}
  }}
}}
"""

BULK_CREATE_PRODUCTS = PRODUCT_FIELDS + """
mutation BulkCreateProducts($products: [ProductBulkCreateInput!]!, $errorPolicy: ErrorPolicyEnum) {
  productBulkCreate(products: $products, errorPolicy: $errorPolicy) {
    count
    results {
      product { ...ProductFields }
      errors { path message code }
    }
    errors { path message code }
  }
}
"""

BULK_CREATE_VARIANTS = VARIANT_FIELDS + """
mutation BulkCreateVariants(
  $product: ID!, $variants: [ProductVariantBulkCreateInput!]!, $errorPolicy: ErrorPolicyEnum
) {
  productVariantBulkCreate(product: $product, variants: $variants, errorPolicy: $errorPolicy) {
    count
    results {
      productVariant { ...VariantFields }
      errors { path message code }
    }
    errors { path message code }
  }
}
"""

SLUG_PAGE_SIZE = 100


def _metadata(items: list[dict[str, Any]] | None) -> dict[str, str]:
    return {item["key"]: item["value"] for item in items or []}


def _amount(money: dict[str, Any] | None) -> float | None:
    return money.get("amount") if money else None


def entity_from_node(node: dict[str, Any]) -> Entity:
    return Entity(
        id=node["id"],
        name=node.get("name", ""),
        slug=node.get("slug", ""),
        type_id=(node.get("productType") or {}).get("id"),
        category_id=(node.get("category") or {}).get("id"),
        channel_listings=[
            ChannelListing(
                channel_id=listing["channel"]["id"],
                is_published=bool(listing.get("isPublished")),
                visible_in_listings=bool(listing.get("visibleInListings")),
                is_available_for_purchase=bool(listing.get("isAvailableForPurchase")),
                published_at=listing.get("publishedAt"),
                available_for_purchase_at=listing.get("availableForPurchaseAt"),
            )
            for listing in node.get("channelListings") or []
        ],
        metadata=_metadata(node.get("metadata")),
    )


def variant_from_node(node: dict[str, Any]) -> Variant:
    return Variant(
        id=node["id"],
        sku=node.get("sku") or "",
        name=node.get("name") or "",
        weight=(node.get("weight") or {}).get("value"),
        channel_listings=[
            VariantChannelListing(
                channel_id=listing["channel"]["id"],
                price=_amount(listing.get("price")),
                cost_price=_amount(listing.get("costPrice")),
            )
            for listing in node.get("channelListings") or []
        ],
        metadata=_metadata(node.get("metadata")),
    )


def media_from_node(node: dict[str, Any]) -> MediaItem:
    return MediaItem(
        id=node["id"],
        url=node.get("url", ""),
        alt=node.get("alt") or None,
        metadata=_metadata(node.get("metadata")),
    )


def attribute_from_node(node: dict[str, Any]) -> AttributeDefinition:
    return AttributeDefinition(
        id=node["id"],
        name=node.get("name", ""),
        input_type=node.get("inputType"),
        entity_type=node.get("entityType"),
        choices=tuple(
            AttributeChoice(
                id=edge["node"]["id"],
                name=edge["node"].get("name", ""),
                value=edge["node"].get("value"),
            )
            for edge in ((node.get("choices") or {}).get("edges") or [])
        ),
    )


def _nodes(connection: dict[str, Any] | None) -> list[dict[str, Any]]:
    return [edge["node"] for edge in (connection or {}).get("edges") or []]


def _retry_after(response: requests.Response) -> float | None:
    """Seconds from a numeric Retry-After header; HTTP-date values are ignored."""
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value else None
    except ValueError:
        return None


def _first_named(nodes: list[dict[str, Any]], name: str, *fields: str) -> dict[str, Any] | None:
    """Exact (case-insensitive) match on any of ``fields``; search is fuzzy."""
    wanted = name.lower()
    for node in nodes:
        if any((node.get(f) or "").lower() == wanted for f in fields):
            return node
    return None


class GraphQLClient:
    """Rate-limited, retrying GraphQL client over a requests session."""

    def __init__(self, config: KumoConfig, session: requests.Session | None = None):
        self._url = config.api.url
        self._timeout = config.api.timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {config.api.token}",
            "Content-Type": "application/json",
        })
        self._retry = RetryHandler(config.retry)
        self._rate_limiter = TokenBucketRateLimiter.from_config(config.rate_limit)
        self._logger = get_logger()

    def _request_once(
        self, query: str, variables: dict[str, Any], operation: str
    ) -> dict[str, Any]:
        """Make a single HTTP request with error handling (no retry)."""
        self._rate_limiter.acquire()

        try:
            response = self._session.post(
                self._url,
                json={"query": query, "variables": variables},
                timeout=self._timeout,
            )
        except requests.exceptions.Timeout:
            raise TransportError(
                message=f"Request timeout: {self._url}",
                stage=operation,
                payload={"url": self._url},
                retryable=True,
            )
        except requests.exceptions.ConnectionError:
            raise TransportError(
                message=f"Connection error: {self._url}",
                stage=operation,
                payload={"url": self._url},
                retryable=True,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(
                message=f"Request error: {e}",
                stage=operation,
                payload={"url": self._url},
                retryable=False,
            )

        if 500 <= response.status_code < 600:
            raise TransportError(
                message=f"Server error: {response.status_code}",
                stage=operation,
                http_status=response.status_code,
                retryable=True,
                retry_after=_retry_after(response),
            )

        if response.status_code == 429:
            raise TransportError(
                message="Rate limited (429)",
                stage=operation,
                http_status=429,
                retryable=True,
                retry_after=_retry_after(response),
            )

        if response.status_code in (401, 403):
            raise AuthError(
                message="Authentication failed" if response.status_code == 401 else "Authorization denied",
                stage=operation,
                http_status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            raise TransportError(
                message=f"Invalid JSON response: {response.status_code}",
                stage=operation,
                http_status=response.status_code,
                payload={"response": response.text[:500]},
                retryable=False,
            )

        if body.get("errors"):
            raise GraphQLError.from_errors(f"{operation} failed", body["errors"])

        return body.get("data") or {}

    def execute_sync(
        self, query: str, variables: dict[str, Any] | None = None, operation: str = "request"
    ) -> dict[str, Any]:
        return self._retry.execute(
            self._request_once, query, variables or {}, operation, stage=operation
        )

    async def execute(
        self, query: str, variables: dict[str, Any] | None = None, operation: str = "request"
    ) -> dict[str, Any]:
        return await asyncio.to_thread(self.execute_sync, query, variables, operation)

    def close(self) -> None:
        """Close the session."""
        self._session.close()


def _mutation_payload(data: dict[str, Any], field: str, operation: str) -> dict[str, Any]:
    payload = data.get(field) or {}
    errors = payload.get("errors") or []
    if errors:
        raise GraphQLError.from_errors(f"{operation} failed", errors)
    return payload


def _bulk_result(payload: dict[str, Any], node_key: str, translate) -> BulkResult:
    return BulkResult(
        count=payload.get("count") or 0,
        results=[
            BulkItemResult(
                entity=translate(item[node_key]) if item.get(node_key) else None,
                errors=list(item.get("errors") or []),
            )
            for item in payload.get("results") or []
        ],
        errors=list(payload.get("errors") or []),
    )


class SaleorRepository:
    """Repository implementation over the GraphQL API."""

    def __init__(self, client: GraphQLClient):
        self._client = client
        self._logger = get_logger()

    # Entities

    async def create_entity(self, input: dict[str, Any]) -> Entity:
        data = await self._client.execute(CREATE_PRODUCT, {"input": input}, "productCreate")
        payload = _mutation_payload(data, "productCreate", "productCreate")
        return entity_from_node(payload["product"])

    async def update_entity(self, id: str, input: dict[str, Any]) -> Entity:
        data = await self._client.execute(UPDATE_PRODUCT, {"id": id, "input": input}, "productUpdate")
        payload = _mutation_payload(data, "productUpdate", "productUpdate")
        return entity_from_node(payload["product"])

    async def get_entity_by_slug(self, slug: str) -> Entity | None:
        data = await self._client.execute(GET_PRODUCT_BY_SLUG, {"slug": slug}, "product")
        node = data.get("product")
        return entity_from_node(node) if node else None

    async def get_entities_by_slugs(self, slugs: list[str]) -> list[Entity]:
        entities = []
        for start in range(0, len(slugs), SLUG_PAGE_SIZE):
            page = slugs[start:start + SLUG_PAGE_SIZE]
            data = await self._client.execute(
                GET_PRODUCTS_BY_SLUGS, {"slugs": page, "first": len(page)}, "products"
            )
            entities.extend(entity_from_node(n) for n in _nodes(data.get("products")))
        return entities

    async def get_entity_by_name(self, name: str) -> Entity | None:
        data = await self._client.execute(GET_PRODUCT_BY_NAME, {"name": name}, "products")
        node = _first_named(_nodes(data.get("products")), name, "name")
        return entity_from_node(node) if node else None

    # Variants

    async def get_variant_by_sku(self, sku: str) -> Variant | None:
        data = await self._client.execute(GET_VARIANT_BY_SKU, {"sku": sku}, "productVariant")
        node = data.get("productVariant")
        return variant_from_node(node) if node else None

    async def create_variant(self, input: dict[str, Any]) -> Variant:
        data = await self._client.execute(CREATE_VARIANT, {"input": input}, "productVariantCreate")
        payload = _mutation_payload(data, "productVariantCreate", "productVariantCreate")
        return variant_from_node(payload["productVariant"])

    async def update_variant(self, id: str, input: dict[str, Any]) -> Variant:
        data = await self._client.execute(
            UPDATE_VARIANT, {"id": id, "input": input}, "productVariantUpdate"
        )
        payload = _mutation_payload(data, "productVariantUpdate", "productVariantUpdate")
        return variant_from_node(payload["productVariant"])

    # References

    async def get_type_by_name(self, name: str) -> dict[str, str] | None:
        data = await self._client.execute(GET_PRODUCT_TYPE_BY_NAME, {"name": name}, "productTypes")
        node = _first_named(_nodes(data.get("productTypes")), name, "name")
        return {"id": node["id"], "name": node["name"]} if node else None

    async def get_category_by_path(self, path: str) -> dict[str, str] | None:
        parts = [p.strip() for p in path.split("/") if p.strip()]
        if not parts:
            return None

        leaf = parts[-1]
        if len(parts) > 1:
            self._logger.warn(
                "Nested category path resolved by its last segment",
                entity=path,
                stage="category_lookup",
                resolving=leaf,
            )

        data = await self._client.execute(GET_CATEGORY_BY_NAME, {"name": leaf}, "categories")
        node = _first_named(_nodes(data.get("categories")), leaf, "name", "slug")
        return {"id": node["id"], "name": node["name"]} if node else None

    async def get_attribute_by_name(self, name: str) -> AttributeDefinition | None:
        data = await self._client.execute(GET_ATTRIBUTE_BY_NAME, {"name": name}, "attributes")
        node = _first_named(_nodes(data.get("attributes")), name, "name", "slug")
        return attribute_from_node(node) if node else None

    async def get_channel_by_slug(self, slug: str) -> dict[str, str] | None:
        data = await self._client.execute(GET_CHANNEL_BY_SLUG, {"slug": slug}, "channel")
        return data.get("channel") or None

    async def get_page_by_slug(self, slug: str) -> dict[str, str] | None:
        data = await self._client.execute(GET_PAGE_BY_SLUG, {"slug": slug}, "page")
        return data.get("page") or None

    # Channel listings

    async def update_entity_channel_listings(
        self, id: str, input: dict[str, Any]
    ) -> Entity | None:
        data = await self._client.execute(
            UPDATE_PRODUCT_CHANNEL_LISTINGS, {"id": id, "input": input}, "productChannelListingUpdate"
        )
        payload = _mutation_payload(data, "productChannelListingUpdate", "productChannelListingUpdate")
        node = payload.get("product")
        return entity_from_node(node) if node else None

    async def update_variant_channel_listings(
        self, id: str, input: list[dict[str, Any]]
    ) -> Variant | None:
        data = await self._client.execute(
            UPDATE_VARIANT_CHANNEL_LISTINGS,
            {"id": id, "input": input},
            "productVariantChannelListingUpdate",
        )
        payload = _mutation_payload(
            data, "productVariantChannelListingUpdate", "productVariantChannelListingUpdate"
        )
        node = payload.get("variant")
        return variant_from_node(node) if node else None

    # Media

    async def list_media(self, entity_id: str) -> list[MediaItem]:
        data = await self._client.execute(LIST_MEDIA, {"id": entity_id}, "productMedia")
        product = data.get("product") or {}
        return [media_from_node(n) for n in product.get("media") or []]

    async def create_media(self, input: dict[str, Any]) -> MediaItem:
        # Media create takes no metadata; it is written in a second call.
        media_input = {k: v for k, v in input.items() if k != "metadata"}
        data = await self._client.execute(CREATE_MEDIA, {"input": media_input}, "productMediaCreate")
        payload = _mutation_payload(data, "productMediaCreate", "productMediaCreate")
        media = media_from_node(payload["media"])

        metadata = input.get("metadata") or []
        if metadata:
            meta_data = await self._client.execute(
                UPDATE_METADATA, {"id": media.id, "input": metadata}, "updateMetadata"
            )
            _mutation_payload(meta_data, "updateMetadata", "updateMetadata")
            media.metadata.update({item["key"]: item["value"] for item in metadata})

        return media

    async def delete_media(self, id: str) -> None:
        data = await self._client.execute(DELETE_MEDIA, {"id": id}, "productMediaDelete")
        _mutation_payload(data, "productMediaDelete", "productMediaDelete")

    async def replace_all_media(
        self, entity_id: str, inputs: list[dict[str, Any]]
    ) -> list[MediaItem]:
        for item in await self.list_media(entity_id):
            await self.delete_media(item.id)

        created = []
        for media_input in inputs:
            created.append(await self.create_media({**media_input, "product": entity_id}))
        return created

    # Bulk

    async def bulk_create_entities(
        self, inputs: list[dict[str, Any]], error_policy: ErrorPolicy
    ) -> BulkResult:
        data = await self._client.execute(
            BULK_CREATE_PRODUCTS,
            {"products": inputs, "errorPolicy": error_policy.value},
            "productBulkCreate",
        )
        return _bulk_result(data.get("productBulkCreate") or {}, "product", entity_from_node)

    async def bulk_create_variants(
        self, parent_id: str, inputs: list[dict[str, Any]], error_policy: ErrorPolicy
    ) -> BulkResult:
        data = await self._client.execute(
            BULK_CREATE_VARIANTS,
            {"product": parent_id, "variants": inputs, "errorPolicy": error_policy.value},
            "productVariantBulkCreate",
        )
        return _bulk_result(data.get("productVariantBulkCreate") or {}, "productVariant", variant_from_node)

    def close(self) -> None:
        self._client.close()

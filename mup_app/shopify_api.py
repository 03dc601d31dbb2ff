from __future__ import annotations

from typing import Any

import httpx

from mup_app.config import settings
from mup_app.services.mup_config import METAFIELD_NAMESPACE, MUP_METAFIELD_KEYS

LEVY_PRODUCT_HANDLE = "mup-levy"
LEVY_PRODUCT_TITLE = "MUP Levy"
LEVY_PRODUCT_DESCRIPTION = (
    "<p>Minimum Unit Pricing levy charge for Scotland compliance. This product is automatically "
    "added to carts when alcohol products are priced below the legal minimum.</p>"
)

VARIANT_UNITS_KEY = "total_units"
VARIANT_ABV_KEY = "abv_percentage"
VARIANT_VOLUME_KEY = "volume_ml"


class ShopifyApiError(RuntimeError):
    def __init__(self, *, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


def _metafield_value(node: Any) -> str | None:
    if not isinstance(node, dict):
        return None
    value = node.get("value")
    return value if isinstance(value, str) else None


def _metafield_aliases() -> str:
    return "\n".join(
        f'{key}: metafield(namespace: "{METAFIELD_NAMESPACE}", key: "{key}") {{ value }}'
        for key in MUP_METAFIELD_KEYS
    )


_VARIANT_ALCOHOL_FIELDS = f"""
    totalUnits: metafield(namespace: "{METAFIELD_NAMESPACE}", key: "{VARIANT_UNITS_KEY}") {{ value }}
    abvPercentage: metafield(namespace: "{METAFIELD_NAMESPACE}", key: "{VARIANT_ABV_KEY}") {{ value }}
    volumeMl: metafield(namespace: "{METAFIELD_NAMESPACE}", key: "{VARIANT_VOLUME_KEY}") {{ value }}
"""


class ShopifyApiClient:
    def __init__(self) -> None:
        self._timeout = settings.SHOPIFY_REQUEST_TIMEOUT_SECONDS

    async def register_webhook(
        self,
        *,
        shop_domain: str,
        access_token: str,
        topic: str,
        callback_url: str,
    ) -> str:
        query = """
        mutation webhookSubscriptionCreate(
            $topic: WebhookSubscriptionTopic!
            $webhookSubscription: WebhookSubscriptionInput!
        ) {
            webhookSubscriptionCreate(topic: $topic, webhookSubscription: $webhookSubscription) {
                webhookSubscription {
                    id
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {
            "query": query,
            "variables": {
                "topic": topic,
                "webhookSubscription": {
                    "callbackUrl": callback_url,
                    "format": "JSON",
                },
            },
        }
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        create_data = response.get("webhookSubscriptionCreate") or {}
        user_errors = create_data.get("userErrors") or []
        if user_errors:
            if self._has_duplicate_webhook_address_error(user_errors):
                existing_id = await self._find_existing_http_webhook_id(
                    shop_domain=shop_domain,
                    access_token=access_token,
                    topic=topic,
                    callback_url=callback_url,
                )
                if existing_id:
                    return existing_id
            messages = "; ".join(str(error.get("message")) for error in user_errors)
            raise ShopifyApiError(message=f"Webhook registration failed for {topic}: {messages}")
        webhook = create_data.get("webhookSubscription") or {}
        webhook_id = webhook.get("id")
        if not isinstance(webhook_id, str) or not webhook_id:
            raise ShopifyApiError(message=f"Webhook registration for {topic} returned no id")
        return webhook_id

    @staticmethod
    def _has_duplicate_webhook_address_error(user_errors: list[dict[str, Any]]) -> bool:
        for error in user_errors:
            message = error.get("message")
            if isinstance(message, str) and "already been taken" in message.lower():
                return True
        return False

    async def _find_existing_http_webhook_id(
        self,
        *,
        shop_domain: str,
        access_token: str,
        topic: str,
        callback_url: str,
    ) -> str | None:
        query = """
        query webhookSubscriptionsByTopic($topics: [WebhookSubscriptionTopic!]) {
            webhookSubscriptions(first: 50, topics: $topics) {
                edges {
                    node {
                        id
                        endpoint {
                            __typename
                            ... on WebhookHttpEndpoint {
                                callbackUrl
                            }
                        }
                    }
                }
            }
        }
        """
        payload = {"query": query, "variables": {"topics": [topic]}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        target_url = callback_url.rstrip("/")
        subscriptions = (response.get("webhookSubscriptions") or {}).get("edges") or []
        for edge in subscriptions:
            node = edge.get("node") or {}
            endpoint = node.get("endpoint") or {}
            if endpoint.get("__typename") != "WebhookHttpEndpoint":
                continue
            endpoint_callback = endpoint.get("callbackUrl")
            if isinstance(endpoint_callback, str) and endpoint_callback.rstrip("/") == target_url:
                webhook_id = node.get("id")
                if isinstance(webhook_id, str) and webhook_id:
                    return webhook_id
        return None

    async def get_mup_metafields(
        self,
        *,
        shop_domain: str,
        access_token: str,
    ) -> tuple[str, dict[str, str | None]]:
        query = f"""
        query mupShopSettings {{
            shop {{
                id
                {_metafield_aliases()}
            }}
        }}
        """
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload={"query": query},
        )
        shop = response.get("shop")
        if not isinstance(shop, dict):
            raise ShopifyApiError(message="Shop settings response is missing shop")
        shop_id = shop.get("id")
        if not isinstance(shop_id, str) or not shop_id:
            raise ShopifyApiError(message="Shop settings response is missing shop.id")
        return shop_id, {key: _metafield_value(shop.get(key)) for key in MUP_METAFIELD_KEYS}

    async def set_shop_metafields(
        self,
        *,
        shop_domain: str,
        access_token: str,
        metafields: list[dict[str, str]],
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """Write metafields and hand back ``(metafields, userErrors)`` for the caller to triage."""
        query = """
        mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
            metafieldsSet(metafields: $metafields) {
                metafields {
                    id
                    key
                    namespace
                    type
                    value
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {"query": query, "variables": {"metafields": metafields}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        set_data = response.get("metafieldsSet") or {}
        saved = set_data.get("metafields") or []
        user_errors = set_data.get("userErrors") or []
        return list(saved), list(user_errors)

    async def create_levy_product(
        self,
        *,
        shop_domain: str,
        access_token: str,
    ) -> dict[str, str]:
        query = """
        mutation createLevyProduct($input: ProductInput!) {
            productCreate(input: $input) {
                product {
                    id
                    title
                    handle
                    variants(first: 1) {
                        edges {
                            node {
                                id
                            }
                        }
                    }
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {
            "query": query,
            "variables": {
                "input": {
                    "title": LEVY_PRODUCT_TITLE,
                    "descriptionHtml": LEVY_PRODUCT_DESCRIPTION,
                    "handle": LEVY_PRODUCT_HANDLE,
                    "status": "ACTIVE",
                    "vendor": "System",
                    "productType": "Fee",
                    "tags": ["mup", "levy", "compliance", "scotland"],
                }
            },
        }
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        create_data = response.get("productCreate") or {}
        self._assert_no_user_errors(
            user_errors=create_data.get("userErrors") or [],
            mutation_name="productCreate",
        )
        product = create_data.get("product")
        if not isinstance(product, dict):
            raise ShopifyApiError(message="productCreate response is missing product")
        product_id = product.get("id")
        if not isinstance(product_id, str) or not product_id:
            raise ShopifyApiError(message="productCreate response is missing product.id")
        edges = ((product.get("variants") or {}).get("edges")) or []
        variant_id = None
        if edges and isinstance(edges[0], dict):
            variant_id = (edges[0].get("node") or {}).get("id")
        if not isinstance(variant_id, str) or not variant_id:
            raise ShopifyApiError(message="productCreate response is missing the default variant id")
        return {
            "productGid": product_id,
            "variantGid": variant_id,
            "title": str(product.get("title") or LEVY_PRODUCT_TITLE),
            "handle": str(product.get("handle") or LEVY_PRODUCT_HANDLE),
        }

    async def get_variant_alcohol_data(
        self,
        *,
        shop_domain: str,
        access_token: str,
        variant_gid: str,
    ) -> dict[str, str | None] | None:
        query = f"""
        query variantAlcoholData($id: ID!) {{
            productVariant(id: $id) {{
                id
                price
                {_VARIANT_ALCOHOL_FIELDS}
            }}
        }}
        """
        payload = {"query": query, "variables": {"id": variant_gid}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        variant = response.get("productVariant")
        if not isinstance(variant, dict):
            return None
        return {
            "id": variant.get("id"),
            "price": variant.get("price"),
            "totalUnits": _metafield_value(variant.get("totalUnits")),
            "abvPercentage": _metafield_value(variant.get("abvPercentage")),
            "volumeMl": _metafield_value(variant.get("volumeMl")),
        }

    async def list_products_alcohol_data(
        self,
        *,
        shop_domain: str,
        access_token: str,
        limit: int = 50,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        query = f"""
        query productsAlcoholData($first: Int!, $after: String) {{
            products(first: $first, after: $after) {{
                pageInfo {{
                    hasNextPage
                    endCursor
                }}
                edges {{
                    node {{
                        id
                        title
                        handle
                        productType
                        variants(first: 100) {{
                            edges {{
                                node {{
                                    id
                                    title
                                    sku
                                    {_VARIANT_ALCOHOL_FIELDS}
                                }}
                            }}
                        }}
                    }}
                }}
            }}
        }}
        """
        payload = {"query": query, "variables": {"first": limit, "after": cursor}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        products_data = response.get("products")
        if not isinstance(products_data, dict):
            raise ShopifyApiError(message="Products response is missing products")

        products: list[dict[str, Any]] = []
        for edge in products_data.get("edges") or []:
            node = edge.get("node") if isinstance(edge, dict) else None
            if not isinstance(node, dict):
                continue
            variants: list[dict[str, Any]] = []
            for variant_edge in (node.get("variants") or {}).get("edges") or []:
                variant = variant_edge.get("node") if isinstance(variant_edge, dict) else None
                if not isinstance(variant, dict):
                    continue
                variants.append(
                    {
                        "id": variant.get("id"),
                        "title": variant.get("title"),
                        "sku": variant.get("sku"),
                        "totalUnits": _metafield_value(variant.get("totalUnits")),
                        "abvPercentage": _metafield_value(variant.get("abvPercentage")),
                        "volumeMl": _metafield_value(variant.get("volumeMl")),
                    }
                )
            products.append(
                {
                    "id": node.get("id"),
                    "title": node.get("title"),
                    "handle": node.get("handle"),
                    "productType": node.get("productType"),
                    "variants": variants,
                }
            )

        page_info = products_data.get("pageInfo") or {}
        return {
            "products": products,
            "hasNextPage": bool(page_info.get("hasNextPage")),
            "endCursor": page_info.get("endCursor"),
        }

    async def get_order_hold_context(
        self,
        *,
        shop_domain: str,
        access_token: str,
        order_gid: str,
    ) -> dict[str, Any]:
        query = """
        query orderHoldContext($id: ID!) {
            order(id: $id) {
                id
                tags
                fulfillmentOrders(first: 10) {
                    edges {
                        node {
                            id
                            status
                        }
                    }
                }
            }
        }
        """
        payload = {"query": query, "variables": {"id": order_gid}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        order = response.get("order")
        if not isinstance(order, dict):
            raise ShopifyApiError(message=f"Order not found for GID: {order_gid}", status_code=404)

        fulfillment_orders: list[dict[str, str]] = []
        for edge in (order.get("fulfillmentOrders") or {}).get("edges") or []:
            node = edge.get("node") if isinstance(edge, dict) else None
            if not isinstance(node, dict):
                continue
            fulfillment_order_id = node.get("id")
            fulfillment_status = node.get("status")
            if not isinstance(fulfillment_order_id, str) or not fulfillment_order_id:
                raise ShopifyApiError(message="Fulfillment order response is missing id")
            fulfillment_orders.append(
                {"id": fulfillment_order_id, "status": str(fulfillment_status or "")}
            )

        tags = order.get("tags") or []
        return {
            "id": order.get("id") or order_gid,
            "tags": [tag for tag in tags if isinstance(tag, str)],
            "fulfillmentOrders": fulfillment_orders,
        }

    async def add_tags(
        self,
        *,
        shop_domain: str,
        access_token: str,
        resource_gid: str,
        tags: list[str],
    ) -> None:
        query = """
        mutation tagsAdd($id: ID!, $tags: [String!]!) {
            tagsAdd(id: $id, tags: $tags) {
                node {
                    id
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {"query": query, "variables": {"id": resource_gid, "tags": tags}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        self._assert_no_user_errors(
            user_errors=(response.get("tagsAdd") or {}).get("userErrors") or [],
            mutation_name="tagsAdd",
        )

    async def update_order_note(
        self,
        *,
        shop_domain: str,
        access_token: str,
        order_gid: str,
        note: str,
    ) -> None:
        query = """
        mutation orderUpdate($input: OrderInput!) {
            orderUpdate(input: $input) {
                order {
                    id
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {"query": query, "variables": {"input": {"id": order_gid, "note": note}}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        self._assert_no_user_errors(
            user_errors=(response.get("orderUpdate") or {}).get("userErrors") or [],
            mutation_name="orderUpdate",
        )

    async def hold_fulfillment_order(
        self,
        *,
        shop_domain: str,
        access_token: str,
        fulfillment_order_id: str,
        reason: str,
        reason_notes: str,
    ) -> str | None:
        query = """
        mutation fulfillmentOrderHold($id: ID!, $fulfillmentHold: FulfillmentOrderHoldInput!) {
            fulfillmentOrderHold(id: $id, fulfillmentHold: $fulfillmentHold) {
                fulfillmentOrder {
                    id
                    status
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {
            "query": query,
            "variables": {
                "id": fulfillment_order_id,
                "fulfillmentHold": {"reason": reason, "reasonNotes": reason_notes},
            },
        }
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        hold_data = response.get("fulfillmentOrderHold") or {}
        self._assert_no_user_errors(
            user_errors=hold_data.get("userErrors") or [],
            mutation_name="fulfillmentOrderHold",
        )
        fulfillment_order = hold_data.get("fulfillmentOrder") or {}
        new_status = fulfillment_order.get("status")
        return new_status if isinstance(new_status, str) else None

    @staticmethod
    def _assert_no_user_errors(*, user_errors: list[dict[str, Any]], mutation_name: str) -> None:
        if not user_errors:
            return
        messages = "; ".join(str(error.get("message")) for error in user_errors)
        raise ShopifyApiError(message=f"{mutation_name} failed: {messages}", status_code=409)

    async def _admin_graphql(
        self,
        *,
        shop_domain: str,
        access_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        url = f"https://{shop_domain}/admin/api/{settings.SHOPIFY_ADMIN_API_VERSION}/graphql.json"
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": access_token,
        }
        response = await self._post_json(url=url, payload=payload, headers=headers)
        data = response.get("data")
        errors = response.get("errors")
        if errors:
            raise ShopifyApiError(message=f"Admin GraphQL errors: {errors}")
        if not isinstance(data, dict):
            raise ShopifyApiError(message="Admin GraphQL response is missing data")
        return data

    async def _post_json(
        self,
        *,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise ShopifyApiError(message=f"Network error while calling Shopify: {exc}") from exc

        if response.status_code >= 400:
            raise ShopifyApiError(
                message=f"Shopify API call failed ({response.status_code}): {response.text}",
                status_code=502,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ShopifyApiError(message="Shopify API returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ShopifyApiError(message="Shopify API response must be a JSON object")
        return body

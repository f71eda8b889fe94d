"""Shopify Admin REST API client.

WHAT:
    Wrapper for the Shopify Admin REST API with:
    - Access-token authentication
    - Cursor-based pagination (Link header, `page_info`)
    - Status-code to exception mapping

WHY:
    Encapsulates all Shopify API interaction for the sync service. The client
    never retries; a failed page fails the sync run that requested it and the
    next scheduled sweep tries again.

REFERENCES:
    - Shopify REST Admin API: https://shopify.dev/docs/api/admin-rest
    - Pagination: https://shopify.dev/docs/api/usage/pagination-rest
"""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import urlparse, parse_qs

import httpx

from storepulse.errors import UpstreamAuthError, UpstreamRequestError

logger = logging.getLogger(__name__)

# Default API version
DEFAULT_API_VERSION = "2024-01"

# Shopify caps `limit` at 250 records per page
MAX_PAGE_SIZE = 250

RESOURCES = ("customers", "orders", "products")


@dataclass
class ShopifyPage:
    """One decoded page of a collection plus the cursor for the next one."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    next_page_info: Optional[str] = None


def _parse_next_page_info(response: httpx.Response) -> Optional[str]:
    """Extract the `page_info` cursor from the `rel="next"` Link header."""
    next_link = response.links.get("next")
    if not next_link:
        return None
    query = parse_qs(urlparse(next_link.get("url", "")).query)
    values = query.get("page_info")
    return values[0] if values else None


class ShopifyClient:
    """REST client for the Shopify Admin API.

    WHAT: Fetches customers, orders and products one page at a time
    WHY: Centralized API access with pagination and error mapping

    Usage:
        client = ShopifyClient(shop_domain="mystore", access_token="shpat_xxx")
        page = await client.get_page("customers")
        async for page in client.iter_pages("orders", max_pages=40):
            ...
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Shopify client.

        Args:
            shop_domain: Store handle ("mystore") or full host ("mystore.myshopify.com")
            access_token: Shopify Admin API access token
            api_version: API version to use (default: 2024-01)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport

        host = shop_domain if "." in shop_domain else f"{shop_domain}.myshopify.com"
        self.base_url = f"https://{host}/admin/api/{api_version}"

        logger.info(f"[SHOPIFY_CLIENT] Initialized for {host} (API version: {api_version})")

    def resource_url(self, resource: str) -> str:
        return f"{self.base_url}/{resource}.json"

    async def get_page(
        self,
        resource: str,
        params: Optional[Dict[str, Any]] = None,
        page_info: Optional[str] = None,
        limit: int = MAX_PAGE_SIZE,
    ) -> ShopifyPage:
        """Fetch one page of a collection.

        WHAT: GET /admin/api/{version}/{resource}.json
        WHY: All Shopify data fetching goes through this method

        Args:
            resource: "customers", "orders" or "products"
            params: Extra query filters (ignored when following a cursor)
            page_info: Cursor from a previous page
            limit: Page size, capped at 250

        Returns:
            ShopifyPage with the decoded records and the next cursor (or None)

        Raises:
            UpstreamAuthError: 401/403 from Shopify
            UpstreamRequestError: any other non-2xx, timeout or transport failure
        """
        if resource not in RESOURCES:
            raise ValueError(f"Unsupported Shopify resource: {resource}")

        query: Dict[str, Any] = {"limit": min(max(int(limit), 1), MAX_PAGE_SIZE)}
        if page_info:
            # Shopify rejects any filter other than limit alongside page_info
            query["page_info"] = page_info
        elif params:
            query.update(params)

        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Accept": "application/json",
        }

        url = self.resource_url(resource)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params=query, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"[SHOPIFY_CLIENT] Timeout fetching {resource} for {self.shop_domain}: {e}")
            raise UpstreamRequestError(f"Timed out fetching {resource}") from e
        except httpx.RequestError as e:
            logger.warning(f"[SHOPIFY_CLIENT] Request error fetching {resource} for {self.shop_domain}: {e}")
            raise UpstreamRequestError(f"Request failed fetching {resource}: {e}") from e

        if response.status_code in (401, 403):
            logger.error(f"[SHOPIFY_CLIENT] Auth rejected ({response.status_code}) for {self.shop_domain}")
            raise UpstreamAuthError(
                f"Shopify rejected the access token ({response.status_code})"
            )

        if not response.is_success:
            logger.error(
                f"[SHOPIFY_CLIENT] HTTP {response.status_code} fetching {resource} for {self.shop_domain}"
            )
            raise UpstreamRequestError(
                f"Shopify returned HTTP {response.status_code} for {resource}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamRequestError(
                f"Invalid JSON in {resource} response",
                status_code=response.status_code,
                body=response.text,
            ) from e

        records = data.get(resource) or []
        next_page_info = _parse_next_page_info(response)

        logger.debug(
            f"[SHOPIFY_CLIENT] Fetched {len(records)} {resource} (has_next={next_page_info is not None})"
        )
        return ShopifyPage(records=records, next_page_info=next_page_info)

    async def iter_pages(
        self,
        resource: str,
        params: Optional[Dict[str, Any]] = None,
        max_pages: int = 40,
        limit: int = MAX_PAGE_SIZE,
    ) -> AsyncIterator[ShopifyPage]:
        """Follow `page_info` cursors until exhaustion or `max_pages`."""
        page_info: Optional[str] = None
        pages = 0

        while pages < max_pages:
            page = await self.get_page(resource, params=params, page_info=page_info, limit=limit)
            pages += 1
            yield page

            if not page.next_page_info:
                return
            page_info = page.next_page_info

        logger.warning(
            f"[SHOPIFY_CLIENT] Stopped {resource} pagination at {max_pages} pages for {self.shop_domain}"
        )

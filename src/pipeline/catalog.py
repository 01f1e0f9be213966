"""Catalog clients: producers of raw collection records.

``fetch_collections()`` must return a complete, de-duplicated snapshot of the
shop's collections; ingestion treats anything missing as deleted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx
import pandas as pd

# Configure module logger
logger = logging.getLogger(__name__)

SHOPIFY_API_VERSION = "2024-10"
SHOPIFY_PAGE_SIZE = 250
SHOPIFY_PRODUCT_SAMPLE = 10
SHOPIFY_TIMEOUT_S = 30.0

CSV_REQUIRED_COLUMNS = {"external_id", "handle", "title"}
CSV_PRODUCT_SEPARATOR = "|"

COLLECTIONS_QUERY = """
query getCollections($cursor: String, $pageSize: Int!, $productSample: Int!) {
  collections(first: $pageSize, after: $cursor) {
    edges {
      node {
        id
        handle
        title
        descriptionHtml
        updatedAt
        products(first: $productSample) {
          edges { node { title } }
        }
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""


class CatalogFetchError(Exception):
    """Raised when the catalog cannot be fetched."""


@dataclass
class RawCollection:
    """A collection as delivered by the source catalog."""

    external_id: str
    handle: str
    title: str
    description_html: str = ""
    product_titles: List[str] = field(default_factory=list)
    updated_at: Optional[datetime] = None


class CatalogClient(Protocol):
    async def fetch_collections(self) -> List[RawCollection]:
        ...


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if pd.isna(value):
        return None
    return pd.Timestamp(value).to_pydatetime()


class ShopifyCatalogClient:
    """Shopify Admin GraphQL client with cursor pagination."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = SHOPIFY_API_VERSION,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.endpoint = (
            f"https://{shop_domain}/admin/api/{api_version}/graphql.json"
        )
        self._transport = transport

    def _parse_node(self, node: Dict[str, Any]) -> RawCollection:
        products = node.get("products") or {}
        return RawCollection(
            external_id=node["id"],
            handle=node["handle"],
            title=node["title"],
            description_html=node.get("descriptionHtml") or "",
            product_titles=[
                edge["node"]["title"] for edge in products.get("edges", [])
            ],
            updated_at=_parse_timestamp(node.get("updatedAt")),
        )

    async def fetch_collections(self) -> List[RawCollection]:
        collections: List[RawCollection] = []
        cursor: Optional[str] = None

        async with httpx.AsyncClient(
            timeout=SHOPIFY_TIMEOUT_S,
            transport=self._transport,
            headers={"X-Shopify-Access-Token": self.access_token},
        ) as client:
            while True:
                try:
                    response = await client.post(
                        self.endpoint,
                        json={
                            "query": COLLECTIONS_QUERY,
                            "variables": {
                                "cursor": cursor,
                                "pageSize": SHOPIFY_PAGE_SIZE,
                                "productSample": SHOPIFY_PRODUCT_SAMPLE,
                            },
                        },
                    )
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    raise CatalogFetchError(
                        f"Failed to fetch collections from {self.shop_domain}: {e}"
                    ) from e

                body = response.json()
                if body.get("errors"):
                    raise CatalogFetchError(
                        f"Catalog query returned errors: {body['errors']}"
                    )

                page = (body.get("data") or {}).get("collections") or {}
                collections.extend(
                    self._parse_node(edge["node"]) for edge in page.get("edges", [])
                )

                page_info = page.get("pageInfo") or {}
                if not page_info.get("hasNextPage"):
                    break
                cursor = page_info.get("endCursor")

        logger.info(
            "Fetched collections from Shopify",
            extra={"shop_domain": self.shop_domain, "num_collections": len(collections)},
        )
        return collections


class CsvCatalogClient:
    """Catalog snapshot read from a CSV file.

    Columns: ``external_id``, ``handle``, ``title`` (required) and
    ``description_html``, ``product_titles`` (``|``-separated), ``updated_at``
    (optional).
    """

    def __init__(self, csv_path: str):
        self.csv_path = csv_path

    async def fetch_collections(self) -> List[RawCollection]:
        if not Path(self.csv_path).exists():
            raise CatalogFetchError(f"Catalog CSV not found: {self.csv_path}")

        df = pd.read_csv(self.csv_path, dtype={"external_id": str})

        if not CSV_REQUIRED_COLUMNS.issubset(df.columns):
            missing = CSV_REQUIRED_COLUMNS - set(df.columns)
            raise CatalogFetchError(f"Catalog CSV missing required columns: {missing}")

        df = df.drop_duplicates(subset="external_id", keep="last")
        text_columns = [
            c for c in ("description_html", "product_titles") if c in df.columns
        ]
        if text_columns:
            df[text_columns] = df[text_columns].fillna("")

        collections = []
        for row in df.to_dict(orient="records"):
            products = row.get("product_titles", "")
            collections.append(
                RawCollection(
                    external_id=str(row["external_id"]),
                    handle=str(row["handle"]),
                    title=str(row["title"]),
                    description_html=str(row.get("description_html", "")),
                    product_titles=[
                        t for t in str(products).split(CSV_PRODUCT_SEPARATOR) if t
                    ],
                    updated_at=_parse_timestamp(row.get("updated_at")),
                )
            )

        logger.info(
            "Loaded catalog CSV",
            extra={"csv_path": self.csv_path, "num_collections": len(collections)},
        )
        return collections

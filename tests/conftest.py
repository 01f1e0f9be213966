"""Shared fixtures and fakes for the PathRec tests.

Every test gets its own in-memory SQLite database. External collaborators
(embedding provider, catalog) are replaced by small in-process fakes.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.db.database import create_session_factory, init_db
from src.db.models import Collection, Embedding, Shop, ShopSettings
from src.pipeline.catalog import CatalogFetchError, RawCollection
from src.pipeline.embedder import EmbeddingError


class FakeEmbedder:
    """Returns a fixed vector per collection title.

    The title is read back from the ``Title:`` line of the embedding text.
    Titles listed in ``fail_titles`` raise ``EmbeddingError``.
    """

    def __init__(
        self,
        vectors: Optional[Dict[str, Sequence[float]]] = None,
        default: Sequence[float] = (1.0, 0.0, 0.0),
        fail_titles: Sequence[str] = (),
        model: str = "fake-embedding",
    ):
        self.vectors = dict(vectors or {})
        self.default = list(default)
        self.fail_titles = set(fail_titles)
        self.model = model
        self.calls: List[str] = []

    @staticmethod
    def title_of(text: str) -> str:
        first_line = text.split("\n", 1)[0]
        return first_line[len("Title: "):] if first_line.startswith("Title: ") else ""

    async def embed(self, text: str) -> List[float]:
        title = self.title_of(text)
        self.calls.append(title)
        if title in self.fail_titles:
            raise EmbeddingError(f"provider rejected {title}")
        return list(self.vectors.get(title, self.default))


class FakeCatalog:
    """Serves a fixed snapshot, or raises ``CatalogFetchError``."""

    def __init__(self, records: Optional[List[RawCollection]] = None, fail: bool = False):
        self.records = list(records or [])
        self.fail = fail
        self.calls = 0

    async def fetch_collections(self) -> List[RawCollection]:
        self.calls += 1
        if self.fail:
            raise CatalogFetchError("Catalog unavailable")
        return list(self.records)


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory database."""
    factory = create_session_factory("sqlite://")
    init_db(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def shop(session):
    """An active shop with default settings."""
    shop = Shop(domain="test-shop.myshopify.com", access_token="token", billing_status="active")
    shop.settings = ShopSettings(max_buttons=15)
    session.add(shop)
    session.commit()
    return shop


def add_collection(
    session,
    shop: Shop,
    handle: str,
    title: Optional[str] = None,
    vector: Optional[Sequence[float]] = None,
    audience: str = "unknown",
    is_enabled: bool = True,
    is_excluded_sale: bool = False,
    description: str = "",
) -> Collection:
    """Insert a collection (and its embedding when ``vector`` is given)."""
    collection = Collection(
        shop_id=shop.id,
        external_id=handle,
        handle=handle,
        title=title or handle.replace("-", " ").title(),
        description=description,
        audience=audience,
        is_enabled=is_enabled,
        is_excluded_sale=is_excluded_sale,
    )
    if vector is not None:
        collection.embedding = Embedding(
            model="fake-embedding",
            dimension=len(vector),
            vector=list(vector),
            text_hash="0" * 64,
        )
    session.add(collection)
    session.commit()
    return collection

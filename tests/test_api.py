"""Tests for the FastAPI application endpoints.

Each test builds its own app on an in-memory database with the offline
hashing embedder; the lifespan (table creation) runs inside the
``TestClient`` context manager.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from conftest import add_collection
from src.api.main import create_app
from src.api.metrics import metrics_service
from src.config import AppConfig
from src.db.models import Collection, Job, Shop, ShopSettings
from src.recommender.graph import build_similarity_edges


@pytest.fixture
def app():
    metrics_service.reset()
    return create_app(AppConfig(database_url="sqlite://", embedding_provider="hashing"))


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def db(app, client):
    """Session on the app's database (tables exist once the client started)."""
    session = app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
def shop(db):
    shop = Shop(domain="demo.myshopify.com", access_token="token", billing_status="active")
    shop.settings = ShopSettings(max_buttons=15)
    db.add(shop)
    db.commit()
    return shop


@pytest.fixture
def graph(db, shop):
    """Three similar collections with a built graph."""
    add_collection(db, shop, "shirts", "Shirts", [1.0, 0.0])
    add_collection(db, shop, "jackets", "Jackets", [1.0, 0.1])
    add_collection(db, shop, "boots", "Boots", [1.0, 0.2])
    build_similarity_edges(db, shop.id)
    return shop


# ===== Health Tests =====


def test_ping_endpoint(client):
    """Test that the /ping endpoint returns correct status and JSON."""
    response = client.get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert "X-Request-ID" in response.headers


def test_status_endpoint(client, shop, db):
    """Test that /status reports database health and queue depth."""
    db.add(Job(shop_id=shop.id, type="full_pipeline", status="pending"))
    db.commit()

    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()
    assert data["database_ok"] is True
    assert data["pending_jobs"] == 1
    assert data["running_jobs"] == 0
    assert data["embedding_model"] == "hashing-256"


# ===== Storefront Tests =====


def test_recommend_returns_ranked_buttons(client, graph):
    response = client.get("/recommend/demo.myshopify.com/shirts")

    assert response.status_code == 200
    data = response.json()
    assert [b["title"] for b in data["buttons"]] == ["Jackets", "Boots"]
    first = data["buttons"][0]
    assert (first["url"], first["rank"]) == ("/collections/jackets", 1)
    assert 0 < first["score"] <= 1
    assert data["cacheVersion"] == 0
    assert data["buttonStyle"] == "pill"
    assert data["alignment"] == "left"
    assert response.headers["ETag"].startswith('W/"')
    assert "max-age" in response.headers["Cache-Control"]


def test_recommend_unknown_shop_or_handle_is_empty(client, graph):
    assert client.get("/recommend/unknown.myshopify.com/shirts").json() == {"buttons": []}
    data = client.get("/recommend/demo.myshopify.com/missing").json()
    assert data["buttons"] == []


def test_recommend_without_subscription(client, graph, db):
    db.get(Shop, graph.id).billing_status = "cancelled"
    db.commit()

    response = client.get("/recommend/demo.myshopify.com/shirts")

    assert response.status_code == 200
    assert response.json() == {"buttons": [], "message": "Subscription required"}


def test_recommend_applies_max_buttons(client, graph):
    client.put(f"/shops/{graph.id}/settings", json={"max_buttons": 1})

    data = client.get("/recommend/demo.myshopify.com/shirts").json()

    assert len(data["buttons"]) == 1
    assert data["cacheVersion"] == 1


def test_recommend_etag_not_modified(client, graph):
    first = client.get("/recommend/demo.myshopify.com/shirts")

    second = client.get(
        "/recommend/demo.myshopify.com/shirts",
        headers={"If-None-Match": first.headers["ETag"]},
    )

    assert second.status_code == 304


def test_recommend_etag_changes_with_cache_version(client, graph):
    first = client.get("/recommend/demo.myshopify.com/shirts")
    client.put(f"/shops/{graph.id}/settings", json={"button_style": "square"})

    second = client.get(
        "/recommend/demo.myshopify.com/shirts",
        headers={"If-None-Match": first.headers["ETag"]},
    )

    assert second.status_code == 200
    assert second.json()["buttonStyle"] == "square"


def test_recommend_serves_repeat_reads_from_cache(client, graph, app):
    client.get("/recommend/demo.myshopify.com/shirts")
    client.get("/recommend/demo.myshopify.com/shirts")

    metrics = client.get("/metrics").json()
    assert metrics["recommendation_reads"] == 2
    assert metrics["cache_hits"] == 1
    assert len(app.state.recommendation_cache) == 1


def test_recommend_degrades_on_backend_failure(client, graph, app):
    class BrokenEntitlements:
        def get_entitlement(self, session, shop_id):
            raise RuntimeError("billing down")

    app.state.entitlements = BrokenEntitlements()

    response = client.get("/recommend/demo.myshopify.com/shirts")

    assert response.status_code == 200
    assert response.json() == {"buttons": []}


# ===== Job Endpoint Tests =====


def test_create_job_returns_202(client, shop):
    response = client.post(f"/shops/{shop.id}/jobs", json={"type": "build_edges"})

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "pending"
    assert data["type"] == "build_edges"

    polled = client.get(f"/jobs/{data['id']}")
    assert polled.status_code == 200
    assert polled.json()["progress_percent"] == 0

    latest = client.get(f"/shops/{shop.id}/jobs/latest")
    assert latest.json()["id"] == data["id"]


def test_create_job_denied_without_subscription(client, shop, db):
    db.get(Shop, shop.id).billing_status = "none"
    db.commit()

    response = client.post(f"/shops/{shop.id}/jobs", json={"type": "full_pipeline"})

    assert response.status_code == 403
    assert response.json() == {"error": "Active subscription required", "status": "none"}
    db.expire_all()
    assert db.execute(select(func.count()).select_from(Job)).scalar_one() == 0


def test_create_job_invalid_type_is_422(client, shop):
    response = client.post(f"/shops/{shop.id}/jobs", json={"type": "reindex"})

    assert response.status_code == 422
    assert response.json()["error"] == "Validation error"


def test_unknown_job_and_shop_are_404(client):
    response = client.get("/jobs/999")
    assert response.status_code == 404
    assert response.json() == {"error": "Job 999 not found", "details": {"job_id": 999}}

    response = client.post("/shops/999/jobs", json={"type": "full_pipeline"})
    assert response.status_code == 404
    assert response.json()["error"] == "Shop 999 not found"


# ===== Collection and Settings Tests =====


def test_list_and_toggle_collections(client, graph):
    collections = client.get(f"/shops/{graph.id}/collections").json()["collections"]
    shirts = next(c for c in collections if c["handle"] == "shirts")
    assert shirts["source_edges"] == 2

    response = client.post(f"/shops/{graph.id}/collections/{shirts['id']}/toggle")

    assert response.status_code == 200
    assert response.json()["is_enabled"] is False
    assert client.get("/recommend/demo.myshopify.com/shirts").json()["buttons"] == []
    jackets = client.get("/recommend/demo.myshopify.com/jackets").json()
    assert [b["title"] for b in jackets["buttons"]] == ["Boots"]


def test_toggle_unknown_collection_is_404(client, shop):
    response = client.post(f"/shops/{shop.id}/collections/4242/toggle")
    assert response.status_code == 404


def test_settings_roundtrip(client, shop):
    assert client.get(f"/shops/{shop.id}/settings").json() == {
        "max_buttons": 15,
        "button_style": "pill",
        "alignment": "left",
    }

    response = client.put(
        f"/shops/{shop.id}/settings", json={"max_buttons": 5, "alignment": "center"}
    )

    assert response.status_code == 200
    assert response.json() == {
        "max_buttons": 5,
        "button_style": "pill",
        "alignment": "center",
    }


@pytest.mark.parametrize(
    "payload", [{"max_buttons": 0}, {"max_buttons": 31}, {"button_style": "circle"}]
)
def test_invalid_settings_are_400(client, shop, payload):
    response = client.put(f"/shops/{shop.id}/settings", json=payload)

    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid settings")


def test_cleanup_with_rebuild(client, graph, db):
    boots = db.execute(
        select(Collection).where(Collection.shop_id == graph.id, Collection.handle == "boots")
    ).scalar_one()
    boots.is_excluded_sale = True
    db.commit()

    response = client.post(f"/shops/{graph.id}/cleanup", params={"rebuild": "true"})

    assert response.status_code == 200
    data = response.json()
    assert data["deleted_edges"] == 2
    assert data["job"]["type"] == "full_pipeline"

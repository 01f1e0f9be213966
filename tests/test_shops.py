"""Tests for shop settings, cache versioning, toggles and entitlements."""

import pytest
from sqlalchemy import func, select

from conftest import add_collection
from src.db.models import Edge, Shop
from src.pipeline.entitlement import BillingEntitlementProvider, Entitlement
from src.pipeline.shops import (
    bump_cache_version,
    get_or_create_shop,
    get_settings,
    list_collections,
    toggle_collection,
    update_settings,
    validate_settings,
)
from src.recommender.graph import build_similarity_edges


def cache_version(session, shop_id):
    return session.execute(
        select(Shop.cache_version).where(Shop.id == shop_id)
    ).scalar_one()


# ===== Shop and Settings Tests =====


def test_get_or_create_shop_is_idempotent(session):
    first = get_or_create_shop(session, "new.myshopify.com", access_token="t")
    second = get_or_create_shop(session, "new.myshopify.com")

    assert first.id == second.id
    assert get_settings(session, first.id).max_buttons == 15
    assert first.billing_status == "none"


def test_settings_defaults(session, shop):
    settings = get_settings(session, shop.id)
    assert (settings.max_buttons, settings.button_style, settings.alignment) == (
        15,
        "pill",
        "left",
    )


def test_update_settings_bumps_cache_version(session, shop):
    before = cache_version(session, shop.id)

    settings = update_settings(session, shop.id, max_buttons=5, button_style="square")

    assert settings.max_buttons == 5
    assert settings.button_style == "square"
    assert settings.alignment == "left"
    assert cache_version(session, shop.id) == before + 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_buttons": 0},
        {"max_buttons": 31},
        {"button_style": "circle"},
        {"alignment": "justify"},
    ],
)
def test_invalid_settings_fail_fast(session, shop, kwargs):
    before = cache_version(session, shop.id)

    with pytest.raises(ValueError):
        update_settings(session, shop.id, **kwargs)

    assert cache_version(session, shop.id) == before
    assert get_settings(session, shop.id).max_buttons == 15


def test_validate_settings_accepts_bounds():
    validate_settings(max_buttons=1)
    validate_settings(max_buttons=30, button_style="rounded", alignment="center")


def test_bump_cache_version_is_monotonic(session, shop):
    start = cache_version(session, shop.id)
    bump_cache_version(session, shop.id)
    bump_cache_version(session, shop.id)
    assert cache_version(session, shop.id) == start + 2


# ===== Toggle Tests =====


def test_toggle_disable_removes_touching_edges(session, shop):
    a = add_collection(session, shop, "a", vector=[1.0, 0.0])
    add_collection(session, shop, "b", vector=[1.0, 0.1])
    add_collection(session, shop, "c", vector=[1.0, 0.2])
    build_similarity_edges(session, shop.id)
    before = cache_version(session, shop.id)

    toggled = toggle_collection(session, shop.id, a.id)

    assert toggled.is_enabled is False
    touching = session.execute(
        select(func.count())
        .select_from(Edge)
        .where((Edge.source_collection_id == a.id) | (Edge.target_collection_id == a.id))
    ).scalar_one()
    assert touching == 0
    assert cache_version(session, shop.id) == before + 1


def test_toggle_enable_waits_for_rebuild(session, shop):
    a = add_collection(session, shop, "a", vector=[1.0, 0.0], is_enabled=False)
    add_collection(session, shop, "b", vector=[1.0, 0.1])

    toggled = toggle_collection(session, shop.id, a.id)

    assert toggled.is_enabled is True
    assert session.execute(select(func.count()).select_from(Edge)).scalar_one() == 0


def test_toggle_unknown_collection_returns_none(session, shop):
    assert toggle_collection(session, shop.id, 12345) is None


def test_list_collections_counts_edges(session, shop):
    add_collection(session, shop, "a", "Alpha", vector=[1.0, 0.0])
    add_collection(session, shop, "b", "Beta", vector=[1.0, 0.1])
    add_collection(session, shop, "c", "Gamma")
    build_similarity_edges(session, shop.id)

    rows = list_collections(session, shop.id)

    assert [r["title"] for r in rows] == ["Alpha", "Beta", "Gamma"]
    assert rows[0]["source_edges"] == 1
    assert rows[0]["target_edges"] == 1
    assert rows[2]["has_embedding"] is False
    assert rows[2]["source_edges"] == 0


# ===== Entitlement Tests =====


def test_active_billing_grants(session, shop):
    entitlement = BillingEntitlementProvider().get_entitlement(session, shop.id)
    assert entitlement == Entitlement(True, True, "active")


@pytest.mark.parametrize("status", ["none", "cancelled", "frozen"])
def test_inactive_billing_denies(session, shop, status):
    shop.billing_status = status
    session.commit()

    entitlement = BillingEntitlementProvider().get_entitlement(session, shop.id)

    assert entitlement.can_run_jobs is False
    assert entitlement.can_render_buttons is False
    assert entitlement.status == status


def test_bypass_grants_everything(session, shop):
    shop.billing_status = "none"
    session.commit()

    entitlement = BillingEntitlementProvider(bypass=True).get_entitlement(session, shop.id)

    assert entitlement.can_run_jobs is True
    assert entitlement.status == "development"


def test_unknown_shop_denied(session):
    entitlement = BillingEntitlementProvider().get_entitlement(session, 999)
    assert entitlement == Entitlement.denied("none")


def test_lookup_failure_denies(session, shop):
    class BrokenSession:
        def get(self, *args, **kwargs):
            raise RuntimeError("database unavailable")

    entitlement = BillingEntitlementProvider().get_entitlement(BrokenSession(), shop.id)

    assert entitlement == Entitlement.denied("error")

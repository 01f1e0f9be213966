"""FastAPI dependencies shared by the routers.

Everything is read from ``app.state`` so each app built by ``create_app``
carries its own database and collaborators.
"""

from typing import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from src.api.exceptions import ShopNotFoundError
from src.config import AppConfig
from src.db.database import session_scope
from src.db.models import Shop
from src.pipeline.entitlement import EntitlementProvider


def get_session(request: Request) -> Generator[Session, None, None]:
    yield from session_scope(request.app.state.session_factory)


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_entitlements(request: Request) -> EntitlementProvider:
    return request.app.state.entitlements


def get_shop_or_404(shop_id: int, session: Session = Depends(get_session)) -> Shop:
    """Resolve the ``shop_id`` path parameter or raise ``ShopNotFoundError``."""
    shop = session.get(Shop, shop_id)
    if shop is None:
        raise ShopNotFoundError(shop_id)
    return shop

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from mup_app.db import session_scope
from mup_app.models import ShopInstallation


def find_active_installation(session: Session, shop_domain: str) -> ShopInstallation | None:
    return session.scalars(
        select(ShopInstallation).where(
            ShopInstallation.shop_domain == shop_domain,
            ShopInstallation.uninstalled_at.is_(None),
        )
    ).first()


def lookup_admin_access_token(shop_domain: str) -> str | None:
    with session_scope() as session:
        installation = find_active_installation(session, shop_domain)
        if installation is None or not installation.admin_access_token:
            return None
        return installation.admin_access_token

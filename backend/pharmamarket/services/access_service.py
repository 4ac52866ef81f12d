# Overview: Service-layer role checks for marketplace actors.

"""
Actor Access Checks

WHY: Identity is established upstream (gateway supplies the user id); this
module only answers "may this user perform this action on this resource".

DESIGN PRINCIPLES:
- Fail closed: unknown or inactive users are denied
- Admins may act on any order or payout
- Buyers/sellers may only act on orders they are a party to
"""

from __future__ import annotations

from ..extensions import db
from ..models import User, Order
from .errors import NotFound, UnauthorizedAction

ROLE_BUYER = "buyer"
ROLE_SELLER = "seller"
ROLE_ADMIN = "admin"

VALID_ROLES = {ROLE_BUYER, ROLE_SELLER, ROLE_ADMIN}


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User", user_id)
    return user


def require_role(user_id: int | None, roles, *, action: str, resource: str | None = None) -> User:
    """Return the active user if their role is in roles, else raise UnauthorizedAction."""
    if isinstance(roles, str):
        roles = {roles}
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user or not user.is_active or user.role not in roles:
        raise UnauthorizedAction(actor_user_id=user_id, action=action, resource=resource)
    return user


def is_admin(user_id: int | None) -> bool:
    if user_id is None:
        return False
    user = db.session.get(User, user_id)
    return bool(user and user.is_active and user.role == ROLE_ADMIN)


def require_order_party(user_id: int | None, order: Order, *, action: str, allow_buyer: bool = True) -> User:
    """
    Require the actor to be the order's seller, its buyer (when allowed) or an admin.
    """
    resource = f"order:{order.id}"
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user or not user.is_active:
        raise UnauthorizedAction(actor_user_id=user_id, action=action, resource=resource)
    if user.role == ROLE_ADMIN:
        return user
    if user.id == order.seller_id:
        return user
    if allow_buyer and user.id == order.buyer_id:
        return user
    raise UnauthorizedAction(actor_user_id=user_id, action=action, resource=resource)

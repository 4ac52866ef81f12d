# Overview: Service-layer read-only projections for dashboards and admin reports.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Order, PayoutRequest, SellerWallet, User
from pharmamarket.time_utils import day_window, to_utc_z
from .payout_service import OPEN_STATUSES


def wallet_balances(*, seller_id: int | None = None, limit: int = 100) -> list[dict]:
    query = (
        db.session.query(SellerWallet, User.name)
        .join(User, User.id == SellerWallet.seller_id)
    )
    if seller_id is not None:
        query = query.filter(SellerWallet.seller_id == seller_id)

    rows = query.order_by(SellerWallet.balance_cents.desc(), SellerWallet.id.asc()).limit(limit).all()
    return [
        {
            "seller_id": wallet.seller_id,
            "seller_name": name,
            "balance_cents": wallet.balance_cents,
            "pending_balance_cents": wallet.pending_balance_cents,
            "total_commission_cents": wallet.total_commission_cents,
            "withdrawn_cents": wallet.withdrawn_cents,
        }
        for wallet, name in rows
    ]


def pending_payouts(limit: int = 100) -> dict:
    rows = (
        db.session.query(PayoutRequest)
        .filter(PayoutRequest.status.in_(OPEN_STATUSES))
        .order_by(PayoutRequest.id.asc())
        .limit(limit)
        .all()
    )
    total = (
        db.session.query(func.coalesce(func.sum(PayoutRequest.amount_cents), 0))
        .filter(PayoutRequest.status.in_(OPEN_STATUSES))
        .scalar()
    )
    return {
        "count": len(rows),
        "total_amount_cents": int(total or 0),
        "payouts": [p.to_dict() for p in rows],
    }


def daily_orders(day: datetime | None = None, *, seller_id: int | None = None) -> dict:
    """
    Order count and revenue for one UTC day (today by default).

    Cancelled orders are counted separately and excluded from revenue.
    """
    start, end = day_window(day)
    query = db.session.query(
        Order.status,
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_amount_cents), 0),
        func.coalesce(func.sum(Order.total_commission_cents), 0),
    ).filter(Order.created_at >= start, Order.created_at < end)
    if seller_id is not None:
        query = query.filter(Order.seller_id == seller_id)

    by_status = {}
    order_count = 0
    revenue = 0
    commission = 0
    for status, count, amount, commission_cents in query.group_by(Order.status).all():
        by_status[status] = int(count)
        order_count += int(count)
        if status != "cancelled":
            revenue += int(amount)
            commission += int(commission_cents)

    return {
        "day_start": to_utc_z(start),
        "day_end": to_utc_z(end),
        "order_count": order_count,
        "revenue_cents": revenue,
        "commission_cents": commission,
        "by_status": by_status,
    }

"""Sales, day-end and menu-sales reports built from bills and order items."""
import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from order_service import models
from order_service.billing import ZERO, PaymentMethod, PaymentStatus, money
from order_service.credit import is_credit_sale
from order_service.lifecycle import OrderStatus
from pos_common.context import RequestContext

SOLD_STATUSES = (
    OrderStatus.BILL_GENERATED.value,
    OrderStatus.CREDIT.value,
    OrderStatus.COMPLETE.value,
)


def _day_bounds(date_from: datetime.date, date_to: datetime.date):
    start = datetime.datetime.combine(date_from, datetime.time.min)
    end = datetime.datetime.combine(date_to + datetime.timedelta(days=1), datetime.time.min)
    return start, end


def sales_report(db: Session, ctx: RequestContext, date_from, date_to, branch_id=None):
    start, end = _day_bounds(date_from, date_to)
    query = db.query(models.Bill, models.Order).join(models.Order, models.Bill.order_id == models.Order.id).filter(
        models.Bill.created_at >= start, models.Bill.created_at < end,
    )
    scope = ctx.scope_branch(branch_id)
    if scope is not None:
        query = query.filter(models.Order.branch_id == scope)

    rows = []
    totals = {k: ZERO for k in ("bill_amount", "service_charge", "discount", "net_total", "credit_sales")}
    for bill, order in query.order_by(models.Bill.created_at, models.Bill.id).all():
        credit = is_credit_sale(bill)
        rows.append({
            "order_id": order.id,
            "display_id": order.display_id,
            "order_type": order.order_type,
            "bill_amount": bill.total_amount,
            "service_charge": bill.service_charge,
            "discount": bill.discount,
            "net_total": bill.grand_total,
            "payment_method": bill.payment_method,
            "payment_status": bill.payment_status,
            "is_credit": credit,
            "created_at": bill.created_at,
        })
        totals["bill_amount"] += money(bill.total_amount)
        totals["service_charge"] += money(bill.service_charge)
        totals["discount"] += money(bill.discount)
        totals["net_total"] += money(bill.grand_total)
        if credit:
            totals["credit_sales"] += money(bill.grand_total)

    return {
        "date_from": date_from,
        "date_to": date_to,
        "rows": rows,
        "totals": {k: float(v) for k, v in totals.items()},
    }


def day_end(db: Session, ctx: RequestContext, day, branch_id=None):
    start, end = _day_bounds(day, day)
    scope = ctx.scope_branch(branch_id)

    orders = db.query(func.count(models.Order.id)).filter(
        models.Order.created_at >= start, models.Order.created_at < end,
        models.Order.status != OrderStatus.CANCELLED.value,
    )
    if scope is not None:
        orders = orders.filter(models.Order.branch_id == scope)

    bills = db.query(models.Bill).join(models.Order, models.Bill.order_id == models.Order.id)
    if scope is not None:
        bills = bills.filter(models.Order.branch_id == scope)

    by_method = {m: ZERO for m in PaymentMethod}
    paid = bills.filter(
        models.Bill.payment_status == PaymentStatus.PAID.value,
        models.Bill.paid_at >= start, models.Bill.paid_at < end,
    ).all()
    for bill in paid:
        by_method[PaymentMethod(bill.payment_method)] += money(bill.grand_total)

    credit = bills.filter(models.Bill.created_at >= start, models.Bill.created_at < end).all()
    for bill in credit:
        if is_credit_sale(bill):
            by_method[PaymentMethod.CREDIT] += money(bill.grand_total)

    receivings = db.query(models.Receiving).filter(
        models.Receiving.created_at >= start, models.Receiving.created_at < end,
    )
    if scope is not None:
        receivings = receivings.filter(models.Receiving.branch_id == scope)
    total_receivings = sum((money(r.amount) for r in receivings.all()), ZERO)

    return {
        "day": day,
        "order_count": orders.scalar() or 0,
        "total_cash": float(by_method[PaymentMethod.CASH]),
        "total_card": float(by_method[PaymentMethod.CARD]),
        "total_online": float(by_method[PaymentMethod.ONLINE]),
        "total_credit": float(by_method[PaymentMethod.CREDIT]),
        "total_sales": float(sum(by_method.values(), ZERO)),
        "total_receivings": float(total_receivings),
    }


def menu_sales(db: Session, ctx: RequestContext, date_from, date_to, branch_id=None):
    start, end = _day_bounds(date_from, date_to)
    query = db.query(
        models.OrderItem.dish_id,
        models.OrderItem.dish_name,
        func.sum(models.OrderItem.quantity).label("quantity"),
        func.sum(models.OrderItem.line_total).label("revenue"),
    ).join(models.Order, models.OrderItem.order_id == models.Order.id).filter(
        models.Order.status.in_(SOLD_STATUSES),
        models.Order.created_at >= start, models.Order.created_at < end,
    )
    scope = ctx.scope_branch(branch_id)
    if scope is not None:
        query = query.filter(models.Order.branch_id == scope)
    rows = query.group_by(models.OrderItem.dish_id, models.OrderItem.dish_name).all()
    result = [
        {"dish_id": r.dish_id, "dish_name": r.dish_name, "quantity": int(r.quantity or 0),
         "revenue": float(money(r.revenue or 0))}
        for r in rows
    ]
    result.sort(key=lambda r: r["revenue"], reverse=True)
    return result

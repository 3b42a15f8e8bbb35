"""Order, bill and payment operations.

Every mutation of one order runs under that order's lock and validates before
writing. Claiming a dine-in table also holds that table's lock. Table status is
pushed only after the database commit; a failed push turns into an
``UpstreamError`` that still carries the committed result.
"""
import asyncio
import datetime
import logging
import weakref

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from order_service import events, models
from order_service.billing import (
    PaymentMethod, PaymentStatus, calculate_bill, line_total, money,
    order_subtotal, resolve_payment_status, settle,
)
from order_service.events import publisher
from order_service.lifecycle import (
    HOLDS_TABLE, RELEASES_TABLE, DELETABLE, KitchenStatus, OrderStatus, OrderType,
    check_editable, check_kitchen_transition, check_manual_transition,
    check_transition, kitchen_progress,
)
from order_service.schemas import BillResponse, OrderItemResponse, OrderResponse
from order_service.tables import AVAILABLE, RUNNING, TableClient, sync_tables
from pos_common.context import RequestContext
from pos_common.errors import (
    ConflictError, InvalidStateError, NotFoundError, UpstreamError, ValidationError,
)

logger = logging.getLogger(__name__)


class OrderLocks:
    """One asyncio lock per id, dropped once nobody holds it."""

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def get(self, key: int) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


order_locks = OrderLocks()
# Held from the free-table check until the Running push lands
table_locks = OrderLocks()


# --- lookups ---
def load_order(db: Session, ctx: RequestContext, order_id: int, for_update: bool = False) -> models.Order:
    query = db.query(models.Order).options(joinedload(models.Order.items)).filter(models.Order.id == order_id)
    if for_update:
        query = query.with_for_update()
    order = query.first()
    if not order or not ctx.can_see(order.branch_id):
        raise NotFoundError(f"Order {order_id} not found")
    return order


def load_bill(db: Session, ctx: RequestContext, bill_id: int) -> models.Bill:
    bill = db.query(models.Bill).filter(models.Bill.id == bill_id).first()
    if not bill or not ctx.can_see(bill.order.branch_id):
        raise NotFoundError(f"Bill {bill_id} not found")
    return bill


def load_item(db: Session, ctx: RequestContext, item_id: int) -> models.OrderItem:
    item = db.query(models.OrderItem).filter(models.OrderItem.id == item_id).first()
    if not item or not ctx.can_see(item.order.branch_id):
        raise NotFoundError(f"Order item {item_id} not found")
    return item


def load_customer(db: Session, ctx: RequestContext, customer_id: int) -> models.Customer:
    customer = db.query(models.Customer).filter(models.Customer.id == customer_id).first()
    if not customer or not ctx.can_see(customer.branch_id):
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def list_orders(db: Session, ctx: RequestContext, status=None, branch_id=None):
    query = db.query(models.Order).options(joinedload(models.Order.items))
    scope = ctx.scope_branch(branch_id)
    if scope is not None:
        query = query.filter(models.Order.branch_id == scope)
    if status:
        try:
            status = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown order status '{status}'")
        query = query.filter(models.Order.status == status.value)
    return query.order_by(models.Order.created_at.desc(), models.Order.id.desc()).all()


# --- helpers ---
def recalculate(order: models.Order):
    order.subtotal = float(order_subtotal((i.unit_price, i.quantity) for i in order.items))
    if order.bill is None:
        order.service_charge = 0.0
        order.discount_amount = 0.0
    order.net_total = float(
        money(order.subtotal) + money(order.service_charge) - money(order.discount_amount)
    )


def new_item(data) -> models.OrderItem:
    return models.OrderItem(
        dish_id=data.dish_id,
        dish_name=data.dish_name,
        unit_price=float(money(data.unit_price)),
        quantity=data.quantity,
        line_total=float(line_total(data.unit_price, data.quantity)),
        kitchen_status=KitchenStatus.PENDING.value,
        note=data.note,
    )


def is_dine_in(order: models.Order) -> bool:
    return order.order_type == OrderType.DINE_IN.value


def check_no_open_order(db: Session, table_id: int, order_id: int = None):
    query = db.query(models.Order.id).filter(
        models.Order.table_id == table_id,
        models.Order.status.in_([s.value for s in HOLDS_TABLE]),
    )
    if order_id is not None:
        query = query.filter(models.Order.id != order_id)
    if query.first():
        raise ConflictError(f"Table {table_id} already has an open order")


async def check_table_free(tables: TableClient, hall_id: int, table_id: int):
    table = await tables.get_table(table_id)
    if table.get("hall_id") != hall_id:
        raise ValidationError(f"Table {table_id} does not belong to hall {hall_id}")
    if table.get("status") == RUNNING:
        raise ConflictError(f"Table {table_id} is already running")
    return table


async def finish(db: Session, tables: TableClient, order: models.Order, changes, result):
    failures = await sync_tables(db, tables, changes, order.id)
    if failures:
        raise UpstreamError(
            "Order saved, but table status update failed: " + "; ".join(failures),
            result=result,
        )
    return result


def _commit(db: Session):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Order was changed concurrently, reload and try again")


# --- orders ---
async def create_order(db: Session, ctx: RequestContext, payload, tables: TableClient):
    dine_in = payload.order_type == OrderType.DINE_IN
    if dine_in and (payload.hall_id is None or payload.table_id is None):
        raise ValidationError("Dine In orders need a hall and a table")
    if not dine_in and (payload.hall_id is not None or payload.table_id is not None):
        raise ValidationError("Only Dine In orders can have a hall or table")
    if not dine_in:
        return await _place_order(db, ctx, payload, tables)
    async with table_locks.get(payload.table_id):
        await check_table_free(tables, payload.hall_id, payload.table_id)
        check_no_open_order(db, payload.table_id)
        return await _place_order(db, ctx, payload, tables)


async def _place_order(db: Session, ctx: RequestContext, payload, tables: TableClient):
    order = models.Order(
        terminal=ctx.terminal,
        branch_id=ctx.branch_id,
        created_by=ctx.actor_id,
        order_type=payload.order_type.value,
        status=payload.status.value,
        hall_id=payload.hall_id,
        table_id=payload.table_id,
        note=payload.note,
        items=[new_item(i) for i in payload.items],
    )
    recalculate(order)
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("Created %s (%s, %s items)", order.display_id, order.order_type, len(order.items))
    await publisher.publish(events.ORDER_CREATED, order)

    changes = [(order.table_id, RUNNING)] if order.table_id is not None else []
    return await finish(db, tables, order, changes, OrderResponse.model_validate(order))


async def change_status(db: Session, ctx: RequestContext, order_id: int, new_status, tables: TableClient):
    async with order_locks.get(order_id):
        order = load_order(db, ctx, order_id, for_update=True)
        previous = order.status
        target = check_manual_transition(order.status, new_status, len(order.items))
        order.status = target.value
        _commit(db)
        db.refresh(order)
        logger.info("%s: %s -> %s", order.display_id, previous, order.status)
        await publisher.publish(events.ORDER_STATUS_CHANGED, order, previous=previous)

        changes = []
        if target in RELEASES_TABLE and is_dine_in(order):
            changes.append((order.table_id, AVAILABLE))
        return await finish(db, tables, order, changes, OrderResponse.model_validate(order))


async def add_item(db: Session, ctx: RequestContext, order_id: int, data):
    async with order_locks.get(order_id):
        order = load_order(db, ctx, order_id, for_update=True)
        check_editable(order.status)
        order.items.append(new_item(data))
        recalculate(order)
        _commit(db)
        db.refresh(order)
        await publisher.publish(events.ORDER_ITEMS_CHANGED, order)
        return OrderResponse.model_validate(order)


async def change_item_quantity(db: Session, ctx: RequestContext, item_id: int, quantity: int):
    item = load_item(db, ctx, item_id)
    order_id = item.order_id
    async with order_locks.get(order_id):
        order = load_order(db, ctx, order_id, for_update=True)
        check_editable(order.status)
        item.quantity = quantity
        item.line_total = float(line_total(item.unit_price, quantity))
        recalculate(order)
        _commit(db)
        db.refresh(order)
        await publisher.publish(events.ORDER_ITEMS_CHANGED, order)
        return OrderResponse.model_validate(order)


async def remove_item(db: Session, ctx: RequestContext, item_id: int):
    item = load_item(db, ctx, item_id)
    order_id = item.order_id
    async with order_locks.get(order_id):
        order = load_order(db, ctx, order_id, for_update=True)
        check_editable(order.status)
        order.items.remove(item)
        recalculate(order)
        _commit(db)
        db.refresh(order)
        await publisher.publish(events.ORDER_ITEMS_CHANGED, order)
        return OrderResponse.model_validate(order)


async def transfer_table(db: Session, ctx: RequestContext, order_id: int, hall_id: int, table_id: int,
                         tables: TableClient):
    async with order_locks.get(order_id):
        order = load_order(db, ctx, order_id, for_update=True)
        if not is_dine_in(order):
            raise ValidationError("Only Dine In orders can change tables")
        check_editable(order.status)
        if order.table_id == table_id:
            raise ValidationError(f"Order is already on table {table_id}")

        # Order lock first, then the table lock; create_order only takes the latter
        async with table_locks.get(table_id):
            await check_table_free(tables, hall_id, table_id)
            check_no_open_order(db, table_id, order_id=order.id)

            vacated = order.table_id
            order.hall_id = hall_id
            order.table_id = table_id
            _commit(db)
            db.refresh(order)
            logger.info("%s moved from table %s to %s", order.display_id, vacated, table_id)
            await publisher.publish(events.ORDER_TABLE_TRANSFERRED, order, previous_table_id=vacated)

            changes = [(table_id, RUNNING), (vacated, AVAILABLE)]
            return await finish(db, tables, order, changes, OrderResponse.model_validate(order))


async def delete_order(db: Session, ctx: RequestContext, order_id: int, tables: TableClient):
    async with order_locks.get(order_id):
        order = load_order(db, ctx, order_id, for_update=True)
        if OrderStatus(order.status) not in DELETABLE:
            raise InvalidStateError(
                f"Order in status '{order.status}' cannot be deleted; cancel it first"
            )
        # A cancelled order already released its table
        changes = []
        if is_dine_in(order) and order.status == OrderStatus.PENDING.value:
            changes.append((order.table_id, AVAILABLE))
        result = OrderResponse.model_validate(order)
        db.delete(order)
        db.commit()
        logger.info("Deleted %s", result.display_id)
        failures = await sync_tables(db, tables, changes, order_id)
        if failures:
            raise UpstreamError("Order deleted, but table status update failed: " + "; ".join(failures),
                                result=result)
        return result


# --- kitchen ---
async def update_kitchen_status(db: Session, ctx: RequestContext, item_id: int, status):
    item = load_item(db, ctx, item_id)
    if item.order.status == OrderStatus.CANCELLED.value:
        raise InvalidStateError("Order was cancelled")
    target = check_kitchen_transition(item.kitchen_status, status)
    item.kitchen_status = target.value
    db.commit()
    db.refresh(item)
    await publisher.publish(
        events.KITCHEN_ITEM_UPDATED, item.order,
        item_id=item.id, dish_name=item.dish_name, kitchen_status=item.kitchen_status,
    )
    return item


def kitchen_board(db: Session, ctx: RequestContext, branch_id=None):
    query = db.query(models.Order).options(joinedload(models.Order.items)).filter(
        models.Order.status != OrderStatus.CANCELLED.value
    )
    scope = ctx.scope_branch(branch_id)
    if scope is not None:
        query = query.filter(models.Order.branch_id == scope)
    board = []
    for order in query.order_by(models.Order.created_at, models.Order.id).all():
        statuses = [i.kitchen_status for i in order.items]
        if not statuses or all(s == KitchenStatus.COMPLETED.value for s in statuses):
            continue
        board.append({
            "id": order.id,
            "display_id": order.display_id,
            "order_type": order.order_type,
            "status": order.status,
            "table_id": order.table_id,
            "created_at": order.created_at,
            "progress": kitchen_progress(statuses),
            "items": [OrderItemResponse.model_validate(i) for i in order.items],
        })
    return board


# --- billing ---
def _charge_customer(db: Session, ctx: RequestContext, customer_id: int, amount):
    customer = load_customer(db, ctx, customer_id)
    new_balance = money(customer.balance) + money(amount)
    if customer.credit_limit and new_balance > money(customer.credit_limit):
        raise ValidationError(
            f"Credit limit {money(customer.credit_limit)} exceeded for customer {customer.name}"
        )
    customer.balance = float(new_balance)
    return customer


async def generate_bill(db: Session, ctx: RequestContext, order_id: int, req, tables: TableClient):
    method = PaymentMethod(req.payment_method)
    payment_status = resolve_payment_status(method, req.customer_id)

    async with order_locks.get(order_id):
        order = load_order(db, ctx, order_id, for_update=True)
        if not order.items:
            raise InvalidStateError("Cannot bill an order without items")
        amounts = calculate_bill(order.subtotal, req.service_charge, req.discount_percentage)
        bill = order.bill
        previous = order.status

        if bill is None:
            if req.bill_id is not None:
                raise NotFoundError(f"Bill {req.bill_id} not found for order {order.display_id}")
            target = OrderStatus.CREDIT if method == PaymentMethod.CREDIT else OrderStatus.BILL_GENERATED
            check_transition(order.status, target, len(order.items))
            bill = models.Bill(order=order)
            db.add(bill)
        else:
            if req.bill_id is None:
                raise ConflictError(
                    f"Order {order.display_id} already has bill {bill.id}; pass bill_id to update it"
                )
            if req.bill_id != bill.id:
                raise ValidationError(f"Bill {req.bill_id} does not belong to order {order.display_id}")
            if bill.payment_status != PaymentStatus.UNPAID.value:
                raise InvalidStateError(f"Bill {bill.id} is already {bill.payment_status}")
            target = OrderStatus.CREDIT if method == PaymentMethod.CREDIT else OrderStatus.BILL_GENERATED
            if target != OrderStatus(order.status):
                check_transition(order.status, target, len(order.items))

        if method == PaymentMethod.CREDIT:
            _charge_customer(db, ctx, req.customer_id, amounts.grand_total)

        bill.total_amount = float(amounts.subtotal)
        bill.service_charge = float(amounts.service_charge)
        bill.discount_percentage = float(amounts.discount_percentage)
        bill.discount = float(amounts.discount_amount)
        bill.grand_total = float(amounts.grand_total)
        bill.payment_method = method.value
        bill.payment_status = payment_status.value
        bill.customer_id = req.customer_id if method == PaymentMethod.CREDIT else None

        order.status = target.value
        order.service_charge = bill.service_charge
        order.discount_amount = bill.discount
        order.net_total = bill.grand_total
        order.payment_mode = method.value
        order.customer_id = bill.customer_id
        _commit(db)
        db.refresh(bill)
        db.refresh(order)
        logger.info("%s billed: %s (%s, %s)", order.display_id, bill.grand_total,
                    bill.payment_method, bill.payment_status)
        await publisher.publish(events.BILL_GENERATED, order, previous=previous, bill_id=bill.id,
                                grand_total=bill.grand_total)

        changes = []
        if target in RELEASES_TABLE and is_dine_in(order):
            changes.append((order.table_id, AVAILABLE))
        return await finish(db, tables, order, changes, BillResponse.model_validate(bill))


async def pay_bill(db: Session, ctx: RequestContext, bill_id: int, req, tables: TableClient):
    order_id = load_bill(db, ctx, bill_id).order_id
    async with order_locks.get(order_id):
        order = load_order(db, ctx, order_id, for_update=True)
        bill = order.bill
        if bill.payment_status != PaymentStatus.UNPAID.value:
            raise InvalidStateError(f"Bill {bill.id} is already {bill.payment_status}")
        check_transition(order.status, OrderStatus.COMPLETE, len(order.items))
        settlement = settle(bill.grand_total, req.payment_method, req.cash_received)

        # Bill and order change in the same transaction
        bill.payment_method = PaymentMethod(req.payment_method).value
        bill.payment_status = PaymentStatus.PAID.value
        bill.cash_received = float(settlement.cash_received)
        bill.change_amount = float(settlement.change)
        bill.paid_at = datetime.datetime.utcnow()
        order.status = OrderStatus.COMPLETE.value
        order.payment_mode = bill.payment_method
        _commit(db)
        db.refresh(bill)
        db.refresh(order)
        logger.info("%s paid by %s, change %s", order.display_id, bill.payment_method, bill.change_amount)
        await publisher.publish(events.ORDER_PAID, order, bill_id=bill.id, grand_total=bill.grand_total)

        changes = [(order.table_id, AVAILABLE)] if is_dine_in(order) else []
        return await finish(db, tables, order, changes, BillResponse.model_validate(bill))


# --- customers ---
def create_customer(db: Session, ctx: RequestContext, data):
    branch_id = data.branch_id if ctx.is_super_admin and data.branch_id is not None else ctx.branch_id
    customer = models.Customer(
        branch_id=branch_id,
        name=data.name.strip(),
        phone=data.phone,
        address=data.address,
        credit_limit=float(money(data.credit_limit)),
        balance=0.0,
    )
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer


def list_customers(db: Session, ctx: RequestContext, branch_id=None):
    query = db.query(models.Customer)
    scope = ctx.scope_branch(branch_id)
    if scope is not None:
        query = query.filter(models.Customer.branch_id == scope)
    return query.order_by(models.Customer.name).all()


def add_receiving(db: Session, ctx: RequestContext, customer_id: int, data):
    customer = load_customer(db, ctx, customer_id)
    amount = money(data.amount)
    if amount > money(customer.balance):
        raise ValidationError(
            f"Receiving {amount} is more than the outstanding balance {money(customer.balance)}"
        )
    if PaymentMethod(data.payment_method) == PaymentMethod.CREDIT:
        raise ValidationError("A receiving cannot itself be on credit")
    customer.balance = float(money(customer.balance) - amount)
    receiving = models.Receiving(
        customer_id=customer.id,
        branch_id=customer.branch_id,
        amount=float(amount),
        payment_method=PaymentMethod(data.payment_method).value,
        received_by=ctx.actor_id,
    )
    db.add(receiving)
    db.commit()
    db.refresh(receiving)
    return receiving

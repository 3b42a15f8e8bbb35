import asyncio
import datetime
import json
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import uvicorn

from order_service import models, reports, service
from order_service.database import Base, SessionLocal, engine
from order_service.events import publisher
from order_service.schemas import (
    BillRequest, BillResponse, CustomerCreate, CustomerResponse, DayEndReport,
    KitchenOrderResponse, KitchenStatusChange, MenuSalesRow, OrderCreate,
    OrderItemCreate, OrderItemResponse, OrderResponse, PaymentRequest,
    QuantityChange, ReceivingCreate, ReceivingResponse, ReconcileResult,
    SalesReport, StatusChange, TableTransfer,
)
from order_service.tables import TableClient, reconcile
from pos_common.config import TABLE_RECONCILE_INTERVAL, configure_logging
from pos_common.context import (
    ACCOUNTANT, BRANCH_ADMIN, KITCHEN, ORDER_TAKER, SUPER_ADMIN,
    RequestContext, get_context, require_roles,
)
from pos_common.envelope import Envelope, success
from pos_common.errors import ConflictError, NotFoundError, POSError, UpstreamError, install_error_handlers
from pos_common.security import create_access_token

configure_logging()
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

STAFF = (ORDER_TAKER, BRANCH_ADMIN, ACCOUNTANT)
CASHIERS = (ACCOUNTANT, ORDER_TAKER, BRANCH_ADMIN)
KITCHEN_STAFF = (KITCHEN, BRANCH_ADMIN)
BACK_OFFICE = (ACCOUNTANT, BRANCH_ADMIN)

table_client = TableClient()


def system_authorization() -> str:
    token = create_access_token({"sub": "order_service", "id": 0, "role": SUPER_ADMIN}, expires_minutes=5)
    return f"Bearer {token}"


async def reconcile_once():
    """One background reconcile pass; failures are logged and retried next tick."""
    db = SessionLocal()
    try:
        await reconcile(db, table_client.with_authorization(system_authorization()))
    except POSError as e:
        logger.warning("Table reconcile failed: %s", e.message)
    except Exception:
        logger.exception("Table reconcile crashed")
    finally:
        db.close()


async def reconcile_tables_forever():
    while True:
        await asyncio.sleep(TABLE_RECONCILE_INTERVAL)
        await reconcile_once()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await publisher.start()
    task = asyncio.create_task(reconcile_tables_forever())
    yield
    task.cancel()
    await publisher.stop()


app = FastAPI(title="order_service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_tables(authorization: str = Header(None)) -> TableClient:
    # Reads run as the caller, status writes as the service
    return table_client.with_authorization(authorization, system_authorization())


async def idempotent(db: Session, key: Optional[str], scope: str, call):
    """Replay the stored response for a repeated ``Idempotency-Key``."""
    if not key:
        return success(await call())

    record = db.query(models.IdempotencyRecord).filter(models.IdempotencyRecord.key == key).first()
    if record:
        if record.scope != scope:
            raise ConflictError("Idempotency-Key was already used for a different request")
        return JSONResponse(status_code=record.status_code, content=json.loads(record.body))

    try:
        body = success(await call())
        status_code = 200
    except UpstreamError as e:
        # The primary change is committed, so the partial result is replayable too
        body = {"ok": False, "result": e.result,
                "error": {"code": e.code, "message": e.message, "retryable": e.retryable}}
        status_code = e.status_code

    db.add(models.IdempotencyRecord(
        key=key, scope=scope, status_code=status_code, body=json.dumps(jsonable_encoder(body)),
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# ==========================================
# ORDERS
# ==========================================
@app.post("/orders", response_model=Envelope[OrderResponse])
async def create_order(payload: OrderCreate, ctx: RequestContext = Depends(get_context),
                       db: Session = Depends(get_db), tables: TableClient = Depends(get_tables)):
    require_roles(ctx, *STAFF)
    return success(await service.create_order(db, ctx, payload, tables))


@app.get("/orders", response_model=Envelope[List[OrderResponse]])
def get_orders(status: Optional[str] = None, branch_id: Optional[int] = None,
               ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    orders = service.list_orders(db, ctx, status=status, branch_id=branch_id)
    return success([OrderResponse.model_validate(o) for o in orders])


@app.get("/orders/{order_id}", response_model=Envelope[OrderResponse])
def get_order_detail(order_id: int, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    return success(OrderResponse.model_validate(service.load_order(db, ctx, order_id)))


@app.delete("/orders/{order_id}", response_model=Envelope[OrderResponse])
async def delete_order(order_id: int, ctx: RequestContext = Depends(get_context),
                       db: Session = Depends(get_db), tables: TableClient = Depends(get_tables)):
    require_roles(ctx, *BACK_OFFICE)
    return success(await service.delete_order(db, ctx, order_id, tables))


@app.post("/orders/{order_id}/status", response_model=Envelope[OrderResponse])
async def update_order_status(order_id: int, payload: StatusChange, ctx: RequestContext = Depends(get_context),
                              db: Session = Depends(get_db), tables: TableClient = Depends(get_tables)):
    require_roles(ctx, *STAFF)
    return success(await service.change_status(db, ctx, order_id, payload.new_status, tables))


@app.post("/orders/{order_id}/items", response_model=Envelope[OrderResponse])
async def add_order_item(order_id: int, payload: OrderItemCreate, ctx: RequestContext = Depends(get_context),
                         db: Session = Depends(get_db)):
    require_roles(ctx, *STAFF)
    return success(await service.add_item(db, ctx, order_id, payload))


@app.put("/order-items/{item_id}", response_model=Envelope[OrderResponse])
async def update_order_item(item_id: int, payload: QuantityChange, ctx: RequestContext = Depends(get_context),
                            db: Session = Depends(get_db)):
    require_roles(ctx, *STAFF)
    return success(await service.change_item_quantity(db, ctx, item_id, payload.quantity))


@app.delete("/order-items/{item_id}", response_model=Envelope[OrderResponse])
async def remove_order_item(item_id: int, ctx: RequestContext = Depends(get_context),
                            db: Session = Depends(get_db)):
    require_roles(ctx, *STAFF)
    return success(await service.remove_item(db, ctx, item_id))


@app.post("/orders/{order_id}/transfer", response_model=Envelope[OrderResponse])
async def transfer_order_table(order_id: int, payload: TableTransfer, ctx: RequestContext = Depends(get_context),
                               db: Session = Depends(get_db), tables: TableClient = Depends(get_tables)):
    require_roles(ctx, *STAFF)
    return success(await service.transfer_table(db, ctx, order_id, payload.hall_id, payload.table_id, tables))


# ==========================================
# KITCHEN
# ==========================================
@app.get("/kitchen/orders", response_model=Envelope[List[KitchenOrderResponse]])
def get_kitchen_orders(branch_id: Optional[int] = None, ctx: RequestContext = Depends(get_context),
                       db: Session = Depends(get_db)):
    require_roles(ctx, *KITCHEN_STAFF)
    return success(service.kitchen_board(db, ctx, branch_id=branch_id))


@app.post("/order-items/{item_id}/kitchen-status", response_model=Envelope[OrderItemResponse])
async def update_kitchen_item_status(item_id: int, payload: KitchenStatusChange,
                                     ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    require_roles(ctx, *KITCHEN_STAFF)
    item = await service.update_kitchen_status(db, ctx, item_id, payload.status)
    return success(OrderItemResponse.model_validate(item))


# ==========================================
# BILLS & PAYMENT
# ==========================================
@app.post("/orders/{order_id}/bill", response_model=Envelope[BillResponse])
async def generate_bill(order_id: int, payload: BillRequest, ctx: RequestContext = Depends(get_context),
                        db: Session = Depends(get_db), tables: TableClient = Depends(get_tables),
                        idempotency_key: Optional[str] = Header(None)):
    require_roles(ctx, *CASHIERS)
    return await idempotent(db, idempotency_key, f"bill:{order_id}",
                            lambda: service.generate_bill(db, ctx, order_id, payload, tables))


@app.get("/orders/{order_id}/bill", response_model=Envelope[BillResponse])
def get_order_bill(order_id: int, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    order = service.load_order(db, ctx, order_id)
    if order.bill is None:
        raise NotFoundError(f"No bill for order {order.display_id}")
    return success(BillResponse.model_validate(order.bill))


@app.get("/bills/{bill_id}", response_model=Envelope[BillResponse])
def get_bill(bill_id: int, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    return success(BillResponse.model_validate(service.load_bill(db, ctx, bill_id)))


@app.post("/bills/{bill_id}/pay", response_model=Envelope[BillResponse])
async def pay_bill(bill_id: int, payload: PaymentRequest, ctx: RequestContext = Depends(get_context),
                   db: Session = Depends(get_db), tables: TableClient = Depends(get_tables),
                   idempotency_key: Optional[str] = Header(None)):
    require_roles(ctx, *CASHIERS)
    return await idempotent(db, idempotency_key, f"pay:{bill_id}",
                            lambda: service.pay_bill(db, ctx, bill_id, payload, tables))


# ==========================================
# CUSTOMERS (CREDIT ACCOUNTS)
# ==========================================
@app.post("/customers", response_model=Envelope[CustomerResponse])
def create_customer(payload: CustomerCreate, ctx: RequestContext = Depends(get_context),
                    db: Session = Depends(get_db)):
    require_roles(ctx, *BACK_OFFICE)
    return success(CustomerResponse.model_validate(service.create_customer(db, ctx, payload)))


@app.get("/customers", response_model=Envelope[List[CustomerResponse]])
def get_customers(branch_id: Optional[int] = None, ctx: RequestContext = Depends(get_context),
                  db: Session = Depends(get_db)):
    require_roles(ctx, *CASHIERS)
    return success([CustomerResponse.model_validate(c) for c in service.list_customers(db, ctx, branch_id)])


@app.get("/customers/{customer_id}", response_model=Envelope[CustomerResponse])
def get_customer(customer_id: int, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    require_roles(ctx, *CASHIERS)
    return success(CustomerResponse.model_validate(service.load_customer(db, ctx, customer_id)))


@app.post("/customers/{customer_id}/receivings", response_model=Envelope[ReceivingResponse])
def add_receiving(customer_id: int, payload: ReceivingCreate, ctx: RequestContext = Depends(get_context),
                  db: Session = Depends(get_db)):
    require_roles(ctx, *BACK_OFFICE)
    return success(ReceivingResponse.model_validate(service.add_receiving(db, ctx, customer_id, payload)))


# ==========================================
# REPORTS
# ==========================================
@app.get("/reports/sales", response_model=Envelope[SalesReport])
def get_sales_report(date_from: Optional[datetime.date] = None, date_to: Optional[datetime.date] = None,
                     branch_id: Optional[int] = None, ctx: RequestContext = Depends(get_context),
                     db: Session = Depends(get_db)):
    require_roles(ctx, *BACK_OFFICE)
    today = datetime.datetime.utcnow().date()
    return success(reports.sales_report(db, ctx, date_from or today, date_to or today, branch_id))


@app.get("/reports/day-end", response_model=Envelope[DayEndReport])
def get_day_end(day: Optional[datetime.date] = None, branch_id: Optional[int] = None,
                ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    require_roles(ctx, *BACK_OFFICE)
    return success(reports.day_end(db, ctx, day or datetime.datetime.utcnow().date(), branch_id))


@app.get("/reports/menu-sales", response_model=Envelope[List[MenuSalesRow]])
def get_menu_sales(date_from: Optional[datetime.date] = None, date_to: Optional[datetime.date] = None,
                   branch_id: Optional[int] = None, ctx: RequestContext = Depends(get_context),
                   db: Session = Depends(get_db)):
    require_roles(ctx, *BACK_OFFICE)
    today = datetime.datetime.utcnow().date()
    return success(reports.menu_sales(db, ctx, date_from or today, date_to or today, branch_id))


# ==========================================
# TABLE STATUS RECONCILIATION
# ==========================================
@app.post("/tables/reconcile", response_model=Envelope[ReconcileResult])
async def reconcile_tables(ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    require_roles(ctx, BRANCH_ADMIN)
    resolved, pending = await reconcile(db, table_client.with_authorization(system_authorization()))
    return success({"resolved": resolved, "pending": pending})


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8003)

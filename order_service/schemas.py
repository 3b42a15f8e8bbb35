from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from order_service.billing import PaymentMethod
from order_service.lifecycle import INITIAL, KitchenStatus, OrderStatus, OrderType


# --- DTOs: requests ---
class OrderItemCreate(BaseModel):
    dish_id: int
    dish_name: str
    unit_price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    note: Optional[str] = None


class OrderCreate(BaseModel):
    order_type: OrderType
    hall_id: Optional[int] = None
    table_id: Optional[int] = None
    items: List[OrderItemCreate] = []
    status: OrderStatus = OrderStatus.PENDING
    note: Optional[str] = None

    @model_validator(mode="after")
    def check_status(self):
        if self.status not in INITIAL:
            raise ValueError("New orders start as Pending or Running")
        return self


class StatusChange(BaseModel):
    new_status: OrderStatus


class QuantityChange(BaseModel):
    quantity: int = Field(ge=1)


class KitchenStatusChange(BaseModel):
    status: KitchenStatus


class TableTransfer(BaseModel):
    hall_id: int
    table_id: int


class BillRequest(BaseModel):
    service_charge: float = Field(default=0, ge=0)
    discount_percentage: float = Field(default=0, ge=0, le=100)
    payment_method: PaymentMethod
    customer_id: Optional[int] = None
    bill_id: Optional[int] = None


class PaymentRequest(BaseModel):
    payment_method: PaymentMethod
    cash_received: Optional[float] = Field(default=None, ge=0)


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None
    credit_limit: float = Field(default=0, ge=0)
    branch_id: Optional[int] = None


class ReceivingCreate(BaseModel):
    amount: float = Field(gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH


# --- DTOs: responses ---
class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    dish_id: int
    dish_name: str
    unit_price: float
    quantity: int
    line_total: float
    kitchen_status: str
    note: Optional[str] = None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    display_id: str
    order_type: str
    status: str
    hall_id: Optional[int] = None
    table_id: Optional[int] = None
    subtotal: float
    service_charge: float
    discount_amount: float
    net_total: float
    payment_mode: Optional[str] = None
    customer_id: Optional[int] = None
    terminal: Optional[int] = None
    branch_id: Optional[int] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []


class BillResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    total_amount: float
    service_charge: float
    discount_percentage: float
    discount: float
    grand_total: float
    payment_method: str
    payment_status: str
    customer_id: Optional[int] = None
    cash_received: Optional[float] = None
    change_amount: Optional[float] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class KitchenOrderResponse(BaseModel):
    id: int
    display_id: str
    order_type: str
    status: str
    table_id: Optional[int] = None
    created_at: Optional[datetime] = None
    progress: float
    items: List[OrderItemResponse]


class CustomerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    branch_id: Optional[int] = None
    balance: float
    credit_limit: float


class ReceivingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    amount: float
    payment_method: str
    created_at: Optional[datetime] = None


class SalesRow(BaseModel):
    order_id: int
    display_id: str
    order_type: str
    bill_amount: float
    service_charge: float
    discount: float
    net_total: float
    payment_method: str
    payment_status: str
    is_credit: bool
    created_at: Optional[datetime] = None


class SalesTotals(BaseModel):
    bill_amount: float = 0
    service_charge: float = 0
    discount: float = 0
    net_total: float = 0
    credit_sales: float = 0


class SalesReport(BaseModel):
    date_from: date
    date_to: date
    rows: List[SalesRow]
    totals: SalesTotals


class DayEndReport(BaseModel):
    day: date
    order_count: int
    total_cash: float
    total_card: float
    total_online: float
    total_credit: float
    total_sales: float
    total_receivings: float


class MenuSalesRow(BaseModel):
    dish_id: int
    dish_name: str
    quantity: int
    revenue: float


class ReconcileResult(BaseModel):
    resolved: int
    pending: int

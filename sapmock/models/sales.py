"""
Sales & Distribution (SD) payloads

Status fields use the SAP processing codes: "A" not yet processed,
"B" partially processed, "C" completely processed.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

STATUS_PATTERN = "^[ABC]$"


class Customer(BaseModel):
    """Customer master record (KNA1 subset)"""
    customer_number: str
    name: str
    city: str = ""
    country: str = ""
    credit_limit: float = 0.0
    currency: str = "EUR"
    deletion_flag: bool = False
    created_at: Optional[datetime] = None
    changed_at: Optional[datetime] = None


class CreateCustomerRequest(BaseModel):
    customer_number: Optional[str] = Field(None, max_length=10)
    name: str = Field(..., min_length=1, max_length=35)
    city: str = Field("", max_length=35)
    country: str = Field("", max_length=3)
    credit_limit: float = Field(0.0, ge=0)
    currency: str = Field("EUR", max_length=5)


class UpdateCustomerRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=35)
    city: Optional[str] = Field(None, max_length=35)
    country: Optional[str] = Field(None, max_length=3)
    credit_limit: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, max_length=5)


class SalesOrderItem(BaseModel):
    item_number: str = ""
    material_number: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(..., ge=0)


class SalesOrder(BaseModel):
    """Sales document header with items (VBAK/VBAP subset)"""
    order_number: str
    customer_number: str
    items: List[SalesOrderItem]
    net_value: float
    currency: str = "EUR"
    status: str = "OPEN"
    delivery_status: str = "A"
    billing_status: str = "A"
    deletion_flag: bool = False
    order_date: Optional[datetime] = None
    changed_at: Optional[datetime] = None


class CreateSalesOrderRequest(BaseModel):
    customer_number: str = Field(..., min_length=1)
    items: List[SalesOrderItem] = Field(..., min_length=1)
    currency: str = Field("EUR", max_length=5)


class UpdateSalesOrderRequest(BaseModel):
    items: Optional[List[SalesOrderItem]] = Field(None, min_length=1)
    currency: Optional[str] = Field(None, max_length=5)
    status: Optional[str] = Field(None, min_length=1, max_length=20)


class DeliveryItem(BaseModel):
    item_number: str
    material_number: str
    delivery_quantity: float
    plant: str = "1000"
    storage_location: str = "0001"


class Delivery(BaseModel):
    """Outbound delivery (LIKP/LIPS subset)"""
    delivery_number: str
    delivery_type: str = "LF"
    sales_order_number: str
    ship_to_party: str
    shipping_point: str = "SHP1"
    items: List[DeliveryItem]
    total_weight: float = 0.0
    weight_unit: str = "KG"
    planned_delivery_date: Optional[datetime] = None
    delivery_status: str = "A"
    goods_issue_status: str = "A"
    billing_status: str = "A"
    deletion_flag: bool = False
    created_at: Optional[datetime] = None
    changed_at: Optional[datetime] = None


class CreateDeliveryRequest(BaseModel):
    sales_order_number: str = Field(..., min_length=1)
    shipping_point: str = Field("SHP1", min_length=1, max_length=4)
    planned_delivery_date: Optional[datetime] = None


class UpdateDeliveryRequest(BaseModel):
    shipping_point: Optional[str] = Field(None, min_length=1, max_length=4)
    planned_delivery_date: Optional[datetime] = None
    delivery_status: Optional[str] = Field(None, pattern=STATUS_PATTERN)
    goods_issue_status: Optional[str] = Field(None, pattern=STATUS_PATTERN)


class InvoiceItem(BaseModel):
    item_number: str
    material_number: str
    quantity: float
    net_price: float
    net_value: float
    tax_amount: float


class Invoice(BaseModel):
    """Billing document (VBRK/VBRP subset)"""
    invoice_number: str
    invoice_type: str = "F2"
    delivery_number: str
    sales_order_number: str
    payer: str
    items: List[InvoiceItem]
    net_value: float
    tax_amount: float
    total_value: float
    currency: str = "EUR"
    payment_status: str = "A"
    cancelled: bool = False
    invoice_date: Optional[datetime] = None
    changed_at: Optional[datetime] = None


class CreateInvoiceRequest(BaseModel):
    delivery_number: str = Field(..., min_length=1)


class UpdateInvoiceRequest(BaseModel):
    payment_status: Optional[str] = Field(None, pattern=STATUS_PATTERN)


class CustomerListResponse(BaseModel):
    customers: List[Customer]
    total_count: int
    page: int
    page_size: int


class SalesOrderListResponse(BaseModel):
    sales_orders: List[SalesOrder]
    total_count: int
    page: int
    page_size: int


class DeliveryListResponse(BaseModel):
    deliveries: List[Delivery]
    total_count: int
    page: int
    page_size: int


class InvoiceListResponse(BaseModel):
    invoices: List[Invoice]
    total_count: int
    page: int
    page_size: int

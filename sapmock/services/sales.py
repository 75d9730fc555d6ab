"""
SalesDistributionHandler Class - SD module endpoints

Covers the order-to-cash chain: customer master, sales orders, outbound
deliveries and invoices. Deletion sets the deletion flag (invoices are
cancelled instead); follow-on documents move the status of their
predecessor to "C" and reset it to "A" when they are withdrawn.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sapmock.errors import HandlerFailure, NotFoundError
from sapmock.models.data_models import EndpointRequest, SAPEndpoint
from sapmock.models.sales import (CreateCustomerRequest, CreateDeliveryRequest, CreateInvoiceRequest,
                                  CreateSalesOrderRequest, Customer, CustomerListResponse, Delivery,
                                  DeliveryItem, DeliveryListResponse, Invoice, InvoiceItem,
                                  InvoiceListResponse, SalesOrder, SalesOrderListResponse,
                                  UpdateCustomerRequest, UpdateDeliveryRequest, UpdateInvoiceRequest,
                                  UpdateSalesOrderRequest)
from sapmock.services.module_handler import ModuleHandler

logger = logging.getLogger(__name__)

CUSTOMERS = "customers"
SALES_ORDERS = "sales-orders"
DELIVERIES = "deliveries"
INVOICES = "invoices"

DEFAULT_SHIPPING_POINT = "SHP1"
TAX_RATE = 0.19
WEIGHT_PER_UNIT_KG = 1.0


def _fail(message: str, code: str) -> HandlerFailure:
    return HandlerFailure(message, code=code, message_class="SD")


class SalesDistributionHandler(ModuleHandler):
    default_module_id = "SD"
    default_name = "Sales and Distribution"

    def get_endpoints(self) -> List[SAPEndpoint]:
        return [
            SAPEndpoint("/customers", "GET", self.list_customers, response_type=CustomerListResponse),
            SAPEndpoint("/customers/{id}", "GET", self.get_customer, response_type=Customer),
            SAPEndpoint("/customers", "POST", self.create_customer,
                        request_type=CreateCustomerRequest, response_type=Customer),
            SAPEndpoint("/customers/{id}", "PUT", self.update_customer,
                        request_type=UpdateCustomerRequest, response_type=Customer),
            SAPEndpoint("/customers/{id}", "DELETE", self.delete_customer),

            SAPEndpoint("/sales-orders", "GET", self.list_sales_orders, response_type=SalesOrderListResponse),
            SAPEndpoint("/sales-orders/{id}", "GET", self.get_sales_order, response_type=SalesOrder),
            SAPEndpoint("/sales-orders", "POST", self.create_sales_order,
                        request_type=CreateSalesOrderRequest, response_type=SalesOrder),
            SAPEndpoint("/sales-orders/{id}", "PUT", self.update_sales_order,
                        request_type=UpdateSalesOrderRequest, response_type=SalesOrder),
            SAPEndpoint("/sales-orders/{id}", "DELETE", self.delete_sales_order),
            SAPEndpoint("/sales-orders/{id}/create-delivery", "POST", self.create_delivery_from_order,
                        response_type=Delivery),

            SAPEndpoint("/deliveries", "GET", self.list_deliveries, response_type=DeliveryListResponse),
            SAPEndpoint("/deliveries/{id}", "GET", self.get_delivery, response_type=Delivery),
            SAPEndpoint("/deliveries", "POST", self.create_delivery,
                        request_type=CreateDeliveryRequest, response_type=Delivery),
            SAPEndpoint("/deliveries/{id}", "PUT", self.update_delivery,
                        request_type=UpdateDeliveryRequest, response_type=Delivery),
            SAPEndpoint("/deliveries/{id}", "DELETE", self.delete_delivery),
            SAPEndpoint("/deliveries/{id}/create-invoice", "POST", self.create_invoice_from_delivery,
                        response_type=Invoice),

            SAPEndpoint("/invoices", "GET", self.list_invoices, response_type=InvoiceListResponse),
            SAPEndpoint("/invoices/{id}", "GET", self.get_invoice, response_type=Invoice),
            SAPEndpoint("/invoices", "POST", self.create_invoice,
                        request_type=CreateInvoiceRequest, response_type=Invoice),
            SAPEndpoint("/invoices/{id}", "PUT", self.update_invoice,
                        request_type=UpdateInvoiceRequest, response_type=Invoice),
            SAPEndpoint("/invoices/{id}", "DELETE", self.cancel_invoice),
        ]

    def _require(self, collection: str, record_id: str, label: str) -> Dict[str, Any]:
        record = self.load(collection, record_id)
        if record is None:
            raise NotFoundError(f"{label} {record_id} does not exist")
        return record

    # ── customers ─────────────────────────────────────────────────────────────

    def list_customers(self, request: EndpointRequest) -> CustomerListResponse:
        country = request.query_parameters.get("country")
        where = {"country": country} if country else {}
        customers = [Customer.model_validate(r) for r in self.load_all(CUSTOMERS, **where)]
        customers = [c for c in customers if not c.deletion_flag]
        page_items, page, page_size = self.paginate(request, customers)
        return CustomerListResponse(customers=page_items, total_count=len(customers), page=page, page_size=page_size)

    def get_customer(self, request: EndpointRequest) -> Customer:
        return Customer.model_validate(self._require(CUSTOMERS, self.route_id(request), "Customer"))

    def create_customer(self, request: EndpointRequest) -> Customer:
        body: CreateCustomerRequest = request.body
        with self.write_lock:
            number = body.customer_number or self.next_number(CUSTOMERS, "%010d")
            if self.load(CUSTOMERS, number) is not None:
                raise _fail(f"Customer {number} already exists", "SD001")

            now = self.now()
            customer = Customer(**body.model_dump(exclude={"customer_number"}), customer_number=number,
                                created_at=now, changed_at=now)
            self.save(CUSTOMERS, number, customer.model_dump(mode="json"))
        logger.info("Created customer %s in %s/%s", number, self.system_id, self.module_id)
        return customer

    def update_customer(self, request: EndpointRequest) -> Customer:
        customer_id = self.route_id(request)
        body: UpdateCustomerRequest = request.body
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        with self.write_lock:
            current = Customer.model_validate(self._require(CUSTOMERS, customer_id, "Customer"))
            if current.deletion_flag:
                raise _fail(f"Customer {customer_id} is marked for deletion and cannot be updated", "SD003")
            updated = current.model_copy(update={**changes, "changed_at": self.now()})
            self.save(CUSTOMERS, customer_id, updated.model_dump(mode="json"))
        return updated

    def delete_customer(self, request: EndpointRequest) -> Dict[str, Any]:
        customer_id = self.route_id(request)
        with self.write_lock:
            record = self._require(CUSTOMERS, customer_id, "Customer")
            record["deletion_flag"] = True
            record["changed_at"] = self.now().isoformat()
            self.save(CUSTOMERS, customer_id, record)
        return {"customer_number": customer_id, "deletion_flag": True,
                "message": f"Customer {customer_id} marked for deletion"}

    # ── sales orders ──────────────────────────────────────────────────────────

    def list_sales_orders(self, request: EndpointRequest) -> SalesOrderListResponse:
        customer = request.query_parameters.get("customer_number")
        where = {"customer_number": customer} if customer else {}
        orders = [SalesOrder.model_validate(r) for r in self.load_all(SALES_ORDERS, **where)]
        orders = [o for o in orders if not o.deletion_flag]
        page_items, page, page_size = self.paginate(request, orders)
        return SalesOrderListResponse(sales_orders=page_items, total_count=len(orders), page=page, page_size=page_size)

    def get_sales_order(self, request: EndpointRequest) -> SalesOrder:
        return SalesOrder.model_validate(self._require(SALES_ORDERS, self.route_id(request), "Sales order"))

    @staticmethod
    def _numbered(items):
        return [
            item if item.item_number else item.model_copy(update={"item_number": "%06d" % (10 * (i + 1))})
            for i, item in enumerate(items)
        ]

    def create_sales_order(self, request: EndpointRequest) -> SalesOrder:
        body: CreateSalesOrderRequest = request.body
        with self.write_lock:
            record = self.load(CUSTOMERS, body.customer_number)
            if record is None:
                raise _fail(f"Customer {body.customer_number} does not exist", "SD002")
            if record.get("deletion_flag"):
                raise _fail(f"Customer {body.customer_number} is marked for deletion", "SD003")

            number = self.next_number(SALES_ORDERS, "%010d")
            items = self._numbered(body.items)
            now = self.now()
            order = SalesOrder(
                order_number=number,
                customer_number=body.customer_number,
                items=items,
                net_value=round(sum(item.quantity * item.unit_price for item in items), 2),
                currency=body.currency,
                order_date=now,
                changed_at=now,
            )
            self.save(SALES_ORDERS, number, order.model_dump(mode="json"))
        logger.info("Created sales order %s for customer %s", number, body.customer_number)
        return order

    def update_sales_order(self, request: EndpointRequest) -> SalesOrder:
        order_id = self.route_id(request)
        body: UpdateSalesOrderRequest = request.body
        with self.write_lock:
            current = SalesOrder.model_validate(self._require(SALES_ORDERS, order_id, "Sales order"))
            if current.deletion_flag:
                raise _fail(f"Sales order {order_id} is marked for deletion and cannot be updated", "SD004")

            changes: Dict[str, Any] = {"changed_at": self.now()}
            if body.items is not None:
                if current.delivery_status != "A":
                    raise _fail(f"Sales order {order_id} has been delivered; items cannot be changed", "SD005")
                items = self._numbered(body.items)
                changes["items"] = items
                changes["net_value"] = round(sum(item.quantity * item.unit_price for item in items), 2)
            if body.currency is not None:
                changes["currency"] = body.currency
            if body.status is not None:
                changes["status"] = body.status

            updated = current.model_copy(update=changes)
            self.save(SALES_ORDERS, order_id, updated.model_dump(mode="json"))
        return updated

    def delete_sales_order(self, request: EndpointRequest) -> Dict[str, Any]:
        order_id = self.route_id(request)
        with self.write_lock:
            record = self._require(SALES_ORDERS, order_id, "Sales order")
            if record.get("delivery_status", "A") != "A":
                raise _fail(f"Sales order {order_id} has been delivered and cannot be deleted", "SD005")
            record["deletion_flag"] = True
            record["changed_at"] = self.now().isoformat()
            self.save(SALES_ORDERS, order_id, record)
        return {"order_number": order_id, "deletion_flag": True,
                "message": f"Sales order {order_id} marked for deletion"}

    # ── deliveries ────────────────────────────────────────────────────────────

    def list_deliveries(self, request: EndpointRequest) -> DeliveryListResponse:
        order = request.query_parameters.get("sales_order_number")
        where = {"sales_order_number": order} if order else {}
        deliveries = [Delivery.model_validate(r) for r in self.load_all(DELIVERIES, **where)]
        deliveries = [d for d in deliveries if not d.deletion_flag]
        page_items, page, page_size = self.paginate(request, deliveries)
        return DeliveryListResponse(deliveries=page_items, total_count=len(deliveries), page=page, page_size=page_size)

    def get_delivery(self, request: EndpointRequest) -> Delivery:
        return Delivery.model_validate(self._require(DELIVERIES, self.route_id(request), "Delivery"))

    def create_delivery(self, request: EndpointRequest) -> Delivery:
        body: CreateDeliveryRequest = request.body
        with self.write_lock:
            record = self.load(SALES_ORDERS, body.sales_order_number)
            if record is None:
                raise _fail(f"Sales order {body.sales_order_number} does not exist", "SD009")
            return self._deliver(SalesOrder.model_validate(record), body.shipping_point, body.planned_delivery_date)

    def create_delivery_from_order(self, request: EndpointRequest) -> Delivery:
        order_id = self.route_id(request)
        with self.write_lock:
            order = SalesOrder.model_validate(self._require(SALES_ORDERS, order_id, "Sales order"))
            return self._deliver(order, DEFAULT_SHIPPING_POINT, None)

    def _deliver(self, order: SalesOrder, shipping_point: str, planned: Optional[datetime]) -> Delivery:
        """Create the outbound delivery for a whole order; caller holds write_lock"""
        if order.deletion_flag:
            raise _fail(f"Sales order {order.order_number} is marked for deletion", "SD004")
        if order.delivery_status == "C":
            raise _fail(f"Sales order {order.order_number} has already been delivered", "SD005")

        now = self.now()
        number = self.next_number(DELIVERIES, "80%08d")
        items = [
            DeliveryItem(item_number=item.item_number, material_number=item.material_number,
                         delivery_quantity=item.quantity)
            for item in order.items
        ]
        delivery = Delivery(
            delivery_number=number,
            sales_order_number=order.order_number,
            ship_to_party=order.customer_number,
            shipping_point=shipping_point,
            items=items,
            total_weight=round(sum(i.delivery_quantity * WEIGHT_PER_UNIT_KG for i in items), 3),
            planned_delivery_date=planned or now + timedelta(days=1),
            created_at=now,
            changed_at=now,
        )
        self.save(DELIVERIES, number, delivery.model_dump(mode="json"))

        delivered = order.model_copy(update={"delivery_status": "C", "changed_at": now})
        self.save(SALES_ORDERS, order.order_number, delivered.model_dump(mode="json"))
        logger.info("Created delivery %s for sales order %s", number, order.order_number)
        return delivery

    def update_delivery(self, request: EndpointRequest) -> Delivery:
        delivery_id = self.route_id(request)
        body: UpdateDeliveryRequest = request.body
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        with self.write_lock:
            current = Delivery.model_validate(self._require(DELIVERIES, delivery_id, "Delivery"))
            if current.deletion_flag:
                raise _fail(f"Delivery {delivery_id} is marked for deletion and cannot be updated", "SD006")
            updated = current.model_copy(update={**changes, "changed_at": self.now()})
            self.save(DELIVERIES, delivery_id, updated.model_dump(mode="json"))
        return updated

    def delete_delivery(self, request: EndpointRequest) -> Dict[str, Any]:
        delivery_id = self.route_id(request)
        with self.write_lock:
            record = self._require(DELIVERIES, delivery_id, "Delivery")
            if record.get("billing_status", "A") == "C":
                raise _fail(f"Delivery {delivery_id} has been billed and cannot be deleted", "SD007")
            now = self.now().isoformat()
            record["deletion_flag"] = True
            record["changed_at"] = now
            self.save(DELIVERIES, delivery_id, record)
            self._set_status(SALES_ORDERS, record["sales_order_number"], "delivery_status", "A", now)
        return {"delivery_number": delivery_id, "deletion_flag": True,
                "message": f"Delivery {delivery_id} marked for deletion"}

    def _set_status(self, collection: str, record_id: str, field: str, value: str, changed_at: str) -> None:
        record = self.load(collection, record_id)
        if record is None:
            logger.warning("Cannot set %s on missing %s/%s", field, collection, record_id)
            return
        record[field] = value
        record["changed_at"] = changed_at
        self.save(collection, record_id, record)

    # ── invoices ──────────────────────────────────────────────────────────────

    def list_invoices(self, request: EndpointRequest) -> InvoiceListResponse:
        order = request.query_parameters.get("sales_order_number")
        where = {"sales_order_number": order} if order else {}
        invoices = [Invoice.model_validate(r) for r in self.load_all(INVOICES, **where)]
        if (request.query_parameters.get("include_cancelled") or "").lower() != "true":
            invoices = [i for i in invoices if not i.cancelled]
        page_items, page, page_size = self.paginate(request, invoices)
        return InvoiceListResponse(invoices=page_items, total_count=len(invoices), page=page, page_size=page_size)

    def get_invoice(self, request: EndpointRequest) -> Invoice:
        return Invoice.model_validate(self._require(INVOICES, self.route_id(request), "Invoice"))

    def create_invoice(self, request: EndpointRequest) -> Invoice:
        body: CreateInvoiceRequest = request.body
        with self.write_lock:
            record = self.load(DELIVERIES, body.delivery_number)
            if record is None:
                raise _fail(f"Delivery {body.delivery_number} does not exist", "SD010")
            return self._bill(Delivery.model_validate(record))

    def create_invoice_from_delivery(self, request: EndpointRequest) -> Invoice:
        delivery_id = self.route_id(request)
        with self.write_lock:
            delivery = Delivery.model_validate(self._require(DELIVERIES, delivery_id, "Delivery"))
            return self._bill(delivery)

    def _bill(self, delivery: Delivery) -> Invoice:
        """Invoice a delivery at the prices of its sales order; caller holds write_lock"""
        if delivery.deletion_flag:
            raise _fail(f"Delivery {delivery.delivery_number} is marked for deletion", "SD006")
        if delivery.billing_status == "C":
            raise _fail(f"Delivery {delivery.delivery_number} has already been billed", "SD007")

        order_record = self.load(SALES_ORDERS, delivery.sales_order_number)
        order = SalesOrder.model_validate(order_record) if order_record is not None else None
        prices = {item.item_number: item.unit_price for item in order.items} if order else {}

        items = []
        for item in delivery.items:
            price = prices.get(item.item_number, 0.0)
            net = round(item.delivery_quantity * price, 2)
            items.append(InvoiceItem(
                item_number=item.item_number,
                material_number=item.material_number,
                quantity=item.delivery_quantity,
                net_price=price,
                net_value=net,
                tax_amount=round(net * TAX_RATE, 2),
            ))

        now = self.now()
        net_value = round(sum(i.net_value for i in items), 2)
        tax_amount = round(sum(i.tax_amount for i in items), 2)
        number = self.next_number(INVOICES, "90%08d")
        invoice = Invoice(
            invoice_number=number,
            delivery_number=delivery.delivery_number,
            sales_order_number=delivery.sales_order_number,
            payer=delivery.ship_to_party,
            items=items,
            net_value=net_value,
            tax_amount=tax_amount,
            total_value=round(net_value + tax_amount, 2),
            currency=order.currency if order else "EUR",
            invoice_date=now,
            changed_at=now,
        )
        self.save(INVOICES, number, invoice.model_dump(mode="json"))

        billed = delivery.model_copy(update={"billing_status": "C", "changed_at": now})
        self.save(DELIVERIES, delivery.delivery_number, billed.model_dump(mode="json"))
        if order is not None:
            self._set_status(SALES_ORDERS, order.order_number, "billing_status", "C", now.isoformat())
        logger.info("Created invoice %s for delivery %s", number, delivery.delivery_number)
        return invoice

    def update_invoice(self, request: EndpointRequest) -> Invoice:
        invoice_id = self.route_id(request)
        body: UpdateInvoiceRequest = request.body
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        with self.write_lock:
            current = Invoice.model_validate(self._require(INVOICES, invoice_id, "Invoice"))
            if current.cancelled:
                raise _fail(f"Invoice {invoice_id} is cancelled and cannot be updated", "SD008")
            updated = current.model_copy(update={**changes, "changed_at": self.now()})
            self.save(INVOICES, invoice_id, updated.model_dump(mode="json"))
        return updated

    def cancel_invoice(self, request: EndpointRequest) -> Dict[str, Any]:
        invoice_id = self.route_id(request)
        with self.write_lock:
            record = self._require(INVOICES, invoice_id, "Invoice")
            if record.get("cancelled"):
                raise _fail(f"Invoice {invoice_id} is already cancelled", "SD008")
            now = self.now().isoformat()
            record["cancelled"] = True
            record["changed_at"] = now
            self.save(INVOICES, invoice_id, record)
            self._set_status(DELIVERIES, record["delivery_number"], "billing_status", "A", now)
            self._set_status(SALES_ORDERS, record["sales_order_number"], "billing_status", "A", now)
        return {"invoice_number": invoice_id, "cancelled": True,
                "message": f"Invoice {invoice_id} cancelled"}

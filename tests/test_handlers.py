"""Unit tests for the built-in MM and SD module handlers."""

import threading
import time
from unittest.mock import patch

import pytest

from sapmock.errors import HandlerFailure, NotFoundError, ProviderFailure
from sapmock.models.data_models import EndpointRequest
from sapmock.models.materials import CreateMaterialRequest, UpdateMaterialRequest
from sapmock.models.sales import (CreateCustomerRequest, CreateDeliveryRequest, CreateInvoiceRequest,
                                  CreateSalesOrderRequest, UpdateCustomerRequest, UpdateDeliveryRequest,
                                  UpdateInvoiceRequest, UpdateSalesOrderRequest)
from sapmock.services.data_provider import InMemoryMockDataProvider
from sapmock.services.materials import MaterialsManagementHandler
from sapmock.services.sales import SalesDistributionHandler


def _request(method='GET', path='/', body=None, route=None, query=None):
    return EndpointRequest(
        system_id='ERP01',
        module_id='MM',
        method=method,
        path=path,
        body=body,
        route_parameters=route or {},
        query_parameters=query or {},
    )


class _SlowProvider(InMemoryMockDataProvider):
    """Widens the gap between reading and writing a record"""

    def read(self, key):
        time.sleep(0.002)
        return super().read(key)


def _run_concurrently(target, count=8):
    barrier = threading.Barrier(count)
    results, errors = [], []

    def worker():
        barrier.wait()
        try:
            results.append(target())
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def _material(number, material_type='ROH', group='001', deleted=False):
    return {
        'material_number': number,
        'description': f'Material {number}',
        'material_type': material_type,
        'material_group': group,
        'base_unit_of_measure': 'EA',
        'deletion_flag': deleted,
    }


class TestMaterialsManagementHandler:
    """Test cases for MaterialsManagementHandler."""

    def setup_method(self):
        """Set up test fixtures."""
        self.provider = InMemoryMockDataProvider(seed={
            'ERP01/MM/materials/MAT-000001': _material('MAT-000001'),
            'ERP01/MM/materials/MAT-000002': _material('MAT-000002', material_type='HALB', group='002'),
            'ERP01/MM/materials/MAT-000003': _material('MAT-000003', deleted=True),
        })
        self.handler = MaterialsManagementHandler(self.provider, 'ERP01')

    def test_build_module(self):
        """Test the module definition."""
        module = self.handler.build_module()

        assert module.module_id == 'MM'
        assert module.name == 'Materials Management'
        assert module.system_id == 'ERP01'
        assert {(e.method, e.path) for e in module.endpoints} == {
            ('GET', '/materials/{id}'),
            ('GET', '/materials'),
            ('POST', '/materials'),
            ('PUT', '/materials/{id}'),
            ('DELETE', '/materials/{id}'),
        }

    def test_get_material(self):
        """Test reading a single material."""
        material = self.handler.get_material(_request(route={'id': 'MAT-000002'}))

        assert material.material_type == 'HALB'

    def test_get_missing_material(self):
        """Test that unknown materials raise NotFoundError."""
        with pytest.raises(NotFoundError):
            self.handler.get_material(_request(route={'id': 'MAT-999999'}))

    def test_list_hides_deleted_materials(self):
        """Test that flagged materials are excluded from listings."""
        result = self.handler.list_materials(_request())

        assert result.total_count == 2
        assert [m.material_number for m in result.materials] == ['MAT-000001', 'MAT-000002']

    def test_list_filters_case_insensitively(self):
        """Test material_type filtering."""
        result = self.handler.list_materials(_request(query={'material_type': 'halb'}))

        assert [m.material_number for m in result.materials] == ['MAT-000002']

    def test_list_pagination(self):
        """Test page and page_size handling."""
        result = self.handler.list_materials(_request(query={'page': '2', 'page_size': '1'}))

        assert result.page == 2
        assert result.page_size == 1
        assert result.total_count == 2
        assert [m.material_number for m in result.materials] == ['MAT-000002']

    def test_list_invalid_page_size_falls_back(self):
        """Test that out-of-range page sizes use the default."""
        result = self.handler.list_materials(_request(query={'page_size': '5000'}))

        assert result.page_size == 50

    def test_create_material_generates_number(self):
        """Test creation with a generated material number."""
        body = CreateMaterialRequest(description='Gasket', material_type='ROH', base_unit_of_measure='EA')
        material = self.handler.create_material(_request('POST', body=body))

        assert material.material_number == 'MAT-000004'
        assert material.created_at is not None
        assert self.provider.read('ERP01/MM/materials/MAT-000004')['description'] == 'Gasket'

    def test_create_duplicate_material(self):
        """Test that an existing number is rejected with MM003."""
        body = CreateMaterialRequest(material_number='MAT-000001', description='Dup',
                                     material_type='ROH', base_unit_of_measure='EA')

        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.create_material(_request('POST', body=body))
        assert exc_info.value.code == 'MM003'

    def test_update_material(self):
        """Test a partial update."""
        body = UpdateMaterialRequest(description='Renamed', standard_price=9.5)
        material = self.handler.update_material(_request('PUT', body=body, route={'id': 'MAT-000001'}))

        assert material.description == 'Renamed'
        assert material.standard_price == 9.5
        assert material.material_type == 'ROH'
        assert self.provider.read('ERP01/MM/materials/MAT-000001')['description'] == 'Renamed'

    def test_update_deleted_material(self):
        """Test that flagged materials cannot be changed."""
        body = UpdateMaterialRequest(description='Too late')

        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.update_material(_request('PUT', body=body, route={'id': 'MAT-000003'}))
        assert exc_info.value.code == 'MM004'

    def test_delete_sets_flag(self):
        """Test that deletion flags instead of removing."""
        result = self.handler.delete_material(_request('DELETE', route={'id': 'MAT-000001'}))

        assert result['deletion_flag'] is True
        assert self.provider.read('ERP01/MM/materials/MAT-000001')['deletion_flag'] is True

    def test_missing_route_id(self):
        """Test that an empty id is a ValueError."""
        with pytest.raises(ValueError):
            self.handler.get_material(_request(route={'id': ' '}))

    def test_failed_write_raises_provider_failure(self):
        """Test that a provider write reporting failure is not treated as success."""
        body = CreateMaterialRequest(description='Gasket', material_type='ROH', base_unit_of_measure='EA')

        with patch.object(self.provider, 'write', return_value=False):
            with pytest.raises(ProviderFailure):
                self.handler.create_material(_request('POST', body=body))
        assert self.provider.read('ERP01/MM/materials/MAT-000004') is None

    def test_concurrent_creates_get_unique_numbers(self):
        """Test that parallel creates never allocate the same material number."""
        handler = MaterialsManagementHandler(_SlowProvider(), 'ERP01')
        body = CreateMaterialRequest(description='Bolt', material_type='ROH', base_unit_of_measure='EA')

        results, errors = _run_concurrently(lambda: handler.create_material(_request('POST', body=body)))

        assert errors == []
        numbers = sorted(m.material_number for m in results)
        assert numbers == ['MAT-%06d' % n for n in range(1, 9)]
        assert handler.list_materials(_request()).total_count == 8


class TestSalesDistributionHandler:
    """Test cases for SalesDistributionHandler."""

    def setup_method(self):
        """Set up test fixtures."""
        self.provider = InMemoryMockDataProvider(seed={
            'ERP01/SD/customers/0000000001': {'customer_number': '0000000001', 'name': 'Becker', 'country': 'DE'},
            'ERP01/SD/customers/0000000002': {'customer_number': '0000000002', 'name': 'Acme', 'country': 'US'},
        })
        self.handler = SalesDistributionHandler(self.provider, 'ERP01', 'SD')

    def test_list_customers_by_country(self):
        """Test filtering customers by country."""
        result = self.handler.list_customers(_request(query={'country': 'US'}))

        assert [c.name for c in result.customers] == ['Acme']

    def test_get_missing_customer(self):
        """Test that unknown customers raise NotFoundError."""
        with pytest.raises(NotFoundError):
            self.handler.get_customer(_request(route={'id': '0000000099'}))

    def test_create_customer(self):
        """Test customer creation with a generated number."""
        customer = self.handler.create_customer(_request('POST', body=CreateCustomerRequest(name='Nordwind', country='SE')))

        assert customer.customer_number == '0000000003'
        assert self.handler.get_customer(_request(route={'id': '0000000003'})).name == 'Nordwind'

    def test_create_duplicate_customer(self):
        """Test that an existing number is rejected with SD001."""
        body = CreateCustomerRequest(customer_number='0000000001', name='Again')

        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.create_customer(_request('POST', body=body))
        assert exc_info.value.code == 'SD001'

    def test_create_sales_order(self):
        """Test that net value is computed from the items."""
        body = CreateSalesOrderRequest(
            customer_number='0000000001',
            items=[
                {'material_number': 'MAT-000001', 'quantity': 10, 'unit_price': 0.12},
                {'material_number': 'MAT-000002', 'quantity': 1, 'unit_price': 245.0},
            ],
        )
        order = self.handler.create_sales_order(_request('POST', body=body))

        assert order.order_number == '0000000001'
        assert order.net_value == 246.2
        assert order.status == 'OPEN'

        listed = self.handler.list_sales_orders(_request(query={'customer_number': '0000000001'}))
        assert [o.order_number for o in listed.sales_orders] == ['0000000001']

    def test_sales_order_for_unknown_customer(self):
        """Test that orders need an existing customer."""
        body = CreateSalesOrderRequest(
            customer_number='0000000099',
            items=[{'material_number': 'MAT-000001', 'quantity': 1, 'unit_price': 1.0}],
        )

        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.create_sales_order(_request('POST', body=body))
        assert exc_info.value.code == 'SD002'

    def test_build_module_covers_document_flow(self):
        """Test that the SD module exposes every document endpoint."""
        endpoints = {(e.method, e.path) for e in self.handler.build_module().endpoints}

        assert len(endpoints) == 21
        for collection in ('/customers', '/sales-orders', '/deliveries', '/invoices'):
            assert ('GET', collection) in endpoints
            assert ('POST', collection) in endpoints
            assert ('GET', collection + '/{id}') in endpoints
            assert ('PUT', collection + '/{id}') in endpoints
            assert ('DELETE', collection + '/{id}') in endpoints
        assert ('POST', '/sales-orders/{id}/create-delivery') in endpoints
        assert ('POST', '/deliveries/{id}/create-invoice') in endpoints

    def test_update_customer(self):
        """Test that only the provided customer fields change."""
        body = UpdateCustomerRequest(city='Hamburg', credit_limit=1000)
        customer = self.handler.update_customer(_request('PUT', body=body, route={'id': '0000000001'}))

        assert customer.city == 'Hamburg'
        assert customer.credit_limit == 1000
        assert customer.name == 'Becker'
        assert self.provider.read('ERP01/SD/customers/0000000001')['city'] == 'Hamburg'

    def test_delete_customer(self):
        """Test that deleting flags the customer and blocks further use."""
        result = self.handler.delete_customer(_request('DELETE', route={'id': '0000000002'}))

        assert result['deletion_flag'] is True
        assert [c.name for c in self.handler.list_customers(_request()).customers] == ['Becker']

        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.update_customer(_request('PUT', body=UpdateCustomerRequest(city='X'),
                                                  route={'id': '0000000002'}))
        assert exc_info.value.code == 'SD003'

        body = CreateSalesOrderRequest(
            customer_number='0000000002',
            items=[{'material_number': 'MAT-000001', 'quantity': 1, 'unit_price': 1.0}],
        )
        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.create_sales_order(_request('POST', body=body))
        assert exc_info.value.code == 'SD003'

    def test_concurrent_sales_orders_get_unique_numbers(self):
        """Test that parallel order creation never reuses an order number."""
        provider = _SlowProvider(seed={
            'ERP01/SD/customers/0000000001': {'customer_number': '0000000001', 'name': 'Becker'},
        })
        handler = SalesDistributionHandler(provider, 'ERP01', 'SD')
        body = CreateSalesOrderRequest(
            customer_number='0000000001',
            items=[{'material_number': 'MAT-000001', 'quantity': 1, 'unit_price': 1.0}],
        )

        results, errors = _run_concurrently(lambda: handler.create_sales_order(_request('POST', body=body)))

        assert errors == []
        assert sorted(o.order_number for o in results) == ['%010d' % n for n in range(1, 9)]
        assert handler.list_sales_orders(_request()).total_count == 8


class TestOrderToCash:
    """Test cases for sales orders, deliveries and invoices."""

    def setup_method(self):
        """Set up test fixtures."""
        self.provider = InMemoryMockDataProvider(seed={
            'ERP01/SD/customers/0000000001': {'customer_number': '0000000001', 'name': 'Becker', 'country': 'DE'},
        })
        self.handler = SalesDistributionHandler(self.provider, 'ERP01', 'SD')
        self.order = self.handler.create_sales_order(_request('POST', body=CreateSalesOrderRequest(
            customer_number='0000000001',
            items=[
                {'material_number': 'MAT-000001', 'quantity': 10, 'unit_price': 2.5},
                {'material_number': 'MAT-000002', 'quantity': 2, 'unit_price': 100.0},
            ],
        )))

    def _order(self):
        return self.handler.get_sales_order(_request(route={'id': self.order.order_number}))

    def _deliver(self):
        return self.handler.create_delivery_from_order(_request('POST', route={'id': self.order.order_number}))

    def test_order_items_are_numbered(self):
        """Test that items get SAP style item numbers."""
        assert [i.item_number for i in self.order.items] == ['000010', '000020']
        assert self.order.net_value == 225.0

    def test_update_sales_order_recomputes_value(self):
        """Test that replacing items recalculates the net value."""
        body = UpdateSalesOrderRequest(items=[{'material_number': 'MAT-000003', 'quantity': 4, 'unit_price': 5.0}])
        order = self.handler.update_sales_order(_request('PUT', body=body, route={'id': self.order.order_number}))

        assert order.net_value == 20.0
        assert [i.material_number for i in order.items] == ['MAT-000003']
        assert order.customer_number == '0000000001'

    def test_delete_sales_order(self):
        """Test that deleting flags the order and hides it from listings."""
        result = self.handler.delete_sales_order(_request('DELETE', route={'id': self.order.order_number}))

        assert result['deletion_flag'] is True
        assert self.handler.list_sales_orders(_request()).total_count == 0
        with pytest.raises(HandlerFailure) as exc_info:
            self._deliver()
        assert exc_info.value.code == 'SD004'

    def test_create_delivery_from_order(self):
        """Test that a delivery copies the order items and completes the order's delivery status."""
        delivery = self._deliver()

        assert delivery.delivery_number == '8000000001'
        assert delivery.delivery_type == 'LF'
        assert delivery.ship_to_party == '0000000001'
        assert delivery.shipping_point == 'SHP1'
        assert [(i.item_number, i.delivery_quantity) for i in delivery.items] == [('000010', 10), ('000020', 2)]
        assert delivery.total_weight == 12.0
        assert delivery.planned_delivery_date > delivery.created_at
        assert self._order().delivery_status == 'C'

    def test_order_is_delivered_once(self):
        """Test that a delivered order cannot be delivered, changed or deleted again."""
        self._deliver()

        with pytest.raises(HandlerFailure) as exc_info:
            self._deliver()
        assert exc_info.value.code == 'SD005'

        body = UpdateSalesOrderRequest(items=[{'material_number': 'MAT-000003', 'quantity': 1, 'unit_price': 1.0}])
        with pytest.raises(HandlerFailure):
            self.handler.update_sales_order(_request('PUT', body=body, route={'id': self.order.order_number}))
        with pytest.raises(HandlerFailure):
            self.handler.delete_sales_order(_request('DELETE', route={'id': self.order.order_number}))

    def test_create_delivery_from_body(self):
        """Test POST /deliveries with the order number in the payload."""
        body = CreateDeliveryRequest(sales_order_number=self.order.order_number, shipping_point='SHP2')
        delivery = self.handler.create_delivery(_request('POST', body=body))

        assert delivery.shipping_point == 'SHP2'
        listed = self.handler.list_deliveries(_request(query={'sales_order_number': self.order.order_number}))
        assert [d.delivery_number for d in listed.deliveries] == [delivery.delivery_number]

    def test_create_delivery_for_unknown_order(self):
        """Test that referenced orders must exist."""
        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.create_delivery(_request('POST', body=CreateDeliveryRequest(sales_order_number='0000000099')))
        assert exc_info.value.code == 'SD009'

        with pytest.raises(NotFoundError):
            self.handler.create_delivery_from_order(_request('POST', route={'id': '0000000099'}))

    def test_update_delivery(self):
        """Test a partial delivery update."""
        delivery = self._deliver()
        body = UpdateDeliveryRequest(goods_issue_status='C')
        updated = self.handler.update_delivery(_request('PUT', body=body, route={'id': delivery.delivery_number}))

        assert updated.goods_issue_status == 'C'
        assert updated.shipping_point == 'SHP1'

    def test_delete_delivery_reopens_order(self):
        """Test that withdrawing a delivery lets the order be delivered again."""
        delivery = self._deliver()
        self.handler.delete_delivery(_request('DELETE', route={'id': delivery.delivery_number}))

        assert self._order().delivery_status == 'A'
        assert self.handler.list_deliveries(_request()).total_count == 0
        assert self._deliver().delivery_number == '8000000002'

    def test_create_invoice_from_delivery(self):
        """Test that an invoice prices the delivery with the order prices and tax."""
        delivery = self._deliver()
        invoice = self.handler.create_invoice_from_delivery(_request('POST', route={'id': delivery.delivery_number}))

        assert invoice.invoice_number == '9000000001'
        assert invoice.invoice_type == 'F2'
        assert invoice.payer == '0000000001'
        assert [i.net_price for i in invoice.items] == [2.5, 100.0]
        assert invoice.net_value == pytest.approx(225.0)
        assert invoice.tax_amount == pytest.approx(42.75)
        assert invoice.total_value == pytest.approx(267.75)
        assert self.handler.get_delivery(_request(route={'id': delivery.delivery_number})).billing_status == 'C'
        assert self._order().billing_status == 'C'

    def test_delivery_is_billed_once(self):
        """Test that a billed delivery cannot be billed or deleted again."""
        delivery = self._deliver()
        self.handler.create_invoice(_request('POST', body=CreateInvoiceRequest(delivery_number=delivery.delivery_number)))

        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.create_invoice_from_delivery(_request('POST', route={'id': delivery.delivery_number}))
        assert exc_info.value.code == 'SD007'
        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.delete_delivery(_request('DELETE', route={'id': delivery.delivery_number}))
        assert exc_info.value.code == 'SD007'

    def test_create_invoice_for_unknown_delivery(self):
        """Test that referenced deliveries must exist."""
        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.create_invoice(_request('POST', body=CreateInvoiceRequest(delivery_number='8000000099')))
        assert exc_info.value.code == 'SD010'

    def test_cancel_invoice(self):
        """Test that cancelling reopens billing and hides the invoice by default."""
        delivery = self._deliver()
        invoice = self.handler.create_invoice_from_delivery(_request('POST', route={'id': delivery.delivery_number}))
        self.handler.cancel_invoice(_request('DELETE', route={'id': invoice.invoice_number}))

        assert self.handler.get_delivery(_request(route={'id': delivery.delivery_number})).billing_status == 'A'
        assert self._order().billing_status == 'A'
        assert self.handler.list_invoices(_request()).total_count == 0
        assert self.handler.list_invoices(_request(query={'include_cancelled': 'true'})).total_count == 1

        with pytest.raises(HandlerFailure) as exc_info:
            self.handler.cancel_invoice(_request('DELETE', route={'id': invoice.invoice_number}))
        assert exc_info.value.code == 'SD008'
        with pytest.raises(HandlerFailure):
            self.handler.update_invoice(_request('PUT', body=UpdateInvoiceRequest(payment_status='C'),
                                                 route={'id': invoice.invoice_number}))

    def test_update_invoice_payment_status(self):
        """Test recording a payment on an invoice."""
        delivery = self._deliver()
        invoice = self.handler.create_invoice_from_delivery(_request('POST', route={'id': delivery.delivery_number}))
        updated = self.handler.update_invoice(_request('PUT', body=UpdateInvoiceRequest(payment_status='C'),
                                                       route={'id': invoice.invoice_number}))

        assert updated.payment_status == 'C'
        assert self.handler.get_invoice(_request(route={'id': invoice.invoice_number})).payment_status == 'C'

    def test_get_missing_documents(self):
        """Test that unknown deliveries and invoices raise NotFoundError."""
        with pytest.raises(NotFoundError):
            self.handler.get_delivery(_request(route={'id': '8000000099'}))
        with pytest.raises(NotFoundError):
            self.handler.get_invoice(_request(route={'id': '9000000099'}))

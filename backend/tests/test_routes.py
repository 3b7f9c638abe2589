# Overview: Pytest coverage for the HTTP surface; tenant headers, status codes and payloads.

from stockledger.models import ReceiptStatus


class TestTenantHeaders:

    def test_missing_tenant_header(self, client, db_session):
        response = client.get('/api/warehouses')
        assert response.status_code == 400

    def test_unknown_tenant(self, client, db_session):
        response = client.get('/api/warehouses', headers={'X-Tenant-Id': '999999'})
        assert response.status_code == 403

    def test_inactive_tenant(self, client, db_session, tenant):
        tenant.is_active = False
        db_session.commit()

        response = client.get('/api/warehouses', headers={'X-Tenant-Id': str(tenant.id)})
        assert response.status_code == 403

    def test_bad_user_header(self, client, db_session, tenant):
        response = client.get('/api/warehouses', headers={'X-Tenant-Id': str(tenant.id), 'X-User-Id': 'abc'})
        assert response.status_code == 400


class TestOrderRoutes:

    def test_order_round_trip(self, client, headers, warehouse, stocked):
        response = client.post('/api/orders', headers=headers, json={
            'items': [
                {'product_id': stocked['A'].id, 'quantity': 5},
                {'product_id': stocked['B'].id, 'quantity': 2},
            ],
        })
        assert response.status_code == 201
        order_id = response.json['order']['id']
        assert response.json['order']['status'] == 'pending'
        assert len(response.json['order']['lines']) == 2

        response = client.post(f'/api/orders/{order_id}/complete', headers=headers)
        assert response.status_code == 200
        assert response.json['order']['status'] == 'completed'
        assert response.json['previous_status'] == 'pending'
        assert response.json['inventory']['reason'] == 'deducted'

        response = client.post(f'/api/orders/{order_id}/complete', headers=headers)
        assert response.status_code == 409
        assert response.json['code'] == 'ALREADY_IN_STATE'

        response = client.get('/api/inventory/positions', headers=headers)
        quantities = {p['product_id']: p['quantity'] for p in response.json['positions']}
        assert quantities == {stocked['A'].id: 15, stocked['B'].id: 8}

        response = client.post(f'/api/orders/{order_id}/cancel', headers=headers)
        assert response.status_code == 200
        assert response.json['order']['status'] == 'cancelled'

        response = client.get(f'/api/orders/{order_id}/movements', headers=headers)
        assert [m['type'] for m in response.json['movements']] == ['out', 'out', 'return', 'return']

        response = client.get('/api/inventory/positions', headers=headers)
        quantities = {p['product_id']: p['quantity'] for p in response.json['positions']}
        assert quantities == {stocked['A'].id: 20, stocked['B'].id: 10}

    def test_complete_without_warehouse(self, client, headers, products, make_order, tenant):
        order = make_order(tenant.id, {products['A'].id: 1})

        response = client.post(f'/api/orders/{order.id}/complete', headers=headers)

        assert response.status_code == 422
        assert response.json['code'] == 'NO_WAREHOUSE_AVAILABLE'

    def test_patch_status(self, client, headers, order):
        response = client.patch(f'/api/orders/{order.id}/status', headers=headers, json={'status': 'processing'})
        assert response.status_code == 200
        assert response.json['order']['status'] == 'processing'

        response = client.patch(f'/api/orders/{order.id}/status', headers=headers, json={'status': 'refunded'})
        assert response.status_code == 409
        assert response.json['code'] == 'INVALID_TRANSITION'

    def test_patch_status_requires_status(self, client, headers, order):
        response = client.patch(f'/api/orders/{order.id}/status', headers=headers, json={})
        assert response.status_code == 400

    def test_other_tenant_order_is_404(self, client, order, other_tenant):
        response = client.get(f'/api/orders/{order.id}', headers={'X-Tenant-Id': str(other_tenant.id)})
        assert response.status_code == 404

    def test_create_order_validation(self, client, headers):
        response = client.post('/api/orders', headers=headers, json={'items': []})
        assert response.status_code == 400

    def test_patch_order_payment_fields(self, client, headers, order):
        response = client.patch(f'/api/orders/{order.id}', headers=headers, json={
            'payment_status': 'partial',
            'notes': 'deposit taken',
        })
        assert response.status_code == 200
        assert response.json['order']['payment_status'] == 'partial'
        assert response.json['order']['notes'] == 'deposit taken'
        assert response.json['order']['status'] == 'pending'

        response = client.patch(f'/api/orders/{order.id}', headers=headers, json={'payment_status': 'bartered'})
        assert response.status_code == 400

        response = client.patch(f'/api/orders/{order.id}', headers=headers, json={'status': 'completed'})
        assert response.status_code == 400


class TestOrderListing:

    def test_pagination(self, client, headers, tenant, products, make_order):
        for _ in range(3):
            make_order(tenant.id, {products['A'].id: 1})

        response = client.get('/api/orders?page=2&per_page=2', headers=headers)

        assert response.status_code == 200
        assert response.json['count'] == 1
        assert response.json['pagination'] == {
            'page': 2,
            'per_page': 2,
            'total': 3,
            'total_pages': 2,
            'has_next': False,
            'has_prev': True,
        }

    def test_status_and_customer_filters(self, client, headers, tenant, products, make_order):
        from stockledger.services import order_service

        first = make_order(tenant.id, {products['A'].id: 1})
        order_service.create_order(
            tenant_id=tenant.id, actor_user_id=1, customer_id=77,
            lines=[{'product_id': products['A'].id, 'quantity': 1}],
        )
        order_service.cancel_order(first.id, tenant.id, 1)

        response = client.get('/api/orders?status=cancelled', headers=headers)
        assert [o['id'] for o in response.json['orders']] == [first.id]

        response = client.get('/api/orders?customer_id=77', headers=headers)
        assert [o['customer_id'] for o in response.json['orders']] == [77]

    def test_search_matches_order_number(self, client, headers, tenant, products, make_order):
        target = make_order(tenant.id, {products['A'].id: 1})
        make_order(tenant.id, {products['A'].id: 1})

        response = client.get(f'/api/orders?search={target.order_number}', headers=headers)

        assert [o['id'] for o in response.json['orders']] == [target.id]

    def test_unknown_status_filter_is_400(self, client, headers):
        response = client.get('/api/orders?status=shipped', headers=headers)

        assert response.status_code == 400
        assert response.json['details']['field'] == 'status'


class TestInventoryRoutes:

    def test_adjust_and_stats(self, client, headers, warehouse, products):
        response = client.post('/api/inventory/adjust', headers=headers, json={
            'product_id': products['A'].id,
            'warehouse_id': warehouse.id,
            'quantity': 4,
            'adjustment_type': 'set',
        })
        assert response.status_code == 200
        assert response.json['position']['quantity'] == 4
        assert response.json['movement']['type'] == 'adjustment'

        response = client.get('/api/inventory/stats', headers=headers)
        assert response.json['low_stock_items'] == 1

        response = client.get('/api/inventory/reconcile', headers=headers)
        assert response.json['in_sync'] is True

    def test_adjust_requires_fields(self, client, headers):
        response = client.post('/api/inventory/adjust', headers=headers, json={'quantity': 1})
        assert response.status_code == 400

    def test_movements_bad_reference_type(self, client, headers):
        response = client.get('/api/inventory/movements?reference_type=NOPE', headers=headers)
        assert response.status_code == 400

    def test_movements_since_filter(self, client, headers, order, stocked):
        response = client.get('/api/inventory/movements?since=2000-01-01T00:00:00Z', headers=headers)
        assert response.status_code == 200
        assert len(response.json['movements']) == 2

        response = client.get('/api/inventory/movements?since=2999-01-01T00:00:00%2B02:00', headers=headers)
        assert response.json['movements'] == []

        response = client.get('/api/inventory/movements?since=yesterday', headers=headers)
        assert response.status_code == 400


class TestWarehouseAndReceiptRoutes:

    def test_create_and_deactivate_warehouse(self, client, headers):
        response = client.post('/api/warehouses', headers=headers, json={'name': 'Dock'})
        assert response.status_code == 201
        warehouse_id = response.json['warehouse']['id']

        response = client.patch(f'/api/warehouses/{warehouse_id}', headers=headers, json={'status': 'inactive'})
        assert response.status_code == 200
        assert response.json['warehouse']['status'] == 'inactive'

        response = client.get('/api/warehouses?active_only=true', headers=headers)
        assert response.json['warehouses'] == []

    def test_cancel_voids_receipt(self, client, headers, order):
        client.post(f'/api/orders/{order.id}/complete', headers=headers)
        response = client.post('/api/receipts', headers=headers, json={'order_id': order.id})
        assert response.status_code == 201
        receipt_id = response.json['receipt']['id']

        response = client.post(f'/api/orders/{order.id}/cancel', headers=headers)
        assert response.json['receipts']['voided_receipt_ids'] == [receipt_id]

        response = client.get(f'/api/receipts?order_id={order.id}', headers=headers)
        assert response.json['receipts'][0]['status'] == ReceiptStatus.VOIDED.value

    def test_void_requires_reason(self, client, headers, order):
        response = client.post('/api/receipts', headers=headers, json={'order_id': order.id})
        receipt_id = response.json['receipt']['id']

        response = client.post(f'/api/receipts/{receipt_id}/void', headers=headers, json={})
        assert response.status_code == 400


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.json['status'] == 'healthy'

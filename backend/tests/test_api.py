"""
HTTP API tests.

Exercise the blueprints end to end through the Flask test client: session
auth, role checks, the transfer/confirm flow, checkout, gateway webhooks and
the sale status stream.
"""

import json
from datetime import timedelta

import httpx
import pytest

from aurora.models import Sale, StockMovement
from aurora.models.users import ROLE_PROMOTER, ROLE_PARTNER
from aurora.services.locations import Location
from aurora.services.sale_service import complete_sale, create_sale


def _events(body: bytes) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.decode().splitlines()
        if line.startswith("data: ")
    ]


class TestUnauthenticatedAccess:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("GET", "/api/products"),
            ("GET", "/api/pdvs"),
            ("GET", "/api/customers"),
            ("POST", "/api/movements"),
            ("GET", "/api/inventory/central"),
            ("POST", "/api/sales"),
            ("GET", "/api/sales/1/events"),
            ("GET", "/api/commissions"),
            ("POST", "/api/returns"),
            ("GET", "/api/dashboard/admin"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"


class TestAuth:
    def test_login_and_me(self, client, db_session, promoter, login):
        headers = login(promoter)

        response = client.get('/api/auth/me', headers=headers)

        assert response.status_code == 200
        assert response.json['user']['email'] == promoter.email
        assert 'password_hash' not in response.json['user']

    def test_wrong_password(self, client, db_session, promoter):
        response = client.post('/api/auth/login', json={'email': promoter.email, 'password': 'Wrong123'})
        assert response.status_code == 401

    def test_missing_fields(self, client, db_session):
        assert client.post('/api/auth/login', json={'email': 'x@aurora.test'}).status_code == 400

    def test_no_token(self, client, db_session):
        assert client.get('/api/auth/me').status_code == 401
        assert client.get('/api/auth/me', headers={'Authorization': 'Bearer not-a-token'}).status_code == 401

    def test_logout_revokes_token(self, client, db_session, promoter, login):
        headers = login(promoter)

        assert client.post('/api/auth/logout', headers=headers).status_code == 200
        assert client.get('/api/auth/me', headers=headers).status_code == 401

    def test_role_check(self, client, db_session, promoter, admin, login):
        response = client.get('/api/users', headers=login(promoter))

        assert response.status_code == 403
        assert client.get('/api/users', headers=login(admin)).status_code == 200


class TestTransferFlow:
    def test_ship_confirm_and_see_stock(self, client, db_session, admin, promoter, product, make_user, login):
        admin_headers = login(admin)
        promoter_headers = login(promoter)
        other_headers = login(make_user(ROLE_PROMOTER))

        response = client.post('/api/movements/central-intake', headers=admin_headers,
                               json={'product_id': product.id, 'quantity': 10})
        assert response.status_code == 201

        response = client.post('/api/movements/transfer-to-promoter', headers=admin_headers,
                               json={'product_id': product.id, 'promoter_id': promoter.id, 'quantity': 4})
        assert response.status_code == 201
        movement = response.json['movement']
        assert movement['state'] == 'PENDING'

        pending_url = f'/api/movements/pending?type=PROMOTER&id={promoter.id}'
        response = client.get(pending_url, headers=promoter_headers)
        assert response.status_code == 200
        assert response.json['count'] == 1
        assert response.json['groups'][0]['items'][0]['id'] == movement['id']

        assert client.get(pending_url, headers=other_headers).status_code == 403

        confirm_body = {'movement_ids': [movement['id']], 'destination': {'type': 'PROMOTER', 'id': promoter.id}}
        assert client.post('/api/movements/confirm', headers=other_headers, json=confirm_body).status_code == 403

        response = client.post('/api/movements/confirm', headers=promoter_headers, json=confirm_body)
        assert response.status_code == 200
        assert response.json['items'][0]['state'] == 'APPLIED'

        response = client.post('/api/movements/confirm', headers=promoter_headers, json=confirm_body)
        assert response.status_code == 400

        response = client.get(f'/api/inventory/PROMOTER/{promoter.id}', headers=promoter_headers)
        assert response.json['items'][0]['quantity'] == 4

        response = client.get('/api/inventory/central', headers=admin_headers)
        assert response.json['items'][0]['qty_central'] == 6
        assert response.json['items'][0]['qty_in_field'] == 4

    def test_promoter_cannot_send_from_central(self, client, db_session, promoter, product, stock, login):
        stock(Location.central(), product, 5)

        response = client.post('/api/movements', headers=login(promoter), json={
            'product_id': product.id,
            'quantity': 1,
            'kind': 'TRANSFER',
            'origin': {'type': 'CENTRAL'},
            'destination': {'type': 'PROMOTER', 'id': promoter.id},
        })

        assert response.status_code == 403

    def test_overdraw_is_rejected(self, client, db_session, admin, promoter, product, login):
        response = client.post('/api/movements/transfer-to-promoter', headers=login(admin),
                               json={'product_id': product.id, 'promoter_id': promoter.id, 'quantity': 1})

        assert response.status_code == 400
        assert 'Insufficient stock' in response.json['error']


class TestCheckout:
    def _stocked(self, stock, pdv, product, quantity=5):
        stock(Location.pdv(pdv.id), product, quantity)

    def test_partner_cash_sale(self, client, db_session, pdv, product, partner, stock, login):
        self._stocked(stock, pdv, product)

        response = client.post('/api/sales', headers=login(partner), json={
            'pdv_id': pdv.id,
            'payment_method': 'cash',
            'items': [{'product_id': product.id, 'quantity': 2}],
            'customer': {'name': 'Maria', 'whatsapp': '31999990000'},
        })

        assert response.status_code == 201
        sale = response.json['sale']
        assert sale['status'] == 'COMPLETED'
        assert sale['total_cents'] == 18000
        assert sale['customer_name'] == 'Maria'
        assert sale['items'][0]['quantity'] == 2

    def test_insufficient_stock_details(self, client, db_session, pdv, product, partner, stock, login):
        self._stocked(stock, pdv, product, 1)

        response = client.post('/api/sales', headers=login(partner), json={
            'pdv_id': pdv.id,
            'payment_method': 'PIX',
            'items': [{'product_id': product.id, 'quantity': 3}],
        })

        assert response.status_code == 400
        assert response.json['details']['items'][0]['on_hand'] == 1

    def test_other_partner_is_forbidden(self, client, db_session, pdv, product, make_user, stock, login):
        self._stocked(stock, pdv, product)
        stranger = make_user(ROLE_PARTNER)

        response = client.post('/api/sales', headers=login(stranger), json={
            'pdv_id': pdv.id,
            'payment_method': 'CASH',
            'items': [{'product_id': product.id, 'quantity': 1}],
        })

        assert response.status_code == 403

    def test_promoter_cannot_checkout(self, client, db_session, pdv, promoter, login):
        response = client.post('/api/sales', headers=login(promoter), json={'pdv_id': pdv.id})
        assert response.status_code == 403

    def test_quote(self, client, db_session, partner, login):
        response = client.post('/api/sales/quote', headers=login(partner),
                               json={'subtotal_cents': 20000, 'payment_method': 'pix'})

        assert response.status_code == 200
        assert response.json['total_cents'] == 18000

    def test_card_sale_confirmed_manually_only_for_installments(self, client, db_session, pdv, product, partner, stock, login):
        self._stocked(stock, pdv, product)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'CARD', actor_user_id=partner.id)

        response = client.post(f'/api/sales/{sale.id}/complete', headers=login(partner))

        assert response.status_code == 400

    def test_gateway_failure_is_502(self, app, client, db_session, pdv, product, partner, stock, login):
        self._stocked(stock, pdv, product)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'PIX',
                           actor_user_id=partner.id, customer_data={'name': 'Maria'})
        app.extensions['payment_transport'] = httpx.MockTransport(
            lambda request: httpx.Response(500, json={'message': 'internal_error', 'status': 500})
        )

        response = client.post(f'/api/sales/{sale.id}/payment', headers=login(partner), json={'gateway': 'mercadopago'})

        assert response.status_code == 502
        assert response.json['gateway'] == 'mercadopago'


class TestWebhooks:
    def test_unknown_gateway(self, client, db_session):
        assert client.post('/api/payments/webhooks/paypal', json={}).status_code == 404

    def test_asaas_confirmation_completes_sale(self, client, db_session, pdv, product, stock):
        stock(Location.pdv(pdv.id), product, 1)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'PIX', actor_user_id=None)

        response = client.post('/api/payments/webhooks/asaas', json={
            'event': 'PAYMENT_RECEIVED',
            'payment': {'id': 'pay_1', 'externalReference': str(sale.id)},
        })

        assert response.status_code == 200
        assert response.json == {'received': True, 'sale_id': sale.id, 'status': 'COMPLETED'}

    def test_unrelated_notification_is_acknowledged(self, client, db_session):
        response = client.post('/api/payments/webhooks/asaas', json={
            'event': 'PAYMENT_RECEIVED',
            'payment': {'id': 'pay_1', 'externalReference': '999'},
        })

        assert response.status_code == 200
        assert response.json['sale_id'] is None

    def test_cancelled_sale_is_acknowledged(self, client, db_session, pdv, product, stock):
        stock(Location.pdv(pdv.id), product, 1)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'PIX', actor_user_id=None)
        sale.status = 'CANCELLED'
        db_session.commit()

        response = client.post('/api/payments/webhooks/asaas', json={
            'event': 'PAYMENT_RECEIVED',
            'payment': {'id': 'pay_1', 'externalReference': str(sale.id)},
        })

        assert response.status_code == 200
        assert 'CANCELLED' in response.json['error']

    def test_mercadopago_query_string_notification(self, app, client, db_session, pdv, product, stock):
        stock(Location.pdv(pdv.id), product, 1)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'PIX', actor_user_id=None)
        app.extensions['payment_transport'] = httpx.MockTransport(
            lambda request: httpx.Response(200, json={
                'id': 55, 'status': 'approved', 'external_reference': str(sale.id),
            })
        )

        response = client.post('/api/payments/webhooks/mercadopago?type=payment&data.id=55')

        assert response.status_code == 200
        assert response.json['status'] == 'COMPLETED'
        db_session.expire_all()
        assert db_session.get(Sale, sale.id).status == 'COMPLETED'

    def test_mercadopago_lookup_failure_is_502(self, app, client, db_session):
        app.extensions['payment_transport'] = httpx.MockTransport(
            lambda request: httpx.Response(404, json={'message': 'Payment not found', 'status': 404})
        )

        response = client.post('/api/payments/webhooks/mercadopago', json={'type': 'payment', 'data': {'id': '1'}})

        assert response.status_code == 502


class TestSaleEventsStream:
    def test_finished_sale_sends_one_event(self, client, db_session, pdv, product, partner, stock, login):
        stock(Location.pdv(pdv.id), product, 1)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'CASH', actor_user_id=None)

        response = client.get(f'/api/sales/{sale.id}/events', headers=login(partner))

        assert response.status_code == 200
        assert response.mimetype == 'text/event-stream'
        assert _events(response.get_data()) == [
            {'sale_id': sale.id, 'status': 'COMPLETED', 'total_cents': 9000, 'gateway': None},
        ]

    def test_pending_sale_streams_completion(self, client, db_session, pdv, product, partner, stock, login):
        stock(Location.pdv(pdv.id), product, 1)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'INSTALLMENT', actor_user_id=None)

        response = client.get(f'/api/sales/{sale.id}/events', headers=login(partner), buffered=False)
        chunks = iter(response.response)

        first = next(chunks)
        assert _events(first)[0]['status'] == 'PENDING'

        complete_sale(sale.id)

        received = []
        for chunk in chunks:
            received.extend(_events(chunk))
            if received:
                break
        response.close()

        assert received == [{'sale_id': sale.id, 'status': 'COMPLETED', 'total_cents': 10000, 'gateway': None}]

    def test_stream_requires_access(self, client, db_session, pdv, product, make_user, stock, login):
        stock(Location.pdv(pdv.id), product, 1)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'PIX', actor_user_id=None)

        response = client.get(f'/api/sales/{sale.id}/events', headers=login(make_user(ROLE_PARTNER)))

        assert response.status_code == 403


class TestSystem:
    def test_health(self, client, db_session):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json['status'] == 'healthy'
        assert response.json['checks']['payment_gateways']['configured'] == {'mercadopago': True, 'asaas': True}

    def test_cors(self, client, db_session):
        response = client.get('/version', headers={'Origin': 'http://localhost:5173'})
        assert response.headers['Access-Control-Allow-Origin'] == 'http://localhost:5173'

        response = client.get('/version', headers={'Origin': 'https://evil.example'})
        assert 'Access-Control-Allow-Origin' not in response.headers


class TestAudit:
    def test_duplicate_product_is_rejected(self, client, db_session, pdv, product, promoter, stock, login):
        stock(Location.pdv(pdv.id), product, 3)

        response = client.post(f'/api/inventory/PDV/{pdv.id}/audit', headers=login(promoter), json={'counts': [
            {'product_id': product.id, 'quantity': 1},
            {'product_id': product.id, 'quantity': 2},
        ]})

        assert response.status_code == 400
        assert 'more than once' in response.json['error']
        assert db_session.query(StockMovement).filter_by(kind='ADJUSTMENT').count() == 0

    def test_missing_quantity_is_rejected(self, client, db_session, pdv, product, promoter, login):
        response = client.post(f'/api/inventory/PDV/{pdv.id}/audit', headers=login(promoter),
                               json={'counts': [{'product_id': product.id}]})

        assert response.status_code == 400
        assert 'quantity' in response.json['error']


class TestInstallmentRoutes:
    def test_overdue_and_counter_payment(self, client, db_session, pdv, product, partner, admin, stock, login):
        stock(Location.pdv(pdv.id), product, 1)
        response = client.post('/api/sales', headers=login(partner), json={
            'pdv_id': pdv.id,
            'payment_method': 'INSTALLMENT',
            'installments': 2,
            'items': [{'product_id': product.id, 'quantity': 1}],
        })
        assert response.status_code == 201
        installments = response.json['sale']['installments']
        assert [i['amount_cents'] for i in installments] == [5000, 5000]

        sale = db_session.get(Sale, response.json['sale']['id'])
        for installment in sale.installments:
            installment.due_date -= timedelta(days=75)
        db_session.commit()

        response = client.get(f'/api/sales/overdue?pdv_id={pdv.id}', headers=login(partner))
        assert response.status_code == 200
        assert response.json['count'] == 2
        assert response.json['total_cents'] == 10000
        assert client.get('/api/sales/overdue', headers=login(partner)).status_code == 400
        assert client.get('/api/sales/overdue', headers=login(admin)).json['count'] == 2

        for installment in installments:
            response = client.post(f"/api/sales/installments/{installment['id']}/pay", headers=login(partner))
            assert response.status_code == 200
        assert response.json['sale']['status'] == 'COMPLETED'
        assert client.get(f'/api/sales/overdue?pdv_id={pdv.id}', headers=login(partner)).json['count'] == 0

    def test_other_partner_cannot_pay(self, client, db_session, pdv, product, make_user, stock, login):
        stock(Location.pdv(pdv.id), product, 1)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'INSTALLMENT', actor_user_id=None)
        installment_id = sale.installments[0].id

        response = client.post(f'/api/sales/installments/{installment_id}/pay', headers=login(make_user(ROLE_PARTNER)))

        assert response.status_code == 403
        assert client.post('/api/sales/installments/999/pay', headers=login(make_user(ROLE_PARTNER))).status_code == 404

    def test_second_charge_is_400(self, app, client, db_session, pdv, product, partner, stock, login):
        stock(Location.pdv(pdv.id), product, 1)
        sale = create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'PIX',
                           actor_user_id=partner.id, customer_data={'name': 'Maria'})
        app.extensions['payment_transport'] = httpx.MockTransport(
            lambda request: httpx.Response(201, json={'id': 77, 'status': 'pending'})
        )
        headers = login(partner)

        first = client.post(f'/api/sales/{sale.id}/payment', headers=headers, json={'gateway': 'mercadopago'})
        second = client.post(f'/api/sales/{sale.id}/payment', headers=headers, json={'gateway': 'mercadopago'})

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json['details']['gateway_payment_id'] == '77'


class TestAdminRemovals:
    def test_close_pdv(self, client, db_session, admin, make_pdv, pdv, product, stock, login):
        headers = login(admin)
        empty = make_pdv(trade_name='Banca Fechada')
        stock(Location.pdv(pdv.id), product, 1)

        response = client.delete(f'/api/pdvs/{empty.id}', headers=headers)
        assert response.status_code == 200
        assert response.json['pdv']['is_active'] is False

        assert client.delete(f'/api/pdvs/{pdv.id}', headers=headers).status_code == 400
        assert client.delete('/api/pdvs/999', headers=headers).status_code == 404

        listed = [p['id'] for p in client.get('/api/pdvs', headers=headers).json['items']]
        assert listed == [pdv.id]
        everything = client.get('/api/pdvs?include_inactive=1', headers=headers).json['items']
        assert {p['id'] for p in everything} == {pdv.id, empty.id}

    def test_close_pdv_requires_admin(self, client, db_session, pdv, promoter, login):
        assert client.delete(f'/api/pdvs/{pdv.id}', headers=login(promoter)).status_code == 403

    def test_delete_customer(self, client, db_session, admin, pdv, product, stock, login):
        headers = login(admin)
        stock(Location.pdv(pdv.id), product, 1)
        buyer = client.post('/api/customers', headers=headers, json={'name': 'Joana'}).json['customer']
        typo = client.post('/api/customers', headers=headers, json={'name': 'Joanna'}).json['customer']
        create_sale(pdv.id, [{'product_id': product.id, 'quantity': 1}], 'CASH',
                    actor_user_id=None, customer_id=buyer['id'])

        assert client.delete(f"/api/customers/{typo['id']}", headers=headers).status_code == 200
        assert client.delete(f"/api/customers/{typo['id']}", headers=headers).status_code == 404

        response = client.delete(f"/api/customers/{buyer['id']}", headers=headers)
        assert response.status_code == 400
        assert 'cannot be deleted' in response.json['error']

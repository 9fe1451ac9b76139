"""
Installment ledger tests.

Covers the plan written with an INSTALLMENT sale, counter and Asaas
settlement, overdue queries and the dashboard totals built on them.
"""

import json
from datetime import date, timedelta

import httpx
import pytest

from aurora.models import Installment, Sale
from aurora.services import sale_events
from aurora.services.dashboard_service import admin_stats, pdv_stats
from aurora.services.installment_service import (
    InstallmentError,
    build_schedule,
    overdue_installments,
    overdue_total_cents,
)
from aurora.services.locations import Location
from aurora.services.sale_service import (
    SaleError,
    cancel_sale,
    charge_installment,
    complete_sale,
    create_sale,
    get_sale_detail,
    handle_webhook,
    pay_installment,
)
from aurora.time_utils import utcnow


@pytest.fixture
def shelf(db_session, pdv, product, stock):
    stock(Location.pdv(pdv.id), product, 5)
    return Location.pdv(pdv.id)


def _plan_sale(pdv, product, count=3, quantity=1, **kwargs):
    return create_sale(
        pdv.id, [{"product_id": product.id, "quantity": quantity}], "INSTALLMENT",
        actor_user_id=None, installment_count=count, **kwargs,
    )


def _age(db_session, sale, days):
    """Move a plan's due dates back as if the sale were made `days` ago."""
    for installment in sale.installments:
        installment.due_date -= timedelta(days=days)
    db_session.commit()


class TestSchedule:
    def test_amounts_add_up_to_total(self):
        schedule = build_schedule(10000, 3, date(2026, 1, 10))

        assert [amount for amount, _ in schedule] == [3334, 3333, 3333]
        assert [due for _, due in schedule] == [date(2026, 2, 9), date(2026, 3, 11), date(2026, 4, 10)]

    @pytest.mark.parametrize("count", [0, 13, True])
    def test_count_bounds(self, count):
        with pytest.raises(InstallmentError, match="between 1 and 12"):
            build_schedule(10000, count, date(2026, 1, 10))

    def test_nothing_to_finance(self):
        with pytest.raises(InstallmentError, match="positive total"):
            build_schedule(0, 2, date(2026, 1, 10))


class TestPlan:
    def test_sale_writes_plan(self, db_session, pdv, product, shelf):
        sale = _plan_sale(pdv, product, count=3)

        detail = get_sale_detail(sale.id)
        assert [i["amount_cents"] for i in detail["installments"]] == [3334, 3333, 3333]
        assert {i["status"] for i in detail["installments"]} == {"OPEN"}
        assert detail["installments"][0]["due_date"] == (sale.created_at.date() + timedelta(days=30)).isoformat()

    def test_other_methods_have_no_plan(self, db_session, pdv, product, shelf):
        with pytest.raises(SaleError, match="Only INSTALLMENT"):
            create_sale(pdv.id, [{"product_id": product.id, "quantity": 1}], "PIX",
                        actor_user_id=None, installment_count=3)

        sale = create_sale(pdv.id, [{"product_id": product.id, "quantity": 1}], "CARD", actor_user_id=None)
        assert "installments" not in get_sale_detail(sale.id)

    def test_bad_count_writes_nothing(self, db_session, pdv, product, shelf):
        with pytest.raises(SaleError, match="between 1 and 12"):
            _plan_sale(pdv, product, count=24)

        assert db_session.query(Sale).count() == 0
        assert db_session.query(Installment).count() == 0

    def test_cancel_cancels_plan(self, db_session, pdv, product, shelf):
        sale = _plan_sale(pdv, product, count=2)

        cancel_sale(sale.id, actor_user_id=None)

        assert {i.status for i in db_session.get(Sale, sale.id).installments} == {"CANCELLED"}

    def test_cancel_refused_after_a_payment(self, db_session, pdv, product, shelf):
        sale = _plan_sale(pdv, product, count=2)
        pay_installment(sale.installments[0].id, actor_user_id=None)

        with pytest.raises(SaleError, match="paid installments"):
            cancel_sale(sale.id, actor_user_id=None)
        assert db_session.get(Sale, sale.id).status == "PENDING"


class TestCounterPayment:
    def test_last_installment_completes_sale(self, db_session, pdv, product, shelf, partner):
        sale = _plan_sale(pdv, product, count=2)
        first, second = sale.installments
        received = []
        sale_events.subscribe(sale.id, received.append)

        paid = pay_installment(first.id, actor_user_id=partner.id)
        assert paid.status == "PAID"
        assert paid.paid_by_user_id == partner.id
        assert db_session.get(Sale, sale.id).status == "PENDING"
        assert received == []

        pay_installment(second.id, actor_user_id=partner.id)
        assert db_session.get(Sale, sale.id).status == "COMPLETED"
        assert [event["status"] for event in received] == ["COMPLETED"]

    def test_paying_twice_is_a_no_op(self, db_session, pdv, product, shelf):
        sale = _plan_sale(pdv, product, count=2)
        installment_id = sale.installments[0].id

        paid_at = pay_installment(installment_id, actor_user_id=None).paid_at
        assert pay_installment(installment_id, actor_user_id=None).paid_at == paid_at

    def test_manual_completion_settles_open_installments(self, db_session, pdv, product, shelf, admin):
        sale = _plan_sale(pdv, product, count=3)

        complete_sale(sale.id, actor_user_id=admin.id)

        installments = db_session.get(Sale, sale.id).installments
        assert {i.status for i in installments} == {"PAID"}
        assert {i.paid_by_user_id for i in installments} == {admin.id}

    def test_cancelled_sale_installments_cannot_be_paid(self, db_session, pdv, product, shelf):
        sale = _plan_sale(pdv, product, count=2)
        installment_id = sale.installments[0].id
        cancel_sale(sale.id, actor_user_id=None)

        with pytest.raises(SaleError, match="CANCELLED"):
            pay_installment(installment_id, actor_user_id=None)

    def test_unknown_installment(self, db_session):
        with pytest.raises(SaleError, match="not found"):
            pay_installment(424242, actor_user_id=None)


class TestAsaasSettlement:
    def _mock_asaas(self, app, seen):
        def handler(request):
            seen.append(request)
            if request.method == "POST":
                return httpx.Response(200, json={"id": f"pay_{len(seen)}", "status": "PENDING"})
            return httpx.Response(200, json={"payload": "000201", "encodedImage": "aW1n"})

        app.extensions["payment_transport"] = httpx.MockTransport(handler)

    def _sale(self, db_session, pdv, product):
        sale = _plan_sale(pdv, product, count=2, customer_data={"name": "Maria da Silva", "cpf": "12345678909"})
        sale.customer.asaas_id = "cus_1"
        db_session.commit()
        return sale

    def test_charge_and_webhook_settle_one_installment(self, app, db_session, pdv, product, shelf):
        sale = self._sale(db_session, pdv, product)
        first, second = sale.installments
        seen = []
        self._mock_asaas(app, seen)

        payment = charge_installment(first.id)

        assert payment["pix_payload"] == "000201"
        body = json.loads(seen[0].content)
        assert body["value"] == 50.0
        assert body["dueDate"] == first.due_date.isoformat()
        assert body["externalReference"] == str(sale.id)
        stored = db_session.get(Installment, first.id)
        assert (stored.gateway, stored.gateway_payment_id) == ("asaas", "pay_1")

        settled = handle_webhook("asaas", {
            "event": "PAYMENT_RECEIVED",
            "payment": {"id": "pay_1", "externalReference": str(sale.id)},
        })

        assert settled.id == sale.id
        assert settled.status == "PENDING"
        assert db_session.get(Installment, first.id).status == "PAID"
        assert db_session.get(Installment, second.id).status == "OPEN"

    def test_installment_is_charged_once(self, app, db_session, pdv, product, shelf):
        sale = self._sale(db_session, pdv, product)
        seen = []
        self._mock_asaas(app, seen)

        charge_installment(sale.installments[0].id)
        with pytest.raises(SaleError, match="already has an open asaas charge"):
            charge_installment(sale.installments[0].id)

        assert [r.method for r in seen] == ["POST", "GET"]

    def test_paid_installment_is_not_charged(self, app, db_session, pdv, product, shelf):
        sale = self._sale(db_session, pdv, product)
        pay_installment(sale.installments[0].id, actor_user_id=None)

        with pytest.raises(SaleError, match="PAID"):
            charge_installment(sale.installments[0].id)


class TestOverdue:
    def test_only_open_past_due_installments(self, db_session, pdv, product, shelf):
        sale = _plan_sale(pdv, product, count=2)
        _age(db_session, sale, 45)
        first, second = sale.installments

        assert [i.id for i in overdue_installments()] == [first.id]
        assert overdue_total_cents() == first.amount_cents
        assert first.to_dict()["overdue"] is True
        assert second.to_dict()["overdue"] is False

        pay_installment(first.id, actor_user_id=None)
        assert overdue_installments() == []

    def test_filters_by_pdv_and_skips_cancelled_sales(self, db_session, pdv, make_pdv, product, shelf, stock):
        other = make_pdv(trade_name="Loja Norte")
        stock(Location.pdv(other.id), product, 2)
        here = _plan_sale(pdv, product, count=1)
        there = _plan_sale(other, product, count=1)
        gone = _plan_sale(other, product, count=1)
        cancel_sale(gone.id, actor_user_id=None)
        for sale in (here, there, gone):
            _age(db_session, sale, 60)

        assert [i.sale_id for i in overdue_installments(pdv.id)] == [here.id]
        assert [i.sale_id for i in overdue_installments(other.id)] == [there.id]

    def test_as_of_date(self, db_session, pdv, product, shelf):
        sale = _plan_sale(pdv, product, count=1)
        due = sale.installments[0].due_date

        assert overdue_installments(today=due) == []
        assert len(overdue_installments(today=due + timedelta(days=1))) == 1

    def test_dashboards_report_overdue(self, db_session, pdv, product, shelf):
        sale = _plan_sale(pdv, product, count=2)
        _age(db_session, sale, 45)

        assert admin_stats()["overdue_cents"] == 5000
        assert pdv_stats(pdv.id)["overdue_cents"] == 5000
        assert pdv_stats(pdv.id + 100)["overdue_cents"] == 0

    def test_due_today_is_not_overdue(self, db_session, pdv, product, shelf):
        sale = _plan_sale(pdv, product, count=1)
        sale.installments[0].due_date = utcnow().date()
        db_session.commit()

        assert overdue_installments() == []

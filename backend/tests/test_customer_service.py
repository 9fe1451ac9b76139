"""
Customer and customer-return tests.
"""

from datetime import date

import pytest

from aurora.models import Customer
from aurora.services.customer_service import (
    CustomerError,
    birthdays_of_month,
    create_customer,
    delete_customer,
    digits_only,
    find_or_create_customer,
    list_by_pdv,
    update_customer,
)
from aurora.services.inventory_service import get_quantity_on_hand
from aurora.services.locations import Location
from aurora.services.return_service import (
    ReturnError,
    available_credit,
    create_return,
    list_returns_for_pdv,
)
from aurora.services.sale_service import create_sale, cancel_sale


class TestCustomers:
    def test_digits_only(self):
        assert digits_only("(31) 99999-0000") == "31999990000"
        assert digits_only("123.456.789-09") == "12345678909"
        assert digits_only("--") is None
        assert digits_only(None) is None

    def test_create_normalizes_input(self, db_session, pdv):
        customer = create_customer({
            "name": "  Joana  ",
            "whatsapp": "(31) 98888-7777",
            "cpf": "987.654.321-00",
            "birth_date": "1990-07-15",
            "origin_pdv_id": pdv.id,
        })

        assert customer.name == "Joana"
        assert customer.whatsapp == "31988887777"
        assert customer.cpf == "98765432100"
        assert customer.birth_date == date(1990, 7, 15)
        assert [c.id for c in list_by_pdv(pdv.id)] == [customer.id]

    def test_cpf_is_unique(self, db_session):
        create_customer({"name": "Joana", "cpf": "98765432100"})

        with pytest.raises(CustomerError, match="already exists"):
            create_customer({"name": "Outra", "cpf": "987.654.321-00"})

    def test_rejects_bad_fields(self, db_session):
        with pytest.raises(CustomerError, match="name required"):
            create_customer({"whatsapp": "31999990000"})
        with pytest.raises(CustomerError, match="11 digits"):
            create_customer({"name": "Joana", "cpf": "1234"})
        with pytest.raises(CustomerError, match="YYYY-MM-DD"):
            create_customer({"name": "Joana", "birth_date": "15/07/1990"})
        with pytest.raises(CustomerError, match="not allowed"):
            create_customer({"name": "Joana", "asaas_id": "cus_1"})

    def test_find_or_create_prefers_whatsapp_then_cpf(self, db_session):
        by_phone = create_customer({"name": "Joana", "whatsapp": "31988887777"})
        by_cpf = create_customer({"name": "Lia", "cpf": "11122233344"})

        assert find_or_create_customer(name="J", whatsapp="(31) 98888-7777", cpf="11122233344").id == by_phone.id
        assert find_or_create_customer(name="L", cpf="111.222.333-44").id == by_cpf.id
        assert find_or_create_customer(name=None, whatsapp="31988887777") is None

        created = find_or_create_customer(name="Nova", whatsapp="31900000000")
        assert created.id not in (by_phone.id, by_cpf.id)
        assert db_session.query(Customer).count() == 3

    def test_update(self, db_session):
        customer = create_customer({"name": "Joana"})
        create_customer({"name": "Lia", "cpf": "11122233344"})

        updated = update_customer(customer.id, {"email": "joana@example.com", "city": "Contagem"})
        assert (updated.email, updated.city) == ("joana@example.com", "Contagem")

        with pytest.raises(CustomerError, match="already exists"):
            update_customer(customer.id, {"cpf": "11122233344"})
        with pytest.raises(CustomerError, match="not found"):
            update_customer(customer.id + 100, {"name": "X"})

    def test_birthdays_of_month(self, db_session):
        create_customer({"name": "Bruna", "birth_date": "1985-07-01"})
        create_customer({"name": "Alice", "birth_date": "2000-07-30"})
        create_customer({"name": "Carla", "birth_date": "1999-08-01"})
        create_customer({"name": "Sem data"})

        assert [c.name for c in birthdays_of_month(7)] == ["Alice", "Bruna"]
        with pytest.raises(CustomerError):
            birthdays_of_month(0)

    def test_delete_only_without_history(self, db_session, pdv, product):
        mistake = create_customer({"name": "Duplicada"})
        buyer = create_customer({"name": "Compradora"})
        returner = create_customer({"name": "Trocadora"})
        create_return(pdv.id, product.id, 1, "Troca", customer_id=returner.id)
        create_sale(pdv.id, [{"product_id": product.id, "quantity": 1}], "CASH",
                    actor_user_id=None, customer_id=buyer.id)
        mistake_id = mistake.id

        delete_customer(mistake_id)

        assert db_session.get(Customer, mistake_id) is None
        for kept in (buyer, returner):
            with pytest.raises(CustomerError, match="cannot be deleted"):
                delete_customer(kept.id)
        with pytest.raises(CustomerError, match="not found"):
            delete_customer(mistake_id)


class TestReturns:
    def test_return_restocks_and_grants_credit(self, db_session, pdv, product, partner):
        customer = create_customer({"name": "Joana"})

        record = create_return(pdv.id, product.id, 2, "Fecho quebrado", actor_user_id=partner.id, customer_id=customer.id)

        assert record.status == "COMPLETED"
        assert record.credit_cents == 20000
        assert get_quantity_on_hand(Location.pdv(pdv.id), product.id) == 2
        assert available_credit(customer.id) == 20000
        assert [r.id for r in list_returns_for_pdv(pdv.id)] == [record.id]

    def test_explicit_credit(self, db_session, pdv, product):
        record = create_return(pdv.id, product.id, 1, "Troca", credit_cents=0)
        assert record.credit_cents == 0

    def test_credit_spent_by_live_sales_only(self, db_session, pdv, product):
        customer = create_customer({"name": "Joana"})
        create_return(pdv.id, product.id, 2, "Troca", customer_id=customer.id)

        create_sale(pdv.id, [{"product_id": product.id, "quantity": 1}], "CASH",
                    actor_user_id=None, customer_id=customer.id, applied_credit_cents=5000)
        pending = create_sale(pdv.id, [{"product_id": product.id, "quantity": 1}], "PIX",
                              actor_user_id=None, customer_id=customer.id, applied_credit_cents=3000)
        assert available_credit(customer.id) == 12000

        cancel_sale(pending.id, actor_user_id=None)
        assert available_credit(customer.id) == 15000

    def test_rejects_bad_input(self, db_session, pdv, product):
        with pytest.raises(ReturnError, match="reason"):
            create_return(pdv.id, product.id, 1, "  ")
        with pytest.raises(ReturnError, match="positive"):
            create_return(pdv.id, product.id, 0, "Troca")
        with pytest.raises(ReturnError, match="Customer"):
            create_return(pdv.id, product.id, 1, "Troca", customer_id=999)
        with pytest.raises(ReturnError, match="PDV"):
            create_return(pdv.id + 100, product.id, 1, "Troca")

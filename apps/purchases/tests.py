from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as ModelValidationError
from django.test import TestCase
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.test import APITestCase

from apps.activity.models import ActivityLog
from apps.customers.models import Customer
from apps.purchases.models import Purchase
from apps.purchases.services import parse_amount, record_purchase
from apps.rewards.models import ScratchCard

User = get_user_model()


class PurchaseLedgerTests(TestCase):
    def setUp(self):
        self.shopkeeper = User.objects.create_user(username="shop_ledger", password="shop123", role="SHOPKEEPER")
        self.customer = Customer.objects.create(owner=self.shopkeeper, name="Lata", phone="9000000101")

    def test_total_is_zero_without_purchases(self):
        self.assertEqual(Purchase.total_for_customer(self.customer.pk), Decimal("0.00"))

    def test_total_sums_every_purchase(self):
        for amount in ("100.50", "49.50", "0.01"):
            Purchase.objects.create(customer=self.customer, amount=Decimal(amount), recorded_by=self.shopkeeper)
        self.assertEqual(Purchase.total_for_customer(self.customer.pk), Decimal("150.01"))

    def test_purchases_are_append_only(self):
        purchase = Purchase.objects.create(customer=self.customer, amount=Decimal("10"), recorded_by=self.shopkeeper)
        purchase.amount = Decimal("500")
        with self.assertRaises(ModelValidationError):
            purchase.save()
        with self.assertRaises(ModelValidationError):
            purchase.delete()
        self.assertEqual(Purchase.objects.get(pk=purchase.pk).amount, Decimal("10.00"))

    def test_parse_amount(self):
        self.assertEqual(parse_amount("150"), Decimal("150.00"))
        self.assertEqual(parse_amount(Decimal("0.5")), Decimal("0.50"))
        for bad in ("abc", None, "0", "-5", "NaN", "Infinity"):
            with self.subTest(amount=bad), self.assertRaises(ValidationError):
                parse_amount(bad)

    def test_record_purchase_issues_owed_cards(self):
        first = record_purchase(customer_id=self.customer.pk, amount="100", recorded_by=self.shopkeeper)
        second = record_purchase(customer_id=self.customer.pk, amount="200", recorded_by=self.shopkeeper)

        self.assertEqual(first.cards_minted, 0)
        self.assertEqual(first.total_purchase, Decimal("100.00"))
        self.assertEqual(second.cards_minted, 2)
        self.assertEqual(second.total_purchase, Decimal("300.00"))
        self.assertEqual(ScratchCard.objects.filter(customer=self.customer).count(), 2)

    def test_record_purchase_logs_activity(self):
        result = record_purchase(customer_id=self.customer.pk, amount="75.25", recorded_by=self.shopkeeper)
        entry = ActivityLog.objects.get(action="purchase.create")
        self.assertEqual(entry.entity_id, str(result.purchase.id))
        self.assertEqual(entry.metadata["amount"], "75.25")

    def test_invalid_purchase_leaves_ledger_untouched(self):
        with self.assertRaises(ValidationError):
            record_purchase(customer_id=self.customer.pk, amount="-10", recorded_by=self.shopkeeper)
        with self.assertRaises(ValidationError):
            record_purchase(customer_id="not-a-uuid", amount="10", recorded_by=self.shopkeeper)
        with self.assertRaises(NotFound):
            record_purchase(
                customer_id="00000000-0000-0000-0000-000000000000",
                amount="10",
                recorded_by=self.shopkeeper,
            )
        self.assertFalse(Purchase.objects.exists())


class PurchaseViewSetTests(APITestCase):
    def setUp(self):
        self.shopkeeper = User.objects.create_user(username="shop_purchases", password="shop123", role="SHOPKEEPER")
        self.other = User.objects.create_user(username="other_purchases", password="shop123", role="SHOPKEEPER")
        self.admin = User.objects.create_user(username="admin_purchases", password="admin123", role="ADMIN")
        self.customer = Customer.objects.create(owner=self.shopkeeper, name="Nisha", phone="9000000202")
        self.foreign_customer = Customer.objects.create(owner=self.other, name="Arjun", phone="9000000303")
        self.login("shop_purchases", "shop123")

    def login(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_create_returns_cards_minted(self):
        response = self.client.post(
            "/api/v1/purchases/",
            {"customer": str(self.customer.id), "amount": "450.00"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["cards_minted"], 3)
        self.assertEqual(response.data["total_purchase"], "450.00")
        self.assertEqual(response.data["purchase"]["customer_name"], "Nisha")
        self.assertEqual(response.data["purchase"]["recorded_by_username"], "shop_purchases")

    def test_create_rejects_invalid_amounts(self):
        for amount in ("0", "-20", "abc", ""):
            with self.subTest(amount=amount):
                response = self.client.post(
                    "/api/v1/purchases/",
                    {"customer": str(self.customer.id), "amount": amount},
                    format="json",
                )
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.data["code"], "invalid")
                self.assertIn("amount", response.data["fields"])
        self.assertFalse(Purchase.objects.exists())

    def test_create_rejects_malformed_customer(self):
        response = self.client.post("/api/v1/purchases/", {"customer": "abc", "amount": "10"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("customer", response.data["fields"])

    def test_create_for_other_shops_customer_is_not_found(self):
        response = self.client.post(
            "/api/v1/purchases/",
            {"customer": str(self.foreign_customer.id), "amount": "150"},
            format="json",
        )
        self.assertEqual(response.status_code, 404)
        self.assertFalse(Purchase.objects.exists())

    def test_list_is_scoped_to_own_customers(self):
        Purchase.objects.create(customer=self.customer, amount=Decimal("20"), recorded_by=self.shopkeeper)
        Purchase.objects.create(customer=self.foreign_customer, amount=Decimal("30"), recorded_by=self.other)

        response = self.client.get("/api/v1/purchases/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["customer_name"] for row in response.data["results"]], ["Nisha"])

        self.login("admin_purchases", "admin123")
        response = self.client.get("/api/v1/purchases/")
        self.assertEqual(response.data["count"], 2)

    def test_list_filters_by_customer(self):
        other_customer = Customer.objects.create(owner=self.shopkeeper, name="Vikram", phone="9000000404")
        Purchase.objects.create(customer=self.customer, amount=Decimal("20"), recorded_by=self.shopkeeper)
        Purchase.objects.create(customer=other_customer, amount=Decimal("30"), recorded_by=self.shopkeeper)

        response = self.client.get("/api/v1/purchases/", {"customer": str(other_customer.id)})
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["amount"], "30.00")

    def test_purchases_cannot_be_edited_over_the_api(self):
        purchase = Purchase.objects.create(customer=self.customer, amount=Decimal("20"), recorded_by=self.shopkeeper)
        self.assertEqual(self.client.patch(f"/api/v1/purchases/{purchase.id}/", {"amount": "1"}, format="json").status_code, 405)
        self.assertEqual(self.client.delete(f"/api/v1/purchases/{purchase.id}/").status_code, 405)

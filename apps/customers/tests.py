from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.test import TestCase
from rest_framework.test import APITestCase

from apps.activity.models import ActivityLog
from apps.customers.models import Customer, normalize_phone
from apps.customers.querysets import with_reward_metrics
from apps.purchases.models import Purchase
from apps.rewards.models import ScratchCard

User = get_user_model()


class CustomerModelTests(TestCase):
    def setUp(self):
        self.shopkeeper = User.objects.create_user(username="shop_model", password="shop123", role="SHOPKEEPER")

    def test_normalize_phone_keeps_digits(self):
        self.assertEqual(normalize_phone("+91 98765-43210"), "919876543210")
        self.assertEqual(normalize_phone("  "), "")

    def test_phone_is_unique_per_shop(self):
        Customer.objects.create(owner=self.shopkeeper, name="Priya", phone="98765 43210")
        with self.assertRaises(IntegrityError), transaction.atomic():
            Customer.objects.create(owner=self.shopkeeper, name="Priya again", phone="9876543210")

        other_shop = User.objects.create_user(username="shop_model_2", password="shop123", role="SHOPKEEPER")
        Customer.objects.create(owner=other_shop, name="Priya", phone="9876543210")
        self.assertEqual(Customer.objects.filter(phone_normalized="9876543210").count(), 2)

    def test_reward_metrics_are_not_multiplied_by_joins(self):
        customer = Customer.objects.create(owner=self.shopkeeper, name="Dev", phone="9000000505")
        Customer.objects.create(owner=self.shopkeeper, name="Idle", phone="9000000606")
        for amount in ("100", "100", "100"):
            Purchase.objects.create(customer=customer, amount=Decimal(amount), recorded_by=self.shopkeeper)
        for code in ("CODE0001", "CODE0002"):
            ScratchCard.objects.create(customer=customer, code=code, prize_kind="better_luck")

        rows = {row.name: row for row in with_reward_metrics(Customer.objects.all())}
        self.assertEqual(rows["Dev"].total_purchases, Decimal("300.00"))
        self.assertEqual(rows["Dev"].cards_issued, 2)
        self.assertEqual(rows["Idle"].total_purchases, Decimal("0"))
        self.assertEqual(rows["Idle"].cards_issued, 0)


class CustomerViewSetTests(APITestCase):
    def setUp(self):
        self.shopkeeper = User.objects.create_user(username="shop_customers", password="shop123", role="SHOPKEEPER")
        self.other = User.objects.create_user(username="other_customers", password="shop123", role="SHOPKEEPER")
        self.login("shop_customers", "shop123")

    def login(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_create_customer(self):
        response = self.client.post(
            "/api/v1/customers/",
            {"name": "  Sunita ", "phone": "+91 98111-22233"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["name"], "Sunita")
        self.assertEqual(response.data["phone_normalized"], "919811122233")
        self.assertEqual(response.data["total_purchases"], "0.00")
        self.assertEqual(response.data["cards_issued"], 0)

        customer = Customer.objects.get(id=response.data["id"])
        self.assertEqual(customer.owner, self.shopkeeper)
        self.assertTrue(ActivityLog.objects.filter(action="customer.create", entity_id=str(customer.id)).exists())

    def test_create_rejects_duplicate_phone_in_same_shop(self):
        Customer.objects.create(owner=self.shopkeeper, name="Existing", phone="9811122233")
        response = self.client.post("/api/v1/customers/", {"name": "New", "phone": "98111 22233"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("phone", response.data["fields"])

    def test_same_phone_allowed_in_another_shop(self):
        Customer.objects.create(owner=self.other, name="Elsewhere", phone="9811122233")
        response = self.client.post("/api/v1/customers/", {"name": "Here", "phone": "9811122233"}, format="json")
        self.assertEqual(response.status_code, 201)

    def test_create_requires_name_and_digits(self):
        response = self.client.post("/api/v1/customers/", {"name": "   ", "phone": "call me"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.data["fields"])
        self.assertIn("phone", response.data["fields"])

    def test_list_is_scoped_and_filterable_by_phone(self):
        Customer.objects.create(owner=self.shopkeeper, name="Mine", phone="9000000707")
        Customer.objects.create(owner=self.shopkeeper, name="Also mine", phone="9000000808")
        Customer.objects.create(owner=self.other, name="Theirs", phone="9000000707")

        response = self.client.get("/api/v1/customers/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual({row["name"] for row in response.data["results"]}, {"Mine", "Also mine"})

        response = self.client.get("/api/v1/customers/", {"phone": "90000-00707"})
        self.assertEqual([row["name"] for row in response.data["results"]], ["Mine"])

        response = self.client.get("/api/v1/customers/", {"q": "also"})
        self.assertEqual([row["name"] for row in response.data["results"]], ["Also mine"])

    def test_other_shops_customer_is_not_found(self):
        theirs = Customer.objects.create(owner=self.other, name="Theirs", phone="9000000909")
        self.assertEqual(self.client.get(f"/api/v1/customers/{theirs.id}/").status_code, 404)
        self.assertEqual(self.client.post(f"/api/v1/customers/{theirs.id}/issue-cards/").status_code, 404)

    def test_issue_cards_reconciles_owed_cards(self):
        customer = Customer.objects.create(owner=self.shopkeeper, name="Backlog", phone="9000001010")
        Purchase.objects.create(customer=customer, amount=Decimal("320"), recorded_by=self.shopkeeper)

        response = self.client.post(f"/api/v1/customers/{customer.id}/issue-cards/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["cards_minted"], 2)
        self.assertEqual(response.data["total_purchase"], "320.00")

        response = self.client.post(f"/api/v1/customers/{customer.id}/issue-cards/")
        self.assertEqual(response.data["cards_minted"], 0)

        detail = self.client.get(f"/api/v1/customers/{customer.id}/")
        self.assertEqual(detail.data["cards_issued"], 2)
        self.assertEqual(detail.data["total_purchases"], "320.00")

    def test_customers_cannot_be_deleted(self):
        customer = Customer.objects.create(owner=self.shopkeeper, name="Kept", phone="9000001111")
        self.assertEqual(self.client.delete(f"/api/v1/customers/{customer.id}/").status_code, 405)

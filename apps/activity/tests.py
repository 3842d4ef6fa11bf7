from django.contrib.auth import get_user_model
from rest_framework.test import APITestCase

from apps.activity.models import ActivityLog
from apps.activity.services import record_activity

User = get_user_model()


class ActivityLogViewSetTests(APITestCase):
    def setUp(self):
        self.shopkeeper = User.objects.create_user(username="shop_activity", password="shop123", role="SHOPKEEPER")
        self.other = User.objects.create_user(username="other_activity", password="shop123", role="SHOPKEEPER")
        self.admin = User.objects.create_user(username="admin_activity", password="admin123", role="ADMIN")

        record_activity(actor=self.shopkeeper, action="customer.create", entity_type="customer", entity_id="c-1")
        record_activity(
            actor=self.shopkeeper,
            action="purchase.create",
            entity_type="purchase",
            entity_id="p-1",
            metadata={"amount": "150.00"},
        )
        record_activity(actor=self.other, action="customer.create", entity_type="customer", entity_id="c-2")

    def login(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_record_activity_truncates_description(self):
        entry = record_activity(
            actor=None,
            action="scratch_cards.issue",
            entity_type="customer",
            entity_id=42,
            description="x" * 400,
        )
        self.assertEqual(len(entry.description), 255)
        self.assertEqual(entry.entity_id, "42")
        self.assertEqual(entry.metadata, {})

    def test_shopkeeper_sees_only_own_entries(self):
        self.login("shop_activity", "shop123")
        response = self.client.get("/api/v1/activity/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 2)
        self.assertEqual({row["actor_username"] for row in response.data["results"]}, {"shop_activity"})

    def test_filters_by_action_and_entity_type(self):
        self.login("shop_activity", "shop123")
        response = self.client.get("/api/v1/activity/", {"action": "purchase.create"})
        self.assertEqual([row["entity_id"] for row in response.data["results"]], ["p-1"])

        response = self.client.get("/api/v1/activity/", {"entity_type": "customer"})
        self.assertEqual([row["entity_id"] for row in response.data["results"]], ["c-1"])

    def test_admin_sees_every_shop(self):
        self.login("admin_activity", "admin123")
        response = self.client.get("/api/v1/activity/")
        self.assertEqual(response.data["count"], ActivityLog.objects.count())

    def test_activity_is_read_only(self):
        self.login("shop_activity", "shop123")
        response = self.client.post("/api/v1/activity/", {"action": "x"}, format="json")
        self.assertEqual(response.status_code, 405)

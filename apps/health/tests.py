from rest_framework.test import APITestCase


class HealthViewTests(APITestCase):
    def test_health_reports_database_ok_without_auth(self):
        response = self.client.get("/health/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {"status": "ok", "database": "ok"})

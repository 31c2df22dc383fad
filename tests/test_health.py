"""API test for the health endpoint."""

import unittest

from tests.support import AppHarness, make_settings


class TestHealth(unittest.TestCase):
    def test_reports_database_and_integrations(self) -> None:
        h = AppHarness(settings=make_settings(BLOB_ENDPOINT=None))
        try:
            resp = h.client.get("/api/v1/health/")
            self.assertEqual(resp.status_code, 200)
            body = resp.json()
            self.assertEqual(body["status"], "ok")
            self.assertEqual(body["database"], "connected")
            self.assertTrue(body["billing_configured"])
            self.assertFalse(body["blob_store_configured"])
        finally:
            h.close()

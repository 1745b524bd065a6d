"""
API tests with FastAPI's TestClient.

The lifespan hook is not run (no `with TestClient(...)`); services are placed
on app.state directly, backed by in-memory SQLite and a stub LLM.
"""

import logging
import unittest
from fastapi.testclient import TestClient
from sqlalchemy import text

import main
from main import app
from test_query_pipeline import make_pipeline

SERVICES = ("settings", "executor", "schema", "generator", "audit", "pipeline")


class TestApi(unittest.TestCase):

    def setUp(self):
        pipeline = make_pipeline()
        app.state.settings = pipeline.settings
        app.state.executor = pipeline.executor
        app.state.schema = pipeline.schema
        app.state.generator = pipeline.generator
        app.state.audit = pipeline.audit
        app.state.pipeline = pipeline
        self.pipeline = pipeline
        self.client = TestClient(app)

    def tearDown(self):
        for name in SERVICES:
            setattr(app.state, name, None)

    def test_root(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("Veritas", response.json()["message"])

    def test_health(self):
        data = self.client.get("/health").json()
        self.assertEqual(data["status"], "healthy")
        self.assertEqual(data["database_objects"], 1)
        self.assertTrue(data["llm_enabled"])

    def test_health_uninitialized(self):
        app.state.pipeline = None
        self.assertEqual(self.client.get("/health").json()["status"], "unhealthy")

    def test_schema(self):
        data = self.client.get("/database/schema").json()
        self.assertEqual(data["schema"]["objects"][0]["name"], "Customers")
        self.assertIn("TABLE Customers", data["schema_text"])

    def test_schema_uninitialized_is_503(self):
        app.state.schema = None
        self.assertEqual(self.client.get("/database/schema").status_code, 503)

    def test_reload_schema(self):
        with self.pipeline.executor.engine.begin() as conn:
            conn.execute(text("CREATE TABLE Orders (Id INTEGER PRIMARY KEY)"))
        response = self.client.post("/database/reload-schema")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["object_count"], 2)
        self.assertIsNotNone(self.pipeline.schema.find("Orders"))

    def test_validate(self):
        data = self.client.post("/sql/validate", json={"sql": "SELECT Name FROM Customers WHERE Id = 1"}).json()
        self.assertTrue(data["is_valid"])
        self.assertEqual(data["rewritten_sql"], "SELECT Name FROM Customers WHERE Id = 1 LIMIT 4")

    def test_validate_rejection_is_data(self):
        data = self.client.post("/sql/validate", json={"sql": "DROP TABLE Customers"}).json()
        self.assertFalse(data["is_valid"])

    def test_preview(self):
        response = self.client.post("/sql/preview", json={"sql": "SELECT Id FROM Customers WHERE Id > 0", "row_cap": 3})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["preview_sql"], "SELECT Id FROM Customers WHERE Id > 0 LIMIT 3")
        self.assertEqual(data["result"]["row_count"], 3)
        self.assertTrue(data["result"]["is_preview"])

    def test_preview_rejected_is_400(self):
        response = self.client.post("/sql/preview", json={"sql": "SELECT * FROM Customers; DELETE FROM Customers"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["detail"]["is_valid"])

    def test_preview_invalid_cap_is_422(self):
        response = self.client.post("/sql/preview", json={"sql": "SELECT Id FROM Customers", "row_cap": 0})
        self.assertEqual(response.status_code, 422)

    def test_count(self):
        data = self.client.post("/sql/count", json={"sql": "SELECT Name FROM Customers WHERE Active = 1 ORDER BY Name"}).json()
        self.assertEqual(data["estimated_rows"], 6)
        self.assertFalse(data["is_unknown"])
        self.assertEqual(data["count_sql"], "SELECT COUNT(*) FROM Customers WHERE Active = 1")

    def test_count_unknown(self):
        data = self.client.post("/sql/count", json={"sql": "SELECT DISTINCT Active FROM Customers"}).json()
        self.assertEqual(data["estimated_rows"], -1)
        self.assertTrue(data["is_unknown"])

    def test_execute(self):
        response = self.client.post("/sql/execute", json={"sql": "SELECT Id FROM Customers WHERE Id < 4", "dry_run": False})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["result"]["row_count"], 3)

    def test_execute_rejected_is_400(self):
        response = self.client.post("/sql/execute", json={"sql": "SELECT * FROM Missing"})
        self.assertEqual(response.status_code, 400)

    def test_chat(self):
        data = self.client.post("/chat", json={"question": "active customers"}).json()
        self.assertTrue(data["success"])
        self.assertEqual(data["result"]["row_count"], 4)

    def test_chat_without_generator_is_503(self):
        self.pipeline.generator = None
        response = self.client.post("/chat", json={"question": "active customers"})
        self.assertEqual(response.status_code, 503)

    def test_audit(self):
        self.client.post("/sql/execute", json={"sql": "SELECT Id FROM Customers WHERE Id = 1", "dry_run": False})
        data = self.client.get("/audit", params={"limit": 10}).json()
        self.assertEqual(data["count"], 1)
        self.assertEqual(data["entries"][0]["action"], "run_sql")

    def test_preview_and_count_are_audited(self):
        self.client.post("/sql/preview", json={"sql": "SELECT Id FROM Customers WHERE Id > 0", "row_cap": 3})
        self.client.post("/sql/count", json={"sql": "SELECT Name FROM Customers WHERE Active = 1"})
        data = self.client.get("/audit", params={"limit": 10}).json()
        self.assertEqual(data["count"], 2)
        self.assertEqual([e["action"] for e in data["entries"]], ["count", "preview"])
        self.assertEqual(data["entries"][0]["row_count"], 6)
        self.assertEqual(data["entries"][1]["row_count"], 3)

    def test_rejected_preview_is_audited(self):
        self.client.post("/sql/preview", json={"sql": "SELECT * FROM Missing"})
        entries = self.client.get("/audit").json()["entries"]
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["action"], "preview")
        self.assertEqual(entries[0]["validation_status"], "rejected")


class TestModuleSetup(unittest.TestCase):

    def test_guardrail_modules_log_at_info(self):
        for name in ("sql_lexer", "sql_validator", "query_bounds", "row_count", "query_pipeline"):
            self.assertEqual(logging.getLogger(name).level, logging.INFO, name)

    def test_environment_loaded_only_through_settings(self):
        self.assertFalse(hasattr(main, "load_dotenv"))


if __name__ == "__main__":
    unittest.main()

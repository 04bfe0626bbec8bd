#!/usr/bin/env python3
"""
HTTP API tests for the evaldash web service.

The evaluation service client and the translator are replaced through
FastAPI dependency overrides; workbooks are generated with openpyxl.

Usage:
    python -m pytest tests/test_api.py -v
"""

import io
import json
import shutil
import sys
import tempfile
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def workbook_bytes(rows):
    from openpyxl import Workbook

    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["conversationId", "conversation", "Agent", "timestamp", "source_intent"])
    for row in rows:
        sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def truncated_workbook_bytes(rows):
    """Workbook bytes whose first sheet XML stops halfway."""
    import zipfile

    source = zipfile.ZipFile(io.BytesIO(workbook_bytes(rows)))
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as target:
        for name in source.namelist():
            data = source.read(name)
            if name == "xl/worksheets/sheet1.xml":
                data = data[: len(data) // 2]
            target.writestr(name, data)
    return buffer.getvalue()


class FakeServiceClient:
    """Stands in for EvalServiceClient behind the get_client dependency."""

    def __init__(self):
        self.saved = []
        self.error = None
        self.run_lookups = 0

    def _maybe_fail(self):
        if self.error:
            raise self.error

    def list_evals(self, after=None, limit=8):
        from evalcore.models import Eval
        from evalcore.pagination import Page

        self._maybe_fail()
        items = [Eval(id="eval_1", name="Handover", model="gpt-4o")]
        return Page(items=items, has_more=False, last_id="eval_1")

    def create_run(self, eval_id, name, dataset_id):
        from evalcore.models import RunDetails

        self._maybe_fail()
        return RunDetails(id="run_1", eval_id=eval_id, name=name, status="in_progress")

    def get_run(self, eval_id, run_id):
        from evalcore.models import RunDetails

        self.run_lookups += 1
        return RunDetails(id=run_id, eval_id=eval_id, name="Nightly", status="completed",
                          report_url=f"database://{run_id}/crit_9")

    def list_annotations(self, context, after=None, limit=8):
        from evalcore.models import Annotation
        from evalcore.pagination import Page

        annotation = Annotation(
            id="ann_1",
            conversation_id="c1",
            handover_reason_l1="Billing",
            handover_reason_l2="Refund",
            label_selection_reason="refund request",
            conversation="[{'role': 'user', 'content': 'refund please'}]",
        )
        return Page(items=[annotation], has_more=False, last_id="ann_1")

    def save_annotation(self, context, annotation_id, handover_reason_l1=None, handover_reason_l2=None):
        self.saved.append((context, annotation_id, handover_reason_l1, handover_reason_l2))
        return bool(handover_reason_l1 or handover_reason_l2)

    def get_file_content(self, file_id):
        from evalcore.client import InvalidRequestError

        if not file_id.strip():
            raise InvalidRequestError("Invalid file ID")
        return [{"item": {"conversationId": "c1"}}]

    def suggest_domain_labels(self, bucket_path, model):
        from evalcore.client import MissingApiKeyError
        from evalcore.models import DomainLabelSuggestion

        self._maybe_fail()
        if model == "needs-key":
            raise MissingApiKeyError("API key is required to request domain label suggestions.")
        return {
            "suggestions": [DomainLabelSuggestion(suggestion="Billing/Refund", confidence=0.9)],
            "rawResponse": {"cluster_a": {}},
        }


class ApiTestBase:
    """Builds an app with temp settings and fake dependencies."""

    def setup_method(self):
        from fastapi.testclient import TestClient
        from evalcore.config import ConversionConfig, Settings, TranslationConfig
        from evalcore.translation import NullTranslator
        from evalweb.main import create_app
        from evalweb.sessions import get_client, get_translator

        self.temp_dir = Path(tempfile.mkdtemp())
        self.settings = Settings(
            conversion=ConversionConfig(temp_dir=str(self.temp_dir)),
            translation=TranslationConfig(provider="none"),
        )
        self.app = create_app(self.settings)
        self.fake = FakeServiceClient()
        self.app.dependency_overrides[get_client] = lambda: self.fake
        self.app.dependency_overrides[get_translator] = lambda: NullTranslator()
        self.client = TestClient(self.app)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestConversionEndpoint(ApiTestBase):
    """POST /api/v1/files/conversion"""

    def test_converts_workbook(self):
        content = workbook_bytes([
            ["c1", "hola", "bot", "2024-01-01T00:00:00Z", "billing"],
            [None, "orphan", "bot", None, None],
            ["c3", "hi", None, None, None],
        ])

        response = self.client.post(
            "/api/v1/files/conversion",
            files={"file": ("dataset.xlsx", content, XLSX_TYPE)},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/jsonl")
        assert 'filename="dataset.jsonl"' in response.headers["content-disposition"]
        assert response.headers["x-rows-written"] == "2"
        assert response.headers["x-rows-skipped"] == "1"
        lines = response.text.splitlines()
        assert [json.loads(line)["item"]["conversationId"] for line in lines] == ["c1", "c3"]
        # Temp files are gone once the response is built
        assert list(self.temp_dir.iterdir()) == []

    def test_missing_file_field(self):
        response = self.client.post(
            "/api/v1/files/conversion",
            files={"other": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "message": "No file uploaded or file field missing in the request",
        }

    def test_wrong_extension(self):
        response = self.client.post(
            "/api/v1/files/conversion",
            files={"file": ("dataset.csv", b"a,b\n1,2\n", "text/csv")},
        )

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert ".xlsx" in response.json()["message"]

    def test_corrupt_workbook(self):
        response = self.client.post(
            "/api/v1/files/conversion",
            files={"file": ("dataset.xlsx", b"not really a workbook", XLSX_TYPE)},
        )

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["message"].startswith("Error processing Excel file")
        assert list(self.temp_dir.iterdir()) == []

    def test_truncated_sheet_uses_envelope(self):
        rows = [[f"c{i}", f"conversation {i}", "bot", None, None] for i in range(200)]

        response = self.client.post(
            "/api/v1/files/conversion",
            files={"file": ("dataset.xlsx", truncated_workbook_bytes(rows), XLSX_TYPE)},
        )

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        body = response.json()
        assert body["success"] is False
        assert body["message"].startswith("Error processing Excel file")
        assert list(self.temp_dir.iterdir()) == []

    def test_unknown_translation_provider_is_server_error(self):
        from evalweb.sessions import get_translator

        del self.app.dependency_overrides[get_translator]
        self.settings.translation.provider = "babelfish"

        response = self.client.post(
            "/api/v1/files/conversion",
            files={"file": ("dataset.xlsx", workbook_bytes([["c1", "hola", None, None, None]]), XLSX_TYPE)},
        )

        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Unknown translation provider: babelfish"}

    def test_upload_size_limit(self):
        self.settings.conversion.max_upload_mb = 0
        content = workbook_bytes([["c1", "hola", None, None, None]])

        response = self.client.post(
            "/api/v1/files/conversion",
            files={"file": ("dataset.xlsx", content, XLSX_TYPE)},
        )

        assert response.status_code == 413


class TestExportEndpoint(ApiTestBase):
    """POST /api/v1/files/export"""

    def test_export_with_explicit_ids(self):
        response = self.client.post("/api/v1/files/export", json={
            "evalId": "eval_1", "evalRundId": "run_1", "testId": "crit_9", "format": "jsonl",
        })

        assert response.status_code == 200
        assert 'filename="annotations_run_1.jsonl"' in response.headers["content-disposition"]
        assert json.loads(response.text.splitlines()[0])["conversationId"] == "c1"
        assert self.fake.run_lookups == 0

    def test_export_resolves_test_id_from_run(self):
        response = self.client.post("/api/v1/files/export", json={
            "evalId": "eval_1", "evalRunId": "run_1",
        })

        assert response.status_code == 200
        assert response.headers["content-type"] == XLSX_TYPE
        assert self.fake.run_lookups == 1

    def test_export_unknown_format(self):
        response = self.client.post("/api/v1/files/export", json={
            "evalId": "eval_1", "evalRunId": "run_1", "testId": "crit_9", "format": "pdf",
        })

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_export_without_run(self):
        response = self.client.post("/api/v1/files/export", json={})

        assert response.status_code == 400
        assert response.json()["message"] == "Evaluation ID not available"


class TestEvalEndpoints(ApiTestBase):
    """Evals, runs, annotations and the review session."""

    def test_list_evals(self):
        response = self.client.get("/api/evals")

        assert response.status_code == 200
        body = response.json()
        assert body["data"][0]["id"] == "eval_1"
        assert body["has_more"] is False

    def test_external_failure_is_bad_gateway(self):
        from evalcore.client import ExternalServiceError

        self.fake.error = ExternalServiceError("Failed to fetch evaluations: 503", status_code=503)
        response = self.client.get("/api/evals")

        assert response.status_code == 502
        assert response.json() == {"success": False, "message": "Failed to fetch evaluations: 503"}

    def test_upstream_client_error_is_passed_through(self):
        from evalcore.client import ExternalServiceError

        self.fake.error = ExternalServiceError("Eval not found", status_code=404)
        response = self.client.get("/api/evals")

        assert response.status_code == 404
        assert response.json()["message"] == "Eval not found"

    def test_run_review_flow(self):
        """Create a run, then list and relabel annotations through the session."""
        created = self.client.post("/api/evals/eval_1/runs", json={"name": "Nightly", "datasetId": "file_1"})
        assert created.status_code == 200
        assert created.json()["id"] == "run_1"

        session = self.client.get("/api/session").json()
        assert session["evalId"] == "eval_1"
        assert session["runId"] == "run_1"

        listed = self.client.get("/api/runs/run_1/annotations")
        assert listed.status_code == 200
        annotation = listed.json()["data"][0]
        assert annotation["conversationRendered"] == "**user**: refund please"
        assert annotation["conversationHtml"] == "<strong>user</strong>: refund please"
        assert listed.json()["testCriteriaId"] == "crit_9"

        saved = self.client.post("/api/runs/run_1/annotations/ann_1", json={"handoverReasonL1": "Billing"})
        assert saved.json() == {"success": True, "updated": True}
        context, annotation_id, l1, l2 = self.fake.saved[0]
        assert context.annotations_path() == "/v1/evals/eval_1/runs/run_1/tests/crit_9/annotations"
        assert (annotation_id, l1, l2) == ("ann_1", "Billing", None)

        # The test-criteria id was looked up once and reused
        assert self.fake.run_lookups == 1

    def test_annotations_without_linked_eval(self):
        response = self.client.get("/api/runs/run_1/annotations")

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Evaluation ID not available"}

    def test_run_status_includes_poll_interval(self):
        response = self.client.get("/api/evals/eval_1/runs/run_7")

        assert response.status_code == 200
        body = response.json()
        assert body["terminal"] is True
        assert body["test_criteria_id"] == "crit_9"
        assert body["pollInterval"] == 10.0

    def test_reset_session(self):
        self.client.post("/api/evals/eval_1/runs", json={"name": "Nightly", "datasetId": "file_1"})
        response = self.client.delete("/api/session")

        assert response.json()["runId"] is None

    def test_idle_session_is_replaced(self):
        from datetime import timedelta

        self.client.post("/api/evals/eval_1/runs", json={"name": "Nightly", "datasetId": "file_1"})
        session_id = self.client.cookies.get("evaldash_session")
        session = self.app.state.sessions.get(session_id)
        session.updated_at -= timedelta(hours=48)

        assert self.client.get("/api/debug/status").json()["active_sessions"] == 0

        body = self.client.get("/api/session").json()
        assert body["runId"] is None
        assert self.client.cookies.get("evaldash_session") != session_id
        assert len(self.app.state.sessions) == 1

    def test_api_key_is_stored_but_not_echoed(self):
        response = self.client.put("/api/session/api-key", json={"apiKey": "sk-browser"})

        assert response.json()["hasApiKey"] is True
        assert "sk-browser" not in response.text

    def test_invalid_file_id_is_client_error(self):
        response = self.client.get("/api/datasets/%20/content")

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Invalid file ID"}

    def test_validation_error_uses_envelope(self):
        response = self.client.post("/api/evals/eval_1/runs", json={"name": "Nightly"})

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "datasetId" in response.json()["message"]


class TestLabelEndpoints(ApiTestBase):
    """Domain label suggestions."""

    def test_suggest(self):
        response = self.client.post("/api/labels/suggest", json={"bucketPath": "generic/other", "model": "gpt-4o"})

        assert response.status_code == 200
        body = response.json()
        assert body["suggestions"][0]["suggestion"] == "Billing/Refund"
        assert body["suggestions"][0]["confidence"] == 0.9
        assert body["rawResponse"] == {"cluster_a": {}}

    def test_missing_api_key(self):
        response = self.client.post("/api/labels/suggest", json={"bucketPath": "generic/other", "model": "needs-key"})

        assert response.status_code == 401
        assert response.json()["success"] is False


class TestServiceEndpoints(ApiTestBase):
    """Health and settings."""

    def test_health(self):
        response = self.client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_settings_are_masked(self):
        self.settings.external_api.api_key = "sk-very-secret-9999"
        response = self.client.get("/api/settings")

        assert response.json()["external_api"]["api_key"] == "...9999"
        assert "very-secret" not in response.text

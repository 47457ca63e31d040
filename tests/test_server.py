import asyncio
from types import SimpleNamespace

import numpy as np
import pytest
from fastapi.testclient import TestClient

from mafifulus import advisor, extraction, server, storage
from mafifulus.audio import encode
from mafifulus.extraction import ExtractionError, ExtractionTimeout
from mafifulus.repository import MemoryStore, set_store


@pytest.fixture()
def store(monkeypatch):
    monkeypatch.delenv("INVITE_CODE", raising=False)
    store = MemoryStore()
    set_store(store)
    yield store
    set_store(None)


@pytest.fixture()
def client(store, tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "S3_BUCKET", None)
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(tmp_path))
    return TestClient(server.app)


def login(client, phone="+971500000000", name="Sara", invite=None):
    return client.post("/api/auth/login", json={"phoneNumber": phone, "name": name, "inviteCode": invite})


def auth_header(client):
    token = login(client).json()["token"]
    return {"Authorization": f"Bearer {token}"}


def upload(client, data=b"%PDF-1.4 statement", name="statement.pdf", content_type="application/pdf"):
    return client.post("/api/statements/upload", files={"file": (name, data, content_type)})


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "mode": "mock"}


def test_login(client):
    response = login(client)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["token"]
    assert body["user"]["name"] == "Sara"
    assert body["user"]["id"].startswith("mock-user-id-")


def test_login_requires_phone(client):
    response = client.post("/api/auth/login", json={})
    assert response.status_code == 400
    assert response.json() == {"error": "Phone number required"}


def test_login_invite_code(client, monkeypatch):
    monkeypatch.setenv("INVITE_CODE", "letmein")
    response = login(client, invite="nope")
    assert response.status_code == 403
    assert response.json() == {"error": "Invalid Invite Code. Access Denied."}
    assert login(client, invite="letmein").status_code == 200


def test_confirm_uses_token_user(client, store, transactions):
    headers = auth_header(client)
    response = client.post(
        "/api/transactions/confirm",
        json={"userId": "someone-else", "transactions": transactions},
        headers=headers,
    )
    assert response.json() == {"success": True, "count": len(transactions), "mock": True}

    listed = client.get("/api/transactions", headers=headers).json()["transactions"]
    assert len(listed) == len(transactions)
    assert listed[0]["date"] == "2024-01-09"


def test_confirm_rejects_bad_payload(client):
    response = client.post("/api/transactions/confirm", json={"transactions": "nope"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid transactions data"}

    response = client.post("/api/transactions/confirm", json={"transactions": [{"date": "soon", "amount": 1}]})
    assert response.status_code == 400


def test_confirm_reports_store_failure(client, transactions):
    class BrokenStore(MemoryStore):
        persistent = True

        def save_transactions(self, user_id, transactions):
            raise RuntimeError("disk full")

    set_store(BrokenStore())
    response = client.post("/api/transactions/confirm", json={"transactions": transactions})
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to save transactions"}


def test_list_requires_token(client):
    assert client.get("/api/transactions").status_code == 401
    response = client.get("/api/transactions", headers={"Authorization": "Bearer junk"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid token"}


def test_export_excel(client, transactions):
    response = client.post("/api/export/excel", json={"transactions": transactions})
    assert response.status_code == 200
    assert response.content[:2] == b"PK"
    assert 'filename="Mafifulus_Report.xlsx"' in response.headers["content-disposition"]


def test_export_csv(client, transactions):
    response = client.post("/api/export/csv", json={"transactions": transactions})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.splitlines()[0] == '"Date","Description","Category","Amount","Currency"'


def test_export_rejects_missing_list(client):
    response = client.post("/api/export/excel", json={})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid transactions data"}


def test_upload_and_parse_demo(client, tmp_path, monkeypatch):
    monkeypatch.setattr(extraction, "GEMINI_API_KEY", "")
    response = upload(client)
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "File uploaded successfully"
    assert (tmp_path / "statements" / f"{body['fileId']}.pdf").read_bytes() == b"%PDF-1.4 statement"

    parsed = client.post(f"/api/statements/{body['fileId']}/parse").json()
    assert parsed["success"] is True
    assert parsed["demo"] is True
    assert len(parsed["transactions"]) == 20


def test_upload_without_file(client):
    response = client.post("/api/statements/upload", data={"note": "no file"})
    assert response.status_code == 400
    assert response.json() == {"error": "No file uploaded"}


def test_upload_rejects_non_pdf(client):
    response = upload(client, data=b"hello", name="notes.txt", content_type="text/plain")
    assert response.status_code == 400


def test_upload_too_large(client, monkeypatch):
    monkeypatch.setattr(server, "MAX_UPLOAD_BYTES", 10)
    assert upload(client, data=b"%PDF" + b"0" * 20).status_code == 413


def test_parse_unknown_file(client):
    assert client.post("/api/statements/file-missing/parse").status_code == 404


@pytest.mark.parametrize(
    "error, status",
    [(ExtractionTimeout("Analysis timed out"), 504), (ExtractionError("bad json"), 502)],
)
def test_parse_errors(client, monkeypatch, error, status):
    def fail(data):
        raise error

    monkeypatch.setattr(server, "parse_bank_statement", fail)
    file_id = upload(client).json()["fileId"]
    response = client.post(f"/api/statements/{file_id}/parse")
    assert response.status_code == status
    assert response.json()["error"]


def test_parse_unreadable_amount_is_bad_gateway(client, monkeypatch):
    model = SimpleNamespace(
        models=SimpleNamespace(
            generate_content=lambda **kwargs: SimpleNamespace(
                text='[{"date": "2024-01-05", "description": "Rent", "amount": "1,234.50", "category": "Housing"}]'
            )
        )
    )
    monkeypatch.setattr(server, "parse_bank_statement", lambda data: extraction.parse_bank_statement(data, client=model))
    file_id = upload(client).json()["fileId"]
    response = client.post(f"/api/statements/{file_id}/parse")
    assert response.status_code == 502
    assert response.json() == {"error": "Failed to analyze document. Ensure it is a valid bank statement."}


def test_parse_with_no_rows(client, monkeypatch):
    monkeypatch.setattr(server, "parse_bank_statement", lambda data: [])
    file_id = upload(client).json()["fileId"]
    response = client.post(f"/api/statements/{file_id}/parse")
    assert response.status_code == 422
    assert response.json() == {"error": "No transactions found or could not parse PDF."}


def test_dashboard_summary(client, transactions):
    response = client.post(
        "/api/dashboard/summary",
        json={"transactions": transactions, "objectives": [{"title": "Car", "estimated_cost": 50000}]},
    )
    body = response.json()
    assert body["total_income"] == 10000
    assert body["ratios"]["housing_ratio"] == 40.0
    assert body["objectives"][0]["months_to_goal"] == 10
    assert len(body["advice"]) == 2


def test_advisor_instruction(client, transactions):
    body = client.post(
        "/api/advisor/instruction",
        json={"transactions": transactions, "userName": "Sara", "activeSection": "reports"},
    ).json()
    assert "Hello Sara. I'm Merrit." in body["systemInstruction"]
    assert "ACTIVE SECTION: reports" in body["systemInstruction"]


def test_live_without_key(client, monkeypatch):
    monkeypatch.setattr(advisor, "GEMINI_API_KEY", "")
    with client.websocket_connect("/api/advisor/live") as ws:
        ws.send_json({"type": "start", "systemInstruction": "hi"})
        assert ws.receive_json() == {"type": "error", "message": "API Key is missing"}


def test_live_relay(client, monkeypatch, transactions):
    sessions = []

    class FakeAdvisor:
        def __init__(self, system_instruction, client=None):
            self.system_instruction = system_instruction
            self.sent = []
            self.ended = False
            sessions.append(self)

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def send_audio(self, samples, sample_rate):
            self.sent.append((len(samples), sample_rate))

        async def end_audio(self):
            self.ended = True

        async def events(self):
            yield {"type": "transcript", "role": "model", "text": "Hello"}
            await asyncio.Event().wait()

    monkeypatch.setattr(server, "LiveAdvisorSession", FakeAdvisor)
    frame = encode(np.zeros(4, dtype="<f4").tobytes())

    with client.websocket_connect("/api/advisor/live") as ws:
        ws.send_json({"type": "start", "transactions": transactions, "userName": "Sara"})
        assert ws.receive_json() == {"type": "open"}
        assert ws.receive_json() == {"type": "transcript", "role": "model", "text": "Hello"}
        ws.send_json({"type": "audio", "data": frame, "sampleRate": 48000})
        ws.send_json({"type": "end"})
        ws.send_json({"type": "stop"})
        assert ws.receive_json() == {"type": "closed"}

    advisor_session = sessions[0]
    assert "Hello Sara. I'm Merrit." in advisor_session.system_instruction
    assert advisor_session.sent == [(4, 48000.0)]
    assert advisor_session.ended

"""HTTP tests for the student surface."""

import pytest
from sqlalchemy import update

from worksy.models import AIIndex


async def _chat(client, assignment_id, message="Help me outline my report", session_id=None):
    body = {"assignmentId": assignment_id, "studentRef": "student-42", "message": message}
    if session_id:
        body["sessionId"] = session_id
    return await client.post("/api/chat", json=body)


@pytest.mark.asyncio
class TestHealth:
    async def test_ping(self, client):
        resp = await client.get("/api/ping")
        assert resp.status_code == 200

    async def test_request_id_and_security_headers(self, client):
        resp = await client.get("/api/ping", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"

        generated = await client.get("/api/ping")
        assert generated.headers.get("X-Request-ID")


@pytest.mark.asyncio
class TestPolicyEndpoint:
    async def test_policy_payload(self, client, make_assignment):
        assignment = await make_assignment(prompt_templates=[{"label": "Plan", "text": "Plan it"}])
        resp = await client.get("/api/policy", params={"assignmentId": assignment.id})
        assert resp.status_code == 200
        data = resp.json()
        assert data["mode"] == "amber"
        assert data["reminder"].startswith("AMBER: ")
        assert "notAllowed" in data
        assert data["caps"]["prompt_cap"] == 100
        assert data["module"] == {"code": "BIO1001", "title": "Demo Coursework"}
        assert data["templates"] == [{"label": "Plan", "text": "Plan it"}]

    async def test_missing_assignment_id(self, client):
        resp = await client.get("/api/policy")
        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing assignmentId"

    async def test_unknown_assignment(self, client):
        resp = await client.get("/api/policy", params={"assignmentId": "nope"})
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestChatEndpoint:
    async def test_first_turn(self, client, make_assignment):
        assignment = await make_assignment()
        resp = await _chat(client, assignment.id)
        assert resp.status_code == 200
        data = resp.json()
        assert data["sessionId"]
        assert data["promptsUsed"] == 1
        assert data["promptCap"] == 100
        assert data["reply"].startswith("📘 Worksy (AMBER): ")

    async def test_missing_fields(self, client):
        resp = await client.post("/api/chat", json={"assignmentId": "a"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing fields"}

    async def test_red_mode(self, client, make_assignment):
        assignment = await make_assignment(mode="red")
        resp = await _chat(client, assignment.id)
        assert resp.status_code == 400
        assert resp.json()["error"] == "This task is RED (invigilated). AI not allowed."

    async def test_rate_limited(self, client, make_assignment, clock):
        assignment = await make_assignment(rate_limit_n=1, rate_limit_window_s=10)
        first = await _chat(client, assignment.id)
        sid = first.json()["sessionId"]
        resp = await _chat(client, assignment.id, message="again", session_id=sid)
        assert resp.status_code == 429
        assert resp.json() == {"error": "Too many requests. Please slow down.", "sessionId": sid}

    async def test_prompt_cap_reports_session(self, client, make_assignment):
        assignment = await make_assignment(prompt_cap=1)
        sid = (await _chat(client, assignment.id)).json()["sessionId"]
        resp = await _chat(client, assignment.id, message="again", session_id=sid)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Prompt cap reached", "sessionId": sid}

    async def test_upstream_failure(self, client, make_assignment, completion):
        assignment = await make_assignment()
        completion.fail = True
        resp = await _chat(client, assignment.id)
        assert resp.status_code == 500
        assert resp.json()["error"] == "Server error"


@pytest.mark.asyncio
class TestSessionFlow:
    async def test_full_lifecycle(self, client, make_assignment):
        assignment = await make_assignment()
        sid = (await _chat(client, assignment.id)).json()["sessionId"]

        assert (await client.post("/api/session/consent", json={"sessionId": sid})).json() == {"ok": True}
        notes = await client.post("/api/session/notes", json={"sessionId": sid, "notes": "Outline only."})
        assert notes.status_code == 200
        tab = await client.post("/api/tab-switch", json={"sessionId": sid})
        assert tab.json() == {"tabSwitches": 1}

        early = await client.post("/api/submit", json={"sessionId": sid})
        assert early.status_code == 400
        assert early.json()["error"] == "Generate AI Index before submitting."

        generated = await client.post("/api/index/generate", json={"sessionId": sid})
        assert generated.status_code == 200
        index = generated.json()
        assert len(index["hash"]) == 64
        assert index["hmac"]
        assert index["index"]["session"]["id"] == sid

        latest = await client.get("/api/index/latest", params={"sessionId": sid})
        assert latest.json()["id"] == index["id"]

        verified = await client.get("/api/index/verify", params={"id": index["id"]})
        assert verified.json() == {
            "ok": True, "hashOK": True, "hmacOK": True, "policy_version": 1, "config_version": 1,
        }

        submitted = await client.post("/api/submit", json={"sessionId": sid})
        assert submitted.json() == {"ok": True}

        locked = await _chat(client, assignment.id, message="one more", session_id=sid)
        assert locked.status_code == 400
        assert locked.json()["error"] == "Session locked after submission"

        notes_after = await client.post("/api/session/notes", json={"sessionId": sid, "notes": "changed"})
        assert notes_after.status_code == 400

        again = await client.post("/api/submit", json={"sessionId": sid})
        assert again.json() == {"ok": True, "alreadySubmitted": True}

    async def test_unknown_session(self, client):
        resp = await client.post("/api/session/consent", json={"sessionId": "missing"})
        assert resp.status_code == 404
        resp = await client.post("/api/submit", json={})
        assert resp.status_code == 400


@pytest.mark.asyncio
class TestIndexEndpoints:
    async def test_verify_unknown_and_missing(self, client):
        assert (await client.get("/api/index/verify", params={"id": "nope"})).status_code == 404
        assert (await client.get("/api/index/verify")).status_code == 400

    async def test_tampered_index_reports_not_ok(self, client, make_assignment, db_session):
        assignment = await make_assignment()
        sid = (await _chat(client, assignment.id)).json()["sessionId"]
        index = (await client.post("/api/index/generate", json={"sessionId": sid})).json()

        doc = dict(index["index"], student="someone-else")
        await db_session.execute(update(AIIndex).where(AIIndex.id == index["id"]).values(index_json=doc))
        db_session.expire_all()

        resp = await client.get("/api/index/verify", params={"id": index["id"]})
        assert resp.status_code == 200
        assert resp.json()["ok"] is False
        assert resp.json()["hashOK"] is False

    async def test_upload(self, client, make_assignment, storage):
        assignment = await make_assignment()
        sid = (await _chat(client, assignment.id)).json()["sessionId"]

        missing = await client.post("/api/index/upload", json={"sessionId": sid})
        assert missing.status_code == 400
        assert missing.json()["error"] == "Generate AI Index first."

        await client.post("/api/index/generate", json={"sessionId": sid})
        resp = await client.post("/api/index/upload", json={"sessionId": sid})
        assert resp.status_code == 200
        data = resp.json()
        assert data["path"] in storage.objects
        assert data["url"].startswith("https://storage.test/")

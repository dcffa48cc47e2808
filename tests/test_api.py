"""
Tests for the HTTP API.
"""

import json

import pytest
from fastapi.testclient import TestClient

from openmgr_agent.api.app import create_app

from conftest import text_reply, tool_reply


@pytest.fixture
def client(settings, manager):
    app = create_app(settings=settings, manager=manager)
    with TestClient(app) as test_client:
        yield test_client


def parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def create_session(client, **body) -> dict:
    response = client.post("/api/sessions", json={"working_directory": "/tmp", **body})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["llm_configured"] is True
    assert "bash" in data["tools"]


def test_create_and_get_session(client):
    created = create_session(client, title="API session")

    response = client.get(f"/api/sessions/{created['id']}")

    assert response.status_code == 200
    data = response.json()
    assert data["title"] == "API session"
    assert data["state"] == "idle"
    assert data["running"] is False
    assert data["compactionConfig"]["inceptionCount"] == 4

    listed = client.get("/api/sessions").json()["sessions"]
    assert [s["id"] for s in listed] == [created["id"]]


def test_unknown_session_is_404(client):
    assert client.get("/api/sessions/missing").status_code == 404
    assert client.post("/api/sessions/missing/prompt", json={"text": "hi"}).status_code == 404
    assert client.delete("/api/sessions/missing").status_code == 404


def test_prompt_without_streaming(client, llm):
    llm.queue(text_reply("plain answer"))
    session = create_session(client)

    response = client.post(f"/api/sessions/{session['id']}/prompt", json={"text": "hi", "stream": False})

    assert response.status_code == 200
    data = response.json()
    assert data["response"]["state"] == "done"
    assert data["response"]["content"] == "plain answer"
    assert data["events"][0]["type"] == "message.start"

    messages = client.get(f"/api/sessions/{session['id']}/messages").json()["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant"]


def test_prompt_streams_sse(client, llm):
    llm.queue(tool_reply("nope", call_id="c1"), text_reply("after the tool"))
    session = create_session(client)

    response = client.post(f"/api/sessions/{session['id']}/prompt", json={"text": "go"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(response.text)
    names = [name for name, _ in events]
    assert names[:2] == ["tool.start", "tool.complete"]
    assert "message.start" in names
    assert names[-1] == "done"
    assert events[0][1]["toolCall"]["id"] == "c1"
    assert events[1][1]["toolResult"]["metadata"]["error"] is True
    assert events[-1][1]["content"] == "after the tool"


def test_prompt_rejects_empty_text(client):
    session = create_session(client)

    response = client.post(f"/api/sessions/{session['id']}/prompt", json={"text": ""})

    assert response.status_code == 422


def test_slash_command_over_http(client):
    session = create_session(client)

    response = client.post(f"/api/sessions/{session['id']}/prompt", json={"text": "/help", "stream": False})

    data = response.json()
    assert data["events"][0]["type"] == "command.result"
    assert "/compact" in data["response"]["content"]


def test_update_compaction_config(client):
    session = create_session(client)
    url = f"/api/sessions/{session['id']}/compaction-config"

    response = client.patch(url, json={"inception_count": 2, "token_threshold": 0.5})
    assert response.status_code == 200
    assert response.json()["inceptionCount"] == 2
    assert response.json()["tokenThreshold"] == 0.5

    assert client.patch(url, json={"token_threshold": 2.0}).status_code == 422


def test_compact_and_history(client):
    session = create_session(client)

    response = client.post(f"/api/sessions/{session['id']}/compact")
    assert response.status_code == 200
    assert response.json()["messagesPruned"] == 0

    history = client.get(f"/api/sessions/{session['id']}/compactions").json()
    assert history["compactions"] == []


def test_children_and_tasks(client):
    session = create_session(client)

    assert client.get(f"/api/sessions/{session['id']}/children").json() == {"sessions": []}
    assert client.get(f"/api/sessions/{session['id']}/tasks").json() == {"tasks": []}
    assert client.get("/api/tasks").json() == {"tasks": []}


def test_abort_idle_session(client):
    session = create_session(client)

    response = client.post(f"/api/sessions/{session['id']}/abort")

    assert response.json() == {"aborted": False}


def test_delete_session(client):
    session = create_session(client)

    assert client.delete(f"/api/sessions/{session['id']}").status_code == 200
    assert client.get(f"/api/sessions/{session['id']}").status_code == 404

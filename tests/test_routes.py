import pytest
from fastapi.testclient import TestClient

from stockchat.errors import ModelUnavailable
from stockchat.main import create_app
from stockchat.query_engine import APOLOGY_MESSAGE, REFUSAL_MESSAGE


@pytest.fixture
def client_for(make_context):
    clients = []

    def _client(*replies, **kwargs):
        context, model = make_context(*replies, **kwargs)
        client = TestClient(create_app(context), raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return client, model

    yield _client
    for client in clients:
        client.__exit__(None, None, None)


def test_health(client_for):
    client, _ = client_for()
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "inventory-chat"}


def test_query_answers_with_camel_case_envelope(client_for):
    client, _ = client_for(
        "SELECT name FROM suppliers WHERE city = 'Lyon'", "Acme Corp is based in Lyon.",
    )

    response = client.post("/api/chat/query", json={"message": "  Which supplier is in Lyon?  "})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["originalMessage"] == "Which supplier is in Lyon?"
    assert body["query"] == "SELECT name FROM suppliers WHERE city = 'Lyon'"
    assert [row["name"] for row in body["results"]] == ["Acme Corp"]
    assert body["response"] == "Acme Corp is based in Lyon."
    assert len(body["thinking"]) == 6
    assert "error" not in body
    assert "message" not in body


@pytest.mark.parametrize("payload", [{}, {"message": ""}, {"message": "   "}, {"message": None}])
def test_blank_message_is_rejected(client_for, payload):
    client, model = client_for()

    response = client.post("/api/chat/query", json=payload)

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Query message is required"}
    assert model.calls == []


def test_refusal_is_a_successful_turn(client_for):
    client, _ = client_for()

    response = client.post("/api/chat/query", json={"message": "Drop the products table"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["response"] == REFUSAL_MESSAGE
    assert "query" not in body
    assert "results" not in body


def test_failure_is_an_apology_with_500(client_for):
    client, _ = client_for(ModelUnavailable("quota exceeded"))

    response = client.post("/api/chat/query", json={"message": "Hello?"})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["message"] == APOLOGY_MESSAGE
    assert body["originalMessage"] == "Hello?"
    assert "error" not in body


def test_history_endpoints(client_for):
    client, _ = client_for()

    assert client.get("/api/chat/history").json() == {"success": True, "history": []}
    assert client.delete("/api/chat/history").json() == {
        "success": True, "message": "Query history cleared",
    }

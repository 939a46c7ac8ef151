"""Integration tests for the tool router.

- tools are listed with JSON schemas
- arguments are validated before authorization, authorization before the store
- a token without the right scope never writes a row
- results use the {"content": [...], "isError": ...} envelope
"""

import json

import pytest
from fastapi.testclient import TestClient


def call(client: TestClient, name: str, arguments: dict, headers: dict | None = None) -> dict:
    response = client.post("/tools/call", json={"name": name, "arguments": arguments}, headers=headers or {})
    assert response.status_code == 200
    return response.json()


def text_of(result: dict) -> str:
    [content] = result["content"]
    assert content["type"] == "text"
    return content["text"]


@pytest.fixture
def user_id(client, bearer) -> str:
    result = call(client, "add-user", {"email": "jane@example.com", "name": "Jane Doe"}, bearer("write:users"))
    assert result["isError"] is False
    return json.loads(text_of(result))["id"]


class TestHealth:
    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_unknown_route_is_plain_404(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.json() == {"detail": "Not Found"}


class TestListTools:
    def test_lists_every_tool_with_schema(self, client):
        response = client.get("/tools")
        assert response.status_code == 200
        tools = {t["name"]: t for t in response.json()["tools"]}

        assert set(tools) == {
            "add-user", "add-contact", "add-email", "add-calendar-item",
            "add-oauth-token", "update-entity", "get-entity",
        }
        schema = tools["add-contact"]["inputSchema"]
        assert "ownerUserId" in schema["properties"]
        assert "firstName" in schema["required"]


class TestContactFlow:
    def test_add_get_update(self, client, bearer, user_id):
        write = bearer("write:contacts")
        read = bearer("read:contacts")

        added = json.loads(text_of(call(client, "add-contact", {
            "ownerUserId": user_id,
            "firstName": "Jane",
            "lastName": "Doe",
            "emails": ["jane@x.com"],
            "addresses": [{"type": "home", "city": "Springfield", "postalCode": "12345"}],
        }, write)))

        [found] = json.loads(text_of(call(client, "get-entity", {"type": "contact", "id": added["id"]}, read)))
        assert found["firstName"] == "Jane"
        assert found["emails"] == ["jane@x.com"]
        assert found["addresses"][0]["postalCode"] == "12345"
        assert found["createdAt"] == found["updatedAt"]

        updated = json.loads(text_of(call(client, "update-entity", {
            "type": "contact", "id": added["id"], "data": {"lastName": "Smith"},
        }, write)))
        assert updated["lastName"] == "Smith"
        assert updated["firstName"] == "Jane"
        assert updated["updatedAt"] > added["createdAt"]

    def test_update_replaces_addresses_with_validated_shape(self, client, bearer, user_id):
        write = bearer("write:contacts")
        added = json.loads(text_of(call(client, "add-contact", {
            "ownerUserId": user_id, "firstName": "Jane", "lastName": "Doe", "emails": ["jane@x.com"],
        }, write)))

        updated = json.loads(text_of(call(client, "update-entity", {
            "type": "contact", "id": added["id"], "data": {"addresses": [{"city": "Shelbyville"}]},
        }, write)))

        assert updated["addresses"] == [{
            "type": "", "street": "", "city": "Shelbyville", "state": "", "country": "", "postalCode": "",
        }]
        assert updated["emails"] == ["jane@x.com"]

    def test_empty_id_matches_nothing(self, client, bearer, user_id):
        result = call(client, "get-entity", {"type": "user", "id": ""}, bearer("read:users"))

        assert result["isError"] is False
        assert text_of(result) == "No matching users found"

    def test_unpaired_surrogate_round_trips(self, client, bearer):
        body = r'{"name": "add-user", "arguments": {"email": "s@example.com", "name": "S", "preferences": {"k": "\ud83d"}}}'
        response = client.post(
            "/tools/call",
            content=body,
            headers={**bearer("write:users"), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        result = response.json()
        assert result["isError"] is False
        added = json.loads(text_of(result))
        assert added["preferences"] == {"k": "\ud83d"}
        [found] = client.app.state.store.get("user", {"id": added["id"]})
        assert found["preferences"] == {"k": "\ud83d"}

    def test_get_with_no_match(self, client, bearer):
        result = call(client, "get-entity", {"type": "contact", "query": "nobody"}, bearer("read:contacts"))

        assert result["isError"] is False
        assert text_of(result) == "No matching contacts found"


class TestAuthorization:
    def test_missing_scope_writes_nothing(self, client, bearer, user_id):
        result = call(client, "add-contact", {
            "ownerUserId": user_id, "firstName": "Jane", "lastName": "Doe",
        }, bearer("read:contacts", "write:users"))

        assert result["isError"] is True
        assert text_of(result) == "Forbidden: missing scope write:contacts"
        assert client.app.state.store.get("contact", {}) == []

    def test_missing_header_is_unauthorized(self, client):
        result = call(client, "get-entity", {"type": "user"})

        assert result["isError"] is True
        assert text_of(result).startswith("Unauthorized")

    def test_lowercase_prefix_is_unauthorized(self, client, gate):
        token = gate.generate_token("test-user", ["read:users"])

        result = call(client, "get-entity", {"type": "user"}, {"Authorization": f"bearer {token}"})

        assert text_of(result).startswith("Unauthorized")

    def test_update_needs_write_scope_for_its_kind(self, client, bearer, user_id):
        result = call(client, "update-entity", {
            "type": "user", "id": user_id, "data": {"name": "Changed"},
        }, bearer("write:contacts", "read:users"))

        assert text_of(result) == "Forbidden: missing scope write:users"
        [found] = client.app.state.store.get("user", {"id": user_id})
        assert found["name"] == "Jane Doe"

    def test_read_scope_does_not_allow_other_kinds(self, client, bearer):
        result = call(client, "get-entity", {"type": "email"}, bearer("read:contacts"))
        assert text_of(result) == "Forbidden: missing scope read:emails"


class TestValidation:
    def test_unknown_tool(self, client, bearer):
        result = call(client, "delete-entity", {}, bearer("write:users"))

        assert result["isError"] is True
        assert text_of(result) == "Unknown tool: delete-entity"

    def test_invalid_arguments_rejected_before_auth(self, client):
        result = call(client, "add-user", {"email": "jane@example.com"})

        assert result["isError"] is True
        assert text_of(result).startswith("Invalid input for add-user")

    def test_extra_arguments_rejected(self, client, bearer):
        result = call(client, "add-user", {"email": "a@example.com", "name": "A", "role": "admin"}, bearer("write:users"))

        assert text_of(result).startswith("Invalid input for add-user")

    def test_unknown_type(self, client, bearer):
        result = call(client, "get-entity", {"type": "note"}, bearer("read:notes"))

        assert result["isError"] is True
        assert text_of(result) == "Failed to retrieve entity: Unknown entity type: note"

    def test_update_missing_entity(self, client, bearer):
        result = call(client, "update-entity", {
            "type": "user", "id": "0" * 32, "data": {"name": "X"},
        }, bearer("write:users"))

        assert result["isError"] is True
        assert text_of(result).startswith("Failed to update user:")

    def test_update_data_shape_is_checked_before_auth(self, client, bearer, user_id):
        write = bearer("write:contacts")
        added = json.loads(text_of(call(client, "add-contact", {
            "ownerUserId": user_id, "firstName": "Jane", "lastName": "Doe",
        }, write)))

        result = call(client, "update-entity", {
            "type": "contact", "id": added["id"], "data": {"addresses": "12 Main St"},
        })

        assert result["isError"] is True
        assert text_of(result).startswith("Invalid input for update-entity: data.addresses")
        [found] = client.app.state.store.get("contact", {"id": added["id"]})
        assert found["addresses"] == []
        assert found["updatedAt"] == added["updatedAt"]

    def test_update_rejects_incomplete_attachment(self, client, bearer, user_id):
        headers = bearer("write:emails")
        email = json.loads(text_of(call(client, "add-email", {
            "ownerUserId": user_id, "subject": "Hi", "body": "Body",
            "sender": "a@example.com", "recipients": ["jane@example.com"],
        }, headers)))

        result = call(client, "update-entity", {
            "type": "email", "id": email["id"], "data": {"attachments": [{"name": "a.pdf"}]},
        }, headers)

        assert result["isError"] is True
        assert text_of(result).startswith("Invalid input for update-entity: data.attachments.0")

    def test_update_rejects_unknown_data_key(self, client, bearer, user_id):
        result = call(client, "update-entity", {
            "type": "user", "id": user_id, "data": {"role": "admin"},
        }, bearer("write:users"))

        assert text_of(result).startswith("Invalid input for update-entity: data.role")

    def test_malformed_body_is_422(self, client):
        response = client.post("/tools/call", json={"arguments": {}})
        assert response.status_code == 422


class TestOtherKinds:
    def test_email_calendar_and_oauth_tools(self, client, bearer, user_id):
        headers = bearer(
            "write:emails", "read:emails",
            "write:calendar-items", "read:calendar-items",
            "write:oauth-tokens", "read:oauth-tokens",
        )

        email = call(client, "add-email", {
            "ownerUserId": user_id, "subject": "Hi", "body": "Secret body",
            "sender": "a@example.com", "recipients": ["jane@example.com"], "labels": ["inbox"],
        }, headers)
        assert email["isError"] is False
        assert json.loads(text_of(email))["body"] == "Secret body"

        item = call(client, "add-calendar-item", {
            "ownerUserId": user_id, "title": "Standup",
            "startTime": "2026-10-19T09:00:00Z", "endTime": "2026-10-19T09:15:00Z",
        }, headers)
        assert item["isError"] is False

        token = call(client, "add-oauth-token", {
            "ownerUserId": user_id, "provider": "google", "accessToken": "ya29.x",
            "scopes": ["email"], "expiresAt": "2026-10-19T12:00:00Z",
        }, headers)
        assert json.loads(text_of(token))["refreshToken"] is None

        found = json.loads(text_of(call(client, "get-entity", {
            "type": "email", "ownerUserId": user_id, "filters": {"label": "inbox"},
        }, headers)))
        assert [e["subject"] for e in found] == ["Hi"]

        found = json.loads(text_of(call(client, "get-entity", {
            "type": "calendar-item", "query": "stand",
        }, headers)))
        assert [i["title"] for i in found] == ["Standup"]


class TestShutdown:
    def test_store_closed_when_app_stops(self, settings):
        from personal_context.main import create_app

        app = create_app(settings)
        with TestClient(app):
            assert not app.state.store.closed
        assert app.state.store.closed

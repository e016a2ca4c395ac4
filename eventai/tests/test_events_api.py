"""Tests for the event HTTP routes."""

from unittest.mock import AsyncMock

import jwt
import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from eventai.http_server import create_app


EVENTS_URL = "/api/v1/events"


@pytest.fixture
def stored_event():
    return {
        "id": 1,
        "eventId": "evt_123",
        "name": "Summer Music Festival",
        "venue": "Bukit Jalil National Stadium",
        "dateOfEventStart": "2025-10-09T18:00:00+00:00",
        "dateOfEventEnd": "2025-10-09T23:00:00+00:00",
        "status": "CREATED",
        "userEmail": "organiser@example.com",
        "forecastResult": None,
        "attachmentUrls": [],
        "attachmentFilenames": [],
        "popularity": {"type": "concert"},
    }


@pytest.fixture
def app(eventai_config, stored_event):
    app = create_app(eventai_config)
    app.state.event_service = AsyncMock()
    app.state.event_service.get_event_by_id.return_value = stored_event
    app.state.storage_service = AsyncMock()
    app.state.comprehend_service = AsyncMock()
    app.state.serp_service = AsyncMock()
    app.state.bedrock_service = AsyncMock()
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def event_service(app):
    return app.state.event_service


class TestCreateEvent:
    """Test POST /api/v1/events."""

    def test_create(self, client, event_service, stored_event):
        event_service.create_event.return_value = stored_event

        response = client.post(EVENTS_URL, json={
            "name": "Summer Music Festival",
            "venue": "Bukit Jalil National Stadium",
            "dateOfEventStart": "2025-10-09T18:00:00Z",
            "dateOfEventEnd": "2025-10-09T23:00:00Z",
            "userEmail": "Organiser@Example.com",
        })
        body = response.json()

        assert response.status_code == 201
        assert body["success"] is True
        assert body["message"] == "Event created successfully"
        assert body["data"]["eventId"] == "evt_123"
        assert body["requestId"]

        sent = event_service.create_event.call_args.args[0]
        assert sent["userEmail"] == "organiser@example.com"
        assert sent["status"] == "CREATED"

    def test_end_before_start(self, client, event_service):
        response = client.post(EVENTS_URL, json={
            "name": "Backwards",
            "dateOfEventStart": "2025-10-09T23:00:00Z",
            "dateOfEventEnd": "2025-10-09T18:00:00Z",
            "userEmail": "organiser@example.com",
        })
        body = response.json()

        assert response.status_code == 400
        assert body["error"]["message"] == "Validation failed"
        assert any(detail["message"] == "End date must be after start date" for detail in body["error"]["details"])
        event_service.create_event.assert_not_awaited()

    def test_invalid_email(self, client):
        response = client.post(EVENTS_URL, json={
            "name": "Gala",
            "dateOfEventStart": "2025-10-09T18:00:00Z",
            "dateOfEventEnd": "2025-10-09T23:00:00Z",
            "userEmail": "not-an-email",
        })
        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "userEmail"


class TestListEvents:
    """Test GET /api/v1/events."""

    def test_list_with_user_email(self, client, event_service, stored_event):
        event_service.get_events.return_value = {"events": [stored_event], "total": 25}

        response = client.get(EVENTS_URL, params={"userEmail": "Organiser@Example.com", "page": 2, "upcoming": "true"})
        data = response.json()["data"]

        assert response.status_code == 200
        limit, offset, filters = event_service.get_events.call_args.args
        assert (limit, offset) == (10, 10)
        assert filters == {"upcoming": True, "userEmail": "organiser@example.com"}
        assert data["pagination"] == {
            "currentPage": 2,
            "totalPages": 3,
            "totalItems": 25,
            "itemsPerPage": 10,
            "hasNextPage": True,
            "hasPreviousPage": True,
        }
        assert data["filters"]["isMyEvents"] is False

    def test_my_events_requires_identity(self, client):
        response = client.get(EVENTS_URL, params={"myEvents": "true"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_USER_EMAIL"

    def test_my_events_from_header(self, client, event_service):
        event_service.get_events.return_value = {"events": [], "total": 0}

        response = client.get(EVENTS_URL, params={"myEvents": "true"},
                              headers={"x-user-email": "Organiser@Example.com"})

        assert response.status_code == 200
        assert event_service.get_events.call_args.args[2]["userEmail"] == "organiser@example.com"

    def test_my_events_from_bearer_token(self, client, event_service, eventai_config):
        event_service.get_events.return_value = {"events": [], "total": 0}
        token = jwt.encode({"email": "Host@Example.com"}, eventai_config.jwt_secret, algorithm="HS256")

        response = client.get(EVENTS_URL, params={"myEvents": "true"},
                              headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert event_service.get_events.call_args.args[2]["userEmail"] == "host@example.com"

    def test_invalid_bearer_token(self, client):
        response = client.get(EVENTS_URL, params={"myEvents": "true"},
                              headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid authentication token"

    def test_limit_is_clamped(self, client, event_service):
        event_service.get_events.return_value = {"events": [], "total": 0}
        client.get(EVENTS_URL, params={"userEmail": "a@b.co", "limit": 1000})
        assert event_service.get_events.call_args.args[0] == 100

    def test_user_route_rejects_bad_email(self, client):
        response = client.get(f"{EVENTS_URL}/user/nobody")
        assert response.status_code == 400

    def test_statistics(self, client, event_service):
        event_service.get_event_statistics.return_value = {"totalEvents": 3}
        response = client.get(f"{EVENTS_URL}/statistics")
        assert response.json()["data"] == {"totalEvents": 3}


class TestSingleEvent:
    """Test GET, PUT and DELETE on one event."""

    def test_get(self, client):
        response = client.get(f"{EVENTS_URL}/evt_123")
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Summer Music Festival"

    def test_get_missing(self, client, event_service):
        event_service.get_event_by_id.return_value = None
        response = client.get(f"{EVENTS_URL}/evt_missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "EVENT_NOT_FOUND"

    def test_update_partial(self, client, event_service, stored_event):
        event_service.update_event.return_value = dict(stored_event, name="Renamed")

        response = client.put(f"{EVENTS_URL}/evt_123", json={"name": "Renamed"})

        assert response.status_code == 200
        assert response.json()["message"] == "Event updated successfully"
        event_service.update_event.assert_awaited_once_with("evt_123", {"name": "Renamed"})

    def test_update_end_before_stored_start(self, client, event_service):
        """A lone end date is checked against the stored start."""
        response = client.put(f"{EVENTS_URL}/evt_123", json={"dateOfEventEnd": "2025-10-09T10:00:00Z"})
        assert response.status_code == 400
        event_service.update_event.assert_not_awaited()

    def test_delete(self, client, event_service):
        event_service.delete_event.return_value = True
        response = client.delete(f"{EVENTS_URL}/evt_123")
        assert response.status_code == 200
        assert response.json()["message"] == "Event deleted successfully"
        assert "data" not in response.json()

    def test_delete_missing(self, client, event_service):
        event_service.get_event_by_id.return_value = None
        assert client.delete(f"{EVENTS_URL}/evt_missing").status_code == 404
        event_service.delete_event.assert_not_awaited()


def stored_upload(name):
    return {
        "key": f"events/evt_123/attachments/1_{name}",
        "signedUrl": f"https://signed.example.com/{name}",
        "publicUrl": f"https://bucket.example.com/{name}",
        "originalName": name,
        "mimeType": "text/plain",
        "size": 5,
        "uploadedAt": "2025-09-01T00:00:00+00:00",
    }


def file_analysis(name):
    return {
        "fileName": name,
        "fileType": "text/plain",
        "contentLength": 5,
        "processedAt": "2025-09-01T00:00:00+00:00",
        "aiReadyContext": f"=== AI AGENT CONTEXT FOR: {name} ===\n\n",
    }


class TestAttachments:
    """Test attachment uploads."""

    def test_upload(self, app, client, event_service, stored_event):
        app.state.storage_service.upload_event_attachment.return_value = stored_upload("notes.txt")
        app.state.comprehend_service.analyze_event_file.return_value = file_analysis("notes.txt")
        event_service.add_event_attachments.return_value = dict(
            stored_event,
            attachmentUrls=["https://signed.example.com/notes.txt"],
            attachmentFilenames=["notes.txt"],
        )

        response = client.post(f"{EVENTS_URL}/evt_123/uploadEventAttachments",
                               files=[("files", ("notes.txt", b"hello", "text/plain"))])
        body = response.json()

        assert response.status_code == 201
        assert body["data"]["uploadedFiles"] == 1
        assert body["data"]["totalAttachments"] == 1
        assert "warnings" not in body

        event_id, urls, names, context = event_service.add_event_attachments.call_args.args
        assert urls == ["https://signed.example.com/notes.txt"]
        assert names == ["notes.txt"]
        assert context.startswith("=== FILE: notes.txt ===")
        assert "--- EXTRACTED CONTENT ---\n\nhello" in context

    def test_partial_failure(self, app, client, event_service, stored_event):
        """Failed files are reported as warnings alongside the successes."""
        app.state.storage_service.upload_event_attachment.return_value = stored_upload("notes.txt")
        app.state.comprehend_service.analyze_event_file.return_value = file_analysis("notes.txt")
        event_service.add_event_attachments.return_value = dict(
            stored_event, attachmentUrls=["u"], attachmentFilenames=["notes.txt"])

        response = client.post(f"{EVENTS_URL}/evt_123/uploadEventAttachments", files=[
            ("files", ("notes.txt", b"hello", "text/plain")),
            ("files", ("empty.txt", b"", "text/plain")),
        ])
        body = response.json()

        assert response.status_code == 201
        assert body["message"].endswith("(1 file(s) failed)")
        assert body["warnings"]["failedFiles"] == 1
        assert body["warnings"]["errors"][0] == {"fileName": "empty.txt", "errors": ["File is empty"]}

    def test_storage_failure_for_every_file(self, app, client, event_service):
        app.state.storage_service.upload_event_attachment.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

        response = client.post(f"{EVENTS_URL}/evt_123/uploadEventAttachments",
                               files=[("files", ("notes.txt", b"hello", "text/plain"))])

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "All files failed to upload"
        event_service.add_event_attachments.assert_not_awaited()

    def test_no_files(self, client):
        response = client.post(f"{EVENTS_URL}/evt_123/uploadEventAttachments")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "NO_FILES_UPLOADED"

    def test_too_many_files(self, client, eventai_config):
        files = [("files", (f"f{i}.txt", b"x", "text/plain")) for i in range(eventai_config.max_upload_files + 1)]
        response = client.post(f"{EVENTS_URL}/evt_123/uploadEventAttachments", files=files)
        assert response.json()["error"]["code"] == "TOO_MANY_FILES"

    def test_supported_types(self, client):
        response = client.get(f"{EVENTS_URL}/evt_123/attachments/supported-types")
        data = response.json()["data"]
        assert data["maxFileSize"].startswith("50MB")
        assert "application/pdf" in data["fullySupported"]
        assert data["ocrEnabled"] is False


class TestPopularity:
    """Test POST /api/v1/events/{eventId}/popularity."""

    def test_popularity(self, app, client, event_service):
        nearby = {"results": [], "summary": {"data_quality": "none"}}
        extent = {"popularityScore": 72, "popularityLevel": "HIGH"}
        app.state.serp_service.search_nearby_events.return_value = nearby
        app.state.bedrock_service.analyze_popularity.return_value = extent

        response = client.post(f"{EVENTS_URL}/evt_123/popularity",
                               json={"type": "concert", "feat": "Coldplay", "location": "Malaysia"})
        data = response.json()["data"]

        assert response.status_code == 200
        assert response.json()["message"] == "Popularity analysis completed"
        assert data["popularityExtent"] == extent
        prompt_input = app.state.bedrock_service.analyze_popularity.call_args.args[0]
        assert prompt_input["nearbyEvents"] == nearby
        assert prompt_input["popularity"]["feat"] == "Coldplay"
        event_service.update_event_popularity.assert_awaited_once_with(
            "evt_123", {"type": "concert", "feat": "Coldplay", "location": "Malaysia"}, extent)

    def test_falls_back_to_stored_popularity(self, app, client, event_service):
        app.state.serp_service.search_nearby_events.return_value = {"results": []}
        app.state.bedrock_service.analyze_popularity.return_value = {"popularityScore": 0}

        response = client.post(f"{EVENTS_URL}/evt_123/popularity")

        assert response.status_code == 200
        assert response.json()["data"]["popularity"] == {"type": "concert"}

    def test_missing_event(self, app, client, event_service):
        event_service.get_event_by_id.return_value = None
        response = client.post(f"{EVENTS_URL}/evt_missing/popularity", json={})
        assert response.status_code == 404
        app.state.serp_service.search_nearby_events.assert_not_awaited()


class TestServerRoutes:
    """Test the root and health routes."""

    def test_root(self, client):
        data = client.get("/").json()["data"]
        assert data["name"] == "Event AI Server"
        assert data["endpoints"]["events"] == EVENTS_URL

    def test_health(self, client, event_service):
        event_service.test_connection.return_value = True
        data = client.get("/health").json()["data"]
        assert data["status"] == "healthy"
        assert data["pool"] == {"status": "not_initialized"}

    def test_health_degraded(self, client, event_service):
        event_service.test_connection.return_value = False
        assert client.get("/health").json()["data"]["database"] == "unavailable"

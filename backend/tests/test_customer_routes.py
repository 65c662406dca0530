import io
from datetime import timedelta

import pytest
from PIL import Image
from pydantic import ValidationError

from marketplace.config.settings import settings
from marketplace.database.models import CustomerSession, SearchConversation, SearchRequest, SearchResult
from marketplace.routes.dependencies import get_object_storage, get_transcription_service
from marketplace.schemas import GeoPoint
from marketplace.services.storage_service import LocalObjectStorage
from marketplace.services.transcription_service import TranscriptionError
from marketplace.utils.clock import utcnow
from tests.conftest import ORIGIN, map_link, point_north

GEO = {"lat": ORIGIN.lat, "lng": ORIGIN.lng}


class FakeTranscriber:
    def __init__(self, transcript="two bottles of water", error=None):
        self.transcript = transcript
        self.error = error
        self.calls = []

    async def transcribe(self, audio, mime_type, filename="voice"):
        self.calls.append((len(audio), mime_type, filename))
        if self.error is not None:
            raise self.error
        return self.transcript


@pytest.fixture
def storage(client, tmp_path):
    from marketplace.main import app

    local = LocalObjectStorage(tmp_path, "http://testserver/media")
    app.dependency_overrides[get_object_storage] = lambda: local
    return local


@pytest.fixture
def session_id(client):
    return client.post("/api/customer/sessions", json={"deviceId": "device-1"}).json()["sessionId"]


@pytest.fixture
def conversation_id(client, session_id):
    response = client.post("/api/customer/conversations", json={"sessionId": session_id})
    assert response.status_code == 200
    return response.json()["conversationId"]


@pytest.fixture
def stocked_water(add_product, add_store, add_offer, geocoder):
    point = point_north(ORIGIN, 400)
    store = add_store("Corner Shop", map_link(point))
    product = add_product("Sparkling Water", brand="Aqua", package="500ml")
    add_offer(product, store, price=150)
    geocoder.mapping[store.location] = point
    return product


def _png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 3), color="red").save(buffer, format="PNG")
    return buffer.getvalue()


# ── Sessions & conversations ─────────────────────────────────────────────────

def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_and_read_session(client, session_id):
    response = client.get(f"/api/customer/sessions/{session_id}")
    assert response.status_code == 200
    assert response.json()["sessionId"] == session_id


def test_unknown_session_is_404(client):
    assert client.get("/api/customer/sessions/missing").status_code == 404


def test_create_conversation_requires_session(client):
    assert client.post("/api/customer/conversations", json={}).status_code == 400
    assert client.post("/api/customer/conversations", json={"sessionId": "missing"}).status_code == 404


def test_new_conversation_starts_in_new_state(client, conversation_id):
    body = client.get(f"/api/customer/conversations/{conversation_id}").json()
    assert body["state"] == "NEW"
    assert body["messages"] == []
    assert body["intent"] is None
    assert body["result"] is None


# ── Conversational turns ─────────────────────────────────────────────────────

def test_message_without_geo_asks_for_location(client, conversation_id, stocked_water):
    response = client.post(
        f"/api/customer/conversations/{conversation_id}/messages", json={"text": "water"}
    )
    body = response.json()
    assert response.status_code == 200
    assert body["state"] == "NEEDS_CLARIFICATION"
    assert body["messageId"]
    assert len(body["questions"]) == 1
    assert body["quickReplies"] == []


def test_message_to_unknown_conversation_is_404(client):
    response = client.post("/api/customer/conversations/missing/messages", json={"text": "water", "geo": GEO})
    assert response.status_code == 404


def test_single_candidate_searches_and_result_is_readable(client, conversation_id, stocked_water):
    response = client.post(
        f"/api/customer/conversations/{conversation_id}/messages",
        json={"text": "sparkling", "geo": GEO},
    )
    body = response.json()
    assert body["state"] == "DONE"
    assert body["items"][0]["product"]["id"] == stocked_water.id
    assert body["items"][0]["offers"][0]["store"]["distanceMeters"] == 400

    result = client.get(f"/api/customer/search/{body['requestId']}").json()
    assert result["resultId"] == body["resultId"]
    assert result["items"] == body["items"]

    conversation = client.get(f"/api/customer/conversations/{conversation_id}").json()
    assert conversation["state"] == "DONE"
    assert conversation["result"]["resultId"] == body["resultId"]
    assert [m["sender"] for m in conversation["messages"]] == ["CUSTOMER", "SYSTEM"]
    assert conversation["intent"]["candidateProductIds"] == [stocked_water.id]


def test_radius_limits_conversational_search(client, conversation_id, stocked_water):
    body = client.post(
        f"/api/customer/conversations/{conversation_id}/messages",
        json={"text": "sparkling", "geo": GEO, "radiusMeters": 100},
    ).json()
    assert body["state"] == "DONE"
    assert body["items"] == []


def test_unknown_request_id_is_404(client):
    assert client.get("/api/customer/search/missing").status_code == 404


@pytest.mark.parametrize("geo", [{"lat": 91.0, "lng": 76.9}, {"lat": 43.2, "lng": -180.5}])
def test_out_of_range_geo_is_rejected(client, conversation_id, geo):
    response = client.post(
        f"/api/customer/conversations/{conversation_id}/messages", json={"text": "water", "geo": geo}
    )
    assert response.status_code == 422


def test_non_finite_geo_is_rejected(client, conversation_id, stocked_water):
    response = client.post(
        f"/api/customer/conversations/{conversation_id}/messages",
        content='{"text": "sparkling", "geo": {"lat": NaN, "lng": 76.945}}',
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 422


@pytest.mark.parametrize("value", [float("nan"), float("inf")])
def test_geo_point_rejects_non_finite_values(value):
    with pytest.raises(ValidationError):
        GeoPoint(lat=value, lng=76.945)
    with pytest.raises(ValidationError):
        GeoPoint(lat=43.238, lng=value)


# ── Expiry ───────────────────────────────────────────────────────────────────

def _expire(db, model, row_id):
    row = db.get(model, row_id)
    row.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()


def test_expired_session_is_not_found(client, db, session_id):
    _expire(db, CustomerSession, session_id)

    assert client.get(f"/api/customer/sessions/{session_id}").status_code == 404
    assert client.post("/api/customer/conversations", json={"sessionId": session_id}).status_code == 404


def test_expired_conversation_is_not_found(client, db, conversation_id):
    _expire(db, SearchConversation, conversation_id)

    assert client.get(f"/api/customer/conversations/{conversation_id}").status_code == 404
    response = client.post(
        f"/api/customer/conversations/{conversation_id}/messages", json={"text": "water", "geo": GEO}
    )
    assert response.status_code == 404


@pytest.mark.parametrize("model", [SearchResult, SearchRequest])
def test_expired_search_is_not_found(client, db, conversation_id, stocked_water, model):
    body = client.post(
        f"/api/customer/conversations/{conversation_id}/messages",
        json={"text": "sparkling", "geo": GEO},
    ).json()
    assert client.get(f"/api/customer/search/{body['requestId']}").status_code == 200

    _expire(db, model, body["resultId"] if model is SearchResult else body["requestId"])

    assert client.get(f"/api/customer/search/{body['requestId']}").status_code == 404


# ── Direct search ────────────────────────────────────────────────────────────

def test_direct_search(client, conversation_id, stocked_water):
    response = client.post(
        "/api/customer/search", json={"conversationId": conversation_id, "text": "water", "geo": GEO}
    )
    body = response.json()
    assert response.status_code == 200
    assert body["requestId"] and body["resultId"]
    assert [item["product"]["id"] for item in body["items"]] == [stocked_water.id]


@pytest.mark.parametrize(
    "payload",
    [
        {"text": "water", "geo": GEO},
        {"conversationId": "x", "text": "water"},
        {"conversationId": "x", "text": "water", "geo": {"lat": ORIGIN.lat}},
    ],
)
def test_direct_search_requires_conversation_and_geo(client, payload):
    assert client.post("/api/customer/search", json=payload).status_code == 400


def test_direct_search_unknown_conversation_is_404(client):
    response = client.post("/api/customer/search", json={"conversationId": "missing", "geo": GEO})
    assert response.status_code == 404


def test_product_search(client, stocked_water):
    body = client.post("/api/products/search", json={"location": GEO, "search": "aqua"}).json()
    assert body["total"] == 1
    assert body["items"][0]["product"]["brandName"] == "Aqua"

    assert client.post("/api/products/search", json={"search": "aqua"}).status_code == 400


# ── Uploads ──────────────────────────────────────────────────────────────────

def test_image_attachment_upload(client, session_id, conversation_id, storage, tmp_path):
    response = client.post(
        "/api/customer/attachments",
        data={"sessionId": session_id, "conversationId": conversation_id},
        files={"file": ("photo.png", _png_bytes(), "image/png")},
    )
    body = response.json()
    assert response.status_code == 201
    assert body["type"] == "image"
    assert body["url"].startswith("http://testserver/media/customer/")
    stored_files = list((tmp_path / "customer").iterdir())
    assert len(stored_files) == 1


def test_attachment_rejects_disallowed_type(client, session_id, conversation_id, storage):
    response = client.post(
        "/api/customer/attachments",
        data={"sessionId": session_id, "conversationId": conversation_id},
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert response.status_code == 400


def test_attachment_rejects_unreadable_image(client, session_id, conversation_id, storage):
    response = client.post(
        "/api/customer/attachments",
        data={"sessionId": session_id, "conversationId": conversation_id},
        files={"file": ("broken.png", b"not really a png", "image/png")},
    )
    assert response.status_code == 400


def test_attachment_over_size_limit(client, session_id, conversation_id, storage, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 16)
    response = client.post(
        "/api/customer/attachments",
        data={"sessionId": session_id, "conversationId": conversation_id},
        files={"file": ("photo.png", _png_bytes(), "image/png")},
    )
    assert response.status_code == 413


def test_attachment_requires_ids(client, storage):
    response = client.post(
        "/api/customer/attachments",
        files={"file": ("photo.png", _png_bytes(), "image/png")},
    )
    assert response.status_code == 400


def test_voice_upload_transcribes(client, session_id, conversation_id, storage):
    from marketplace.main import app

    transcriber = FakeTranscriber()
    app.dependency_overrides[get_transcription_service] = lambda: transcriber
    response = client.post(
        "/api/customer/voice",
        data={"sessionId": session_id, "conversationId": conversation_id},
        files={"file": ("voice.ogg", b"OggS fake audio", "audio/ogg")},
    )
    body = response.json()
    assert response.status_code == 201
    assert body["transcript"] == "two bottles of water"
    assert "/customer-audio/" in body["url"]
    assert transcriber.calls == [(len(b"OggS fake audio"), "audio/ogg", "voice.ogg")]


def test_voice_transcription_failure_is_502(client, session_id, conversation_id, storage):
    from marketplace.main import app

    app.dependency_overrides[get_transcription_service] = lambda: FakeTranscriber(
        error=TranscriptionError("model unavailable")
    )
    response = client.post(
        "/api/customer/voice",
        data={"sessionId": session_id, "conversationId": conversation_id},
        files={"file": ("voice.ogg", b"OggS fake audio", "audio/ogg")},
    )
    assert response.status_code == 502


def test_voice_rejects_images(client, session_id, conversation_id, storage):
    from marketplace.main import app

    app.dependency_overrides[get_transcription_service] = lambda: FakeTranscriber()
    response = client.post(
        "/api/customer/voice",
        data={"sessionId": session_id, "conversationId": conversation_id},
        files={"file": ("photo.png", _png_bytes(), "image/png")},
    )
    assert response.status_code == 400


# ── History ──────────────────────────────────────────────────────────────────

def test_history_requires_session_id(client):
    assert client.get("/api/customer/history").status_code == 400
    assert client.get("/api/customer/history/export").status_code == 400
    assert client.delete("/api/customer/history").status_code == 400


def test_history_list_export_and_delete(client, session_id, conversation_id, storage, tmp_path):
    client.post(f"/api/customer/conversations/{conversation_id}/messages", json={"text": "water"})
    client.post(
        "/api/customer/attachments",
        data={"sessionId": session_id, "conversationId": conversation_id},
        files={"file": ("photo.png", _png_bytes(), "image/png")},
    )

    history = client.get("/api/customer/history", params={"sessionId": session_id}).json()
    assert history["total"] == 1
    assert history["items"][0]["conversationId"] == conversation_id

    export = client.get("/api/customer/history/export", params={"sessionId": session_id}).json()
    assert [m["text"] for m in export["messages"]][0] == "water"
    assert len(export["messages"]) == 2

    assert client.delete("/api/customer/history", params={"sessionId": session_id}).json() == {"ok": True}
    assert client.get(f"/api/customer/conversations/{conversation_id}").status_code == 404
    assert client.get("/api/customer/history", params={"sessionId": session_id}).json()["total"] == 0
    assert list((tmp_path / "customer").iterdir()) == []

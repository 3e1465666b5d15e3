"""Counter image endpoint tests with object storage mocked out."""

from unittest.mock import MagicMock

import pytest

from sync_counter.services.image_service import ImageService, image_service

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture
def storage(monkeypatch):
    upload = MagicMock(side_effect=[
        ("counters/c1/first.png", "https://img.test/counters/c1/first.png"),
        ("counters/c1/second.png", "https://img.test/counters/c1/second.png"),
    ])
    delete = MagicMock()
    monkeypatch.setattr(image_service, "upload", upload)
    monkeypatch.setattr(image_service, "delete", delete)
    return upload, delete


@pytest.fixture
def counter_id(client):
    return client.post("/api/counters", json={"id": "c1", "name": "Pushups"}).json()["counter"]["id"]


def _put(client, counter_id, data=PNG, content_type="image/png"):
    return client.put(f"/api/counters/{counter_id}/image", files={"image": ("photo.png", data, content_type)})


def test_upload_sets_image_and_broadcasts(client, counter_id, storage, recorder):
    upload, delete = storage

    response = _put(client, counter_id)

    assert response.status_code == 200
    assert response.json()["imageUrl"] == "https://img.test/counters/c1/first.png"
    assert response.json()["counter"]["imageUrl"] == "https://img.test/counters/c1/first.png"
    upload.assert_called_once_with("c1", PNG, "image/png")
    delete.assert_not_called()
    assert recorder.types[-1] == "counter_updated"

    assert client.get(f"/api/counters/{counter_id}/image").json() == {
        "imageUrl": "https://img.test/counters/c1/first.png",
    }


def test_replacing_image_deletes_previous(client, counter_id, storage):
    _, delete = storage

    _put(client, counter_id)
    _put(client, counter_id)

    delete.assert_called_once_with("counters/c1/first.png")


def test_non_image_upload_is_rejected(client, counter_id, storage):
    upload, _ = storage

    response = _put(client, counter_id, data=b"hello", content_type="text/plain")

    assert response.status_code == 400
    assert response.json()["error"] == "Image file is required"
    upload.assert_not_called()


def test_oversized_upload_is_rejected(client, counter_id, storage, monkeypatch):
    upload, _ = storage
    monkeypatch.setattr(image_service, "max_bytes", 4)

    response = _put(client, counter_id)

    assert response.status_code == 400
    upload.assert_not_called()


def test_upload_to_unknown_counter(client, storage):
    upload, _ = storage

    response = _put(client, "nope")

    assert response.status_code == 404
    upload.assert_not_called()


def test_delete_image(client, counter_id, storage, recorder):
    _, delete = storage
    _put(client, counter_id)

    response = client.delete(f"/api/counters/{counter_id}/image")

    assert response.json() == {"success": True}
    delete.assert_called_once_with("counters/c1/first.png")
    assert recorder.messages[-1]["counter"]["imageUrl"] is None
    assert client.get(f"/api/counters/{counter_id}/image").json() == {"imageUrl": None}


def test_image_keys_and_public_urls(monkeypatch):
    service = ImageService()
    key = service.build_key("c1", "image/jpeg")
    assert key.startswith("counters/c1/")
    assert key.endswith(".jpg")

    monkeypatch.setattr("sync_counter.services.image_service.settings.IMAGE_PUBLIC_BASE_URL", "https://cdn.test/")
    assert service.public_url(key) == f"https://cdn.test/{key}"


def test_storage_errors_on_delete_are_logged_not_raised():
    from botocore.exceptions import ClientError

    service = ImageService()
    service._client = MagicMock()
    service._client.delete_object.side_effect = ClientError({"Error": {"Code": "500"}}, "DeleteObject")

    service.delete("counters/c1/x.png")

    service._client.delete_object.assert_called_once()

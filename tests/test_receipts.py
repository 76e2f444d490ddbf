"""Tests for receipt screenshot hosting."""

import hashlib
from urllib.parse import parse_qs

import httpx
import pytest

from escrowbot.errors import ImageStoreUnavailable
from escrowbot.receipts import StoredImage, get_image_store, reset_image_store
from escrowbot.receipts.cloudinary import CloudinaryImageStore
from escrowbot.receipts.dryrun import DryRunImageStore

RealAsyncClient = httpx.AsyncClient


def _route(monkeypatch, handler) -> list[httpx.Request]:
    requests: list[httpx.Request] = []

    def record(request):
        requests.append(request)
        return handler(request)

    monkeypatch.setattr(
        httpx,
        "AsyncClient",
        lambda *args, **kwargs: RealAsyncClient(*args, transport=httpx.MockTransport(record), **kwargs),
    )
    return requests


class TestDryRunImageStore:
    @pytest.mark.asyncio
    async def test_upload_and_delete(self):
        store = DryRunImageStore()

        image = await store.upload(b"jpeg-bytes")

        assert image.url.endswith(f"{image.public_id}.jpg")
        assert store.images[image.public_id] == b"jpeg-bytes"
        assert await store.delete(image) is True
        assert await store.delete(image) is False


class TestCloudinaryImageStore:
    """Tests for the Cloudinary upload API client."""

    @pytest.mark.asyncio
    async def test_upload_signed(self, monkeypatch):
        """Test uploads are signed over the timestamp with the API secret."""
        requests = _route(
            monkeypatch,
            lambda request: httpx.Response(
                200, json={"secure_url": "https://res.cloudinary.test/r.jpg", "public_id": "r"}
            ),
        )
        store = CloudinaryImageStore("demo", "key", "secret")

        image = await store.upload(b"jpeg-bytes")

        assert image == StoredImage(url="https://res.cloudinary.test/r.jpg", public_id="r")
        assert str(requests[0].url) == "https://api.cloudinary.com/v1_1/demo/image/upload"

        form = {k: v[0] for k, v in parse_qs(requests[0].content.decode()).items()}
        expected = hashlib.sha1(f"timestamp={form['timestamp']}secret".encode()).hexdigest()
        assert form["signature"] == expected
        assert form["api_key"] == "key"
        assert form["file"].startswith("data:image/jpeg;base64,")

    @pytest.mark.asyncio
    async def test_upload_rejected(self, monkeypatch):
        _route(monkeypatch, lambda request: httpx.Response(401, json={"error": {"message": "bad key"}}))

        with pytest.raises(ImageStoreUnavailable):
            await CloudinaryImageStore("demo", "key", "wrong").upload(b"jpeg-bytes")

    @pytest.mark.asyncio
    async def test_delete(self, monkeypatch):
        requests = _route(monkeypatch, lambda request: httpx.Response(200, json={"result": "ok"}))
        store = CloudinaryImageStore("demo", "key", "secret")

        assert await store.delete(StoredImage(url="https://res.cloudinary.test/r.jpg", public_id="r")) is True

        form = {k: v[0] for k, v in parse_qs(requests[0].content.decode()).items()}
        assert requests[0].url.path.endswith("/image/destroy")
        assert form["public_id"] == "r"

    @pytest.mark.asyncio
    async def test_delete_not_found(self, monkeypatch):
        _route(monkeypatch, lambda request: httpx.Response(200, json={"result": "not found"}))

        deleted = await CloudinaryImageStore("demo", "key", "secret").delete(StoredImage(url="u", public_id="r"))

        assert deleted is False


def test_factory_defaults_to_dryrun():
    reset_image_store()

    store = get_image_store()

    assert isinstance(store, DryRunImageStore)
    assert get_image_store() is store

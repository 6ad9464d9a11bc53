import io
from urllib.parse import urlparse

from fastapi.testclient import TestClient
from PIL import Image

from giftcircle.main import app


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (2, 2), (255, 0, 0, 255)).save(buf, format="PNG")
    return buf.getvalue()


def test_upload_is_owner_scoped(auth_headers):
    client = TestClient(app)

    res = client.post(
        "/uploads/items",
        files={"file": ("gift.png", _png(), "image/png")},
        headers=auth_headers("acct-uploader"),
    )

    assert res.status_code == 200, res.text
    data = res.json()
    assert "/media/items/acct-uploader/" in data["url"]
    assert data["url"].endswith(".png")
    assert data["thumb_url"].endswith("_thumb.webp")
    assert (data["width"], data["height"]) == (2, 2)
    assert client.get(urlparse(data["url"]).path).status_code == 200


def test_upload_requires_auth():
    client = TestClient(app)
    res = client.post("/uploads/avatars", files={"file": ("a.png", _png(), "image/png")})
    assert res.status_code == 401


def test_upload_rejects_unknown_bucket(auth_headers):
    client = TestClient(app)
    res = client.post(
        "/uploads/secrets",
        files={"file": ("a.png", _png(), "image/png")},
        headers=auth_headers("acct-uploader"),
    )
    assert res.status_code == 422


def test_upload_rejects_wrong_type(auth_headers):
    client = TestClient(app)
    res = client.post(
        "/uploads/avatars",
        files={"file": ("a.txt", b"nope", "text/plain")},
        headers=auth_headers("acct-uploader"),
    )
    assert res.status_code == 400


def test_upload_rejects_too_large(auth_headers):
    client = TestClient(app)
    res = client.post(
        "/uploads/avatars",
        files={"file": ("big.png", b"0" * (5 * 1024 * 1024 + 1), "image/png")},
        headers=auth_headers("acct-uploader"),
    )
    assert res.status_code == 413

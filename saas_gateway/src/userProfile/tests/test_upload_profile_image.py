import pytest

from ....config import get_settings


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    target = tmp_path / "profiles"
    monkeypatch.setattr(get_settings(), "UPLOAD_DIR", str(target))
    return target


def _upload(signed_in, filename, content, content_type):
    return signed_in.client.post(
        "/api/upload-profile-image",
        files={"image": (filename, content, content_type)},
        headers=signed_in.headers,
    )


def test_upload_stores_image_and_returns_url(signed_in, upload_dir):
    resp = _upload(signed_in, "me.png", b"\x89PNG fake", "image/png")
    assert resp.status_code == 200, resp.text

    url = resp.json()["imageUrl"]
    assert url.startswith("/uploads/profiles/")
    assert url.endswith(".png")
    stored = upload_dir / url.rsplit("/", 1)[1]
    assert stored.read_bytes() == b"\x89PNG fake"


def test_upload_rejects_non_images(signed_in, upload_dir):
    resp = _upload(signed_in, "notes.txt", b"hello", "text/plain")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "File must be an image"


def test_upload_rejects_large_files(signed_in, upload_dir):
    too_big = b"0" * (5 * 1024 * 1024 + 1)
    resp = _upload(signed_in, "big.jpg", too_big, "image/jpeg")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "File size must be less than 5MB"
    assert not upload_dir.exists() or not any(upload_dir.iterdir())


def test_upload_without_file(signed_in, upload_dir):
    resp = signed_in.client.post("/api/upload-profile-image", headers=signed_in.headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No file uploaded"


def test_upload_requires_authentication(client, upload_dir):
    resp = client.post("/api/upload-profile-image", files={"image": ("me.png", b"x", "image/png")})
    assert resp.status_code == 401


@pytest.mark.parametrize(
    "filename, content_type, expected_suffix",
    [
        ("evil.html", "image/png", ".png"),
        ("x.js", "image/jpeg", ".jpg"),
        ("photo", "image/webp", ".webp"),
    ],
)
def test_stored_extension_follows_content_type(signed_in, upload_dir, filename, content_type, expected_suffix):
    resp = _upload(signed_in, filename, b"<script>alert(1)</script>", content_type)
    assert resp.status_code == 200, resp.text
    assert resp.json()["imageUrl"].endswith(expected_suffix)
    assert [p.suffix for p in upload_dir.iterdir()] == [expected_suffix]


@pytest.mark.parametrize("content_type", ["image/svg+xml", "text/html", "image/x-icon"])
def test_upload_rejects_unlisted_image_types(signed_in, upload_dir, content_type):
    resp = _upload(signed_in, "logo.svg", b"<svg onload='alert(1)'/>", content_type)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "File must be an image"

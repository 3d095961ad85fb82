"""Image variant API: upload, conditional GET, fallback, invalidation."""

import io

import pytest
from httpx import AsyncClient
from PIL import Image

from mangacache.api.v1.endpoints import images as images_endpoint
from mangacache.infrastructure.cache import TieredCache

PAST = "Sat, 01 Jan 2000 00:00:00 GMT"
FUTURE = "Fri, 01 Jan 2100 00:00:00 GMT"


def _jpeg(size: tuple[int, int] = (320, 480)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, (200, 40, 40)).save(buffer, "JPEG")
    return buffer.getvalue()


async def _upload(client: AsyncClient, headers: dict[str, str], image_id: str = "avatar-1") -> dict:
    response = await client.post(
        f"/api/v1/images/{image_id}",
        params={"profile": "avatar"},
        content=_jpeg(),
        headers={**headers, "Content-Type": "image/jpeg"},
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_upload_renders_every_variant(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    data = await _upload(client, admin_headers)
    assert data["profile"] == "avatar"
    assert {(v["resolution"], v["format"]) for v in data["variants"]} == {
        (res, fmt) for res in ("thumbnail", "small", "medium") for fmt in ("webp", "jpeg")
    }
    thumbnail = next(v for v in data["variants"] if v["resolution"] == "thumbnail")
    assert (thumbnail["width"], thumbnail["height"]) == (150, 200)


async def test_upload_requires_admin(client: AsyncClient, reader_headers: dict[str, str]) -> None:
    response = await client.post("/api/v1/images/avatar-1", content=_jpeg(), headers=reader_headers)
    assert response.status_code == 403


async def test_upload_rejects_empty_and_corrupt_bodies(
    client: AsyncClient, admin_headers: dict[str, str]
) -> None:
    empty = await client.post("/api/v1/images/avatar-1", content=b"", headers=admin_headers)
    assert empty.status_code == 400
    corrupt = await client.post(
        "/api/v1/images/avatar-1", params={"profile": "avatar"}, content=b"not an image", headers=admin_headers
    )
    assert corrupt.status_code == 422
    assert corrupt.json()["error"] == "IMAGE_PROCESSING_ERROR"


async def test_upload_over_the_size_limit_is_400(
    client: AsyncClient, admin_headers: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(images_endpoint, "MAX_UPLOAD_BYTES", 64)
    response = await client.post(
        "/api/v1/images/avatar-1", params={"profile": "avatar"}, content=_jpeg(), headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["details"]["field"] == "body"


async def test_upload_with_unknown_profile_is_400(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    response = await client.post(
        "/api/v1/images/avatar-1", params={"profile": "poster"}, content=_jpeg(), headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["error"] == "UNSUPPORTED_VARIANT"


async def test_get_serves_bytes_with_validators(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    await _upload(client, admin_headers)
    response = await client.get("/api/v1/images/avatar-1", params={"resolution": "small", "format": "jpeg"})
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert response.headers["Cache-Control"] == "public, max-age=86400"
    assert response.headers["ETag"].startswith('"')
    assert response.headers["Last-Modified"].endswith("GMT")
    assert response.headers["X-Image-Width"] == "300"
    assert "Vary" not in response.headers
    assert Image.open(io.BytesIO(response.content)).size == (300, 400)


async def test_conditional_get_returns_304(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    await _upload(client, admin_headers)
    first = await client.get("/api/v1/images/avatar-1")
    etag = first.headers["ETag"]

    by_etag = await client.get("/api/v1/images/avatar-1", headers={"If-None-Match": etag})
    assert by_etag.status_code == 304
    assert by_etag.content == b""
    assert by_etag.headers["ETag"] == etag

    assert (await client.get("/api/v1/images/avatar-1", headers={"If-Modified-Since": FUTURE})).status_code == 304
    assert (await client.get("/api/v1/images/avatar-1", headers={"If-Modified-Since": PAST})).status_code == 200


async def test_if_none_match_takes_precedence(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    await _upload(client, admin_headers)
    response = await client.get(
        "/api/v1/images/avatar-1", headers={"If-None-Match": '"stale"', "If-Modified-Since": FUTURE}
    )
    assert response.status_code == 200


async def test_missing_variant_is_404_and_fallback_serves_other_format(
    client: AsyncClient, cache: TieredCache, admin_headers: dict[str, str]
) -> None:
    await _upload(client, admin_headers)
    await cache.drain()
    await cache.delete("image:avatar-1:medium:webp")
    assert (await client.get("/api/v1/images/avatar-1")).status_code == 404
    fallback = await client.get("/api/v1/images/avatar-1", params={"fallback": "true"})
    assert fallback.status_code == 200
    assert fallback.headers["content-type"] == "image/jpeg"


async def test_unsupported_variant_is_400(client: AsyncClient) -> None:
    response = await client.get("/api/v1/images/avatar-1", params={"resolution": "huge"})
    assert response.status_code == 400
    assert response.json()["details"]["kind"] == "resolution"
    response = await client.get("/api/v1/images/avatar-1", params={"format": "gif"})
    assert response.status_code == 400


async def test_delete_invalidates_every_variant(
    client: AsyncClient, cache: TieredCache, admin_headers: dict[str, str]
) -> None:
    await _upload(client, admin_headers)
    await cache.drain()
    response = await client.delete("/api/v1/images/avatar-1", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"image_id": "avatar-1", "invalidated": 6}
    assert (await client.get("/api/v1/images/avatar-1")).status_code == 404

from __future__ import annotations

import asyncio
import json
from typing import List

import httpx
import pytest

from learnsync.errors import OrttoSyncError
from learnsync.ortto import CUSTOM_FIELDS, OrttoClient, PersonUpdate, build_merge_payload


def _client(handler, api_key: str | None = "key-123") -> OrttoClient:
    transport = httpx.MockTransport(handler)
    return OrttoClient(api_key, "https://ortto.test/v1/", client=httpx.AsyncClient(transport=transport))


def test_person_update_omits_unset_fields() -> None:
    fields = PersonUpdate(email="a@example.com", first_name="Ada", total_enrollments=0).to_fields()
    assert fields == {"str::email": "a@example.com", "str::first": "Ada", "int:cm:total-enrollments": 0}


def test_person_update_formats_phone_and_courses() -> None:
    fields = PersonUpdate(
        email="a@example.com",
        phone="+15551234567",
        enrolled_courses=["Intro", "Advanced"],
        current_bundle="B1",
        old_bundles="B2",
    ).to_fields()
    assert fields["phn::phone"] == {"phone": "+15551234567", "parse_with_country_code": True}
    assert fields["txt:cm:enrolled-courses"] == "Intro, Advanced"
    assert fields["str:cm:current-bundle"] == "B1"
    assert fields["txt:cm:old-bundles"] == "B2"


def test_merge_payload_shape() -> None:
    payload = build_merge_payload([PersonUpdate(email="a@example.com", sign_in_count=3)])
    assert payload == {
        "people": [{"fields": {"str::email": "a@example.com", "int:cm:sign-in-count": 3}}],
        "async": True,
        "merge_by": ["str::email"],
        "merge_strategy": 2,
        "find_strategy": 0,
    }


def test_merge_people_posts_with_api_key() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"people": [{"status": "merged"}]})

    async def scenario() -> dict:
        client = _client(handler)
        try:
            return await client.merge_people([PersonUpdate(email="a@example.com", last_course="Intro")])
        finally:
            await client.aclose()

    result = asyncio.run(scenario())
    assert result == {"people": [{"status": "merged"}]}
    assert len(seen) == 1
    request = seen[0]
    assert str(request.url) == "https://ortto.test/v1/person/merge"
    assert request.headers["X-Api-Key"] == "key-123"
    body = json.loads(request.content)
    assert body["people"][0]["fields"]["str:cm:last-course"] == "Intro"
    assert body["merge_by"] == ["str::email"]


def test_merge_people_skips_empty_batches() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    assert asyncio.run(_client(handler).merge_people([])) == {}


def test_merge_people_wraps_http_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="slow down")

    with pytest.raises(OrttoSyncError) as excinfo:
        asyncio.run(_client(handler).merge_people([PersonUpdate(email="a@example.com")]))
    assert "429" in str(excinfo.value)

    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(OrttoSyncError):
        asyncio.run(_client(broken).merge_people([PersonUpdate(email="a@example.com")]))


def test_missing_api_key_fails_before_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    with pytest.raises(OrttoSyncError):
        asyncio.run(_client(handler, api_key=None).merge_people([PersonUpdate(email="a@example.com")]))


def test_provision_custom_fields_continues_past_failures() -> None:
    names: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        names.append(body["name"])
        assert request.url.path == "/v1/person/custom-field/create"
        assert body["track_changes"] is True
        if body["name"] == "Sign-in count":
            return httpx.Response(400, json={"error": "field already exists"})
        return httpx.Response(200, json={"field": {"name": body["name"]}})

    created = asyncio.run(_client(handler).provision_custom_fields())
    assert names == [spec.name for spec in CUSTOM_FIELDS]
    assert "int:cm:sign-in-count" not in created
    assert len(created) == len(CUSTOM_FIELDS) - 1

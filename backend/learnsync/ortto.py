"""Async client for the Ortto person merge and custom field APIs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .config import Settings
from .errors import OrttoSyncError

logger = logging.getLogger(__name__)

FIELD_EMAIL = "str::email"
FIELD_FIRST_NAME = "str::first"
FIELD_LAST_NAME = "str::last"
FIELD_PHONE = "phn::phone"
FIELD_SIGN_IN_COUNT = "int:cm:sign-in-count"
FIELD_TOTAL_ENROLLMENTS = "int:cm:total-enrollments"
FIELD_ENROLLED_COURSES = "txt:cm:enrolled-courses"
FIELD_LAST_COURSE = "str:cm:last-course"
FIELD_LAST_COURSE_PROGRESS = "int:cm:last-course-progress"
FIELD_CURRENT_BUNDLE = "str:cm:current-bundle"
FIELD_OLD_BUNDLES = "txt:cm:old-bundles"

MERGE_STRATEGY_OVERWRITE = 2
FIND_STRATEGY_ANY = 0


@dataclass(frozen=True)
class CustomFieldSpec:
    field_id: str
    name: str
    field_type: str


# Ortto derives the field id from the display name, so names must stay in sync with the ids above.
CUSTOM_FIELDS: Sequence[CustomFieldSpec] = (
    CustomFieldSpec(FIELD_SIGN_IN_COUNT, "Sign-in count", "integer"),
    CustomFieldSpec(FIELD_TOTAL_ENROLLMENTS, "Total enrollments", "integer"),
    CustomFieldSpec(FIELD_ENROLLED_COURSES, "Enrolled courses", "large_text"),
    CustomFieldSpec(FIELD_LAST_COURSE, "Last course", "text"),
    CustomFieldSpec(FIELD_LAST_COURSE_PROGRESS, "Last course progress", "integer"),
    CustomFieldSpec(FIELD_CURRENT_BUNDLE, "Current bundle", "text"),
    CustomFieldSpec(FIELD_OLD_BUNDLES, "Old bundles", "large_text"),
)


@dataclass
class PersonUpdate:
    """One person's field values for a merge call; ``None`` values are omitted."""

    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    sign_in_count: Optional[int] = None
    total_enrollments: Optional[int] = None
    enrolled_courses: Optional[List[str]] = None
    last_course: Optional[str] = None
    last_course_progress: Optional[int] = None
    current_bundle: Optional[str] = None
    old_bundles: Optional[str] = None

    def to_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {FIELD_EMAIL: self.email}
        optional: Dict[str, Any] = {
            FIELD_FIRST_NAME: self.first_name,
            FIELD_LAST_NAME: self.last_name,
            FIELD_SIGN_IN_COUNT: self.sign_in_count,
            FIELD_TOTAL_ENROLLMENTS: self.total_enrollments,
            FIELD_LAST_COURSE: self.last_course,
            FIELD_LAST_COURSE_PROGRESS: self.last_course_progress,
            FIELD_CURRENT_BUNDLE: self.current_bundle,
            FIELD_OLD_BUNDLES: self.old_bundles,
        }
        if self.enrolled_courses is not None:
            optional[FIELD_ENROLLED_COURSES] = ", ".join(self.enrolled_courses)
        if self.phone:
            optional[FIELD_PHONE] = {"phone": self.phone, "parse_with_country_code": True}
        fields.update({key: value for key, value in optional.items() if value is not None})
        return fields


def build_merge_payload(
    updates: Sequence[PersonUpdate],
    *,
    find_strategy: int = FIND_STRATEGY_ANY,
) -> Dict[str, Any]:
    return {
        "people": [{"fields": update.to_fields()} for update in updates],
        "async": True,
        "merge_by": [FIELD_EMAIL],
        "merge_strategy": MERGE_STRATEGY_OVERWRITE,
        "find_strategy": find_strategy,
    }


class SyncClient(Protocol):
    """Downstream upsert-by-email interface used by the sync engine."""

    async def merge_people(self, updates: Sequence[PersonUpdate]) -> Dict[str, Any]:  # pragma: no cover
        ...


class OrttoClient:
    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        *,
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> "OrttoClient":
        return cls(
            settings.ortto_api_key,
            settings.ortto_api_base,
            timeout_seconds=settings.ortto_timeout_seconds,
            client=client,
        )

    async def merge_people(self, updates: Sequence[PersonUpdate]) -> Dict[str, Any]:
        if not updates:
            return {}
        payload = build_merge_payload(updates)
        data = await self._post("/person/merge", payload)
        logger.info("Ortto merge accepted for %s", ", ".join(update.email for update in updates))
        return data

    async def create_custom_field(self, name: str, field_type: str, *, track_changes: bool = True) -> Dict[str, Any]:
        payload = {"name": name, "type": field_type, "track_changes": track_changes}
        data = await self._post("/person/custom-field/create", payload)
        logger.info("Ortto custom field created: %s", name)
        return data

    async def provision_custom_fields(self) -> List[str]:
        """Create every custom field the sync writes; existing fields are skipped."""
        created: List[str] = []
        for spec in CUSTOM_FIELDS:
            try:
                await self.create_custom_field(spec.name, spec.field_type)
            except OrttoSyncError as exc:
                logger.warning("Skipping custom field %s: %s", spec.field_id, exc)
                continue
            created.append(spec.field_id)
        return created

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self._api_key:
            raise OrttoSyncError("ORTTO_API_KEY is not configured.")
        headers = {
            "X-Api-Key": self._api_key,
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.post(f"{self._base_url}{path}", json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise OrttoSyncError(
                f"Ortto {path} returned {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise OrttoSyncError(f"Ortto {path} call failed: {exc}") from exc
        try:
            data = response.json()
        except ValueError:
            data = {}
        return data if isinstance(data, dict) else {"result": data}


__all__ = [
    "CUSTOM_FIELDS",
    "CustomFieldSpec",
    "OrttoClient",
    "PersonUpdate",
    "SyncClient",
    "build_merge_payload",
]

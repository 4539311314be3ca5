"""
FitbitPlugin — daily activity, heart-rate, sleep and weight import.

Fitbit uses Authorization Code + PKCE with a confidential client: the
token endpoint wants HTTP Basic client authentication *and* the PKCE
verifier.  All time-series endpoints accept an inclusive date range.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx

from config.settings import config
from plugins.base import BasePlugin
from plugins.schemas import (
    FetchResult,
    FieldDefinition,
    ImportedRecord,
    OAuthConfig,
    OAuthCredentials,
)

logger = logging.getLogger(__name__)

# Fitbit OAuth2 endpoints
_FITBIT_AUTH_URL = "https://www.fitbit.com/oauth2/authorize"
_FITBIT_TOKEN_URL = "https://api.fitbit.com/oauth2/token"
_FITBIT_API = "https://api.fitbit.com"

_SCOPES = ("activity", "heartrate", "sleep", "weight", "profile")

_FIELDS: List[FieldDefinition] = [
    FieldDefinition(id="steps", name="Steps", unit="steps", description="Total steps walked"),
    FieldDefinition(id="distance", name="Distance", unit="km", description="Distance covered"),
    FieldDefinition(id="calories", name="Calories burned", unit="kcal", description="Total calories out"),
    FieldDefinition(id="floors", name="Floors", unit="floors", description="Floors climbed"),
    FieldDefinition(
        id="very_active_minutes",
        name="Very active minutes",
        unit="min",
        description="Minutes of vigorous activity",
    ),
    FieldDefinition(
        id="resting_heart_rate",
        name="Resting heart rate",
        unit="bpm",
        description="Daily resting heart rate",
    ),
    FieldDefinition(id="sleep_minutes", name="Sleep", unit="min", description="Minutes asleep, all sleep logs of the day"),
    FieldDefinition(id="weight", name="Weight", unit="kg", description="Logged body weight"),
]

# field_id -> (resource path, response key)
_ACTIVITY_SERIES = {
    "steps": ("activities/steps", "activities-steps"),
    "distance": ("activities/distance", "activities-distance"),
    "calories": ("activities/calories", "activities-calories"),
    "floors": ("activities/floors", "activities-floors"),
    "very_active_minutes": ("activities/minutesVeryActive", "activities-minutesVeryActive"),
}


def _to_float(raw: Any) -> Optional[float]:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _series_records(field_id: str, entries: Iterable[Dict[str, Any]]) -> List[ImportedRecord]:
    records = []
    for entry in entries:
        value = _to_float(entry.get("value"))
        if value is None or not entry.get("dateTime"):
            continue
        records.append(ImportedRecord(date=entry["dateTime"], field_id=field_id, value=value))
    return records


def _heart_records(payload: Dict[str, Any]) -> List[ImportedRecord]:
    records = []
    for entry in payload.get("activities-heart", []):
        resting = _to_float((entry.get("value") or {}).get("restingHeartRate"))
        if resting is None:
            continue
        records.append(
            ImportedRecord(date=entry["dateTime"], field_id="resting_heart_rate", value=resting)
        )
    return records


def _sleep_records(payload: Dict[str, Any]) -> List[ImportedRecord]:
    per_day: Dict[str, float] = defaultdict(float)
    for log in payload.get("sleep", []):
        minutes = _to_float(log.get("minutesAsleep"))
        if minutes is None or not log.get("dateOfSleep"):
            continue
        per_day[log["dateOfSleep"]] += minutes
    return [
        ImportedRecord(date=day, field_id="sleep_minutes", value=minutes)
        for day, minutes in sorted(per_day.items())
    ]


def _weight_records(payload: Dict[str, Any]) -> List[ImportedRecord]:
    return _series_records("weight", payload.get("body-weight", []))


class FitbitPlugin(BasePlugin):
    """Fitbit Web API data source."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_base: Optional[str] = None,
    ) -> None:
        self._client_id = client_id if client_id is not None else config.fitbit_client_id
        self._client_secret = client_secret if client_secret is not None else config.fitbit_client_secret
        self._redirect_base = redirect_base or config.oauth_redirect_base

    @property
    def id(self) -> str:
        return "fitbit"

    @property
    def name(self) -> str:
        return "Fitbit"

    @property
    def description(self) -> str:
        return "Import steps, activity, heart rate, sleep and weight from Fitbit"

    @property
    def icon(self) -> str:
        return "⌚"

    @property
    def oauth_config(self) -> OAuthConfig:
        return OAuthConfig(
            client_id=self._client_id,
            client_secret=self._client_secret or None,
            authorization_url=_FITBIT_AUTH_URL,
            token_url=_FITBIT_TOKEN_URL,
            redirect_uri=f"{self._redirect_base}/api/v1/plugins/fitbit/callback",
            scopes=_SCOPES,
            use_pkce=True,
        )

    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    def get_available_fields(self) -> List[FieldDefinition]:
        return list(_FIELDS)

    async def fetch_data(
        self,
        credentials: OAuthCredentials,
        start_date: str,
        end_date: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> FetchResult:
        if http_client is not None:
            return await self._fetch_all(http_client, credentials, start_date, end_date)
        async with httpx.AsyncClient(timeout=config.http_timeout_seconds) as client:
            return await self._fetch_all(client, credentials, start_date, end_date)

    async def _fetch_all(
        self,
        client: httpx.AsyncClient,
        credentials: OAuthCredentials,
        start_date: str,
        end_date: str,
    ) -> FetchResult:
        headers = {
            "Authorization": f"Bearer {credentials.access_token}",
            "Accept": "application/json",
        }
        requests: List[tuple[str, str, Callable[[Dict[str, Any]], List[ImportedRecord]]]] = []
        for field_id, (resource, key) in _ACTIVITY_SERIES.items():
            requests.append((
                field_id,
                f"{_FITBIT_API}/1/user/-/{resource}/date/{start_date}/{end_date}.json",
                lambda payload, f=field_id, k=key: _series_records(f, payload.get(k, [])),
            ))
        requests.append((
            "resting_heart_rate",
            f"{_FITBIT_API}/1/user/-/activities/heart/date/{start_date}/{end_date}.json",
            _heart_records,
        ))
        requests.append((
            "sleep_minutes",
            f"{_FITBIT_API}/1.2/user/-/sleep/date/{start_date}/{end_date}.json",
            _sleep_records,
        ))
        requests.append((
            "weight",
            f"{_FITBIT_API}/1/user/-/body/weight/date/{start_date}/{end_date}.json",
            _weight_records,
        ))

        result = FetchResult()
        for field_id, url, parse in requests:
            try:
                resp = await client.get(url, headers=headers)
            except httpx.HTTPError as exc:
                logger.warning("Fitbit request for %s failed: %s", field_id, exc)
                result.errors.append(f"{field_id}: {exc}")
                continue

            if not resp.is_success:
                logger.warning("Fitbit %s returned HTTP %d", field_id, resp.status_code)
                result.errors.append(f"{field_id}: HTTP {resp.status_code} {resp.text[:200]}")
                continue

            try:
                result.records.extend(parse(resp.json()))
            except (ValueError, KeyError) as exc:
                result.errors.append(f"{field_id}: unexpected response ({exc})")

        logger.debug(
            "Fitbit fetch %s..%s: %d records, %d errors",
            start_date, end_date, len(result.records), len(result.errors),
        )
        return result

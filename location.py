"""One-shot lookup of the device's approximate position (IP geolocation)."""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from errors import LocationError, LocationErrorReason

logger = logging.getLogger(__name__)

# ipinfo resolves to city level; report that as the accuracy radius
CITY_LEVEL_ACCURACY_M = 5000.0


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None


def _parse_loc(value):
    try:
        lat, lon = (float(part) for part in value.split(","))
    except (AttributeError, ValueError):
        raise LocationError(LocationErrorReason.POSITION_UNAVAILABLE)
    return lat, lon


def get_current_location(provider_url="https://ipinfo.io/json", token="", timeout=10.0) -> Coordinates:
    if not provider_url:
        raise LocationError(LocationErrorReason.UNSUPPORTED)

    params = {"token": token} if token else None
    try:
        response = requests.get(provider_url, params=params, timeout=timeout)
    except requests.exceptions.Timeout as e:
        raise LocationError(LocationErrorReason.TIMEOUT) from e
    except requests.exceptions.ConnectionError as e:
        raise LocationError(LocationErrorReason.POSITION_UNAVAILABLE) from e
    except requests.exceptions.RequestException as e:
        raise LocationError(LocationErrorReason.UNKNOWN) from e

    if response.status_code in (401, 403):
        raise LocationError(LocationErrorReason.PERMISSION_DENIED)
    if response.status_code == 404:
        raise LocationError(LocationErrorReason.POSITION_UNAVAILABLE)
    if not response.ok:
        logger.error(f"❌ Location lookup failed with status {response.status_code}")
        raise LocationError(LocationErrorReason.UNKNOWN)

    try:
        data = response.json()
    except ValueError as e:
        raise LocationError(LocationErrorReason.POSITION_UNAVAILABLE) from e

    if not isinstance(data, dict) or data.get("bogon") or "loc" not in data:
        raise LocationError(LocationErrorReason.POSITION_UNAVAILABLE)
    latitude, longitude = _parse_loc(data["loc"])
    return Coordinates(
        latitude=latitude,
        longitude=longitude,
        accuracy=CITY_LEVEL_ACCURACY_M,
        city=data.get("city"),
        region=data.get("region"),
        country=data.get("country"),
    )


def get_location_from_settings(settings) -> Coordinates:
    return get_current_location(
        provider_url=settings.location_provider_url,
        token=settings.ipinfo_token,
        timeout=settings.location_timeout,
    )

# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Reverse geocoding of GPS coordinates through OpenStreetMap's Nominatim.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from geopy.exc import GeocoderServiceError, GeocoderTimedOut, GeopyError
from geopy.geocoders import Nominatim

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "fairslide/1.0 (photo slideshow geolocation)"
DEFAULT_TIMEOUT = 10

# City-level detail
NOMINATIM_ZOOM = 13

# Used for "city" when the address has no village, town or city
CITY_FALLBACK_KEYS = ("municipality", "county", "state_district")


@dataclass
class GeocodeResult:
    """Place names for a coordinate. Every field is None on failure."""
    country: Optional[str] = None
    village: Optional[str] = None
    town: Optional[str] = None
    city: Optional[str] = None
    succeeded: bool = False

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "country": self.country,
            "village": self.village,
            "town": self.town,
            "city": self.city,
        }


def parse_address(address: Dict[str, Any]) -> GeocodeResult:
    """
    Pick place names out of a Nominatim address block.

    Args:
        address: The "address" object of a Nominatim response.

    Returns:
        GeocodeResult with the fields found.
    """
    result = GeocodeResult(succeeded=True)
    result.country = address.get("country") or None

    for key in ("village", "town", "city"):
        value = address.get(key)
        if value:
            setattr(result, key, value)

    if not (result.village or result.town or result.city):
        for key in CITY_FALLBACK_KEYS:
            if address.get(key):
                result.city = address[key]
                break

    return result


def reverse_geocode(
    latitude: float,
    longitude: float,
    user_agent: str = DEFAULT_USER_AGENT,
    timeout: int = DEFAULT_TIMEOUT
) -> GeocodeResult:
    """
    Convert GPS coordinates to place names.

    Never raises: failures are logged and give an empty result.

    Args:
        latitude: GPS latitude in decimal degrees.
        longitude: GPS longitude in decimal degrees.
        user_agent: Identifying User-Agent, required by Nominatim's policy.
        timeout: Request timeout in seconds.

    Returns:
        GeocodeResult with country, village, town and city.
    """
    try:
        geolocator = Nominatim(user_agent=user_agent, timeout=timeout)

        location = geolocator.reverse(
            (latitude, longitude),
            exactly_one=True,
            zoom=NOMINATIM_ZOOM,
            addressdetails=True,
        )

        if location is None or not location.raw:
            logger.warning(f"No geocoding result for {latitude}, {longitude}")
            return GeocodeResult()

        address = location.raw.get("address")
        if not address:
            logger.warning(f"Geocoding result for {latitude}, {longitude} has no address")
            return GeocodeResult()

        result = parse_address(address)
        logger.debug(
            f"Geocoded {latitude}, {longitude} -> "
            f"{result.village or result.town or result.city}, {result.country}"
        )
        return result

    except (GeocoderTimedOut, GeocoderServiceError) as e:
        logger.warning(f"Geocoding service error for {latitude}, {longitude}: {e}")
    except GeopyError as e:
        logger.warning(f"Geocoding failed for {latitude}, {longitude}: {e}")
    except Exception as e:
        logger.error(f"Unexpected reverse geocoding error for {latitude}, {longitude}: {e}")

    return GeocodeResult()

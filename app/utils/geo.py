from geopy.distance import geodesic

from app.config import settings
from app.models.enums import LocationVerification


def calculate_distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate geodesic distance in km between two coordinate pairs."""
    return geodesic((lat1, lng1), (lat2, lng2)).km


def verify_location(
    lat: float | None,
    lng: float | None,
    venue_lat: float | None,
    venue_lng: float | None,
    max_distance_m: int | None = None,
) -> LocationVerification:
    """Whether a check-in position is close enough to the venue.

    Unverified when either side has no coordinates.
    """
    if None in (lat, lng, venue_lat, venue_lng):
        return LocationVerification.UNVERIFIED
    limit = max_distance_m if max_distance_m is not None else settings.ATTENDANCE_MAX_DISTANCE_METERS
    distance_m = calculate_distance_km(lat, lng, venue_lat, venue_lng) * 1000
    if distance_m <= limit:
        return LocationVerification.VERIFIED
    return LocationVerification.OUT_OF_RANGE

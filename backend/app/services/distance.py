"""Great-circle distance helpers."""
import math

EARTH_RADIUS_KM = 6371
KM_TO_MILES = 0.621371


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in kilometers between two coordinates."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def format_distance(km: float, unit: str = "km") -> str:
    """Human readable distance: meters under 1 km, one decimal under 10, else rounded."""
    if unit == "mi":
        value = km * KM_TO_MILES
    else:
        value = km
        if value < 1:
            return f"{round(km * 1000)} m"

    if value < 10:
        return f"{value:.1f} {unit}"
    return f"{round(value)} {unit}"

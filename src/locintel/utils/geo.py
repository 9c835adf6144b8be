from math import asin, cos, radians, sin, sqrt

import numpy as np

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two GPS points, in meters."""
    la1, lo1, la2, lo2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = la2 - la1
    dlon = lo2 - lo1
    a = sin(dlat / 2) ** 2 + cos(la1) * cos(la2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


def haversine_m_np(lat1, lon1, lat2, lon2) -> np.ndarray:
    """Vectorised haversine (meters) for arrays / pandas Series."""
    la1, lo1, la2, lo2 = (np.radians(np.asarray(v, dtype="float64")) for v in (lat1, lon1, lat2, lon2))
    a = np.sin((la2 - la1) / 2) ** 2 + np.cos(la1) * np.cos(la2) * np.sin((lo2 - lo1) / 2) ** 2
    return 2 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def in_radius(center_lat: float, center_lon: float, lat: float, lon: float, radius_m: float) -> bool:
    return haversine_m(center_lat, center_lon, lat, lon) <= radius_m


def format_coords(lat: float, lon: float, digits: int = 4) -> str:
    return f"{lat:.{digits}f}, {lon:.{digits}f}"


def coord_key(lat: float, lon: float, precision: int = 4) -> str:
    """Stable cache key: coordinates rounded to `precision` decimals (4 ~ 11 m)."""
    return f"{round(lat, precision):.{precision}f},{round(lon, precision):.{precision}f}"

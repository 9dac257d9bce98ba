"""
Geo helpers for crew and job locations.
Uses Haversine formula to calculate distance between points.
"""
import math
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple, TypeVar
from urllib.parse import quote

from ..config import settings
from ..schemas.operations import OperationsMapCrew, OperationsMapJob

EARTH_RADIUS_KM = 6371.0

T = TypeVar("T")


class LatLng(NamedTuple):
    lat: float
    lng: float


class RadiusMatch(NamedTuple):
    item: object
    coords: LatLng
    distance_km: float


def haversine_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Returns:
        Distance in kilometers
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_km(a: LatLng, b: LatLng) -> float:
    return haversine_distance_km(a.lat, a.lng, b.lat, b.lng)


def job_coords(job: OperationsMapJob) -> Optional[LatLng]:
    if job.latitude is None or job.longitude is None:
        return None
    return LatLng(job.latitude, job.longitude)


def resolve_crew_coords(
    crew: OperationsMapCrew,
    job_by_id: Dict[str, OperationsMapJob],
) -> Optional[LatLng]:
    """
    Crew coordinates from its own location, else from the job site it is parked at.
    """
    if crew.location.lat is not None and crew.location.lng is not None:
        return LatLng(crew.location.lat, crew.location.lng)
    if crew.location.job_id:
        job = job_by_id.get(crew.location.job_id)
        if job is not None:
            return job_coords(job)
    return None


def within_radius(
    point: LatLng,
    candidates: Iterable[Tuple[T, Optional[LatLng]]],
    radius_km: float,
) -> List[RadiusMatch]:
    """
    Candidates whose coordinates fall inside radius_km of point, nearest first.

    Candidates without coordinates never match. Distances are rounded to 2 dp.
    """
    matches: List[RadiusMatch] = []
    for item, coords in candidates:
        if coords is None:
            continue
        distance = distance_km(point, coords)
        if distance > radius_km:
            continue
        matches.append(RadiusMatch(item, coords, round(distance, 2)))
    matches.sort(key=lambda match: match.distance_km)
    return matches


def _encode(value: str) -> str:
    return quote(value, safe="-_.!~*'()")


def build_maps_search_url(address: str) -> str:
    return f"{settings.maps_search_base_url}?api=1&query={_encode(address)}"


def build_route_url(origin: LatLng, destination: str) -> str:
    origin_value = f"{origin.lat},{origin.lng}"
    return (
        f"{settings.maps_directions_base_url}?api=1"
        f"&origin={_encode(origin_value)}"
        f"&destination={_encode(destination)}"
        "&travelmode=driving"
    )

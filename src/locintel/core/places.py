from __future__ import annotations

from collections.abc import Sequence

from ..utils.geo import format_coords, haversine_m
from .models import HistoryPoint, Place

CLUSTER_DISTANCE_M = 100.0
MIN_CLUSTER_POINTS = 2


def _finalize(cluster: list[HistoryPoint], ongoing: bool) -> Place:
    n = len(cluster)
    lat = sum(p.lat for p in cluster) / n
    lon = sum(p.lon for p in cluster) / n
    first = cluster[0]
    return Place(
        id=first.id,
        lat=lat,
        lon=lon,
        address=first.address or format_coords(lat, lon, 4),
        arrived_at=first.recorded_at,
        left_at=cluster[-1].recorded_at,
        points=n,
        ongoing=ongoing,
    )


def cluster_places(
    points: Sequence[HistoryPoint],
    cluster_distance_m: float = CLUSTER_DISTANCE_M,
    min_points: int = MIN_CLUSTER_POINTS,
) -> list[Place]:
    """
    Group history into visited places, most recent first.

    Single pass: a point joins the current cluster when it lies within
    `cluster_distance_m` of the cluster's *last* point (chain distance, so a
    slow drift stays one place). Clusters smaller than `min_points` are
    dropped. The trailing cluster is reported as ongoing.

    `points` must be sorted by recorded_at ascending; this is not checked.
    """
    places: list[Place] = []
    cluster: list[HistoryPoint] = []

    for p in points:
        if not cluster:
            cluster.append(p)
            continue
        last = cluster[-1]
        if haversine_m(last.lat, last.lon, p.lat, p.lon) < cluster_distance_m:
            cluster.append(p)
            continue
        if len(cluster) >= min_points:
            places.append(_finalize(cluster, ongoing=False))
        cluster = [p]

    if len(cluster) >= min_points:
        places.append(_finalize(cluster, ongoing=True))

    places.reverse()
    return places

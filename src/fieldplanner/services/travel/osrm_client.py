"""HTTP client for road-network distances from an OSRM server."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional, Sequence

import httpx

from ...config import settings
from ..geospatial import coordinate_key

# OSRM table endpoint has URL length limits; chunk pairs combine two blocks per request.
DEFAULT_MAX_COORDINATES_PER_REQUEST = 80
DEFAULT_MAX_PARALLEL_REQUESTS = 8

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RoadDistanceMatrix:
    """Road distances in km between prefetched points, keyed by rounded coordinates."""

    distances_km: dict[tuple[tuple[float, float], tuple[float, float]], float] = field(default_factory=dict)

    @classmethod
    def from_table(
        cls, coordinates: Sequence[tuple[float, float]], distances_m: Sequence[Sequence[Optional[float]]]
    ) -> "RoadDistanceMatrix":
        keys = [coordinate_key(lat, lon) for lat, lon in coordinates]
        matrix = cls()
        for i, row in enumerate(distances_m):
            for j, value in enumerate(row):
                # None marks an unreachable pair; the estimator falls back to haversine for it
                if value is not None:
                    matrix.distances_km[(keys[i], keys[j])] = float(value) / 1000.0
        return matrix

    def lookup(self, origin: tuple[float, float], destination: tuple[float, float]) -> Optional[float]:
        return self.distances_km.get((coordinate_key(*origin), coordinate_key(*destination)))

    def __len__(self) -> int:
        return len(self.distances_km)


class OSRMClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float = 30.0,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        max_coordinates_per_request: int = DEFAULT_MAX_COORDINATES_PER_REQUEST,
        max_parallel_requests: int = DEFAULT_MAX_PARALLEL_REQUESTS,
    ) -> None:
        self.base_url = base_url or settings.osrm_base_url
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self.max_coordinates_per_request = max_coordinates_per_request
        self.max_parallel_requests = max_parallel_requests
        self.timeout = timeout

    def _get_client(self) -> httpx.Client:
        # One client per request keeps worker threads independent
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            limits=httpx.Limits(max_connections=1, max_keepalive_connections=0),
        )

    def _table_single_request(
        self,
        coordinates: Sequence[tuple[float, float]],
        sources: Sequence[int] | None = None,
        destinations: Sequence[int] | None = None,
    ) -> dict:
        """Make a single OSRM table request for a subset of coordinates."""
        if len(coordinates) < 1:
            raise ValueError("At least one coordinate is required for OSRM table.")

        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        if sources is None:
            sources = list(range(len(coordinates)))
        if destinations is None:
            destinations = list(range(len(coordinates)))

        params = {
            "annotations": "duration,distance",
            "sources": ";".join(str(i) for i in sources),
            "destinations": ";".join(str(i) for i in destinations),
        }
        url = f"{self.base_url}/table/v1/{self.profile}/{coordinate_str}"

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if "durations" not in data or "distances" not in data:
                        raise ValueError("OSRM response missing durations/distances.")
                    return data
                except httpx.HTTPStatusError as e:
                    if e.response.status_code == 414:
                        raise ValueError(
                            f"OSRM request URL too large ({len(coordinates)} coordinates). "
                            f"Try reducing max_coordinates_per_request (current: {self.max_coordinates_per_request})"
                        ) from e
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    time.sleep(self.backoff_seconds * attempt)
                except httpx.TimeoutException as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"OSRM request timed out after {self.max_retries} attempts: {e}")
                        raise
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM request timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                except (httpx.ConnectError, httpx.NetworkError, OSError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ConnectionError(
                            f"Failed to connect to OSRM service at {self.base_url}: {e}"
                        ) from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
                except (httpx.HTTPError, ValueError):
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    time.sleep(self.backoff_seconds * attempt)
        finally:
            client.close()

    def table(self, coordinates: Sequence[tuple[float, float]]) -> dict:
        """Get distance/duration matrix for coordinates, chunking large requests."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM table.")

        if len(coordinates) <= self.max_coordinates_per_request:
            return self._table_single_request(coordinates)

        start_time = time.time()
        chunk_size = self.max_coordinates_per_request
        chunk_ranges = [
            (i, min(i + chunk_size, len(coordinates))) for i in range(0, len(coordinates), chunk_size)
        ]
        n = len(coordinates)
        durations: list[list[float | None]] = [[None] * n for _ in range(n)]
        distances: list[list[float | None]] = [[None] * n for _ in range(n)]

        def request_block(src: tuple[int, int], dst: tuple[int, int]) -> tuple[tuple[int, int], tuple[int, int], dict]:
            block = list(coordinates[src[0]:src[1]]) + list(coordinates[dst[0]:dst[1]])
            src_count = src[1] - src[0]
            result = self._table_single_request(
                block, list(range(src_count)), list(range(src_count, len(block)))
            )
            return src, dst, result

        pairs = [(src, dst) for src in chunk_ranges for dst in chunk_ranges]
        logger.info(f"Chunking OSRM table request: {n} coordinates in {len(pairs)} requests")

        failed = 0
        with ThreadPoolExecutor(max_workers=self.max_parallel_requests) as executor:
            futures = [executor.submit(request_block, src, dst) for src, dst in pairs]
            for future in as_completed(futures):
                try:
                    (src_start, src_end), (dst_start, dst_end), result = future.result()
                except (ConnectionError, ValueError, httpx.HTTPError) as exc:
                    failed += 1
                    logger.warning(f"OSRM chunk request failed: {exc}")
                    continue
                for local_src, global_src in enumerate(range(src_start, src_end)):
                    for local_dst, global_dst in enumerate(range(dst_start, dst_end)):
                        durations[global_src][global_dst] = result["durations"][local_src][local_dst]
                        distances[global_src][global_dst] = result["distances"][local_src][local_dst]

        if failed > len(pairs) / 2:
            raise ConnectionError(
                f"Critical failure: {failed}/{len(pairs)} OSRM chunk requests failed. "
                "Please check OSRM connectivity and try again."
            )
        logger.info(f"Completed OSRM table request: {len(pairs)} chunk requests in {time.time() - start_time:.2f}s")
        return {"durations": durations, "distances": distances}


def fetch_road_distances(
    coordinates: Sequence[tuple[float, float]], client: OSRMClient | None = None
) -> RoadDistanceMatrix:
    """Fetch a road distance matrix for ``coordinates`` (lat, lon pairs)."""
    unique = list(dict.fromkeys(coordinate_key(lat, lon) for lat, lon in coordinates))
    if len(unique) < 2:
        return RoadDistanceMatrix()
    client = client or OSRMClient()
    table = client.table(unique)
    return RoadDistanceMatrix.from_table(unique, table["distances"])

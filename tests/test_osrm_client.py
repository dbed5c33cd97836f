import httpx
import pytest

from fieldplanner.services.travel.osrm_client import OSRMClient, fetch_road_distances


def _coords(count: int) -> list[tuple[float, float]]:
    return [(24.0, round(46.0 + 0.001 * i, 5)) for i in range(count)]


def _index(lon: float) -> int:
    return round((lon - 46.0) / 0.001)


def _handler(request: httpx.Request) -> httpx.Response:
    points = request.url.path.rsplit("/", 1)[-1].split(";")
    indices = [_index(float(point.split(",")[0])) for point in points]
    sources = [indices[int(i)] for i in request.url.params["sources"].split(";")]
    destinations = [indices[int(i)] for i in request.url.params["destinations"].split(";")]
    matrix = [[abs(src - dst) * 100.0 for dst in destinations] for src in sources]
    return httpx.Response(200, json={"code": "Ok", "durations": matrix, "distances": matrix})


def _client(monkeypatch, handler=_handler, **kwargs) -> OSRMClient:
    client = OSRMClient(base_url="http://osrm.test", max_retries=0, backoff_seconds=0, **kwargs)
    monkeypatch.setattr(client, "_get_client", lambda: httpx.Client(transport=httpx.MockTransport(handler)))
    return client


def test_table_chunks_large_requests(monkeypatch):
    client = _client(monkeypatch, max_coordinates_per_request=4, max_parallel_requests=2)
    coordinates = _coords(10)

    table = client.table(coordinates)

    assert len(table["distances"]) == 10
    assert table["distances"][0][9] == 900.0
    assert table["distances"][7][2] == 500.0
    assert all(value is not None for row in table["distances"] for value in row)


def test_table_raises_when_most_chunks_fail(monkeypatch):
    def failing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    client = _client(monkeypatch, handler=failing, max_coordinates_per_request=4)

    with pytest.raises(ConnectionError):
        client.table(_coords(10))


def test_client_requires_base_url(monkeypatch):
    monkeypatch.setattr("fieldplanner.services.travel.osrm_client.settings.osrm_base_url", None)
    with pytest.raises(ValueError):
        OSRMClient()


def test_fetch_road_distances_builds_km_matrix(monkeypatch):
    client = _client(monkeypatch)
    coordinates = _coords(3) + _coords(1)

    matrix = fetch_road_distances(coordinates, client)

    assert len(matrix) == 9
    assert matrix.lookup((24.0, 46.0), (24.0, 46.002)) == pytest.approx(0.2)
    assert matrix.lookup((24.0, 46.0), (25.0, 46.0)) is None

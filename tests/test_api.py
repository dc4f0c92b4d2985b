import pytest
from fastapi.testclient import TestClient

from geotally import config
from geotally.engine import GeoAnalytics
from geotally.errors import ConfigError, DatasetError
from geotally.main import app

SAMPLE_CSV = """\
start_ip,end_ip,country
1.2.3.0,1.2.3.255,US
10.0.0.0,10.0.0.255,CA
10.0.1.0,10.0.1.255,MX
"""


@pytest.fixture
def paths(tmp_path):
    dataset = tmp_path / "ranges.csv"
    dataset.write_text(SAMPLE_CSV, encoding="utf-8")
    return dataset, tmp_path / "analytics.db"


@pytest.fixture
def engine(paths):
    """Install an engine on the app without running the lifespan."""
    e = GeoAnalytics.open(*paths)
    app.state.engine = e
    yield e
    app.state.engine = None
    e.close()


# Use TestClient without lifespan; the engine fixture stands in for startup
client = TestClient(app, raise_server_exceptions=True)


def _hit(ip: str):
    return client.get("/", headers={"fly-client-ip": ip})


def test_root_reports_country(engine):
    resp = _hit("1.2.3.10")
    assert resp.status_code == 200
    assert resp.json() == {"country": "US"}


def test_root_unknown_country(engine):
    resp = _hit("1.2.4.1")
    assert resp.status_code == 200
    assert resp.json() == {"country": None}


def test_root_without_client_ip(engine):
    # TestClient's peer address is not an IP, so nothing is resolved
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json() == {"country": None}


def test_root_with_garbage_header(engine):
    resp = _hit("definitely-not-an-ip")
    assert resp.status_code == 200
    assert resp.json() == {"country": None}


def test_root_custom_header(engine, monkeypatch):
    monkeypatch.setattr(config, "CLIENT_IP_HEADER", "x-real-ip")
    resp = client.get("/", headers={"x-real-ip": "10.0.1.5", "fly-client-ip": "1.2.3.4"})
    assert resp.json() == {"country": "MX"}


def test_analytics_plain_text(engine):
    for ip in ["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.1.1", "10.0.1.2", "192.168.0.1"]:
        _hit(ip)
    resp = client.get("/analytics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.text == "CA: 3\nMX: 2\n"


def test_analytics_empty(engine):
    resp = client.get("/analytics")
    assert resp.status_code == 200
    assert resp.text == ""


def test_status_endpoint(engine):
    _hit("1.2.3.4")
    resp = client.get("/api/v1/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["uptime_seconds"] >= 0
    assert "started_at" in data
    assert data["ranges"] == {"ipv4": 3, "ipv6": 0}
    assert data["countries"] == 1


def test_lifespan_opens_and_closes_engine(paths, monkeypatch):
    dataset, db = paths
    monkeypatch.setattr(config, "GEOLITE2_COUNTRY_DB", str(dataset))
    monkeypatch.setattr(config, "ANALYTICS_DB", str(db))
    with TestClient(app) as c:
        assert c.get("/", headers={"fly-client-ip": "1.2.3.4"}).json() == {"country": "US"}
        status = c.get("/api/v1/status").json()
        assert status["started_at"].endswith("Z")
        assert c.get("/analytics").text == "US: 1\n"
    assert app.state.engine is None

    # Counts persist into the next run
    with TestClient(app) as c:
        assert c.get("/analytics").text == "US: 1\n"


@pytest.mark.parametrize("missing", ["GEOLITE2_COUNTRY_DB", "ANALYTICS_DB"])
def test_startup_requires_config(paths, monkeypatch, missing):
    dataset, db = paths
    monkeypatch.setattr(config, "GEOLITE2_COUNTRY_DB", str(dataset))
    monkeypatch.setattr(config, "ANALYTICS_DB", str(db))
    monkeypatch.setattr(config, missing, "")
    with pytest.raises(ConfigError, match=missing):
        with TestClient(app):
            pass


def test_startup_fails_on_bad_dataset(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "GEOLITE2_COUNTRY_DB", str(tmp_path / "missing.csv"))
    monkeypatch.setattr(config, "ANALYTICS_DB", str(tmp_path / "analytics.db"))
    with pytest.raises(DatasetError):
        with TestClient(app):
            pass

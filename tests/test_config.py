from scriptvault.config import load_raw_config
from scriptvault.config.fetch import Fetch
from scriptvault.config.matching import Matching
from scriptvault.config.storage import Storage


def test_sections_read_config_file_values():
    raw = {
        "scriptvault": {
            "storage": {"data_file": "/tmp/x.json.gz", "vacuum_interval": 60},
            "fetch": {"request_timeout": 5, "max_resource_mb": 2, "user_agent": "ua"},
            "matching": {"blacklist": ["example.com"]},
        }
    }

    storage = Storage(raw)
    fetch = Fetch(raw)
    matching = Matching(raw)

    assert storage.DATA_FILE == "/tmp/x.json.gz"
    assert storage.VACUUM_INTERVAL == 60
    assert (fetch.REQUEST_TIMEOUT, fetch.MAX_RESOURCE_MB, fetch.USER_AGENT) == (5.0, 2, "ua")
    assert matching.BLACKLIST == ["example.com"]


def test_sections_fall_back_to_environment(monkeypatch):
    monkeypatch.setenv("SCRIPTVAULT_DATA_FILE", "env.json.gz")
    monkeypatch.setenv("VACUUM_INTERVAL", "120")
    monkeypatch.setenv("FETCH_TIMEOUT", "7.5")
    monkeypatch.setenv("BLACKLIST", "a.test, ,https://b.test/*")

    assert Storage({}).DATA_FILE == "env.json.gz"
    assert Storage(None).VACUUM_INTERVAL == 120
    assert Fetch({}).REQUEST_TIMEOUT == 7.5
    assert Matching({}).BLACKLIST == ["a.test", "https://b.test/*"]


def test_defaults(monkeypatch):
    for name in ("SCRIPTVAULT_DATA_FILE", "VACUUM_INTERVAL", "MAX_RESOURCE_MB", "BLACKLIST"):
        monkeypatch.delenv(name, raising=False)

    assert Storage({}).DATA_FILE.endswith("store.json.gz")
    assert Storage({}).VACUUM_INTERVAL == 86400
    assert Fetch({}).MAX_RESOURCE_MB == 10
    assert Matching({}).BLACKLIST == []


def test_load_raw_config(tmp_path, monkeypatch):
    path = tmp_path / "config.toml"
    path.write_text('[scriptvault.storage]\nvacuum_interval = 30\n', encoding="utf-8")

    assert load_raw_config(path) == {"scriptvault": {"storage": {"vacuum_interval": 30}}}
    assert load_raw_config(tmp_path / "missing.toml") == {}

    monkeypatch.setenv("SCRIPTVAULT_CONFIG", str(path))
    assert Storage(load_raw_config()).VACUUM_INTERVAL == 30

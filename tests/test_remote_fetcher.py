from datetime import datetime
from unittest import mock

import pytest
import requests

from rtvm.core.remote_fetcher import NetworkError, RemoteFetcher, RemoteFetcherError
from rtvm.core.version_utils import parse_spec
from rtvm.utils.rate_limiter import RateLimiter
from rtvm.utils.retry import RetryHandler

NODE_INDEX = [
    {"version": "v22.3.0", "lts": False, "date": "2024-06-11"},
    {"version": "v20.15.0", "lts": "Iron", "date": "2024-06-20"},
    {"version": "v20.9.0", "lts": "Iron", "date": "2023-10-24"},
    {"version": "v18.20.3", "lts": "Hydrogen", "date": "2024-05-21"},
]

ADOPTIUM_RELEASES = {
    "available_releases": [8, 11, 17, 21, 22],
    "available_lts_releases": [8, 11, 17, 21],
}

PYTHON_LISTING = """
<a href="3.11.9/">3.11.9/</a>
<a href="3.12.4/">3.12.4/</a>
<a href="3.12.4/">3.12.4/</a>
<a href="latest/">latest/</a>
"""


def _response(json_data=None, text=""):
    response = mock.Mock()
    response.json.return_value = json_data
    response.text = text
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def fetcher(config_manager):
    return RemoteFetcher(
        config_manager,
        retry_handler=RetryHandler(max_retries=1, sleep=lambda s: None),
        rate_limiter=RateLimiter(None),
    )


def test_node_index_is_parsed_and_sorted(fetcher):
    with mock.patch("rtvm.core.remote_fetcher.requests.get", return_value=_response(NODE_INDEX)):
        versions = fetcher.get_remote_versions("node", use_cache=False)

    assert [v["version"] for v in versions] == ["22.3.0", "20.15.0", "20.9.0", "18.20.3"]
    assert versions[1]["lts"] is True
    assert versions[1]["lts_name"] == "Iron"
    assert versions[0]["download_url"].startswith("https://nodejs.org/dist/v22.3.0/node-v22.3.0-")


def test_resolve_spec_against_node_catalog(fetcher):
    with mock.patch("rtvm.core.remote_fetcher.requests.get", return_value=_response(NODE_INDEX)):
        assert fetcher.resolve_spec("node", parse_spec("lts"))["version"] == "20.15.0"
        assert fetcher.resolve_spec("node", parse_spec("latest"))["version"] == "22.3.0"
        assert fetcher.resolve_spec("node", parse_spec("20.9"))["version"] == "20.9.0"
        assert fetcher.resolve_spec("node", parse_spec("v18"))["version"] == "18.20.3"
        with pytest.raises(RemoteFetcherError):
            fetcher.resolve_spec("node", parse_spec("16"))
        with pytest.raises(RemoteFetcherError):
            fetcher.resolve_spec("node", parse_spec("default"))


def test_adoptium_releases(fetcher):
    with mock.patch("rtvm.core.remote_fetcher.requests.get", return_value=_response(ADOPTIUM_RELEASES)):
        versions = fetcher.get_remote_versions("java", use_cache=False)
        lts = fetcher.resolve_alias("java", "lts")

    assert [v["version"] for v in versions] == ["22", "21", "17", "11", "8"]
    assert lts["version"] == "21"
    assert "/v3/binary/latest/21/ga/" in lts["download_url"]


def test_html_index_deduplicates(fetcher):
    with mock.patch("rtvm.core.remote_fetcher.requests.get", return_value=_response(text=PYTHON_LISTING)):
        versions = fetcher.get_remote_versions("python", use_cache=False)

    assert [v["version"] for v in versions] == ["3.12.4", "3.11.9"]
    assert versions[0]["download_url"].startswith(
        "https://www.python.org/ftp/python/3.12.4/python-3.12.4-embed-"
    )


def test_fresh_cache_avoids_network(fetcher, config_manager):
    config_manager.set_cache("node_versions", {
        "last_update": datetime.now().isoformat(),
        "versions": [{"version": "20.15.0", "lts": True}],
    })

    with mock.patch("rtvm.core.remote_fetcher.requests.get") as get:
        versions = fetcher.get_remote_versions("node")

    get.assert_not_called()
    assert versions == [{"version": "20.15.0", "lts": True}]


def test_successful_fetch_updates_cache(fetcher, config_manager):
    with mock.patch("rtvm.core.remote_fetcher.requests.get", return_value=_response(NODE_INDEX)):
        fetcher.get_remote_versions("node", use_cache=False)

    cached = config_manager.get_cache()["node_versions"]
    assert cached["versions"][0]["version"] == "22.3.0"
    assert datetime.fromisoformat(cached["last_update"])


def test_falls_back_to_second_mirror(fetcher):
    responses = [
        requests.exceptions.ConnectionError("mirror down"),
        requests.exceptions.ConnectionError("mirror down"),
        _response(text=PYTHON_LISTING),
    ]
    with mock.patch("rtvm.core.remote_fetcher.requests.get", side_effect=responses) as get:
        versions = fetcher.get_remote_versions("python", use_cache=False)

    assert get.call_count == 3
    assert versions[0]["download_url"].startswith("https://mirrors.huaweicloud.com/python/3.12.4/")


def test_stale_cache_used_when_network_fails(fetcher, config_manager):
    config_manager.set_cache("node_versions", {
        "last_update": "2000-01-01T00:00:00",
        "versions": [{"version": "16.20.2", "lts": True}],
    })
    error = requests.exceptions.ConnectionError("offline")

    with mock.patch("rtvm.core.remote_fetcher.requests.get", side_effect=error):
        versions = fetcher.get_remote_versions("node")

    assert versions == [{"version": "16.20.2", "lts": True}]


def test_network_error_without_cache(fetcher):
    error = requests.exceptions.ConnectionError("offline")
    with mock.patch("rtvm.core.remote_fetcher.requests.get", side_effect=error):
        with pytest.raises(NetworkError):
            fetcher.get_remote_versions("node")


def test_malformed_catalog_counts_as_failure(fetcher):
    with mock.patch("rtvm.core.remote_fetcher.requests.get", return_value=_response({"not": "a list"})):
        with pytest.raises(NetworkError):
            fetcher.get_remote_versions("node", use_cache=False)


def test_find_distribution_renders_template(fetcher):
    with mock.patch("rtvm.core.remote_fetcher.current_os", return_value="windows"), \
            mock.patch("rtvm.core.remote_fetcher.current_arch", return_value="x64"):
        dist = fetcher.find_distribution("node", "20.15.0")

    assert dist["download_url"] == "https://nodejs.org/dist/v20.15.0/node-v20.15.0-win-x64.zip"

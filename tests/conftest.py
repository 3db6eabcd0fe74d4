"""Shared fixtures for tagcheck tests."""

import json
import logging
import pytest
import requests
from requests.structures import CaseInsensitiveDict

# ---------------------------------------------------------------------------
# Tag lists modelled on real registry inventories: version tags of several
# shapes mixed with noise ('latest', sha tags, arch variants)
# ---------------------------------------------------------------------------

TAG_LISTS = {
    "budibase/budibase": [
        "latest", "develop", "3.20.12", "3.2.29", "3.19.0", "3.2.0",
        "v2-latest", "master", "2.32.13",
    ],
    "crazymax/diun": [
        "latest", "edge", "4.30.0", "4.29.0", "4.28.0", "4.0.0-rc.1",
    ],
    "jellyfin/jellyfin": [
        "latest", "unstable", "10.11.4", "10.11.1", "10.10.0",
        "10.11.4-amd64", "latest-amd64",
    ],
    "n8nio/n8n": [
        "latest", "next", "2.0.3", "1.99.0", "2.0.3-beta",
    ],
    "pihole/pihole": [
        "latest", "development", "nightly", "2025.11.1", "2025.08.0",
        "2024.07.0", "v6", "beta",
    ],
    "linuxserver/calibre": [
        "latest", "nightly", "v8.16.2-ls374", "v8.12.0-ls359",
        "v8.10.0-ls350", "version-v8.16.2", "arm64v8-latest",
    ],
    "linuxserver/prowlarr": [
        "latest", "develop", "nightly", "2.3.0.5236-ls134",
        "2.0.5.5160-ls128", "1.37.0.5076-ls123",
    ],
    "linuxserver/qbittorrent": [
        "latest", "unstable", "5.1.2-r1-ls411", "5.1.0-r0-ls393",
        "5.0.0-r0-ls380",
    ],
    "plexinc/pms-docker": [
        "latest", "plexpass", "beta", "public",
        "1.42.2.10156-f737b826c", "1.42.1.10060-4e8b05daf",
        "1.41.0.9430-abc123def",
    ],
    "ghcr.io/homarr-labs/homarr": [
        "latest", "dev", "v1.46.0", "v1.41.0", "v1.40.0", "sha-abc1234",
    ],
}

# (image in use, expected newest tag of the same shape)
EXPECTED_LATEST = {
    "budibase/budibase:3.2.0": "3.20.12",
    "crazymax/diun:4.28.0": "4.30.0",
    "crazymax/diun:4.0.0-rc.1": "4.0.0-rc.1",
    "jellyfin/jellyfin:10.10.0": "10.11.4",
    "jellyfin/jellyfin:10.11.1-amd64": "10.11.4-amd64",
    "n8nio/n8n:1.99.0": "2.0.3",
    "pihole/pihole:2024.07.0": "2025.11.1",
    "pihole/pihole:v6": "v6",
    "linuxserver/calibre:v8.10.0-ls350": "v8.16.2-ls374",
    "linuxserver/prowlarr:1.37.0.5076-ls123": "2.3.0.5236-ls134",
    "linuxserver/qbittorrent:5.0.0-r0-ls380": "5.1.2-r1-ls411",
    "ghcr.io/homarr-labs/homarr:v1.40.0": "v1.46.0",
}


def repository_tags(image: str) -> list:
    """Tag list for an image reference from TAG_LISTS (tag part stripped)."""
    name = image.rsplit(':', 1)[0] if ':' in image.split('/')[-1] else image
    return TAG_LISTS[name]


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

def make_response(status: int = 200, body=None, headers=None, url: str = "https://registry.test/") -> requests.Response:
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status
    response.url = url
    response.reason = {200: "OK", 401: "Unauthorized", 404: "Not Found"}.get(status, "")
    response.headers = CaseInsensitiveDict(headers or {})
    if isinstance(body, (dict, list)):
        response._content = json.dumps(body).encode("utf-8")
        response.headers.setdefault("Content-Type", "application/json")
    else:
        response._content = (body or "").encode("utf-8")
    response.encoding = "utf-8"
    return response


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def minimal_config():
    """Minimal valid config with one image."""
    return {"images": ["linuxserver/calibre:v8.10.0-ls350"]}


@pytest.fixture
def full_config():
    """Config exercising all optional fields."""
    return {
        "images": [
            "linuxserver/calibre:v8.10.0-ls350",
            {"image": "homarr-labs/homarr:v1.40.0", "registry": "ghcr.io"},
        ],
        "differences": True,
        "concurrency": 2,
    }


@pytest.fixture
def config_file(tmp_path, full_config):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(full_config))
    return path


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers bound to a previous test's captured stderr."""
    yield
    for name in ("tagcheck", "registry_api", "version_utils"):
        logging.getLogger(name).handlers.clear()

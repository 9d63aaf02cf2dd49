"""Shared test fixtures for the self-care client tests."""

import os
from unittest.mock import MagicMock

import pytest
import requests

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")


def _load(name):
    with open(os.path.join(FIXTURES_DIR, name), encoding="utf-8") as f:
        return f.read()


def _make_response(text="", url="https://selfcare.bijoy.net/", status=200, json_data=None, chunks=None):
    """MagicMock standing in for a requests.Response."""
    r = MagicMock()
    r.text = text
    r.url = url
    r.status_code = status
    if status >= 400:
        r.raise_for_status.side_effect = requests.HTTPError(f"{status} Error for url: {url}")
    else:
        r.raise_for_status.return_value = None
    if isinstance(json_data, Exception):
        r.json.side_effect = json_data
    else:
        r.json.return_value = json_data
    r.iter_content.return_value = iter(chunks or [])
    return r


@pytest.fixture
def make_response():
    return _make_response


@pytest.fixture
def dashboard_html():
    return _load("dashboard.html")


@pytest.fixture
def payments_html():
    return _load("payments.html")


@pytest.fixture
def login_page_html():
    return _load("login.html")

"""Shared fixtures for apisandbox tests."""

import os

import httpx
import pytest
from click.testing import CliRunner

from apisandbox import core
from apisandbox.executor import Executor
from apisandbox.models import ApiResponse, KeyValuePair, RequestDefinition
from apisandbox.storage import JsonStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def tmp_project(tmp_path):
    """Create a temporary project directory and cd into it."""
    original = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(original)


@pytest.fixture
def global_sandbox_dir(tmp_path, monkeypatch):
    """Override the global ~/.apisandbox directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".apisandbox"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    monkeypatch.setattr(core, "GLOBAL_DATA_DIR", fake_global / "data")
    return fake_global


@pytest.fixture
def store(tmp_path):
    return JsonStore(tmp_path / "data", debounce_ms=10)


def make_executor(handler, **kwargs):
    """Executor whose client answers through ``handler`` (sync or async)."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return Executor(client=client, **kwargs)


def var(key, value, enabled=True):
    return KeyValuePair(key=key, value=value, enabled=enabled)


def make_request(**overrides):
    fields = {"id": "req_1", "name": "test", "url": "https://api.example.com/items"}
    fields.update(overrides)
    return RequestDefinition(**fields)


def make_response(status=200, data=None, raw="", time=12, size=None):
    return ApiResponse(
        status=status,
        status_text="OK" if status == 200 else "",
        headers={"content-type": "application/json"},
        data=data,
        time=time,
        size=len(raw.encode()) if size is None else size,
        raw=raw,
    )

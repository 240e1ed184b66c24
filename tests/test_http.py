"""Tests for the shared GET-JSON retry helper."""

import asyncio

import httpx
import pytest

from app.core.errors import ProviderUnavailable
from app.utils.http import build_headers, get_json


def test_returns_json_on_first_success(make_client, fake_sleep):
    client = make_client(lambda request: httpx.Response(200, json={"ok": True}))
    data = asyncio.run(get_json(client, "https://example.org/api", sleep=fake_sleep))
    assert data == {"ok": True}
    assert fake_sleep.calls == []


def test_retries_with_linear_backoff_then_succeeds(make_client, fake_sleep):
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=[1, 2, 3])

    client = make_client(handler)
    data = asyncio.run(get_json(client, "https://example.org/api", backoff_seconds=2.0, sleep=fake_sleep))
    assert data == [1, 2, 3]
    assert calls["n"] == 3
    assert fake_sleep.calls == [2.0, 4.0]


def test_raises_provider_unavailable_after_last_attempt(make_client, fake_sleep):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    client = make_client(handler)
    with pytest.raises(ProviderUnavailable, match="after 3 attempts"):
        asyncio.run(get_json(client, "https://example.org/api", sleep=fake_sleep))
    # no sleep after the final attempt
    assert fake_sleep.calls == [1.0, 2.0]


def test_invalid_json_is_retried(make_client, fake_sleep):
    client = make_client(lambda request: httpx.Response(200, content=b"<html>busy</html>"))
    with pytest.raises(ProviderUnavailable):
        asyncio.run(get_json(client, "https://example.org/api", retries=2, sleep=fake_sleep))
    assert fake_sleep.calls == [1.0]


def test_sends_params_and_headers(make_client, fake_sleep):
    seen = {}

    def handler(request):
        seen["q"] = request.url.params.get("q")
        seen["ua"] = request.headers.get("user-agent")
        seen["referer"] = request.headers.get("referer")
        return httpx.Response(200, json={})

    client = make_client(handler)
    headers = build_headers("TestApp (test@example.com)", "https://example.org")
    asyncio.run(get_json(client, "https://example.org/api", params={"q": "Paris"}, headers=headers, sleep=fake_sleep))
    assert seen == {"q": "Paris", "ua": "TestApp (test@example.com)", "referer": "https://example.org"}

"""Tests for the OpenAI-compatible transport with `requests.post` patched out."""

import json

import requests

from recall.llm import client
from recall.llm.service import build_payload


class FakeResponse:

    def __init__(self, payload=None, lines=(), status_code=200):
        self._payload = payload
        self._lines = lines
        self.status_code = status_code
        self.encoding = None

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(response=self)

    def json(self):
        return self._payload

    def iter_lines(self, decode_unicode=False):
        return iter(self._lines)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_payload_carries_system_message_and_prompt():
    payload = build_payload("hello", stream=True)

    assert [m["role"] for m in payload["messages"]] == ["system", "user"]
    assert payload["messages"][1]["content"] == "hello"
    assert payload["stream"] is True


def test_non_stream_request_returns_content(monkeypatch):
    captured = {}

    def fake_post(url, headers, json, timeout, **kwargs):
        captured.update(url=url, headers=headers)
        return FakeResponse({"choices": [{"message": {"content": "  answer  "}}]})

    monkeypatch.setattr(client.requests, "post", fake_post)

    assert client.send_request({"messages": []}, stream=False, provider="local") == "answer"
    assert "Authorization" not in captured["headers"]


def test_stream_request_yields_deltas(monkeypatch):
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": "Hel"}}]}),
        "",
        "data: not json",
        "data: " + json.dumps({"choices": [{"delta": {"content": "lo"}}]}),
        "data: [DONE]",
        "data: " + json.dumps({"choices": [{"delta": {"content": "ignored"}}]}),
    ]
    monkeypatch.setattr(client.requests, "post", lambda *a, **k: FakeResponse(lines=lines))

    assert "".join(client.send_request({}, stream=True, provider="local")) == "Hello"


def test_http_error_is_sanitized(monkeypatch):
    monkeypatch.setattr(client.requests, "post", lambda *a, **k: FakeResponse(status_code=503))

    assert client.send_request({}, stream=False, provider="local") == "\nLOCAL HTTP ERROR (503)\n"


def test_missing_key_is_reported(monkeypatch, tmp_path):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)

    assert client.send_request({}, stream=False, provider="openai") == "\nOPENAI KEY FILE NOT FOUND\n"


def test_key_from_environment_is_sent(monkeypatch):
    captured = {}

    def fake_post(url, headers, json, timeout, **kwargs):
        captured.update(headers)
        return FakeResponse({"choices": [{"message": {"content": "ok"}}]})

    monkeypatch.setenv("GROQ_API_KEY", "secret")
    monkeypatch.setattr(client.requests, "post", fake_post)

    assert client.send_request({}, stream=False, provider="groq") == "ok"
    assert captured["Authorization"] == "Bearer secret"


def test_unknown_provider():
    assert client.send_request({}, stream=False, provider="unknown") == "\nINVALID PROVIDER\n"

"""
Test the HTTP job trigger against a patched requests.post.

Run with: python -m pytest vaultprogress/tests/test_trigger.py -v
"""

import pytest
import requests

from vaultprogress.core.errors import JobTriggerError
from vaultprogress.services import trigger as trigger_module
from vaultprogress.services.trigger import HttpJobTrigger

URL = "https://functions.example.test/extract-vault"


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text
        self.content = b"" if body is None and not text else b"x"

    def json(self):
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body


@pytest.fixture
def calls(monkeypatch):
    recorded = []

    def install(response=None, error=None):
        def fake_post(url, json=None, headers=None, timeout=None):
            recorded.append({'url': url, 'json': json, 'headers': headers, 'timeout': timeout})
            if error is not None:
                raise error
            return response

        monkeypatch.setattr(trigger_module.requests, "post", fake_post)
        return recorded

    return install


def test_posts_vault_id_and_resume_flag(calls):
    recorded = calls(FakeResponse(200, {'started': True}))
    trigger = HttpJobTrigger(URL, api_key="secret", timeout=5)

    result = trigger("vault-123", resume=True)

    assert result == {'started': True}
    assert recorded[0]['url'] == URL
    assert recorded[0]['json'] == {'vault_id': "vault-123", 'resume': True}
    assert recorded[0]['headers']['Authorization'] == "Bearer secret"
    assert recorded[0]['timeout'] == 5


def test_no_auth_header_without_key(calls):
    recorded = calls(FakeResponse(202))
    HttpJobTrigger(URL)("vault-123")

    assert 'Authorization' not in recorded[0]['headers']
    assert recorded[0]['json']['resume'] is False


def test_empty_or_non_json_body_returns_empty_dict(calls):
    calls(FakeResponse(204))
    assert HttpJobTrigger(URL)("vault-123") == {}

    calls(FakeResponse(200, text="accepted"))
    assert HttpJobTrigger(URL)("vault-123") == {}


def test_error_status_raises(calls):
    calls(FakeResponse(503, text="Service Unavailable"))

    with pytest.raises(JobTriggerError, match="503"):
        HttpJobTrigger(URL)("vault-123")


def test_transport_failure_raises(calls):
    calls(error=requests.ConnectionError("connection refused"))

    with pytest.raises(JobTriggerError, match="connection refused"):
        HttpJobTrigger(URL)("vault-123")


def test_url_is_required():
    with pytest.raises(ValueError):
        HttpJobTrigger()

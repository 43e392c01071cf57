from __future__ import annotations

import io
import json
import urllib.error
import urllib.parse
from dataclasses import dataclass
from unittest.mock import patch

import pytest

from ltcheck.errors import TransportError
from ltcheck.models import CheckResponse, Language, Match, Replacement, Rule
from ltcheck.transport import (
    CheckOptions,
    LanguageToolClient,
    MockCheckClient,
    build_api_url,
    build_client,
    truncate_suggestions,
)


@dataclass
class _FakeResponse:
    body: str

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def read(self) -> bytes:
        return self.body.encode("utf-8")


_OK_BODY = json.dumps(
    {
        "software": {"name": "LanguageTool", "version": "6.4", "apiVersion": 1, "status": ""},
        "language": {
            "name": "English (US)",
            "code": "en-US",
            "detectedLanguage": {"name": "English (US)", "code": "en-US", "confidence": 0.93},
        },
        "matches": [
            {
                "message": "Possible spelling mistake found.",
                "shortMessage": "Spelling mistake",
                "replacements": [{"value": "small"}, {"value": "smell"}],
                "offset": 5,
                "length": 4,
                "context": {"text": "Some smal text", "offset": 5, "length": 4},
                "sentence": "Some smal text",
                "rule": {
                    "id": "MORFOLOGIK_RULE_EN_US",
                    "description": "Possible spelling mistake",
                    "issueType": "misspelling",
                    "category": {"id": "TYPOS", "name": "Possible Typo"},
                },
            }
        ],
        "sentenceRanges": [[0, 14]],
        "warnings": {"incompleteResults": False},
    }
)


def _http_error(req, code: int, body: str = "error") -> urllib.error.HTTPError:
    return urllib.error.HTTPError(
        url=req.full_url,
        code=code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(body.encode("utf-8")),
    )


def test_check_options_form_defaults():
    assert CheckOptions().to_form("hello") == {"text": "hello", "language": "auto"}


def test_check_options_form_encodes_lists_and_flags():
    opts = CheckOptions(
        language="en-US",
        mother_tongue="de-DE",
        enabled_rules=("A", "B"),
        disabled_categories=("TYPOS",),
        enabled_only=True,
        level="picky",
        username="me@example.com",
        api_key="secret",
    )
    assert opts.to_form("hi") == {
        "text": "hi",
        "language": "en-US",
        "motherTongue": "de-DE",
        "enabledRules": "A,B",
        "disabledCategories": "TYPOS",
        "enabledOnly": "true",
        "level": "picky",
        "username": "me@example.com",
        "apiKey": "secret",
    }


def test_build_api_url():
    assert build_api_url("http://localhost", 8081) == "http://localhost:8081/v2"
    assert build_api_url("https://api.languagetoolplus.com/") == "https://api.languagetoolplus.com/v2"


def test_languagetool_client_posts_form_and_parses_response():
    seen: dict[str, object] = {}

    def fake_urlopen(req, timeout=0):
        seen["url"] = req.full_url
        seen["method"] = req.get_method()
        seen["form"] = urllib.parse.parse_qs(req.data.decode("utf-8"))
        seen["timeout"] = timeout
        return _FakeResponse(_OK_BODY)

    client = LanguageToolClient(hostname="http://localhost", port="8081", timeout_s=7.0)
    with patch("ltcheck.transport.urllib.request.urlopen", side_effect=fake_urlopen):
        resp = client.check_fragment("Some smal text", CheckOptions(language="en-US"))

    assert seen["url"] == "http://localhost:8081/v2/check"
    assert seen["method"] == "POST"
    assert seen["form"] == {"text": ["Some smal text"], "language": ["en-US"]}
    assert seen["timeout"] == 7.0

    assert isinstance(resp, CheckResponse)
    assert len(resp.matches) == 1
    m = resp.matches[0]
    assert (m.offset, m.length, m.rule_id) == (5, 4, "MORFOLOGIK_RULE_EN_US")
    assert [r.value for r in m.replacements] == ["small", "smell"]
    assert m.rule.category.id == "TYPOS"
    assert resp.language.detected.code == "en-US"
    assert resp.language.detected.confidence == 0.93
    assert resp.sentence_ranges == ((0, 14),)
    assert resp.software.version == "6.4"


def test_languagetool_client_sends_account_credentials():
    forms: list[dict] = []

    def fake_urlopen(req, timeout=0):
        forms.append(urllib.parse.parse_qs(req.data.decode("utf-8")))
        return _FakeResponse(_OK_BODY)

    client = LanguageToolClient(username="me@example.com", api_key="secret")
    with patch("ltcheck.transport.urllib.request.urlopen", side_effect=fake_urlopen):
        client.check_fragment("text")

    assert forms[0]["username"] == ["me@example.com"]
    assert forms[0]["apiKey"] == ["secret"]


def test_languagetool_client_retries_connection_errors(monkeypatch):
    sleeps: list[float] = []
    monkeypatch.setattr("ltcheck.transport.time.sleep", sleeps.append)
    calls = {"n": 0}

    def fake_urlopen(req, timeout=0):
        calls["n"] += 1
        if calls["n"] == 1:
            raise urllib.error.URLError("connection refused")
        return _FakeResponse(_OK_BODY)

    client = LanguageToolClient(retries=2, retry_backoff_s=0.5)
    with patch("ltcheck.transport.urllib.request.urlopen", side_effect=fake_urlopen):
        resp = client.check_fragment("Some smal text")

    assert calls["n"] == 2
    assert sleeps == [0.5]
    assert len(resp.matches) == 1


def test_languagetool_client_gives_up_after_retries(monkeypatch):
    monkeypatch.setattr("ltcheck.transport.time.sleep", lambda s: None)
    calls = {"n": 0}

    def fake_urlopen(req, timeout=0):
        calls["n"] += 1
        raise _http_error(req, 503, "overloaded")

    client = LanguageToolClient(retries=1)
    with patch("ltcheck.transport.urllib.request.urlopen", side_effect=fake_urlopen):
        with pytest.raises(TransportError) as exc:
            client.check_fragment("text")

    assert calls["n"] == 2
    assert exc.value.status == 503
    assert exc.value.retryable is True


def test_languagetool_client_does_not_retry_client_errors(monkeypatch):
    monkeypatch.setattr("ltcheck.transport.time.sleep", lambda s: None)
    calls = {"n": 0}

    def fake_urlopen(req, timeout=0):
        calls["n"] += 1
        raise _http_error(req, 400, "Error: 'foo' is not a language code")

    client = LanguageToolClient(retries=3)
    with patch("ltcheck.transport.urllib.request.urlopen", side_effect=fake_urlopen):
        with pytest.raises(TransportError, match="not a language code") as exc:
            client.check_fragment("text", CheckOptions(language="foo"))

    assert calls["n"] == 1
    assert exc.value.status == 400
    assert exc.value.retryable is False


@pytest.mark.parametrize("body", ["<html>busy</html>", "[1, 2]", '{"software": {}}'])
def test_languagetool_client_rejects_malformed_payloads(body):
    client = LanguageToolClient(retries=0)
    with patch("ltcheck.transport.urllib.request.urlopen", return_value=_FakeResponse(body)):
        with pytest.raises(TransportError):
            client.check_fragment("text")


def test_truncate_suggestions_appends_hidden_count():
    match = Match(
        offset=0,
        length=1,
        message="m",
        rule=Rule(id="R"),
        replacements=tuple(Replacement(str(i)) for i in range(7)),
    )
    out = truncate_suggestions(CheckResponse(matches=(match,)), 5)
    assert [r.value for r in out.matches[0].replacements] == ["0", "1", "2", "3", "4", "... (2 not shown)"]

    assert truncate_suggestions(CheckResponse(matches=(match,)), 0).matches[0] is match


def test_mock_client_reports_common_mistakes():
    resp = MockCheckClient().check_fragment("This is is ok.  but no.", CheckOptions(language="en-US"))

    assert [(m.offset, m.length, m.rule_id) for m in resp.matches] == [
        (5, 5, "ENGLISH_WORD_REPEAT_RULE"),
        (14, 2, "WHITESPACE_RULE"),
        (16, 1, "UPPERCASE_SENTENCE_START"),
    ]
    assert resp.matches[2].replacements == (Replacement("B"),)
    assert resp.language.code == "en-US"
    assert resp.language.detected.code == "en-US"


def test_mock_client_ignores_lowercase_fragment_start():
    assert MockCheckClient().check_fragment("continued from before.").matches == ()


def test_build_client_selects_provider():
    assert isinstance(build_client("mock"), MockCheckClient)
    client = build_client("LanguageTool", hostname="http://lt", port="8010", retries=0)
    assert isinstance(client, LanguageToolClient)
    assert client.api == "http://lt:8010/v2"
    with pytest.raises(ValueError, match="Unknown check provider"):
        build_client("grammarly")


def test_languagetool_client_lists_languages():
    seen: dict[str, object] = {}
    body = json.dumps(
        [
            {"name": "German (Germany)", "code": "de", "longCode": "de-DE"},
            {"name": "English (US)", "code": "en", "longCode": "en-US"},
        ]
    )

    def fake_urlopen(req, timeout=0):
        seen["url"] = req.full_url
        seen["method"] = req.get_method()
        seen["data"] = req.data
        return _FakeResponse(body)

    client = LanguageToolClient(hostname="http://localhost", port="8081")
    with patch("ltcheck.transport.urllib.request.urlopen", side_effect=fake_urlopen):
        langs = client.languages()

    assert seen == {"url": "http://localhost:8081/v2/languages", "method": "GET", "data": None}
    assert langs == [Language("German (Germany)", "de", "de-DE"), Language("English (US)", "en", "en-US")]
    assert langs[1].to_dict() == {"name": "English (US)", "code": "en", "longCode": "en-US"}


@pytest.mark.parametrize("body", ['{"languages": []}', '[{"code": "en"}]'])
def test_languagetool_client_rejects_malformed_language_lists(body):
    client = LanguageToolClient(retries=0)
    with patch("ltcheck.transport.urllib.request.urlopen", return_value=_FakeResponse(body)):
        with pytest.raises(TransportError, match="languages"):
            client.languages()


def test_languagetool_client_ping_counts_any_http_answer(monkeypatch):
    ticks = iter([10.0, 10.25])
    monkeypatch.setattr("ltcheck.transport.time.monotonic", lambda: next(ticks, 10.25))
    seen: list[str] = []

    def fake_urlopen(req, timeout=0):
        seen.append(req.full_url)
        raise _http_error(req, 404, "not found")

    client = LanguageToolClient(hostname="http://localhost", port="8081")
    with patch("ltcheck.transport.urllib.request.urlopen", side_effect=fake_urlopen):
        delay = client.ping()

    assert seen == ["http://localhost:8081/v2"]
    assert delay == pytest.approx(250.0)


def test_languagetool_client_ping_raises_when_unreachable():
    client = LanguageToolClient()
    with patch(
        "ltcheck.transport.urllib.request.urlopen",
        side_effect=urllib.error.URLError("connection refused"),
    ):
        with pytest.raises(TransportError, match="ping failed"):
            client.ping()


def test_mock_client_languages_and_ping():
    client = MockCheckClient()
    assert client.languages() == [Language("English (US)", "en", "en-US")]
    assert client.ping() == 0.0

from __future__ import annotations

import json
import logging
import re
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, replace
from typing import Any, Optional, Protocol

from .errors import TransportError
from .models import Category, CheckResponse, Language, LanguageInfo, Match, MatchContext, Replacement, Rule, Software

_logger = logging.getLogger(__name__)

DEFAULT_HOSTNAME = "https://api.languagetoolplus.com"
DEFAULT_LANGUAGE = "auto"
LEVELS = ("default", "picky")
_RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}
_USER_AGENT = "ltcheck/0.1"


@dataclass(frozen=True)
class CheckOptions:
    """Per-request options forwarded to the service with every fragment."""

    language: str = DEFAULT_LANGUAGE
    mother_tongue: Optional[str] = None
    preferred_variants: tuple[str, ...] = ()
    dicts: tuple[str, ...] = ()
    enabled_rules: tuple[str, ...] = ()
    disabled_rules: tuple[str, ...] = ()
    enabled_categories: tuple[str, ...] = ()
    disabled_categories: tuple[str, ...] = ()
    enabled_only: bool = False
    level: str = "default"
    username: Optional[str] = None
    api_key: Optional[str] = None

    def to_form(self, text: str) -> dict[str, str]:
        form: dict[str, str] = {"text": text, "language": self.language or DEFAULT_LANGUAGE}
        for key, values in (
            ("preferredVariants", self.preferred_variants),
            ("dicts", self.dicts),
            ("enabledRules", self.enabled_rules),
            ("disabledRules", self.disabled_rules),
            ("enabledCategories", self.enabled_categories),
            ("disabledCategories", self.disabled_categories),
        ):
            if values:
                form[key] = ",".join(values)
        if self.mother_tongue:
            form["motherTongue"] = self.mother_tongue
        if self.enabled_only:
            form["enabledOnly"] = "true"
        if self.level and self.level != "default":
            form["level"] = self.level
        if self.username:
            form["username"] = self.username
        if self.api_key:
            form["apiKey"] = self.api_key
        return form


class CheckClient(Protocol):
    def check_fragment(self, text: str, options: Optional[CheckOptions] = None) -> CheckResponse: ...


def truncate_suggestions(response: CheckResponse, max_suggestions: int) -> CheckResponse:
    if max_suggestions <= 0:
        return response
    matches: list[Match] = []
    for m in response.matches:
        hidden = len(m.replacements) - max_suggestions
        if hidden > 0:
            kept = m.replacements[:max_suggestions] + (Replacement(f"... ({hidden} not shown)"),)
            m = replace(m, replacements=kept)
        matches.append(m)
    return replace(response, matches=tuple(matches))


def build_api_url(hostname: str, port: str | int | None = None) -> str:
    base = hostname.rstrip("/")
    if port not in (None, ""):
        base = f"{base}:{port}"
    return f"{base}/v2"


@dataclass(frozen=True)
class LanguageToolClient:
    """HTTP client for a LanguageTool-compatible ``/v2/check`` endpoint."""

    hostname: str = DEFAULT_HOSTNAME
    port: str = ""
    timeout_s: float = 30.0
    retries: int = 2
    retry_backoff_s: float = 1.0
    max_suggestions: int = 5
    username: Optional[str] = None
    api_key: Optional[str] = None

    @property
    def api(self) -> str:
        return build_api_url(self.hostname, self.port)

    def _request_once(self, url: str, payload: Optional[bytes] = None) -> Any:
        headers = {"Accept": "application/json", "User-Agent": _USER_AGENT}
        if payload is not None:
            headers["Content-Type"] = "application/x-www-form-urlencoded; charset=utf-8"
        req = urllib.request.Request(
            url=url,
            data=payload,
            headers=headers,
            method="POST" if payload is not None else "GET",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else ""
            raise TransportError(
                f"LanguageTool HTTPError {e.code}: {detail}",
                status=e.code,
                retryable=e.code in _RETRYABLE_STATUS,
            ) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise TransportError(f"LanguageTool request failed: {e}", retryable=True) from e

        try:
            return json.loads(body)
        except ValueError as e:
            raise TransportError(f"LanguageTool returned invalid JSON: {body[:200]!r}") from e

    def _request(self, url: str, payload: Optional[bytes] = None) -> Any:
        attempts = max(1, int(self.retries) + 1)
        for attempt in range(1, attempts + 1):
            try:
                return self._request_once(url, payload)
            except TransportError as e:
                if not e.retryable or attempt >= attempts:
                    raise
                _logger.warning("LanguageTool retry %d/%d after failure: %s", attempt, attempts - 1, e)
                time.sleep(self.retry_backoff_s * attempt)
        raise AssertionError("unreachable")

    def check_fragment(self, text: str, options: Optional[CheckOptions] = None) -> CheckResponse:
        opts = options or CheckOptions()
        if not opts.username and self.username:
            opts = replace(opts, username=self.username, api_key=self.api_key)
        payload = urllib.parse.urlencode(opts.to_form(text)).encode("utf-8")

        data = self._request(f"{self.api}/check", payload)
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected LanguageTool response: {str(data)[:200]!r}")
        try:
            response = CheckResponse.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Unexpected LanguageTool response schema: {e}") from e
        return truncate_suggestions(response, self.max_suggestions)

    def languages(self) -> list[Language]:
        """GET ``/v2/languages``: every language the server supports."""
        data = self._request(f"{self.api}/languages")
        if not isinstance(data, list):
            raise TransportError(f"Unexpected LanguageTool languages response: {str(data)[:200]!r}")
        try:
            return [Language.from_dict(item) for item in data]
        except (KeyError, TypeError, AttributeError) as e:
            raise TransportError(f"Unexpected LanguageTool languages schema: {e}") from e

    def ping(self) -> float:
        """Round-trip time in milliseconds of one GET on the API root.

        Any HTTP answer counts as reachable; only connection failures raise.
        """
        req = urllib.request.Request(url=self.api, headers={"User-Agent": _USER_AGENT}, method="GET")
        started = time.monotonic()
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                resp.read()
        except urllib.error.HTTPError as e:
            _logger.debug("Ping answered with HTTP %d", e.code)
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise TransportError(f"LanguageTool ping failed: {e}", retryable=True) from e
        return (time.monotonic() - started) * 1000.0


_WORD_RE = re.compile(r"\b(\w+)(\s+)(\1)\b", flags=re.IGNORECASE)
_SPACES_RE = re.compile(r"(?<=\S) {2,}(?=\S)")
_SENTENCE_START_RE = re.compile(r"(?:[.!?]\s+|\n)([a-z])")


@dataclass(frozen=True)
class MockCheckClient:
    """Deterministic offline checker for tests and dry runs.

    Flags repeated words, runs of spaces between words and sentences that
    start with a lower-case letter.
    """

    language_code: str = "en-US"
    language_name: str = "English (US)"
    max_suggestions: int = 5

    def _match(self, text: str, offset: int, length: int, rule_id: str, message: str, fix: str) -> Match:
        ctx_start = max(0, offset - 20)
        return Match(
            offset=offset,
            length=length,
            message=message,
            short_message=message,
            replacements=(Replacement(fix),),
            rule=Rule(id=rule_id, description=message, issue_type="misspelling", category=Category("MOCK", "Mock")),
            context=MatchContext(
                text=text[ctx_start : offset + length + 20],
                offset=offset - ctx_start,
                length=length,
            ),
        )

    def check_fragment(self, text: str, options: Optional[CheckOptions] = None) -> CheckResponse:
        matches: list[Match] = []
        for m in _WORD_RE.finditer(text):
            matches.append(
                self._match(
                    text,
                    m.start(),
                    m.end() - m.start(),
                    "ENGLISH_WORD_REPEAT_RULE",
                    "Possible typo: you repeated a word",
                    m.group(1),
                )
            )
        for m in _SPACES_RE.finditer(text):
            matches.append(
                self._match(
                    text,
                    m.start(),
                    m.end() - m.start(),
                    "WHITESPACE_RULE",
                    "Possible typo: you repeated a whitespace",
                    " ",
                )
            )
        for m in _SENTENCE_START_RE.finditer(text):
            matches.append(
                self._match(
                    text,
                    m.start(1),
                    1,
                    "UPPERCASE_SENTENCE_START",
                    "This sentence does not start with an uppercase letter.",
                    m.group(1).upper(),
                )
            )
        matches.sort(key=lambda item: item.offset)
        requested = (options.language if options is not None else DEFAULT_LANGUAGE) or DEFAULT_LANGUAGE
        response = CheckResponse(
            matches=tuple(matches),
            language=LanguageInfo.from_dict(
                {
                    "code": requested,
                    "name": requested,
                    "detectedLanguage": {"code": self.language_code, "name": self.language_name},
                }
            ),
            software=Software(name="ltcheck-mock", version="0.1", api_version=1, status="mock"),
        )
        return truncate_suggestions(response, self.max_suggestions)

    def languages(self) -> list[Language]:
        return [Language(self.language_name, self.language_code.split("-")[0], self.language_code)]

    def ping(self) -> float:
        return 0.0


def build_client(
    provider: str,
    *,
    hostname: str = DEFAULT_HOSTNAME,
    port: str = "",
    timeout_s: float = 30.0,
    retries: int = 2,
    retry_backoff_s: float = 1.0,
    max_suggestions: int = 5,
    username: Optional[str] = None,
    api_key: Optional[str] = None,
) -> CheckClient:
    provider_norm = provider.strip().lower()
    if provider_norm == "mock":
        return MockCheckClient(max_suggestions=max_suggestions)
    if provider_norm == "languagetool":
        return LanguageToolClient(
            hostname=hostname,
            port=port,
            timeout_s=timeout_s,
            retries=retries,
            retry_backoff_s=retry_backoff_s,
            max_suggestions=max_suggestions,
            username=username,
            api_key=api_key,
        )
    raise ValueError(f"Unknown check provider: {provider}")

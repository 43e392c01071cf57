from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import FragmentationError


@dataclass(frozen=True)
class Replacement:
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value}


@dataclass(frozen=True)
class Category:
    id: str = ""
    name: str = ""


@dataclass(frozen=True)
class Rule:
    id: str
    description: str = ""
    issue_type: str = ""
    category: Category = Category()
    sub_id: Optional[str] = None
    urls: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Rule":
        category = data.get("category") or {}
        return cls(
            id=str(data["id"]),
            description=str(data.get("description", "")),
            issue_type=str(data.get("issueType", "")),
            category=Category(id=str(category.get("id", "")), name=str(category.get("name", ""))),
            sub_id=(str(data["subId"]) if data.get("subId") is not None else None),
            urls=tuple(str(u.get("value", "")) for u in (data.get("urls") or [])),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "issueType": self.issue_type,
            "category": {"id": self.category.id, "name": self.category.name},
        }
        if self.sub_id is not None:
            out["subId"] = self.sub_id
        if self.urls:
            out["urls"] = [{"value": u} for u in self.urls]
        return out


@dataclass(frozen=True)
class MatchContext:
    """Snippet of text around a match, as returned by the service.

    ``offset``/``length`` are relative to ``text``, not to the document.
    """

    text: str = ""
    offset: int = 0
    length: int = 0


@dataclass(frozen=True)
class Match:
    offset: int
    length: int
    message: str
    rule: Rule
    short_message: str = ""
    replacements: tuple[Replacement, ...] = ()
    context: MatchContext = MatchContext()
    sentence: str = ""
    # Filled in by the reassembler:
    fragment_index: int = 0
    line_number: Optional[int] = None
    line_offset: Optional[int] = None

    @property
    def rule_id(self) -> str:
        return self.rule.id

    @property
    def end(self) -> int:
        return self.offset + self.length

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Match":
        ctx = data.get("context") or {}
        return cls(
            offset=int(data["offset"]),
            length=int(data["length"]),
            message=str(data["message"]),
            rule=Rule.from_dict(data["rule"]),
            short_message=str(data.get("shortMessage", "")),
            replacements=tuple(Replacement(str(r["value"])) for r in (data.get("replacements") or [])),
            context=MatchContext(
                text=str(ctx.get("text", "")),
                offset=int(ctx.get("offset", 0)),
                length=int(ctx.get("length", 0)),
            ),
            sentence=str(data.get("sentence", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "offset": self.offset,
            "length": self.length,
            "message": self.message,
            "shortMessage": self.short_message,
            "replacements": [r.to_dict() for r in self.replacements],
            "rule": self.rule.to_dict(),
            "context": {"text": self.context.text, "offset": self.context.offset, "length": self.context.length},
            "sentence": self.sentence,
        }
        if self.line_number is not None:
            out["moreContext"] = {"line_number": self.line_number, "line_offset": self.line_offset}
        return out


@dataclass(frozen=True)
class DetectedLanguage:
    code: str = ""
    name: str = ""
    confidence: Optional[float] = None


@dataclass(frozen=True)
class LanguageInfo:
    """Language block of a check response: requested plus detected language."""

    code: str = ""
    name: str = ""
    detected: DetectedLanguage = DetectedLanguage()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LanguageInfo":
        detected = data.get("detectedLanguage") or {}
        confidence = detected.get("confidence")
        return cls(
            code=str(data.get("code", "")),
            name=str(data.get("name", "")),
            detected=DetectedLanguage(
                code=str(detected.get("code", "")),
                name=str(detected.get("name", "")),
                confidence=(float(confidence) if confidence is not None else None),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        detected: dict[str, Any] = {"code": self.detected.code, "name": self.detected.name}
        if self.detected.confidence is not None:
            detected["confidence"] = self.detected.confidence
        return {"code": self.code, "name": self.name, "detectedLanguage": detected}


@dataclass(frozen=True)
class Language:
    """One entry of the server's supported-languages list."""

    name: str
    code: str
    long_code: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Language":
        return cls(
            name=str(data["name"]),
            code=str(data["code"]),
            long_code=str(data.get("longCode", "")),
        )

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "code": self.code, "longCode": self.long_code}


@dataclass(frozen=True)
class Software:
    name: str = ""
    version: str = ""
    build_date: str = ""
    api_version: int = 0
    premium: bool = False
    status: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Software":
        return cls(
            name=str(data.get("name", "")),
            version=str(data.get("version", "")),
            build_date=str(data.get("buildDate", "")),
            api_version=int(data.get("apiVersion", 0)),
            premium=bool(data.get("premium", False)),
            status=str(data.get("status", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "buildDate": self.build_date,
            "apiVersion": self.api_version,
            "premium": self.premium,
            "status": self.status,
        }


@dataclass(frozen=True)
class CheckResponse:
    """Raw result of checking one fragment; positions are local to that fragment."""

    matches: tuple[Match, ...] = ()
    language: LanguageInfo = LanguageInfo()
    software: Software = Software()
    sentence_ranges: tuple[tuple[int, int], ...] = ()
    incomplete_results: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckResponse":
        warnings = data.get("warnings") or {}
        return cls(
            matches=tuple(Match.from_dict(m) for m in data["matches"]),
            language=LanguageInfo.from_dict(data.get("language") or {}),
            software=Software.from_dict(data.get("software") or {}),
            sentence_ranges=tuple((int(r[0]), int(r[1])) for r in (data.get("sentenceRanges") or [])),
            incomplete_results=bool(warnings.get("incompleteResults", False)),
        )


@dataclass(frozen=True)
class Fragment:
    """A size-bounded slice ``text[start:end]`` of the checked text."""

    index: int
    start: int
    end: int
    text: str
    cut: str = "end"  # 'paragraph' | 'sentence' | 'word' | 'raw' | 'end'

    def __len__(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class OffsetMapEntry:
    fragment_index: int
    base_offset: int
    length: int
    overlap_with_previous: int = 0


@dataclass(frozen=True)
class LanguageVote:
    fragment_index: int
    code: str
    name: str
    fragment_length: int


@dataclass
class UnifiedResult:
    """Merged result of a check; every match offset is relative to the whole document."""

    matches: list[Match] = field(default_factory=list)
    language: Optional[DetectedLanguage] = None
    language_votes: list[LanguageVote] = field(default_factory=list)
    requested_language: Optional[LanguageInfo] = None
    software: Optional[Software] = None
    sentence_ranges: list[tuple[int, int]] = field(default_factory=list)
    incomplete_results: bool = False
    fragment_count: int = 0
    degraded: list[FragmentationError] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "matches": [m.to_dict() for m in self.matches],
            "fragmentCount": self.fragment_count,
            "languageVotes": [
                {
                    "fragmentIndex": v.fragment_index,
                    "code": v.code,
                    "name": v.name,
                    "fragmentLength": v.fragment_length,
                }
                for v in self.language_votes
            ],
            "sentenceRanges": [list(r) for r in self.sentence_ranges],
            "warnings": {"incompleteResults": self.incomplete_results},
        }
        if self.requested_language is not None:
            language = self.requested_language.to_dict()
            if self.language is not None:
                language["detectedLanguage"] = {"code": self.language.code, "name": self.language.name}
            out["language"] = language
        elif self.language is not None:
            out["language"] = {"detectedLanguage": {"code": self.language.code, "name": self.language.name}}
        if self.software is not None:
            out["software"] = self.software.to_dict()
        if self.degraded:
            out["degradedSplits"] = [e.to_dict() for e in self.degraded]
        return out

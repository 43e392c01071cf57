from __future__ import annotations

import pytest

from ltcheck.errors import FragmentationError
from ltcheck.fragmenter import CUT_END, CUT_PARAGRAPH, CUT_RAW, CUT_SENTENCE, CUT_WORD, Fragmenter, split


def _paragraphs(count: int, size: int) -> str:
    body = ("lorem ipsum " * (size // 12 + 1))[: size - 2]
    return (body + "\n\n") * count


def _assert_contiguous(text: str, limit: int) -> None:
    res = split(text, limit)
    assert "".join(f.text for f in res.fragments) == text
    for frag in res.fragments:
        assert 0 < len(frag.text) <= limit
        assert frag.text == text[frag.start : frag.end]
    for prev, cur in zip(res.entries, res.entries[1:]):
        assert prev.base_offset + prev.length == cur.base_offset
        assert cur.overlap_with_previous == 0


def test_empty_text_yields_no_fragments():
    res = split("", 10)
    assert res.fragments == []
    assert res.entries == []
    assert res.degraded == []


def test_short_text_is_single_fragment():
    res = split("Hello world.", 100)
    assert len(res.fragments) == 1
    frag = res.fragments[0]
    assert (frag.start, frag.end, frag.text, frag.cut) == (0, 12, "Hello world.", CUT_END)
    assert res.entries[0].base_offset == 0
    assert res.entries[0].length == 12


def test_text_exactly_at_limit_is_not_split():
    res = split("abcdefghij", 10)
    assert [f.text for f in res.fragments] == ["abcdefghij"]


def test_paragraph_breaks_are_preferred():
    text = _paragraphs(5, 400)
    assert len(text) == 2000

    res = split(text, 1000)

    assert [(f.start, f.end) for f in res.fragments] == [(0, 800), (800, 1600), (1600, 2000)]
    assert [f.cut for f in res.fragments] == [CUT_PARAGRAPH, CUT_PARAGRAPH, CUT_END]
    assert [e.base_offset for e in res.entries] == [0, 800, 1600]
    assert res.degraded == []
    for frag in res.fragments:
        assert frag.text.endswith("\n\n")


def test_sentence_end_is_preferred_over_whitespace():
    text = "Alpha beta. Gamma delta. Epsilon"
    res = split(text, 20)
    assert [f.text for f in res.fragments] == ["Alpha beta. ", "Gamma delta. Epsilon"]
    assert res.fragments[0].cut == CUT_SENTENCE


def test_whitespace_cut_when_no_sentence_end():
    text = "aaaa bbbb cccc dddd"
    res = split(text, 7)
    assert [f.text for f in res.fragments] == ["aaaa ", "bbbb ", "cccc ", "dddd"]
    assert [f.cut for f in res.fragments] == [CUT_WORD, CUT_WORD, CUT_WORD, CUT_END]


def test_oversized_word_falls_back_to_raw_cut():
    text = "a" * 2000
    res = split(text, 1000)

    assert [(f.start, f.end) for f in res.fragments] == [(0, 1000), (1000, 2000)]
    assert res.fragments[0].cut == CUT_RAW
    assert len(res.degraded) == 1
    err = res.degraded[0]
    assert isinstance(err, FragmentationError)
    assert err.position == 1000
    assert err.fragment_index == 0
    assert err.reason == "oversized_token"


def test_strict_split_raises_on_raw_cut():
    with pytest.raises(FragmentationError) as exc:
        split("a" * 30, 10, strict=True)
    assert exc.value.position == 10


def test_never_splits_combining_cluster():
    text = "e\u0301" * 10
    res = split(text, 5)
    assert "".join(f.text for f in res.fragments) == text
    for frag in res.fragments:
        assert len(frag.text) <= 5
        assert frag.start % 2 == 0
        assert frag.end % 2 == 0


def test_never_splits_zwj_sequence():
    text = "aa\U0001F469\u200d\U0001F4BBbb"
    res = split(text, 4)
    boundaries = {f.end for f in res.fragments}
    assert 3 not in boundaries
    assert 4 not in boundaries
    assert "".join(f.text for f in res.fragments) == text


def test_never_splits_crlf():
    res = split("ab\r\ncd", 3)
    assert [f.text for f in res.fragments] == ["ab", "\r\n", "cd"]


def test_markup_edges_are_cut_points():
    text = "aaaa<tag>bbbb"
    res = split(text, 6, protected=[(4, 9)])
    assert [f.text for f in res.fragments] == ["aaaa", "<tag>", "bbbb"]
    assert res.degraded == []


def test_protected_span_longer_than_limit_is_reported():
    text = "a<longtag>b"
    res = split(text, 4, protected=[(1, 10)])
    assert "".join(f.text for f in res.fragments) == text
    assert all(len(f.text) <= 4 for f in res.fragments)
    assert res.degraded
    assert {e.reason for e in res.degraded} == {"protected_span"}


@pytest.mark.parametrize(
    ("text", "limit"),
    [
        ("The quick brown fox jumps over the lazy dog. " * 40, 64),
        ("Short.\n\nParagraphs here.\n\n" * 25, 30),
        ("x" * 97 + " tail", 10),
        ("мама мыла раму. " * 30, 17),
        ("one two three", 1),
    ],
)
def test_fragments_reconstruct_text_within_limit(text, limit):
    _assert_contiguous(text, limit)


def test_overlapping_windows_stay_within_limit():
    text = "one two three four four five six seven eight nine ten"
    res = split(text, 25, overlap=12)

    assert res.overlapping
    assert [(f.start, f.end) for f in res.fragments] == [(0, 24), (14, 39), (29, 53)]
    assert [e.overlap_with_previous for e in res.entries] == [0, 10, 10]
    for prev, cur in zip(res.fragments, res.fragments[1:]):
        assert cur.start < prev.end
        assert prev.end - cur.start <= 12
    assert all(len(f.text) <= 25 for f in res.fragments)


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"limit": 0}, "limit must be positive"),
        ({"limit": 10, "overlap": 10}, "overlap must be in"),
        ({"limit": 10, "protected": [(0, 5), (3, 8)]}, "protected spans overlap"),
    ],
)
def test_invalid_arguments_raise_value_error(kwargs, message):
    with pytest.raises(ValueError, match=message):
        Fragmenter("some text", **kwargs)


def test_overlap_never_reaches_before_previous_fragment():
    text = "Hi.\n\n" + "word " * 10
    res = split(text, 25, overlap=12)

    assert res.fragments[0].text == "Hi.\n\n"
    assert res.fragments[-1].end == len(text)
    for frag, entry in zip(res.fragments, res.entries):
        assert frag.start >= 0
        assert 0 < len(frag.text) <= 25
        assert frag.text == text[frag.start : frag.end]
        assert entry.base_offset == frag.start
    for prev, cur in zip(res.fragments, res.fragments[1:]):
        assert prev.start < cur.start <= prev.end


def test_cjk_sentence_ends_without_spaces_are_sentence_cuts():
    text = "今日は天気です。" * 200
    res = split(text, 100)

    assert res.degraded == []
    assert "".join(f.text for f in res.fragments) == text
    assert all(f.cut in {CUT_SENTENCE, CUT_END} for f in res.fragments)
    assert all(f.end % 8 == 0 for f in res.fragments)


@pytest.mark.parametrize(
    ("text", "limit", "cluster"),
    [
        ("\U0001F1E9\U0001F1EA" * 3, 3, 2),
        ("\U0001F44D\U0001F3FD" * 3, 3, 2),
        ("\u1100\u1161\u11a8" * 3, 4, 3),
    ],
)
def test_never_splits_flags_skin_tones_or_hangul_jamo(text, limit, cluster):
    res = split(text, limit)

    assert "".join(f.text for f in res.fragments) == text
    assert all(f.end % cluster == 0 for f in res.fragments)


def test_split_pattern_is_ranked_with_paragraph_breaks():
    text = "alpha beta. gamma---delta epsilon zeta"
    res = split(text, 24, split_pattern="---")

    assert res.fragments[0].text == "alpha beta. gamma---"
    assert res.fragments[0].cut == CUT_PARAGRAPH
    assert "".join(f.text for f in res.fragments) == text

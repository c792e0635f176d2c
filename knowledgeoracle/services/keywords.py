"""Keyword extraction, occurrence scoring and excerpt windows.

All matching happens on accent-folded, lowercase text so "Manutenção"
and "manutencao" are the same keyword.
"""

from __future__ import annotations

import re
import unicodedata

STOPWORDS = frozenset({
    # pt
    "de", "da", "do", "das", "dos", "a", "o", "as", "os", "e", "ou", "para", "por",
    "com", "sem", "em", "no", "na", "nos", "nas", "um", "uma", "que", "como", "qual",
    "quais", "quando", "onde", "porque", "isso", "essa", "esse", "esta",
    "este", "sobre", "entre", "mais", "menos", "pelo", "pela", "seus", "suas", "voce",
    "pode", "podem", "deve", "devem", "fazer", "sao", "estao", "tem", "temos",
    # en
    "the", "and", "for", "with", "what", "which", "when", "where", "about", "from",
    "that", "this", "these", "those", "into", "your", "have", "does", "should", "could",
    "would", "there", "their", "they", "them", "will", "please",
})

ELLIPSIS = "…"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_CODE_RE = re.compile(r"\b(?:[A-Z]{2,6}(?:[- ]?\d+[A-Za-z]?)?|[A-Za-z]{1,4}-?\d{2,}[A-Za-z0-9-]*)\b")
_INCIDENT_RE = re.compile(
    r"\b(ocorrenc|ocorr|acident|inciden|seguranca|epi|nr\s*\d|cipa|quase\s+acident|safety|ppe)"
)


def fold(text: str) -> str:
    """Lowercase and strip diacritics."""
    decomposed = unicodedata.normalize("NFD", str(text or "").lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_for_match(text: str) -> str:
    return _NON_ALNUM_RE.sub(" ", fold(text)).strip()


def _fold_char(c: str) -> str:
    base = fold(c)[:1]
    return base if base and ("a" <= base <= "z" or "0" <= base <= "9") else " "


def fold_aligned(text: str) -> str:
    """Like ``normalize_for_match`` but keeps one output char per input char."""
    return "".join(_fold_char(c) for c in text)


def extract_keywords(
    text: str,
    acronyms: list[str] | tuple[str, ...] = (),
    max_keywords: int = 8,
) -> list[str]:
    """Keywords worth searching for, most specific first.

    Uppercase acronyms and alphanumeric model codes come first, then
    tokens with digits, then long words and allow-listed acronyms, in
    the order they appear.
    """
    allowed = {normalize_for_match(a) for a in acronyms}
    out: list[str] = []

    def add(token: str) -> None:
        if token and token not in out and token not in STOPWORDS:
            out.append(token)

    for match in _CODE_RE.findall(str(text or "")):
        add(normalize_for_match(match))

    tokens = normalize_for_match(text).split()
    for tok in tokens:
        if any(ch.isdigit() for ch in tok):
            add(tok)
    for tok in tokens:
        if len(tok) >= 4 or tok in allowed:
            add(tok)

    return out[:max_keywords]


def _pattern(keyword: str) -> re.Pattern:
    # Short keywords only count as whole words ("nr" must not match "inrush").
    escaped = re.escape(keyword)
    if len(keyword) < 4:
        return re.compile(rf"(?<![a-z0-9]){escaped}(?![a-z0-9])")
    return re.compile(escaped)


def keyword_weight(keyword: str) -> int:
    return 2 if any(ch.isdigit() for ch in keyword) else 1


def score_text(text: str, keywords: list[str]) -> int:
    """Weighted count of keyword occurrences in ``text``."""
    if not keywords:
        return 0
    haystack = normalize_for_match(text)
    return sum(len(_pattern(k).findall(haystack)) * keyword_weight(k) for k in keywords)


def first_match(text: str, keywords: list[str]) -> int:
    """Index in ``text`` of the earliest keyword match, or -1."""
    aligned = fold_aligned(text)
    best = -1
    for k in keywords:
        m = _pattern(k).search(aligned)
        if m and (best < 0 or m.start() < best):
            best = m.start()
    return best


def clip(text: str, cap: int) -> str:
    """Head-truncate to ``cap`` chars, marker included."""
    if len(text) <= cap:
        return text
    if cap <= 1:
        return text[:cap]
    return text[: cap - 1].rstrip() + ELLIPSIS


def centered_excerpt(text: str, keywords: list[str], cap: int) -> str:
    """Window of at most ``cap`` chars centred on the first keyword match.

    Falls back to head truncation only when no keyword matches.
    """
    text = str(text or "")
    if len(text) <= cap:
        return text
    pos = first_match(text, keywords)
    if pos < 0 or cap <= 2:
        return clip(text, cap)

    inner = cap - 2
    start = max(0, pos - inner // 2)
    end = min(len(text), start + inner)
    start = max(0, end - inner)
    prefix = ELLIPSIS if start > 0 else ""
    suffix = ELLIPSIS if end < len(text) else ""
    return prefix + text[start:end].strip() + suffix


def looks_incident_related(text: str) -> bool:
    return bool(_INCIDENT_RE.search(normalize_for_match(text)))


def has_research_trigger(text: str, phrases: list[str]) -> bool:
    """True when the text asks for sourced or cited answers."""
    padded = f" {normalize_for_match(text)} "
    return any(
        f" {normalize_for_match(p)} " in padded for p in phrases if normalize_for_match(p)
    )

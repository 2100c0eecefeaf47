"""
Free-text municipality name resolution.

Upstream datasets spell the same municipality many ways: ``"La Orotava"``,
``"Orotava (La)"``, ``"Orotava, La"``, ``"LA OROTAVA"``. The index stores
every spelling variant of each canonical registry name and resolves input
names in two passes:

1. Exact: generate the input's own variants in a fixed order and return
   the code of the first one present in the index.
2. Fallback: scan all index keys for containment in either direction,
   scoring ``min(len(input), len(key))``. The strictly greatest score
   wins (ties keep the earliest key) and is accepted only at or above the
   threshold (5 characters by default).

Example:
    >>> index = NameIndex.build([MunicipalityEntry("38026", "La Orotava")])
    >>> index.resolve("Orotava (La)")
    '38026'
    >>> index.resolve("Orotava, La")
    '38026'
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from municipal_spine.core.logging import get_logger
from municipal_spine.registry import MunicipalityEntry

logger = get_logger(__name__)

ARTICLES = ("la", "el", "los", "las")
DEFAULT_THRESHOLD = 5

_ART = "|".join(ARTICLES)
_PAREN_ARTICLE = re.compile(rf"^(.+?)\s*\(\s*({_ART})\s*\)$")
_COMMA_ARTICLE = re.compile(rf"^(.+?),\s*({_ART})$", re.IGNORECASE)
_TRAILING_ARTICLE = re.compile(rf"^(.+?)\s+({_ART})$")
_LEADING_ARTICLE = re.compile(rf"^({_ART})\s+(.+)$")
_LEADING_STRIPS = tuple(re.compile(rf"^{article}\s+") for article in ARTICLES)


def normalize_for_matching(value: str) -> str:
    """Trim, lowercase, collapse whitespace, strip diacritics, flatten commas."""
    text = re.sub(r"\s+", " ", value.strip().lower())
    text = unicodedata.normalize("NFD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return re.sub(r",\s*", " ", text)


def generate_name_variations(name: str) -> list[str]:
    """
    Generate the ordered, de-duplicated spelling variants of ``name``.

    The comma form is detected on the raw string, before canonicalization
    flattens commas into spaces.
    """
    normalized = normalize_for_matching(name)
    variations: dict[str, None] = {normalized: None}
    trailing_article = False

    paren = _PAREN_ARTICLE.match(normalized)
    if paren:
        main, article = paren.groups()
        variations[f"{article} {main}"] = None
        variations[main] = None
        trailing_article = True

    comma = _COMMA_ARTICLE.match(name.strip())
    if comma:
        main = normalize_for_matching(comma.group(1))
        article = comma.group(2).lower()
        variations[f"{article} {main}"] = None
        variations[main] = None
        trailing_article = True

    spaced = _TRAILING_ARTICLE.match(normalized)
    if spaced:
        main, article = spaced.groups()
        variations[f"{article} {main}"] = None
        variations[main] = None
        trailing_article = True

    for pattern in _LEADING_STRIPS:
        variations[pattern.sub("", normalized, count=1)] = None

    leading = _LEADING_ARTICLE.match(normalized)
    if not leading and not trailing_article:
        for article in ARTICLES:
            variations[f"{article} {normalized}"] = None

    if leading:
        article, main = leading.groups()
        variations[f"{main}, {article}"] = None
        variations[f"{main} ({article})"] = None
        variations[main] = None

    return list(variations)


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one name: code plus how it was found."""

    name: str
    code: str | None
    method: str
    variant: str | None = None
    score: int = 0

    @property
    def resolved(self) -> bool:
        return self.code is not None


@dataclass
class NameIndex:
    """Variant → code lookup. The first writer of a variant wins."""

    variants: dict[str, str] = field(default_factory=dict)
    canonical: dict[str, str] = field(default_factory=dict)
    threshold: int = DEFAULT_THRESHOLD

    @classmethod
    def build(
        cls,
        entries: Iterable[MunicipalityEntry],
        threshold: int = DEFAULT_THRESHOLD,
    ) -> NameIndex:
        index = cls(threshold=threshold)
        for entry in entries:
            index.add(entry)
        logger.debug("name_index_built", variants=len(index.variants), municipalities=len(index.canonical))
        return index

    def add(self, entry: MunicipalityEntry) -> None:
        self.canonical.setdefault(entry.code, entry.canonical_name)
        for variant in generate_name_variations(entry.canonical_name):
            self.variants.setdefault(variant, entry.code)

    def __len__(self) -> int:
        return len(self.variants)

    def __contains__(self, variant: object) -> bool:
        return variant in self.variants

    def canonical_name(self, code: str) -> str | None:
        return self.canonical.get(code)

    def resolve_detailed(self, name: str, threshold: int | None = None) -> Resolution:
        threshold = self.threshold if threshold is None else threshold

        for variant in generate_name_variations(name):
            code = self.variants.get(variant)
            if code is not None:
                return Resolution(name=name, code=code, method="exact", variant=variant)

        normalized = normalize_for_matching(name)
        best_code: str | None = None
        best_key: str | None = None
        best_score = 0
        for key, code in self.variants.items():
            if key in normalized or normalized in key:
                score = min(len(normalized), len(key))
                if score > best_score:
                    best_score = score
                    best_code = code
                    best_key = key

        if best_code is not None and best_score >= threshold:
            logger.debug("name_partial_match", name=name, code=best_code, key=best_key, score=best_score)
            return Resolution(name=name, code=best_code, method="fallback", variant=best_key, score=best_score)

        return Resolution(name=name, code=None, method="unresolved", variant=best_key, score=best_score)

    def resolve(self, name: str, threshold: int | None = None) -> str | None:
        return self.resolve_detailed(name, threshold).code


def build_name_index(
    entries: Iterable[MunicipalityEntry], threshold: int = DEFAULT_THRESHOLD
) -> NameIndex:
    return NameIndex.build(entries, threshold=threshold)


def resolve_municipality(name: str, index: NameIndex) -> str | None:
    return index.resolve(name)


class MunicipalityResolver:
    """
    Resolves raw municipality names for one pipeline invocation.

    Lookup order: manual name overrides (exact raw name), the name index,
    then postal-code overrides. Distinct unresolved names are collected for
    the run summary.
    """

    def __init__(
        self,
        index: NameIndex,
        overrides: Mapping[str, str] | None = None,
        postal_overrides: Mapping[str, str] | None = None,
    ):
        self.index = index
        self.overrides = {k.strip(): v for k, v in (overrides or {}).items()}
        self.postal_overrides = dict(postal_overrides or {})
        self.unresolved: dict[str, int] = {}
        self.override_hits = 0

    def resolve(self, name: str | None, postal_code: str | None = None) -> Resolution:
        if name is not None and name.strip() in self.overrides:
            self.override_hits += 1
            return Resolution(name=name, code=self.overrides[name.strip()], method="override")

        resolution = self.index.resolve_detailed(name) if name else Resolution(
            name="", code=None, method="unresolved"
        )
        if resolution.resolved:
            return resolution

        if postal_code and postal_code in self.postal_overrides:
            self.override_hits += 1
            return Resolution(name=name or "", code=self.postal_overrides[postal_code], method="postal_override")

        key = name or ""
        self.unresolved[key] = self.unresolved.get(key, 0) + 1
        return resolution

    def normalized_name(self, resolution: Resolution) -> str | None:
        """Canonical registry name when resolved, else the matching form."""
        if resolution.code is not None:
            canonical = self.index.canonical_name(resolution.code)
            if canonical is not None:
                return normalize_for_matching(canonical)
        return normalize_for_matching(resolution.name) if resolution.name else None


__all__ = [
    "ARTICLES",
    "DEFAULT_THRESHOLD",
    "MunicipalityResolver",
    "NameIndex",
    "Resolution",
    "build_name_index",
    "generate_name_variations",
    "normalize_for_matching",
    "resolve_municipality",
]

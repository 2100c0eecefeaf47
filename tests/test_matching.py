"""Tests for municipal_spine.matching: variants, index build and resolution."""

from __future__ import annotations

import pytest

from municipal_spine.matching import (
    MunicipalityResolver,
    NameIndex,
    build_name_index,
    generate_name_variations,
    normalize_for_matching,
    resolve_municipality,
)
from municipal_spine.registry import MunicipalityEntry


# ── Canonicalization ─────────────────────────────────────────────────────


class TestNormalizeForMatching:
    def test_lowercase_trim_and_collapse(self):
        assert normalize_for_matching("  San   Cristóbal  de La Laguna ") == "san cristobal de la laguna"

    def test_strips_diacritics(self):
        assert normalize_for_matching("Güímar") == "guimar"
        assert normalize_for_matching("Santa Úrsula") == "santa ursula"

    def test_flattens_commas(self):
        assert normalize_for_matching("Realejos, Los") == "realejos los"


# ── Variant generation ───────────────────────────────────────────────────


class TestGenerateNameVariations:
    def test_base_form_comes_first(self):
        assert generate_name_variations("La Orotava")[0] == "la orotava"

    def test_parenthesized_article(self):
        variants = generate_name_variations("Orotava (La)")
        assert variants[:3] == ["orotava (la)", "la orotava", "orotava"]

    def test_comma_article_is_detected_before_flattening(self):
        variants = generate_name_variations("Realejos, Los")
        assert variants[0] == "realejos los"
        assert "los realejos" in variants
        assert "realejos" in variants

    def test_trailing_spaced_article(self):
        variants = generate_name_variations("Guancha La")
        assert "la guancha" in variants
        assert "guancha" in variants

    def test_leading_article_adds_reverse_spellings(self):
        variants = generate_name_variations("Los Silos")
        assert "silos" in variants
        assert "silos, los" in variants
        assert "silos (los)" in variants
        assert not any(v.startswith("la los") for v in variants)

    def test_article_prefixed_forms_without_any_article(self):
        variants = generate_name_variations("Tacoronte")
        assert variants[0] == "tacoronte"
        for article in ("la", "el", "los", "las"):
            assert f"{article} tacoronte" in variants

    def test_no_article_prefixes_when_trailing_article_found(self):
        variants = generate_name_variations("Orotava (La)")
        assert "el orotava (la)" not in variants
        assert "los orotava" not in variants

    def test_no_duplicates(self):
        variants = generate_name_variations("El Sauzal")
        assert len(variants) == len(set(variants))


# ── Index build ──────────────────────────────────────────────────────────


class TestNameIndexBuild:
    def test_first_writer_wins(self):
        index = NameIndex.build([
            MunicipalityEntry("1", "Rosario"),
            MunicipalityEntry("2", "El Rosario"),
        ])
        # "el rosario" is a variant of both; the earlier entry keeps it
        assert index.resolve("El Rosario") == "1"
        assert index.variants["rosario"] == "1"

    def test_canonical_names(self, tenerife_entries):
        index = build_name_index(tenerife_entries)
        assert index.canonical_name("38026") == "Orotava (La)"
        assert index.canonical_name("99999") is None
        assert len(index) > len(tenerife_entries)


# ── Resolution ───────────────────────────────────────────────────────────


class TestResolve:
    def test_article_form_equivalence(self):
        index = NameIndex.build([MunicipalityEntry("38026", "La Orotava")])
        codes = {index.resolve(n) for n in ("Orotava (La)", "Orotava, La", "La Orotava")}
        assert codes == {"38026"}

    def test_article_form_equivalence_with_parenthesized_canonical(self):
        index = NameIndex.build([MunicipalityEntry("38026", "Orotava (La)")])
        codes = {index.resolve(n) for n in ("Orotava (La)", "Orotava, La", "La Orotava", "LA OROTAVA")}
        assert codes == {"38026"}

    def test_variant_symmetry(self, tenerife_entries):
        index = build_name_index(tenerife_entries)
        for entry in tenerife_entries:
            for variant in generate_name_variations(entry.canonical_name):
                assert index.resolve(variant) == entry.code, (entry, variant)

    def test_variant_symmetry_for_leading_article_entries(self):
        entries = [
            MunicipalityEntry("38031", "Los Realejos"),
            MunicipalityEntry("38041", "El Sauzal"),
            MunicipalityEntry("38018", "La Guancha"),
        ]
        index = build_name_index(entries)
        for entry in entries:
            for variant in generate_name_variations(entry.canonical_name):
                assert index.resolve(variant) == entry.code, (entry, variant)

    def test_diacritics_and_case_do_not_matter(self, tenerife_entries):
        index = build_name_index(tenerife_entries)
        assert index.resolve("GUIMAR") == "38020"
        assert index.resolve("guía de isora") == "38019"

    def test_exact_match_details(self, tenerife_entries):
        index = build_name_index(tenerife_entries)
        resolution = index.resolve_detailed("Los Realejos")
        assert resolution.method == "exact"
        assert resolution.code == "38031"
        assert resolution.resolved


class TestFallbackThreshold:
    def test_score_four_is_rejected(self):
        index = NameIndex.build([MunicipalityEntry("38022", "Icod")])
        resolution = index.resolve_detailed("icodx")
        assert resolution.score == 4
        assert resolution.code is None
        assert resolution.method == "unresolved"

    def test_score_five_is_accepted(self):
        index = NameIndex.build([MunicipalityEntry("38005", "Arico")])
        resolution = index.resolve_detailed("aricoz")
        assert resolution.score == 5
        assert resolution.code == "38005"
        assert resolution.method == "fallback"

    def test_input_contained_in_key(self, tenerife_entries):
        index = build_name_index(tenerife_entries)
        assert index.resolve("Icod de los") == "38022"

    def test_key_contained_in_input(self, tenerife_entries):
        index = build_name_index(tenerife_entries)
        assert index.resolve("Puerto de la Cruz (Tenerife)") == "38028"

    def test_strictly_greater_score_wins(self):
        index = NameIndex.build([
            MunicipalityEntry("A", "Candelaria"),
            MunicipalityEntry("B", "Candelaria Norte"),
        ])
        # Both keys contain "candelari"; the score is capped by the input length, so the first one stays
        resolution = index.resolve_detailed("candelari")
        assert resolution.code == "A"
        assert resolution.score == 9

    def test_threshold_is_configurable(self):
        index = NameIndex.build([MunicipalityEntry("38022", "Icod")], threshold=4)
        assert index.resolve("icodx") == "38022"
        assert index.resolve("icodx", threshold=6) is None

    def test_unknown_name(self, tenerife_entries):
        index = build_name_index(tenerife_entries)
        assert resolve_municipality("Madrid", index) is None


# ── Resolver with overrides ──────────────────────────────────────────────


class TestMunicipalityResolver:
    @pytest.fixture
    def resolver(self, tenerife_entries):
        return MunicipalityResolver(
            build_name_index(tenerife_entries),
            overrides={"Aeropuerto del Norte": "38023"},
            postal_overrides={"38650": "38006"},
        )

    def test_name_override_first(self, resolver):
        resolution = resolver.resolve(" Aeropuerto del Norte ")
        assert resolution.code == "38023"
        assert resolution.method == "override"
        assert resolver.override_hits == 1

    def test_index_before_postal_override(self, resolver):
        assert resolver.resolve("Adeje", "38650").code == "38001"

    def test_postal_override_for_unresolved_names(self, resolver):
        resolution = resolver.resolve("Los Cristianos", "38650")
        assert resolution.code == "38006"
        assert resolution.method == "postal_override"

    def test_unresolved_names_are_tracked(self, resolver):
        resolver.resolve("Madrid")
        resolver.resolve("Madrid")
        resolver.resolve(None)
        assert resolver.unresolved == {"Madrid": 2, "": 1}

    def test_normalized_name_uses_canonical_when_resolved(self, resolver):
        resolution = resolver.resolve("LA OROTAVA")
        assert resolver.normalized_name(resolution) == "orotava (la)"

    def test_normalized_name_falls_back_to_input(self, resolver):
        resolution = resolver.resolve("Villa Ficticia")
        assert resolver.normalized_name(resolution) == "villa ficticia"

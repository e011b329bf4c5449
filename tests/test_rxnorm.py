"""
RxNorm adapter and display-name formatting tests
"""
import asyncio

from conftest import FakeRxNorm
from medsearch.datasource.formatting import (
    DEFAULT_CATEGORY,
    categorize,
    normalize_display_name,
    parse_medication,
    to_sentence_case,
)


class TestFormatting:
    """Casing and name parsing"""

    def test_sentence_case_keeps_abbreviations(self):
        assert to_sentence_case("METFORMIN HCL 500 MG ER") == "Metformin HCl 500 MG ER"

    def test_sentence_case_handles_compound_words(self):
        assert to_sentence_case("acetaminophen/codeine") == "Acetaminophen/Codeine"
        assert to_sentence_case("co-trimoxazole") == "Co-Trimoxazole"

    def test_sentence_case_skips_leading_brackets(self):
        assert to_sentence_case("ibuprofen (ADVIL)") == "Ibuprofen (Advil)"
        assert to_sentence_case("tylenol [acetaminophen]") == "Tylenol [Acetaminophen]"

    def test_normalize_collapses_whitespace(self):
        assert normalize_display_name("  baby    ASPIRIN ") == "Baby Aspirin"

    def test_generic_with_brand_in_parentheses(self):
        medication = parse_medication("Ibuprofen (Advil)")
        assert medication.generic_name == "Ibuprofen"
        assert medication.brand_names == ["Advil"]

    def test_brand_with_generic_in_brackets(self):
        medication = parse_medication("Tylenol [Acetaminophen]")
        assert medication.generic_name == "Acetaminophen"
        assert medication.brand_names == ["Tylenol"]

    def test_plain_name_is_its_own_generic(self):
        medication = parse_medication("Lorazepam")
        assert medication.generic_name == "Lorazepam"
        assert medication.brand_names is None
        assert medication.categories.broad == "Mental Health"

    def test_categories(self):
        assert categorize("Amoxicillin").broad == "Antibiotics"
        assert categorize("Rosuvastatin").specific == "Cholesterol"
        assert categorize("Zolpidem") == DEFAULT_CATEGORY


class TestRxNormSource:
    """Catalog download, deduplication and fallback"""

    def test_parses_dedupes_and_sorts(self):
        upstream = FakeRxNorm(["lorazepam", "LORAZEPAM", "aspirin", "  Baby  aspirin", ""])
        source = upstream.source()

        medications = asyncio.run(source.fetch_display_names())

        assert [m.name for m in medications] == ["Aspirin", "Baby Aspirin", "Lorazepam"]
        assert upstream.calls == 1

    def test_accepts_bare_list_response(self):
        source = FakeRxNorm().source()
        assert [m.name for m in source._transform_response(["b", "a"])] == ["A", "B"]
        assert source._transform_response({"displayTermsList": None}) == []

    def test_result_reused_within_validity(self, clock):
        upstream = FakeRxNorm(["Aspirin"])
        source = upstream.source(clock=clock)

        async def scenario():
            await source.fetch_display_names()
            clock.advance(hours=1)
            await source.fetch_display_names()
            clock.advance(hours=6)
            await source.fetch_display_names()

        asyncio.run(scenario())
        assert upstream.calls == 2

    def test_force_refresh_refetches(self, clock):
        upstream = FakeRxNorm(["Aspirin"])
        source = upstream.source(clock=clock)

        async def scenario():
            await source.fetch_display_names()
            await source.fetch_display_names(force_refresh=True)

        asyncio.run(scenario())
        assert upstream.calls == 2

    def test_failure_without_previous_data_returns_empty(self):
        upstream = FakeRxNorm()
        upstream.status_code = 503
        source = upstream.source()

        assert asyncio.run(source.fetch_display_names()) == []
        assert source.last_fetch_time is None

    def test_failure_serves_stale_data(self, clock):
        upstream = FakeRxNorm(["Aspirin"])
        source = upstream.source(clock=clock)

        async def scenario():
            first = await source.fetch_display_names()
            upstream.status_code = 500
            clock.advance(hours=7)
            return first, await source.fetch_display_names()

        first, stale = asyncio.run(scenario())
        assert stale == first
        assert upstream.calls == 2

    def test_health_reflects_failures(self):
        upstream = FakeRxNorm()
        upstream.status_code = 500
        source = upstream.source()

        asyncio.run(source.fetch_display_names())
        health = source.get_health_status()
        assert health.failure_count == 1
        assert health.success_rate == 0.0

"""
Ranking of catalog entries against a normalized query.

The ordering is a pure function of (catalog, query): prefix matches first,
then substring matches, each group alphabetical by name. Queries of one or
two characters only match prefixes.
"""

from typing import Iterable, Sequence

from medsearch.datasource.rxnorm import catalog_sort_key
from medsearch.models import Medication, MedicationMatch

SHORT_QUERY_LENGTH = 2


def _lower(value: str | None) -> str:
    return value.lower() if value else ""


def is_starts_with_match(medication: Medication, query: str) -> bool:
    """Name or generic name starts with the (lower-cased) query."""
    return _lower(medication.name).startswith(query) or _lower(
        medication.generic_name
    ).startswith(query)


def is_contains_match(medication: Medication, query: str) -> bool:
    """Name, generic name or any brand name contains the query."""
    if query in _lower(medication.name) or query in _lower(medication.generic_name):
        return True
    return any(query in brand.lower() for brand in medication.brand_names or ())


def is_named_match(medication: Medication, query: str) -> bool:
    """Name or a brand name (not the generic name alone) contains the query."""
    if query in _lower(medication.name):
        return True
    return any(query in brand.lower() for brand in medication.brand_names or ())


def rank(medications: Iterable[Medication], query: str) -> list[Medication]:
    """Every matching medication in result order (no limit applied)."""
    query = query.lower()

    if len(query) <= SHORT_QUERY_LENGTH:
        prefix_matches = [m for m in medications if is_starts_with_match(m, query)]
        return sorted(prefix_matches, key=catalog_sort_key)

    starts_with: list[Medication] = []
    contains_only: list[Medication] = []
    for medication in medications:
        if not is_contains_match(medication, query):
            continue
        if is_starts_with_match(medication, query):
            starts_with.append(medication)
        else:
            contains_only.append(medication)

    starts_with.sort(key=catalog_sort_key)
    contains_only.sort(key=catalog_sort_key)
    return starts_with + contains_only


def finalize(
    ranked: Sequence[Medication],
    query: str,
    limit: int,
    include_generics: bool = True,
) -> list[MedicationMatch]:
    """
    Truncate, optionally drop generic-only matches, and tag the result.

    Works the same on a freshly ranked list and on a cached one, so cache hits
    and catalog searches return identical items for identical input.
    """
    query = query.lower()
    results = list(ranked[:limit])

    if include_generics is False:
        results = [m for m in results if is_named_match(m, query)]

    flags = [is_starts_with_match(m, query) for m in results]
    single = sum(flags) == 1

    return [
        MedicationMatch(
            **m.model_dump(exclude={"is_starts_with_match", "has_single_starts_with_match"}),
            is_starts_with_match=flag,
            has_single_starts_with_match=single,
        )
        for m, flag in zip(results, flags)
    ]

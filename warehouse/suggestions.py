"""Autocomplete helpers built from the record history."""
from __future__ import annotations

from typing import Iterable, Optional

from .filters import sort_records
from .models import DEFAULT_MACHINE_CATEGORY, Transaction

SUGGESTION_LIMIT = 5


def material_suggestions(
    records: Iterable[Transaction],
    fragment: str,
    limit: int = SUGGESTION_LIMIT,
) -> list[str]:
    """Previously used material names containing ``fragment``.

    Matching is case-insensitive; a name equal to the fragment is left out
    because there is nothing left to complete.
    """

    needle = fragment.strip().lower()
    if not needle:
        return []
    seen: list[str] = []
    for tx in records:
        name = tx.material_name
        if not name or name in seen or name == fragment:
            continue
        if needle in name.lower():
            seen.append(name)
            if len(seen) >= limit:
                break
    return seen


def material_details(records: Iterable[Transaction], name: str) -> Optional[dict[str, str]]:
    """Material number and machine category last recorded for ``name``."""

    for tx in sort_records(records):
        if tx.material_name == name:
            return {
                "material_number": tx.material_number,
                "machine_category": tx.machine_category or DEFAULT_MACHINE_CATEGORY,
            }
    return None


__all__ = ["material_details", "material_suggestions"]

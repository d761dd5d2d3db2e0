"""Reviewable records derived from OCR job results.

Each record starts kept and unedited. `edited` flips to True the first time a
content field actually changes and never flips back within a review session.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypedDict

from cookimport.core.errors import WizardError
from cookimport.core.jobs.model import JobResultItem

CONTENT_FIELDS = ("name", "page_number", "ingredient")
EDITABLE_FIELDS = frozenset({*CONTENT_FIELDS, "keep"})

# Wire spellings accepted by apply_update.
_FIELD_ALIASES = {
    "recipeName": "name",
    "pageNumber": "page_number",
}


class ConfirmedItem(TypedDict):
    recipeName: str | None
    pageNumber: int | None
    ingredient: str | None
    keep: bool


@dataclass(slots=True)
class ReviewableItem:
    name: str | None = None
    page_number: int | None = None
    ingredient: str | None = None
    confidence: float | None = None
    needs_review: bool | None = None
    keep: bool = True
    edited: bool = False

    @classmethod
    def from_result(cls, item: JobResultItem) -> ReviewableItem:
        return cls(
            name=item.name,
            page_number=item.page_number,
            ingredient=item.ingredient,
            confidence=item.confidence,
            needs_review=item.needs_review,
        )

    def apply_update(self, updates: Mapping[str, Any]) -> bool:
        """Overwrite the given fields; return True if a content field changed.

        Raises:
            WizardError: If an update names a field that cannot be edited.
        """
        normalized = {_FIELD_ALIASES.get(k, k): v for k, v in updates.items()}
        unknown = sorted(set(normalized) - EDITABLE_FIELDS)
        if unknown:
            raise WizardError(
                f"Cannot edit field(s): {', '.join(unknown)}",
                f"Editable fields: {', '.join(sorted(EDITABLE_FIELDS))}",
            )

        changed = False
        for key in CONTENT_FIELDS:
            if key in normalized and normalized[key] != getattr(self, key):
                setattr(self, key, normalized[key])
                changed = True

        if "keep" in normalized:
            self.keep = bool(normalized["keep"])

        if changed:
            self.edited = True
        return changed

    def toggle_keep(self) -> bool:
        self.keep = not self.keep
        return self.keep

    def to_confirmed(self) -> ConfirmedItem:
        """Projection sent with the confirm-import request."""
        return {
            "recipeName": self.name,
            "pageNumber": self.page_number,
            "ingredient": self.ingredient,
            "keep": self.keep,
        }


def materialize(results: Iterable[JobResultItem]) -> list[ReviewableItem]:
    return [ReviewableItem.from_result(r) for r in results]

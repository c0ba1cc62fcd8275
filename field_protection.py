"""
Field protection for automated metadata updates.

A user can lock individual fields of a record. Whatever the AI returns,
a locked field is never overwritten.
"""

from typing import Dict, Iterable

from models import COST_FIELD_ALIASES


def is_price_locked(locked_fields: Iterable[str], price_flag: bool = False) -> bool:
    """The cost field counts as locked under either spelling, or via the legacy flag."""
    locked = set(locked_fields or ())
    return bool(price_flag) or any(alias in locked for alias in COST_FIELD_ALIASES)


def protect_fields(update: Dict, locked_fields: Iterable[str] = (), is_price_locked_flag: bool = False,
                   is_tracks_validated: bool = False) -> Dict:
    """
    Return a copy of update without any protected field.

    Removed:
      - every field named in locked_fields
      - both spellings of the cost field when price is locked
      - tracks, when the tracklist was validated by hand

    The input is never modified; applying the policy twice gives the same result.
    """
    locked = set(locked_fields or ())
    protected = set(locked)
    if is_price_locked(locked, is_price_locked_flag):
        protected.update(COST_FIELD_ALIASES)
    if is_tracks_validated:
        protected.add("tracks")
    return {k: v for k, v in update.items() if k not in protected}


def protect_for_item(update: Dict, item) -> Dict:
    """protect_fields with the lock settings of a CatalogItem."""
    return protect_fields(
        update,
        item.locked_fields,
        is_price_locked_flag=item.is_price_locked,
        is_tracks_validated=item.is_tracks_validated,
    )

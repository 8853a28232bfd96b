# Overview: Customer scent preference memory.

from __future__ import annotations

from ..extensions import db
from ..models import CustomerPreference
from ..time_utils import utcnow


def _merge_unique(existing: list[str], new: list[str]) -> list[str]:
    merged = list(existing)
    for value in new:
        if value not in merged:
            merged.append(value)
    return merged


def format_bottle_size(total_ml: float) -> str:
    if float(total_ml).is_integer():
        return f"{int(total_ml)}ml"
    return f"{total_ml:g}ml"


def merge_customer_preferences(
    customer_id: int,
    department_id: int | None,
    scents: list[str],
    bottle_sizes: list[str],
) -> CustomerPreference | None:
    """
    Add newly observed scents and bottle sizes to a customer's preferences.

    Read-modify-write with last-writer-wins semantics; nothing happens when
    the sale carried no scent names. Commits.
    """
    if not scents:
        return None

    pref = db.session.query(CustomerPreference).filter_by(customer_id=customer_id).first()
    if pref is None:
        pref = CustomerPreference(
            customer_id=customer_id,
            department_id=department_id,
            preferred_scents=_merge_unique([], scents),
            preferred_bottle_sizes=_merge_unique([], bottle_sizes),
        )
        db.session.add(pref)
    else:
        # Reassign (not mutate) so the JSON columns are marked dirty
        pref.preferred_scents = _merge_unique(list(pref.preferred_scents or []), scents)
        pref.preferred_bottle_sizes = _merge_unique(list(pref.preferred_bottle_sizes or []), bottle_sizes)
        pref.updated_at = utcnow()

    db.session.commit()
    return pref


def get_customer_preferences(customer_id: int) -> CustomerPreference | None:
    return db.session.query(CustomerPreference).filter_by(customer_id=customer_id).first()

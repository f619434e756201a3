"""
Last-write-wins reconciliation of a local dataset with incoming records.

Each collection is merged on its own, keyed by record id:

* an id missing locally is inserted as-is ("new");
* an id present on both sides is replaced by ``{**local, **incoming}`` only when
  the incoming freshness timestamp is strictly greater ("updated"); ties and
  older incoming records leave the local record untouched.

Patients are ordered by ``updatedAt`` (falling back to ``createdAt``, then epoch
0); notes by ``timestamp``. Neither input is modified and no record present on
either side is ever dropped. Conflicts are resolved per record, not per field:
two devices editing different fields of one record keep only the newer record.
"""
import copy
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional, Tuple

from records import default_dataset, note_freshness, patient_freshness


@dataclass
class MergeStats:
    newPatients: int = 0
    updatedPatients: int = 0
    newNotes: int = 0
    updatedNotes: int = 0

    def as_dict(self) -> dict:
        return asdict(self)

    @property
    def changed(self) -> bool:
        return any(asdict(self).values())

    def summary(self) -> str:
        return (
            f"+{self.newPatients} patients, {self.updatedPatients} updated; "
            f"+{self.newNotes} notes, {self.updatedNotes} updated"
        )


def _merge_collection(
    local: List[dict],
    incoming: List[dict],
    freshness: Callable[[dict], float],
) -> Tuple[List[dict], int, int]:
    index: Dict[str, dict] = {r["id"]: r for r in local}
    added = updated = 0
    for record in incoming:
        existing = index.get(record["id"])
        if existing is None:
            index[record["id"]] = copy.deepcopy(record)
            added += 1
        elif freshness(record) > freshness(existing):
            index[record["id"]] = {**existing, **copy.deepcopy(record)}
            updated += 1
    return list(index.values()), added, updated


def merge_datasets(local: Optional[dict], incoming: dict) -> Tuple[dict, MergeStats]:
    """
    Merge ``incoming`` (``{"patients": [...], "notes": [...]}``, either key optional)
    into a copy of ``local``. Returns ``(merged, stats)``.

    Both inputs must already be well formed; see ``records.validate_dataset``.
    """
    out = copy.deepcopy(local) if local is not None else default_dataset()
    stats = MergeStats()

    out["patients"], stats.newPatients, stats.updatedPatients = _merge_collection(
        out.get("patients", []), incoming.get("patients") or [], patient_freshness
    )
    out["notes"], stats.newNotes, stats.updatedNotes = _merge_collection(
        out.get("notes", []), incoming.get("notes") or [], note_freshness
    )
    return out, stats

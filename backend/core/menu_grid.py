"""
Menu grid: every dish with its allergen profile, filtered by station, search text and allergens.
Include/exclude filters look at the contains set only; may-contain is shown but not filtered on.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, TYPE_CHECKING
import logging

from core.allergens import AllergenCatalog, DEFAULT_CATALOG
from core.evaluation.aggregation import AllergenAggregator

if TYPE_CHECKING:
    from core.store.snapshot import StoreSnapshot

logger = logging.getLogger(__name__)


@dataclass
class MenuEntry:
    dish_id: str
    name: str
    station: str
    contains: List[str] = field(default_factory=list)
    may_contain: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "dish_id": self.dish_id,
            "name": self.name,
            "station": self.station,
            "contains": list(self.contains),
            "may_contain": list(self.may_contain),
        }


def build_menu(snapshot: "StoreSnapshot", catalog: AllergenCatalog = DEFAULT_CATALOG) -> List[MenuEntry]:
    agg = AllergenAggregator(snapshot, catalog)
    return [
        MenuEntry(
            dish_id=d.id,
            name=d.name,
            station=d.station,
            contains=agg.contains(d.id),
            may_contain=agg.may_contain(d.id),
        )
        for d in snapshot.dishes_sorted()
    ]


def filter_dishes(
    entries: Iterable[MenuEntry],
    stations: Optional[Iterable[str]] = None,
    search: Optional[str] = None,
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
) -> List[MenuEntry]:
    """
    - stations: keep dishes at any of these stations (empty/None = all)
    - search: case-insensitive substring of dish name or station
    - include: dish must contain every one of these allergens
    - exclude: dish must contain none of these allergens
    """
    station_set = set(stations or [])
    needle = (search or "").strip().lower()
    include_set = set(include or [])
    exclude_set = set(exclude or [])

    out = []
    for entry in entries:
        if station_set and entry.station not in station_set:
            continue
        if needle and needle not in entry.name.lower() and needle not in entry.station.lower():
            continue
        contains = set(entry.contains)
        if not include_set <= contains:
            continue
        if exclude_set & contains:
            continue
        out.append(entry)
    logger.debug(
        "MENU_GRID stations=%s search=%s include=%s exclude=%s matched=%d",
        sorted(station_set), needle, sorted(include_set), sorted(exclude_set), len(out),
    )
    return out

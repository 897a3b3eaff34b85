"""
Fixed, ordered catalog of allergen kinds. Display metadata (name, emoji) carries no behavior.
The catalog is passed explicitly to the store and engines; DEFAULT_CATALOG is the kitchen's table.
"""
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class AllergenOption:
    id: str
    name: str
    emoji: str = ""

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "emoji": self.emoji}

    @classmethod
    def from_dict(cls, d: dict) -> "AllergenOption":
        return cls(id=d["id"], name=d.get("name") or d["id"], emoji=d.get("emoji", "") or "")


ALLERGEN_OPTIONS = (
    AllergenOption("dairy", "Dairy", "\U0001F95B"),
    AllergenOption("eggs", "Eggs", "\U0001F95A"),
    AllergenOption("peanuts", "Peanuts", "\U0001F95C"),
    AllergenOption("tree_nuts", "Tree Nuts", "\U0001F330"),
    AllergenOption("fish", "Fish", "\U0001F41F"),
    AllergenOption("shellfish", "Shellfish", "\U0001F990"),
    AllergenOption("soy", "Soy", "\U0001FAD8"),
    AllergenOption("gluten", "Gluten", "\U0001F33E"),
    AllergenOption("mustard", "Mustard", "\U0001F33C"),
    AllergenOption("sesame", "Sesame", "\U0001F331"),
    AllergenOption("sulfites", "Sulfites", "\U0001F347"),
    AllergenOption("alcohol", "Alcohol", "\U0001F377"),
    AllergenOption("nightshades", "Nightshades", "\U0001F336\uFE0F"),
)


class AllergenCatalog:
    """
    Immutable ordered table of allergen kinds.
    O(1) membership by id; `ordered()` sorts any id collection into catalog order.
    """

    def __init__(self, options: Iterable[AllergenOption] = ALLERGEN_OPTIONS):
        self._options: tuple[AllergenOption, ...] = tuple(options)
        self._position: dict[str, int] = {}
        for idx, opt in enumerate(self._options):
            if opt.id in self._position:
                raise ValueError(f"Duplicate allergen id in catalog: {opt.id}")
            self._position[opt.id] = idx

    def __contains__(self, allergen_id: object) -> bool:
        return allergen_id in self._position

    def __iter__(self):
        return iter(self._options)

    def __len__(self) -> int:
        return len(self._options)

    def get(self, allergen_id: str) -> Optional[AllergenOption]:
        idx = self._position.get(allergen_id)
        return None if idx is None else self._options[idx]

    def list_ids(self) -> list[str]:
        return [opt.id for opt in self._options]

    def unknown(self, allergen_ids: Iterable[str]) -> list[str]:
        """Ids not present in the catalog, in input order, de-duplicated."""
        return list(dict.fromkeys(a for a in allergen_ids if a not in self._position))

    def ordered(self, allergen_ids: Iterable[str]) -> list[str]:
        """Known ids sorted by catalog position; unknown ids keep input order at the end."""
        ids = list(dict.fromkeys(allergen_ids))
        known = sorted((a for a in ids if a in self._position), key=self._position.__getitem__)
        return known + [a for a in ids if a not in self._position]

    def emoji(self, allergen_id: str) -> str:
        opt = self.get(allergen_id)
        return opt.emoji if opt else allergen_id

    def to_list(self) -> list[dict]:
        return [opt.to_dict() for opt in self._options]

    @classmethod
    def from_list(cls, items: list[dict]) -> "AllergenCatalog":
        return cls(AllergenOption.from_dict(d) for d in items)


DEFAULT_CATALOG = AllergenCatalog()

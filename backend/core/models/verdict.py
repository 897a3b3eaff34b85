"""
Structured serve/modify/deny verdict for one dish and one guest.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from core.models.entities import ItemType


class Decision(str, Enum):
    OK = "ok"
    WARNING = "warning"
    MODIFY = "modify"
    NOT_OK = "not_ok"


DECISION_TITLES = {
    Decision.OK: "OK As-Is",
    Decision.WARNING: "OK With Caution",
    Decision.MODIFY: "OK If Modified",
    Decision.NOT_OK: "Not OK",
}


class Severity(str, Enum):
    ANAPHYLACTIC = "anaphylactic"
    MODERATE = "moderate"
    PREFERENCE = "preference"


class TriggerChannel(str, Enum):
    DIRECT = "direct"
    MAY_CONTAIN = "may_contain"
    CROSS_CONTACT = "cross_contact"


@dataclass
class DishItem:
    """One constituent of a dish as the decision engine sees it."""
    id: str
    name: str
    type: ItemType
    allergens: list[str] = field(default_factory=list)
    may_contain: list[str] = field(default_factory=list)
    cross_contact: bool = False
    removable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "allergens": list(self.allergens),
            "may_contain": list(self.may_contain),
            "cross_contact": self.cross_contact,
            "removable": self.removable,
        }


@dataclass
class ItemHit:
    """Evidence for one item: which selected allergens it hit, per channel."""
    item: DishItem
    direct: list[str] = field(default_factory=list)
    may_contain: list[str] = field(default_factory=list)
    cross_contact: bool = False

    @property
    def channels(self) -> list[TriggerChannel]:
        out = []
        if self.direct:
            out.append(TriggerChannel.DIRECT)
        if self.may_contain:
            out.append(TriggerChannel.MAY_CONTAIN)
        if self.cross_contact:
            out.append(TriggerChannel.CROSS_CONTACT)
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.item.id,
            "name": self.item.name,
            "type": self.item.type.value,
            "removable": self.item.removable,
            "channels": [c.value for c in self.channels],
            "direct": list(self.direct),
            "may_contain": list(self.may_contain),
            "cross_contact": self.cross_contact,
        }


@dataclass
class Assessment:
    decision: Decision
    severity: Severity
    selected_allergens: list[str] = field(default_factory=list)
    # Echoed for the service screen; does not change which items trigger
    cross_contact_concern: bool = False
    triggering_items: list[ItemHit] = field(default_factory=list)
    warning_items: list[ItemHit] = field(default_factory=list)
    required_removals: list[str] = field(default_factory=list)
    dish_id: Optional[str] = None
    dish_name: Optional[str] = None

    @property
    def title(self) -> str:
        return DECISION_TITLES[self.decision]

    def to_dict(self) -> dict[str, Any]:
        return {
            "dish_id": self.dish_id,
            "dish_name": self.dish_name,
            "decision": self.decision.value,
            "title": self.title,
            "severity": self.severity.value,
            "selected_allergens": list(self.selected_allergens),
            "cross_contact_concern": self.cross_contact_concern,
            "triggering_items": [h.to_dict() for h in self.triggering_items],
            "warning_items": [h.to_dict() for h in self.warning_items],
            "required_removals": list(self.required_removals),
        }

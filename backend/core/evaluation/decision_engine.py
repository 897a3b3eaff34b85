"""
Deterministic serve/modify/deny decision for one dish and one guest.
Per-item triggers depend on severity:
  anaphylactic: direct OR may_contain OR cross_contact
  moderate:     direct OR cross_contact; may_contain-only items are warnings
  preference:   direct only
Verdict: no triggers/warnings -> ok; warnings only -> warning;
any non-removable trigger -> not_ok; all triggers removable -> modify.
"""
from typing import Iterable, List, Optional, TYPE_CHECKING, Union
import logging

from core.allergens import AllergenCatalog, DEFAULT_CATALOG
from core.errors import EntityNotFound, ValidationError
from core.models.entities import ItemType
from core.models.verdict import Assessment, Decision, DishItem, ItemHit, Severity

if TYPE_CHECKING:
    from core.store.snapshot import StoreSnapshot

logger = logging.getLogger(__name__)


def parse_severity(value: Union[str, Severity]) -> Severity:
    if isinstance(value, Severity):
        return value
    try:
        return Severity((value or "").lower().strip())
    except ValueError:
        raise ValidationError(
            f"Unknown severity: {value}. Expected one of {', '.join(s.value for s in Severity)}",
            field="severity",
        )


def build_dish_items(snapshot: "StoreSnapshot", dish_id: str) -> List[DishItem]:
    """
    Constituents of a stored dish as the service screen evaluates them.
    Supplier items carry no cross-contact flag; components carry no may_contain.
    Dangling links are skipped.
    """
    if dish_id not in snapshot.dishes:
        raise EntityNotFound("dish", dish_id)
    items: List[DishItem] = []
    for item_type, link in snapshot.dish_constituents(dish_id):
        rec = snapshot.get(item_type, link.child_id)
        if rec is None:
            continue
        items.append(DishItem(
            id=rec.id,
            name=rec.name,
            type=item_type,
            allergens=list(rec.allergens),
            may_contain=list(rec.may_contain) if item_type != ItemType.COMPONENT else [],
            cross_contact=bool(getattr(rec, "cross_contact", False)),
            removable=link.removable,
        ))
    return items


class DecisionEngine:
    def __init__(self, catalog: AllergenCatalog = DEFAULT_CATALOG):
        self._catalog = catalog

    def _hit(self, item: DishItem, selected: set, severity: Severity, cross_contact_live: bool):
        """Returns (trigger_hit | None, warning_hit | None) for one item."""
        direct = self._catalog.ordered(a for a in item.allergens if a in selected)
        may = self._catalog.ordered(a for a in item.may_contain if a in selected)
        cc = item.cross_contact and cross_contact_live

        if severity == Severity.ANAPHYLACTIC:
            if direct or may or cc:
                return ItemHit(item=item, direct=direct, may_contain=may, cross_contact=cc), None
            return None, None
        if severity == Severity.MODERATE:
            if direct or cc:
                return ItemHit(item=item, direct=direct, cross_contact=cc), None
            if may and not item.cross_contact:
                return None, ItemHit(item=item, may_contain=may)
            return None, None
        if direct:
            return ItemHit(item=item, direct=direct), None
        return None, None

    def assess(
        self,
        items: Iterable[DishItem],
        selected_allergens: Iterable[str],
        severity: Union[str, Severity] = Severity.MODERATE,
        cross_contact: bool = False,
        dish_id: Optional[str] = None,
        dish_name: Optional[str] = None,
    ) -> Assessment:
        """
        Classify a dish for a guest.
        - selected_allergens: guest's allergen ids; empty -> ok.
        - cross_contact: guest's cross-contact concern; reported back, does not change triggers.
        Items flagged cross_contact count only when a catalog allergen is selected.
        """
        severity = parse_severity(severity)
        selected_list = self._catalog.ordered(selected_allergens)
        result = Assessment(
            decision=Decision.OK,
            severity=severity,
            selected_allergens=selected_list,
            cross_contact_concern=bool(cross_contact),
            dish_id=dish_id,
            dish_name=dish_name,
        )
        if not selected_list:
            return result

        selected = set(selected_list)
        cross_contact_live = any(a in self._catalog for a in selected)
        triggers: List[ItemHit] = []
        warnings: List[ItemHit] = []
        for item in items:
            trigger, warning = self._hit(item, selected, severity, cross_contact_live)
            if trigger is not None:
                triggers.append(trigger)
            if warning is not None:
                warnings.append(warning)

        removable = [h for h in triggers if h.item.removable]
        non_removable = [h for h in triggers if not h.item.removable]

        if not triggers and not warnings:
            decision = Decision.OK
        elif not triggers:
            decision = Decision.WARNING
        elif non_removable:
            decision = Decision.NOT_OK
        elif removable:
            decision = Decision.MODIFY
        else:
            decision = Decision.NOT_OK

        result.decision = decision
        result.triggering_items = triggers
        result.warning_items = warnings
        if decision == Decision.MODIFY:
            result.required_removals = [h.item.name for h in removable]

        logger.info(
            "ASSESS dish=%s severity=%s selected=%s verdict=%s triggers=%d warnings=%d",
            dish_name or dish_id, severity.value, selected_list, decision.value,
            len(triggers), len(warnings),
        )
        return result

    def assess_dish(
        self,
        snapshot: "StoreSnapshot",
        dish_id: str,
        selected_allergens: Iterable[str],
        severity: Union[str, Severity] = Severity.MODERATE,
        cross_contact: bool = False,
    ) -> Assessment:
        items = build_dish_items(snapshot, dish_id)
        dish = snapshot.dishes[dish_id]
        return self.assess(
            items,
            selected_allergens,
            severity=severity,
            cross_contact=cross_contact,
            dish_id=dish.id,
            dish_name=dish.name,
        )

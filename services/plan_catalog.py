"""
Plan Catalog - static plan and price lookup, loaded once and read-only afterwards
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple, Union

from models.plan import Plan, PlanPrice

logger = logging.getLogger(__name__)


class PlanCatalog:
    """
    Immutable catalog of plans and their prices.

    Plans and prices are frozen models; the catalog only exposes lookups.
    """

    def __init__(self, plans: Iterable[Union[Plan, dict]]):
        self._plans: Tuple[Plan, ...] = tuple(
            plan if isinstance(plan, Plan) else Plan.model_validate(plan)
            for plan in plans
        )
        self._plans_by_id: Dict[str, Plan] = {plan.id: plan for plan in self._plans}
        self._prices: Dict[str, Tuple[Plan, PlanPrice]] = {}
        for plan in self._plans:
            for price in plan.prices:
                if price.id in self._prices:
                    raise ValueError(f"Price {price.id} is listed by more than one plan")
                self._prices[price.id] = (plan, price)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PlanCatalog":
        """
        Load the catalog from a JSON file holding a list of plans
        (or an object with a "plans" list).
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        plans = raw.get("plans", []) if isinstance(raw, dict) else raw
        catalog = cls(plans)
        logger.info(f"Loaded {len(catalog.get_plans())} plan(s) from {path}")
        return catalog

    def get_plans(self) -> Tuple[Plan, ...]:
        return self._plans

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self._plans_by_id.get(plan_id)

    def is_price_valid(self, price_id: str) -> bool:
        return price_id in self._prices

    def get_plan_from_price_id(self, price_id: str) -> Optional[Plan]:
        entry = self._prices.get(price_id)
        return entry[0] if entry else None

    def get_price(self, price_id: str) -> Optional[PlanPrice]:
        entry = self._prices.get(price_id)
        return entry[1] if entry else None

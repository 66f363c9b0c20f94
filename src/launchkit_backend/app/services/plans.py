# src/launchkit_backend/app/services/plans.py
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import yaml

from launchkit_backend.app.core.config import get_settings

# Subscription statuses that grant access to the paid plan
ACTIVE_STATUSES = frozenset({"active", "trialing"})


class PlanCatalog:
    """Maps friendly plan ids ("starter", "pro", ...) to Stripe price ids and back."""

    def __init__(self, prices: Dict[str, str]):
        self._prices = dict(prices)
        self._plans = {price: plan for plan, price in self._prices.items()}

    def get_price_id(self, plan_id: str) -> Optional[str]:
        return self._prices.get(plan_id)

    def get_friendly_plan_id(self, price_id: str) -> Optional[str]:
        return self._plans.get(price_id)

    @staticmethod
    def is_active(subscription_status: Optional[str]) -> bool:
        return subscription_status in ACTIVE_STATUSES

    @property
    def plan_ids(self):
        return list(self._prices)


def load_plans(path: Path) -> PlanCatalog:
    """
    Load plans.yml ({"plans": {plan_id: price_id}}), then apply
    STRIPE_PRICE_<PLAN> overrides from the environment.
    """
    with path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    prices: Dict[str, str] = {}
    for plan, price in (cfg.get("plans") or {}).items():
        override = (os.getenv(f"STRIPE_PRICE_{str(plan).upper()}") or "").strip()
        prices[str(plan)] = override or str(price)
    return PlanCatalog(prices)


@lru_cache(maxsize=1)
def get_plan_catalog() -> PlanCatalog:
    return load_plans(get_settings().plans_file)

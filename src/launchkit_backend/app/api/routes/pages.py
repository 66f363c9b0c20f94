# src/launchkit_backend/app/api/routes/pages.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from launchkit_backend.app.session.deps import require_user
from launchkit_backend.app.session.models import SessionUser

# Public: the sign-in route the guard redirects to, plus its sibling auth screens
public = APIRouter(tags=["pages"])

AUTH_SCREENS = ("signin", "signup", "forgotpass", "changepass")


@public.get("/auth/{screen}")
def auth_screen(screen: str) -> Dict[str, Any]:
    if screen not in AUTH_SCREENS:
        raise HTTPException(status_code=404, detail="not found")
    return {"page": "auth", "screen": screen}


# Protected: every route here goes through the route guard
protected = APIRouter(
    tags=["pages"],
    dependencies=[Depends(require_user)],
)

SETTINGS_SECTIONS = ("general", "password", "billing")


@protected.get("/dashboard")
def dashboard(user: SessionUser = Depends(require_user)) -> Dict[str, Any]:
    return {"page": "dashboard", "user": user.model_dump(mode="json")}


@protected.get("/settings/{section}")
def settings_page(section: str, user: SessionUser = Depends(require_user)) -> Dict[str, Any]:
    if section not in SETTINGS_SECTIONS:
        raise HTTPException(status_code=404, detail="not found")
    page: Dict[str, Any] = {"page": "settings", "section": section, "uid": user.uid}
    if section == "billing":
        page["plan_id"] = user.plan_id
        page["plan_is_active"] = user.plan_is_active
    elif section == "general":
        page["profile"] = {"email": user.email, "name": user.name, "picture": user.picture}
    else:
        # password changes only make sense for database-connection users
        page["can_change_password"] = "password" in user.providers
    return page


@protected.get("/purchase/{plan}")
def purchase(plan: str, request: Request, user: SessionUser = Depends(require_user)) -> Dict[str, Any]:
    catalog = request.app.state.plans
    price_id = catalog.get_price_id(plan)
    if price_id is None:
        raise HTTPException(status_code=404, detail=f"unknown plan: {plan}")
    # checkout itself happens on the billing provider's hosted page
    return {"page": "purchase", "plan": plan, "price_id": price_id, "current_plan": user.plan_id}

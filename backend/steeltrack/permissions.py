# Overview: Capability definitions and the single allow/deny decision for every role-scoped action.

"""
Capability-based authorization.

Each capability is defined as: (code, name, description, allowed roles).
authorize(actor, capability, target) is the only place that decides whether
an action is allowed:

1. The actor must hold a role listed for the capability.
2. If a target is given and the capability has an ownership policy, the
   policy must accept (actor, target).

Deny by default: unknown capability codes are refused.
"""

from __future__ import annotations

from .errors import NotAuthorized
from .models.identity import (
    ROLE_SUPER_ADMIN,
    ROLE_ASO,
    ROLE_DEALER,
    ROLE_BARBENDER,
    ROLES,
)


CAPABILITY_DEFINITIONS = [
    # -- IDENTITIES --
    ("CREATE_ASO", "Create ASO", "Provision Area Sales Officer identities", {ROLE_SUPER_ADMIN}),
    ("CREATE_DEALER", "Create Dealer", "Provision Dealer identities", {ROLE_SUPER_ADMIN}),
    ("CREATE_BARBENDER", "Create Barbender", "Provision Barbenders owned by the calling dealer", {ROLE_DEALER}),
    ("VIEW_USERS", "View Users", "List and inspect identities in the caller's scope", {ROLE_SUPER_ADMIN, ROLE_ASO, ROLE_DEALER}),
    ("MANAGE_USERS", "Manage Users", "Block, unblock or delete subordinate identities", {ROLE_SUPER_ADMIN, ROLE_DEALER}),

    # -- HIERARCHY --
    ("MANAGE_MAPPINGS", "Manage Mappings", "Map and unmap dealers to ASOs", {ROLE_SUPER_ADMIN}),
    ("VIEW_MAPPINGS", "View Mappings", "List ASO-dealer mappings", {ROLE_SUPER_ADMIN, ROLE_ASO}),

    # -- CATALOG --
    ("MANAGE_PRODUCTS", "Manage Products", "Create, edit and deactivate products", {ROLE_SUPER_ADMIN}),
    ("VIEW_PRODUCTS", "View Products", "Browse the product catalog", set(ROLES)),

    # -- STOCK --
    ("DISPATCH_STOCK", "Dispatch Stock", "Send stock to a mapped dealer", {ROLE_ASO}),
    ("CANCEL_DISPATCH", "Cancel Dispatch", "Cancel a pending dispatch", {ROLE_SUPER_ADMIN, ROLE_ASO}),
    ("RECEIVE_STOCK", "Receive Stock", "Confirm receipt of a dispatch", {ROLE_DEALER}),
    ("VIEW_DISPATCHES", "View Dispatches", "List dispatches sent or received", {ROLE_SUPER_ADMIN, ROLE_ASO, ROLE_DEALER}),
    ("VIEW_DAILY_STOCK", "View Daily Stock", "Read per-day stock aggregates", {ROLE_SUPER_ADMIN, ROLE_ASO, ROLE_DEALER}),
    ("SELL_STOCK", "Sell Stock", "Sell stock to an owned barbender", {ROLE_DEALER}),
    ("VIEW_SALES", "View Sales", "List sales made or received", {ROLE_SUPER_ADMIN, ROLE_DEALER, ROLE_BARBENDER}),
    ("RECORD_PURCHASE", "Record Purchase", "Record a purchase from an outside source", {ROLE_BARBENDER}),
    ("VIEW_PURCHASES", "View Purchases", "List outside purchases", {ROLE_SUPER_ADMIN, ROLE_DEALER, ROLE_BARBENDER}),

    # -- REWARDS --
    ("VIEW_REWARDS", "View Rewards", "Read reward summary and claim history", {ROLE_DEALER, ROLE_BARBENDER}),
    ("CLAIM_REWARD", "Claim Reward", "Claim the period's reward", {ROLE_DEALER, ROLE_BARBENDER}),
]

CAPABILITY_ROLES = {code: roles for code, _name, _desc, roles in CAPABILITY_DEFINITIONS}

# Role a caller needs the CREATE_* capability for
PROVISIONING_CAPABILITY = {
    ROLE_ASO: "CREATE_ASO",
    ROLE_DEALER: "CREATE_DEALER",
    ROLE_BARBENDER: "CREATE_BARBENDER",
}


# -- OWNERSHIP POLICIES --
# Each takes (actor, target) and returns True when actor may act on target.

def _manages_user(actor, target) -> bool:
    if actor.id == target.id:
        return False
    if actor.role == ROLE_SUPER_ADMIN:
        return target.role != ROLE_SUPER_ADMIN
    if actor.role == ROLE_DEALER:
        return target.role == ROLE_BARBENDER and target.dealer_id == actor.id
    return False


def _sees_user(actor, target) -> bool:
    if actor.id == target.id or actor.role == ROLE_SUPER_ADMIN:
        return True
    if actor.role == ROLE_ASO:
        return target.role == ROLE_DEALER and target.assigned_aso_id == actor.id
    if actor.role == ROLE_DEALER:
        return target.role == ROLE_BARBENDER and target.dealer_id == actor.id
    return False


def _cancels_dispatch(actor, dispatch) -> bool:
    return actor.role == ROLE_SUPER_ADMIN or dispatch.aso_id == actor.id


def _receives_dispatch(actor, dispatch) -> bool:
    return dispatch.dealer_id == actor.id


def _sells_to(actor, barbender) -> bool:
    return barbender.role == ROLE_BARBENDER and barbender.dealer_id == actor.id


def _reads_dealer_stock(actor, dealer) -> bool:
    if actor.role == ROLE_SUPER_ADMIN:
        return True
    if actor.role == ROLE_ASO:
        return dealer.assigned_aso_id == actor.id
    return actor.id == dealer.id


OWNERSHIP_POLICIES = {
    "MANAGE_USERS": _manages_user,
    "VIEW_USERS": _sees_user,
    "CANCEL_DISPATCH": _cancels_dispatch,
    "RECEIVE_STOCK": _receives_dispatch,
    "SELL_STOCK": _sells_to,
    "VIEW_DAILY_STOCK": _reads_dealer_stock,
}


def has_capability(role: str, capability: str) -> bool:
    return role in CAPABILITY_ROLES.get(capability, ())


def capabilities_for_role(role: str) -> list[str]:
    return [code for code, _name, _desc, roles in CAPABILITY_DEFINITIONS if role in roles]


def is_allowed(actor, capability: str, target=None) -> bool:
    if actor is None or not has_capability(actor.role, capability):
        return False
    policy = OWNERSHIP_POLICIES.get(capability)
    if target is not None and policy is not None:
        return policy(actor, target)
    return True


def authorize(actor, capability: str, target=None) -> None:
    """
    Raise NotAuthorized unless actor may perform capability (on target).
    """
    if actor is None or not has_capability(actor.role, capability):
        raise NotAuthorized(
            f"Role {getattr(actor, 'role', None)} cannot perform {capability}",
            details={"required_capability": capability},
        )
    policy = OWNERSHIP_POLICIES.get(capability)
    if target is not None and policy is not None and not policy(actor, target):
        raise NotAuthorized(
            f"Not permitted to perform {capability} on this resource",
            details={"required_capability": capability},
        )

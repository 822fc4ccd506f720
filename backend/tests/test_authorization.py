"""
Authorization tests.

Verifies:
- The capability table grants each role exactly its operations
- Ownership policies scope actions to the caller's own hierarchy
- Unauthenticated requests return 401
- Role-denied requests return 403 and are audited
"""

from types import SimpleNamespace

import pytest

from steeltrack.errors import NotAuthorized
from steeltrack.extensions import db
from steeltrack.models import SecurityEvent
from steeltrack.permissions import (
    CAPABILITY_DEFINITIONS,
    authorize,
    capabilities_for_role,
    has_capability,
    is_allowed,
)


# =============================================================================
# CAPABILITY TABLE
# =============================================================================


class TestCapabilityTable:

    @pytest.mark.parametrize("role,capability,allowed", [
        ("SUPER_ADMIN", "CREATE_ASO", True),
        ("SUPER_ADMIN", "MANAGE_MAPPINGS", True),
        ("SUPER_ADMIN", "DISPATCH_STOCK", False),
        ("SUPER_ADMIN", "CLAIM_REWARD", False),
        ("ASO", "DISPATCH_STOCK", True),
        ("ASO", "MANAGE_MAPPINGS", False),
        ("ASO", "SELL_STOCK", False),
        ("DEALER", "RECEIVE_STOCK", True),
        ("DEALER", "SELL_STOCK", True),
        ("DEALER", "CREATE_BARBENDER", True),
        ("DEALER", "CLAIM_REWARD", True),
        ("DEALER", "DISPATCH_STOCK", False),
        ("DEALER", "CREATE_DEALER", False),
        ("BARBENDER", "RECORD_PURCHASE", True),
        ("BARBENDER", "CLAIM_REWARD", True),
        ("BARBENDER", "VIEW_PRODUCTS", True),
        ("BARBENDER", "SELL_STOCK", False),
        ("BARBENDER", "VIEW_USERS", False),
    ])
    def test_role_capabilities(self, role, capability, allowed):
        assert has_capability(role, capability) is allowed

    def test_unknown_capability_is_denied(self):
        assert has_capability("SUPER_ADMIN", "DROP_DATABASE") is False

    def test_codes_are_unique(self):
        codes = [code for code, *_ in CAPABILITY_DEFINITIONS]
        assert len(codes) == len(set(codes))

    def test_capabilities_for_role(self):
        assert "RECORD_PURCHASE" in capabilities_for_role("BARBENDER")
        assert "RECORD_PURCHASE" not in capabilities_for_role("DEALER")


# =============================================================================
# OWNERSHIP POLICIES
# =============================================================================


def _user(id, role, dealer_id=None, assigned_aso_id=None):
    return SimpleNamespace(id=id, role=role, dealer_id=dealer_id, assigned_aso_id=assigned_aso_id)


class TestOwnershipPolicies:

    def test_dealer_sells_only_to_own_barbender(self):
        dealer = _user(10, "DEALER")
        assert is_allowed(dealer, "SELL_STOCK", _user(20, "BARBENDER", dealer_id=10))
        assert not is_allowed(dealer, "SELL_STOCK", _user(21, "BARBENDER", dealer_id=11))

    def test_receive_only_own_dispatch(self):
        dealer = _user(10, "DEALER")
        assert is_allowed(dealer, "RECEIVE_STOCK", SimpleNamespace(dealer_id=10, aso_id=2))
        assert not is_allowed(dealer, "RECEIVE_STOCK", SimpleNamespace(dealer_id=11, aso_id=2))

    def test_cancel_by_sender_or_admin(self):
        dispatch = SimpleNamespace(dealer_id=10, aso_id=2)
        assert is_allowed(_user(2, "ASO"), "CANCEL_DISPATCH", dispatch)
        assert is_allowed(_user(1, "SUPER_ADMIN"), "CANCEL_DISPATCH", dispatch)
        assert not is_allowed(_user(3, "ASO"), "CANCEL_DISPATCH", dispatch)

    def test_super_admin_does_not_manage_other_admins(self):
        admin = _user(1, "SUPER_ADMIN")
        assert is_allowed(admin, "MANAGE_USERS", _user(2, "ASO"))
        assert not is_allowed(admin, "MANAGE_USERS", _user(5, "SUPER_ADMIN"))

    def test_aso_reads_only_mapped_dealer_stock(self):
        aso = _user(2, "ASO")
        assert is_allowed(aso, "VIEW_DAILY_STOCK", _user(10, "DEALER", assigned_aso_id=2))
        assert not is_allowed(aso, "VIEW_DAILY_STOCK", _user(11, "DEALER", assigned_aso_id=3))

    def test_authorize_raises_with_capability(self):
        with pytest.raises(NotAuthorized) as exc:
            authorize(_user(20, "BARBENDER"), "DISPATCH_STOCK")
        assert exc.value.details["required_capability"] == "DISPATCH_STOCK"

    def test_no_actor(self):
        assert is_allowed(None, "VIEW_PRODUCTS") is False


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/profile"),
            ("POST", "/api/users"),
            ("GET", "/api/users"),
            ("PATCH", "/api/users/1/status"),
            ("POST", "/api/mappings/aso-dealer"),
            ("GET", "/api/mappings"),
            ("GET", "/api/products"),
            ("POST", "/api/stock/dispatches"),
            ("POST", "/api/stock/dispatches/1/receive"),
            ("GET", "/api/stock/daily"),
            ("POST", "/api/sales"),
            ("POST", "/api/purchases"),
            ("GET", "/api/rewards/summary"),
            ("POST", "/api/rewards/claim"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/products", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401
        assert resp.get_json()["kind"] == "TokenInvalid"


# =============================================================================
# ROLE DENIED - 403
# =============================================================================


class TestRoleDenied:

    @pytest.mark.parametrize("user_fixture,method,path", [
        ("barbender", "POST", "/api/stock/dispatches"),
        ("barbender", "GET", "/api/users"),
        ("dealer", "POST", "/api/mappings/aso-dealer"),
        ("dealer", "POST", "/api/products"),
        ("aso", "POST", "/api/sales"),
        ("aso", "POST", "/api/rewards/claim"),
        ("admin", "POST", "/api/stock/dispatches/1/receive"),
    ])
    def test_forbidden(self, request, client, auth_headers, user_fixture, method, path):
        user = request.getfixturevalue(user_fixture)
        resp = getattr(client, method.lower())(path, json={}, headers=auth_headers(user))

        assert resp.status_code == 403
        assert resp.get_json()["kind"] == "NotAuthorized"

    def test_denial_is_audited(self, client, auth_headers, barbender):
        resp = client.post("/api/stock/dispatches", json={}, headers=auth_headers(barbender))
        assert resp.get_json()["required_capability"] == "DISPATCH_STOCK"

        event = db.session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert event.user_id == barbender.id
        assert event.resource == "/api/stock/dispatches"
        assert event.action == "POST"
        assert event.success is False

    def test_dealer_cannot_provision_dealer(self, client, auth_headers, dealer):
        resp = client.post(
            "/api/users",
            json={"role": "DEALER", "phone_no": "9123456789", "name": "Rival"},
            headers=auth_headers(dealer),
        )
        assert resp.status_code == 403

    def test_blocked_user_token_rejected(self, client, auth_headers, dealer):
        headers = auth_headers(dealer)
        dealer.status = "BLOCKED"
        db.session.commit()

        resp = client.get("/api/products", headers=headers)
        assert resp.status_code == 403
        assert resp.get_json()["kind"] == "AccountBlocked"

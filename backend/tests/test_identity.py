"""
Identity provisioning and status lifecycle tests.
"""

import pytest

from steeltrack.errors import AccountDeleted, AlreadyExists, NotAuthorized, ValidationError
from steeltrack.extensions import db
from steeltrack.models import SecurityEvent, User
from steeltrack.models.identity import (
    ROLE_ASO,
    ROLE_BARBENDER,
    ROLE_DEALER,
    ROLE_SUPER_ADMIN,
    STATUS_ACTIVE,
    STATUS_BLOCKED,
    STATUS_DELETED,
    STATUS_PENDING,
)
from steeltrack.services import identity_service

from conftest import make_user


class TestNormalizePhone:

    @pytest.mark.parametrize("cc,phone,expected", [
        ("91", "9876543210", ("91", "9876543210")),
        ("+91", " 9876543210 ", ("91", "9876543210")),
        ("1", 123456789012345, ("1", "123456789012345")),
    ])
    def test_valid(self, cc, phone, expected):
        assert identity_service.normalize_phone(cc, phone) == expected

    @pytest.mark.parametrize("cc,phone", [
        ("91", "987654321"),
        ("91", "98765-43210"),
        ("9191x", "9876543210"),
        (None, "9876543210"),
        ("91", None),
    ])
    def test_invalid(self, cc, phone):
        with pytest.raises(ValidationError):
            identity_service.normalize_phone(cc, phone)


class TestProvisioning:

    @pytest.mark.parametrize("role", [ROLE_ASO, ROLE_DEALER])
    def test_admin_provisions_aso_and_dealer(self, clock, admin, role):
        user = identity_service.provision_user(admin.id, role, "91", "9111111111", "  New Person ")
        db.session.commit()

        assert user.status == STATUS_PENDING
        assert user.role == role
        assert user.name == "New Person"
        assert user.created_by_id == admin.id
        assert user.dealer_id is None
        assert user.available_qty == 0

    def test_dealer_provisions_own_barbender(self, clock, dealer):
        user = identity_service.provision_user(dealer.id, "barbender", "91", "9222222222", "Mahesh")
        db.session.commit()

        assert user.role == ROLE_BARBENDER
        assert user.dealer_id == dealer.id
        assert [b.id for b in identity_service.list_barbenders(dealer.id)] == [user.id]

    @pytest.mark.parametrize("actor_fixture,role", [
        ("aso", ROLE_DEALER),
        ("dealer", ROLE_ASO),
        ("dealer", ROLE_DEALER),
        ("admin", ROLE_BARBENDER),
        ("barbender", ROLE_BARBENDER),
    ])
    def test_wrong_provisioner(self, request, clock, actor_fixture, role):
        actor = request.getfixturevalue(actor_fixture)
        with pytest.raises(NotAuthorized):
            identity_service.provision_user(actor.id, role, "91", "9333333333", "Someone")

    def test_super_admin_cannot_be_provisioned(self, clock, admin):
        with pytest.raises(ValidationError):
            identity_service.provision_user(admin.id, ROLE_SUPER_ADMIN, "91", "9444444444", "Boss")

    def test_pending_dealer_cannot_provision(self, clock, db_session):
        pending = make_user(ROLE_DEALER, "9000000097", "Pending Dealer", status=STATUS_PENDING)
        with pytest.raises(NotAuthorized):
            identity_service.provision_user(pending.id, ROLE_BARBENDER, "91", "9555555555", "Raju")

    def test_duplicate_phone(self, clock, admin, dealer):
        with pytest.raises(AlreadyExists):
            identity_service.provision_user(admin.id, ROLE_ASO, "91", dealer.phone_no, "Copy")

    def test_name_required(self, clock, admin):
        with pytest.raises(ValidationError):
            identity_service.provision_user(admin.id, ROLE_ASO, "91", "9666666666", "   ")

    def test_provisioning_is_audited(self, clock, admin):
        identity_service.provision_user(admin.id, ROLE_ASO, "91", "9777777777", "Audit Me")
        db.session.commit()

        event = db.session.query(SecurityEvent).filter_by(event_type="USER_PROVISIONED").one()
        assert event.user_id == admin.id
        assert event.action == ROLE_ASO


class TestBootstrap:

    def test_idempotent(self, db_session):
        first = identity_service.bootstrap_super_admin("91", "9888888888", "HQ")
        second = identity_service.bootstrap_super_admin("+91", "9888888888", "Other Name")

        assert first.id == second.id
        assert first.role == ROLE_SUPER_ADMIN
        assert first.status == STATUS_PENDING
        assert db.session.query(User).count() == 1

    def test_refuses_existing_non_admin(self, dealer):
        with pytest.raises(AlreadyExists):
            identity_service.bootstrap_super_admin("91", dealer.phone_no, "HQ")


class TestStatusChanges:

    def test_block_and_unblock(self, clock, admin, dealer):
        identity_service.change_status(admin.id, dealer.id, STATUS_BLOCKED)
        db.session.commit()
        assert dealer.status == STATUS_BLOCKED

        identity_service.change_status(admin.id, dealer.id, STATUS_ACTIVE)
        db.session.commit()
        assert dealer.status == STATUS_ACTIVE

    def test_unblock_never_logged_in_returns_to_pending(self, clock, admin, db_session):
        user = make_user(ROLE_ASO, "9000000096", "Fresh ASO", status=STATUS_BLOCKED)
        identity_service.change_status(admin.id, user.id, "active")
        assert user.status == STATUS_PENDING

    def test_activate_is_noop_for_pending(self, clock, admin, db_session):
        user = make_user(ROLE_ASO, "9000000095", "Fresh ASO", status=STATUS_PENDING)
        identity_service.change_status(admin.id, user.id, STATUS_ACTIVE)
        assert user.status == STATUS_PENDING

    def test_deleted_is_terminal(self, clock, admin, dealer):
        identity_service.change_status(admin.id, dealer.id, STATUS_DELETED)
        db.session.commit()

        for status in (STATUS_ACTIVE, STATUS_BLOCKED, STATUS_DELETED):
            with pytest.raises(AccountDeleted):
                identity_service.change_status(admin.id, dealer.id, status)

    def test_pending_is_not_a_target_status(self, clock, admin, dealer):
        with pytest.raises(ValidationError):
            identity_service.change_status(admin.id, dealer.id, STATUS_PENDING)

    def test_dealer_manages_only_own_barbenders(self, clock, dealer, barbender, other_barbender):
        identity_service.change_status(dealer.id, barbender.id, STATUS_BLOCKED)
        with pytest.raises(NotAuthorized):
            identity_service.change_status(dealer.id, other_barbender.id, STATUS_BLOCKED)

    def test_no_self_management(self, clock, admin):
        with pytest.raises(NotAuthorized):
            identity_service.change_status(admin.id, admin.id, STATUS_BLOCKED)

    def test_aso_cannot_manage(self, clock, aso, mapped_dealer):
        with pytest.raises(NotAuthorized):
            identity_service.change_status(aso.id, mapped_dealer.id, STATUS_BLOCKED)


class TestListUsers:

    def test_admin_sees_everyone_except_deleted(self, clock, admin, aso, dealer, barbender):
        identity_service.change_status(admin.id, barbender.id, STATUS_DELETED)
        db.session.commit()

        ids = {u.id for u in identity_service.list_users(admin.id)}
        assert ids == {admin.id, aso.id, dealer.id}
        assert barbender.id in {u.id for u in identity_service.list_users(admin.id, include_deleted=True)}

    def test_aso_sees_mapped_dealers(self, clock, aso, mapped_dealer, other_dealer):
        assert [u.id for u in identity_service.list_users(aso.id)] == [mapped_dealer.id]

    def test_dealer_sees_own_barbenders(self, clock, dealer, barbender, other_barbender):
        assert [u.id for u in identity_service.list_users(dealer.id)] == [barbender.id]

    def test_filter_by_role(self, clock, admin, aso, dealer):
        assert [u.id for u in identity_service.list_users(admin.id, role="aso")] == [aso.id]

    def test_barbender_cannot_list(self, clock, barbender):
        with pytest.raises(NotAuthorized):
            identity_service.list_users(barbender.id)

    def test_visibility_of_single_user(self, clock, aso, mapped_dealer, other_dealer):
        assert identity_service.get_visible_user(aso.id, mapped_dealer.id).id == mapped_dealer.id
        with pytest.raises(NotAuthorized):
            identity_service.get_visible_user(aso.id, other_dealer.id)

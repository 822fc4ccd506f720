"""
ASO <-> Dealer hierarchy tests.

Verifies:
- One active ASO per dealer (service check and partial unique index)
- Unmap clears both sides and is idempotent
- Remapping after unmap
- reconcile_mappings finds and repairs drift
"""

import pytest
from sqlalchemy.exc import IntegrityError

from steeltrack.errors import AccountDeleted, AlreadyMapped, NotAuthorized, ValidationError
from steeltrack.extensions import db
from steeltrack.models import AsoDealerMapping
from steeltrack.models.identity import STATUS_DELETED
from steeltrack.services import identity_service, mapping_service


class TestMapDealer:

    def test_map_sets_both_sides(self, admin, aso, dealer):
        mapping = mapping_service.map_dealer_to_aso(admin.id, aso.id, dealer.id)
        db.session.commit()

        assert dealer.assigned_aso_id == aso.id
        assert mapping.is_active is True
        assert mapping.created_by_id == admin.id
        assert [d.id for d in mapping_service.list_dealers_for_aso(aso.id)] == [dealer.id]

    def test_second_mapping_is_rejected(self, admin, other_aso, mapped_dealer, aso):
        with pytest.raises(AlreadyMapped) as exc:
            mapping_service.map_dealer_to_aso(admin.id, other_aso.id, mapped_dealer.id)
        assert exc.value.details["current_aso_id"] == aso.id

        db.session.rollback()
        assert mapped_dealer.assigned_aso_id == aso.id

    def test_remap_after_unmap(self, admin, other_aso, mapped_dealer):
        assert mapping_service.unmap_dealer(admin.id, mapped_dealer.id) is True
        db.session.commit()
        assert mapped_dealer.assigned_aso_id is None

        mapping_service.map_dealer_to_aso(admin.id, other_aso.id, mapped_dealer.id)
        db.session.commit()

        assert mapped_dealer.assigned_aso_id == other_aso.id
        active = db.session.query(AsoDealerMapping).filter_by(dealer_id=mapped_dealer.id, is_active=True).all()
        assert [m.aso_id for m in active] == [other_aso.id]

    def test_unmap_is_idempotent(self, admin, mapped_dealer):
        assert mapping_service.unmap_dealer(admin.id, mapped_dealer.id) is True
        db.session.commit()
        assert mapping_service.unmap_dealer(admin.id, mapped_dealer.id) is False

    def test_only_super_admin_maps(self, aso, dealer):
        with pytest.raises(NotAuthorized):
            mapping_service.map_dealer_to_aso(aso.id, aso.id, dealer.id)

    @pytest.mark.parametrize("swap", [True, False])
    def test_roles_are_checked(self, admin, aso, dealer, swap):
        aso_id, dealer_id = (dealer.id, aso.id) if swap else (aso.id, aso.id)
        with pytest.raises(ValidationError):
            mapping_service.map_dealer_to_aso(admin.id, aso_id, dealer_id)

    def test_deleted_dealer_cannot_be_mapped(self, admin, aso, dealer):
        dealer.status = STATUS_DELETED
        db.session.commit()

        with pytest.raises(AccountDeleted):
            mapping_service.map_dealer_to_aso(admin.id, aso.id, dealer.id)

    def test_database_enforces_one_active_mapping(self, admin, aso, other_aso, dealer):
        db.session.add(AsoDealerMapping(aso_id=aso.id, dealer_id=dealer.id, is_active=True, created_by_id=admin.id))
        db.session.flush()
        db.session.add(AsoDealerMapping(aso_id=other_aso.id, dealer_id=dealer.id, is_active=True, created_by_id=admin.id))

        with pytest.raises(IntegrityError):
            db.session.flush()
        db.session.rollback()

    def test_inactive_rows_do_not_count(self, admin, aso, other_aso, dealer):
        db.session.add(AsoDealerMapping(aso_id=aso.id, dealer_id=dealer.id, is_active=False, created_by_id=admin.id))
        db.session.add(AsoDealerMapping(aso_id=other_aso.id, dealer_id=dealer.id, is_active=True, created_by_id=admin.id))
        db.session.commit()

        assert db.session.query(AsoDealerMapping).filter_by(dealer_id=dealer.id).count() == 2


class TestListings:

    def test_unmapped_dealers(self, admin, mapped_dealer, other_dealer):
        unmapped = mapping_service.list_unmapped_dealers(admin.id)
        assert [d.id for d in unmapped] == [other_dealer.id]

    def test_aso_sees_only_own_mappings(self, admin, aso, other_aso, mapped_dealer, other_dealer):
        mapping_service.map_dealer_to_aso(admin.id, other_aso.id, other_dealer.id)
        db.session.commit()

        own = mapping_service.list_mappings(aso.id)
        assert [m.dealer_id for m in own] == [mapped_dealer.id]
        assert len(mapping_service.list_mappings(admin.id)) == 2


class TestDeletionDetachesHierarchy:

    def test_deleting_aso_unmaps_its_dealers(self, admin, aso, mapped_dealer):
        identity_service.change_status(admin.id, aso.id, STATUS_DELETED)
        db.session.commit()

        assert mapped_dealer.assigned_aso_id is None
        assert db.session.query(AsoDealerMapping).count() == 0
        assert mapping_service.reconcile_mappings() == []

    def test_deleting_dealer_removes_mapping(self, admin, mapped_dealer):
        identity_service.change_status(admin.id, mapped_dealer.id, STATUS_DELETED)
        db.session.commit()

        assert mapped_dealer.assigned_aso_id is None
        assert db.session.query(AsoDealerMapping).count() == 0


class TestReconcile:

    def test_consistent(self, mapped_dealer):
        assert mapping_service.reconcile_mappings() == []

    def test_missing_mapping_row(self, aso, dealer):
        dealer.assigned_aso_id = aso.id
        db.session.commit()

        issues = mapping_service.reconcile_mappings()
        assert issues == [{"dealer_id": dealer.id, "issue": "missing_mapping_row", "aso_id": aso.id}]

        mapping_service.reconcile_mappings(fix=True)
        assert mapping_service.reconcile_mappings() == []
        row = db.session.query(AsoDealerMapping).filter_by(dealer_id=dealer.id).one()
        assert row.aso_id == aso.id

    def test_orphan_mapping_row(self, admin, aso, dealer):
        db.session.add(AsoDealerMapping(aso_id=aso.id, dealer_id=dealer.id, is_active=True, created_by_id=admin.id))
        db.session.commit()

        issues = mapping_service.reconcile_mappings(fix=True)
        assert issues[0]["issue"] == "orphan_mapping_row"
        assert db.session.query(AsoDealerMapping).count() == 0

    def test_aso_mismatch(self, aso, other_aso, mapped_dealer):
        mapped_dealer.assigned_aso_id = other_aso.id
        db.session.commit()

        issues = mapping_service.reconcile_mappings(fix=True)
        assert issues[0]["issue"] == "aso_mismatch"
        assert issues[0]["mapped_aso_id"] == aso.id

        row = db.session.query(AsoDealerMapping).filter_by(dealer_id=mapped_dealer.id, is_active=True).one()
        assert row.aso_id == other_aso.id

    def test_dangling_reference_to_deleted_aso(self, aso, mapped_dealer):
        aso.status = STATUS_DELETED
        db.session.commit()

        issues = mapping_service.reconcile_mappings(fix=True)
        kinds = [i["issue"] for i in issues]
        assert "dangling_reference" in kinds

        assert mapped_dealer.assigned_aso_id is None
        assert db.session.query(AsoDealerMapping).count() == 0

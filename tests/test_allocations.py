from decimal import Decimal

import pytest

from raas.business import allocations
from raas.business.exceptions import (
    AllocationConflict, AllocationNotFound, InvalidInstallation, InvalidQuota,
    PermissionDenied, QuotaExceeded,
)
from raas.business.ledger import InstallationType


@pytest.fixture
def roof(make_installation):
    return make_installation("G-1", InstallationType.GENERATOR, user_id="owner-1")


@pytest.fixture
def consumers(make_installation):
    return [make_installation(f"C-{i}", user_id=f"customer-{i}") for i in range(1, 4)]


def test_create_and_get(session, admin, roof, consumers):
    alloc = allocations.create_allocation(session, admin, roof.id, consumers[0].id, Decimal("55"))
    assert alloc.id
    assert allocations.get_allocation(session, alloc.id, admin).quota == Decimal("55")


def test_only_admins_write(session, customer, roof, consumers):
    with pytest.raises(PermissionDenied):
        allocations.create_allocation(session, customer, roof.id, consumers[0].id, 10)


def test_quota_sum_capped_at_100(session, admin, roof, consumers):
    allocations.create_allocation(session, admin, roof.id, consumers[0].id, 60)
    allocations.create_allocation(session, admin, roof.id, consumers[1].id, 40)
    with pytest.raises(QuotaExceeded):
        allocations.create_allocation(session, admin, roof.id, consumers[2].id, Decimal("0.01"))


@pytest.mark.parametrize("quota", [0, -5, Decimal("100.5"), "x"])
def test_quota_must_be_a_percentage(session, admin, roof, consumers, quota):
    with pytest.raises(InvalidQuota):
        allocations.create_allocation(session, admin, roof.id, consumers[0].id, quota)


def test_duplicate_pair_conflicts(session, admin, roof, consumers):
    allocations.create_allocation(session, admin, roof.id, consumers[0].id, 10)
    with pytest.raises(AllocationConflict):
        allocations.create_allocation(session, admin, roof.id, consumers[0].id, 10)


def test_installation_types_enforced(session, admin, roof, consumers):
    with pytest.raises(InvalidInstallation):
        allocations.create_allocation(session, admin, consumers[0].id, consumers[1].id, 10)
    with pytest.raises(InvalidInstallation):
        allocations.create_allocation(session, admin, roof.id, roof.id, 10)
    with pytest.raises(InvalidInstallation):
        allocations.create_allocation(session, admin, roof.id, "missing", 10)


def test_update_excludes_itself_from_quota_sum(session, admin, roof, consumers):
    a = allocations.create_allocation(session, admin, roof.id, consumers[0].id, 70)
    allocations.create_allocation(session, admin, roof.id, consumers[1].id, 20)

    updated = allocations.update_allocation(session, a.id, admin, quota=80)
    assert updated.quota == Decimal("80")
    with pytest.raises(QuotaExceeded):
        allocations.update_allocation(session, a.id, admin, quota=Decimal("80.01"))


def test_update_rejects_duplicate_pair(session, admin, roof, consumers):
    allocations.create_allocation(session, admin, roof.id, consumers[0].id, 10)
    b = allocations.create_allocation(session, admin, roof.id, consumers[1].id, 10)
    with pytest.raises(AllocationConflict):
        allocations.update_allocation(session, b.id, admin, consumer_id=consumers[0].id)


def test_users_see_only_their_allocations(session, admin, customer, roof, consumers):
    mine = allocations.create_allocation(session, admin, roof.id, consumers[0].id, 10)
    other = allocations.create_allocation(session, admin, roof.id, consumers[1].id, 10)

    assert [a.id for a in allocations.list_allocations(session, customer)] == [mine.id]
    assert len(allocations.list_allocations(session, admin)) == 2
    with pytest.raises(PermissionDenied):
        allocations.get_allocation(session, other.id, customer)


def test_delete(session, admin, roof, consumers):
    a = allocations.create_allocation(session, admin, roof.id, consumers[0].id, 10)
    allocations.delete_allocation(session, a.id, admin)
    with pytest.raises(AllocationNotFound):
        allocations.get_allocation(session, a.id, admin)
    with pytest.raises(AllocationNotFound):
        allocations.delete_allocation(session, a.id, admin)

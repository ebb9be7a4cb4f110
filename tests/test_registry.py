"""
stakepool Validator Registry Tests

Linked-list ordering, deactivation windows, reaping and re-adding.
"""

import pytest

from stakepool.exceptions import InvalidValidatorError, InvariantViolation
from stakepool.validator import ValidatorRegistry, ValidatorRecord, normalize_operator

OP1 = "0x" + "11" * 20
OP2 = "0x" + "22" * 20
OP3 = "0x" + "33" * 20
OP_MIXED = "0x52908400098527886E0F7030069857D2E4169EE7"


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def registry():
    return ValidatorRegistry(capacity=8, deactivation_delay=5)


@pytest.fixture
def populated(registry):
    registry.add(1, OP1, epoch=0)
    registry.add(2, OP2, epoch=0)
    registry.add(3, OP3, epoch=0)
    return registry


# =============================================================================
# OPERATOR ADDRESSES
# =============================================================================

class TestOperatorAddress:
    """Operator validation and checksumming."""

    def test_lowercase_is_checksummed(self):
        assert normalize_operator(OP_MIXED.lower()) == OP_MIXED

    def test_invalid_address_rejected(self):
        with pytest.raises(InvalidValidatorError, match="Invalid operator"):
            normalize_operator("not-an-address")

    def test_non_string_rejected(self):
        with pytest.raises(InvalidValidatorError):
            normalize_operator(1234)

    def test_record_round_trip(self):
        record = ValidatorRecord(validator_id=4, operator=normalize_operator(OP1), added_epoch=3)
        assert ValidatorRecord.from_dict(record.to_dict()) == record


# =============================================================================
# LINKED LIST
# =============================================================================

class TestRegistryOrder:
    """Traversal between the sentinels."""

    def test_empty_registry(self, registry):
        assert registry.first() == registry.last_sentinel
        assert registry.last() == registry.first_sentinel
        assert list(registry) == []
        assert registry.count == 0
        registry.check_integrity()

    def test_add_appends_at_tail(self, populated):
        assert list(populated) == [1, 2, 3]
        assert populated.first() == 1
        assert populated.last() == 3
        assert populated.next_after(3) == populated.last_sentinel
        assert populated.prev_before(1) == populated.first_sentinel
        populated.check_integrity()

    def test_ids_need_not_be_ordered(self, registry):
        registry.add(7, OP1, epoch=0)
        registry.add(2, OP2, epoch=0)
        assert list(registry) == [7, 2]
        assert registry.next_after(7) == 2

    def test_sentinels_never_yielded(self, populated):
        assert populated.first_sentinel not in list(populated)
        assert populated.last_sentinel not in list(populated)
        assert populated.is_sentinel(0)
        assert populated.is_sentinel(populated.capacity + 1)

    def test_sentinels_are_not_active(self, populated):
        for sentinel in (populated.first_sentinel, populated.last_sentinel):
            assert not populated.is_active(sentinel)
            assert sentinel not in populated
        assert populated.next_after(populated.first_sentinel) == 1
        assert populated.prev_before(populated.last_sentinel) == 3

    def test_next_after_last_sentinel_fails(self, populated):
        with pytest.raises(InvalidValidatorError):
            populated.next_after(populated.last_sentinel)

    def test_validator_for_resolves_operator(self, populated):
        assert populated.validator_for(OP2) == 2
        assert populated.validator_for("0x" + "44" * 20) is None
        assert populated.validator_for("garbage") is None


# =============================================================================
# ADD FAILURES
# =============================================================================

class TestRegistryAddFailures:
    """Every rejected add leaves the list untouched."""

    @pytest.mark.parametrize("validator_id", [0, 9, -1])
    def test_out_of_range_ids(self, registry, validator_id):
        with pytest.raises(InvalidValidatorError, match="outside"):
            registry.add(validator_id, OP1, epoch=0)
        assert registry.count == 0

    def test_duplicate_id(self, populated):
        with pytest.raises(InvalidValidatorError, match="already active"):
            populated.add(2, "0x" + "44" * 20, epoch=1)

    def test_operator_bound_elsewhere(self, populated):
        with pytest.raises(InvalidValidatorError, match="already bound"):
            populated.add(4, OP1, epoch=1)
        populated.check_integrity()

    def test_bad_address(self, registry):
        with pytest.raises(InvalidValidatorError):
            registry.add(1, "0x1234", epoch=0)

    def test_readd_while_deactivating(self, populated):
        populated.deactivate(2, epoch=1)
        with pytest.raises(InvalidValidatorError, match="deactivating"):
            populated.add(2, OP2, epoch=2)


# =============================================================================
# DEACTIVATION AND REAPING
# =============================================================================

class TestRegistryDeactivation:
    """Soft deactivation followed by a delayed, settlement-gated reap."""

    def test_deactivation_keeps_node_linked(self, populated):
        populated.deactivate(2, epoch=10)
        assert populated.is_active(2)
        assert populated.is_deactivating(2)
        assert populated.validator_for(OP2) == 2
        assert populated.removable_epoch(2) == 15
        assert list(populated) == [1, 2, 3]

    def test_double_deactivation_fails(self, populated):
        populated.deactivate(2, epoch=10)
        with pytest.raises(InvalidValidatorError, match="already deactivating"):
            populated.deactivate(2, epoch=11)

    def test_deactivate_unknown_fails(self, populated):
        with pytest.raises(InvalidValidatorError, match="not active"):
            populated.deactivate(5, epoch=1)

    def test_reap_waits_for_delay(self, populated):
        populated.deactivate(2, epoch=10)
        assert not populated.reap(2, epoch=14, settled=True)
        assert populated.is_active(2)

    def test_reap_waits_for_settlement(self, populated):
        populated.deactivate(2, epoch=10)
        assert not populated.reap(2, epoch=15, settled=False)
        assert populated.is_active(2)

    def test_reap_unlinks_and_unmaps(self, populated):
        populated.deactivate(2, epoch=10)
        assert populated.reap(2, epoch=15, settled=True)
        assert not populated.is_active(2)
        assert populated.validator_for(OP2) is None
        assert list(populated) == [1, 3]
        assert populated.next_after(1) == 3
        assert populated.prev_before(3) == 1
        assert populated.count == 2
        populated.check_integrity()

    def test_reap_active_validator_is_noop(self, populated):
        assert not populated.reap(1, epoch=100, settled=True)

    def test_readd_after_reap_relinks_at_tail(self, populated):
        populated.deactivate(1, epoch=0)
        populated.reap(1, epoch=5, settled=True)
        record = populated.add(1, OP1, epoch=6)
        assert record.added_epoch == 6
        assert record.deactivation_epoch is None
        assert list(populated) == [2, 3, 1]
        assert populated.validator_for(OP1) == 1
        populated.check_integrity()

    def test_operator_reusable_by_new_id_after_reap(self, populated):
        populated.deactivate(3, epoch=0)
        populated.reap(3, epoch=5, settled=True)
        populated.add(6, OP3, epoch=6)
        assert populated.validator_for(OP3) == 6


# =============================================================================
# INTEGRITY
# =============================================================================

class TestRegistryIntegrity:

    def test_corrupted_pointer_detected(self, populated):
        populated._prev[3] = 1
        with pytest.raises(InvariantViolation):
            populated.check_integrity()

    def test_count_mismatch_detected(self, populated):
        populated._count = 5
        with pytest.raises(InvariantViolation, match="count"):
            populated.check_integrity()

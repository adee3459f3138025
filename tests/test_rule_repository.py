"""Tests for commission rule storage."""

import pytest
import tempfile
from pathlib import Path

from commission_engine.audit import Actor, AuditAction, AuditScope, AuditTrail
from commission_engine.core.errors import PersistenceError, RuleNotFound, ValidationError
from commission_engine.rules import RuleRepository, RuleType
from commission_engine.storage import AUDIT_KEY, RULES_KEY, JsonFileStore, MemoryStore


class FailingAuditStore(MemoryStore):
    """Memory store whose audit saves can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_audit = False

    def save(self, key, collection):
        if self.fail_audit and key == AUDIT_KEY:
            raise OSError("audit log unavailable")
        super().save(key, collection)


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store():
    return FailingAuditStore()


@pytest.fixture
def audit_trail(store):
    return AuditTrail(store)


@pytest.fixture
def repo(store, audit_trail):
    return RuleRepository(store, audit_trail)


@pytest.fixture
def admin():
    return Actor("admin-1", "Admin User")


def _tiers():
    return [
        {'min_amount': 0, 'max_amount': 50000, 'rate': 3},
        {'min_amount': 50000, 'max_amount': None, 'rate': 5},
    ]


class TestRuleRepository:
    """Tests for RuleRepository."""

    def test_create_percentage_rule(self, repo, audit_trail, admin):
        """Creating a rule stores it and writes a system entry."""
        rule = repo.create("Standard", RuleType.PERCENTAGE, actor=admin, rate=5)

        assert rule.id
        assert rule.type == RuleType.PERCENTAGE
        assert rule.rate == 5
        assert rule.applies_to == ["all"]
        assert repo.get(rule.id) is rule

        entries = audit_trail.list_all(scope=AuditScope.SYSTEM)
        assert len(entries) == 1
        assert entries[0].action == AuditAction.CREATED
        assert entries[0].subject_id == rule.id
        assert entries[0].user_id == "admin-1"
        assert entries[0].new_value['rate'] == 5

    def test_system_actor_used_when_none_given(self, repo, audit_trail):
        rule = repo.create("Bonus", "flat", amount=250)
        assert audit_trail.list_by_subject(rule.id)[0].user_id == "system"

    def test_invalid_rule_is_not_stored(self, repo, store, audit_trail):
        """Validation failures leave the collection and audit trail untouched."""
        with pytest.raises(ValidationError) as exc:
            repo.create("Gappy", "tiered", tiers=[
                {'min_amount': 0, 'max_amount': 40000, 'rate': 3},
                {'min_amount': 50000, 'max_amount': None, 'rate': 5},
            ])
        assert any("Gap" in e for e in exc.value.details['errors'])
        assert repo.list() == []
        assert audit_trail.entries == []
        assert store.load(RULES_KEY) is None

    def test_invalid_type(self, repo):
        with pytest.raises(ValidationError):
            repo.create("Odd", "bogus")

    def test_update(self, repo, audit_trail, admin):
        """Updates merge into the rule and record before/after."""
        rule = repo.create("Standard", "percentage", rate=5)
        updated = repo.update(rule.id, {'rate': 6, 'name': "Standard Plus"}, admin)

        assert updated.rate == 6
        assert updated.name == "Standard Plus"
        assert updated.created_at == rule.created_at

        latest = audit_trail.list_by_subject(rule.id)[0]
        assert latest.action == AuditAction.UPDATED
        assert latest.previous_value['rate'] == 5
        assert latest.new_value['rate'] == 6

    def test_update_protected_field(self, repo):
        rule = repo.create("Standard", "percentage", rate=5)
        with pytest.raises(ValidationError):
            repo.update(rule.id, {'id': "other"})

    def test_update_must_stay_valid(self, repo):
        """An update that breaks an invariant is refused and nothing changes."""
        rule = repo.create("Standard", "percentage", rate=5)
        with pytest.raises(ValidationError):
            repo.update(rule.id, {'rate': 150})
        assert repo.get(rule.id).rate == 5

    def test_update_with_empty_value(self, repo, audit_trail):
        rule = repo.create("Bonus", "flat", amount=500)
        with pytest.raises(ValidationError):
            repo.update(rule.id, {'amount': None})
        assert repo.get(rule.id).amount == 500
        assert len(audit_trail.entries) == 1

    def test_nan_rate_is_not_stored(self, repo, store):
        with pytest.raises(ValidationError):
            repo.create("Odd", "percentage", rate=float("nan"))
        assert repo.list() == []
        assert store.load(RULES_KEY) is None

    def test_tier_missing_minimum(self, repo):
        with pytest.raises(ValidationError):
            repo.create("Odd", "tiered", tiers=[{'max_amount': 50000, 'rate': 3}])
        assert repo.list() == []

    def test_activate_deactivate(self, repo):
        rule = repo.create("Standard", "percentage", rate=5)
        assert not repo.deactivate(rule.id).is_active
        assert repo.list(active_only=True) == []
        assert repo.activate(rule.id).is_active

    def test_delete(self, repo, audit_trail):
        rule = repo.create("Bonus", "flat", amount=500)
        repo.delete(rule.id)

        assert repo.get(rule.id) is None
        with pytest.raises(RuleNotFound):
            repo.require(rule.id)
        latest = audit_trail.list_by_subject(rule.id)[0]
        assert latest.action == AuditAction.DELETED
        assert latest.previous_value['amount'] == 500

    def test_delete_unknown(self, repo):
        with pytest.raises(RuleNotFound):
            repo.delete("missing")

    def test_duplicate(self, repo, audit_trail):
        """Copies get a new id, a " (Copy)" name and fresh tier ids."""
        rule = repo.create("Tiered", "tiered", tiers=_tiers(), applies_to=["residential"])
        copy = repo.duplicate(rule.id)

        assert copy.id != rule.id
        assert copy.name == "Tiered (Copy)"
        assert copy.type == RuleType.TIERED
        assert copy.applies_to == ["residential"]
        assert [(t.min_amount, t.max_amount, t.rate) for t in copy.tiers] == \
            [(t.min_amount, t.max_amount, t.rate) for t in rule.tiers]
        assert not {t.id for t in copy.tiers} & {t.id for t in rule.tiers}
        assert audit_trail.list_by_subject(copy.id)[0].notes == f"Duplicated from {rule.id}"

    def test_list_by_category(self, repo):
        """Rules for "all" match every category."""
        everything = repo.create("Standard", "percentage", rate=5)
        residential = repo.create("Residential", "flat", amount=100, applies_to=["residential"])

        assert [r.id for r in repo.list()] == [everything.id, residential.id]
        assert {r.id for r in repo.list(category="residential")} == {everything.id, residential.id}
        assert [r.id for r in repo.list(category="commercial")] == [everything.id]

    def test_audit_failure_rolls_back(self, repo, store, audit_trail):
        """If the audit entry can't be saved the rule isn't kept."""
        store.fail_audit = True
        with pytest.raises(PersistenceError):
            repo.create("Standard", "percentage", rate=5)

        assert repo.list() == []
        assert store.load(RULES_KEY) == []
        assert audit_trail.entries == []


class TestRulePersistence:
    """Tests for loading rules back from JSON files."""

    def test_reload_from_disk(self, temp_data_dir):
        """Rules survive a restart with their tiers and timestamps."""
        store = JsonFileStore(temp_data_dir)
        repo = RuleRepository(store, AuditTrail(store))
        rule = repo.create("Tiered", "tiered", tiers=_tiers())

        assert (temp_data_dir / "commission-rules.json").exists()

        reloaded = RuleRepository(store, AuditTrail(store)).get(rule.id)
        assert reloaded == rule

    def test_seed_defaults(self, temp_data_dir):
        """An empty collection gets the three starter rules, once."""
        store = JsonFileStore(temp_data_dir)
        repo = RuleRepository(store, AuditTrail(store), seed_defaults=True)
        names = sorted(r.name for r in repo.list())
        assert names == [
            "Service Contract Bonus",
            "Standard Sales Commission",
            "Tiered Sales Commission",
        ]

        again = RuleRepository(store, AuditTrail(store), seed_defaults=True)
        assert len(again.list()) == 3

    def test_unreadable_record_is_not_overwritten(self, temp_data_dir):
        """Defaults are never seeded over a collection that failed to load."""
        data_file = temp_data_dir / "commission-rules.json"
        data_file.write_text('[{"id": "r1", "name": "Custom", "type": "percentage", "rate": "abc"}]')
        original = data_file.read_bytes()

        store = JsonFileStore(temp_data_dir)
        with pytest.raises(PersistenceError):
            RuleRepository(store, AuditTrail(store), seed_defaults=True)
        assert data_file.read_bytes() == original

    def test_seeded_tiered_rule(self, temp_data_dir):
        store = JsonFileStore(temp_data_dir)
        repo = RuleRepository(store, AuditTrail(store), seed_defaults=True)
        tiered = [r for r in repo.list() if r.type == RuleType.TIERED][0]
        assert [t.rate for t in tiered.sorted_tiers()] == [3, 5, 7]
        assert tiered.sorted_tiers()[-1].is_unbounded

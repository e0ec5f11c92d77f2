import pytest
from faker import Faker

from recruzy.services.assignments import reconcile

fake = Faker()


def test_reconcile_returns_missing_tests():
    assert reconcile({"A", "B", "C"}, {"B"}) == {"A", "C"}


def test_reconcile_after_insert_returns_nothing():
    published = {"A", "B", "C"}
    existing = {"B"}
    missing = reconcile(published, existing)
    assert reconcile(published, existing | missing) == set()


def test_reconcile_ignores_assignments_of_unpublished_tests():
    assert reconcile({1, 2}, {2, 3, 4}) == {1}


@pytest.mark.parametrize(
    "published, existing, expected",
    [
        (set(), set(), set()),
        (set(), {1}, set()),
        ({1, 2}, set(), {1, 2}),
        ({1, 2}, {1, 2}, set()),
    ],
)
def test_reconcile_edge_cases(published, existing, expected):
    assert reconcile(published, existing) == expected


def test_reconcile_accepts_any_iterables():
    assert reconcile([1, 2, 2, 3], (3,)) == {1, 2}


def _random_ids():
    return set(fake.random_elements(list(range(40)), length=fake.random_int(0, 20), unique=True))


@pytest.mark.parametrize("round_no", range(25))
def test_reconcile_is_idempotent_and_complete(round_no):
    published, existing = _random_ids(), _random_ids()

    missing = reconcile(published, existing)
    applied = existing | missing

    assert missing.isdisjoint(existing)
    assert missing <= published
    assert applied == published | existing
    assert reconcile(published, applied) == set()

import pytest

from dealhub.errors import ValidationError


def test_like_counts_per_pair(ledger, make_deal):
    a, b = make_deal("A"), make_deal("B")
    assert ledger.like(a, b) == 1
    assert ledger.like(a, b) == 2
    assert ledger.contextual_likes(a, b) == 2
    assert ledger.contextual_likes(b, a) == 0


def test_pair_isolation_from_other_sources_and_global_likes(ledger, deals, make_deal):
    a, b, c = make_deal("A"), make_deal("B"), make_deal("C")
    deals.increment_likes(b)
    ledger.like(a, b)
    ledger.like(a, b)

    assert ledger.contextual_likes(c, b) == 0
    assert deals.get(b)["likes"] == 1


def test_unlike_removes_the_pair(ledger, make_deal):
    a, b = make_deal("A"), make_deal("B")
    ledger.like(a, b)
    ledger.like(a, b)
    ledger.unlike(a, b)
    assert ledger.contextual_likes(a, b) == 0
    assert ledger.like(a, b) == 1


def test_unlike_without_like_is_a_no_op(ledger):
    ledger.unlike(7, 8)
    assert ledger.contextual_likes(7, 8) == 0


def test_self_like_rejected(ledger, make_deal):
    a = make_deal("A")
    with pytest.raises(ValidationError):
        ledger.like(a, a)

from releaseci.gate import evaluate, has_user_tag, should_publish
from releaseci.model import EventKind


def test_pull_request_without_tag_never_publishes(make_trigger):
    for ref in ("refs/pull/1/merge", "refs/heads/feature/x", "refs/heads/master"):
        ctx = make_trigger(EventKind.PULL_REQUEST, ref=ref)
        assert should_publish(ctx) is False


def test_tag_always_publishes(make_trigger):
    for event in EventKind:
        for ref in ("refs/heads/master", "refs/pull/1/merge", "feature/x"):
            assert should_publish(make_trigger(event, ref=ref, tag="v1.2.3")) is True


def test_protected_branch_without_tag_does_not_publish(make_trigger):
    assert should_publish(make_trigger(ref="refs/heads/master")) is False
    assert should_publish(make_trigger(ref="master")) is False
    assert should_publish(make_trigger(ref="refs/heads/master"), protected_branch="main") is True


def test_dispatch_on_other_branch_publishes(make_trigger):
    decision = evaluate(make_trigger(ref="refs/heads/feature/x"))
    assert decision.should_publish
    assert "non-protected" in decision.reason


def test_pull_ref_counts_as_pull_request_even_for_dispatch(make_trigger):
    assert should_publish(make_trigger(EventKind.MANUAL_DISPATCH, ref="refs/pull/5/head")) is False


def test_release_precondition(make_trigger):
    assert has_user_tag(make_trigger(tag="v1")) is True
    assert has_user_tag(make_trigger(tag="")) is False
    assert has_user_tag(make_trigger(ref="refs/heads/feature/x")) is False

from releaseci.concurrency import ConcurrencyGroups, RedisConcurrencyGroups, group_key, groups_from_settings
from releaseci.dsl import job, sh
from releaseci.model import EventKind
from releaseci.runner import run_dag
from releaseci.settings import Settings

from conftest import FakeExecutor, FakeRedis


def _pr(make_trigger, n=7):
    return make_trigger(EventKind.PULL_REQUEST, ref=f"refs/pull/{n}/merge")


def test_group_key(make_trigger):
    assert group_key(_pr(make_trigger), "ci") == "ci-refs/pull/7/merge"


def test_new_pull_request_run_cancels_previous(make_trigger):
    groups = ConcurrencyGroups()
    ctx = _pr(make_trigger)
    first = groups.start(ctx)
    second = groups.start(ctx)

    assert first.cancelled
    assert second.run_id in first.cancel_reason
    assert not second.cancelled
    assert groups.active(ctx) == [first, second]


def test_dispatch_run_in_between_does_not_shield_older_pull_request_run(make_trigger):
    groups = ConcurrencyGroups()
    pr = make_trigger(EventKind.PULL_REQUEST, ref="refs/heads/feature/x")
    dispatch = make_trigger(EventKind.MANUAL_DISPATCH, ref="refs/heads/feature/x")

    pr1 = groups.start(pr)
    manual = groups.start(dispatch)
    pr2 = groups.start(pr)

    assert pr1.cancelled
    assert not manual.cancelled
    assert not pr2.cancelled


def test_dispatch_runs_never_cancel_or_get_cancelled(make_trigger):
    groups = ConcurrencyGroups()
    dispatch = make_trigger(EventKind.MANUAL_DISPATCH, ref="refs/heads/master")
    pr = make_trigger(EventKind.PULL_REQUEST, ref="refs/heads/master")

    a = groups.start(dispatch)
    b = groups.start(dispatch)
    c = groups.start(pr)
    assert not a.cancelled and not b.cancelled and not c.cancelled


def test_other_refs_are_independent(make_trigger):
    groups = ConcurrencyGroups()
    a = groups.start(_pr(make_trigger, 1))
    groups.start(_pr(make_trigger, 2))
    assert not a.cancelled


def test_finish_only_removes_own_handle(make_trigger):
    groups = ConcurrencyGroups()
    ctx = _pr(make_trigger)
    old = groups.start(ctx)
    new = groups.start(ctx)
    groups.finish(old)
    assert groups.active(ctx) == [new]
    groups.finish(new)
    assert groups.active(ctx) == []


def test_cancel_keeps_first_reason(make_trigger):
    handle = ConcurrencyGroups().start(make_trigger())
    handle.cancel("first")
    handle.cancel("second")
    assert handle.cancel_reason == "first"


def test_shared_groups_cancel_across_registries(make_trigger):
    client = FakeRedis()
    # two separate processes talking to the same redis
    first_process = RedisConcurrencyGroups(client, lease_seconds=60)
    second_process = RedisConcurrencyGroups(client, lease_seconds=60)
    ctx = _pr(make_trigger)
    dispatch = make_trigger(EventKind.MANUAL_DISPATCH, ref=ctx.ref_name)

    pr1 = first_process.start(ctx)
    manual = first_process.start(dispatch)
    assert not pr1.cancelled

    pr2 = second_process.start(ctx)
    assert pr1.cancelled
    assert pr1.cancel_reason == f"superseded by run {pr2.run_id}"
    assert not manual.cancelled
    assert not pr2.cancelled
    assert client.expiries["releaseci:runs:releaseci-refs/pull/7/merge"] == 60

    first_process.finish(pr1)
    assert second_process.active(ctx) == sorted([manual.run_id, pr2.run_id])
    assert client.get(f"releaseci:cancel:{pr1.run_id}") is None


def test_groups_from_settings(monkeypatch):
    client = FakeRedis()
    urls = []

    def from_url(url, decode_responses=False):
        urls.append((url, decode_responses))
        return client

    monkeypatch.setattr("releaseci.concurrency.redis.from_url", from_url)
    shared = groups_from_settings(Settings(redis_url="redis://ci:6379/0", lease_seconds=30))
    assert isinstance(shared, RedisConcurrencyGroups)
    assert shared.r is client and shared.lease_seconds == 30
    assert urls == [("redis://ci:6379/0", True)]

    assert isinstance(groups_from_settings(Settings()), ConcurrencyGroups)


def test_run_cancelled_from_another_process(make_trigger, services):
    client = FakeRedis()
    ctx = _pr(make_trigger)

    def newer_run_starts(request):
        RedisConcurrencyGroups(client).start(ctx)

    nodes = [job("a", sh("noop", "true")), job("b", sh("noop", "true"), needs=["a"])]
    result = run_dag(
        nodes,
        ctx,
        executor=FakeExecutor(on_execute=newer_run_starts),
        services=services,
        settings=Settings(max_workers=1, poll_interval=0.01),
        groups=RedisConcurrencyGroups(client),
    )

    assert result.cancelled
    assert result.cancel_reason.startswith("superseded by run")
    assert result.cancelled_nodes == ["b"]
    assert result.exit_code == 2

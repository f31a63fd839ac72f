from releaseci.model import EventKind, JobStatus
from releaseci.pipelines.stacks import DIST_PLATFORMS, VERSION_ARG, workflow
from releaseci.runner import run_dag
from releaseci.settings import Settings

from conftest import FakeExecutor

SETTINGS = Settings(max_workers=4, poll_interval=0.01, image_namespace="blockstack", repository="stacks-network/stacks-blockchain")


class PathExecutor(FakeExecutor):
    """Outputs are file paths, as a real build leaves them."""

    def execute(self, request):
        result = super().execute(request)
        result.outputs = {name: f"/build/{name}" for name in result.outputs}
        return result


def _run(trigger, services, executor=None):
    executor = executor or PathExecutor()
    return run_dag(workflow(), trigger, executor=executor, services=services, settings=SETTINGS), executor


def test_graph_shape():
    nodes = {n.name: n for n in workflow()}
    assert len(nodes) == 11
    assert nodes["create-release"].needs == ["dist", "build-publish", "build-publish-legacy"]
    assert len(nodes["dist"].platforms) == len(DIST_PLATFORMS) == 7
    assert nodes["upload-dist"].platforms == nodes["dist"].platforms


def test_untagged_dispatch_on_protected_branch(make_trigger, services):
    ctx = make_trigger(EventKind.MANUAL_DISPATCH, ref="master", sha="abcdef0123", tag="")
    result, executor = _run(ctx, services)

    assert result.version.primary_tag == "abcdef0"
    assert result.version.legacy_tag == "latest-legacy"
    assert result.exit_code == 0

    assert result.get("nettest").outcome == "skipped (predicate false)"
    assert result.get("create-release").outcome == "skipped (predicate false)"
    assert [i.status for i in result.of_node("upload-dist")] == [JobStatus.SKIPPED] * 7
    assert result.get("build-publish").outcome == "skipped (publish gate)"
    assert result.get("build-publish-legacy").outcome == "skipped (publish gate)"
    assert services.registry.pushes == []
    assert services.releases.created == []

    # the version is still stamped into every build
    assert executor.requests["dist[linux-x64]"].build_args[VERSION_ARG] == "abcdef0"
    assert executor.requests["dist[linux-x64]"].build_args["GIT_BRANCH"] == "master"
    assert len(services.coverage.reports) == 3


def test_tagged_release(make_trigger, services):
    ctx = make_trigger(EventKind.MANUAL_DISPATCH, ref="refs/heads/master", sha="abcdef0123", tag="2.1.0.0.0")
    result, executor = _run(ctx, services)

    assert result.exit_code == 0
    assert executor.requests["build-publish"].build_args[VERSION_ARG] == "2.1.0.0.0"

    pushes = sorted((ref, tags) for ref, tags, _labels in services.registry.pushes)
    assert pushes == [
        ("releaseci/build-publish-legacy:abcdef0", ("master", "2.1.0.0.0-legacy")),
        ("releaseci/build-publish:abcdef0", ("master", "2.1.0.0.0")),
    ]
    assert result.relay.get("build-publish.tags") == (
        "blockstack/stacks-blockchain:master,blockstack/stacks-blockchain:2.1.0.0.0"
    )

    assert [r["tag_name"] for r in services.releases.created] == ["2.1.0.0.0"]
    uploaded = sorted(name for _url, _path, name, _ct in services.releases.uploads)
    assert uploaded == sorted(f"{p}.zip" for p in DIST_PLATFORMS)
    assert "/build/linux-arm64" in {str(path) for _url, path, _n, _ct in services.releases.uploads}


def test_pull_request_builds_but_never_publishes(make_trigger, services):
    ctx = make_trigger(EventKind.PULL_REQUEST, ref="refs/pull/12/merge", sha="0123456789")
    result, executor = _run(ctx, services)

    assert result.exit_code == 0
    assert len([i for i in executor.executed if i.startswith("dist[")]) == 7
    assert result.version.legacy_tag == "12-merge-legacy"
    assert services.registry.pushes == []
    assert result.get("create-release").status is JobStatus.SKIPPED


def test_failed_platform_build_blocks_release(make_trigger, services):
    ctx = make_trigger(ref="refs/heads/master", tag="v1")
    result, _ = _run(ctx, services, PathExecutor(fail=("dist[macos-arm64]",)))

    assert result.exit_code == 1
    assert result.get("dist[macos-arm64]").status is JobStatus.FAILED
    assert result.get("dist[linux-x64]").status is JobStatus.SUCCEEDED
    assert result.get("create-release").outcome == "cancelled (dependency failed)"
    assert [i.status for i in result.of_node("upload-dist")] == [JobStatus.CANCELLED] * 7
    # independent images still publish
    assert len(services.registry.pushes) == 2
    assert services.releases.created == []

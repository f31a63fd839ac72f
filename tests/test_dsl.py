import pytest

from releaseci import build, docker_step, has_user_tag, job, sh, wf
from releaseci.actions import create_release
from releaseci.step_workflows.docker import container_command, forwarded_env


def test_job_defaults_cwd_and_copies_inputs():
    env = {"A": 1}
    node = job("lint", sh("fmt", "cargo fmt --check"), sh("clippy", "cargo clippy", cwd="sub"), env=env, cwd="src")
    env["B"] = 2

    assert [s.cwd for s in node.steps] == ["src", "sub"]
    assert node.env == {"A": "1"}
    assert not node.is_publishing


def test_job_needs_a_body_or_publish_action():
    with pytest.raises(ValueError):
        job("empty")
    assert job("release", publish=create_release()).is_publishing


def test_builder_matches_functional_form():
    node = (
        build("upload")
        .depends_on("create-release", "dist")
        .define_step("noop", "true")
        .define_container_step("lint", "clarinet check", "hirosystems/clarinet:1.1.0")
        .over_platforms("A", "B")
        .run_when(has_user_tag)
        .with_env(DOCKER_BUILDKIT=1)
        .with_build_args(TARGET="${platform}")
        .with_inputs("upload_url", "${platform}")
        .with_output("report", "report.txt")
        .with_coverage("lcov.info", "unit")
        .treat_skipped_as_satisfied()
        .build()
    )
    assert node.needs == ["create-release", "dist"]
    assert node.platforms == ["A", "B"]
    assert node.when is has_user_tag
    assert node.steps[1].image == "hirosystems/clarinet:1.1.0"
    assert node.env == {"DOCKER_BUILDKIT": "1"}
    assert node.coverage.label == "unit"
    assert node.skipped_satisfies
    assert wf(node) == [node]


def test_container_command(tmp_path):
    step = docker_step("test", "clarinet test", "hirosystems/clarinet:1.1.0", cwd="contrib", volumes=["/cache:/cache"])
    env = forwarded_env({"MODE": "ci"}, {"GIT_COMMIT": "abcdef0"})
    cmd = container_command(step, tmp_path, env)

    assert cmd[:3] == ["docker", "run", "--rm"]
    assert f"{tmp_path.resolve()}:/workspace" in cmd
    assert "/cache:/cache" in cmd
    assert cmd[cmd.index("-w") + 1] == "/workspace/contrib"
    assert "GIT_COMMIT=abcdef0" in cmd and "MODE=ci" in cmd
    assert cmd[-4:] == ["hirosystems/clarinet:1.1.0", "sh", "-c", "clarinet test"]

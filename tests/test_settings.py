import pytest

from releaseci.errors import ConfigurationError
from releaseci.settings import Settings, load_settings


def test_defaults():
    s = load_settings({})
    assert s.protected_branch == "master"
    assert s.max_workers >= 1
    assert s.image_namespace == "blockstack"
    assert s.github_token is None
    assert s.repository_name == "stacks-blockchain"


def test_environment_overrides():
    s = load_settings(
        {
            "RELEASECI_PROTECTED_BRANCH": "main",
            "RELEASECI_MAX_WORKERS": "3",
            "RELEASECI_POLL_INTERVAL": "0.5",
            "GITHUB_TOKEN": "default",
            "GH_TOKEN": "custom",
            "GITHUB_REPOSITORY": "stacks-network/stacks-core",
        }
    )
    assert s.protected_branch == "main"
    assert s.max_workers == 3
    assert s.poll_interval == 0.5
    assert s.github_token == "custom"
    assert s.repository_name == "stacks-core"


@pytest.mark.parametrize(
    "env",
    [
        {"RELEASECI_MAX_WORKERS": "many"},
        {"RELEASECI_MAX_WORKERS": "0"},
        {"RELEASECI_POLL_INTERVAL": "-1"},
    ],
)
def test_invalid_values(env):
    with pytest.raises(ConfigurationError):
        load_settings(env)


def test_settings_are_frozen():
    with pytest.raises(Exception):
        Settings().max_workers = 5  # type: ignore[misc]

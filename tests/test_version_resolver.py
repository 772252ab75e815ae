import subprocess
import pytest
from unittest.mock import patch

from app.services.version_resolver import (
    VersionResolver,
    VersionResolutionError,
    parse_version_output,
)


@pytest.mark.parametrize("output,expected", [
    ("1.2.0\n", "1.2.0"),
    ("analyzing commits...\nnext release\nv2.0.1\n\n", "2.0.1"),
    ("1.0.0-rc.1+build.5", "1.0.0-rc.1+build.5"),
])
def test_parse_version_output(output, expected):
    assert parse_version_output(output) == expected


@pytest.mark.parametrize("output", ["", "   \n", "no release", "1.2", "01.2.3"])
def test_parse_version_output_rejects(output):
    with pytest.raises(VersionResolutionError):
        parse_version_output(output)


def test_resolve_runs_command_once():
    resolver = VersionResolver("git describe --tags")
    completed = subprocess.CompletedProcess([], 0, stdout="v1.2.0\n", stderr="")
    with patch("subprocess.run", return_value=completed) as mock_run:
        assert resolver.resolve("/src") == "1.2.0"
    mock_run.assert_called_once()
    assert mock_run.call_args.args[0] == ["git", "describe", "--tags"]
    assert mock_run.call_args.kwargs["cwd"] == "/src"


def test_resolve_command_failure():
    resolver = VersionResolver("false")
    err = subprocess.CalledProcessError(1, ["false"], stderr="no tags\n")
    with patch("subprocess.run", side_effect=err):
        with pytest.raises(VersionResolutionError, match="no tags"):
            resolver.resolve("/src")

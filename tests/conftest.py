import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from nodeshim.config import InvocationRequest, ShimSettings


@pytest.fixture
def home_dir(tmp_path):
    """Fake home directory without any config or caches."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def project_dir(tmp_path):
    """Empty project directory to run the shim from."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def make_request(home_dir, project_dir):
    """Factory for InvocationRequest with test defaults."""

    def _make(tool="npm", args=(), environ=None, tty=False, **kwargs):
        fields = {
            "tool": tool,
            "args": tuple(args),
            "cwd": project_dir,
            "environ": {"PATH": "/usr/bin:/bin", **(environ or {})},
            "home": home_dir,
            "stdin_tty": tty,
            "stdout_tty": tty,
            "shim_script": None,
            "shim_dirs": (),
        }
        fields.update(kwargs)
        return InvocationRequest(**fields)

    return _make


@pytest.fixture
def settings(project_dir, home_dir):
    """Settings with built-in defaults only."""
    return ShimSettings.load(project_dir, {}, home_dir)


@pytest.fixture(autouse=True)
def no_system_socket(tmp_path):
    """Keep the host's runtime socket out of unit tests."""
    with patch("nodeshim.container.SYSTEM_SOCKET_PATH", str(tmp_path / "missing.sock")):
        yield


@pytest.fixture(scope="session")
def docker_available():
    """Skip tests if Docker is not available."""
    try:
        subprocess.run(
            ["docker", "info"],
            capture_output=True,
            check=True,
        )
        return True
    except (subprocess.CalledProcessError, FileNotFoundError):
        pytest.skip("Docker not available")

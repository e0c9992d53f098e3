"""Configuration for nodeshim.

Settings come from three layers, highest priority first:

- Environment variables (``NODE_IMAGE``, ``DOCKER_NODE_*``)
- Project config (``.nodeshim.toml`` found via upward search from cwd)
- User config (``~/.nodeshim.toml``)
- Built-in defaults

Only the ``[defaults]`` table of a config file is read.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

try:
    import tomllib
except ImportError:
    # For python < 3.11
    import tomli as tomllib

from .errors import ConfigurationError


CONFIG_FILENAME = ".nodeshim.toml"

# Environment variables
ENV_IMAGE = "NODE_IMAGE"
ENV_PORTS = "DOCKER_NODE_PORTS"
ENV_OAUTH_PORT = "DOCKER_NODE_OAUTH_PORT"
ENV_MODE = "DOCKER_NODE_MODE"
ENV_LOCAL = "DOCKER_NODE_LOCAL"
ENV_SOCKET = "DOCKER_NODE_SOCKET"
ENV_BRIDGED = "DOCKER_NODE_BRIDGED"
ENV_RUNTIME = "DOCKER_NODE_RUNTIME"
ENV_VERBOSE = "DOCKER_NODE_VERBOSE"
ENV_DRY_RUN = "DOCKER_NODE_DRY_RUN"

TRUTHY_VALUES = frozenset({"1", "true", "yes", "on"})


def is_truthy(value: Optional[str]) -> bool:
    """Return True if an environment value is one of the truthy tokens.

    Matching is case-sensitive; unset (None) is falsy.
    """
    return value in TRUTHY_VALUES


def get_builtin_defaults() -> Dict[str, Any]:
    """Get default configuration values as a dict."""
    return {
        "image": None,  # None = resolve from version files
        "default_version": "20",
        "variant": "alpine",
        "ports": [3000, 5173, 8080, 4200, 3001, 4000, 5000],
        "oauth_port": 9005,
        "runtime": "docker",
    }


def _load_config_file(config_path: Path) -> Dict[str, Any]:
    """Load and parse TOML configuration file."""
    try:
        with open(config_path, "rb") as f:
            config_data = tomllib.load(f)
        logging.debug(f"Loaded config from {config_path}")
        return config_data
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Error reading {config_path}: {e}") from e


def find_user_config(home: Path) -> Optional[Path]:
    """Find user configuration path (~/.nodeshim.toml)."""
    user_config_path = home / CONFIG_FILENAME

    if not user_config_path.is_file():
        return None

    return user_config_path


def find_project_config(start_dir: Path, home: Optional[Path] = None) -> Optional[Path]:
    """Find project configuration path (searched upward from start_dir).

    The user config in ``home`` is not treated as a project config.
    """
    current = start_dir.resolve()
    user_config = (home / CONFIG_FILENAME).resolve() if home else None
    while True:
        config_path = current / CONFIG_FILENAME
        if config_path.is_file() and config_path.resolve() != user_config:
            return config_path

        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    return None


def parse_port(value: Any, source: str) -> int:
    """Parse a single TCP port number."""
    try:
        port = int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"Invalid port {value!r} in {source}") from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"Port {port} out of range in {source}")
    return port


def parse_port_list(text: str, source: str) -> List[int]:
    """Parse a comma-separated port list, skipping empty items."""
    return [parse_port(item, source) for item in text.split(",") if item.strip()]


def _script_dirs(script: Optional[Path]) -> Tuple[Path, ...]:
    """Directories holding a script, both as invoked and after symlinks."""
    if script is None:
        return ()
    dirs = [script.absolute().parent, script.resolve().parent]
    return tuple(dict.fromkeys(dirs))


@dataclass(frozen=True, kw_only=True)
class InvocationRequest:
    """A single shim invocation, captured at process start."""

    tool: str
    args: Tuple[str, ...]
    cwd: Path
    environ: Mapping[str, str]
    home: Path
    stdin_tty: bool
    stdout_tty: bool
    shim_script: Optional[Path] = None  # Console script as invoked
    shim_dirs: Tuple[Path, ...] = ()  # Its directory, unresolved and resolved

    @classmethod
    def current(cls, tool: str, args: Sequence[str]) -> "InvocationRequest":
        """Get the invocation for the running process."""
        script = Path(sys.argv[0]) if sys.argv and sys.argv[0] else None
        return cls(
            tool=tool,
            args=tuple(args),
            cwd=Path.cwd(),
            environ=dict(os.environ),
            home=Path.home(),
            stdin_tty=sys.stdin is not None and sys.stdin.isatty(),
            stdout_tty=sys.stdout is not None and sys.stdout.isatty(),
            shim_script=script,
            shim_dirs=_script_dirs(script),
        )


@dataclass(kw_only=True)
class ShimSettings:
    """Effective settings for one invocation."""

    image: Optional[str]
    default_version: str
    variant: str
    ports: List[int]
    oauth_port: int
    runtime: str
    config_files: List[Path] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], config_files: List[Path]) -> "ShimSettings":
        """Validate a merged config dict and build settings from it."""
        source = ", ".join(str(p) for p in config_files) or "defaults"

        for key in ("default_version", "variant", "runtime"):
            if not isinstance(data[key], (str, int)) or isinstance(data[key], bool):
                raise ConfigurationError(f"'{key}' must be a string in {source}")
        if data["image"] is not None and not isinstance(data["image"], str):
            raise ConfigurationError(f"'image' must be a string in {source}")
        if not isinstance(data["ports"], list):
            raise ConfigurationError(f"'ports' must be a list in {source}")

        return cls(
            image=data["image"] or None,
            default_version=str(data["default_version"]),
            variant=str(data["variant"]),
            ports=[parse_port(p, source) for p in data["ports"]],
            oauth_port=parse_port(data["oauth_port"], source),
            runtime=str(data["runtime"]),
            config_files=config_files,
        )

    @classmethod
    def load(
        cls,
        cwd: Path,
        environ: Mapping[str, str],
        home: Optional[Path] = None,
    ) -> "ShimSettings":
        """Load settings from config files and environment variables.

        Priority order (highest to lowest):
        1. Environment variables
        2. Project config (.nodeshim.toml, searched upward)
        3. User config (~/.nodeshim.toml)
        4. Built-in defaults
        """
        home = home or Path.home()
        config_paths = []
        project_config_path = find_project_config(cwd, home)
        if project_config_path:
            config_paths.append(project_config_path)
        user_config_path = find_user_config(home)
        if user_config_path:
            config_paths.append(user_config_path)

        # Lowest priority first so higher priority keys win
        merged = get_builtin_defaults()
        for config_path in reversed(config_paths):
            file_defaults = _load_config_file(config_path).get("defaults", {})
            if not isinstance(file_defaults, dict):
                raise ConfigurationError(f"[defaults] must be a table in {config_path}")
            unknown = sorted(set(file_defaults) - set(merged))
            if unknown:
                raise ConfigurationError(
                    f"Unknown keys in {config_path}: {', '.join(unknown)}"
                )
            merged.update(file_defaults)

        settings = cls.from_dict(merged, config_paths)

        # Environment overrides
        if environ.get(ENV_IMAGE):
            settings.image = environ[ENV_IMAGE]
        ports_value = environ.get(ENV_PORTS, "").strip()
        if ports_value:
            settings.ports = parse_port_list(ports_value, ENV_PORTS)
        if environ.get(ENV_OAUTH_PORT):
            settings.oauth_port = parse_port(environ[ENV_OAUTH_PORT], ENV_OAUTH_PORT)
        if environ.get(ENV_RUNTIME):
            settings.runtime = environ[ENV_RUNTIME]

        return settings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": self.image,
            "default_version": self.default_version,
            "variant": self.variant,
            "ports": list(self.ports),
            "oauth_port": self.oauth_port,
            "runtime": self.runtime,
        }

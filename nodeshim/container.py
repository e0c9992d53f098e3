"""Container environment construction and execution for nodeshim.

This module turns an invocation into a ``docker run`` command:
- VolumeSpec for bind mounts
- Dev-server, login and interactivity heuristics
- Runtime socket bridging
- ContainerSpec with everything needed to run the container
- ContainerRunner that checks the runtime and replaces the process
"""

import logging
import os
import re
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import ENV_BRIDGED, ENV_SOCKET, InvocationRequest, ShimSettings, is_truthy
from .errors import ContainerStartFailure, RuntimeUnavailable, SocketNotFound
from .image import ResolvedImage


CONTAINER_WORKDIR = "/work"
CONTAINER_SOCKET_PATH = "/var/run/docker.sock"
SYSTEM_SOCKET_PATH = "/var/run/docker.sock"
# Bind source as the runtime sees it; Docker Desktop serves this path from
# its VM even when only the per-user socket exists on the host
HOST_SOCKET_PATH = "/var/run/docker.sock"
USER_SOCKET_PATH = ".docker/run/docker.sock"  # Relative to home (Docker Desktop)

# Host path relative to home -> container path
CACHE_MOUNTS = (
    (".npm", "/root/.npm"),
    (".cache/pnpm", "/root/.cache/pnpm"),
    (".cache/yarn", "/root/.cache/yarn"),
    (".config/pnpm", "/root/.config/pnpm"),
)
GITCONFIG_MOUNT = (".gitconfig", "/etc/gitconfig")

DEV_SERVER_KEYWORDS = frozenset(
    {"dev", "start", "serve", "vite", "nuxt", "next", "webpack", "rollup"}
)
NON_INTERACTIVE_FLAGS = frozenset({"--version", "--help", "-v", "-h"})
# Tools whose `login` (or `login:*`) subcommand uses a localhost OAuth callback
OAUTH_LOGIN_TOOLS = frozenset({"firebase", "firebase-tools"})

COREPACK_SETUP = "corepack enable >/dev/null 2>&1 || true"
DOCKER_CLI_SETUP = (
    "command -v docker >/dev/null 2>&1"
    " || apk add --no-cache docker-cli >/dev/null 2>&1 || true"
)

_TOKEN_SEPARATORS = re.compile(r"[^A-Za-z0-9]+")


@dataclass
class VolumeSpec:
    """Volume specification with host path, container path, and options."""

    host_path: str
    container_path: str
    options: List[str] = field(default_factory=list)

    def to_string(self) -> str:
        """Convert volume spec back to Docker format string."""
        if self.options:
            return f"{self.host_path}:{self.container_path}:{','.join(self.options)}"
        return f"{self.host_path}:{self.container_path}"


def tokenize_args(args: Sequence[str]) -> List[str]:
    """Split arguments into word tokens (``start:dev`` -> ``start``, ``dev``)."""
    return [token for arg in args for token in _TOKEN_SEPARATORS.split(arg) if token]


def should_map_ports(args: Sequence[str]) -> bool:
    """Check if the command looks like it starts a dev server.

    Options (``--save-dev``) are not considered, only scripts, binaries
    and subcommands.
    """
    words = [arg for arg in args if not arg.startswith("-")]
    return any(token in DEV_SERVER_KEYWORDS for token in tokenize_args(words))


def _strip_package_version(name: str) -> str:
    # firebase-tools@13 -> firebase-tools, but keep scoped names intact
    if "@" in name[1:]:
        return name[: name.rindex("@")]
    return name


def is_oauth_login(args: Sequence[str]) -> bool:
    """Check if the arguments run a known OAuth login subcommand.

    Matches the tool name followed by ``login`` or ``login:<variant>``.
    """
    names = [_strip_package_version(arg) for arg in args]
    return any(
        tool in OAUTH_LOGIN_TOOLS and (command == "login" or command.startswith("login:"))
        for tool, command in zip(names, names[1:])
    )


def wants_interactive(request: InvocationRequest) -> bool:
    """Attach a TTY only for real terminals and non-trivial commands."""
    if not (request.stdin_tty and request.stdout_tty):
        return False
    return not any(arg in NON_INTERACTIVE_FLAGS for arg in request.args)


def find_runtime_socket(home: Path) -> Optional[Path]:
    """Find the container runtime control socket.

    Checks the system socket first, then the per-user Docker Desktop socket.
    """
    for candidate in (Path(SYSTEM_SOCKET_PATH), home / USER_SOCKET_PATH):
        if candidate.exists():
            logging.debug(f"Found runtime socket at {candidate}")
            return candidate
    return None


def resolve_ports(request: InvocationRequest, settings: ShimSettings) -> List[int]:
    """Get the host ports to publish 1:1 for this invocation."""
    ports = []
    if should_map_ports(request.args):
        ports.extend(settings.ports)
        logging.debug(f"Dev server detected, publishing ports: {settings.ports}")
    if is_oauth_login(request.args) and settings.oauth_port not in ports:
        ports.append(settings.oauth_port)
        logging.debug(f"OAuth login detected, publishing port {settings.oauth_port}")
    return ports


@dataclass(kw_only=True)
class ContainerSpec:
    """Resolved container specification ready for execution."""

    runtime: str
    image: str
    workdir: str
    command: List[str]
    interactive: bool = False
    volumes: List[VolumeSpec] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    ports: List[int] = field(default_factory=list)
    socket_path: Optional[str] = None  # Host socket bridged into the container

    @property
    def bridged(self) -> bool:
        return self.socket_path is not None


def build_container_command(tool: str, args: Sequence[str], bridged: bool) -> List[str]:
    """Build the in-container command: best-effort setup, then exec the tool."""
    steps = [COREPACK_SETUP]
    if bridged:
        steps.append(DOCKER_CLI_SETUP)
    steps.append('exec "$@"')
    return ["sh", "-c", "; ".join(steps), "--", tool, *args]


def build_container_spec(
    request: InvocationRequest, image: ResolvedImage, settings: ShimSettings
) -> ContainerSpec:
    """Build mounts, ports, env and flags for a containerized invocation.

    Raises:
        SocketNotFound: If socket bridging is requested but no socket exists
    """
    home = request.home

    volumes = [VolumeSpec(str(request.cwd), CONTAINER_WORKDIR)]
    for host_rel, container_path in CACHE_MOUNTS:
        volumes.append(VolumeSpec(str(home / host_rel), container_path))

    gitconfig = home / GITCONFIG_MOUNT[0]
    if gitconfig.is_file():
        volumes.append(VolumeSpec(str(gitconfig), GITCONFIG_MOUNT[1], ["ro"]))
    else:
        logging.debug(f"No git config at {gitconfig}, not mounting")

    env = {
        "INIT_CWD": CONTAINER_WORKDIR,
        "COREPACK_ENABLE_STRICT": "0",
    }

    socket_path = None
    if is_truthy(request.environ.get(ENV_SOCKET)):
        if is_truthy(request.environ.get(ENV_BRIDGED)):
            logging.debug("Socket bridging already active, not bridging again")
        else:
            socket = find_runtime_socket(home)
            if socket is None:
                raise SocketNotFound(
                    f"{ENV_SOCKET} is set but no runtime socket was found at "
                    f"{SYSTEM_SOCKET_PATH} or {home / USER_SOCKET_PATH}. "
                    "Start Docker or unset the variable."
                )
            socket_path = HOST_SOCKET_PATH
            volumes.append(VolumeSpec(socket_path, CONTAINER_SOCKET_PATH))
            env[ENV_BRIDGED] = "1"

    return ContainerSpec(
        runtime=settings.runtime,
        image=image.reference,
        workdir=CONTAINER_WORKDIR,
        command=build_container_command(request.tool, request.args, socket_path is not None),
        interactive=wants_interactive(request),
        volumes=volumes,
        env=env,
        ports=resolve_ports(request, settings),
        socket_path=socket_path,
    )


class ContainerRunner:
    """Manages container runtime operations."""

    @staticmethod
    def ensure_runtime(runtime: str) -> str:
        """Check that the container runtime is installed and running.

        Returns:
            Path to the runtime binary

        Raises:
            RuntimeUnavailable: If the runtime is missing or not running
        """
        runtime_path = shutil.which(runtime)
        if not runtime_path:
            raise RuntimeUnavailable(
                f"{runtime} not found in PATH. Please install Docker."
            )
        logging.debug(f"Found {runtime} at: {runtime_path}")

        try:
            result = subprocess.run(
                [runtime_path, "info"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError as e:
            raise RuntimeUnavailable(f"Could not run {runtime}: {e}") from e
        if result.returncode != 0:
            raise RuntimeUnavailable(
                f"{runtime} engine is not running. Please start Docker."
            )
        return runtime_path

    @staticmethod
    def build_run_args(spec: ContainerSpec) -> List[str]:
        """Build container run arguments."""
        logging.debug("Building container run arguments")

        args = [spec.runtime, "run", "--rm"]

        # TTY flags if running interactively
        if spec.interactive:
            args.extend(["-i", "-t"])
            logging.debug("TTY mode: enabled")
        else:
            logging.debug("TTY mode: disabled")

        logging.debug("Volume mounts:")
        for vol_spec in spec.volumes:
            args.append(f"--volume={vol_spec.to_string()}")
            logging.debug(f"  {vol_spec.to_string()}")
        args.append(f"--workdir={spec.workdir}")

        for name, value in spec.env.items():
            args.append(f"--env={name}={value}")

        for port in spec.ports:
            args.append(f"--publish={port}:{port}")
        if spec.ports:
            logging.debug(f"Published ports: {spec.ports}")

        if spec.bridged:
            logging.debug(f"Bridging runtime socket {spec.socket_path}")

        args.append(spec.image)
        logging.debug(f"Container image: {spec.image}")
        args.extend(spec.command)
        return args

    @staticmethod
    def exec_container(spec: ContainerSpec, dry_run: bool = False) -> int:
        """Replace the current process with the container run command.

        Only returns in dry-run mode, after printing the command.

        Raises:
            RuntimeUnavailable: If the runtime is missing or not running
            ContainerStartFailure: If the runtime could not be executed
        """
        run_args = ContainerRunner.build_run_args(spec)

        if dry_run:
            print(shlex.join(run_args))
            logging.debug("Dry-run mode: command printed, not executed")
            return 0

        runtime_path = ContainerRunner.ensure_runtime(spec.runtime)
        logging.debug(f"Executing: {shlex.join(run_args)}")
        try:
            os.execv(runtime_path, run_args)
        except OSError as e:
            raise ContainerStartFailure(f"Failed to start {spec.runtime}: {e}") from e
        return 0

"""Per-invocation dispatch: local or containerized execution.

Stages, in order:
1. Override check (resolve_mode / find_local_tool)
2. Image resolution (image.resolve_image)
3. Environment construction (container.build_container_spec)
4. Process invocation (exec_local / ContainerRunner.exec_container)

Exactly one mode is chosen per invocation and nothing is started unless
the whole plan could be built.
"""

import logging
import os
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .config import (
    ENV_DRY_RUN,
    ENV_LOCAL,
    ENV_MODE,
    InvocationRequest,
    ShimSettings,
    is_truthy,
)
from .container import ContainerRunner, ContainerSpec, build_container_spec
from .errors import ShimError, ToolNotFound
from .image import ResolvedImage, resolve_image


MODE_LOCAL = "local"
MODE_CONTAINER = "container"

# Values of DOCKER_NODE_MODE that decide the mode on their own
MODE_SIGNALS = {"local": MODE_LOCAL, "docker": MODE_CONTAINER}


def resolve_mode(environ: Mapping[str, str]) -> str:
    """Decide between local and containerized execution.

    An explicit DOCKER_NODE_MODE of ``local`` or ``docker`` wins; otherwise
    a truthy DOCKER_NODE_LOCAL selects local mode.
    """
    mode = MODE_SIGNALS.get(environ.get(ENV_MODE, ""))
    if mode is not None:
        logging.debug(f"Mode {mode} selected by {ENV_MODE}")
        return mode
    if is_truthy(environ.get(ENV_LOCAL)):
        logging.debug(f"Mode {MODE_LOCAL} selected by {ENV_LOCAL}")
        return MODE_LOCAL
    return MODE_CONTAINER


def _same_dir(entry: str, directory: Path) -> bool:
    try:
        return os.path.realpath(entry) == os.path.realpath(directory)
    except (OSError, ValueError):
        return False


def search_path_without(path: str, shim_dirs: Sequence[Path]) -> str:
    """Remove the shim's own directories from a PATH string."""
    entries = [entry for entry in path.split(os.pathsep) if entry]
    for shim_dir in shim_dirs:
        entries = [entry for entry in entries if not _same_dir(entry, shim_dir)]
    return os.pathsep.join(entries)


def _is_shim(candidate: str, shim_script: Optional[Path]) -> bool:
    if shim_script is None:
        return False
    return os.path.realpath(candidate) == os.path.realpath(shim_script)


def find_local_tool(request: InvocationRequest) -> str:
    """Find the host-installed tool, skipping the shim itself.

    PATH entries that are the shim's directory (as invoked or after
    resolving symlinks) are dropped, and so is any entry whose match
    resolves to the running shim script.

    Raises:
        ToolNotFound: If the tool is not installed outside the shim
    """
    search_path = search_path_without(request.environ.get("PATH", ""), request.shim_dirs)
    found = shutil.which(request.tool, path=search_path)
    while found and _is_shim(found, request.shim_script):
        logging.debug(f"Skipping {found}: resolves to the running shim")
        remaining = search_path.split(os.pathsep)
        remaining = [entry for entry in remaining if not _same_dir(entry, Path(found).parent)]
        search_path = os.pathsep.join(remaining)
        found = shutil.which(request.tool, path=search_path)
    if not found:
        shim_location = ", ".join(str(d) for d in request.shim_dirs) or "the shim directory"
        raise ToolNotFound(
            f"Local mode requested but '{request.tool}' is not installed outside "
            f"{shim_location}. "
            f"Install it on the host or unset {ENV_LOCAL}/{ENV_MODE}."
        )
    logging.debug(f"Found local {request.tool} at: {found}")
    return found


@dataclass(kw_only=True)
class ExecutionPlan:
    """What to run for one invocation. Exactly one of the targets is set."""

    mode: str
    request: InvocationRequest
    executable: Optional[str] = None  # Local mode
    image: Optional[ResolvedImage] = None  # Container mode
    container: Optional[ContainerSpec] = None  # Container mode

    def describe(self) -> str:
        """Get the command line that would be executed."""
        if self.mode == MODE_LOCAL:
            return shlex.join([self.executable, *self.request.args])
        return shlex.join(ContainerRunner.build_run_args(self.container))


def build_plan(request: InvocationRequest, settings: ShimSettings) -> ExecutionPlan:
    """Run the override check, image resolution and environment stages."""
    mode = resolve_mode(request.environ)
    if mode == MODE_LOCAL:
        return ExecutionPlan(
            mode=mode, request=request, executable=find_local_tool(request)
        )

    image = resolve_image(request.cwd, settings)
    return ExecutionPlan(
        mode=mode,
        request=request,
        image=image,
        container=build_container_spec(request, image, settings),
    )


def exec_local(executable: str, request: InvocationRequest) -> None:
    """Replace the current process with the host-installed tool."""
    logging.debug(f"Executing: {shlex.join([executable, *request.args])}")
    try:
        os.execv(executable, [request.tool, *request.args])
    except OSError as e:
        raise ShimError(f"Failed to run {executable}: {e}") from e


def execute(plan: ExecutionPlan, dry_run: bool = False) -> int:
    """Hand the process over to the planned command.

    Only returns in dry-run mode, after printing the command.
    """
    if dry_run:
        if plan.mode == MODE_LOCAL:
            print(plan.describe())
            return 0
        return ContainerRunner.exec_container(plan.container, dry_run=True)

    if plan.mode == MODE_LOCAL:
        exec_local(plan.executable, plan.request)
        return 0
    return ContainerRunner.exec_container(plan.container)


def dispatch(request: InvocationRequest) -> int:
    """Plan and execute one shim invocation."""
    settings = ShimSettings.load(request.cwd, request.environ, request.home)
    plan = build_plan(request, settings)
    logging.debug(f"Execution mode: {plan.mode}")
    return execute(plan, dry_run=is_truthy(request.environ.get(ENV_DRY_RUN)))

"""Translate container configuration into runtime CLI arguments.

Flag spelling and order are part of the compatibility surface with the
docker/podman CLIs and must not change.
"""

from __future__ import annotations

from taskspace.container.models import DEFAULT_NETWORK_MODE, ContainerConfig, ExecOptions, ResourceLimits

STATS_FORMAT = "{{.Name}}|{{.CPUPerc}}|{{.MemUsage}}|{{.MemPerc}}|{{.NetIO}}|{{.BlockIO}}|{{.PIDs}}"
INSPECT_FORMAT = (
    "{{.Id}}|{{.Name}}|{{.Config.Image}}|{{.State.Status}}|{{.Created}}"
    "|{{.State.StartedAt}}|{{.State.FinishedAt}}|{{.State.ExitCode}}|{{.HostConfig.AutoRemove}}"
)


def format_cpus(cpu: float) -> str:
    return f"{cpu:g}"


def build_resource_limit_args(limits: ResourceLimits | None) -> list[str]:
    """One flag per configured field, none for unset fields."""
    if limits is None:
        return []
    args: list[str] = []
    if limits.cpu is not None:
        args.extend(["--cpus", format_cpus(limits.cpu)])
    if limits.memory is not None:
        args.extend(["--memory", limits.memory])
    if limits.memory_reservation is not None:
        args.extend(["--memory-reservation", limits.memory_reservation])
    if limits.memory_swap is not None:
        args.extend(["--memory-swap", limits.memory_swap])
    if limits.cpu_shares is not None:
        args.extend(["--cpu-shares", str(limits.cpu_shares)])
    if limits.pids_limit is not None:
        args.extend(["--pids-limit", str(limits.pids_limit)])
    return args


def build_container_args(
    config: ContainerConfig,
    *,
    extra_labels: dict[str, str] | None = None,
    image: str | None = None,
) -> list[str]:
    """Flags, image and trailing command for ``run``/``create``.

    *image* overrides ``config.image`` (used after building from a Dockerfile).
    """
    args = build_resource_limit_args(config.resource_limits)

    for host_path, container_path in config.volumes.items():
        args.extend(["-v", f"{host_path}:{container_path}"])

    for key, value in config.environment.items():
        args.extend(["-e", f"{key}={value}"])

    args.extend(["--network", config.network_mode or DEFAULT_NETWORK_MODE])

    if config.working_dir:
        args.extend(["-w", config.working_dir])
    if config.user:
        args.extend(["-u", config.user])

    labels = {**config.labels, **(extra_labels or {})}
    for key, value in labels.items():
        args.extend(["--label", f"{key}={value}"])

    # The CLI takes a single entrypoint binary; remaining parts lead the command.
    entry_rest: list[str] = []
    if config.entrypoint:
        args.extend(["--entrypoint", config.entrypoint[0]])
        entry_rest = list(config.entrypoint[1:])

    if config.auto_remove:
        args.append("--rm")
    if config.privileged:
        args.append("--privileged")

    for opt in config.security_opts:
        args.extend(["--security-opt", opt])
    for cap in config.cap_add:
        args.extend(["--cap-add", cap])
    for cap in config.cap_drop:
        args.extend(["--cap-drop", cap])

    args.append(image or config.image or "")
    args.extend(entry_rest)
    if config.command:
        args.extend(config.command)
    return args


def build_create_command(
    runtime: str,
    config: ContainerConfig,
    name: str,
    *,
    start: bool = False,
    extra_labels: dict[str, str] | None = None,
    image: str | None = None,
) -> list[str]:
    """``<rt> run --detach`` when *start*, else ``<rt> create``."""
    head = [runtime, "run", "--detach"] if start else [runtime, "create"]
    return [*head, "--name", name, *build_container_args(config, extra_labels=extra_labels, image=image)]


def build_build_command(runtime: str, tag: str, context: str, dockerfile: str | None = None) -> list[str]:
    cmd = [runtime, "build", "-t", tag]
    if dockerfile:
        cmd.extend(["-f", dockerfile])
    cmd.append(context)
    return cmd


def build_exec_command(runtime: str, container_id: str, command: str | list[str], options: ExecOptions) -> list[str]:
    """``<rt> exec [-w dir] [-u user] [-e K=V ...] <id> <cmd...>``.

    A string command is run through ``sh -c``.
    """
    cmd = [runtime, "exec"]
    if options.working_dir:
        cmd.extend(["-w", options.working_dir])
    if options.user:
        cmd.extend(["-u", options.user])
    for key, value in options.environment.items():
        cmd.extend(["-e", f"{key}={value}"])
    cmd.append(container_id)
    if isinstance(command, str):
        cmd.extend(["sh", "-c", command])
    else:
        cmd.extend(command)
    return cmd


def build_stats_command(runtime: str, container_id: str) -> list[str]:
    return [runtime, "stats", "--no-stream", "--format", STATS_FORMAT, container_id]


def build_inspect_command(runtime: str, container_id: str) -> list[str]:
    return [runtime, "inspect", "--format", INSPECT_FORMAT, container_id]

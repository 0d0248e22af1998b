"""Shared fixtures for linux_imagegen tests.

No test touches real loop devices, mounts or sudo: stages run against
FakeRunner, which records every command and simulates the side effects a
real host would produce.
"""

import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from linux_imagegen.config import Settings
from linux_imagegen.context import BuildContext, BuildOptions
from linux_imagegen.errors import ExternalToolError
from linux_imagegen.runner import CommandResult
from linux_imagegen.workspace import Workspace, create_workspace

BUSYBOX_URL = "https://example.com/busybox-x86_64"
KERNEL_URL = "https://example.com/linux-image.deb"
KERNEL_RELEASE = "5.15.0-test"
LOOP_DEVICE = "/dev/loop7"
APPLET_LIST = "bin/sh\nbin/ls\nsbin/init\nusr/bin/env\n"


class FakeRunner:
    """Command runner double that records commands instead of executing them.

    Attributes:
        calls: Argument vectors in call order (without any sudo prefix).
        privileged: Privileged flag of each call.
        stdout: Tool name to simulated standard output.
        hooks: Tool name to a side effect run with the argument vector.
        fail_when: Predicate selecting commands that exit with status 1.
    """

    def __init__(self, log_dir: Path, use_sudo: bool = True) -> None:
        self.log_dir = log_dir
        self.use_sudo = use_sudo
        self.calls: list[list[str]] = []
        self.privileged: list[bool] = []
        self.stdout: dict[str, str] = {}
        self.hooks: dict[str, Callable[[list[str]], None]] = {}
        self.fail_when: Callable[[list[str]], bool] = lambda argv: False
        self._lock = threading.Lock()

    def run(self, args, *, privileged=False, check=True) -> CommandResult:
        argv = [str(a) for a in args]
        tool = Path(argv[0]).name
        with self._lock:
            self.calls.append(argv)
            self.privileged.append(privileged)
            sequence = len(self.calls)

        self.log_dir.mkdir(parents=True, exist_ok=True)
        stdout_path = self.log_dir / f"{sequence:04d}-{tool}.stdout"
        stderr_path = self.log_dir / f"{sequence:04d}-{tool}.stderr"
        stdout_path.write_text(self.stdout.get(tool, ""))

        hook = self.hooks.get(tool)
        if hook is not None:
            hook(argv)

        exit_code = 1 if self.fail_when(argv) else 0
        stderr_path.write_text("simulated failure\n" if exit_code else "")
        result = CommandResult(tuple(argv), exit_code, stdout_path, stderr_path)
        if exit_code and check:
            raise ExternalToolError(result)
        return result

    def tools(self) -> list[str]:
        """Return the tool name of every recorded call."""
        return [Path(argv[0]).name for argv in self.calls]

    def calls_to(self, tool: str) -> list[list[str]]:
        return [argv for argv in self.calls if Path(argv[0]).name == tool]


def simulate_host(runner: FakeRunner, kernel_release: str = KERNEL_RELEASE) -> None:
    """Make *runner* behave like a host where every build step succeeds."""

    def create_image(argv: list[str]) -> None:
        # qemu-img create -f raw <image> <size>
        Path(argv[4]).write_bytes(b"raw disk image")

    def extract_package(argv: list[str]) -> None:
        # dpkg-deb -x <package> <dest>
        boot = Path(argv[3]) / "boot"
        boot.mkdir(parents=True, exist_ok=True)
        (boot / f"vmlinuz-{kernel_release}").write_bytes(b"kernel")

    runner.stdout["losetup"] = f"{LOOP_DEVICE}\n"
    runner.stdout["busybox"] = APPLET_LIST
    runner.hooks["qemu-img"] = create_image
    runner.hooks["dpkg-deb"] = extract_package


class FakeHost:
    """Replacement for the CommandRunner class used by build_image.

    Every runner it creates simulates a successful host; ``fail_when``,
    ``hooks`` and ``stdout`` overrides are copied onto each of them.
    """

    def __init__(self) -> None:
        self.runners: list[FakeRunner] = []
        self.stdout: dict[str, str] = {}
        self.hooks: dict[str, Callable[[list[str]], None]] = {}
        self.fail_when: Callable[[list[str]], bool] = lambda argv: False

    def __call__(self, log_dir: Path, use_sudo: bool = True) -> FakeRunner:
        runner = FakeRunner(log_dir, use_sudo=use_sudo)
        simulate_host(runner)
        runner.fail_when = self.fail_when
        runner.hooks.update(self.hooks)
        runner.stdout.update(self.stdout)
        self.runners.append(runner)
        return runner

    @property
    def runner(self) -> FakeRunner:
        return self.runners[-1]


@pytest.fixture
def settings() -> Settings:
    """Settings pointing downloads at mocked URLs."""
    return Settings(
        busybox_url=BUSYBOX_URL,
        kernel_url=KERNEL_URL,
        kernel_release=KERNEL_RELEASE,
        symlink_workers=2,
    )


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    return create_workspace("tmpdir.test.", parent=tmp_path)


@pytest.fixture
def fake_runner(workspace: Workspace) -> FakeRunner:
    runner = FakeRunner(workspace.log_dir)
    simulate_host(runner)
    return runner


@pytest.fixture
def build_ctx(
    settings: Settings,
    workspace: Workspace,
    fake_runner: FakeRunner,
    tmp_path: Path,
) -> BuildContext:
    """Build context wired to the fake runner."""
    return BuildContext(
        settings=settings,
        options=BuildOptions(output_path=tmp_path / "linux.img"),
        workspace=workspace,
        runner=fake_runner,
    )

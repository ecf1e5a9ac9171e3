"""Shared fixtures: an in-memory Docker API double, tuned settings, and crate factories."""

from __future__ import annotations

import io
import sys
import tarfile
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

import pytest
from docker.errors import APIError, NotFound

from contract_forge.config.schema import ForgeSettings, HostToolSettings

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


WASM_BYTES = b"\x00asm\x01\x00\x00\x00"


@dataclass
class ExecBehaviour:
    """How the fake daemon answers one exec: output chunks, exit code, and hang modes."""

    output: tuple[bytes, ...] = ()
    exit_code: int = 0
    running_polls: int = 0
    hang: bool = False
    block_stream: bool = False


@dataclass
class FakeContainer:
    name: str
    image: str
    labels: dict[str, str]
    host_config: dict[str, Any]
    stdin_open: bool
    tty: bool
    running: bool = False
    uploads: list[list[str]] = field(default_factory=list)
    files: dict[str, bytes] = field(default_factory=dict)
    release: threading.Event = field(default_factory=threading.Event)


@dataclass
class _Exec:
    container: FakeContainer
    argv: list[str]
    workdir: str
    behaviour: ExecBehaviour
    polls: int = 0


class FakeDockerAPI:
    """Implements the subset of ``docker.APIClient`` the sandbox layer calls."""

    def __init__(self) -> None:
        self.containers_by_name: dict[str, FakeContainer] = {}
        self.created: list[str] = []
        self.removed: list[str] = []
        self.remove_attempts: list[str] = []
        self.pulled: list[tuple[str, str]] = []
        self.executed: list[tuple[str, tuple[str, ...], str]] = []
        self.pull_events: list[dict[str, Any]] = [{"status": "Pull complete"}]
        self.fail_start = False
        self.fail_remove = False
        self.produce_artifacts = True
        self.rules: list[tuple[Callable[[list[str]], bool], ExecBehaviour]] = []
        self._execs: dict[str, _Exec] = {}
        self._lock = threading.Lock()

    # configuration helpers -------------------------------------------------

    def on_exec(self, program: str, **behaviour: Any) -> None:
        """Answer execs whose argv[0] ends with ``program`` as described by ``behaviour``."""

        self.rules.append((lambda argv: argv[0].endswith(program), ExecBehaviour(**behaviour)))

    def running(self) -> list[str]:
        return sorted(self.containers_by_name)

    # image / container lifecycle -------------------------------------------

    def pull(self, repository: str, tag: str | None = None, **_: Any) -> Iterator[dict[str, Any]]:
        self.pulled.append((repository, str(tag)))
        return iter(list(self.pull_events))

    def create_host_config(self, **kwargs: Any) -> dict[str, Any]:
        return dict(kwargs)

    def create_container(
        self,
        image: str,
        *,
        name: str,
        stdin_open: bool = False,
        tty: bool = False,
        host_config: dict[str, Any] | None = None,
        labels: dict[str, str] | None = None,
        **_: Any,
    ) -> dict[str, str]:
        with self._lock:
            if name in self.containers_by_name:
                raise APIError(f"Conflict. The container name {name!r} is already in use")
            self.containers_by_name[name] = FakeContainer(
                name=name,
                image=image,
                labels=dict(labels or {}),
                host_config=dict(host_config or {}),
                stdin_open=stdin_open,
                tty=tty,
            )
            self.created.append(name)
        return {"Id": f"id-{name}"}

    def start(self, container: str) -> None:
        if self.fail_start:
            raise APIError("cannot start container: permission denied")
        self._container(container).running = True

    def remove_container(self, container: str, v: bool = False, force: bool = False) -> None:
        self.remove_attempts.append(container)
        if self.fail_remove:
            raise APIError("removal of container is already in progress")
        with self._lock:
            found = self.containers_by_name.pop(container, None)
        if found is None:
            raise NotFound(f"No such container: {container}")
        found.release.set()
        self.removed.append(container)

    def containers(
        self, all: bool = False, filters: dict[str, str] | None = None  # noqa: A002
    ) -> list[dict[str, Any]]:
        label = (filters or {}).get("label")
        return [
            {"Id": f"id-{item.name}", "Names": [f"/{item.name}"]}
            for item in self.containers_by_name.values()
            if label is None or label in item.labels
        ]

    # archives --------------------------------------------------------------

    def put_archive(self, container: str, path: str, data: bytes) -> bool:
        target = self._container(container)
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as archive:
            target.uploads.append(archive.getnames())
        return True

    def get_archive(self, container: str, path: str) -> tuple[Iterator[bytes], dict[str, Any]]:
        target = self._container(container)
        prefix = path.rstrip("/") + "/"
        entries = {k: v for k, v in target.files.items() if k.startswith(prefix)}
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as archive:
            root = tarfile.TarInfo(PurePosixPath(path).name)
            root.type = tarfile.DIRTYPE
            archive.addfile(root)
            for full, content in sorted(entries.items()):
                info = tarfile.TarInfo(f"{PurePosixPath(path).name}/{full[len(prefix):]}")
                info.size = len(content)
                archive.addfile(info, io.BytesIO(content))
        payload = buffer.getvalue()
        return iter([payload[:10], payload[10:]]), {"name": PurePosixPath(path).name}

    # exec ------------------------------------------------------------------

    def exec_create(
        self, container: str, cmd: list[str], *, workdir: str | None = None, **_: Any
    ) -> dict[str, str]:
        target = self._container(container)
        behaviour = next((b for match, b in self.rules if match(cmd)), ExecBehaviour())
        exec_id = f"exec-{len(self._execs)}"
        self._execs[exec_id] = _Exec(target, list(cmd), workdir or "/", behaviour)
        self.executed.append((container, tuple(cmd), workdir or "/"))
        return {"Id": exec_id}

    def exec_start(self, exec_id: str, detach: bool = False, stream: bool = False, **_: Any) -> Any:
        if detach:
            return b""
        record = self._execs[exec_id]
        self._apply_side_effects(record)

        def chunks() -> Iterator[bytes]:
            yield from record.behaviour.output
            if record.behaviour.block_stream:
                record.container.release.wait(timeout=5)

        return chunks()

    def exec_inspect(self, exec_id: str) -> dict[str, Any]:
        record = self._execs[exec_id]
        record.polls += 1
        running = record.behaviour.hang or record.polls <= record.behaviour.running_polls
        return {"Running": running, "ExitCode": None if running else record.behaviour.exit_code}

    def _apply_side_effects(self, record: _Exec) -> None:
        argv = record.argv
        if record.behaviour.exit_code != 0 or not self.produce_artifacts:
            return
        if argv[0] == "mv" and len(argv) == 3:
            record.container.files[argv[2]] = WASM_BYTES
        elif argv[0] == "cp" and len(argv) == 3:
            record.container.files[argv[2]] = b"# lock\n"

    def _container(self, name: str) -> FakeContainer:
        try:
            return self.containers_by_name[name]
        except KeyError:
            raise NotFound(f"No such container: {name}") from None


class RecordingLogger:
    """Stand-in for a structlog bound logger that keeps every event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str, event: str, **fields: Any) -> None:
        self.events.append((level, event, fields))

    def debug(self, event: str, **fields: Any) -> None:
        self._record("debug", event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self._record("info", event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._record("warning", event, **fields)

    def states(self, package: str | None = None) -> list[str]:
        return [
            fields["state"]
            for _level, _event, fields in self.events
            if "state" in fields and (package is None or fields.get("package") == package)
        ]


@pytest.fixture
def fake_docker() -> FakeDockerAPI:
    return FakeDockerAPI()


@pytest.fixture
def event_log() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def forge_settings() -> ForgeSettings:
    defaults = ForgeSettings.defaults()
    return replace(
        defaults,
        sandbox=replace(
            defaults.sandbox,
            poll_interval_seconds=0.001,
            step_timeout_seconds=0.3,
            cancel_grace_seconds=0.05,
        ),
    )


@pytest.fixture
def make_crate(tmp_path: Path) -> Callable[..., Path]:
    """Write a minimal crate under ``tmp_path`` and return its directory."""

    def factory(
        name: str,
        *,
        path_deps: dict[str, str] | None = None,
        directory: str | None = None,
        lock_file: bool = False,
        manifest: bool = True,
    ) -> Path:
        root = tmp_path / (directory or name)
        (root / "src").mkdir(parents=True, exist_ok=True)
        (root / "src" / "lib.rs").write_text("pub fn entry() {}\n", encoding="utf-8")
        if manifest:
            lines = ["[package]", f'name = "{name}"', 'version = "0.1.0"', "", "[dependencies]"]
            for dep, dep_path in (path_deps or {}).items():
                lines.append(f'{dep} = {{ path = "{dep_path}" }}')
            lines.append('serde = "1"')
            (root / "Cargo.toml").write_text("\n".join(lines) + "\n", encoding="utf-8")
        if lock_file:
            (root / "Cargo.lock").write_text("# lock\nversion = 3\n", encoding="utf-8")
        return root

    return factory


@pytest.fixture
def python_tool(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable Python script standing in for a host tool."""

    if sys.platform == "win32":
        pytest.skip("stand-in tools rely on shebang execution")

    tools = tmp_path / "tools"

    def factory(name: str, body: str) -> Path:
        tools.mkdir(exist_ok=True)
        script = tools / name
        script.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
        script.chmod(0o755)
        return script

    return factory


@pytest.fixture
def host_settings(
    forge_settings: ForgeSettings, python_tool: Callable[[str, str], Path]
) -> ForgeSettings:
    cargo = python_tool("fake-cargo", FAKE_CARGO)
    copier = python_tool("fake-wasm-tool", FAKE_WASM_TOOL)
    return replace(
        forge_settings,
        sandbox=replace(forge_settings.sandbox, step_timeout_seconds=10.0),
        host=HostToolSettings(cargo=str(cargo), wasm_opt=str(copier), wasm_snip=str(copier)),
    )


FAKE_CARGO = """\
import pathlib
import sys
import tomllib

args = sys.argv[1:]
target = args[args.index("--target") + 1]
manifest = tomllib.loads(pathlib.Path("Cargo.toml").read_text(encoding="utf-8"))
name = manifest["package"]["name"]
out = pathlib.Path("target", target, "release")
out.mkdir(parents=True, exist_ok=True)
marker = b"locked" if "--locked" in args else b""
(out / (name.replace("-", "_") + ".wasm")).write_bytes(b"\\x00asm\\x01\\x00\\x00\\x00" + marker)
print("   Compiling", name)
"""

FAKE_WASM_TOOL = """\
import shutil
import sys

args = sys.argv[1:]
out = args[args.index("--output") + 1]
src = [arg for arg in args if not arg.startswith("-") and arg != out][0]
shutil.copyfile(src, out)
"""

"""
Pytest fixtures for videogen tests.

The render worker is replaced by tiny Python scripts run with the current
interpreter, so no Node/Remotion install is needed:
- ok:   writes a JSON description of its argv to the output path, exits 0
- fail: writes to stderr, exits 3
- slow: sleeps far longer than any test timeout

Remote media is served by ``httpx.MockTransport``; nothing touches the network.
"""

import asyncio
import shlex
import sys
import textwrap
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest

from videogen.config import Settings
from videogen.render.dispatcher import RenderResult
from videogen.render.properties import RenderProperties
from videogen.services.job_registry import JobRegistry
from videogen.services.media_resolver import MediaResolver
from videogen.services.render_orchestrator import RenderOrchestrator
from videogen.services.storage_service import LocalStorageService

WORKER_OK = """
import json
import sys

template_id, output_path, props_json = sys.argv[1:4]
frames = sys.argv[4] if len(sys.argv) > 4 else None
print(f"Rendering {template_id}")
with open(output_path, "w", encoding="utf-8") as out:
    json.dump({"template_id": template_id, "props": json.loads(props_json), "frames": frames}, out)
print("Done")
"""

WORKER_FAIL = """
import sys

print("Bundling...")
print("Error: composition crashed", file=sys.stderr)
sys.exit(3)
"""

WORKER_SLOW = """
import time

time.sleep(60)
"""

# Bytes served for any successful mock download
MEDIA_BYTES = b"\x89PNG fake media payload"


@pytest.fixture
def write_worker(tmp_path: Path) -> Callable[[str, str], str]:
    """Write a worker script and return the command line that runs it."""

    def _write(name: str, source: str) -> str:
        script = tmp_path / f"{name}.py"
        script.write_text(textwrap.dedent(source), encoding="utf-8")
        return shlex.join([sys.executable, str(script)])

    return _write


@pytest.fixture
def ok_command(write_worker) -> str:
    return write_worker("worker_ok", WORKER_OK)


@pytest.fixture
def fail_command(write_worker) -> str:
    return write_worker("worker_fail", WORKER_FAIL)


@pytest.fixture
def slow_command(write_worker) -> str:
    return write_worker("worker_slow", WORKER_SLOW)


@pytest.fixture
def make_settings(tmp_path: Path, ok_command: str) -> Callable[..., Settings]:
    """Settings rooted in tmp_path; keyword arguments override fields."""

    def _make(**overrides) -> Settings:
        values = {
            "uploads_dir": str(tmp_path / "uploads"),
            "output_dir": str(tmp_path / "output"),
            "render_command": ok_command,
            "render_timeout_seconds": 30,
            "render_workers": 2,
            "download_concurrency": 3,
            "job_store": "memory",
            "log_level": "DEBUG",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def storage(settings: Settings) -> LocalStorageService:
    return LocalStorageService(settings)


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


class MockMediaServer:
    """Request handler for httpx.MockTransport.

    Hosts named ``unreachable.invalid`` refuse connections; paths starting with
    ``/missing`` return 404; everything else returns MEDIA_BYTES.
    """

    payload = MEDIA_BYTES

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "unreachable.invalid":
            raise httpx.ConnectError("Connection refused", request=request)
        if request.url.path.startswith("/missing"):
            return httpx.Response(404, content=b"not found")
        return httpx.Response(200, content=MEDIA_BYTES)

    def client_factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def media_server() -> MockMediaServer:
    return MockMediaServer()


@pytest.fixture
def resolver(storage: LocalStorageService, settings: Settings, media_server) -> MediaResolver:
    return MediaResolver(storage, settings, client_factory=media_server.client_factory)


class FakeDispatcher:
    """In-process stand-in for RenderDispatcher.

    Renders keyed by title can be held on a gate or made to fail.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, RenderProperties, Optional[int], str]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[str, Exception] = {}

    def hold(self, title: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[title] = gate
        return gate

    async def dispatch(self, template_id, properties, duration_frames, output_path) -> RenderResult:
        self.calls.append((template_id, properties, duration_frames, str(output_path)))
        gate = self.gates.get(properties.title)
        if gate is not None:
            await gate.wait()
        error = self.failures.get(properties.title)
        if error is not None:
            raise error
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(b"fake video")
        return RenderResult(
            output_path=str(output_path),
            exit_code=0,
            stdout="",
            stderr="",
            elapsed_seconds=0.0,
        )


@pytest.fixture
def fake_dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def orchestrator(registry, resolver, fake_dispatcher, storage, settings) -> RenderOrchestrator:
    return RenderOrchestrator(registry, resolver, fake_dispatcher, storage, settings)


@pytest.fixture
def wait_for_status():
    """Poll the registry until a job reaches one of the given statuses."""

    async def _wait(registry: JobRegistry, job_id: str, *statuses, timeout: float = 5.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            job = registry.get(job_id)
            if job.status in statuses:
                return job
            if loop.time() > deadline:
                raise AssertionError(f"Job {job_id} stuck in {job.status.value}")
            await asyncio.sleep(0.01)

    return _wait

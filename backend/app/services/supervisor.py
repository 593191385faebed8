"""Build process supervision: one build/dev-server process per website.

The supervisor owns the build status state machine. Live processes and their
port leases are kept in an explicit table keyed by website id; the database
holds the persisted view (status, port, preview URL, output snapshot) that
survives an orchestrator restart.
"""
import asyncio
import os
import re
import shlex
import shutil
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from app.config import settings
from app.constants import BuildStatus, DEPENDENCY_MANIFEST, ProjectType, WORKSPACE_RESERVED
from app.database import SessionLocal
from app.models.website import Website
from app.models.website_file import WebsiteFile
from app.services.lifecycle import assert_build_transition
from app.services.port_allocator import PortAllocator
from app.services.preview import PreviewResolver
from app.services.project_analysis import find_index_file, has_typescript, validate_package_manifest
from app.utils.db import get_by_id, parse_uuid
from app.utils.exceptions import BuildFailed, ResourceConflict, ResourceExhausted, ValidationError
from app.utils.logger import logger
from app.utils.output_buffer import OutputBuffer

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")

Spawner = Callable[..., Awaitable[Any]]


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _setting(value: Any, default: Any) -> Any:
    """Explicit arguments win over settings, including zero."""
    return default if value is None else value


async def spawn_subprocess(command: Sequence[str], *, cwd: str, env: Dict[str, str]) -> asyncio.subprocess.Process:
    """Launch a child in its own session with stderr folded into stdout."""
    return await asyncio.create_subprocess_exec(
        *command,
        cwd=cwd,
        env=env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        start_new_session=True,
    )


async def _is_port_open(host: str, port: int, timeout_seconds: float = 0.35) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout_seconds)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


@dataclass
class _SupervisedProcess:
    website_id: str
    project_type: str
    project_dir: Path
    port: int
    output: OutputBuffer
    started_at: float
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    sync_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    process: Any = None
    task: Optional[asyncio.Task] = None
    readers: List[asyncio.Task] = field(default_factory=list)
    running: bool = False
    stopping: bool = False
    quarantined: bool = False
    manifest_dirty: bool = False
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def alive(self) -> bool:
        return self.process is not None and self.process.returncode is None


class BuildSupervisor:
    """Starts, watches, stops and restarts website preview processes."""

    def __init__(
        self,
        allocator: PortAllocator,
        resolver: Optional[PreviewResolver] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        spawner: Optional[Spawner] = None,
        *,
        workspace_root: Optional[str] = None,
        install_command: Optional[str] = None,
        startup_timeout_seconds: Optional[float] = None,
        install_timeout_seconds: Optional[float] = None,
        type_check_scripts: Optional[Iterable[str]] = None,
        type_check_timeout_seconds: Optional[float] = None,
        stop_grace_seconds: Optional[float] = None,
        kill_wait_seconds: Optional[float] = None,
        output_max_lines: Optional[int] = None,
        max_concurrent_builds: Optional[int] = None,
        ready_markers: Optional[Iterable[str]] = None,
        health_check: bool = True,
        kill_process_group: bool = True,
        poll_interval_seconds: float = 0.25,
    ):
        self.allocator = allocator
        self.resolver = resolver or PreviewResolver()
        self._session_factory = session_factory
        self._spawn = spawner or spawn_subprocess

        self.workspace_root = Path(workspace_root or settings.workspace_root).expanduser()
        self.install_command = settings.install_command if install_command is None else install_command
        self.type_check_scripts = list(
            settings.type_check_script_names if type_check_scripts is None else type_check_scripts
        )
        self.startup_timeout_seconds = _setting(startup_timeout_seconds, settings.build_startup_timeout_seconds)
        self.install_timeout_seconds = _setting(install_timeout_seconds, settings.install_timeout_seconds)
        self.type_check_timeout_seconds = _setting(type_check_timeout_seconds, settings.type_check_timeout_seconds)
        self.stop_grace_seconds = _setting(stop_grace_seconds, settings.stop_grace_seconds)
        self.kill_wait_seconds = _setting(kill_wait_seconds, settings.kill_wait_seconds)
        self.output_max_lines = _setting(output_max_lines, settings.build_output_max_lines)
        self.max_concurrent_builds = _setting(max_concurrent_builds, settings.max_concurrent_builds)
        self.ready_markers = [m.lower() for m in (ready_markers if ready_markers is not None else settings.ready_markers)]
        self.health_check = health_check
        self.kill_process_group = kill_process_group
        self.poll_interval_seconds = poll_interval_seconds

        self._processes: Dict[str, _SupervisedProcess] = {}
        self._outputs: Dict[str, OutputBuffer] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(self, website_id: str) -> str:
        """
        Start a website's preview.

        Static projects go straight to running without a port. Process-backed
        projects lease a port, move to building and hand off to a background
        task that installs, launches and health-checks the dev server.

        Returns:
            The build status after the call (running for static, building otherwise)

        Raises:
            NotFoundError: Unknown website
            ResourceConflict: Already building/running, or a previous process is still alive
            ResourceExhausted: No port or build slot available (website is left failed)
        """
        website_id = str(website_id)
        async with self._lock_for(website_id):
            with self._session_factory() as db:
                website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
                if website.build_status in (BuildStatus.BUILDING, BuildStatus.RUNNING):
                    raise ResourceConflict(f"Website {website_id} is already {website.build_status}")
                self._reap_quarantined_locked(website_id)

                output = OutputBuffer(self.output_max_lines)
                self._outputs[website_id] = output
                if not website.is_process_backed:
                    return self._start_static_locked(db, website, output)
                return self._start_process_locked(db, website, output)

    async def stop(self, website_id: str, *, reason: str = "Stopped by request", require_running: bool = False) -> bool:
        """
        Stop a website's process and release its port.

        A stop during building cancels the build. Stopping a website that is
        pending, stopped or failed is a no-op.

        Args:
            website_id: Website to stop
            reason: Line recorded in the build output
            require_running: Only act on running websites (idle reclamation)

        Returns:
            True if the website transitioned to stopped

        Raises:
            ResourceConflict: If the process survives SIGKILL; its port stays quarantined
        """
        website_id = str(website_id)
        async with self._lock_for(website_id):
            with self._session_factory() as db:
                website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
                status = website.build_status
                record = self._processes.get(website_id)

                if status not in (BuildStatus.BUILDING, BuildStatus.RUNNING):
                    if record is not None and record.quarantined:
                        self._reap_quarantined_locked(website_id)
                    return False
                if require_running and status != BuildStatus.RUNNING:
                    return False

                output = self._outputs.setdefault(website_id, OutputBuffer(self.output_max_lines))
                if record is not None:
                    record.stopping = True
                    await self._cancel_build_task(record)
                    confirmed = await self._terminate(record.process)
                    if not confirmed:
                        record.quarantined = True
                        output.append(
                            f"ERROR: process did not exit within {self.stop_grace_seconds + self.kill_wait_seconds}s; "
                            f"port {record.port} quarantined"
                        )
                        self._transition(db, website, BuildStatus.FAILED, preview_url=None, build_output=output.lines())
                        raise ResourceConflict(
                            f"Could not confirm termination of website {website_id}; port {record.port} is still bound"
                        )
                    self._discard_locked(record)

                output.append(reason)
                self._transition(
                    db,
                    website,
                    BuildStatus.STOPPED,
                    port=None,
                    preview_url=None,
                    build_output=output.lines(),
                )
                return True

    async def restart(self, website_id: str) -> str:
        """Stop then start. Never reuses a port whose process has not exited."""
        await self.stop(website_id, reason="Stopped for restart")
        return await self.start(website_id)

    async def files_changed(self, website_id: str, file_names: Iterable[str]) -> bool:
        """
        Push edited files into a live workspace.

        The dev server's own file watcher picks the change up. Returns True
        when the dependency manifest changed on a running process, which needs
        a restart to reinstall. A manifest change during a build flags the
        build, which reinstalls before it reports running.
        """
        website_id = str(website_id)
        names = sorted(set(file_names))
        record = self._processes.get(website_id)
        if record is None or record.quarantined or not names:
            return False

        async with record.sync_lock:
            files = self._load_files(website_id, names)
            await asyncio.to_thread(self._write_files, record.project_dir, files)
        logger.info(f"[SUPERVISOR] Synced {len(files)} changed file(s) into workspace of website {website_id}")

        if DEPENDENCY_MANIFEST not in files:
            return False
        if record.running:
            return True
        record.manifest_dirty = True
        return False

    def touch(self, website_id: str) -> None:
        """Record preview traffic for idle reclamation."""
        record = self._processes.get(str(website_id))
        if record is not None:
            record.last_activity = time.monotonic()

    def idle_candidates(self, idle_seconds: float) -> List[str]:
        """Running websites without preview traffic for idle_seconds. Never includes builds in progress."""
        now = time.monotonic()
        return [
            record.website_id
            for record in list(self._processes.values())
            if record.running
            and not record.stopping
            and not record.quarantined
            and now - record.last_activity >= idle_seconds
        ]

    def recover(self) -> int:
        """
        Apply the restart-recovery contract.

        Process-backed websites persisted as building/running have no live
        process after an orchestrator restart; they are moved to failed.
        Static websites keep running since nothing needs to be alive for them.
        """
        recovered = 0
        with self._session_factory() as db:
            websites = (
                db.query(Website)
                .filter(Website.build_status.in_([BuildStatus.BUILDING, BuildStatus.RUNNING]))
                .all()
            )
            for website in websites:
                if str(website.id) in self._processes:
                    continue
                if not website.is_process_backed and website.build_status == BuildStatus.RUNNING:
                    continue
                output = OutputBuffer(self.output_max_lines, website.build_output or [])
                output.append("Orchestrator restarted; no live process for this website")
                self._transition(
                    db,
                    website,
                    BuildStatus.FAILED,
                    port=None,
                    preview_url=None,
                    build_output=output.lines(),
                )
                recovered += 1

        if recovered:
            logger.warning(f"[SUPERVISOR] Marked {recovered} website(s) failed after restart")
        return recovered

    async def shutdown(self) -> None:
        """Stop every supervised process (application shutdown)."""
        for website_id in list(self._processes.keys()):
            try:
                await self.stop(website_id, reason="Orchestrator shutting down")
            except ResourceConflict as e:
                logger.error(f"[SUPERVISOR] {e}")

    async def remove_workspace(self, website_id: str) -> None:
        """Forget a deleted website's runtime bookkeeping and remove its workspace."""
        website_id = str(website_id)
        if website_id in self._processes:
            raise ResourceConflict(f"Website {website_id} still has a supervised process")
        self._outputs.pop(website_id, None)
        self._locks.pop(website_id, None)
        await asyncio.to_thread(shutil.rmtree, self._project_dir(website_id), True)

    def output_for(self, website_id: str) -> Optional[List[str]]:
        """Live output lines for a website, or None if nothing captured since startup."""
        output = self._outputs.get(str(website_id))
        return output.lines() if output is not None else None

    def stats(self) -> Dict[str, Any]:
        records = list(self._processes.values())
        return {
            "active": sum(1 for r in records if r.running),
            "building": sum(1 for r in records if not r.running and not r.quarantined),
            "quarantined": sum(1 for r in records if r.quarantined),
            "leased_ports": [lease.port for lease in self.allocator.leases()],
            "capacity": self.allocator.capacity,
        }

    # ------------------------------------------------------------------
    # Start paths
    # ------------------------------------------------------------------

    def _start_static_locked(self, db: Session, website: Website, output: OutputBuffer) -> str:
        started = time.monotonic()
        if website.build_status != BuildStatus.PENDING:
            self._transition(db, website, BuildStatus.BUILDING, port=None, preview_url=None)

        index_file = find_index_file([f.name for f in website.files])
        preview_url = self.resolver.static_content_url(str(website.id), index_file) if index_file else None
        output.append(f"Static site: serving {index_file or 'files'} directly")
        self._transition(
            db,
            website,
            BuildStatus.RUNNING,
            port=None,
            preview_url=preview_url,
            last_build_at=utc_now(),
            build_duration_ms=int((time.monotonic() - started) * 1000),
            build_output=output.lines(),
        )
        return BuildStatus.RUNNING

    def _start_process_locked(self, db: Session, website: Website, output: OutputBuffer) -> str:
        website_id = str(website.id)
        self._transition(db, website, BuildStatus.BUILDING, port=None, preview_url=None, build_output=[])

        building = sum(1 for r in self._processes.values() if not r.running and not r.quarantined)
        if building >= self.max_concurrent_builds:
            message = f"Maximum concurrent builds reached ({self.max_concurrent_builds})"
            output.append(f"ERROR: {message}")
            self._transition(db, website, BuildStatus.FAILED, build_output=output.lines())
            raise ResourceExhausted(message)

        try:
            port = self.allocator.acquire(website_id)
        except ResourceExhausted as e:
            output.append(f"ERROR: {e}")
            self._transition(db, website, BuildStatus.FAILED, build_output=output.lines())
            raise

        record = _SupervisedProcess(
            website_id=website_id,
            project_type=website.project_type,
            project_dir=self._project_dir(website_id),
            port=port,
            output=output,
            started_at=time.monotonic(),
        )
        self._processes[website_id] = record
        website.port = port
        db.commit()

        output.append(f"Building {website.project_type} project on port {port}")
        record.task = asyncio.create_task(self._run_build(record), name=f"build-{website_id}")
        return BuildStatus.BUILDING

    # ------------------------------------------------------------------
    # Background build task
    # ------------------------------------------------------------------

    async def _run_build(self, record: _SupervisedProcess) -> None:
        website_id = record.website_id
        while True:
            try:
                await self._build_once(record)
            except asyncio.CancelledError:
                raise
            except (BuildFailed, OSError) as e:
                await self._fail_build(record, str(e))
                return
            except Exception as e:
                logger.error(f"[SUPERVISOR] Unexpected build error for website {website_id}: {e}", exc_info=True)
                await self._fail_build(record, f"Unexpected build error: {e}")
                return

            if not await self._mark_running(record):
                return
            if record.running:
                break
            record.output.append(f"{DEPENDENCY_MANIFEST} changed during the build; reinstalling")
            logger.info(f"[SUPERVISOR] {DEPENDENCY_MANIFEST} changed while website {website_id} was building; rebuilding")

        returncode = await record.process.wait()
        await self._handle_exit(record, returncode)

    async def _build_once(self, record: _SupervisedProcess) -> None:
        """One pass of sync, install, type check, launch and readiness wait."""
        if record.alive:
            if not await self._terminate(record.process):
                raise BuildFailed("Previous dev server did not exit before the rebuild")
            await self._drain_output(record)
        record.process = None
        record.readers = [reader for reader in record.readers if not reader.done()]
        record.ready.clear()
        record.manifest_dirty = False

        files = await self._sync_workspace(record)
        if DEPENDENCY_MANIFEST in files:
            try:
                manifest = validate_package_manifest(files[DEPENDENCY_MANIFEST])
            except ValidationError as e:
                raise BuildFailed(str(e))
            if self.install_command:
                await self._run_install(record)
            if self.type_check_scripts and has_typescript(files):
                await self._run_type_check(record, manifest)

        await self._launch_dev_server(record)
        if not await self._wait_until_ready(record):
            if not record.alive:
                raise BuildFailed(
                    f"Dev server exited with code {record.process.returncode} before becoming ready"
                )
            raise BuildFailed(f"Dev server did not become ready within {self.startup_timeout_seconds}s")

    async def _sync_workspace(self, record: _SupervisedProcess) -> Dict[str, str]:
        """Mirror the website's current files into its workspace."""
        async with record.sync_lock:
            files = self._load_files(record.website_id)
            await asyncio.to_thread(self._materialize, record.project_dir, files)
        return files

    def _load_files(self, website_id: str, names: Optional[List[str]] = None) -> Dict[str, str]:
        with self._session_factory() as db:
            query = db.query(WebsiteFile).filter(WebsiteFile.website_id == parse_uuid(website_id))
            if names is not None:
                query = query.filter(WebsiteFile.name.in_(names))
            return {row.name: row.content for row in query.all()}

    async def _run_step(self, record: _SupervisedProcess, command: List[str], timeout: float) -> Optional[int]:
        """
        Run a one-shot command in the workspace with its output captured.

        Returns:
            The exit code, or None if it timed out and was terminated

        Raises:
            BuildFailed: If a timed out command could not be terminated
        """
        record.output.append(f"$ {' '.join(command)}")
        process = await self._spawn(command, cwd=str(record.project_dir), env=self._build_env(record))
        record.process = process
        pump = asyncio.create_task(self._pump_output(record, process, detect_ready=False))
        record.readers.append(pump)

        try:
            returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            if not await self._terminate(process):
                raise BuildFailed(f"`{' '.join(command)}` timed out after {timeout}s and did not exit")
            returncode = None

        await asyncio.wait([pump], timeout=1.0)
        record.process = None
        return returncode

    async def _run_install(self, record: _SupervisedProcess) -> None:
        command = shlex.split(self.install_command)
        returncode = await self._run_step(record, command, self.install_timeout_seconds)
        if returncode is None:
            raise BuildFailed(f"`{' '.join(command)}` timed out after {self.install_timeout_seconds}s")
        if returncode != 0:
            raise BuildFailed(f"`{' '.join(command)}` failed with exit code {returncode}")

    async def _run_type_check(self, record: _SupervisedProcess, manifest: Dict[str, Any]) -> None:
        """
        Type check a TypeScript project before launching it.

        Declared scripts from type_check_scripts are tried in order until one
        exits 0. Results only go to the build output; the build goes on either way.
        """
        scripts = manifest.get("scripts") or {}
        candidates = [name for name in self.type_check_scripts if name in scripts]
        if not candidates:
            record.output.append("No type check script found; skipping type check")
            return

        for name in candidates:
            command = shlex.split(settings.type_check_command.format(script=name))
            returncode = await self._run_step(record, command, self.type_check_timeout_seconds)
            if returncode == 0:
                record.output.append(f"Type check passed with `{' '.join(command)}`")
                return
            result = "timed out" if returncode is None else f"exited with code {returncode}"
            record.output.append(f"Type check `{' '.join(command)}` {result}")

        logger.warning(f"[SUPERVISOR] No type check passed for website {record.website_id}; continuing")
        record.output.append("Type check did not pass; continuing with the dev server")

    async def _launch_dev_server(self, record: _SupervisedProcess) -> None:
        command = self._dev_command(record)
        record.output.append(f"$ {' '.join(command)}")
        process = await self._spawn(command, cwd=str(record.project_dir), env=self._build_env(record))
        record.process = process
        record.readers.append(asyncio.create_task(self._pump_output(record, process, detect_ready=True)))
        logger.info(f"[SUPERVISOR] Launched dev server for website {record.website_id} on port {record.port}")

    async def _pump_output(self, record: _SupervisedProcess, process: Any, detect_ready: bool) -> None:
        stream = getattr(process, "stdout", None)
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                record.output.append("[output line too long, truncated]")
                continue
            if not line:
                break
            text = _ANSI_ESCAPE.sub("", line.decode("utf-8", errors="replace")).rstrip()
            record.output.append(text)
            if detect_ready and not record.ready.is_set():
                lowered = text.lower()
                if any(marker in lowered for marker in self.ready_markers):
                    record.ready.set()

    async def _wait_until_ready(self, record: _SupervisedProcess) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_timeout_seconds
        while loop.time() < deadline:
            if record.ready.is_set():
                return True
            if not record.alive:
                return False
            if self.health_check and await _is_port_open(self.resolver.host, record.port):
                return True
            try:
                await asyncio.wait_for(record.ready.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        return record.ready.is_set()

    async def _mark_running(self, record: _SupervisedProcess) -> bool:
        """
        Move a ready build to running.

        Returns False once the record is gone or stopping. Returns True without
        marking running when the manifest changed during the build.
        """
        async with self._lock_for(record.website_id):
            if self._processes.get(record.website_id) is not record or record.stopping:
                return False
            if record.manifest_dirty:
                return True
            with self._session_factory() as db:
                website = db.get(Website, parse_uuid(record.website_id))
                if website is None:
                    return False
                elapsed_ms = int((time.monotonic() - record.started_at) * 1000)
                record.running = True
                record.last_activity = time.monotonic()
                record.output.append(f"Preview ready on port {record.port} after {elapsed_ms}ms")
                self._transition(
                    db,
                    website,
                    BuildStatus.RUNNING,
                    port=record.port,
                    preview_url=self.resolver.proxy_address(record.port),
                    last_build_at=utc_now(),
                    build_duration_ms=elapsed_ms,
                    build_output=record.output.lines(),
                )
            return True

    async def _fail_build(self, record: _SupervisedProcess, reason: str) -> None:
        async with self._lock_for(record.website_id):
            if self._processes.get(record.website_id) is not record or record.stopping:
                return
            logger.warning(f"[SUPERVISOR] Build failed for website {record.website_id}: {reason}")
            confirmed = await self._terminate(record.process)
            if confirmed:
                await self._drain_output(record)
            record.output.append(f"ERROR: {reason}")
            if confirmed:
                self._discard_locked(record)
            else:
                record.quarantined = True
                record.output.append(f"ERROR: process did not exit; port {record.port} quarantined")

            with self._session_factory() as db:
                website = db.get(Website, parse_uuid(record.website_id))
                if website is None:
                    return
                fields: Dict[str, Any] = {"preview_url": None, "build_output": record.output.lines()}
                if confirmed:
                    fields["port"] = None
                self._transition(db, website, BuildStatus.FAILED, **fields)

    async def _handle_exit(self, record: _SupervisedProcess, returncode: int) -> None:
        async with self._lock_for(record.website_id):
            if self._processes.get(record.website_id) is not record or record.stopping:
                return
            await self._drain_output(record)
            record.output.append(f"ERROR: dev server exited unexpectedly with code {returncode}")
            logger.warning(f"[SUPERVISOR] Dev server for website {record.website_id} crashed (code {returncode})")
            self._discard_locked(record)
            with self._session_factory() as db:
                website = db.get(Website, parse_uuid(record.website_id))
                if website is None:
                    return
                self._transition(
                    db,
                    website,
                    BuildStatus.FAILED,
                    port=None,
                    preview_url=None,
                    build_output=record.output.lines(),
                )

    # ------------------------------------------------------------------
    # Process and table helpers
    # ------------------------------------------------------------------

    def _lock_for(self, website_id: str) -> asyncio.Lock:
        lock = self._locks.get(website_id)
        if lock is None:
            lock = self._locks[website_id] = asyncio.Lock()
        return lock

    def _transition(self, db: Session, website: Website, to_status: str, **fields: Any) -> None:
        from_status = website.build_status
        assert_build_transition(from_status=from_status, to_status=to_status)
        website.build_status = to_status
        for key, value in fields.items():
            setattr(website, key, value)
        db.commit()
        logger.info(f"[SUPERVISOR] Website {website.id}: {from_status} -> {to_status}")

    def _reap_quarantined_locked(self, website_id: str) -> None:
        record = self._processes.get(website_id)
        if record is None:
            return
        if record.alive:
            raise ResourceConflict(
                f"Previous process of website {website_id} has not exited; port {record.port} stays quarantined"
            )
        self._discard_locked(record)

    def _discard_locked(self, record: _SupervisedProcess) -> None:
        if self._processes.get(record.website_id) is record:
            del self._processes[record.website_id]
        for reader in record.readers:
            if not reader.done():
                reader.cancel()
        self.allocator.release(record.website_id)

    async def _drain_output(self, record: _SupervisedProcess) -> None:
        """Let readers consume what an exited process left in its pipe."""
        pending = [reader for reader in record.readers if not reader.done()]
        if pending:
            await asyncio.wait(pending, timeout=1.0)

    async def _cancel_build_task(self, record: _SupervisedProcess) -> None:
        task = record.task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait([task])

    async def _terminate(self, process: Any) -> bool:
        """SIGTERM, wait the grace period, SIGKILL, wait again. True once the process has exited."""
        if process is None or process.returncode is not None:
            return True
        self._signal(process, signal.SIGTERM)
        if await self._wait_exit(process, self.stop_grace_seconds):
            return True
        logger.warning(f"[SUPERVISOR] Process {getattr(process, 'pid', None)} ignored SIGTERM; killing")
        self._signal(process, signal.SIGKILL)
        return await self._wait_exit(process, self.kill_wait_seconds)

    async def _wait_exit(self, process: Any, timeout: float) -> bool:
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return process.returncode is not None

    def _signal(self, process: Any, sig: int) -> None:
        pid = getattr(process, "pid", None)
        try:
            if self.kill_process_group and pid:
                # Children were started in their own session, so the group
                # also covers the dev server that npm spawned
                os.killpg(pid, sig)
            else:
                process.send_signal(sig)
        except ProcessLookupError:
            pass

    def _project_dir(self, website_id: str) -> Path:
        return self.workspace_root / website_id

    def _dev_command(self, record: _SupervisedProcess) -> List[str]:
        template = settings.react_dev_command if record.project_type == ProjectType.REACT else settings.vite_dev_command
        return shlex.split(template.format(host=self.resolver.host, port=record.port))

    def _build_env(self, record: _SupervisedProcess) -> Dict[str, str]:
        env = os.environ.copy()
        env.update({"PORT": str(record.port), "HOST": self.resolver.host, "BROWSER": "none"})
        return env

    def _materialize(self, project_dir: Path, files: Dict[str, str]) -> None:
        """Make the workspace mirror the website's files, keeping node_modules."""
        project_dir.mkdir(parents=True, exist_ok=True)

        stale_dirs: List[Path] = []
        for current, dirnames, filenames in os.walk(project_dir):
            current_path = Path(current)
            if current_path == project_dir:
                dirnames[:] = [d for d in dirnames if d not in WORKSPACE_RESERVED]
            for filename in filenames:
                path = current_path / filename
                if path.relative_to(project_dir).as_posix() not in files:
                    path.unlink(missing_ok=True)
            if current_path != project_dir:
                stale_dirs.append(current_path)

        for directory in sorted(stale_dirs, key=lambda p: len(p.parts), reverse=True):
            try:
                directory.rmdir()
            except OSError:
                pass

        self._write_files(project_dir, files)

    def _write_files(self, project_dir: Path, files: Dict[str, str]) -> None:
        for name, content in files.items():
            target = project_dir / name
            if target.is_file():
                try:
                    if target.read_text(encoding="utf-8") == content:
                        continue
                except UnicodeDecodeError:
                    pass
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

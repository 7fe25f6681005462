"""Tests for the watch loop: folder management, polling, journal."""

from __future__ import annotations

import json
import time
from pathlib import Path

import pytest

from conftest import MIB, make_file
from refile.config import ConfigStore, LocalConfig, RefileConfig
from refile.engine import VirtualizationEngine
from refile.errors import TransportFailure
from refile.models import PushResult, WatchEvent
from refile.watch import MAX_EVENTS, WatchLoop, folder_id


@pytest.fixture
def loop(engine: VirtualizationEngine) -> WatchLoop:
    return WatchLoop(engine)


class TestFolders:
    """Tests for add/remove/toggle and persistence."""

    def test_add(self, loop: WatchLoop, files_dir: Path):
        folder = loop.add_folder(str(files_dir), 5 * MIB)
        assert folder.path == str(files_dir)
        assert folder.id == folder_id(str(files_dir))
        assert len(folder.id) == 12
        assert folder.enabled
        assert folder.threshold_bytes == 5 * MIB
        assert folder.last_scan_at == 0

    def test_threshold_floor(self, loop: WatchLoop, files_dir: Path):
        assert loop.add_folder(str(files_dir), 10).threshold_bytes == MIB

    def test_add_is_idempotent(self, loop: WatchLoop, files_dir: Path):
        first = loop.add_folder(str(files_dir))
        second = loop.add_folder(str(files_dir) + "/", 8 * MIB)
        assert second == first
        assert len(loop.folders()) == 1

    def test_persists(self, engine: VirtualizationEngine, loop: WatchLoop, files_dir: Path):
        loop.add_folder(str(files_dir))
        doc = json.loads((engine.home / "watches.json").read_text())
        assert doc["folders"][0]["thresholdBytes"] == MIB
        assert WatchLoop(engine).folders() == loop.folders()

    def test_toggle_and_remove(self, loop: WatchLoop, files_dir: Path):
        folder = loop.add_folder(str(files_dir))

        assert loop.toggle_folder(folder.id).enabled is False
        assert loop.toggle_folder(folder.id).enabled is True
        assert loop.toggle_folder("nope") is None

        assert loop.remove_folder(folder.id) is True
        assert loop.remove_folder(folder.id) is False
        assert loop.folders() == []


class TestPoll:
    """Tests for poll()."""

    def test_pushes_large_files(self, loop: WatchLoop, files_dir: Path):
        make_file(files_dir / "big.mp4", MIB + 10)
        make_file(files_dir / "small.txt", 100)
        loop.add_folder(str(files_dir))

        assert loop.poll() == 1

        assert not (files_dir / "big.mp4").exists()
        assert (files_dir / "big.mp4.revid").exists()
        assert (files_dir / "small.txt").exists()
        [event] = loop.events()
        assert event.action == "pushed"
        assert event.file_path == str(files_dir / "big.mp4")
        assert event.size == MIB + 10
        assert loop.folders()[0].last_scan_at > 0

    def test_second_poll_skips_pointers(self, loop: WatchLoop, files_dir: Path):
        make_file(files_dir / "big.mp4", MIB + 10)
        loop.add_folder(str(files_dir))
        loop.poll()
        assert loop.poll() == 0
        assert len(loop.events()) == 1

    def test_disabled_folder_skipped(self, loop: WatchLoop, files_dir: Path):
        make_file(files_dir / "big.mp4", MIB + 10)
        folder = loop.add_folder(str(files_dir))
        loop.toggle_folder(folder.id)

        assert loop.poll() == 0
        assert (files_dir / "big.mp4").exists()

    def test_missing_folder_skipped(self, loop: WatchLoop, tmp_path: Path):
        loop.add_folder(str(tmp_path / "gone"))
        assert loop.poll() == 0

    def test_no_config_is_noop(self, refile_home: Path, files_dir: Path):
        loop = WatchLoop(VirtualizationEngine(home=refile_home))
        make_file(files_dir / "big.mp4", MIB + 10)
        loop.add_folder(str(files_dir))

        assert loop.poll() == 0
        assert (files_dir / "big.mp4").exists()
        assert loop.folders()[0].last_scan_at == 0

    def test_failed_push_journaled(self, configured_home: Path, files_dir: Path):
        class Broken:
            def upload(self, data, file_name, mime):
                raise TransportFailure("upload failed: HTTP 500")

        engine = VirtualizationEngine(home=configured_home, backend_factory=lambda cfg: Broken())
        seen: list[WatchEvent] = []
        loop = WatchLoop(engine, on_event=seen.append)
        make_file(files_dir / "big.mp4", MIB + 10)
        loop.add_folder(str(files_dir))

        assert loop.poll() == 0

        [event] = seen
        assert event.action == "failed"
        assert "HTTP 500" in event.error
        assert loop.events() == seen
        assert (files_dir / "big.mp4").exists()

    def test_missing_default_backend_journaled(
        self, configured_home: Path, files_dir: Path, store_dir: Path
    ):
        ConfigStore(configured_home).save(
            RefileConfig(default_backend="gone", backends={"disk": LocalConfig(path=str(store_dir))})
        )
        loop = WatchLoop(VirtualizationEngine(home=configured_home))
        make_file(files_dir / "big.mp4", MIB + 10)
        loop.add_folder(str(files_dir))

        assert loop.poll() == 0

        [event] = loop.events()
        assert event.action == "failed"
        assert event.error == 'Backend "gone" not found'
        assert (files_dir / "big.mp4").exists()
        assert not (files_dir / "big.mp4.revid").exists()

    def test_batch_error_without_failures_map(
        self, loop: WatchLoop, files_dir: Path, monkeypatch
    ):
        make_file(files_dir / "big.mp4", MIB + 10)
        loop.add_folder(str(files_dir))
        monkeypatch.setattr(
            loop.engine,
            "push",
            lambda paths: PushResult(failed=len(paths), errors=["backend offline"]),
        )

        assert loop.poll() == 0

        [event] = loop.events()
        assert event.action == "failed"
        assert event.error == "backend offline"

    def test_overlapping_poll_is_noop(self, loop: WatchLoop, files_dir: Path):
        make_file(files_dir / "big.mp4", MIB + 10)
        loop.add_folder(str(files_dir))

        loop._poll_guard.acquire()
        try:
            assert loop.poll() == 0
        finally:
            loop._poll_guard.release()
        assert (files_dir / "big.mp4").exists()


class TestJournal:
    """Tests for the event journal."""

    def test_capped(self, engine: VirtualizationEngine, files_dir: Path):
        seeded = [
            {"timestamp": i, "filePath": f"/x/{i}", "size": 1, "action": "pushed"}
            for i in range(MAX_EVENTS)
        ]
        (engine.home / "watches.json").write_text(json.dumps({"folders": [], "events": seeded}))
        loop = WatchLoop(engine)
        make_file(files_dir / "a.bin", MIB)
        make_file(files_dir / "b.bin", MIB + 1)
        loop.add_folder(str(files_dir))

        loop.poll()

        events = loop.events()
        assert len(events) == MAX_EVENTS
        assert events[0].file_path == "/x/2"
        assert events[-1].action == "pushed"

    def test_clear(self, loop: WatchLoop, files_dir: Path):
        make_file(files_dir / "big.mp4", MIB + 10)
        loop.add_folder(str(files_dir))
        loop.poll()
        loop.clear_events()
        assert loop.events() == []
        assert WatchLoop(loop.engine).events() == []


class TestLifecycle:
    """Tests for start()/stop()."""

    def test_background_poll(self, engine: VirtualizationEngine, files_dir: Path):
        make_file(files_dir / "big.mp4", MIB + 10)
        loop = WatchLoop(engine, interval=1)
        loop.add_folder(str(files_dir))

        loop.start()
        try:
            deadline = time.monotonic() + 10
            while time.monotonic() < deadline and not loop.events():
                time.sleep(0.05)
            assert loop.running
        finally:
            loop.stop()

        assert not loop.running
        assert loop.events()[0].action == "pushed"

"""Tests for the rebuild engine.

Cascades are driven by calling ``handle_modification`` directly (the same
coroutine the watcher invokes), so the tests do not depend on poll timing
except for the explicit end-to-end polling test.
"""

import asyncio
import os
import threading
import time
from pathlib import Path
from typing import Any, Optional

import pytest

from livefront.build import ErrorPhase, FileState, RebuildEngine, ScanError
from livefront.compilers import CompileError, CompilerRegistry, TemplateCompiler
from livefront.watch import PollingWatcher, Watcher, WatchCallback, WatchSubscription


def _run(coro):
    """Helper to run an async coroutine in a new event loop."""
    return asyncio.run(coro)


def _templates() -> CompilerRegistry:
    registry = CompilerRegistry()
    registry.register("tmpl", TemplateCompiler())
    return registry


class RecordingWatcher(Watcher):
    """Watcher that only records subscriptions; tests fire events by hand."""

    def __init__(self) -> None:
        super().__init__(default_interval=1.0)

    def subscribe(self, path: Path, callback: WatchCallback, interval: Optional[float] = None) -> WatchSubscription:
        subscription = WatchSubscription(path=Path(path), callback=callback, interval=interval or self.default_interval)
        self._subscriptions[Path(path)] = subscription
        return subscription

    def unsubscribe(self, path: Path) -> bool:
        return self._subscriptions.pop(Path(path), None) is not None


class SelfOnlyCompiler:
    """Copies the source; fails when the source contains a 'boom' line.

    Unlike TemplateCompiler it never reads included files, so a broken
    dependency does not break its dependents.
    """

    output_extension = "html"

    def render(self, source_path: Path, options: dict[str, Any]) -> str:
        text = source_path.read_text()
        if "boom" in text.splitlines():
            raise CompileError("boom")
        return text


class GatedCompiler(SelfOnlyCompiler):
    """Blocks inside render until released; tracks render concurrency.

    With ``blocked`` set only that file waits for the gate.
    """

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.gate.set()
        self.started = threading.Event()
        self.blocked: Optional[Path] = None
        self.renders = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def render(self, source_path: Path, options: dict[str, Any]) -> str:
        with self._lock:
            self.renders += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            if self.blocked is None or source_path == self.blocked:
                self.gate.wait(timeout=5)
            return super().render(source_path, options)
        finally:
            with self._lock:
                self.active -= 1


class ReadThenWaitCompiler(SelfOnlyCompiler):
    """Reads ``held_path`` first, then blocks until released, so its output is from the earlier read."""

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.gate.set()
        self.held = threading.Event()
        self.held_path: Optional[Path] = None
        self.active: dict[Path, int] = {}
        self.max_active: dict[Path, int] = {}
        self._lock = threading.Lock()

    def render(self, source_path: Path, options: dict[str, Any]) -> str:
        with self._lock:
            self.active[source_path] = self.active.get(source_path, 0) + 1
            self.max_active[source_path] = max(self.max_active.get(source_path, 0), self.active[source_path])
        try:
            text = source_path.read_text()
            if source_path == self.held_path:
                self.held.set()
                self.gate.wait(timeout=5)
            return text
        finally:
            with self._lock:
                self.active[source_path] -= 1


@pytest.fixture
def site(tmp_path) -> Path:
    """index and about extend layout; layout includes nav."""
    root = tmp_path.resolve()
    (root / "layout.tmpl").write_text("<html>\ninclude nav\n{{ body }}\n</html>\n")
    (root / "nav.tmpl").write_text("<nav>v1</nav>\n")
    (root / "index.tmpl").write_text("extends layout\n<p>home</p>\n")
    (root / "about.tmpl").write_text("extends layout\n<p>about</p>\n")
    return root


class TestInitialPass:
    """Test start()."""

    def test_compiles_every_source(self, site):
        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            return engine, await engine.start()

        engine, summary = _run(main())

        assert summary.success
        assert {p.name for p in summary.compiled} == {"layout.tmpl", "nav.tmpl", "index.tmpl", "about.tmpl"}
        assert (site / "index.html").read_text() == "<html>\n<nav>v1</nav>\n<p>home</p>\n</html>"
        assert engine.state_of(site / "index.tmpl") == FileState.COMPILED

    def test_records_dependencies(self, site):
        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            await engine.start()
            return engine

        engine = _run(main())

        assert engine.graph.dependents_of(site / "layout.tmpl") == {site / "index.tmpl", site / "about.tmpl"}
        assert engine.graph.dependents_of(site / "nav.tmpl") == {site / "layout.tmpl"}

    def test_no_subscriptions_without_watch(self, site):
        watcher = RecordingWatcher()

        async def main():
            engine = RebuildEngine(site, compilers=_templates(), watcher=watcher)
            return await engine.start()

        summary = _run(main())
        assert summary.watched == []
        assert watcher.subscriptions == []

    def test_watch_subscribes_every_source(self, site):
        watcher = RecordingWatcher()

        async def main():
            engine = RebuildEngine(site, compilers=_templates(), watcher=watcher, watch=True, poll_interval=0.5)
            summary = await engine.start()
            await engine.stop()
            return summary

        summary = _run(main())
        assert {p.name for p in summary.watched} == {"layout.tmpl", "nav.tmpl", "index.tmpl", "about.tmpl"}

    def test_failed_file_still_watched(self, site):
        (site / "broken.tmpl").write_text("include missing\n")
        watcher = RecordingWatcher()

        async def main():
            engine = RebuildEngine(site, compilers=_templates(), watcher=watcher, watch=True)
            return engine, await engine.start()

        engine, summary = _run(main())

        assert not summary.success
        assert summary.failed == [site / "broken.tmpl"]
        assert watcher.is_watching(site / "broken.tmpl")
        assert engine.state_of(site / "broken.tmpl") == FileState.FAILED
        assert engine.errors.get_errors_by_phase(ErrorPhase.COMPILE)[0].file_path == "broken.tmpl"

    def test_unresolved_reference_is_warning(self, site):
        (site / "lost.tmpl").write_text("include gone\n")
        compilers = CompilerRegistry()
        compilers.register("tmpl", SelfOnlyCompiler())

        async def main():
            engine = RebuildEngine(site, compilers=compilers)
            return engine, await engine.start()

        engine, summary = _run(main())

        assert summary.success
        assert [e.reference for e in summary.unresolved] == ["gone"]
        warnings = engine.errors.get_errors_by_phase(ErrorPhase.RESOLVE)
        assert [w.file_path for w in warnings] == ["lost.tmpl"]
        assert not engine.errors.has_errors()

    def test_undecodable_source_is_skipped_not_fatal(self, site):
        (site / "binary.tmpl").write_bytes(b"\xff\xfe\xfa")

        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            return engine, await engine.start()

        engine, summary = _run(main())

        assert site / "index.tmpl" in summary.compiled
        assert site / "binary.tmpl" not in summary.compiled + summary.failed
        assert engine.action_for(site / "binary.tmpl") is None
        errors = engine.errors.get_errors_by_phase(ErrorPhase.SCAN)
        assert [e.file_path for e in errors] == ["binary.tmpl"]
        assert engine.errors.has_errors()

    def test_missing_root_is_fatal(self, tmp_path):
        async def main():
            engine = RebuildEngine(tmp_path / "missing", compilers=_templates())
            try:
                await engine.start()
            finally:
                assert engine.errors.get_errors_by_phase(ErrorPhase.SCAN)

        with pytest.raises(ScanError):
            _run(main())

    def test_recursive_and_output_dir(self, site):
        (site / "pages").mkdir()
        (site / "pages" / "faq.tmpl").write_text("extends ../layout\n<p>faq</p>\n")
        out = site / "public"

        async def main():
            engine = RebuildEngine(site, compilers=_templates(), recursive=True, output_dir=out)
            return await engine.start()

        summary = _run(main())

        assert summary.success
        assert (out / "pages" / "faq.html").exists()
        assert (out / "index.html").exists()
        assert not (site / "index.html").exists()


class TestCascade:
    """Test handle_modification()."""

    def test_layout_change_recompiles_dependents(self, site):
        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            await engine.start()
            (site / "layout.tmpl").write_text("<main>\n{{ body }}\n</main>\n")
            return await engine.handle_modification(site / "layout.tmpl")

        result = _run(main())

        assert result.succeeded
        assert result.compiled == [site / "layout.tmpl", site / "about.tmpl", site / "index.tmpl"]
        assert (site / "index.html").read_text() == "<main>\n<p>home</p>\n</main>"

    def test_single_hop_by_default(self, site):
        """Changing nav recompiles layout but not layout's dependents."""

        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            await engine.start()
            (site / "nav.tmpl").write_text("<nav>v2</nav>\n")
            return await engine.handle_modification(site / "nav.tmpl")

        result = _run(main())

        assert result.compiled == [site / "nav.tmpl", site / "layout.tmpl"]
        assert "v1" in (site / "index.html").read_text()

    def test_transitive_reaches_indirect_dependents(self, site):
        async def main():
            engine = RebuildEngine(site, compilers=_templates(), transitive=True)
            await engine.start()
            (site / "nav.tmpl").write_text("<nav>v2</nav>\n")
            return await engine.handle_modification(site / "nav.tmpl")

        result = _run(main())

        assert result.compiled == [site / "nav.tmpl", site / "layout.tmpl", site / "about.tmpl", site / "index.tmpl"]
        assert "v2" in (site / "index.html").read_text()

    def test_leaf_change_recompiles_only_itself(self, site):
        """Touching index.tmpl regenerates index.html and leaves layout.html alone."""

        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            await engine.start()
            layout_mtime = (site / "layout.html").stat().st_mtime_ns
            result = await engine.handle_modification(site / "index.tmpl")
            return result, layout_mtime

        result, layout_mtime = _run(main())

        assert result.compiled == [site / "index.tmpl"]
        assert result.failed == []
        assert (site / "layout.html").stat().st_mtime_ns == layout_mtime

    def test_dropped_directive_drops_edge(self, site):
        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            await engine.start()
            (site / "index.tmpl").write_text("<p>standalone</p>\n")
            await engine.handle_modification(site / "index.tmpl")
            result = await engine.handle_modification(site / "layout.tmpl")
            return engine, result

        engine, result = _run(main())

        assert engine.graph.dependents_of(site / "layout.tmpl") == {site / "about.tmpl"}
        assert result.compiled == [site / "layout.tmpl", site / "about.tmpl"]

    def test_added_directive_adds_edge(self, site):
        (site / "footer.tmpl").write_text("<footer></footer>\n")

        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            await engine.start()
            (site / "about.tmpl").write_text("extends layout\ninclude footer\n")
            await engine.handle_modification(site / "about.tmpl")
            return engine

        engine = _run(main())
        assert (site / "footer.tmpl", site / "about.tmpl") in engine.graph

    def test_failure_keeps_edges_and_subscription(self, site):
        """A failed compile leaves prior edges and the watch in place."""
        watcher = RecordingWatcher()
        compilers = CompilerRegistry()
        compilers.register("tmpl", SelfOnlyCompiler())

        async def main():
            engine = RebuildEngine(site, compilers=compilers, watcher=watcher, watch=True)
            await engine.start()
            (site / "index.tmpl").write_text("boom\n")
            failed = await engine.handle_modification(site / "index.tmpl")
            (site / "about.tmpl").write_text("extends layout\n<p>about v2</p>\n")
            other = await engine.handle_modification(site / "about.tmpl")
            return engine, failed, other

        engine, failed, other = _run(main())

        assert failed.failed == [site / "index.tmpl"]
        assert not failed.succeeded
        assert (site / "layout.tmpl", site / "index.tmpl") in engine.graph
        assert watcher.is_watching(site / "index.tmpl")
        assert engine.state_of(site / "index.tmpl") == FileState.FAILED

        assert other.succeeded
        assert "about v2" in (site / "about.html").read_text()

    def test_failed_file_does_not_stop_dependents(self, site):
        compilers = CompilerRegistry()
        compilers.register("tmpl", SelfOnlyCompiler())

        async def main():
            engine = RebuildEngine(site, compilers=compilers)
            await engine.start()
            (site / "layout.tmpl").write_text("boom\n")
            return await engine.handle_modification(site / "layout.tmpl")

        result = _run(main())

        assert result.failed == [site / "layout.tmpl"]
        assert result.compiled == [site / "about.tmpl", site / "index.tmpl"]

    def test_recovery_after_fix(self, site):
        compilers = CompilerRegistry()
        compilers.register("tmpl", SelfOnlyCompiler())

        async def main():
            engine = RebuildEngine(site, compilers=compilers)
            await engine.start()
            (site / "index.tmpl").write_text("boom\n")
            await engine.handle_modification(site / "index.tmpl")
            (site / "index.tmpl").write_text("<p>fixed</p>\n")
            result = await engine.handle_modification(site / "index.tmpl")
            return engine, result

        engine, result = _run(main())

        assert result.succeeded
        assert engine.state_of(site / "index.tmpl") == FileState.COMPILED
        # fixed content has no extends: edge re-derived away
        assert (site / "layout.tmpl", site / "index.tmpl") not in engine.graph

    def test_dependent_without_action_is_skipped(self, site):
        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            await engine.start()
            engine.graph.add_edge(site / "nav.tmpl", site / "notes.md")
            return await engine.handle_modification(site / "nav.tmpl")

        result = _run(main())

        assert result.skipped == [site / "notes.md"]
        assert result.succeeded

    def test_unknown_trigger_compiles_dependents_only(self, site):
        async def main():
            engine = RebuildEngine(site, compilers=_templates())
            await engine.start()
            engine.graph.add_edge(site / "data.json", site / "index.tmpl")
            return await engine.handle_modification(site / "data.json")

        result = _run(main())
        assert result.compiled == [site / "index.tmpl"]

    def test_unresolved_reference_during_cascade(self, site):
        async def main():
            engine = RebuildEngine(site, compilers=CompilerRegistry())
            engine.compilers.register("tmpl", SelfOnlyCompiler())
            await engine.start()
            (site / "index.tmpl").write_text("extends layout\ninclude nowhere\n")
            return await engine.handle_modification(site / "index.tmpl")

        result = _run(main())

        assert result.succeeded
        assert [e.reference for e in result.unresolved] == ["nowhere"]


class TestSingleFlight:
    """Test per-file cascade serialization."""

    def test_overlapping_events_coalesce(self, site):
        compiler = GatedCompiler()
        compilers = CompilerRegistry()
        compilers.register("tmpl", compiler)
        index = site / "index.tmpl"

        async def main():
            engine = RebuildEngine(site, compilers=compilers)
            await engine.start()
            compiler.renders = 0
            compiler.max_active = 0
            compiler.started.clear()
            compiler.gate.clear()

            first = asyncio.create_task(engine.handle_modification(index))
            await asyncio.to_thread(compiler.started.wait, 5)
            followups = [asyncio.create_task(engine.handle_modification(index)) for _ in range(3)]
            await asyncio.sleep(0.05)
            compiler.gate.set()
            return await first, await asyncio.gather(*followups)

        first, followups = _run(main())

        # one running cascade plus exactly one queued follow-up
        assert compiler.renders == 2
        assert compiler.max_active == 1
        assert first.compiled == [index]
        assert followups[0] is followups[1] is followups[2]

    def test_different_files_do_not_block_each_other(self, site):
        compiler = GatedCompiler()
        compilers = CompilerRegistry()
        compilers.register("tmpl", compiler)
        (site / "solo.tmpl").write_text("<p>solo</p>\n")
        hung = site / "about.tmpl"

        async def main():
            engine = RebuildEngine(site, compilers=compilers)
            await engine.start()
            compiler.started.clear()
            compiler.blocked = hung
            compiler.gate.clear()

            stuck = asyncio.create_task(engine.handle_modification(hung))
            await asyncio.to_thread(compiler.started.wait, 5)
            # a second file compiles while the first is still blocked
            other = await asyncio.wait_for(engine.handle_modification(site / "solo.tmpl"), timeout=5)
            still_blocked = not stuck.done()
            compiler.gate.set()
            return other, still_blocked, await stuck

        other, still_blocked, stuck = _run(main())
        assert other.compiled == [site / "solo.tmpl"]
        assert still_blocked
        assert stuck.compiled == [hung]

    def test_dependent_compile_does_not_overwrite_newer_output(self, site):
        """A dependent render started on old content finishes before the file's own compile runs."""
        compiler = ReadThenWaitCompiler()
        compilers = CompilerRegistry()
        compilers.register("tmpl", compiler)
        index = site / "index.tmpl"

        async def main():
            engine = RebuildEngine(site, compilers=compilers)
            await engine.start()
            compiler.held_path = index
            compiler.gate.clear()

            # layout's cascade reaches index, whose render reads the old text and stalls
            layout_cascade = asyncio.create_task(engine.handle_modification(site / "layout.tmpl"))
            await asyncio.to_thread(compiler.held.wait, 5)

            index.write_text("extends layout\n<p>v2</p>\n")
            index_cascade = asyncio.create_task(engine.handle_modification(index))
            await asyncio.sleep(0.05)
            waited = not index_cascade.done()

            compiler.gate.set()
            await layout_cascade
            await index_cascade
            return waited

        waited = _run(main())

        assert waited
        assert compiler.max_active[index] == 1
        assert "v2" in (site / "index.html").read_text()


def _bump_mtime(path: Path) -> None:
    future = time.time() + 10
    os.utime(path, (future, future))


class TestWatchEndToEnd:
    """Test a real polling watcher driving cascades."""

    def test_modification_triggers_cascade(self, site):
        async def main():
            engine = RebuildEngine(site, compilers=_templates(), watcher=PollingWatcher(0.05), watch=True)
            await engine.start()
            try:
                (site / "layout.tmpl").write_text("<section>\n{{ body }}\n</section>\n")
                _bump_mtime(site / "layout.tmpl")
                deadline = time.time() + 5
                while time.time() < deadline:
                    if "<section>" in (site / "index.html").read_text():
                        return True
                    await asyncio.sleep(0.05)
                return False
            finally:
                await engine.stop()

        assert _run(main())

"""Tests for structured error collection."""

from livefront.build.error_collector import BuildError, ErrorCollector, ErrorPhase, ErrorSeverity


def _error(severity=ErrorSeverity.ERROR, phase=ErrorPhase.COMPILE, path="index.tmpl", message="bad", line=None, column=None):
    return BuildError(severity=severity, phase=phase, file_path=path, error_message=message, line=line, column=column)


class TestBuildError:
    def test_format_with_location(self):
        text = _error(line=3, column=7).format()
        assert text.splitlines() == ["[ERROR] compile: bad", "  File: index.tmpl:3:7"]

    def test_format_without_file(self):
        assert _error(path=None, phase=ErrorPhase.SCAN).format() == "[ERROR] scan: bad"


class TestErrorCollector:
    """Test collecting and summarizing problems."""

    def test_empty(self):
        collector = ErrorCollector()
        assert not collector.has_errors()
        assert not collector.has_warnings()
        assert collector.format_summary() == "No errors"
        assert collector.format_errors() == "No errors"

    def test_warnings_are_not_errors(self):
        collector = ErrorCollector()
        collector.add_error(_error(severity=ErrorSeverity.WARNING, phase=ErrorPhase.RESOLVE))
        assert collector.has_warnings()
        assert not collector.has_errors()

    def test_counts_and_summary(self):
        collector = ErrorCollector()
        collector.add_error(_error())
        collector.add_error(_error(severity=ErrorSeverity.WARNING))
        collector.add_error(_error(severity=ErrorSeverity.FATAL, phase=ErrorPhase.SCAN))

        assert collector.get_error_count() == {"warnings": 1, "errors": 1, "fatal": 1, "total": 3}
        assert collector.format_summary() == "1 fatal, 1 errors, 1 warnings"

    def test_filters(self):
        collector = ErrorCollector()
        collector.add_error(_error(path="a.tmpl"))
        collector.add_error(_error(path="b.tmpl", phase=ErrorPhase.TRANSPORT, severity=ErrorSeverity.WARNING))

        assert [e.file_path for e in collector.get_errors_for_file("a.tmpl")] == ["a.tmpl"]
        assert [e.file_path for e in collector.get_errors_by_phase(ErrorPhase.TRANSPORT)] == ["b.tmpl"]
        assert len(collector.get_errors(ErrorSeverity.WARNING)) == 1
        assert len(collector.get_errors()) == 2

    def test_bounded_drops_oldest(self):
        collector = ErrorCollector(max_errors=2)
        for name in ("a", "b", "c"):
            collector.add_error(_error(path=name))
        assert [e.file_path for e in collector.get_errors()] == ["b", "c"]

    def test_format_errors_truncates(self):
        collector = ErrorCollector()
        for name in ("a", "b", "c"):
            collector.add_error(_error(path=name))
        report = collector.format_errors(max_errors=1)
        assert "... and 2 more errors" in report
        assert report.endswith("Summary: 3 errors")

    def test_clear(self):
        collector = ErrorCollector()
        collector.add_error(_error())
        collector.clear()
        assert collector.get_errors() == []

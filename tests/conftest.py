"""Pytest configuration and fixtures for livefront tests.

Restores stdout/stderr after each test (Python 3.13 closes captured streams
in some failure paths, see https://github.com/pytest-dev/pytest/issues/11439)
and resets the module-level state of ``livefront.output`` so timestamps and
verbosity never leak between tests.
"""

import sys
import warnings

import pytest

from livefront import output

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)


def _reset_output_state() -> None:
    output._start_time = None
    output._output_stream = None
    output._verbose = True
    output._output_file = None


@pytest.fixture(autouse=True)
def _reset_output():  # noqa: PT004
    """Reset livefront.output globals around each test."""
    _reset_output_state()
    yield
    _reset_output_state()


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test."""
    yield

    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, trylast=True)
def pytest_runtest_teardown(item):  # noqa: ARG001
    """Ensure streams are restored during teardown phase."""
    yield

    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__

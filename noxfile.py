"""nox build configuration for pv-inspect."""

from __future__ import annotations

import nox

# Default sessions.
nox.options.sessions = ["lint", "typing", "test", "coverage-report"]

# Other nox defaults.
nox.options.reuse_existing_virtualenvs = True


@nox.session(name="coverage-report")
def coverage_report(session: nox.Session) -> None:
    """Generate a code coverage report from the test suite."""
    session.install("coverage[toml]")
    session.run("coverage", "report", *session.posargs)


@nox.session
def lint(session: nox.Session) -> None:
    """Run ruff checks and verify formatting."""
    session.install("ruff")
    session.run("ruff", "check", "src", "tests", "noxfile.py")
    session.run("ruff", "format", "--check", "src", "tests", "noxfile.py")


@nox.session
def test(session: nox.Session) -> None:
    """Run tests."""
    session.install("-e", ".[test]")
    session.run(
        "pytest",
        "--cov=pvinspect",
        "--cov-branch",
        "--cov-report=",
        *session.posargs,
    )


@nox.session
def typing(session: nox.Session) -> None:
    """Run mypy."""
    session.install("-e", ".[test,typing]", "nox")
    session.run(
        "mypy",
        *session.posargs,
        "--namespace-packages",
        "--explicit-package-bases",
        "noxfile.py",
        "src",
        "tests",
        env={"MYPYPATH": "src"},
    )

# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for shipwright tests.

Fixtures here are available to every test file automatically. The two
important ones replace the outside world:

  - fake_runner: stands in for run_command. Tests script what gh,
    release-cli, docker and git print and return.
  - sleeps: a sleep function that records how long it was asked to wait
    and returns immediately.
"""

import textwrap
from pathlib import Path
from typing import Optional, Sequence, Union

import pytest

from shipwright.release.exceptions import ToolMissingError
from shipwright.utils.process import CommandResult

Response = Union[CommandResult, BaseException]


class FakeRunner:
    """
    Scripted replacement for run_command.

    Responses are registered per argv prefix. When several responses are
    queued for one prefix they are used in order and the last one repeats.
    The longest matching prefix wins. Unmatched commands succeed silently.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self._rules: dict[tuple[str, ...], list[Response]] = {}
        self._missing: set[str] = set()

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> "FakeRunner":
        result = CommandResult(args=prefix, returncode=returncode, stdout=stdout, stderr=stderr)
        self._rules.setdefault(tuple(prefix), []).append(result)
        return self

    def raise_on(self, *prefix: str, error: BaseException) -> "FakeRunner":
        self._rules.setdefault(tuple(prefix), []).append(error)
        return self

    def missing(self, tool: str) -> "FakeRunner":
        self._missing.add(tool)
        return self

    def __call__(
        self,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        timeout_seconds: int = 300,
        env: Optional[dict[str, str]] = None,
    ) -> CommandResult:
        argv = tuple(str(a) for a in args)
        self.calls.append(argv)

        if argv and argv[0] in self._missing:
            raise ToolMissingError(argv[0])

        matches = [p for p in self._rules if argv[: len(p)] == p]
        if not matches:
            return CommandResult(args=argv, returncode=0, stdout="", stderr="")

        queue = self._rules[max(matches, key=len)]
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return CommandResult(
            args=argv,
            returncode=response.returncode,
            stdout=response.stdout,
            stderr=response.stderr,
        )

    def calls_to(self, *prefix: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[: len(prefix)] == prefix]


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture()
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def payload(tmp_path: Path) -> Path:
    """The stock payload script."""
    path = tmp_path / "foobar.sh"
    path.write_text("#!/bin/sh\necho foobar\n", encoding="utf-8")
    return path


@pytest.fixture()
def ci_env() -> dict[str, str]:
    """A complete, valid set of GitLab CI identity variables."""
    return {
        "CI_PROJECT_URL": "https://gitlab.example.com/group/project",
        "CI_JOB_ID": "4242",
        "CI_COMMIT_SHA": "0123456789abcdef0123456789abcdef01234567",
        "CI_PIPELINE_ID": "777",
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, payload: Path) -> Path:
    """A small valid config that builds two platforms from the payload fixture."""
    config_content = textwrap.dedent(f"""\
        log_level: "DEBUG"
        build:
          payload: "{payload}"
          artifact_name: "tyk-sync-foobar"
          platforms: ["linux_amd64", "windows_amd64"]
    """)
    config_file = tmp_path / "shipwright.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """Valid YAML that fails schema validation (unsupported platform)."""
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text("build:\n  platforms: [\"macos_ppc64le\"]\n", encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file

"""Running operator-sdk scorecard tests and reading their report."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union

logger = logging.getLogger(__name__)

OPERATOR_SDK = "operator-sdk"
DEFAULT_SCORECARD_IMAGE = "scorecard-test:latest"

StrPath = Union[str, "os.PathLike[str]"]
Runner = Callable[[Sequence[str]], "subprocess.CompletedProcess[str]"]

_CONFIG_TEMPLATE = """kind: Configuration
apiversion: scorecard.operatorframework.io/v1alpha3
metadata:
  name: config
stages:
- parallel: true
  tests:
  - image: {image}
    entrypoint:
      - scorecard-test
      - basic-check-spec
    labels:
      suite: basic
      test: basic-check-spec-test
  - image: {image}
    entrypoint:
      - scorecard-test
      - olm-bundle-validation
    labels:
      suite: olm
      test: olm-bundle-validation-test
"""


class ScorecardError(Exception):
    """Raised when scorecard could not be run or its output not understood."""


@dataclass
class ScorecardOptions:
    """Options controlling a scorecard invocation."""

    output_format: str = ""
    selector: list[str] = field(default_factory=list)
    result_file: str = ""
    kubeconfig: Optional[bytes] = None
    namespace: str = ""
    service_account: str = ""
    verbose: bool = False
    wait_time: str = ""


@dataclass(frozen=True)
class ScorecardResult:
    """One test result reported by scorecard."""

    name: str = ""
    log: str = ""
    state: str = ""


@dataclass
class ScorecardReport:
    """The parsed scorecard output; each item holds the results of one test run."""

    stdout: str = ""
    stderr: str = ""
    items: list[tuple[ScorecardResult, ...]] = field(default_factory=list)

    @classmethod
    def from_json(cls, text: str, stderr: str = "") -> "ScorecardReport":
        """Parse scorecard's JSON output."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ScorecardError(f"failed to run operator-sdk scorecard: {exc}") from exc
        if not isinstance(data, dict):
            raise ScorecardError("failed to run operator-sdk scorecard: report is not an object")
        items = [cls._item(raw) for raw in data.get("items") or []]
        return cls(stdout=text, stderr=stderr, items=items)

    @staticmethod
    def _item(raw: Any) -> tuple[ScorecardResult, ...]:
        if not isinstance(raw, dict):
            raise ScorecardError("failed to run operator-sdk scorecard: malformed item")
        status = raw.get("status") or {}
        results = []
        for entry in status.get("results") or []:
            if not isinstance(entry, dict):
                raise ScorecardError("failed to run operator-sdk scorecard: malformed result")
            results.append(
                ScorecardResult(
                    name=str(entry.get("name", "")),
                    log=str(entry.get("log", "")),
                    state=str(entry.get("state", "")),
                )
            )
        return tuple(results)


def _default_runner(argv: Sequence[str]) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(list(argv), capture_output=True, text=True, check=False)


class OperatorSdk:
    """Invokes ``operator-sdk scorecard`` through a replaceable runner."""

    def __init__(
        self,
        scorecard_image: str = "",
        runner: Optional[Runner] = None,
        artifacts_dir: Optional[StrPath] = None,
    ) -> None:
        self.scorecard_image = scorecard_image
        self.runner = runner or _default_runner
        self.artifacts_dir = artifacts_dir

    def scorecard(self, image: str, options: ScorecardOptions) -> ScorecardReport:
        """Run scorecard against ``image`` and return its parsed report."""
        if shutil.which(OPERATOR_SDK) is None:
            raise FileNotFoundError(f"executable file not found in PATH: {OPERATOR_SDK}")

        args = ["scorecard", "--output", options.output_format or "json"]
        args.extend(f"--selector={selector}" for selector in options.selector)

        cleanup: list[str] = []
        try:
            if options.kubeconfig is not None:
                args.extend(["--kubeconfig", self._write_kubeconfig(options.kubeconfig, cleanup)])
            if options.wait_time:
                args.extend(["--wait-time", options.wait_time])
            if options.namespace:
                args.extend(["--namespace", options.namespace])
            if options.service_account:
                args.extend(["--service-account", options.service_account])

            try:
                config_file = self.create_scorecard_config_file()
            except OSError as exc:
                raise ScorecardError(f"could not create scorecard config file: {exc}") from exc
            cleanup.append(config_file)
            args.extend(["--config", config_file])
            if options.verbose:
                args.append("--verbose")
            args.append(image)

            argv = [OPERATOR_SDK, *args]
            logger.info("running scorecard with the following invocation: %s", argv)
            completed = self.runner(argv)
        finally:
            for path in cleanup:
                try:
                    os.remove(path)
                except OSError:
                    pass

        stdout = completed.stdout or ""
        stderr = completed.stderr or ""
        # scorecard exits non-zero both when a test fails and when it cannot
        # run at all; only "FATA" on stderr marks the latter.
        if completed.returncode != 0 and stderr and "FATA" in stderr.upper():
            logger.debug("operator-sdk scorecard failed to run properly: %s", stderr)
            raise ScorecardError(
                f"failed to run operator-sdk scorecard: exit status {completed.returncode}"
            )

        try:
            self._write_scorecard_file(options.result_file, stdout)
        except OSError as exc:
            raise ScorecardError(f"unable to copy result to artifacts directory: {exc}") from exc

        return ScorecardReport.from_json(stdout, stderr)

    def create_scorecard_config_file(self) -> str:
        """Write the scorecard configuration to a temporary file and return its path."""
        image = self.scorecard_image or DEFAULT_SCORECARD_IMAGE
        fd, path = tempfile.mkstemp(prefix="scorecard-test-config-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(_CONFIG_TEMPLATE.format(image=image))
        except OSError:
            os.remove(path)
            raise
        return path

    def _write_kubeconfig(self, content: bytes, cleanup: list[str]) -> str:
        try:
            fd, path = tempfile.mkstemp()
        except OSError as exc:
            raise ScorecardError(
                f"unable to create a temporary kubeconfig file for use with scorecard: {exc}"
            ) from exc
        cleanup.append(path)
        logger.debug("created temporary kubeconfig for use with scorecard at %s", path)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
        except OSError as exc:
            raise ScorecardError(
                f"unable to write a temporary kubeconfig for use with scorecard: {exc}"
            ) from exc
        return path

    def _write_scorecard_file(self, result_file: str, stdout: str) -> None:
        if self.artifacts_dir is not None:
            Path(self.artifacts_dir, result_file).write_text(stdout, encoding="utf-8")
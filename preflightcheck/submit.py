"""Result submission helpers and links to the certification portal."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

_CONNECT_HOST = "connect.redhat.com"
_PRODUCTION_ENV = "prod"


@dataclass
class NoopSubmitter:
    """A submitter that sends nothing, optionally logging why."""

    emit_log: bool = True
    log: Optional[Any] = None
    reason: str = ""

    def submit(self) -> None:
        """Log that results are not being submitted, if logging is enabled."""
        if not self.emit_log:
            return
        msg = "Results are not being sent for submission."
        if self.reason:
            msg = f"{msg} Reason: {self.reason}."
        (self.log if self.log is not None else logger).info(msg)


def build_connect_url(project_id: str, pyxis_env: str = "") -> str:
    """Return the portal page for ``project_id`` in the given environment."""
    host = _CONNECT_HOST
    if pyxis_env and pyxis_env != _PRODUCTION_ENV:
        host = f"connect.{pyxis_env}.redhat.com"
    return f"https://{host}/component/view/{project_id}"


def build_images_url(project_id: str, pyxis_env: str = "") -> str:
    """Return the portal page listing the project's images."""
    return f"{build_connect_url(project_id, pyxis_env)}/images"


def build_test_results_url(project_id: str, test_results_id: str, pyxis_env: str = "") -> str:
    """Return the portal page for one set of test results."""
    return f"{build_connect_url(project_id, pyxis_env)}/certification/test-results/{test_results_id}"


def build_vulnerabilities_url(project_id: str, image_id: str, pyxis_env: str = "") -> str:
    """Return the portal page listing an image's security vulnerabilities."""
    return f"{build_connect_url(project_id, pyxis_env)}/security/vulnerabilities/{image_id}"
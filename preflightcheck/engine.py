"""Running a set of checks against an unpacked image filesystem."""

from __future__ import annotations

import json
import logging
import os
import re
import tarfile
import tempfile
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, BinaryIO, Callable, Iterable, Optional, Union

from preflightcheck.archive import generate_bundle_hash, untar
from preflightcheck.model import Check, CheckLevel, ImageReference, Result, Results

logger = logging.getLogger(__name__)

RPM_MANIFEST_FILENAME = "rpm-manifest.json"
UNKNOWN_CLUSTER_VERSION = {"name": "unknown", "version": "unknown"}

_DEFAULT_REGISTRY = "index.docker.io"
_REPOSITORY_PATTERN = re.compile(
    r"^[a-z0-9]+(?:[._-]+[a-z0-9]+)*(?:/[a-z0-9]+(?:[._-]+[a-z0-9]+)*)*$"
)
_TAG_PATTERN = re.compile(r"^\w[\w.-]{0,127}$")
_SOURCE_RPM_VERSION = re.compile(r"(-[0-9].*)")
_PGP_KEY_ID = re.compile(r".*, Key ID (.*)")

StrPath = Union[str, "os.PathLike[str]"]


@dataclass
class PackageInfo:
    """An installed package as read from an image's package database."""

    name: str = ""
    version: str = ""
    release: str = ""
    arch: str = ""
    source_rpm: str = ""
    epoch: int = 0
    pgp: str = ""
    summary: str = ""


def get_bg_name(srcrpm: str) -> str:
    """Return the package name of a source RPM file name."""
    parts = srcrpm.split("-")
    if len(parts) < 2:
        raise ValueError(f"not a source rpm name: {srcrpm}")
    return "-".join(parts[:-2])


def tag_digest_binding_info(provided_identifier: str, resolved_digest: str) -> tuple[str, bool]:
    """Describe how the given tag or digest binds to the resolved digest.

    Returns the message and whether it should be shown as a warning.
    """
    if provided_identifier.startswith("sha256:"):
        return (
            "You've provided an image by digest. "
            "When submitting this image to Red Hat for certification, "
            "no tag will be associated with this image. "
            "If you would like to associate a tag with this image, "
            "please rerun this tool replacing your image reference with a tag.",
            True,
        )
    return (
        f"This image's tag {provided_identifier} will be paired with digest {resolved_digest} "
        "once this image has been published in accordance "
        "with Red Hat Certification policy. "
        "You may then add or remove any supplemental tags "
        "through your Red Hat Connect portal as you see fit.",
        False,
    )


def _rpm_entry(package: PackageInfo) -> dict[str, str]:
    bg_name = srpm_nevra = pgp_key_id = ""
    if package.source_rpm:
        bg_name = get_bg_name(package.source_rpm)
        found = _SOURCE_RPM_VERSION.search(package.source_rpm)
        end_chop = found.group(0) if found else ""
        end_chop = end_chop.removesuffix(".rpm").removeprefix("-")
        srpm_nevra = f"{bg_name}-{package.epoch}:{end_chop}"
    if package.pgp:
        matches = _PGP_KEY_ID.search(package.pgp)
        if matches:
            pgp_key_id = matches.group(1)
        else:
            logger.debug("string did not match the format required: %s", package.pgp)
    return {
        "architecture": package.arch,
        "gpg": pgp_key_id,
        "name": package.name,
        "nvra": f"{package.name}-{package.version}-{package.release}.{package.arch}",
        "release": package.release,
        "srpm_name": bg_name,
        "srpm_nevra": srpm_nevra,
        "summary": package.summary,
        "version": package.version,
    }


def build_rpm_manifest(packages: Iterable[PackageInfo]) -> dict[str, Any]:
    """Build the RPM manifest document for the given packages."""
    return {"rpms": [_rpm_entry(package) for package in packages]}


def append_unless_optional(results: list[Result], result: Result) -> list[Result]:
    """Append ``result`` unless its check is optional; returns ``results``."""
    if result.metadata.level != CheckLevel.OPTIONAL:
        results.append(result)
    return results


def _parse_reference(image: str) -> tuple[str, str, str]:
    """Split an image reference into registry, repository and tag or digest."""
    if not image:
        raise ValueError("image uri could not be parsed: empty reference")
    name, at, digest = image.partition("@")
    if at:
        if ":" not in digest or not digest.split(":", 1)[1]:
            raise ValueError(f"image uri could not be parsed: invalid digest in {image}")
        identifier = digest
    else:
        slash, colon = name.rfind("/"), name.rfind(":")
        if colon > slash:
            name, identifier = name[:colon], name[colon + 1:]
            if not _TAG_PATTERN.match(identifier):
                raise ValueError(f"image uri could not be parsed: invalid tag in {image}")
        else:
            identifier = "latest"

    first, slash_sep, rest = name.partition("/")
    if slash_sep and ("." in first or ":" in first or first == "localhost"):
        registry, repository = first, rest
        if registry == "docker.io":
            registry = _DEFAULT_REGISTRY
    else:
        registry, repository = _DEFAULT_REGISTRY, name
    if registry == _DEFAULT_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"
    if not _REPOSITORY_PATTERN.match(repository):
        raise ValueError(f"image uri could not be parsed: invalid repository in {image}")
    return registry, repository, identifier


@dataclass
class CheckEngine:
    """Unpacks an image filesystem and runs checks against it."""

    image: str
    checks: list[Check] = field(default_factory=list)
    is_bundle: bool = False
    is_scratch: bool = False
    manifest_list_digest: str = ""
    digest: str = ""
    artifacts_dir: Optional[StrPath] = None
    package_lister: Optional[Callable[[str], Iterable[PackageInfo]]] = None
    cluster_version: Optional[Callable[[], dict[str, str]]] = None
    results: Results = field(default_factory=Results, init=False)
    image_ref: ImageReference = field(default_factory=ImageReference, init=False)

    def execute_checks(self, filesystem: BinaryIO) -> Results:
        """Extract the flattened image read from ``filesystem`` and run every check."""
        logger.info("target image: %s", self.image)
        with tempfile.TemporaryDirectory(prefix="preflight-") as tmpdir:
            fs_path = os.path.join(tmpdir, "fs")
            os.mkdir(fs_path, 0o755)

            logger.debug("extracting container filesystem to %s", fs_path)
            try:
                untar(fs_path, filesystem)
                while filesystem.read(65536):
                    pass
            except (tarfile.TarError, OSError, EOFError) as exc:
                raise RuntimeError(f"failed to extract tarball: {exc}") from exc

            registry, repository, identifier = _parse_reference(self.image)
            self.image_ref = ImageReference(
                image_uri=self.image,
                image_fs_path=fs_path,
                image_registry=registry,
                image_repository=repository,
                image_tag_or_sha=identifier,
                manifest_list_digest=self.manifest_list_digest,
            )

            if not self.is_scratch:
                self._write_rpm_manifest(fs_path)

            if self.is_bundle:
                self.results.tested_on = self._resolve_cluster_version()
            else:
                logger.debug("container checks do not require a cluster, skipping cluster version check")
                self.results.tested_on = dict(UNKNOWN_CLUSTER_VERSION)

            logger.debug("executing checks")
            for check in self.checks:
                self._run_check(check)

            self.results.passed_overall = not (self.results.errors or self.results.failed)

            if self.is_bundle:
                try:
                    self.results.certification_hash = generate_bundle_hash(fs_path, self.artifacts_dir)
                except OSError as exc:
                    logger.error("could not generate bundle hash: %s", exc)
                    self.results.certification_hash = ""
            elif self.digest:
                msg, warn = tag_digest_binding_info(identifier, self.digest)
                logger.info("Warning: %s" if warn else "%s", msg)

        return self.results

    def _resolve_cluster_version(self) -> dict[str, str]:
        if self.cluster_version is None:
            logger.error("could not determine test cluster version: no cluster configured")
            return dict(UNKNOWN_CLUSTER_VERSION)
        try:
            return self.cluster_version()
        except Exception as exc:  # noqa: BLE001 - any failure means unknown
            logger.error("could not determine test cluster version: %s", exc)
            return dict(UNKNOWN_CLUSTER_VERSION)

    def _write_rpm_manifest(self, fs_path: str) -> dict[str, Any]:
        packages: list[PackageInfo] = []
        if self.package_lister is not None:
            try:
                packages = list(self.package_lister(fs_path))
            except Exception as exc:  # noqa: BLE001 - continue without a package list
                logger.error("could not get rpm list, continuing without it: %s", exc)
                packages = []
        manifest = build_rpm_manifest(packages)
        if self.artifacts_dir is not None:
            target = Path(self.artifacts_dir, RPM_MANIFEST_FILENAME)
            target.write_text(json.dumps(manifest, indent=4), encoding="utf-8")
            logger.debug("rpm manifest written to disk: %s", target)
        return manifest

    def _run_check(self, check: Check) -> None:
        self.results.tested_image = self.image
        level = check.metadata.level
        if level in (CheckLevel.OPTIONAL, CheckLevel.WARN):
            logger.info("Check %s is not currently being enforced.", check.name)

        start = time.perf_counter()
        try:
            passed = check.validate(self.image_ref)
        except Exception as exc:  # noqa: BLE001 - a failing check is recorded, not raised
            elapsed = timedelta(seconds=time.perf_counter() - start)
            logger.info("check %s completed: ERROR (%s)", check.name, exc)
            result = Result(check=check, elapsed_time=elapsed).with_error(exc)
            append_unless_optional(self.results.errors, result)
            return
        elapsed = timedelta(seconds=time.perf_counter() - start)
        result = Result(check=check, elapsed_time=elapsed)

        if not passed:
            if level == CheckLevel.WARN:
                logger.info("check %s completed: WARNING", check.name)
                append_unless_optional(self.results.warned, result)
                return
            logger.info("check %s completed: FAILED", check.name)
            append_unless_optional(self.results.failed, result)
            return

        logger.info("check %s completed: PASSED", check.name)
        append_unless_optional(self.results.passed, result)
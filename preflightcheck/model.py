"""Core data types shared by checks, the check engine and the formatters."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Callable, Optional


class CheckLevel(str, enum.Enum):
    """How strictly a check is enforced."""

    BEST = "best"
    OPTIONAL = "optional"
    WARN = "warn"


@dataclass(frozen=True)
class Metadata:
    """Descriptive information about a check."""

    description: str = ""
    level: CheckLevel = CheckLevel.BEST
    knowledge_base_url: str = ""
    check_url: str = ""


@dataclass(frozen=True)
class HelpText:
    """Guidance shown to the user when a check does not pass."""

    message: str = ""
    suggestion: str = ""


@dataclass
class ImageReference:
    """Everything known about the image under test."""

    image_uri: str = ""
    image_fs_path: str = ""
    image_info: Any = None
    image_repository: str = ""
    image_registry: str = ""
    image_tag_or_sha: str = ""
    manifest_list_digest: str = ""


Validator = Callable[[ImageReference], bool]


@dataclass
class Check:
    """A named validation run against an image.

    The validator returns whether the image passes and raises when the
    check itself could not be carried out.
    """

    name: str
    validator: Optional[Validator] = None
    metadata: Metadata = field(default_factory=Metadata)
    help_text: HelpText = field(default_factory=HelpText)

    def validate(self, image_ref: ImageReference) -> bool:
        """Run the check against ``image_ref``."""
        if self.validator is None:
            raise RuntimeError(f"check {self.name} has no validator")
        return bool(self.validator(image_ref))


@dataclass(frozen=True)
class Result:
    """The outcome of running one check."""

    check: Check
    elapsed_time: timedelta = timedelta(0)
    error: Optional[BaseException] = None

    @property
    def name(self) -> str:
        return self.check.name

    @property
    def metadata(self) -> Metadata:
        return self.check.metadata

    @property
    def help_text(self) -> HelpText:
        return self.check.help_text

    def with_error(self, error: BaseException) -> "Result":
        """Return a copy of this result carrying ``error``."""
        return replace(self, error=error)


@dataclass
class Results:
    """The collected outcome of a run of checks."""

    tested_image: str = ""
    passed_overall: bool = False
    tested_on: dict[str, str] = field(default_factory=dict)
    certification_hash: str = ""
    passed: list[Result] = field(default_factory=list)
    failed: list[Result] = field(default_factory=list)
    errors: list[Result] = field(default_factory=list)
    warned: list[Result] = field(default_factory=list)
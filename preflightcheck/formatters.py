"""Formatters that turn check results into JSON, XML or JUnit XML."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Iterable

from preflightcheck.model import Result, Results

DEFAULT_FORMAT = "json"

FormatterFunc = Callable[[Results], bytes]

_LIBRARY_INFO = {"name": "preflightcheck", "version": "0.1.0", "commit": "unknown"}
_MILLISECOND = timedelta(milliseconds=1)
_MICROSECOND = timedelta(microseconds=1)


class FormattingError(Exception):
    """Raised when results cannot be rendered."""


@dataclass(frozen=True)
class ResponseFormatter:
    """A named way of formatting results."""

    pretty_name: str
    file_extension: str
    formatter_func: FormatterFunc

    def format(self, results: Results) -> bytes:
        """Format ``results`` as bytes ready to be written."""
        return self.formatter_func(results)


# -- user response ---------------------------------------------------------

_PASSED_FIELDS = ("name", "elapsed_time", "description")
_ERROR_FIELDS = _PASSED_FIELDS + ("help",)
_FULL_FIELDS = _ERROR_FIELDS + ("suggestion", "knowledgebase_url", "check_url")


def _execution_info(result: Result, fields: tuple[str, ...]) -> dict[str, Any]:
    meta = result.metadata
    helptext = result.help_text
    values = {
        "name": result.name,
        "elapsed_time": float(result.elapsed_time // _MILLISECOND),
        "description": meta.description,
        "help": helptext.message,
        "suggestion": helptext.suggestion,
        "knowledgebase_url": meta.knowledge_base_url,
        "check_url": meta.check_url,
    }
    return {key: values[key] for key in fields if key == "elapsed_time" or values[key]}


def get_response(results: Results) -> dict[str, Any]:
    """Build the user-facing response structure for ``results``."""
    response: dict[str, Any] = {
        "image": results.tested_image,
        "passed": results.passed_overall,
    }
    if results.certification_hash:
        response["certification_hash"] = results.certification_hash
    response["test_library"] = dict(_LIBRARY_INFO)

    section: dict[str, Any] = {
        "passed": [_execution_info(r, _PASSED_FIELDS) for r in results.passed],
        "failed": [_execution_info(r, _FULL_FIELDS) for r in results.failed],
        "errors": [_execution_info(r, _ERROR_FIELDS) for r in results.errors],
    }
    if results.warned:
        section["warning"] = [_execution_info(r, _FULL_FIELDS) for r in results.warned]
    response["results"] = section
    return response


# -- JSON ------------------------------------------------------------------

def _integral_floats(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _integral_floats(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_integral_floats(item) for item in value]
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


_JSON_HTML_ESCAPES = str.maketrans(
    {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026", "\u2028": "\\u2028", "\u2029": "\\u2029"}
)


def generic_json_formatter(results: Results) -> bytes:
    """Format results as indented JSON."""
    response = get_response(results)
    try:
        text = json.dumps(_integral_floats(response), indent=4, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise FormattingError(f"error formatting results with formatter json: {exc}") from exc
    return text.translate(_JSON_HTML_ESCAPES).encode("utf-8")


# -- XML -------------------------------------------------------------------

_XML_ESCAPES = {
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    "\t": "&#x9;",
    "\n": "&#xA;",
    "\r": "&#xD;",
}


def _valid_xml_char(ch: str) -> bool:
    code = ord(ch)
    return (
        code in (0x09, 0x0A, 0x0D)
        or 0x20 <= code <= 0xD7FF
        or 0xE000 <= code <= 0xFFFD
        or 0x10000 <= code <= 0x10FFFF
    )


def _escape(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"unsupported value of type {type(value).__name__}")
    return "".join(
        _XML_ESCAPES.get(ch, ch) if _valid_xml_char(ch) else "\ufffd" for ch in value
    )


class _XmlPrinter:
    """Writes indented XML, placing text-only elements on a single line."""

    def __init__(self, indent: str) -> None:
        self._indent = indent
        self._parts: list[str] = []
        self._depth = 0
        self._indented_in = False
        self._put_newline = False

    def _write_indent(self, delta: int) -> None:
        if delta < 0:
            self._depth -= 1
            if self._indented_in:
                self._indented_in = False
                return
            self._indented_in = False
        if self._put_newline:
            self._parts.append("\n")
        else:
            self._put_newline = True
        self._parts.append(self._indent * self._depth)
        if delta > 0:
            self._depth += 1
            self._indented_in = True

    def start(self, tag: str, attrs: Iterable[tuple[str, Any]] = ()) -> None:
        self._write_indent(1)
        self._parts.append("<" + tag)
        for attr_name, attr_value in attrs:
            self._parts.append(f' {attr_name}="{_escape(attr_value)}"')
        self._parts.append(">")

    def text(self, value: Any) -> None:
        self._parts.append(_escape(value))

    def end(self, tag: str) -> None:
        self._write_indent(-1)
        self._parts.append(f"</{tag}>")

    def getvalue(self) -> bytes:
        return "".join(self._parts).encode("utf-8")


def _go_float(value: float) -> str:
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _xml_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _go_float(value)
    if isinstance(value, str):
        return value
    raise TypeError(f"unsupported value of type {type(value).__name__}")


def _write_element(printer: _XmlPrinter, tag: str, value: Any) -> None:
    if isinstance(value, list):
        for item in value:
            _write_element(printer, tag, item)
        return
    printer.start(tag)
    if isinstance(value, dict):
        for key, item in value.items():
            _write_element(printer, key, item)
    else:
        printer.text(_xml_scalar(value))
    printer.end(tag)


def generic_xml_formatter(results: Results) -> bytes:
    """Format results as indented XML."""
    response = get_response(results)
    printer = _XmlPrinter("    ")
    try:
        _write_element(printer, "UserResponse", response)
    except (TypeError, ValueError) as exc:
        raise FormattingError(f"error formatting results with formatter xml: {exc}") from exc
    return printer.getvalue()


# -- JUnit XML -------------------------------------------------------------

def _with_fraction(whole: int, fraction: int, digits: int) -> str:
    if not fraction:
        return str(whole)
    return f"{whole}." + f"{fraction:0{digits}d}".rstrip("0")


def _duration_string(duration: timedelta) -> str:
    """Render a duration as e.g. ``0s``, ``1.5ms``, ``2m3.1s`` or ``1h0m0s``."""
    nanos = (duration // _MICROSECOND) * 1000
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)
    if nanos < 1000:
        text = f"{nanos}ns"
    elif nanos < 1_000_000:
        text = _with_fraction(*divmod(nanos, 1000), 3) + "µs"
    elif nanos < 1_000_000_000:
        text = _with_fraction(*divmod(nanos, 1_000_000), 6) + "ms"
    else:
        total_seconds, fraction = divmod(nanos, 1_000_000_000)
        seconds = _with_fraction(total_seconds % 60, fraction, 9) + "s"
        minutes = total_seconds // 60
        if minutes == 0:
            text = seconds
        else:
            hours, minutes = divmod(minutes, 60)
            text = f"{minutes}m{seconds}"
            if hours:
                text = f"{hours}h{text}"
    return sign + text


def _suggested_fix(result: Result) -> str:
    return f"{result.help_text.message}: Suggested Fix: {result.help_text.suggestion}"


def junit_xml_formatter(results: Results) -> bytes:
    """Format results as a JUnit XML test suite."""
    image = results.tested_image
    total = timedelta(0)
    cases: list[tuple[list[tuple[str, Any]], tuple[str, str, str] | None, str]] = []

    for result in results.passed:
        attrs = [
            ("classname", image),
            ("name", result.name),
            ("time", "%f" % result.elapsed_time.total_seconds()),
        ]
        cases.append((attrs, None, result.metadata.description))
        total += result.elapsed_time

    for tag, message, group in (
        ("failure", "Failed", [*results.errors, *results.failed]),
        ("warning", "Warn", results.warned),
    ):
        for result in group:
            attrs = [
                ("classname", image),
                ("name", result.name),
                ("time", _duration_string(result.elapsed_time)),
            ]
            cases.append((attrs, (tag, message, _suggested_fix(result)), ""))
            total += result.elapsed_time

    suite_attrs = [
        ("tests", str(len(results.errors) + len(results.failed) + len(results.passed) + len(results.warned))),
        ("failures", str(len(results.errors) + len(results.failed))),
        ("warnings", str(len(results.warned))),
        ("time", "%f" % total.total_seconds()),
        ("name", "Red Hat Certification"),
    ]

    printer = _XmlPrinter("\t")
    try:
        printer.start("testsuites")
        printer.start("testsuite", suite_attrs)
        for attrs, child, text in cases:
            printer.start("testcase", attrs)
            if child is not None:
                tag, message, contents = child
                printer.start(tag, [("message", message), ("type", "")])
                printer.text(contents)
                printer.end(tag)
            printer.text(text)
            printer.end("testcase")
        printer.end("testsuite")
        printer.end("testsuites")
    except (TypeError, ValueError) as exc:
        raise FormattingError(f"error formatting results with formatter junitxml: {exc}") from exc
    return printer.getvalue()


# -- registry --------------------------------------------------------------

_AVAILABLE_FORMATTERS = {
    "json": ResponseFormatter("Generic JSON", "json", generic_json_formatter),
    "xml": ResponseFormatter("Generic XML", "xml", generic_xml_formatter),
    "junitxml": ResponseFormatter("JUnit XML", "xml", junit_xml_formatter),
}


def new_by_name(name: str) -> ResponseFormatter:
    """Return the built-in formatter registered under ``name``."""
    try:
        return _AVAILABLE_FORMATTERS[name]
    except KeyError:
        raise ValueError(f"The requested formatter is unknown: {name}") from None


def new(name: str, extension: str, fn: FormatterFunc) -> ResponseFormatter:
    """Create a formatter from a name, a file extension and a function."""
    if not name:
        raise ValueError("failed to create a new generic formatter: formatter name is required")
    return ResponseFormatter(name, extension, fn)
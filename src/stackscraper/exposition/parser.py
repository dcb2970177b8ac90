"""
Parser for the Prometheus text exposition format.

https://prometheus.io/docs/instrumenting/exposition_formats/#text-format-details

Parsing happens in two stages. Every line is parsed on its own into one of
the line kinds in ``models`` (TYPE, HELP or sample lines). Sample lines are
tokenized with a regular expression scanner and read by a small
recursive-descent parser. The resulting line list is then folded into
``Metric`` records: HELP and TYPE lines are held as pending annotations and
attached to the next sample line, after which both are cleared.

The fold matches annotations to samples by position only. The exposition
format guarantees that HELP/TYPE lines directly precede their samples, so
only the first sample after an annotation block carries the help text and
type; subsequent samples of the same family are reported as untyped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator

from stackscraper.core.errors import ParseError
from stackscraper.exposition.models import (
    HelpLine,
    Line,
    Metric,
    MetricLine,
    MetricType,
    TypeLine,
)

_TOKEN_SPEC = [
    ("STRING", r'"(?:[^"\\\n]|\\.)*"'),
    ("NUMBER", r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?"),
    ("NAME", r"[A-Za-z_][A-Za-z0-9_]*"),
    ("LBRACE", r"\{"),
    ("RBRACE", r"\}"),
    ("EQUALS", r"="),
    ("COMMA", r","),
    ("WS", r"[ \t]+"),
    ("QUOTE", r'"'),
    ("MISMATCH", r"."),
]
_TOKEN_RE = re.compile("|".join(f"(?P<{kind}>{pattern})" for kind, pattern in _TOKEN_SPEC))
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_ESCAPE_RE = re.compile(r"\\(.)")

_DESCRIPTIONS = {
    "STRING": "quoted label value",
    "NUMBER": "numeric value",
    "NAME": "name",
    "LBRACE": "'{'",
    "RBRACE": "'}'",
    "EQUALS": "'='",
    "COMMA": "','",
}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    column: int


def tokenize(line: str) -> Iterator[Token]:
    """Split a sample line into tokens, dropping whitespace."""
    for match in _TOKEN_RE.finditer(line):
        kind = match.lastgroup
        text = match.group()
        column = match.start() + 1
        if kind == "WS":
            continue
        if kind == "QUOTE":
            raise ParseError(f"unterminated label value at column {column}")
        if kind == "MISMATCH":
            raise ParseError(f"unexpected character {text!r} at column {column}")
        yield Token(kind, text, column)  # type: ignore[arg-type]


class _SampleParser:
    """Recursive-descent parser for a single tokenized sample line.

    sample  := NAME labels? NUMBER
    labels  := '{' (label (',' label)* ','?)? '}'
    label   := NAME '=' STRING
    """

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    def parse(self) -> MetricLine:
        name = self._expect("NAME").text
        labels: dict[str, str] = {}
        if self._accept("LBRACE"):
            labels = self._labels()
        value = self._value()
        trailing = self._peek()
        if trailing is not None:
            raise ParseError(f"unexpected {trailing.text!r} at column {trailing.column}")
        return MetricLine(name=name, labels=labels, value=value)

    def _labels(self) -> dict[str, str]:
        labels: dict[str, str] = {}
        while not self._accept("RBRACE"):
            key = self._expect("NAME").text
            self._expect("EQUALS")
            labels[key] = _unescape(self._expect("STRING").text[1:-1])
            if not self._accept("COMMA"):
                self._expect("RBRACE")
                break
        return labels

    def _value(self) -> float:
        token = self._expect("NUMBER")
        return float(token.text)

    def _peek(self) -> Token | None:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def _accept(self, kind: str) -> Token | None:
        token = self._peek()
        if token is not None and token.kind == kind:
            self._pos += 1
            return token
        return None

    def _expect(self, kind: str) -> Token:
        token = self._peek()
        if token is None:
            raise ParseError(f"expected {_DESCRIPTIONS[kind]} but reached end of line")
        if token.kind != kind:
            raise ParseError(
                f"expected {_DESCRIPTIONS[kind]} but found {token.text!r} at column {token.column}"
            )
        self._pos += 1
        return token


def _unescape(value: str) -> str:
    return _ESCAPE_RE.sub(lambda m: "\n" if m.group(1) == "n" else m.group(1), value)


def _parse_comment(line: str) -> Line | None:
    parts = line[1:].split(None, 2)
    if not parts or parts[0] not in ("TYPE", "HELP"):
        # Plain comment
        return None

    keyword = parts[0]
    if len(parts) < 2 or not _NAME_RE.fullmatch(parts[1]):
        raise ParseError(f"{keyword} line requires a metric name")
    name = parts[1]

    if keyword == "HELP":
        return HelpLine(name=name, help=parts[2] if len(parts) > 2 else "")

    if len(parts) < 3:
        raise ParseError(f"TYPE line for {name!r} is missing the metric type")
    try:
        metric_type = MetricType(parts[2])
    except ValueError:
        raise ParseError(f"unknown metric type {parts[2]!r}") from None
    return TypeLine(name=name, type=metric_type)


def parse_line(line: str, line_number: int | None = None) -> Line | None:
    """Parse one line of exposition text.

    Returns None for blank lines and plain comments.
    """
    stripped = line.strip()
    try:
        if not stripped:
            return None
        if stripped.startswith("#"):
            return _parse_comment(stripped)
        return _SampleParser(list(tokenize(stripped))).parse()
    except ParseError as exc:
        if line_number is None:
            raise
        raise ParseError(exc.message, line_number=line_number, line=line) from None


def parse_lines(text: str) -> list[Line]:
    """Parse every line of a payload, skipping blanks and plain comments."""
    lines: list[Line] = []
    for number, raw in enumerate(text.splitlines(), start=1):
        parsed = parse_line(raw, number)
        if parsed is not None:
            lines.append(parsed)
    return lines


def combine_metric(help_line: HelpLine | None, type_line: TypeLine | None, sample: MetricLine) -> Metric:
    """Attach pending annotations to a sample."""
    return Metric(
        name=sample.name,
        type=type_line.type if type_line is not None else MetricType.UNTYPED,
        help=help_line.help if help_line is not None else None,
        labels=dict(sample.labels),
        value=sample.value,
    )


def combine_lines(lines: Iterable[Line]) -> list[Metric]:
    """Fold parsed lines into metrics.

    One pending HELP and one pending TYPE slot; a sample consumes and clears
    both, whatever its name.
    """
    metrics: list[Metric] = []
    pending_help: HelpLine | None = None
    pending_type: TypeLine | None = None

    for line in lines:
        if isinstance(line, TypeLine):
            pending_type = line
        elif isinstance(line, HelpLine):
            pending_help = line
        else:
            metrics.append(combine_metric(pending_help, pending_type, line))
            pending_help = None
            pending_type = None

    return metrics


def parse(text: str) -> list[Metric]:
    """Parse an exposition payload into metrics.

    Raises:
        ParseError: on the first malformed line
    """
    return combine_lines(parse_lines(text))

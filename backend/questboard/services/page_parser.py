"""
Page parser: turns an author's raw page source into structured content.

Source format::

    Free text lines are collected into text blocks.
    <question>
    + the correct variant
    - a wrong variant
    </question>
    More text.
    <question>
    <opened>
    expected answer
    </opened>
    </question>
    <question>
    <img src="https://example.org/map.png" />
    32 -- left
    23 -- top
    7  -- width
    5  -- height
    </question>

Pages are stored verbatim and only parsed when served to a player, so a
malformed page surfaces as a ``PageParseError`` at play time, never on save.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Iterable

from questboard.services.questions import (
    ChoiceQuestion,
    ImageQuestion,
    ImageRectangle,
    OpenedQuestion,
    PageElement,
    Question,
    QuestionElement,
    TextElement,
)

QUESTION_OPEN = "<question>"
QUESTION_CLOSE = "</question>"
OPENED_OPEN = "<opened>"
OPENED_CLOSE = "</opened>"

_IMG_RE = re.compile(r'^<img\s+src="(?P<src>.*)"\s*/>$')
_LEADING_INT_RE = re.compile(r"^[0-9]+$")


class ParseErrorKind(str, enum.Enum):
    UNCLOSED_QUESTION_TAG = "unclosed_question_tag"
    EMPTY_QUESTION_TAG = "empty_question_tag"
    BAD_CHOICE_FORMAT = "bad_choice_format"
    IDENTICAL_CHOICES = "identical_choices"
    MULTIPLE_CORRECT = "multiple_correct"
    NO_CORRECT_CHOICE = "no_correct_choice"
    BAD_OPENED_FORMAT = "bad_opened_format"
    BAD_IMAGE_FORMAT = "bad_image_format"
    UNKNOWN_QUESTION_TYPE = "unknown_question_type"


_MESSAGES: dict[ParseErrorKind, str] = {
    ParseErrorKind.UNCLOSED_QUESTION_TAG: "<question> tag must be closed",
    ParseErrorKind.EMPTY_QUESTION_TAG: "<question> tag cannot be empty",
    ParseErrorKind.BAD_CHOICE_FORMAT: (
        "choice question variant lines must start with + or - followed by text"
    ),
    ParseErrorKind.IDENTICAL_CHOICES: "choice question defines identical choices",
    ParseErrorKind.MULTIPLE_CORRECT: "choice question has multiple correct answers",
    ParseErrorKind.NO_CORRECT_CHOICE: "choice question has no correct answer",
    ParseErrorKind.BAD_OPENED_FORMAT: (
        "opened question must contain three lines: <opened>, correct answer, and </opened>"
    ),
    ParseErrorKind.BAD_IMAGE_FORMAT: (
        "image question must contain 5 lines: <img /> tag, left offset, top offset, "
        "width, height"
    ),
    ParseErrorKind.UNKNOWN_QUESTION_TYPE: "failed to recognize question type",
}


class PageParseError(ValueError):
    def __init__(self, kind: ParseErrorKind) -> None:
        self.kind = kind
        super().__init__(_MESSAGES[kind])


# ---------------------------------------------------------------------------
# Question bodies
# ---------------------------------------------------------------------------

def _parse_choice(lines: list[str]) -> ChoiceQuestion:
    variants: list[str] = []
    correct: int | None = None

    for no, line in enumerate(lines):
        if not line.startswith(("+", "-")):
            raise PageParseError(ParseErrorKind.BAD_CHOICE_FORMAT)
        if line.startswith("+"):
            if correct is not None:
                raise PageParseError(ParseErrorKind.MULTIPLE_CORRECT)
            correct = no

        variant = line[1:].strip()
        if not variant:
            raise PageParseError(ParseErrorKind.BAD_CHOICE_FORMAT)
        if variant in variants:
            raise PageParseError(ParseErrorKind.IDENTICAL_CHOICES)
        variants.append(variant)

    if correct is None:
        raise PageParseError(ParseErrorKind.NO_CORRECT_CHOICE)
    return ChoiceQuestion(variants=tuple(variants), correct=correct)


def _parse_opened(lines: list[str]) -> OpenedQuestion:
    if len(lines) != 3 or lines[2].strip() != OPENED_CLOSE:
        raise PageParseError(ParseErrorKind.BAD_OPENED_FORMAT)
    return OpenedQuestion(correct=lines[1].strip())


def _leading_int(line: str) -> int | None:
    # only the token before the first space counts; the rest is commentary
    token = line.split(" ", 1)[0]
    if not _LEADING_INT_RE.match(token):
        return None
    return int(token)


def _parse_image(src: str, lines: list[str]) -> ImageQuestion:
    if len(lines) != 4:
        raise PageParseError(ParseErrorKind.BAD_IMAGE_FORMAT)
    numbers = [_leading_int(line) for line in lines]
    if any(n is None for n in numbers):
        raise PageParseError(ParseErrorKind.BAD_IMAGE_FORMAT)
    left, top, width, height = numbers
    return ImageQuestion(
        src=src,
        correct_bounds=ImageRectangle(left=left, top=top, width=width, height=height),
    )


def parse_question_body(lines: Iterable[str]) -> Question:
    """Parse the lines strictly between ``<question>`` and ``</question>``."""
    body = list(lines)
    if not body:
        raise PageParseError(ParseErrorKind.EMPTY_QUESTION_TAG)

    first = body[0]
    if first.startswith(("+", "-")):
        return _parse_choice(body)
    if first.strip() == OPENED_OPEN:
        return _parse_opened(body)

    img = _IMG_RE.match(first.strip())
    if img:
        return _parse_image(img.group("src"), body[1:])

    raise PageParseError(ParseErrorKind.UNKNOWN_QUESTION_TYPE)


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

def split_lines(source: str) -> list[str]:
    r"""Break *source* on "\n" only, dropping one trailing "\r" per line.

    Unlike ``str.splitlines`` this keeps separators such as U+2028 inside
    the line they appear in. A final newline does not start an empty line.
    """
    if not source:
        return []
    lines = source.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def parse_page(source: str) -> list[PageElement]:
    """Split *source* into text blocks and questions, in order."""
    elements: list[PageElement] = []
    text = ""

    lines = iter(split_lines(source))
    for line in lines:
        if line.strip() != QUESTION_OPEN:
            if text:
                text += "\n"
            text += line
            continue

        if text:
            elements.append(TextElement(text=text))
            text = ""

        body: list[str] = []
        for inner in lines:
            if inner.strip() == QUESTION_CLOSE:
                break
            body.append(inner)
        else:
            raise PageParseError(ParseErrorKind.UNCLOSED_QUESTION_TAG)

        elements.append(QuestionElement(question=parse_question_body(body)))

    if text:
        elements.append(TextElement(text=text))
    return elements

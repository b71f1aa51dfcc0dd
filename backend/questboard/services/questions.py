"""
Question model: authoring view, player (ask) view, answers and grading.

A ``Question`` carries its answer key and never leaves the server before
the player submits; ``Question.to_ask()`` drops the key and yields the
``AskQuestion`` sent over the gameplay channel. The projection is one-way:
nothing here rebuilds a Question from an AskQuestion.

All models are frozen pydantic models discriminated by ``kind`` so they
round-trip through JSON on the WebSocket without custom codecs.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ImageRectangle(_Frozen):
    left: int = Field(..., ge=0)
    top: int = Field(..., ge=0)
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)

    def contains(self, left: int, top: int) -> bool:
        """Inclusive on all four edges; points above/left of the origin miss."""
        dx = left - self.left
        dy = top - self.top
        if dx < 0 or dy < 0:
            return False
        return dx <= self.width and dy <= self.height


# ---------------------------------------------------------------------------
# Player view (server -> client)
# ---------------------------------------------------------------------------

class AskOpened(_Frozen):
    kind: Literal["opened"] = "opened"


class AskChoice(_Frozen):
    kind: Literal["choice"] = "choice"
    variants: tuple[str, ...]


class AskMultipleChoice(_Frozen):
    kind: Literal["multiple_choice"] = "multiple_choice"
    variants: tuple[str, ...]


class AskImage(_Frozen):
    kind: Literal["image"] = "image"
    src: str


AskQuestion = Annotated[
    Union[AskOpened, AskChoice, AskMultipleChoice, AskImage],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Authoring view (includes the answer key)
# ---------------------------------------------------------------------------

class OpenedQuestion(_Frozen):
    kind: Literal["opened"] = "opened"
    correct: str

    def to_ask(self) -> AskOpened:
        return AskOpened()


class ChoiceQuestion(_Frozen):
    kind: Literal["choice"] = "choice"
    variants: tuple[str, ...]
    correct: int

    def to_ask(self) -> AskChoice:
        return AskChoice(variants=self.variants)


class MultipleChoiceQuestion(_Frozen):
    kind: Literal["multiple_choice"] = "multiple_choice"
    variants: tuple[str, ...]
    correct: frozenset[int]

    def to_ask(self) -> AskMultipleChoice:
        return AskMultipleChoice(variants=self.variants)


class ImageQuestion(_Frozen):
    kind: Literal["image"] = "image"
    src: str
    correct_bounds: ImageRectangle

    def to_ask(self) -> AskImage:
        return AskImage(src=self.src)


Question = Annotated[
    Union[OpenedQuestion, ChoiceQuestion, MultipleChoiceQuestion, ImageQuestion],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Answers (client -> server)
# ---------------------------------------------------------------------------

class OpenedAnswer(_Frozen):
    kind: Literal["opened"] = "opened"
    text: str


class ChoiceAnswer(_Frozen):
    kind: Literal["choice"] = "choice"
    index: int = Field(..., ge=0)


class MultipleChoiceAnswer(_Frozen):
    kind: Literal["multiple_choice"] = "multiple_choice"
    indices: frozenset[Annotated[int, Field(ge=0)]]


class ImageAnswer(_Frozen):
    kind: Literal["image"] = "image"
    left: int = Field(..., ge=0)
    top: int = Field(..., ge=0)


Answer = Annotated[
    Union[OpenedAnswer, ChoiceAnswer, MultipleChoiceAnswer, ImageAnswer],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Page elements
# ---------------------------------------------------------------------------

class TextElement(_Frozen):
    kind: Literal["text"] = "text"
    text: str


class QuestionElement(_Frozen):
    kind: Literal["question"] = "question"
    question: Question


class AskQuestionElement(_Frozen):
    kind: Literal["question"] = "question"
    question: AskQuestion


PageElement = Union[TextElement, QuestionElement]
AskPageElement = Annotated[
    Union[TextElement, AskQuestionElement],
    Field(discriminator="kind"),
]


def ask_page(elements: list[PageElement]) -> list[TextElement | AskQuestionElement]:
    """Project a parsed page to its player-safe view."""
    projected: list[TextElement | AskQuestionElement] = []
    for element in elements:
        if isinstance(element, QuestionElement):
            projected.append(AskQuestionElement(question=element.question.to_ask()))
        else:
            projected.append(element)
    return projected


def questions_of(elements: list[PageElement]) -> list[Question]:
    return [e.question for e in elements if isinstance(e, QuestionElement)]


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------

class WrongQuestionType(Exception):
    """The answer's shape does not match the question's kind."""

    def __init__(self, question_kind: str, answer_kind: str) -> None:
        self.question_kind = question_kind
        self.answer_kind = answer_kind
        super().__init__(
            f"wrong answer type provided: {answer_kind!r} for a {question_kind!r} question"
        )


def check_answer(question: Question, answer: Answer) -> bool:
    """Grade *answer* against *question*. Pure; raises WrongQuestionType."""
    if question.kind != answer.kind:
        raise WrongQuestionType(question.kind, answer.kind)

    if isinstance(question, OpenedQuestion):
        return answer.text == question.correct
    if isinstance(question, ChoiceQuestion):
        return answer.index == question.correct
    if isinstance(question, MultipleChoiceQuestion):
        return set(answer.indices) == set(question.correct)
    return question.correct_bounds.contains(answer.left, answer.top)

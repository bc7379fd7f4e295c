"""
Turns a submitted questionnaire blob into a typed, comparable answer set.

The raw blob maps question id to a dict::

    {"answer": ..., "preference": ..., "importance": ..., "dealbreaker": bool}

Everything is validated here, once, against the question schema so the
scorer only ever sees the tagged unions below.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from ..config import DEFAULT_SCORING_CONFIG
from ..errors import ValidationFailedError
from ..questions import QuestionSchema, QuestionSpec

logger = logging.getLogger(__name__)

PREFER_NOT_TO_ANSWER = "prefer_not_to_answer"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class SingleSelectAnswer(_Frozen):
    kind: Literal["single_select"] = "single_select"
    value: str


class MultiSelectAnswer(_Frozen):
    kind: Literal["multi_select"] = "multi_select"
    values: tuple[str, ...]


class ScaleAnswer(_Frozen):
    kind: Literal["scale"] = "scale"
    value: float


class FreeTextAnswer(_Frozen):
    kind: Literal["free_text"] = "free_text"
    text: str


Answer = Annotated[
    Union[SingleSelectAnswer, MultiSelectAnswer, ScaleAnswer, FreeTextAnswer],
    Field(discriminator="kind"),
]


class AnyPreference(_Frozen):
    kind: Literal["any"] = "any"


class OneOfPreference(_Frozen):
    kind: Literal["one_of"] = "one_of"
    values: tuple[str, ...]


class SamePreference(_Frozen):
    kind: Literal["same"] = "same"


class SimilarPreference(_Frozen):
    kind: Literal["similar"] = "similar"


class DifferentPreference(_Frozen):
    kind: Literal["different"] = "different"


class MorePreference(_Frozen):
    kind: Literal["more"] = "more"


class LessPreference(_Frozen):
    kind: Literal["less"] = "less"


class RangePreference(_Frozen):
    kind: Literal["range"] = "range"
    min: float
    max: float


Preference = Annotated[
    Union[
        AnyPreference,
        OneOfPreference,
        SamePreference,
        SimilarPreference,
        DifferentPreference,
        MorePreference,
        LessPreference,
        RangePreference,
    ],
    Field(discriminator="kind"),
]

_PREFERENCE_KINDS_BY_QUESTION: dict[str, set[str]] = {
    "single_select": {"any", "one_of", "same", "similar", "different"},
    "multi_select": {"any", "one_of", "same", "similar", "different"},
    "scale": {"any", "same", "similar", "different", "more", "less", "range"},
    "free_text": {"any"},
}

_SIMPLE_PREFERENCES = {
    "any": AnyPreference,
    "same": SamePreference,
    "similar": SimilarPreference,
    "different": DifferentPreference,
    "more": MorePreference,
    "less": LessPreference,
}


class QuestionEntry(_Frozen):
    question_id: str
    answer: Answer
    preference: Preference | None = None
    importance: float = 1.0
    is_dealbreaker: bool = False


class NormalizedResponse(_Frozen):
    user_id: str
    schema_version: int
    entries: dict[str, QuestionEntry] = Field(default_factory=dict)


def _fail(question_id: str, message: str) -> ValidationFailedError:
    return ValidationFailedError(f"Question {question_id}: {message}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize_answer(spec: QuestionSpec, raw: Any) -> Answer:
    if spec.kind == "single_select":
        if not isinstance(raw, str):
            raise _fail(spec.id, "single-select answer must be a string")
        if raw != PREFER_NOT_TO_ANSWER and raw not in spec.options:
            raise _fail(spec.id, f"unknown option {raw!r}")
        return SingleSelectAnswer(value=raw)

    if spec.kind == "multi_select":
        if not isinstance(raw, (list, tuple)) or not all(isinstance(v, str) for v in raw):
            raise _fail(spec.id, "multi-select answer must be a list of strings")
        unknown = sorted(set(raw) - set(spec.options))
        if unknown:
            raise _fail(spec.id, f"unknown options {unknown}")
        return MultiSelectAnswer(values=tuple(sorted(set(raw))))

    if spec.kind == "scale":
        if not _is_number(raw):
            raise _fail(spec.id, "scale answer must be a number")
        if raw < spec.min or raw > spec.max:
            raise _fail(spec.id, f"answer {raw} outside [{spec.min}, {spec.max}]")
        return ScaleAnswer(value=float(raw))

    if not isinstance(raw, str):
        raise _fail(spec.id, "free-text answer must be a string")
    return FreeTextAnswer(text=raw)


def _normalize_preference(spec: QuestionSpec, raw: Any) -> Preference | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = {"kind": raw}
    elif isinstance(raw, (list, tuple)):
        raw = {"kind": "one_of", "values": list(raw)}
    if not isinstance(raw, dict) or not isinstance(raw.get("kind"), str):
        raise _fail(spec.id, "preference must name a kind")

    kind = raw["kind"]
    allowed = _PREFERENCE_KINDS_BY_QUESTION[spec.kind]
    if kind not in allowed:
        raise _fail(spec.id, f"preference {kind!r} not valid for {spec.kind} questions")

    if kind in _SIMPLE_PREFERENCES:
        return _SIMPLE_PREFERENCES[kind]()

    if kind == "one_of":
        values = raw.get("values")
        if not isinstance(values, (list, tuple)) or not values or not all(isinstance(v, str) for v in values):
            raise _fail(spec.id, "one_of preference needs a non-empty list of options")
        unknown = sorted(set(values) - set(spec.options))
        if unknown:
            raise _fail(spec.id, f"preference names unknown options {unknown}")
        return OneOfPreference(values=tuple(sorted(set(values))))

    lo, hi = raw.get("min"), raw.get("max")
    if not _is_number(lo) or not _is_number(hi) or lo > hi:
        raise _fail(spec.id, "range preference needs numeric min <= max")
    return RangePreference(min=float(lo), max=float(hi))


def _normalize_importance(question_id: str, raw: Any, cfg: dict[str, Any]) -> tuple[float, bool]:
    weights: dict[str, float] = cfg["IMPORTANCE_WEIGHTS"]
    cap = float(cfg["MAX_IMPORTANCE_WEIGHT"])
    if raw is None:
        raw = cfg["DEFAULT_IMPORTANCE"]
    if isinstance(raw, str):
        level = raw.strip().lower()
        if level not in weights:
            raise _fail(question_id, f"unknown importance {raw!r}")
        return float(weights[level]), level == "dealbreaker"
    if _is_number(raw):
        return max(0.0, min(cap, float(raw))), False
    raise _fail(question_id, "importance must be a level name or a number")


def normalize_response(
    user_id: str,
    raw_answers: Any,
    schema: QuestionSchema,
    *,
    schema_version: int | None = None,
    cfg: dict[str, Any] | None = None,
) -> NormalizedResponse:
    cfg = {**DEFAULT_SCORING_CONFIG, **(cfg or {})}
    if schema_version is not None and schema_version != schema.version:
        raise ValidationFailedError(
            f"Response for user {user_id} uses schema version {schema_version}, expected {schema.version}"
        )
    if not isinstance(raw_answers, dict):
        raise ValidationFailedError(f"Response for user {user_id} must be a mapping of question id to answer")

    specs = schema.by_id()
    entries: dict[str, QuestionEntry] = {}
    for question_id in sorted(raw_answers):
        spec = specs.get(question_id)
        if spec is None:
            logger.debug(f"Ignoring unknown question {question_id} for user {user_id}")
            continue

        raw = raw_answers[question_id]
        if not isinstance(raw, dict):
            raw = {"answer": raw}
        if raw.get("answer") is None:
            continue

        dealbreaker = raw.get("dealbreaker", False)
        if not isinstance(dealbreaker, bool):
            raise _fail(question_id, "dealbreaker flag must be a boolean")

        importance, importance_is_dealbreaker = _normalize_importance(question_id, raw.get("importance"), cfg)
        entries[question_id] = QuestionEntry(
            question_id=question_id,
            answer=_normalize_answer(spec, raw["answer"]),
            preference=_normalize_preference(spec, raw.get("preference")),
            importance=importance,
            is_dealbreaker=dealbreaker or importance_is_dealbreaker,
        )

    return NormalizedResponse(user_id=user_id, schema_version=schema.version, entries=entries)

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from .config import QUESTIONS_PATH
from .errors import ValidationFailedError

QuestionKind = Literal["single_select", "multi_select", "scale", "free_text"]


class QuestionSpec(BaseModel):
    id: str
    kind: QuestionKind
    options: list[str] = Field(default_factory=list)
    min: float | None = None
    max: float | None = None
    tolerance: float | None = None
    hard_filter: bool = False

    @model_validator(mode="after")
    def _check_shape(self) -> "QuestionSpec":
        if self.kind in {"single_select", "multi_select"} and not self.options:
            raise ValueError(f"question {self.id}: select questions need options")
        if self.kind == "scale":
            if self.min is None or self.max is None or self.max <= self.min:
                raise ValueError(f"question {self.id}: scale questions need min < max")
        return self

    @property
    def span(self) -> float:
        if self.min is None or self.max is None:
            return 0.0
        return float(self.max - self.min)


class QuestionSchema(BaseModel):
    version: int
    questions: list[QuestionSpec]

    def by_id(self) -> dict[str, QuestionSpec]:
        return {q.id: q for q in self.questions}

    def get(self, question_id: str) -> QuestionSpec | None:
        return self.by_id().get(question_id)


def parse_question_schema(data: dict[str, Any]) -> QuestionSchema:
    try:
        schema = QuestionSchema.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailedError(f"Invalid question schema: {exc.errors()[0].get('msg')}") from exc
    seen: set[str] = set()
    for q in schema.questions:
        if q.id in seen:
            raise ValidationFailedError(f"Invalid question schema: duplicate question id {q.id}")
        seen.add(q.id)
    return schema


def load_question_schema(path: Path | None = None) -> QuestionSchema:
    with (path or QUESTIONS_PATH).open("r", encoding="utf-8") as f:
        return parse_question_schema(json.load(f))


@lru_cache(maxsize=1)
def get_question_schema() -> QuestionSchema:
    return load_question_schema()

import pytest
from pydantic import ValidationError

from cupid_match.errors import ValidationFailedError
from cupid_match.questions import parse_question_schema
from cupid_match.services.normalizer import (
    MultiSelectAnswer,
    OneOfPreference,
    RangePreference,
    ScaleAnswer,
    SimilarPreference,
    SingleSelectAnswer,
    normalize_response,
)


def test_normalize_builds_typed_entries(schema):
    resp = normalize_response(
        "u1",
        {
            "gender": {"answer": "woman", "preference": ["man", "non_binary"], "importance": "very_important"},
            "interests": {"answer": ["travel", "music", "music"], "preference": "similar"},
            "age": {"answer": 29, "preference": {"kind": "range", "min": 27, "max": 35}},
            "about_me": "Hello there",
        },
        schema,
        schema_version=1,
    )
    assert resp.schema_version == 1
    assert resp.entries["gender"].answer == SingleSelectAnswer(value="woman")
    assert resp.entries["gender"].preference == OneOfPreference(values=("man", "non_binary"))
    assert resp.entries["gender"].importance == 2.0
    assert resp.entries["interests"].answer == MultiSelectAnswer(values=("music", "travel"))
    assert isinstance(resp.entries["interests"].preference, SimilarPreference)
    assert resp.entries["age"].answer == ScaleAnswer(value=29.0)
    assert resp.entries["age"].preference == RangePreference(min=27.0, max=35.0)
    assert resp.entries["about_me"].answer.text == "Hello there"
    assert resp.entries["about_me"].preference is None


def test_unknown_questions_and_blank_answers_are_dropped(schema):
    resp = normalize_response(
        "u1",
        {"favourite_color": {"answer": "blue"}, "religion": {"answer": None}, "tidiness": {"answer": 4}},
        schema,
    )
    assert set(resp.entries) == {"tidiness"}


def test_default_importance_applies_when_missing(schema):
    resp = normalize_response("u1", {"tidiness": {"answer": 4, "preference": "same"}}, schema)
    assert resp.entries["tidiness"].importance == 1.0
    assert resp.entries["tidiness"].is_dealbreaker is False


def test_dealbreaker_importance_sets_flag(schema):
    resp = normalize_response(
        "u1",
        {"wants_children": {"answer": "yes", "preference": "same", "importance": "dealbreaker"}},
        schema,
    )
    entry = resp.entries["wants_children"]
    assert entry.is_dealbreaker is True
    assert entry.importance == 2.0


def test_numeric_importance_is_clamped(schema):
    resp = normalize_response(
        "u1",
        {
            "tidiness": {"answer": 4, "preference": "same", "importance": 7},
            "ambition": {"answer": 2, "preference": "more", "importance": -1},
        },
        schema,
    )
    assert resp.entries["tidiness"].importance == 2.0
    assert resp.entries["ambition"].importance == 0.0


@pytest.mark.parametrize(
    "raw, fragment",
    [
        ({"religion": {"answer": "pastafarian"}}, "unknown option"),
        ({"tidiness": {"answer": 9}}, "outside"),
        ({"tidiness": {"answer": True}}, "must be a number"),
        ({"interests": {"answer": "music"}}, "list of strings"),
        ({"religion": {"answer": "none", "preference": "more"}}, "not valid for single_select"),
        ({"about_me": {"answer": "hi", "preference": "same"}}, "not valid for free_text"),
        ({"age": {"answer": 30, "preference": {"kind": "range", "min": 40, "max": 30}}}, "min <= max"),
        ({"gender": {"answer": "man", "preference": {"kind": "one_of", "values": []}}}, "non-empty"),
        ({"tidiness": {"answer": 3, "importance": "critical"}}, "unknown importance"),
        ({"tidiness": {"answer": 3, "dealbreaker": "yes"}}, "dealbreaker flag"),
    ],
)
def test_invalid_answers_are_rejected(schema, raw, fragment):
    with pytest.raises(ValidationFailedError) as exc:
        normalize_response("u1", raw, schema)
    assert fragment in exc.value.message
    assert exc.value.message.startswith("Question ")


def test_schema_version_mismatch_is_rejected(schema):
    with pytest.raises(ValidationFailedError):
        normalize_response("u1", {"tidiness": {"answer": 3}}, schema, schema_version=2)


def test_non_mapping_blob_is_rejected(schema):
    with pytest.raises(ValidationFailedError):
        normalize_response("u1", ["tidiness", 3], schema)


def test_prefer_not_to_answer_is_accepted_for_single_select(schema):
    resp = normalize_response("u1", {"religion": {"answer": "prefer_not_to_answer"}}, schema)
    assert resp.entries["religion"].answer.value == "prefer_not_to_answer"


def test_normalized_response_is_immutable(schema):
    resp = normalize_response("u1", {"tidiness": {"answer": 3}}, schema)
    with pytest.raises(ValidationError):
        resp.user_id = "u2"


def test_schema_rejects_duplicate_ids():
    with pytest.raises(ValidationFailedError):
        parse_question_schema(
            {
                "version": 1,
                "questions": [
                    {"id": "q", "kind": "free_text"},
                    {"id": "q", "kind": "free_text"},
                ],
            }
        )


def test_schema_rejects_scale_without_bounds():
    with pytest.raises(ValidationFailedError):
        parse_question_schema({"version": 1, "questions": [{"id": "q", "kind": "scale", "min": 5, "max": 1}]})

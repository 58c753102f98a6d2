import pytest

from conftest import START, question_refs
from exam_engine.services.answer_sync import AttemptAnswer, group_by_parent
from exam_engine.services.catalog_service import (
    QuestionCatalog,
    add_question,
    normalize_correct_index,
)
from exam_engine.services.evaluation_service import UNCATEGORIZED, evaluate


@pytest.mark.parametrize(
    "correct, expected",
    [
        ("B", 1),
        (" C ", 2),
        (3, 3),
        ("0", 0),
        ("E", None),
        (7, None),
        (None, None),
        (True, None),
    ],
)
def test_normalize_correct_index(correct, expected) -> None:
    assert normalize_correct_index(correct, ["A", "B", "C", "D"]) == expected


def test_numeric_option_text_wins_over_index() -> None:
    assert normalize_correct_index("1", ["3", "2", "1"]) == 2


def _run(db, refs, answers):
    return evaluate(
        refs,
        group_by_parent(answers),
        QuestionCatalog(db),
        attempt_id="attempt-1",
        owner_id=1,
        submitted_at=START,
    )


def test_correct_wrong_and_unattempted_marks(db, add_atomic) -> None:
    questions = add_atomic("Math", 3)
    answers = [
        AttemptAnswer(questions[0].id, selected=1, time_taken_seconds=10),
        AttemptAnswer(questions[1].id, selected=0, time_taken_seconds=5),
        AttemptAnswer(questions[2].id, selected=None, time_taken_seconds=2),
    ]

    result = _run(db, question_refs(questions), answers)

    assert result.total_questions == 3
    assert result.total_attempted == 2
    assert result.total_correct == 1
    assert result.total_score == 0.75
    assert [o.correct for o in result.outcomes] == [True, False, False]
    assert [o.attempted for o in result.outcomes] == [True, True, False]
    math = result.category_scores["Math"]
    assert math.score == 0.75
    assert math.correct == 1
    assert math.attempted == 2
    assert math.time_spent == 17
    assert result.accuracy == 0.5
    assert result.confidence == pytest.approx(0.6667)


def test_index_authored_answer_matches_selection(db) -> None:
    question = add_question(
        db, prompt="Pick two", options=["1", "2", "3"], correct_answer=1, category="Math"
    )
    db.commit()

    result = _run(db, question_refs([question]), [AttemptAnswer(question.id, selected=1)])
    assert result.total_correct == 1


def test_score_clamps_at_zero(db, add_atomic) -> None:
    questions = add_atomic("Math", 4)
    answers = [AttemptAnswer(q.id, selected=3) for q in questions]

    result = _run(db, question_refs(questions), answers)

    assert result.total_correct == 0
    assert result.total_score == 0.0
    assert result.category_scores["Math"].score == 0.0


def test_missing_answer_counts_as_not_attempted(db, add_atomic) -> None:
    questions = add_atomic("Math", 2)

    result = _run(db, question_refs(questions), [])

    assert result.total_questions == 2
    assert result.total_attempted == 0
    assert result.total_score == 0.0


def test_sub_questions_scored_under_their_own_category(db, add_passage) -> None:
    (passage,) = add_passage("English", subs=3, sub_categories=[None, "Grammar", None])
    answers = [
        AttemptAnswer(f"{passage.id}_0", selected=1, time_taken_seconds=4, parent_id=passage.id),
        AttemptAnswer(f"{passage.id}_1", selected=1, time_taken_seconds=6, parent_id=passage.id),
        AttemptAnswer(f"{passage.id}_2", selected=2, time_taken_seconds=1, parent_id=passage.id),
    ]

    result = _run(db, [{"id": passage.id, "type": "comprehensive"}], answers)

    assert result.total_questions == 3
    assert result.total_correct == 2
    assert result.category_scores["English"].total_questions == 2
    assert result.category_scores["English"].score == 0.75
    assert result.category_scores["Grammar"].correct == 1
    assert result.category_scores["Grammar"].time_spent == 6
    assert result.time_taken == 11


def test_unresolved_reference_scored_as_not_attempted(db, add_atomic) -> None:
    questions = add_atomic("Math", 1)
    refs = question_refs(questions) + [{"id": "gone", "type": "question"}]
    answers = [
        AttemptAnswer(questions[0].id, selected=1),
        AttemptAnswer("gone", selected=1),
    ]

    result = _run(db, refs, answers)

    assert result.unresolved == [{"id": "gone", "type": "question"}]
    assert result.total_questions == 2
    assert result.total_correct == 1
    assert result.category_scores[UNCATEGORIZED].attempted == 0


def test_evaluation_is_deterministic(db, add_atomic) -> None:
    questions = add_atomic("Math", 3)
    answers = [AttemptAnswer(q.id, selected=1) for q in questions]

    first = _run(db, question_refs(questions), answers)
    second = _run(db, question_refs(questions), answers)

    assert first.to_dict() == second.to_dict()

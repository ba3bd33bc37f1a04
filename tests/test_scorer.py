"""Scorer 테스트."""

from proctored_cbt.models.question_model import Exam
from proctored_cbt.models.result_model import ResultStatus
from proctored_cbt.services import scorer


class TestScore:

    def test_all_correct_passes(self, exam, key) -> None:
        result = scorer.score(exam, key, dict(key))
        assert result.score == result.total_marks == 3
        assert result.result_status is ResultStatus.PASS
        assert result.terminated is False
        assert result.passed is True

    def test_empty_responses_score_zero(self, exam, key) -> None:
        result = scorer.score(exam, key, {})
        assert result.score == 0
        assert result.result_status is ResultStatus.FAIL
        assert result.passed is False

    def test_two_of_three_depends_on_threshold(self, exam, key) -> None:
        responses = {"q1": 0, "q2": 1, "q3": 1}

        strict = scorer.score(exam, key, responses, pass_threshold=0.7)
        lenient = scorer.score(exam, key, responses, pass_threshold=0.5)

        assert (strict.score, strict.total_marks) == (2, 3)
        assert strict.result_status is ResultStatus.FAIL
        assert lenient.result_status is ResultStatus.PASS

    def test_deterministic(self, exam, key) -> None:
        responses = {"q1": 2, "q3": 2}
        results = {scorer.score(exam, key, responses, terminated=True) for _ in range(5)}
        assert len(results) == 1

    def test_terminated_flag_passed_through(self, exam, key) -> None:
        result = scorer.score(exam, key, dict(key), terminated=True)
        assert result.terminated is True
        assert result.result_status is ResultStatus.PASS

    def test_threshold_boundary_is_inclusive(self, exam, key) -> None:
        result = scorer.score(exam, key, {"q1": 0}, pass_threshold=1 / 3)
        assert result.result_status is ResultStatus.PASS

    def test_empty_exam_fails_without_division(self) -> None:
        empty = Exam(id="e", title="빈 시험", questions=[], duration_minutes=1)
        result = scorer.score(empty, {}, {})
        assert (result.score, result.total_marks) == (0, 0)
        assert result.result_status is ResultStatus.FAIL

    def test_incorrect_ids_include_unanswered(self, exam, key) -> None:
        assert scorer.incorrect_question_ids(exam, key, {"q1": 0, "q2": 0}) == ["q2", "q3"]

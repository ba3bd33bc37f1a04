"""ExamStore 구현 테스트 (인메모리 / HTTP)."""

import json

import httpx
import pytest

from proctored_cbt.models.result_model import ResultStatus, Submission
from proctored_cbt.services.errors import ExamNotFoundError, InvalidExamError, PersistenceError
from proctored_cbt.services.exam_store import HttpExamStore, InMemoryExamStore, make_exam_store


def _submission(**overrides) -> Submission:
    data = {
        "examId": "exam-test00001",
        "studentName": "홍길동",
        "studentClass": "1반",
        "responses": {"q1": 0, "q2": 1, "q3": 1},
        "terminated": False,
    }
    data.update(overrides)
    return Submission.model_validate(data)


class TestInMemoryExamStore:

    async def test_create_get_and_score(self, exam, key) -> None:
        store = InMemoryExamStore(pass_threshold=0.7)
        await store.create_exam(exam, key, "examiner@school.edu")

        loaded, loaded_key = await store.get_exam(exam.id)
        assert loaded == exam
        assert loaded_key == key

        result = await store.submit_result(_submission())
        assert (result.score, result.total_marks) == (2, 3)
        assert result.result_status is ResultStatus.FAIL
        assert len(store.submissions) == 1

    async def test_store_scores_ignoring_client(self, exam, key) -> None:
        store = InMemoryExamStore()
        await store.create_exam(exam, key, "examiner@school.edu")
        result = await store.submit_result(_submission(responses={}, terminated=True))
        assert result.score == 0
        assert result.terminated is True

    async def test_duplicate_exam_rejected(self, exam, key) -> None:
        store = InMemoryExamStore()
        await store.create_exam(exam, key, "examiner@school.edu")
        with pytest.raises(PersistenceError):
            await store.create_exam(exam, key, "examiner@school.edu")

    async def test_invalid_key_rejected(self, exam) -> None:
        with pytest.raises(InvalidExamError):
            await InMemoryExamStore().create_exam(exam, {"q1": 0}, "examiner@school.edu")

    async def test_unknown_exam(self) -> None:
        store = InMemoryExamStore()
        with pytest.raises(ExamNotFoundError):
            await store.get_exam("exam-missing")
        with pytest.raises(ExamNotFoundError):
            await store.submit_result(_submission(examId="exam-missing"))


class TestHttpExamStore:

    async def test_wire_format(self, exam, key) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen[(request.method, request.url.path)] = json.loads(request.content or b"null")
            if request.url.path == "/api/exams":
                return httpx.Response(200, json={"ok": True})
            if request.url.path == f"/api/exams/{exam.id}":
                return httpx.Response(200, json={**exam.public_dict(), "solutionKey": key})
            if request.url.path == "/api/submit":
                return httpx.Response(200, json={"score": 2, "totalMarks": 3, "resultStatus": "PASS"})
            return httpx.Response(404)

        store = HttpExamStore("http://store.test", transport=httpx.MockTransport(handler))
        await store.create_exam(exam, key, "examiner@school.edu")
        loaded, loaded_key = await store.get_exam(exam.id)
        result = await store.submit_result(_submission(terminated=True))
        await store.aclose()

        created = seen[("POST", "/api/exams")]
        assert created["durationMinutes"] == 1
        assert created["solutionKey"] == key
        assert created["examinerEmail"] == "examiner@school.edu"
        assert seen[("POST", "/api/submit")]["examId"] == exam.id
        assert "score" not in seen[("POST", "/api/submit")]
        assert loaded == exam and loaded_key == key
        assert result.score == 2
        assert result.terminated is True

    async def test_server_error_is_persistence_error(self) -> None:
        store = HttpExamStore("http://store.test", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        with pytest.raises(PersistenceError):
            await store.submit_result(_submission())

    async def test_connection_error_is_persistence_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        store = HttpExamStore("http://store.test", transport=httpx.MockTransport(handler))
        with pytest.raises(PersistenceError):
            await store.get_exam("exam-x")

    async def test_not_found(self) -> None:
        store = HttpExamStore("http://store.test", transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        with pytest.raises(ExamNotFoundError):
            await store.get_exam("exam-x")

    async def test_malformed_response(self) -> None:
        store = HttpExamStore(
            "http://store.test",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"score": "many"})),
        )
        with pytest.raises(PersistenceError):
            await store.submit_result(_submission())


def test_factory_selects_backend() -> None:
    assert isinstance(make_exam_store(""), InMemoryExamStore)
    assert isinstance(make_exam_store("http://store.test"), HttpExamStore)

"""HTTP API 통합 테스트 (TestClient + 인메모리 저장소)."""

import pytest
from fastapi.testclient import TestClient

import api.session as session
from api.app import create_app
from proctored_cbt.models.session_state import SessionStatus
from proctored_cbt.services.exam_store import InMemoryExamStore


@pytest.fixture()
def store() -> InMemoryExamStore:
    return InMemoryExamStore()


@pytest.fixture()
def client(store):
    with TestClient(create_app(store=store)) as c:
        yield c


@pytest.fixture()
def created(client, exam, key):
    body = {**exam.public_dict(), "solutionKey": key, "examinerEmail": "examiner@school.edu"}
    resp = client.post("/api/exams", json=body)
    assert resp.status_code == 200
    return exam


def _begin(client, exam_id: str) -> dict:
    assert client.post("/api/exam/load", json={"examId": exam_id}).status_code == 200
    resp = client.post("/api/exam/register", json={"studentName": "홍길동", "studentClass": "1반"})
    assert resp.status_code == 200
    resp = client.post("/api/exam/start")
    assert resp.status_code == 200
    return resp.json()


class TestStaticPages:

    def test_index_loads_proctor_script(self, client) -> None:
        resp = client.get("/")
        assert resp.status_code == 200
        assert "/static/proctor.js" in resp.text
        assert client.get("/static/proctor.js").status_code == 200


class TestStoreEndpoints:

    def test_get_exam_includes_solution_key(self, client, created, key) -> None:
        data = client.get(f"/api/exams/{created.id}").json()
        assert data["durationMinutes"] == 1
        assert data["solutionKey"] == key
        assert [q["id"] for q in data["questions"]] == ["q1", "q2", "q3"]

    def test_unknown_exam_is_404(self, client) -> None:
        assert client.get("/api/exams/exam-missing").status_code == 404

    def test_duplicate_exam_is_409(self, client, created, key) -> None:
        body = {**created.public_dict(), "solutionKey": key, "examinerEmail": "examiner@school.edu"}
        assert client.post("/api/exams", json=body).status_code == 409

    def test_inconsistent_key_is_422(self, client, exam) -> None:
        body = {**exam.public_dict(), "solutionKey": {"q1": 0}, "examinerEmail": "examiner@school.edu"}
        assert client.post("/api/exams", json=body).status_code == 422

    def test_submit_scores_on_server(self, client, created) -> None:
        resp = client.post("/api/submit", json={
            "examId": created.id,
            "studentName": "홍길동",
            "studentClass": "1반",
            "responses": {"q1": 0, "q2": 1},
            "terminated": False,
        })
        assert resp.json() == {"score": 2, "totalMarks": 3, "resultStatus": "PASS"}


class TestExamFlow:

    def test_start_before_register_is_400(self, client, created) -> None:
        client.post("/api/exam/load", json={"examId": created.id})
        assert client.post("/api/exam/start").status_code == 400

    def test_no_session_is_404(self, client) -> None:
        assert client.get("/api/exam/state").status_code == 404

    def test_start_requests_fullscreen(self, client, created) -> None:
        state = _begin(client, created.id)
        assert state["status"] == "IN_PROGRESS"
        assert state["timeRemainingSeconds"] == 60
        assert state["leaveGuard"] is True
        assert "request_fullscreen" in state["commands"]
        client.post("/api/exam/submit")

    def test_answer_and_submit(self, client, created) -> None:
        _begin(client, created.id)
        client.post("/api/exam/answer", json={"questionId": "q1", "optionIndex": 0})
        client.post("/api/exam/key", json={"key": "ArrowRight"})
        state = client.post("/api/exam/key", json={"key": "2"}).json()
        assert state["responses"] == {"q1": 0, "q2": 1}
        assert state["unansweredIds"] == ["q3"]

        state = client.post("/api/exam/submit").json()
        assert state["status"] == "SUBMITTED"
        assert state["finished"] is True

        result = client.get("/api/exam/result").json()
        assert (result["score"], result["totalMarks"]) == (2, 3)
        assert result["terminated"] is False
        assert result["passed"] is True
        assert result["incorrectIds"] == ["q3"]

    def test_invalid_answer_is_422(self, client, created) -> None:
        _begin(client, created.id)
        resp = client.post("/api/exam/answer", json={"questionId": "q2", "optionIndex": 5})
        assert resp.status_code == 422
        assert client.get("/api/exam/state").json()["responses"] == {}
        client.post("/api/exam/submit")

    def test_visibility_loss_terminates(self, client, created) -> None:
        _begin(client, created.id)
        client.post("/api/exam/answer", json={"questionId": "q1", "optionIndex": 0})

        state = client.post("/api/exam/signal", json={"signal": "visibility_hidden"}).json()
        assert state["status"] == "TERMINATED"
        assert state["violation"] == "visibility_hidden"
        assert "exit_fullscreen" in state["commands"]

        result = client.get("/api/exam/result").json()
        assert result["terminated"] is True
        assert result["score"] == 1

    def test_navigation_attempt_is_not_a_violation(self, client, created) -> None:
        _begin(client, created.id)
        state = client.post("/api/exam/signal", json={"signal": "navigation_attempt"}).json()
        assert state["status"] == "IN_PROGRESS"
        client.post("/api/exam/submit")

    def test_close_terminates(self, client, created) -> None:
        _begin(client, created.id)
        state = client.post("/api/exam/close").json()
        assert state["status"] == "TERMINATED"
        assert state["result"]["terminated"] is True

    def test_question_hidden_until_started(self, client, created) -> None:
        client.post("/api/exam/load", json={"examId": created.id})
        assert client.get("/api/exam/question/0").status_code == 404
        client.post("/api/exam/register", json={"studentName": "홍길동", "studentClass": "1반"})
        client.post("/api/exam/start")

        data = client.get("/api/exam/question/0").json()
        assert data["id"] == "q1"
        assert data["savedAnswer"] is None
        assert "solutionKey" not in data
        client.post("/api/exam/submit")

    def test_result_before_submit_is_400(self, client, created) -> None:
        _begin(client, created.id)
        assert client.get("/api/exam/result").status_code == 400
        client.post("/api/exam/submit")


class TestSessionRegistry:

    @pytest.fixture(autouse=True)
    def registry(self, monkeypatch):
        monkeypatch.setattr(session, "_sessions", {})
        monkeypatch.setattr(session, "_timestamps", {})

    def _attach(self, controller) -> str:
        sid = session.create_session()
        session.put(sid, "api_key", "sk-test")
        session.put(sid, "controller", controller)
        return sid

    @staticmethod
    def _assert_terminated_and_released(controller) -> None:
        assert controller.status is SessionStatus.TERMINATED
        assert controller.result.terminated is True
        assert controller.timer.running is False
        assert controller.monitor.armed is False
        assert controller.environment.fullscreen is False

    def test_expired_session_ends_active_attempt(self, started, monkeypatch) -> None:
        sid = self._attach(started)
        monkeypatch.setattr(session, "SESSION_TTL", -1)

        assert session.get_session(sid) is None
        self._assert_terminated_and_released(started)

    def test_cleanup_expired_ends_active_attempt(self, started, monkeypatch) -> None:
        self._attach(started)
        monkeypatch.setattr(session, "SESSION_TTL", -1)

        assert session.cleanup_expired() == 1
        self._assert_terminated_and_released(started)

    def test_reset_ends_attempt_and_keeps_api_key(self, started) -> None:
        sid = self._attach(started)
        session.reset(sid)

        self._assert_terminated_and_released(started)
        assert session.get(sid, "controller") is None
        assert session.get(sid, "api_key") == "sk-test"

    def test_finished_attempt_untouched_by_expiry(self, started, monkeypatch) -> None:
        started.answer("q1", 0)
        result = started.submit()
        self._attach(started)
        monkeypatch.setattr(session, "SESSION_TTL", -1)

        session.cleanup_expired()
        assert started.status is SessionStatus.SUBMITTED
        assert started.result is result

    def test_close_all_returns_controllers(self, started) -> None:
        self._attach(started)
        session.create_session()

        assert session.close_all() == [started]
        self._assert_terminated_and_released(started)

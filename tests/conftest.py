from __future__ import annotations

import pytest

from proctored_cbt.models.question_model import Exam, Question
from proctored_cbt.services.environment import FakeEnvironment
from proctored_cbt.services.session_controller import SessionController
from proctored_cbt.services.timer import Timer


@pytest.fixture()
def questions() -> list[Question]:
    return [
        Question(id="q1", text="2 + 2 = ?", options=["4", "3", "5", "22"]),
        Question(id="q2", text="수도가 서울인 나라는?", options=["일본", "한국", "중국"]),
        Question(id="q3", text="HTTP 상태 코드 404의 의미는?", options=["OK", "Forbidden", "Not Found", "Teapot"]),
    ]


@pytest.fixture()
def key() -> dict[str, int]:
    return {"q1": 0, "q2": 1, "q3": 2}


@pytest.fixture()
def exam(questions) -> Exam:
    return Exam(id="exam-test00001", title="기초 상식", questions=questions, duration_minutes=1)


@pytest.fixture()
def make_controller(exam, key):
    """FakeEnvironment + 수동 틱 타이머를 쓰는 컨트롤러 팩토리."""

    def _make(**kwargs) -> SessionController:
        kwargs.setdefault("environment", FakeEnvironment())
        kwargs.setdefault("timer", Timer(autorun=False))
        return SessionController(kwargs.pop("exam", exam), kwargs.pop("key", key), **kwargs)

    return _make


@pytest.fixture()
def started(make_controller):
    """등록 후 시작까지 마친 컨트롤러."""
    controller = make_controller()
    controller.register("홍길동", "3학년 2반")
    controller.start()
    return controller

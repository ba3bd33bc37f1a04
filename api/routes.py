"""
api/routes.py — FastAPI 엔드포인트

  /api/exams, /api/submit   : 시험 저장소 (출제 정의 / 공식 채점)
  /api/examiner/*           : 출제자 — 문제지 추출, 시험 발행
  /api/exam/*               : 응시자 — 세션 상태 머신 조작, 환경 신호 수신
"""

import asyncio
import logging
import os
from typing import Dict, Optional

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from pydantic import BaseModel, ConfigDict, Field

import api.session as session
from proctored_cbt.models.question_model import Exam
from proctored_cbt.models.result_model import Submission
from proctored_cbt.services.environment import BrowserEnvironment, Signal
from proctored_cbt.services.errors import (
    ExamNotFoundError,
    ExtractionError,
    InvalidExamError,
    InvalidResponseError,
    PersistenceError,
    SessionSetupError,
)
from proctored_cbt.services.exam_authoring import publish_exam
from proctored_cbt.services.exam_store import ExamStore
from proctored_cbt.services.extractor import extract_exam
from proctored_cbt.services.session_controller import EventKind, SessionController, SessionEvent

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_PDF_SIZE = 50 * 1024 * 1024  # 50 MB


# ── Pydantic request bodies ──────────────────────────────────────────────────

class _CamelBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ApiKeyBody(BaseModel):
    api_key: str


class CreateExamBody(Exam):
    solution_key: Dict[str, int] = Field(..., alias="solutionKey")
    examiner_email: str = Field(..., alias="examinerEmail")


class PublishBody(_CamelBody):
    title: str
    duration_minutes: int = Field(..., alias="durationMinutes")
    examiner_email: str = Field(..., alias="examinerEmail")


class LoadExamBody(_CamelBody):
    exam_id: Optional[str] = Field(None, alias="examId")


class RegisterBody(_CamelBody):
    student_name: str = Field(..., alias="studentName")
    student_class: str = Field(..., alias="studentClass")


class AnswerBody(_CamelBody):
    question_id: str = Field(..., alias="questionId")
    option_index: int = Field(..., alias="optionIndex")


class NavigateBody(BaseModel):
    delta: int = 0


class GoToBody(BaseModel):
    index: int = 0


class ReviewBody(BaseModel):
    show: bool = True


class KeyPressBody(BaseModel):
    key: str


class SignalBody(BaseModel):
    signal: Signal


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _store(request: Request) -> ExamStore:
    return request.app.state.store


def _sid(request: Request) -> str:
    return request.state.session_id


def _controller(request: Request) -> SessionController:
    controller: Optional[SessionController] = session.get(_sid(request), "controller")
    if controller is None:
        raise HTTPException(status_code=404, detail="시험 세션이 없습니다.")
    return controller


def _state_response(controller: SessionController) -> dict:
    d = controller.snapshot()
    if isinstance(controller.environment, BrowserEnvironment):
        d["commands"] = controller.environment.drain_commands()
        d["leaveGuard"] = controller.environment.leave_guard
    return d


async def _dispatch(controller: SessionController, event: SessionEvent) -> dict:
    try:
        await controller.dispatch(event)
    except InvalidResponseError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _state_response(controller)


# ══════════════════════════════════════════════════════════════════════════════
# 시험 저장소
# ══════════════════════════════════════════════════════════════════════════════

@router.post("/api/exams")
async def store_create_exam(body: CreateExamBody, request: Request):
    exam = Exam.model_validate(body.model_dump(include={"id", "title", "questions", "duration_minutes"}))
    try:
        await _store(request).create_exam(exam, body.solution_key, body.examiner_email)
    except InvalidExamError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": True}


@router.get("/api/exams/{exam_id}")
async def store_get_exam(exam_id: str, request: Request):
    try:
        exam, key = await _store(request).get_exam(exam_id)
    except ExamNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {**exam.public_dict(), "solutionKey": key}


@router.post("/api/submit")
async def store_submit(body: Submission, request: Request):
    try:
        result = await _store(request).submit_result(body)
    except ExamNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {
        "score": result.score,
        "totalMarks": result.total_marks,
        "resultStatus": result.result_status.value,
    }


# ══════════════════════════════════════════════════════════════════════════════
# 출제자
# ══════════════════════════════════════════════════════════════════════════════

@router.post("/api/set-api-key")
async def set_api_key(body: ApiKeyBody, request: Request):
    key = body.api_key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="API 키가 비어 있습니다.")
    if not key.startswith(("sk-", "sk-proj-")):
        raise HTTPException(status_code=400, detail="올바른 OpenAI API 키 형식이 아닙니다 (sk-... 형식).")
    session.put(_sid(request), "api_key", key)
    return {"ok": True}


@router.post("/api/examiner/extract")
async def examiner_extract(request: Request, file: UploadFile = File(...)):
    api_key = session.get(_sid(request), "api_key") or os.getenv("OPENAI_API_KEY", "")
    if not api_key:
        raise HTTPException(status_code=400, detail="API 키가 설정되지 않았습니다.")

    file_bytes = await file.read()
    if len(file_bytes) > MAX_PDF_SIZE:
        raise HTTPException(status_code=413, detail="PDF 파일이 너무 큽니다 (최대 50MB).")
    try:
        extracted = await asyncio.to_thread(extract_exam, file_bytes, api_key)
    except ExtractionError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RuntimeError:
        raise HTTPException(
            status_code=503,
            detail="AI 서비스 오류가 발생했습니다. 잠시 후 다시 시도해 주세요.",
        )

    session.put(_sid(request), "extracted", extracted)
    return {
        "ok": True,
        "count": len(extracted.questions),
        "questions": [q.model_dump() for q in extracted.questions],
        "keyReady": True,
    }


@router.post("/api/examiner/publish")
async def examiner_publish(body: PublishBody, request: Request):
    extracted = session.get(_sid(request), "extracted")
    if extracted is None:
        raise HTTPException(status_code=400, detail="추출된 문제가 없습니다.")
    try:
        exam, key = await publish_exam(
            _store(request),
            extracted.questions,
            extracted.solution_key,
            body.title,
            body.duration_minutes,
            body.examiner_email,
        )
    except InvalidExamError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceError as e:
        logger.error(f"시험 저장 실패: {e}")
        raise HTTPException(status_code=503, detail="시험 저장에 실패했습니다. 다시 시도해 주세요.")

    session.put(_sid(request), "published", (exam, key))
    return {"ok": True, "examId": exam.id}


# ══════════════════════════════════════════════════════════════════════════════
# 응시자
# ══════════════════════════════════════════════════════════════════════════════

@router.post("/api/exam/load")
async def load_exam(body: LoadExamBody, request: Request):
    sid = _sid(request)
    if body.exam_id:
        try:
            exam, key = await _store(request).get_exam(body.exam_id)
        except ExamNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except PersistenceError:
            raise HTTPException(status_code=503, detail="시험 저장소에 연결할 수 없습니다.")
    else:
        published = session.get(sid, "published")
        if published is None:
            raise HTTPException(status_code=400, detail="등록된 시험이 없습니다.")
        exam, key = published

    old: Optional[SessionController] = session.get(sid, "controller")
    if old is not None:
        old.teardown()

    controller = SessionController(exam, key, store=_store(request))
    session.put(sid, "controller", controller)
    return {
        "ok": True,
        "examId": exam.id,
        "title": exam.title,
        "durationMinutes": exam.duration_minutes,
        "total": len(exam.questions),
    }


@router.post("/api/exam/register")
async def register(body: RegisterBody, request: Request):
    controller = _controller(request)
    try:
        controller.register(body.student_name, body.student_class)
    except SessionSetupError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _state_response(controller)


@router.post("/api/exam/start")
async def start(request: Request):
    controller = _controller(request)
    try:
        controller.start()
    except SessionSetupError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _state_response(controller)


@router.get("/api/exam/state")
async def get_state(request: Request):
    return _state_response(_controller(request))


@router.get("/api/exam/question/{index}")
async def get_question(index: int, request: Request):
    controller = _controller(request)
    questions = controller.exam.questions
    if not controller.status.is_active or not (0 <= index < len(questions)):
        raise HTTPException(status_code=404, detail="문제를 찾을 수 없습니다.")

    q = questions[index]
    d = q.model_dump()
    d.update({
        "index": index,
        "total": len(questions),
        "savedAnswer": controller.state.responses.get(q.id),
    })
    return d


@router.post("/api/exam/answer")
async def answer(body: AnswerBody, request: Request):
    event = SessionEvent(EventKind.ANSWER, question_id=body.question_id, option_index=body.option_index)
    return await _dispatch(_controller(request), event)


@router.post("/api/exam/navigate")
async def navigate(body: NavigateBody, request: Request):
    return await _dispatch(_controller(request), SessionEvent(EventKind.NAVIGATE, delta=body.delta))


@router.post("/api/exam/goto")
async def go_to(body: GoToBody, request: Request):
    return await _dispatch(_controller(request), SessionEvent(EventKind.GO_TO, index=body.index))


@router.post("/api/exam/review")
async def review(body: ReviewBody, request: Request):
    kind = EventKind.ENTER_REVIEW if body.show else EventKind.EXIT_REVIEW
    return await _dispatch(_controller(request), SessionEvent(kind))


@router.post("/api/exam/key")
async def key_press(body: KeyPressBody, request: Request):
    return await _dispatch(_controller(request), SessionEvent(EventKind.KEY_PRESS, key=body.key))


@router.post("/api/exam/submit")
async def submit(request: Request):
    return await _dispatch(_controller(request), SessionEvent(EventKind.SUBMIT))


@router.post("/api/exam/signal")
async def signal(body: SignalBody, request: Request):
    controller = _controller(request)
    if isinstance(controller.environment, BrowserEnvironment):
        controller.environment.deliver(body.signal)
    # 위반 이벤트는 큐에 들어가므로 한 번 양보해 drain이 돌게 한다
    await asyncio.sleep(0)
    return _state_response(controller)


@router.post("/api/exam/close")
async def close(request: Request):
    controller = _controller(request)
    controller.teardown()
    return _state_response(controller)


@router.get("/api/exam/result")
async def get_result(request: Request):
    controller = _controller(request)
    if controller.result is None:
        raise HTTPException(status_code=400, detail="시험이 아직 제출되지 않았습니다.")

    official = controller.authoritative_result
    shown = official or controller.result
    return {
        "score": shown.score,
        "totalMarks": shown.total_marks,
        "resultStatus": shown.result_status.value,
        "passed": shown.passed,
        "terminated": controller.result.terminated,
        "official": official is not None,
        "reportError": controller.report_error,
        "studentName": controller.state.student_name,
        "studentClass": controller.state.student_class,
        "incorrectIds": controller.incorrect_question_ids(),
    }


@router.post("/api/reset")
async def reset_session(request: Request):
    session.reset(_sid(request))
    return {"ok": True}

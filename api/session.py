"""
api/session.py — 멀티유저 인메모리 세션 (쿠키 기반)

각 사용자에게 UUID 세션 ID를 발급하고, 세션별로 독립된 상태를 유지.
TTL(기본 1시간) 경과 시 자동 만료. 만료/초기화 시 진행 중인 응시 세션은
teardown()으로 타이머·감시를 해제한다.
"""

import threading
import time
import uuid
from typing import Any, List

from config import SESSION_TTL

_lock = threading.Lock()
_sessions: dict[str, dict[str, Any]] = {}
_timestamps: dict[str, float] = {}


def _new_state() -> dict[str, Any]:
    return {
        "api_key": "",
        "extracted": None,      # ExtractedExam (출제자 미리보기)
        "published": None,      # (Exam, SolutionKey) 최근 발행한 시험
        "controller": None,     # SessionController (응시자)
    }


def _teardown(states: List[dict[str, Any]]) -> None:
    for state in states:
        controller = state.get("controller")
        if controller is not None:
            controller.teardown()


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> dict[str, Any] | None:
    """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
    expired = None
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            expired = _sessions.pop(sid)
            del _timestamps[sid]
        else:
            _timestamps[sid] = time.time()  # 접근 시 갱신
            return _sessions[sid]
    _teardown([expired])
    return None


def get(sid: str, key: str, default=None):
    """세션에서 값 읽기."""
    session = get_session(sid)
    if session is None:
        return default
    return session.get(key, default)


def put(sid: str, key: str, value) -> None:
    """세션에 값 쓰기."""
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def reset(sid: str) -> None:
    """세션 초기화 (API 키는 유지). 진행 중이던 응시는 강제 종료된다."""
    old = None
    with _lock:
        if sid in _sessions:
            old = _sessions[sid]
            _sessions[sid] = _new_state()
            _sessions[sid]["api_key"] = old.get("api_key", "")
            _timestamps[sid] = time.time()
    if old is not None:
        _teardown([old])


def cleanup_expired() -> int:
    """만료된 세션을 정리. 제거된 수 반환."""
    now = time.time()
    with _lock:
        expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        removed = [_sessions.pop(sid) for sid in expired]
        for sid in expired:
            del _timestamps[sid]
    _teardown(removed)
    return len(removed)


def close_all() -> List[Any]:
    """
    서버 종료 시 모든 세션을 정리. 진행 중인 응시는 강제 종료된다.
    결과 전송을 기다릴 수 있도록 정리한 SessionController 목록을 반환.
    """
    with _lock:
        states = list(_sessions.values())
        _sessions.clear()
        _timestamps.clear()
    _teardown(states)
    return [s["controller"] for s in states if s.get("controller") is not None]

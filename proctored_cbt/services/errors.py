"""
services/errors.py

시험 엔진 예외 계층.
입력/검증 오류는 ValueError, 인프라 오류는 RuntimeError 계열로 두어
라우터에서 4xx / 503 으로 그대로 매핑할 수 있게 한다.
"""


class CBTError(Exception):
    """모든 CBT 예외의 기반 클래스."""


class SessionSetupError(CBTError, ValueError):
    """시험 미로드, 응시자 정보 누락, 잘못된 상태에서의 시작 요청."""


class InvalidResponseError(CBTError, ValueError):
    """존재하지 않는 문제 ID 또는 범위를 벗어난 보기 인덱스."""


class InvalidExamError(CBTError, ValueError):
    """시험/정답표 불변식 위반 (ID 불일치, 인덱스 범위 초과 등)."""


class ExtractionError(CBTError, ValueError):
    """문제지 추출 결과가 비어 있거나 형식이 잘못됨. 시험은 생성되지 않는다."""


class ExamNotFoundError(CBTError, LookupError):
    """저장소에 해당 시험 ID가 없음."""


class PersistenceError(CBTError, RuntimeError):
    """저장소에 연결할 수 없거나 저장소가 요청을 거부함."""

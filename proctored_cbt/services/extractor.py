"""
services/extractor.py

문제지 PDF → 문제 리스트 + 정답표 추출 (멀티모달 비전).
Public API:
  - extract_exam(file_bytes, api_key, client) -> ExtractedExam
  - parse_extraction_response(raw) -> ExtractedExam

설계 원칙:
- PDF 페이지를 이미지로 변환 → 비전 모델에 고정 지시 프롬프트와 함께 한 번에 전송
  (문제 ID와 정답표 키가 문서 전체에서 일관되어야 하므로 페이지를 나누지 않는다)
- 응답은 JSON 객체만 허용. 형식 오류/빈 결과/ID 불일치는 ExtractionError
- 부분 결과로 시험을 만들지 않는다
"""

import base64
import json
import logging
import re
import time
from typing import Dict, List, Optional

import fitz  # PyMuPDF
from openai import APIConnectionError, APIError, APITimeoutError, OpenAI, RateLimitError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config import MAX_PDF_PAGES, MODEL_NAME, VISION_DPI
from proctored_cbt.models.question_model import Question, validate_solution_key
from proctored_cbt.services.errors import ExtractionError, InvalidExamError

logger = logging.getLogger(__name__)

# ── 상수 ─────────────────────────────────────────────────────────────────────
_MAX_API_RETRIES = 3
_BACKOFF_BASE = 1.0

_EXTRACTION_PROMPT = (
    "I have a PDF file which is a question paper with multiple choice questions (MCQs).\n"
    "\n"
    "Please extract all the questions from the PDF and identify the correct answer for each question.\n"
    "The correct answer might be explicitly marked in the PDF (e.g., bolded, underlined, or with a checkmark),\n"
    "or you should determine the correct answer by solving the question if it's a factual or logical problem.\n"
    "\n"
    "Return the data in the following JSON format:\n"
    "{\n"
    '  "questions": [\n'
    '    { "id": "q1", "text": "Question text here", "options": ["Option A", "Option B", "Option C", "Option D"] }\n'
    "  ],\n"
    '  "solutionKey": { "q1": 0 }\n'
    "}\n"
    "solutionKey values are the 0-based index of the correct option.\n"
    "Ensure the question IDs match between the questions array and the solutionKey object.\n"
    "Return only the JSON object. No markdown, no commentary."
)


class ExtractedExam(BaseModel):
    """추출 결과. questions와 solutionKey의 ID가 일대일 대응함이 보장된다."""

    model_config = ConfigDict(populate_by_name=True)

    questions: List[Question] = Field(..., min_length=1)
    solution_key: Dict[str, int] = Field(..., alias="solutionKey")


def _make_client(api_key: str) -> OpenAI:
    """API 키로 OpenAI 클라이언트를 생성."""
    if not api_key:
        raise RuntimeError("OpenAI API 키가 설정되지 않았습니다.")
    return OpenAI(api_key=api_key)


# ══════════════════════════════════════════════════════════════════════════════
# Public API
# ══════════════════════════════════════════════════════════════════════════════

def extract_exam(
    file_bytes: bytes,
    api_key: str = "",
    client: Optional[OpenAI] = None,
) -> ExtractedExam:
    """
    PDF 바이트 → ExtractedExam.

    Raises:
        ExtractionError: PDF가 비었거나 열 수 없음, 모델 응답이 잘못됨.
        RuntimeError:    API 키 없음 / API 최종 실패.
    """
    if not file_bytes:
        raise ExtractionError("PDF 파일이 비어 있습니다.")
    client = client or _make_client(api_key)

    page_images = _render_pages(file_bytes)
    logger.info(f"extract_exam: {len(page_images)}페이지 이미지 변환 완료")

    user_content: list = [{"type": "text", "text": _EXTRACTION_PROMPT}]
    for b64_img in page_images:
        user_content.append({
            "type": "image_url",
            "image_url": {"url": f"data:image/png;base64,{b64_img}", "detail": "high"},
        })

    raw = _call_openai(user_content, client)
    extracted = parse_extraction_response(raw)
    logger.info(f"extract_exam: 총 {len(extracted.questions)}개 문제 추출 완료")
    return extracted


def parse_extraction_response(raw: Optional[str]) -> ExtractedExam:
    """모델 JSON 응답 → ExtractedExam. 어떤 형식 오류든 ExtractionError."""
    cleaned = _clean_json_response(raw or "")
    if not cleaned:
        raise ExtractionError("추출 결과가 비어 있습니다.")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"추출 결과가 올바른 JSON이 아닙니다: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionError("추출 결과는 JSON 객체여야 합니다.")

    try:
        extracted = ExtractedExam.model_validate(data)
    except ValidationError as e:
        raise ExtractionError(f"추출 결과 형식 오류: {e.error_count()}개 필드 검증 실패") from e

    try:
        validate_solution_key(extracted.questions, extracted.solution_key)
    except InvalidExamError as e:
        raise ExtractionError(str(e)) from e
    return extracted


# ══════════════════════════════════════════════════════════════════════════════
# 내부 헬퍼
# ══════════════════════════════════════════════════════════════════════════════

def _render_pages(file_bytes: bytes) -> List[str]:
    """PDF 각 페이지를 PNG base64 문자열로 변환."""
    try:
        doc = fitz.open(stream=file_bytes, filetype="pdf")
    except Exception as e:
        logger.error(f"PDF 열기 실패 - {e}")
        raise ExtractionError("PDF 파일을 열 수 없습니다.") from e

    try:
        if len(doc) == 0:
            raise ExtractionError("PDF에 페이지가 없습니다.")
        if len(doc) > MAX_PDF_PAGES:
            raise ExtractionError(
                f"PDF 페이지가 너무 많습니다 ({len(doc)}페이지). 최대 {MAX_PDF_PAGES}페이지까지 지원합니다."
            )

        images: List[str] = []
        for i in range(len(doc)):
            pix = doc.load_page(i).get_pixmap(dpi=VISION_DPI)
            images.append(base64.b64encode(pix.tobytes("png")).decode("ascii"))
        return images
    finally:
        doc.close()


def _clean_json_response(response_text: str) -> str:
    """마크다운 코드 펜스 제거 후 첫 '{' ~ 마지막 '}' 구간만 남긴다."""
    text = response_text.strip()
    text = re.sub(r"^```(?:json)?\s*", "", text)
    text = re.sub(r"\s*```$", "", text)
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return ""
    return text[start:end + 1]


def _call_openai(
    user_content: list,
    client: OpenAI,
    max_retries: int = _MAX_API_RETRIES,
) -> Optional[str]:
    """OpenAI Chat API 호출 + 지수 백오프 재시도."""
    last_exception: Optional[Exception] = None

    for attempt in range(1, max_retries + 1):
        try:
            response = client.chat.completions.create(
                model=MODEL_NAME,
                messages=[{"role": "user", "content": user_content}],
                temperature=0.1,
                response_format={"type": "json_object"},
                max_tokens=16384,
            )
            return response.choices[0].message.content
        except RateLimitError as e:
            last_exception = e
            if attempt < max_retries:
                wait = _BACKOFF_BASE * (2 ** attempt)
                logger.warning(f"Rate Limit, {wait:.1f}초 후 재시도 ({attempt}/{max_retries})")
                time.sleep(wait)
        except APIError as e:
            last_exception = e
            is_transient = isinstance(e, (APIConnectionError, APITimeoutError)) or (
                getattr(e, "status_code", None) in (500, 502, 503, 504)
            )
            if attempt < max_retries and is_transient:
                wait = _BACKOFF_BASE * (2 ** (attempt - 1))
                logger.warning(f"API 오류, {wait:.1f}초 후 재시도 ({attempt}/{max_retries})")
                time.sleep(wait)
            else:
                break

    logger.error(f"API 최종 실패: {last_exception}")
    raise RuntimeError(f"AI 서비스 호출에 실패했습니다: {last_exception}")

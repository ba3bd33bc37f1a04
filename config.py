import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
STATIC_DIR = os.path.join(BASE_DIR, "static")
LOG_FILE = os.path.join(BASE_DIR, "launch.log")

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))
SESSION_TTL = int(os.getenv("CBT_SESSION_TTL", "3600"))  # 1시간

# OpenAI 설정 (문제지 추출)
MODEL_NAME = os.getenv("CBT_MODEL_NAME", "gpt-4o")
MAX_PDF_PAGES = 60
VISION_DPI = 150        # 페이지 이미지 해상도

# 채점 설정
PASS_THRESHOLD = float(os.getenv("CBT_PASS_THRESHOLD", "0.5"))  # 정답률 50% 이상 합격

# 타이머 설정
TICK_INTERVAL_SECONDS = 1.0

# 시험 저장소 설정 (비어 있으면 프로세스 내 메모리 저장소 사용)
EXAM_STORE_URL = os.getenv("CBT_EXAM_STORE_URL", "")
STORE_TIMEOUT = 15.0
REPORT_MAX_ATTEMPTS = 2     # 결과 전송 최소 1회 재시도
REPORT_BACKOFF_BASE = 0.5

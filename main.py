"""
main.py — Proctored CBT 실행 진입점

  python main.py                          # 데스크톱: 로컬 서버 + 시험 창(앱 모드)
  python main.py --kiosk                  # 시험 창을 키오스크 모드로
  python main.py --serve --host 0.0.0.0   # 시험실 서버: 브라우저 없이 서버만 실행
  python main.py --store-url http://...   # 원격 시험 저장소 사용

종료(Ctrl+C) 시 서버 lifespan이 진행 중인 응시를 강제 종료하고 결과 전송을 마친다.
"""

import argparse
import logging
import os
import socket
import subprocess
import sys
import threading
import time
import webbrowser
from typing import List, Optional

import uvicorn

from config import BASE_DIR, DEFAULT_HOST, DEFAULT_PORT, EXAM_STORE_URL, LOG_FILE
from api.app import create_app
from proctored_cbt.services.exam_store import make_exam_store

logger = logging.getLogger(__name__)

SERVER_START_TIMEOUT = 15.0

# 시험 창은 주소창 없는 앱 모드로 연다 (전체화면 요청은 시험 시작 시 proctor.js가 수행)
_BROWSER_CANDIDATES = [
    r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files\Microsoft\Edge\Application\msedge.exe",
    r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe",
    "/usr/bin/google-chrome",
    "/usr/bin/chromium",
]


def _setup_logging() -> None:
    try:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s [%(levelname)s] %(message)s',
            handlers=[
                logging.FileHandler(LOG_FILE, encoding='utf-8'),
                logging.StreamHandler(sys.stdout),
            ]
        )
    except PermissionError:
        # 로그 파일 점유 시 콘솔 출력만 사용
        logging.basicConfig(level=logging.INFO)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Proctored CBT 시험 서버")
    parser.add_argument("--host", default=DEFAULT_HOST, help="바인딩 주소")
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT,
        help="포트. 사용 중이면 빈 포트로 대체, 0이면 항상 빈 포트",
    )
    parser.add_argument(
        "--store-url", default=EXAM_STORE_URL,
        help="원격 시험 저장소 URL. 비우면 인메모리 저장소",
    )
    parser.add_argument("--serve", action="store_true", help="브라우저를 열지 않고 서버만 실행")
    parser.add_argument("--kiosk", action="store_true", help="시험 창을 키오스크 모드로 실행")
    return parser.parse_args(argv)


def resolve_port(host: str, requested: int) -> int:
    """요청한 포트를 쓸 수 있으면 그대로, 아니면 OS가 고른 빈 포트를 반환."""
    if requested:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((host, requested))
                return requested
            except OSError:
                logger.warning(f"포트 {requested} 사용 중, 빈 포트로 대체")

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def build_server(host: str, port: int, store_url: str) -> uvicorn.Server:
    app = create_app(make_exam_store(store_url))
    return uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))


def _wait_until_started(server: uvicorn.Server, thread: threading.Thread,
                        timeout: float = SERVER_START_TIMEOUT) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if server.started:
            return True
        if not thread.is_alive():
            return False
        time.sleep(0.1)
    return False


def exam_window_command(url: str, kiosk: bool = False) -> Optional[List[str]]:
    """설치된 Chromium 계열 브라우저의 앱 모드 실행 명령. 없으면 None."""
    for path in _BROWSER_CANDIDATES:
        if os.path.exists(path):
            flags = [f"--app={url}", "--no-first-run", "--window-size=1280,800"]
            if kiosk:
                flags.append("--kiosk")
            return [path] + flags
    return None


def _open_exam_window(url: str, kiosk: bool) -> None:
    command = exam_window_command(url, kiosk)
    if command is None:
        logger.info("앱 모드 브라우저 없음, 기본 브라우저로 엽니다.")
        webbrowser.open(url)
        return
    logger.info(f"시험 창 실행: {command[0]}")
    subprocess.Popen(command)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    _setup_logging()
    os.chdir(BASE_DIR)

    port = resolve_port(args.host, args.port)
    server = build_server(args.host, port, args.store_url)
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()

    if not _wait_until_started(server, thread):
        logger.error("서버 시작 제한 시간을 초과했습니다. 작업 관리자에서 기존 프로세스를 종료해 보세요.")
        return 1

    browse_host = "127.0.0.1" if args.host in ("0.0.0.0", "") else args.host
    url = f"http://{browse_host}:{port}"
    logger.info(f"=== Proctored CBT 서버 준비 완료: {url} (저장소: {args.store_url or '인메모리'}) ===")
    if not args.serve:
        _open_exam_window(url, args.kiosk)

    try:
        while thread.is_alive():
            thread.join(1.0)
    except KeyboardInterrupt:
        logger.info("사용자에 의해 종료되었습니다.")
    finally:
        server.should_exit = True
        thread.join(timeout=10)
    return 0


if __name__ == "__main__":
    sys.exit(main())

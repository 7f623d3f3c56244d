"""
프로젝트 전체 로깅 설정
- 콘솔(stdout) 출력, 선택적으로 날짜별 로그 파일 로테이션
- 모듈별 로거 생성 헬퍼
"""
import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "finra_tracer.log"

_initialized: bool = False


def setup_logging(level: str = "INFO", log_dir: str | Path | None = None) -> None:
    """루트 로거에 콘솔 핸들러와 (선택적으로) 파일 핸들러를 설정한다.

    최초 호출에서만 핸들러를 추가하며, 이후 호출은 로그 레벨만 갱신한다.

    Args:
        level: 로그 레벨 이름 ("DEBUG", "INFO" 등).
        log_dir: 로그 파일 디렉토리. None 또는 빈 문자열이면 파일 로깅을 하지 않는다.
    """
    global _initialized
    resolved = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)

    if _initialized:
        for handler in root_logger.handlers:
            handler.setLevel(resolved)
        return
    _initialized = True

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    # 콘솔 핸들러
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(resolved)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # 파일 핸들러 (날짜별 로테이션, 30일 보관)
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=directory / LOG_FILE_NAME,
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8",
        )
        file_handler.setLevel(resolved)
        file_handler.setFormatter(formatter)
        file_handler.suffix = "%Y-%m-%d"
        root_logger.addHandler(file_handler)

    # 외부 라이브러리 로그 레벨 제한
    for noisy_logger in ("httpx", "httpcore", "asyncio", "python_socks"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """모듈별 로거를 반환한다.

    Args:
        name: 로거 이름. 보통 ``__name__`` 을 전달한다.

    Returns:
        ``logging.Logger`` 인스턴스. 핸들러 설정은 ``setup_logging`` 이 담당한다.
    """
    return logging.getLogger(name)

"""구조화된 JSON 로그 설정."""

import json
import logging
import sys
from datetime import datetime, timezone

# 외부 클라이언트 로거 - INFO 수준에서는 너무 verbose
NOISY_LOGGERS = ("httpx", "httpcore", "neo4j", "git", "psycopg")


class JsonFormatter(logging.Formatter):
    """로그를 JSON 형식으로 출력하는 포매터.

    인덱싱 배치를 컨테이너/CI 환경에서 실행할 때 로그 수집 도구와 연동하기 좋다.
    `extra`로 전달된 index/namespace 필드도 함께 기록한다.
    """

    EXTRA_FIELDS = ("index", "namespace", "branch")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_format: bool = False):
    """로깅을 설정한다.

    Args:
        level: 로그 레벨 (DEBUG, INFO, WARNING, ERROR).
        json_format: True이면 JSON 포매터, False이면 텍스트 포매터.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # 기존 핸들러 제거
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

import logging
import sys
from typing import Set


MASK = "****"
# 너무 짧은 값은 일반 단어와 겹칠 수 있어 가리지 않는다.
MIN_MASKED_LENGTH = 4


class SecretMaskingFilter(logging.Filter):
    """
    해석된 Secret 값(비밀번호, 암호화 키 등)이 로그에 그대로 찍히지 않도록
    포맷된 메시지에서 등록된 값을 MASK 로 바꾼다.
    """

    def __init__(self) -> None:
        super().__init__()
        self._values: Set[str] = set()

    def add(self, value: str) -> None:
        if value and len(value) >= MIN_MASKED_LENGTH:
            self._values.add(value)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._values:
            return True
        message = record.getMessage()
        masked = message
        # 긴 값부터 바꿔야 다른 값을 포함하는 값이 부분적으로 남지 않는다.
        for value in sorted(self._values, key=len, reverse=True):
            masked = masked.replace(value, MASK)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


_secret_filter = SecretMaskingFilter()


def mask_secret(value: str) -> None:
    _secret_filter.add(value)


def attach_secret_filter(handler: logging.Handler) -> None:
    if _secret_filter not in handler.filters:
        handler.addFilter(_secret_filter)


def setup_logging(verbosity: int = 0) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        attach_secret_filter(handler)

    # google 클라이언트 라이브러리의 DEBUG 로그는 -vv 부터만 보여준다.
    if verbosity < 2:
        logging.getLogger("google").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

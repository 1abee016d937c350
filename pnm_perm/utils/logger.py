"""
統一日誌系統
所有模組共用同一個 stream handler 與格式，可選擇加上 [tag] 前綴
"""

import logging
from typing import Optional

_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
_ROOT_NAME = "pnm_perm"


def _ensure_root_handler() -> logging.Logger:
    root = logging.getLogger(_ROOT_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)
    return root


def get_logger(name: str) -> logging.Logger:
    """取得掛在 pnm_perm 根日誌下的 logger"""
    _ensure_root_handler()
    if not name.startswith(_ROOT_NAME):
        name = f"{_ROOT_NAME}.{name}"
    return logging.getLogger(name)


class SimulationLogger:
    """帶 [tag] 前綴的日誌包裝 (後端/方法共用)"""

    def __init__(self, name: str, tag: Optional[str] = None):
        self.logger = get_logger(name)
        self.tag = tag

    def _prefix(self, tag: Optional[str]) -> str:
        tag = tag or self.tag
        return f"[{tag}] " if tag else ""

    def debug(self, message: str, tag: Optional[str] = None):
        self.logger.debug(f"{self._prefix(tag)}{message}")

    def info(self, message: str, tag: Optional[str] = None):
        self.logger.info(f"{self._prefix(tag)}{message}")

    def warning(self, message: str, tag: Optional[str] = None):
        self.logger.warning(f"{self._prefix(tag)}{message}")

    def error(self, message: str, tag: Optional[str] = None):
        self.logger.error(f"{self._prefix(tag)}{message}")

    def log(self, level: int, message: str, tag: Optional[str] = None):
        self.logger.log(level, f"{self._prefix(tag)}{message}")

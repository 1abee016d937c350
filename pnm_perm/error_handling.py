# error_handling.py
"""
統一錯誤處理系統
為滲透率模擬提供異常分類、錯誤記錄與降級策略

- InvalidInputError: 輸入不合法，模擬開始前即失敗 (唯一致命錯誤)
- NumericalNonConvergenceError: 求解器達迭代上限，保留最後解
- DeviceUnavailableError: GPU不可用，透明降級至CPU
- DegenerateGeometryError: 退化幾何，以保守預設值取代
"""

import time
import traceback
from enum import Enum
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import logging

from .utils.logger import get_logger

logger = get_logger('error_handler')


class ErrorSeverity(Enum):
    """錯誤嚴重程度"""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    FATAL = "fatal"


class ErrorCategory(Enum):
    """錯誤類別"""
    INPUT = "input"
    NUMERICAL = "numerical"
    GEOMETRY = "geometry"
    DEVICE = "device"
    METHOD = "method"


_LOG_LEVELS = {
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.FATAL: logging.FATAL,
}


# 自定義異常類
class PermeabilityError(Exception):
    """滲透率模擬基礎異常類"""
    def __init__(self, message: str, category: ErrorCategory,
                 severity: ErrorSeverity, context: Optional[Dict] = None):
        super().__init__(message)
        self.category = category
        self.severity = severity
        self.context = context or {}
        self.timestamp = time.time()


class InvalidInputError(PermeabilityError, ValueError):
    """輸入不合法 (空網絡、懸空喉道、非正黏度)"""
    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, ErrorCategory.INPUT, ErrorSeverity.FATAL, context)


class NumericalNonConvergenceError(PermeabilityError):
    """迭代求解未在上限內收斂"""
    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, ErrorCategory.NUMERICAL, ErrorSeverity.WARNING, context)


class DeviceUnavailableError(PermeabilityError):
    """GPU裝置或探測失敗"""
    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, ErrorCategory.DEVICE, ErrorSeverity.WARNING, context)


class DegenerateGeometryError(PermeabilityError):
    """退化幾何 (零流量、零長度、孔隙率越界)"""
    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, ErrorCategory.GEOMETRY, ErrorSeverity.WARNING, context)


class MethodFailureError(PermeabilityError):
    """單一方法執行失敗 (其他方法繼續執行)"""
    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, ErrorCategory.METHOD, ErrorSeverity.ERROR, context)


@dataclass(frozen=True)
class ErrorRecord:
    """錯誤記錄"""
    timestamp: float
    error_type: str
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    context: Dict = field(default_factory=dict)
    stack_trace: str = ""


class SimulationErrorHandler:
    """單次模擬的錯誤處理器：記錄、分級日誌、統計"""

    def __init__(self, tag: str = "PermeabilitySimulator"):
        self.tag = tag
        self.error_log: List[ErrorRecord] = []

    def handle_error(self, error: PermeabilityError, context: Optional[Dict] = None) -> ErrorRecord:
        """記錄錯誤並依嚴重程度寫入日誌"""
        record = ErrorRecord(
            timestamp=time.time(),
            error_type=type(error).__name__,
            message=str(error),
            category=error.category,
            severity=error.severity,
            context={**(error.context or {}), **(context or {})},
            stack_trace=traceback.format_exc() if error.severity is not ErrorSeverity.WARNING else "",
        )
        self.error_log.append(record)
        logger.log(_LOG_LEVELS[error.severity],
                   f"[{self.tag}] {error.category.value.upper()}: {error}")
        return record

    def handle_exception(self, exc: BaseException, method: str) -> ErrorRecord:
        """把任意例外包裝成方法失敗記錄"""
        if isinstance(exc, PermeabilityError):
            return self.handle_error(exc, {"method": method})
        wrapped = MethodFailureError(f"{method} 執行失敗: {exc}", {"method": method})
        return self.handle_error(wrapped)

    def extend(self, records) -> None:
        """併入其他處理器 (例如方法內部) 的記錄"""
        self.error_log.extend(records)

    def records(self) -> Tuple[ErrorRecord, ...]:
        return tuple(self.error_log)

    def get_error_statistics(self) -> Dict:
        """獲取錯誤統計信息"""
        if not self.error_log:
            return {"total_errors": 0}

        stats = {
            "total_errors": len(self.error_log),
            "by_category": {},
            "by_severity": {},
        }
        for category in ErrorCategory:
            count = len([e for e in self.error_log if e.category == category])
            if count > 0:
                stats["by_category"][category.value] = count
        for severity in ErrorSeverity:
            count = len([e for e in self.error_log if e.severity == severity])
            if count > 0:
                stats["by_severity"][severity.value] = count
        return stats

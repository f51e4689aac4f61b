"""
错误处理服务
"""
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging


class CertExporterError(Exception):
    """证书导出器错误基类"""


class ConfigurationError(CertExporterError):
    """配置错误（启动阶段，允许终止对应检查器）"""


class DiscoveryError(CertExporterError):
    """发现阶段错误：无效的glob、不可达路径或列表请求失败"""


class FormatError(CertExporterError):
    """数据不是 PEM、PKCS#12 或 JKS 中的任何一种"""

    def __init__(self, pem_error: Optional[Exception], pkcs12_error: Optional[Exception],
                 jks_error: Optional[Exception]):
        self.pem_error = pem_error
        self.pkcs12_error = pkcs12_error
        self.jks_error = jks_error
        super().__init__(
            f"failed to parse certificate data: as pem (error: {pem_error}), "
            f"as pkcs12 (error: {pkcs12_error}), as jks (error: {jks_error})"
        )


class EntryError(CertExporterError):
    """已识别的容器中至少有一个条目无法解析，携带已提取的部分指标"""

    def __init__(self, failures: List[str], metrics: Optional[list] = None):
        self.failures = list(failures)
        self.metrics = list(metrics or [])
        super().__init__("; ".join(self.failures))


class ErrorRecorder:
    """
    错误记录器

    记录日志、递增共享的错误计数器，并保留最近的错误用于执行摘要。
    可被多个检查器线程同时使用。
    """

    def __init__(self, error_counter: Any, max_recent: int = 50):
        """
        初始化错误记录器

        Args:
            error_counter: 支持 inc() 的计数器（prometheus_client.Counter）
            max_recent: 保留的最近错误数量
        """
        self.error_counter = error_counter
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._recent = deque(maxlen=max_recent)

    def record(self, context: str, error: Exception) -> Dict[str, Any]:
        """
        记录一次错误

        Args:
            context: 出错的位置（检查器名称、资源名称等）
            error: 异常对象

        Returns:
            Dict[str, Any]: 错误信息
        """
        error_info = {
            'context': context,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'timestamp': datetime.now(timezone.utc).isoformat()
        }

        self.error_counter.inc()
        with self._lock:
            self._recent.append(error_info)

        self.logger.error(f"{context} 处理失败: {error_info['error_type']}: {error_info['error_message']}")
        return error_info

    def recent_errors(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._recent)

    def get_error_statistics(self, error_list: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """
        获取错误统计信息

        Args:
            error_list: 错误信息列表，默认使用最近的错误

        Returns:
            Dict[str, Any]: 错误统计
        """
        if error_list is None:
            error_list = self.recent_errors()

        if not error_list:
            return {
                'total_errors': 0,
                'error_types': {},
                'most_common_error': None,
                'most_common_error_count': 0
            }

        error_types = {}
        for error_info in error_list:
            error_type = error_info.get('error_type', 'Unknown')
            error_types[error_type] = error_types.get(error_type, 0) + 1

        most_common_error = max(error_types.items(), key=lambda x: x[1])

        return {
            'total_errors': len(error_list),
            'error_types': error_types,
            'most_common_error': most_common_error[0],
            'most_common_error_count': most_common_error[1]
        }

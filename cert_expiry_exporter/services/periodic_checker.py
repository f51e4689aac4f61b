"""
周期检查服务

每种资源类型一个 PeriodicChecker 实例，在独立线程中循环执行：
重置指标 -> 发现候选资源 -> 逐个读取、解码、过滤并导出 -> 等待下一个周期。
"""
import threading
import time
from typing import Optional
import logging

from ..interfaces import CertificateSourceInterface, MetricsExporterInterface
from ..models import CheckResult
from .error_handler import ErrorRecorder
from .logger import LoggerService
from .metrics_registry import MetricsRegistry


class PeriodicChecker:
    """周期检查器（与资源类型无关的通用调度模板）"""

    def __init__(self, name: str, source: CertificateSourceInterface, exporter: MetricsExporterInterface,
                 period: float, error_recorder: ErrorRecorder,
                 metrics_registry: Optional[MetricsRegistry] = None,
                 logger_service: Optional[LoggerService] = None):
        """
        初始化周期检查器

        Args:
            name: 检查器名称
            source: 证书来源（发现、读取和资源标签）
            exporter: 指标导出器
            period: 检查周期（秒）
            error_recorder: 共享的错误记录器
            metrics_registry: 指标注册表，用于记录发现数量
            logger_service: 日志服务
        """
        self.name = name
        self.source = source
        self.exporter = exporter
        self.period = period
        self.error_recorder = error_recorder
        self.metrics_registry = metrics_registry
        self.logger_service = logger_service or LoggerService()
        self.logger = logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check_once(self) -> CheckResult:
        """
        执行一个周期的检查

        单个候选资源或条目的失败只记录错误，不影响其他候选资源。

        Returns:
            CheckResult: 本周期的检查结果
        """
        start_time = time.monotonic()

        # 先清空旧序列，已消失的资源不再上报过期的值
        self.exporter.reset_metrics()

        discovery_error = None
        try:
            candidates = self.source.discover()
        except Exception as e:
            discovery_error = e
            candidates = []

        if self.metrics_registry is not None:
            self.metrics_registry.set_discovered(self.name, len(candidates))

        self.logger_service.log_check_start(self.name, len(candidates))
        if discovery_error is not None:
            self._record_failure("发现阶段", discovery_error)

        exported_samples = 0
        for candidate in candidates:
            exported_samples += self._check_candidate(candidate)

        self.logger_service.log_check_end(self.name)
        summary = self.logger_service.get_execution_summary()

        return CheckResult(
            checker_name=self.name,
            total_candidates=len(candidates),
            exported_samples=exported_samples,
            failed_items=summary['failed_items'],
            errors=[f"{error['context']}: {error['error_message']}" for error in summary['errors']],
            execution_time=time.monotonic() - start_time
        )

    def _check_candidate(self, candidate) -> int:
        description = str(candidate)
        try:
            description = self.source.describe(candidate)
            payloads = iter(self.source.fetch(candidate))
        except Exception as e:
            self._record_failure(description, e)
            return 0

        exported = 0
        while True:
            try:
                payload = next(payloads)
            except StopIteration:
                break
            except Exception as e:
                self._record_failure(description, e)
                break

            payload_description = payload.description or description
            try:
                sample_count = self.exporter.export_metrics(payload)
            except Exception as e:
                self._record_failure(payload_description, e)
                continue

            exported += sample_count
            self.logger_service.log_candidate_exported(self.name, payload_description, sample_count)

        return exported

    def _record_failure(self, context: str, error: Exception):
        self.error_recorder.record(f"[{self.name}] {context}", error)
        self.logger_service.log_error(context, error)

    def start_checking(self):
        """在当前线程中循环检查，直到调用 stop()"""
        self.logger.info(f"[{self.name}] 检查器启动，周期 {self.period} 秒")
        while not self._stop_event.is_set():
            try:
                self.check_once()
            except Exception as e:
                self._record_failure("周期检查", e)
            # 下一个周期在本周期结束后才开始，周期之间不会重叠
            self._stop_event.wait(self.period)
        self.logger.info(f"[{self.name}] 检查器已停止")

    def start(self) -> threading.Thread:
        """在后台守护线程中启动检查循环"""
        self._thread = threading.Thread(target=self.start_checking, name=f"checker-{self.name}", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None):
        """停止检查循环（当前周期结束后生效）"""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

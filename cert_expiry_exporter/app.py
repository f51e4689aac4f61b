"""
证书过期导出器入口
"""
import signal
import sys
import threading
from typing import Any, Callable, Dict, List, Optional
import logging

from kubernetes import client
from prometheus_client import start_http_server

from .interfaces import CertificateSourceInterface
from .services.aws_source import AwsSecretsSource
from .services.certificate_decoder import CertificateSourceDecoder
from .services.config_loader import ExporterConfig, load_config
from .services.error_handler import ConfigurationError, ErrorRecorder
from .services.exporter import CertificateMetricsExporter
from .services.file_source import FileCertificateSource
from .services.kubeconfig_source import KubeConfigSource
from .services.kubernetes_sources import (
    CertificateRequestSource, ConfigMapSource, SecretSource, WebhookSource, build_api_client
)
from .services.logger import LoggerService
from .services.metric_filter import MetricFilter
from .services.metrics_registry import (
    AWS_SECRET_FILE_LABELS, AWS_SECRET_LABELS, CERT_FILE_LABELS, CERTREQUEST_LABELS, CONFIGMAP_LABELS,
    KUBECONFIG_LABELS, SECRET_LABELS, WEBHOOK_LABELS, MetricsRegistry
)
from .services.periodic_checker import PeriodicChecker


class CertExporterApp:
    """证书过期导出器：按配置创建并运行各个周期检查器"""

    def __init__(self, config: ExporterConfig, metrics_registry: Optional[MetricsRegistry] = None,
                 api_client_factory: Callable[[str], client.ApiClient] = build_api_client,
                 aws_client_factory: Optional[Callable] = None):
        """
        初始化导出器

        Args:
            config: 导出器配置
            metrics_registry: 指标注册表，默认按配置创建
            api_client_factory: Kubernetes API客户端工厂，参数为 kubeconfig 路径
            aws_client_factory: Secrets Manager 客户端工厂
        """
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.metrics_registry = metrics_registry or MetricsRegistry.default(config.disable_exporter_metrics)
        self.error_recorder = ErrorRecorder(self.metrics_registry.error_total)
        self.decoder = CertificateSourceDecoder(self.error_recorder)
        self.metric_filter = MetricFilter(
            config.exclude_cn_globs, config.exclude_alias_globs, config.exclude_issuer_globs
        )
        self.api_client_factory = api_client_factory
        self.aws_client_factory = aws_client_factory
        self.checkers: List[PeriodicChecker] = []
        self._stop_event = threading.Event()

    def _checker(self, source: CertificateSourceInterface, label_names) -> PeriodicChecker:
        family = self.metrics_registry.gauge_family(source.kind, label_names)
        exporter = CertificateMetricsExporter(family, self.decoder, self.metric_filter)
        return PeriodicChecker(
            name=source.kind,
            source=source,
            exporter=exporter,
            period=self.config.polling_period,
            error_recorder=self.error_recorder,
            metrics_registry=self.metrics_registry,
            logger_service=LoggerService()
        )

    def build_checkers(self) -> List[PeriodicChecker]:
        """
        按启用规则创建检查器

        Raises:
            ConfigurationError: 无法创建Kubernetes客户端
        """
        config = self.config
        checkers = []
        password_resolver = config.password_resolver()

        if config.files_enabled:
            checkers.append(self._checker(FileCertificateSource(
                config.include_cert_globs, config.exclude_cert_globs, config.node_name,
                password_resolver, self.error_recorder
            ), CERT_FILE_LABELS))

        if config.kubeconfigs_enabled:
            checkers.append(self._checker(KubeConfigSource(
                config.include_kubeconfig_globs, config.exclude_kubeconfig_globs, config.node_name,
                password_resolver, self.error_recorder
            ), KUBECONFIG_LABELS))

        if config.kubernetes_enabled:
            checkers.extend(self._build_kubernetes_checkers())

        if config.aws_enabled:
            labels = AWS_SECRET_FILE_LABELS if config.aws_include_file_in_metrics else AWS_SECRET_LABELS
            checkers.append(self._checker(AwsSecretsSource(
                config.aws_account, config.aws_region, config.aws_secrets,
                key_substring=config.aws_key_substring,
                include_file_in_metrics=config.aws_include_file_in_metrics,
                request_timeout=config.request_timeout,
                passphrase=config.cert_password,
                client_factory=self.aws_client_factory
            ), labels))

        self.checkers = checkers
        return checkers

    def _build_kubernetes_checkers(self) -> List[PeriodicChecker]:
        config = self.config
        api_client = self.api_client_factory(config.kubeconfig)
        common = dict(
            error_recorder=self.error_recorder,
            request_timeout=config.request_timeout,
            passphrase=config.cert_password
        )
        checkers = []

        if config.secrets_enabled:
            checkers.append(self._checker(SecretSource(
                client.CoreV1Api(api_client),
                namespaces=config.secrets_namespaces,
                label_selectors=config.secrets_label_selectors,
                annotation_selectors=config.secrets_annotation_selectors,
                include_globs=config.secrets_include_globs,
                exclude_globs=config.secrets_exclude_globs,
                include_types=config.secrets_include_types,
                **common
            ), SECRET_LABELS))

        if config.configmaps_enabled:
            checkers.append(self._checker(ConfigMapSource(
                client.CoreV1Api(api_client),
                namespaces=config.configmaps_namespaces,
                label_selectors=config.configmaps_label_selectors,
                annotation_selectors=config.configmaps_annotation_selectors,
                include_globs=config.configmaps_include_globs,
                exclude_globs=config.configmaps_exclude_globs,
                **common
            ), CONFIGMAP_LABELS))

        if config.webhooks_enabled:
            checkers.append(self._checker(WebhookSource(
                client.AdmissionregistrationV1Api(api_client),
                label_selectors=config.webhooks_label_selectors,
                annotation_selectors=config.webhooks_annotation_selectors,
                **common
            ), WEBHOOK_LABELS))

        if config.certrequests_enabled:
            checkers.append(self._checker(CertificateRequestSource(
                client.CustomObjectsApi(api_client),
                namespaces=config.certrequests_namespaces,
                label_selectors=config.certrequests_label_selectors,
                annotation_selectors=config.certrequests_annotation_selectors,
                **common
            ), CERTREQUEST_LABELS))

        return checkers

    def start(self):
        """启动HTTP端点和全部检查器"""
        if not self.checkers:
            self.build_checkers()

        start_http_server(self.config.listen_port, addr=self.config.listen_address,
                          registry=self.metrics_registry.registry)
        self.logger.info(f"指标端点已启动: {self.config.listen_address}:{self.config.listen_port}")

        for checker in self.checkers:
            checker.start()
        self.logger.info(f"已启动 {len(self.checkers)} 个检查器: {', '.join(c.name for c in self.checkers)}")

    def stop(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """停止全部检查器并记录最近的错误统计"""
        for checker in self.checkers:
            checker.stop(timeout)

        statistics = self.error_recorder.get_error_statistics()
        if statistics['total_errors']:
            self.logger.info(
                f"检查器已停止，最近错误 {statistics['total_errors']} 个，"
                f"最常见: {statistics['most_common_error']} ({statistics['most_common_error_count']} 次)"
            )
        else:
            self.logger.info("检查器已停止，没有最近错误")

        self._stop_event.set()
        return statistics

    def wait(self):
        """阻塞直到 stop() 被调用"""
        self._stop_event.wait()


def main() -> int:
    """命令行入口"""
    logger_service = LoggerService()
    logger = logger_service.logger

    try:
        config = load_config()
    except ConfigurationError as e:
        logger.error(f"配置无效: {e}")
        return 1

    logger_service.log_configuration_info(config.to_log_dict())
    for line in config.get_configuration_summary().splitlines():
        if line.strip():
            logger.info(line)

    app = CertExporterApp(config)
    try:
        app.start()
    except ConfigurationError as e:
        logger.error(f"启动失败: {e}")
        return 1

    def handle_signal(signum, frame):
        logger.info(f"收到信号 {signum}，停止检查器")
        app.stop(timeout=5)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    app.wait()
    return 0


if __name__ == "__main__":
    sys.exit(main())

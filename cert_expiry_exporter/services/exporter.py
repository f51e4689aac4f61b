"""
证书指标导出服务
"""
from typing import Optional
import logging

from ..interfaces import MetricsExporterInterface
from ..models import CertificatePayload
from .certificate_decoder import CertificateSourceDecoder
from .metric_filter import MetricFilter
from .metrics_registry import GaugeFamily


class CertificateMetricsExporter(MetricsExporterInterface):
    """解码证书数据、过滤并写入对应资源类型的指标"""

    def __init__(self, family: GaugeFamily, decoder: Optional[CertificateSourceDecoder] = None,
                 metric_filter: Optional[MetricFilter] = None):
        """
        初始化导出器

        Args:
            family: 资源类型的指标三元组
            decoder: 证书解码器
            metric_filter: 指标过滤器，默认不过滤
        """
        self.family = family
        self.decoder = decoder or CertificateSourceDecoder()
        self.metric_filter = metric_filter or MetricFilter()
        self.logger = logging.getLogger(__name__)

    def export_metrics(self, payload: CertificatePayload) -> int:
        """
        导出一份证书数据的指标

        容器中部分条目失败时，先写入已提取的指标再抛出 EntryError。

        Args:
            payload: 证书数据及资源标签

        Returns:
            int: 写入的证书数量

        Raises:
            FormatError: 数据格式无法识别
            EntryError: 部分条目无法解析
        """
        metrics, error = self.decoder.decode(payload.data, payload.passphrase)

        kept = self.metric_filter.filter(metrics)
        if len(kept) != len(metrics):
            self.logger.debug(f"{payload.description} 过滤掉 {len(metrics) - len(kept)} 个证书")

        for metric in kept:
            self.family.set(payload.labels, metric)

        if error is not None:
            raise error
        return len(kept)

    def reset_metrics(self):
        self.family.reset()

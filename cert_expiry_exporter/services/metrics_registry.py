"""
Prometheus指标注册服务
"""
import threading
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, REGISTRY

from ..models import CertificateMetric


NAMESPACE = "cert_exporter"

# 每种资源类型的标签，顺序与导出的指标一致
CERT_FILE_LABELS = ("filename", "issuer", "cn", "alias", "nodename")
KUBECONFIG_LABELS = ("filename", "type", "cn", "issuer", "name", "nodename")
SECRET_LABELS = ("key_name", "issuer", "cn", "alias", "secret_name", "secret_namespace")
CONFIGMAP_LABELS = ("key_name", "issuer", "cn", "alias", "configmap_name", "configmap_namespace")
WEBHOOK_LABELS = ("type_name", "issuer", "cn", "webhook_name", "admission_review_version_name")
CERTREQUEST_LABELS = ("issuer", "cn", "cert_request", "certrequest_namespace")
AWS_SECRET_LABELS = ("secretName", "key", "issuer", "cn", "alias")
AWS_SECRET_FILE_LABELS = ("secretName", "key", "file", "issuer", "cn", "alias")

HELP_TEXT = {
    "expires_in_seconds": "Number of seconds til the cert in the {kind} expires.",
    "not_after_timestamp": "Expiration timestamp for cert in the {kind}.",
    "not_before_timestamp": "Activation timestamp for cert in the {kind}.",
}


class GaugeFamily:
    """单个资源类型的指标三元组（剩余秒数、过期时间戳、生效时间戳）"""

    def __init__(self, kind: str, label_names: Sequence[str], registry: CollectorRegistry):
        self.kind = kind
        self.label_names = tuple(label_names)
        self.expires_in_seconds = self._gauge("expires_in_seconds", registry)
        self.not_after_timestamp = self._gauge("not_after_timestamp", registry)
        self.not_before_timestamp = self._gauge("not_before_timestamp", registry)

    def _gauge(self, suffix: str, registry: CollectorRegistry) -> Gauge:
        return Gauge(
            f"{self.kind}_{suffix}",
            HELP_TEXT[suffix].format(kind=self.kind),
            labelnames=self.label_names,
            namespace=NAMESPACE,
            registry=registry
        )

    @property
    def gauges(self) -> Tuple[Gauge, Gauge, Gauge]:
        return self.expires_in_seconds, self.not_after_timestamp, self.not_before_timestamp

    def set(self, labels: Dict[str, str], metric: CertificateMetric):
        """
        写入一个证书的三个样本

        Args:
            labels: 资源标签（缺失的标签以空字符串补齐）
            metric: 证书指标
        """
        values = dict(labels)
        values.setdefault("issuer", metric.issuer_cn)
        values.setdefault("cn", metric.subject_cn)
        if "alias" in self.label_names:
            values.setdefault("alias", metric.alias or "")

        label_values = [str(values.get(name, "")) for name in self.label_names]
        self.expires_in_seconds.labels(*label_values).set(metric.duration_until_expiry)
        self.not_after_timestamp.labels(*label_values).set(metric.not_after_timestamp)
        self.not_before_timestamp.labels(*label_values).set(metric.not_before_timestamp)

    def reset(self):
        """清空全部序列"""
        for gauge in self.gauges:
            gauge.clear()


class MetricsRegistry:
    """
    指标注册表

    通过构造函数显式传入各检查器，测试中每个用例使用独立的注册表。
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        初始化指标注册表

        Args:
            registry: prometheus_client 注册表，默认创建新的空注册表
        """
        self.registry = registry if registry is not None else CollectorRegistry()
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._families: Dict[str, GaugeFamily] = {}

        self.error_total = Counter(
            "error_total",
            "Cert Exporter Errors",
            namespace=NAMESPACE,
            registry=self.registry
        )
        self.discovered = Gauge(
            "discovered",
            "Cert Exporter Discovered Certificates",
            labelnames=("checker",),
            namespace=NAMESPACE,
            registry=self.registry
        )

    @classmethod
    def default(cls, exporter_metrics_disabled: bool = False) -> "MetricsRegistry":
        """
        创建用于HTTP端点的注册表

        Args:
            exporter_metrics_disabled: 为True时不包含进程/平台等导出器自身的指标
        """
        if exporter_metrics_disabled:
            return cls(CollectorRegistry())
        return cls(REGISTRY)

    def gauge_family(self, kind: str, label_names: Sequence[str]) -> GaugeFamily:
        """
        获取（或注册）资源类型的指标三元组

        Raises:
            ValueError: 同一资源类型以不同的标签重复注册
        """
        with self._lock:
            family = self._families.get(kind)
            if family is None:
                family = GaugeFamily(kind, label_names, self.registry)
                self._families[kind] = family
                self.logger.debug(f"注册指标: {NAMESPACE}_{kind}_* 标签 {list(label_names)}")
            elif family.label_names != tuple(label_names):
                raise ValueError(f"metric family {kind} already registered with labels {family.label_names}")
            return family

    def set_discovered(self, checker_name: str, count: int):
        self.discovered.labels(checker_name).set(count)

    def get_sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """按完整指标名称读取单个样本值"""
        return self.registry.get_sample_value(name, labels or {})

    def samples(self, name: str) -> List[Dict[str, str]]:
        """读取指标的全部样本标签"""
        result = []
        for family in self.registry.collect():
            for sample in family.samples:
                if sample.name == name:
                    result.append(dict(sample.labels))
        return result

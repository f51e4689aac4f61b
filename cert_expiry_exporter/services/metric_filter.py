"""
证书指标过滤服务
"""
from typing import List, Optional, Sequence
import logging

from ..models import CertificateMetric
from .error_handler import DiscoveryError
from .glob_matcher import match_pattern


logger = logging.getLogger(__name__)


def match_globs(value: str, globs: Sequence[str]) -> bool:
    """
    判断字段值是否匹配任意一个glob

    空字段只有在列表中包含 "" 或 "*" 时才算匹配；
    格式错误的glob记录警告后视为不匹配。

    Args:
        value: 字段值（CN、别名或颁发者CN）
        globs: glob列表

    Returns:
        bool: 是否匹配
    """
    if not value:
        return any(pattern in ("", "*") for pattern in globs)

    for pattern in globs:
        try:
            if match_pattern(pattern, value):
                return True
        except DiscoveryError as e:
            logger.warning(f"匹配 '{value}' 时遇到格式错误的glob '{pattern}': {e}")
    return False


class MetricFilter:
    """按 subject CN / 别名 / 颁发者CN 排除证书指标"""

    def __init__(self, exclude_cn_globs: Optional[Sequence[str]] = None,
                 exclude_alias_globs: Optional[Sequence[str]] = None,
                 exclude_issuer_globs: Optional[Sequence[str]] = None):
        self.exclude_cn_globs = list(exclude_cn_globs or [])
        self.exclude_alias_globs = list(exclude_alias_globs or [])
        self.exclude_issuer_globs = list(exclude_issuer_globs or [])

    @property
    def is_noop(self) -> bool:
        return not (self.exclude_cn_globs or self.exclude_alias_globs or self.exclude_issuer_globs)

    def filter(self, metrics: List[CertificateMetric]) -> List[CertificateMetric]:
        """
        过滤指标，任意维度上任意一个glob匹配即排除

        Args:
            metrics: 解码得到的指标

        Returns:
            List[CertificateMetric]: 保留的指标（保持原有顺序）
        """
        if self.is_noop:
            return metrics
        return [metric for metric in metrics if not self.is_excluded(metric)]

    def is_excluded(self, metric: CertificateMetric) -> bool:
        if self.exclude_cn_globs and match_globs(metric.subject_cn, self.exclude_cn_globs):
            return True
        # 别名维度只作用于带别名的指标（JKS条目）
        if self.exclude_alias_globs and metric.alias and match_globs(metric.alias, self.exclude_alias_globs):
            return True
        if self.exclude_issuer_globs and match_globs(metric.issuer_cn, self.exclude_issuer_globs):
            return True
        return False

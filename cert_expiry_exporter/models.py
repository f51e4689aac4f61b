"""
数据模型定义
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict


@dataclass
class CertificateMetric:
    """单个证书的过期信息（每个周期重新计算，不做缓存）"""
    not_before: datetime
    not_after: datetime
    duration_until_expiry: float
    issuer_cn: str
    subject_cn: str
    alias: Optional[str] = None

    @property
    def not_after_timestamp(self) -> float:
        """过期时间的Unix时间戳"""
        return self.not_after.timestamp()

    @property
    def not_before_timestamp(self) -> float:
        """生效时间的Unix时间戳"""
        return self.not_before.timestamp()

    @classmethod
    def from_validity(cls, not_before: datetime, not_after: datetime, issuer_cn: str,
                      subject_cn: str, alias: Optional[str] = None,
                      now: Optional[datetime] = None) -> "CertificateMetric":
        """
        根据证书有效期创建指标，剩余秒数按观测时间计算

        Args:
            not_before: 证书生效时间
            not_after: 证书过期时间
            issuer_cn: 颁发者CN
            subject_cn: 主题CN
            alias: JKS别名（可选）
            now: 观测时间，默认当前UTC时间

        Returns:
            CertificateMetric: 证书指标
        """
        now = now or datetime.now(timezone.utc)
        return cls(
            not_before=not_before,
            not_after=not_after,
            duration_until_expiry=(not_after - now).total_seconds(),
            issuer_cn=issuer_cn,
            subject_cn=subject_cn,
            alias=alias
        )


@dataclass
class DecodeAttemptResult:
    """
    单个格式解码阶段的结果

    recognized=False 表示交给下一个格式处理；
    recognized=True 表示到此为止，无论 error 是否为空。
    """
    recognized: bool
    metrics: List[CertificateMetric] = field(default_factory=list)
    error: Optional[Exception] = None

    @classmethod
    def not_recognized(cls, error: Exception) -> "DecodeAttemptResult":
        return cls(recognized=False, metrics=[], error=error)


@dataclass
class CertificatePayload:
    """待解码的证书数据及其资源标签"""
    data: bytes
    labels: Dict[str, str]
    passphrase: str = ""
    description: str = ""


@dataclass
class CheckResult:
    """单个周期的检查结果统计"""
    checker_name: str
    total_candidates: int
    exported_samples: int
    failed_items: int
    errors: List[str]
    execution_time: float

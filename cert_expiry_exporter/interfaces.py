"""
服务接口定义
"""
from abc import ABC, abstractmethod
from typing import Any, Iterable, List
from .models import CertificatePayload


class CertificateSourceInterface(ABC):
    """证书来源接口（发现候选资源 + 读取证书数据）"""

    #: 资源类型名称，用于日志和检查器命名
    kind: str = "source"

    @abstractmethod
    def discover(self) -> List[Any]:
        """发现本周期需要检查的候选资源"""
        pass

    @abstractmethod
    def fetch(self, candidate: Any) -> Iterable[CertificatePayload]:
        """读取候选资源中的证书数据，附带资源标签"""
        pass

    def describe(self, candidate: Any) -> str:
        """候选资源的可读描述"""
        return str(candidate)


class MetricsExporterInterface(ABC):
    """指标导出器接口"""

    @abstractmethod
    def export_metrics(self, payload: CertificatePayload) -> int:
        """解码证书数据并写入指标，返回写入的样本数"""
        pass

    @abstractmethod
    def reset_metrics(self):
        """清空导出器拥有的全部指标序列"""
        pass


class LoggerServiceInterface(ABC):
    """日志服务接口"""

    @abstractmethod
    def log_check_start(self, checker_name: str, candidate_count: int):
        """记录检查开始"""
        pass

    @abstractmethod
    def log_candidate_exported(self, checker_name: str, description: str, sample_count: int):
        """记录候选资源导出结果"""
        pass

    @abstractmethod
    def log_error(self, context: str, error: Exception):
        """记录错误信息"""
        pass

"""
磁盘证书文件来源
"""
from typing import Iterator, List, Optional, Sequence
import logging

from ..interfaces import CertificateSourceInterface
from ..models import CertificatePayload
from .error_handler import ErrorRecorder
from .glob_matcher import GlobMatcher
from .password_resolver import PasswordResolver


class FileCertificateSource(CertificateSourceInterface):
    """通过 include/exclude glob 发现磁盘上的证书文件"""

    kind = "cert"

    def __init__(self, include_globs: Sequence[str], exclude_globs: Sequence[str] = (),
                 node_name: str = "", password_resolver: Optional[PasswordResolver] = None,
                 error_recorder: Optional[ErrorRecorder] = None):
        """
        初始化文件来源

        Args:
            include_globs: 包含的glob表达式（支持 ** 递归匹配）
            exclude_globs: 排除的glob表达式
            node_name: 节点名称标签
            password_resolver: 按路径解析 PKCS#12 / JKS 密码
            error_recorder: 错误记录器
        """
        self.include_globs = list(include_globs)
        self.exclude_globs = list(exclude_globs)
        self.node_name = node_name
        self.password_resolver = password_resolver or PasswordResolver()
        self.glob_matcher = GlobMatcher(error_recorder)
        self.logger = logging.getLogger(__name__)

    def discover(self) -> List[str]:
        return sorted(self.glob_matcher.resolve(self.include_globs, self.exclude_globs))

    def fetch(self, path: str) -> Iterator[CertificatePayload]:
        with open(path, 'rb') as f:
            data = f.read()

        yield CertificatePayload(
            data=data,
            labels={'filename': path, 'nodename': self.node_name},
            passphrase=self.password_resolver.resolve(path),
            description=path
        )


"""
证书密码解析服务
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
import fnmatch
import logging
import re

from .error_handler import ConfigurationError, DiscoveryError
from .glob_matcher import expand_braces, compile_pattern


@dataclass(frozen=True)
class PasswordSpec:
    """glob表达式及其对应的密码"""
    glob_pattern: str
    password: str = field(repr=False)

    @classmethod
    def parse(cls, value: str) -> "PasswordSpec":
        """
        解析 'glob:password' 格式的配置

        第一个冒号之前为glob，之后全部为密码（密码本身可以包含冒号）。

        Raises:
            ConfigurationError: 格式错误、glob为空或glob无效
        """
        glob_pattern, separator, password = value.partition(':')
        if not separator:
            raise ConfigurationError(
                "invalid format for password spec. Expected 'glob:password'"
            )

        glob_pattern = glob_pattern.strip()
        if not glob_pattern:
            raise ConfigurationError("glob pattern cannot be empty in password spec")

        try:
            for expanded in expand_braces(glob_pattern):
                compile_pattern(expanded)
        except DiscoveryError as e:
            raise ConfigurationError(f"invalid glob pattern {glob_pattern!r} in password spec: {e}") from e

        return cls(glob_pattern=glob_pattern, password=password)

    def matches(self, file_path: str) -> bool:
        """路径是否匹配（'*' 可跨越目录）"""
        return any(
            re.match(fnmatch.translate(expanded), file_path)
            for expanded in expand_braces(self.glob_pattern)
        )

    def __str__(self) -> str:
        return f"{self.glob_pattern!r}:****"


class PasswordResolver:
    """按路径解析证书密码，第一个匹配的规则生效"""

    def __init__(self, specs: Optional[Iterable[PasswordSpec]] = None, default_password: str = ""):
        self.specs: List[PasswordSpec] = list(specs or [])
        self.default_password = default_password
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_strings(cls, values: Iterable[str], default_password: str = "") -> "PasswordResolver":
        return cls([PasswordSpec.parse(value) for value in values if value], default_password)

    def resolve(self, file_path: str) -> str:
        """
        获取文件对应的密码

        Args:
            file_path: 证书文件路径

        Returns:
            str: 第一个匹配规则的密码，没有匹配时返回默认密码
        """
        for spec in self.specs:
            if spec.matches(file_path):
                self.logger.debug(f"文件 {file_path} 使用密码规则 {spec}")
                return spec.password
        return self.default_password

    def __str__(self) -> str:
        return ", ".join(str(spec) for spec in self.specs)

"""
AWS Secrets Manager证书来源
"""
import base64
import binascii
import json
from typing import Any, Callable, Iterator, List, Optional, Sequence
import logging

import boto3
from botocore.config import Config

from ..interfaces import CertificateSourceInterface
from ..models import CertificatePayload
from .error_handler import ConfigurationError, EntryError


RAW_PEM_PREFIX = "-----BEGIN"


def secret_arn(region: str, account: str, secret_name: str) -> str:
    return f"arn:aws:secretsmanager:{region}:{account}:secret:{secret_name}"


def default_client_factory(region: str, request_timeout: Optional[float] = None):
    """创建 Secrets Manager 客户端（带连接/读取超时）"""
    client_config = None
    if request_timeout:
        client_config = Config(connect_timeout=request_timeout, read_timeout=request_timeout)
    return boto3.client('secretsmanager', region_name=region, config=client_config)


class AwsSecretsSource(CertificateSourceInterface):
    """
    AWS Secrets Manager 来源

    SecretString 按JSON对象解析，键名包含指定子串的值视为证书：
    以 -----BEGIN 开头的是原始PEM，否则按base64解码。
    """

    kind = "aws_secret"

    def __init__(self, account: str, region: str, secret_names: Sequence[str],
                 key_substring: str = ".pem", include_file_in_metrics: bool = False,
                 request_timeout: Optional[float] = None, passphrase: str = "",
                 client_factory: Optional[Callable[..., Any]] = None):
        """
        初始化AWS来源

        Args:
            account: AWS账号ID
            region: AWS区域
            secret_names: 需要检查的secret名称
            key_substring: 证书键名需要包含的子串
            include_file_in_metrics: 为True时在指标中增加 file 标签
            request_timeout: 连接/读取超时（秒）
            passphrase: PKCS#12 / JKS 密码
            client_factory: 客户端工厂，参数为 (region, request_timeout)
        """
        if not account or not region:
            raise ConfigurationError("AWS account and region are required")

        self.account = account
        self.region = region
        self.secret_names = list(secret_names)
        self.key_substring = key_substring
        self.include_file_in_metrics = include_file_in_metrics
        self.request_timeout = request_timeout
        self.passphrase = passphrase
        self.client_factory = client_factory or default_client_factory
        self.client = None
        self.logger = logging.getLogger(__name__)

    def discover(self) -> List[str]:
        # 每个周期重新创建客户端，凭据轮换后无需重启
        self.client = self.client_factory(self.region, self.request_timeout)
        return list(self.secret_names)

    def describe(self, secret_name: str) -> str:
        return f"aws secret {secret_name}"

    def fetch(self, secret_name: str) -> Iterator[CertificatePayload]:
        if self.client is None:
            self.client = self.client_factory(self.region, self.request_timeout)

        self.logger.info(f"从 AWS Secrets Manager 读取 {secret_name}")
        response = self.client.get_secret_value(SecretId=secret_arn(self.region, self.account, secret_name))

        secret_string = response.get('SecretString')
        if secret_string is None:
            self.logger.info(f"{secret_name} 没有 SecretString，跳过")
            return

        secret_map = json.loads(secret_string)
        if not isinstance(secret_map, dict):
            raise ValueError(f"secret {secret_name} is not a JSON object")

        failures = []
        for key, value in secret_map.items():
            if self.key_substring not in key:
                continue
            if not isinstance(value, str):
                self.logger.debug(f"{secret_name} 的键 {key} 不是字符串，跳过")
                continue

            try:
                data = self.decode_value(value)
            except (binascii.Error, ValueError) as e:
                failures.append(f"{secret_name} key {key}: {e}")
                continue

            labels = {'secretName': secret_name, 'key': key}
            if self.include_file_in_metrics:
                labels['file'] = value

            yield CertificatePayload(
                data=data,
                labels=labels,
                passphrase=self.passphrase,
                description=f"{self.describe(secret_name)} [{key}]"
            )

        if failures:
            raise EntryError(failures)

    @staticmethod
    def decode_value(value: str) -> bytes:
        if value.startswith(RAW_PEM_PREFIX):
            return value.encode('utf-8')
        return base64.b64decode(value.encode('ascii'), validate=True)

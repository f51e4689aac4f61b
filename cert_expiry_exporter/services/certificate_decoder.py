"""
证书数据解码服务

按固定顺序尝试 PEM -> PKCS#12 -> JKS，第一个识别出数据格式的阶段即为最终结果。
"""
import base64
import binascii
import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple
import logging

from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
import jks
from jks.util import DecryptionFailureException, KeystoreException

from ..models import CertificateMetric, DecodeAttemptResult
from .error_handler import EntryError, ErrorRecorder, FormatError


PEM_BLOCK_PATTERN = re.compile(
    rb"-----BEGIN (?P<type>[^\r\n-]*)-----[ \t]*\r?\n(?P<body>.*?)-----END (?P=type)-----",
    re.DOTALL
)

CERTIFICATE_BLOCK_TYPE = "CERTIFICATE"


def common_name(name: x509.Name) -> str:
    """
    获取名称中的CN（多个CN时取最后一个），不存在时返回空字符串

    Args:
        name: 证书的 subject 或 issuer

    Returns:
        str: CN
    """
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attributes:
        return ""
    value = attributes[-1].value
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return value


def metric_from_certificate(certificate: x509.Certificate, alias: Optional[str] = None,
                            now: Optional[datetime] = None) -> CertificateMetric:
    """根据X.509证书生成过期指标"""
    return CertificateMetric.from_validity(
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
        issuer_cn=common_name(certificate.issuer),
        subject_cn=common_name(certificate.subject),
        alias=alias,
        now=now
    )


def _decode_pem_body(body: bytes) -> bytes:
    """去掉可选的PEM头部字段后进行base64解码"""
    lines = body.splitlines()
    if lines and b':' in lines[0]:
        while lines and lines[0].strip():
            lines.pop(0)
    payload = b''.join(line.strip() for line in lines)
    return base64.b64decode(payload, validate=True)


class CertificateSourceDecoder:
    """证书数据解码器（PEM / PKCS#12 / JKS）"""

    def __init__(self, error_recorder: Optional[ErrorRecorder] = None):
        """
        初始化解码器

        Args:
            error_recorder: 错误记录器，PEM中无法解析的证书会被记录
        """
        self.error_recorder = error_recorder
        self.logger = logging.getLogger(__name__)

    def decode(self, data: bytes, passphrase: str = "") -> Tuple[List[CertificateMetric], Optional[Exception]]:
        """
        解码证书数据

        Args:
            data: 原始字节
            passphrase: PKCS#12 / JKS 密码

        Returns:
            Tuple[List[CertificateMetric], Optional[Exception]]:
                指标列表和错误。格式均无法识别时错误为 FormatError，
                列表为空；容器内部分条目失败时错误为 EntryError，列表为已提取的指标。
        """
        now = datetime.now(timezone.utc)
        passphrase = passphrase or ""

        pem_result = self.parse_pem(data, now)
        if pem_result.recognized:
            return pem_result.metrics, pem_result.error

        pkcs12_result = self.parse_pkcs12(data, passphrase, now)
        if pkcs12_result.recognized:
            return pkcs12_result.metrics, pkcs12_result.error

        jks_result = self.parse_jks(data, passphrase, now)
        if jks_result.recognized:
            return jks_result.metrics, jks_result.error

        return [], FormatError(pem_result.error, pkcs12_result.error, jks_result.error)

    def parse_pem(self, data: bytes, now: Optional[datetime] = None) -> DecodeAttemptResult:
        """
        依次扫描PEM块

        只要解码出任意类型的PEM块即视为识别成功；非 CERTIFICATE 块被跳过，
        无法解析的证书只影响该条目。
        """
        metrics = []
        block_decoded = False

        for match in PEM_BLOCK_PATTERN.finditer(data):
            block_type = match.group('type').decode('ascii', errors='replace')
            try:
                der = _decode_pem_body(match.group('body'))
            except (binascii.Error, ValueError):
                self.logger.debug(f"跳过无法解码的PEM块: {block_type}")
                continue

            block_decoded = True

            if block_type != CERTIFICATE_BLOCK_TYPE:
                self.logger.debug(f"跳过类型为 '{block_type}' 的PEM块")
                continue

            try:
                certificate = x509.load_der_x509_certificate(der)
                metrics.append(metric_from_certificate(certificate, now=now))
            except ValueError as e:
                if self.error_recorder:
                    self.error_recorder.record("PEM证书块", e)
                else:
                    self.logger.warning(f"解析PEM块中的X.509证书失败: {e}")

        if not block_decoded:
            return DecodeAttemptResult.not_recognized(ValueError("no PEM data found in input"))

        return DecodeAttemptResult(recognized=True, metrics=metrics)

    def parse_pkcs12(self, data: bytes, passphrase: str = "",
                     now: Optional[datetime] = None) -> DecodeAttemptResult:
        """以PKCS#12格式打开数据，输出叶子证书和CA证书的指标"""
        password = passphrase.encode('utf-8') if passphrase else None
        try:
            _, certificate, additional_certificates = pkcs12.load_key_and_certificates(data, password)
        except (ValueError, TypeError) as e:
            return DecodeAttemptResult.not_recognized(e)

        metrics = []
        if certificate is not None:
            metrics.append(metric_from_certificate(certificate, now=now))
        for ca_certificate in additional_certificates:
            metrics.append(metric_from_certificate(ca_certificate, now=now))

        return DecodeAttemptResult(recognized=True, metrics=metrics)

    def parse_jks(self, data: bytes, passphrase: str = "",
                  now: Optional[datetime] = None) -> DecodeAttemptResult:
        """
        以JKS格式打开数据

        密钥库本身能够打开即视为识别成功。每个别名单独处理：
        受信任证书条目输出一个指标，私钥条目输出证书链中每个证书的指标。
        某个别名失败时继续处理其余别名，最后汇总为 EntryError。
        """
        try:
            keystore = jks.KeyStore.loads(data, passphrase, try_decrypt_keys=False)
        except KeystoreException as e:
            return DecodeAttemptResult.not_recognized(ValueError(f"failed to decode JKS: {e}"))

        metrics = []
        failures = []

        for alias, entry in keystore.entries.items():
            if isinstance(entry, jks.TrustedCertEntry):
                try:
                    certificate = x509.load_der_x509_certificate(entry.cert)
                except ValueError as e:
                    failures.append(f"failed to parse trusted certificate for alias '{alias}': {e}")
                    continue
                metrics.append(metric_from_certificate(certificate, alias=alias, now=now))

            elif isinstance(entry, jks.PrivateKeyEntry):
                try:
                    entry.decrypt(passphrase)
                except DecryptionFailureException as e:
                    failures.append(
                        f"failed to get private key entry '{alias}' "
                        f"(key may have a different password than the keystore): {e}"
                    )
                    continue
                except KeystoreException as e:
                    failures.append(f"failed to decrypt private key entry '{alias}': {e}")
                    continue

                for index, (_, der) in enumerate(entry.cert_chain):
                    try:
                        certificate = x509.load_der_x509_certificate(der)
                    except ValueError as e:
                        failures.append(
                            f"failed to parse certificate in chain for private key entry "
                            f"'{alias}' at index {index}: {e}"
                        )
                        continue
                    metrics.append(metric_from_certificate(certificate, alias=alias, now=now))

        error = EntryError(failures, metrics) if failures else None
        return DecodeAttemptResult(recognized=True, metrics=metrics, error=error)

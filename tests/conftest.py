"""
测试共用的证书生成工具
"""
import base64
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
import jks
from prometheus_client import CollectorRegistry

from cert_expiry_exporter.services.metrics_registry import MetricsRegistry


class CertFactory:
    """生成测试用的证书、PKCS#12 和 JKS 数据"""

    def __init__(self):
        self.now = datetime.now(timezone.utc).replace(microsecond=0)

    def key(self):
        return ec.generate_private_key(ec.SECP256R1())

    def certificate(self, cn: str = "test.example.com", issuer_cn: Optional[str] = None,
                    days: int = 30, not_before: Optional[datetime] = None, key=None) -> x509.Certificate:
        key = key or self.key()
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
        issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn or cn)])
        not_before = not_before or self.now - timedelta(days=1)
        return (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(self.now + timedelta(days=days))
            .sign(key, hashes.SHA256())
        )

    def pem(self, *certificates: x509.Certificate) -> bytes:
        return b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in certificates)

    def pem_b64(self, *certificates: x509.Certificate) -> str:
        return base64.b64encode(self.pem(*certificates)).decode('ascii')

    def pkcs12(self, certificate: x509.Certificate, key, cas: Optional[List[x509.Certificate]] = None,
               password: str = "") -> bytes:
        encryption = (
            serialization.BestAvailableEncryption(password.encode('utf-8'))
            if password else serialization.NoEncryption()
        )
        return pkcs12.serialize_key_and_certificates(b"test", key, certificate, cas, encryption)

    def jks(self, password: str, trusted: Optional[dict] = None, private: Optional[dict] = None,
            key_password: Optional[str] = None) -> bytes:
        """
        生成JKS密钥库

        Args:
            password: 密钥库密码
            trusted: {别名: 证书}
            private: {别名: (私钥, [证书链])}
            key_password: 私钥密码，默认与密钥库密码相同
        """
        entries = []
        for alias, certificate in (trusted or {}).items():
            entries.append(jks.TrustedCertEntry.new(alias, certificate.public_bytes(serialization.Encoding.DER)))
        for alias, (key, chain) in (private or {}).items():
            key_der = key.private_bytes(
                serialization.Encoding.DER,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption()
            )
            entry = jks.PrivateKeyEntry.new(
                alias, [cert.public_bytes(serialization.Encoding.DER) for cert in chain], key_der
            )
            if key_password is not None:
                # 已加密的条目在保存时不会再用密钥库密码加密
                entry.encrypt(key_password)
            entries.append(entry)
        return jks.KeyStore.new("jks", entries).saves(password)


@pytest.fixture
def cert_factory():
    return CertFactory()


@pytest.fixture
def metrics_registry():
    return MetricsRegistry(CollectorRegistry())

"""
kubeconfig证书来源

kubeconfig 中每个 cluster 的 CA 证书和每个 user 的客户端证书分别导出，
证书可以内嵌（*-data，base64）或以文件路径给出（相对路径按 kubeconfig 所在目录解析）。
"""
import base64
import binascii
import os
from dataclasses import dataclass
from typing import Iterator, List, Optional

import yaml

from ..models import CertificatePayload
from .error_handler import EntryError
from .file_source import FileCertificateSource


@dataclass
class KubeConfigEntry:
    """kubeconfig 中的一个证书条目"""
    entry_type: str
    name: str
    data: str = ""
    file: str = ""


def parse_kubeconfig(path: str) -> List[KubeConfigEntry]:
    """
    解析kubeconfig文件

    Args:
        path: kubeconfig 路径

    Returns:
        List[KubeConfigEntry]: cluster 条目在前，user 条目在后

    Raises:
        OSError: 文件无法读取
        yaml.YAMLError: 文件不是合法的YAML
        ValueError: 顶层结构不是映射
    """
    with open(path, 'r', encoding='utf-8') as f:
        document = yaml.safe_load(f) or {}

    if not isinstance(document, dict):
        raise ValueError(f"{path} is not a kubeconfig document")

    entries = []
    for cluster in document.get('clusters') or []:
        details = cluster.get('cluster') or {}
        entries.append(KubeConfigEntry(
            entry_type='cluster',
            name=cluster.get('name', ''),
            data=details.get('certificate-authority-data', ''),
            file=details.get('certificate-authority', '')
        ))

    for user in document.get('users') or []:
        details = user.get('user') or {}
        entries.append(KubeConfigEntry(
            entry_type='user',
            name=user.get('name', ''),
            data=details.get('client-certificate-data', ''),
            file=details.get('client-certificate', '')
        ))

    return entries


def path_relative_to_kubeconfig(file: str, kubeconfig_path: str) -> str:
    if os.path.isabs(file):
        return file
    return os.path.join(os.path.dirname(kubeconfig_path), file)


class KubeConfigSource(FileCertificateSource):
    """通过glob发现kubeconfig文件，并导出其中的证书"""

    kind = "kubeconfig"

    def fetch(self, path: str) -> Iterator[CertificatePayload]:
        failures = []

        for entry in parse_kubeconfig(path):
            data: Optional[bytes] = None
            try:
                if entry.data:
                    data = base64.b64decode(entry.data, validate=True)
                elif entry.file:
                    with open(path_relative_to_kubeconfig(entry.file, path), 'rb') as f:
                        data = f.read()
                else:
                    failures.append(f"{entry.entry_type} {entry.name} does not have a certificate or certificate data")
                    continue
            except (binascii.Error, OSError) as e:
                failures.append(f"{entry.entry_type} {entry.name}: {e}")
                continue

            yield CertificatePayload(
                data=data,
                labels={
                    'filename': path,
                    'type': entry.entry_type,
                    'name': entry.name,
                    'nodename': self.node_name
                },
                passphrase=self.password_resolver.resolve(path),
                description=f"{path} ({entry.entry_type} {entry.name})"
            )

        if failures:
            raise EntryError(failures)

"""
Kubernetes资源证书来源（Secret、ConfigMap、Webhook配置、cert-manager CertificateRequest）
"""
import base64
import binascii
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
import logging

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from ..interfaces import CertificateSourceInterface
from ..models import CertificatePayload
from .error_handler import ConfigurationError, DiscoveryError, ErrorRecorder
from .glob_matcher import match_pattern


MUTATING_WEBHOOK_CONFIGURATION_TYPE = "mutatingwebhookconfiguration"
VALIDATING_WEBHOOK_CONFIGURATION_TYPE = "validatingwebhookconfiguration"

CERT_MANAGER_GROUP = "cert-manager.io"
CERT_MANAGER_VERSION = "v1"
CERTIFICATE_REQUEST_PLURAL = "certificaterequests"


def build_api_client(kubeconfig_path: str = "") -> client.ApiClient:
    """
    创建Kubernetes API客户端

    指定 kubeconfig 时使用该文件；否则优先使用集群内配置，其次使用默认 kubeconfig。

    Raises:
        ConfigurationError: 无法加载任何可用的凭据
    """
    try:
        if kubeconfig_path:
            return config.new_client_from_config(config_file=kubeconfig_path)
        try:
            config.load_incluster_config()
        except ConfigException:
            config.load_kube_config()
        return client.ApiClient()
    except (ConfigException, OSError, TypeError) as e:
        raise ConfigurationError(f"Error building kubeconfig: {e}") from e


def _metadata(obj: Any) -> Tuple[str, str, Dict[str, str]]:
    """返回 (名称, 命名空间, 注解)，兼容模型对象和字典"""
    if isinstance(obj, dict):
        metadata = obj.get('metadata') or {}
        return metadata.get('name', ''), metadata.get('namespace', '') or '', metadata.get('annotations') or {}
    metadata = obj.metadata
    return metadata.name or '', metadata.namespace or '', metadata.annotations or {}


def _items(result: Any) -> List[Any]:
    if isinstance(result, dict):
        return result.get('items') or []
    return result.items or []


def _b64decode(value: Any) -> bytes:
    if isinstance(value, bytes):
        return base64.b64decode(value, validate=True)
    return base64.b64decode(value.encode('ascii'), validate=True)


class KubernetesSource(CertificateSourceInterface):
    """Kubernetes资源来源基类：按命名空间和标签选择器列出对象，并按注解过滤"""

    def __init__(self, namespaces: Optional[Sequence[str]] = None,
                 label_selectors: Optional[Sequence[str]] = None,
                 annotation_selectors: Optional[Sequence[str]] = None,
                 error_recorder: Optional[ErrorRecorder] = None,
                 request_timeout: Optional[float] = None, passphrase: str = ""):
        """
        Args:
            namespaces: 命名空间列表，空字符串表示全部命名空间
            label_selectors: 标签选择器，每个选择器单独请求一次
            annotation_selectors: 对象包含其中任意一个注解键时才会被检查
            error_recorder: 错误记录器，单个请求失败不影响其他请求
            request_timeout: 每个API请求的超时时间（秒）
            passphrase: PKCS#12 / JKS 密码
        """
        self.namespaces = list(namespaces) if namespaces else [""]
        self.label_selectors = list(label_selectors or [])
        self.annotation_selectors = list(annotation_selectors or [])
        self.error_recorder = error_recorder
        self.request_timeout = request_timeout
        self.passphrase = passphrase
        self.logger = logging.getLogger(__name__)

    def _record(self, context: str, error: Exception):
        if self.error_recorder:
            self.error_recorder.record(context, error)
        else:
            self.logger.error(f"{context} 处理失败: {error}")

    def _list_kwargs(self, label_selector: Optional[str]) -> Dict[str, Any]:
        kwargs = {}
        if label_selector:
            kwargs['label_selector'] = label_selector
        if self.request_timeout:
            kwargs['_request_timeout'] = self.request_timeout
        return kwargs

    def _list_objects(self, resource: str, list_call: Callable[[str, Dict[str, Any]], Any],
                      namespaced: bool = True) -> List[Any]:
        """
        按命名空间 × 标签选择器列出对象并去重

        单个请求失败记录为 DiscoveryError 后继续。
        """
        namespaces = self.namespaces if namespaced else [""]
        selectors = self.label_selectors or [None]

        objects = []
        seen = set()
        for namespace in namespaces:
            for selector in selectors:
                try:
                    result = list_call(namespace, self._list_kwargs(selector))
                except Exception as e:
                    self._record(
                        f"列出 {resource} (namespace={namespace or '*'}, selector={selector or '-'})",
                        DiscoveryError(f"Error requesting {resource}: {e}")
                    )
                    continue
                for obj in _items(result):
                    name, obj_namespace, _ = _metadata(obj)
                    if (obj_namespace, name) in seen:
                        continue
                    seen.add((obj_namespace, name))
                    objects.append(obj)
        return objects

    def _annotations_match(self, obj: Any) -> bool:
        if not self.annotation_selectors:
            return True
        _, _, annotations = _metadata(obj)
        return any(selector in annotations for selector in self.annotation_selectors)

    def describe(self, candidate: Any) -> str:
        name, namespace, _ = _metadata(candidate)
        return f"{self.kind} {namespace}/{name}" if namespace else f"{self.kind} {name}"


class DataKeySource(KubernetesSource):
    """按 include/exclude glob 选择数据键的来源（Secret、ConfigMap）"""

    def __init__(self, *args, include_globs: Optional[Sequence[str]] = None,
                 exclude_globs: Optional[Sequence[str]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.include_globs = list(include_globs) if include_globs else ["*"]
        self.exclude_globs = list(exclude_globs or [])

    def _matches_any(self, globs: Sequence[str], key: str) -> bool:
        for pattern in globs:
            try:
                if match_pattern(pattern, key):
                    return True
            except DiscoveryError as e:
                self._record(f"匹配 {pattern} 与 {key}", e)
        return False

    def key_selected(self, key: str) -> bool:
        """数据键匹配任意 include glob 且不匹配任何 exclude glob"""
        if not self._matches_any(self.include_globs, key):
            return False
        return not self._matches_any(self.exclude_globs, key)

    def _payloads(self, candidate: Any, items: List[Tuple[str, Callable[[], bytes]]],
                  owner_labels: Dict[str, str]) -> Iterator[CertificatePayload]:
        description = self.describe(candidate)
        for key, read_value in items:
            if not self.key_selected(key):
                self.logger.debug(f"忽略 {description} 的数据键 {key}")
                continue
            try:
                data = read_value()
            except (binascii.Error, ValueError) as e:
                self._record(f"{description} 数据键 {key}", e)
                continue

            labels = {'key_name': key}
            labels.update(owner_labels)
            yield CertificatePayload(
                data=data,
                labels=labels,
                passphrase=self.passphrase,
                description=f"{description} [{key}]"
            )


class SecretSource(DataKeySource):
    """Kubernetes Secret"""

    kind = "secret"

    def __init__(self, core_api: client.CoreV1Api, *args,
                 include_types: Optional[Sequence[str]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.core_api = core_api
        self.include_types = list(include_types or [])

    def _list(self, namespace: str, kwargs: Dict[str, Any]):
        if namespace:
            return self.core_api.list_namespaced_secret(namespace, **kwargs)
        return self.core_api.list_secret_for_all_namespaces(**kwargs)

    def discover(self) -> List[Any]:
        selected = []
        for secret in self._list_objects("secrets", self._list):
            if self.include_types and secret.type not in self.include_types:
                self.logger.debug(f"忽略 {self.describe(secret)}，类型 {secret.type} 不在 {self.include_types} 中")
                continue
            if not self._annotations_match(secret):
                continue
            selected.append(secret)
        return selected

    def fetch(self, secret: Any) -> Iterator[CertificatePayload]:
        name, namespace, _ = _metadata(secret)
        items = [
            (key, lambda value=value: _b64decode(value))
            for key, value in sorted((secret.data or {}).items())
        ]
        return self._payloads(secret, items, {'secret_name': name, 'secret_namespace': namespace})


class ConfigMapSource(DataKeySource):
    """Kubernetes ConfigMap（data 为文本，binaryData 为 base64）"""

    kind = "configmap"

    def __init__(self, core_api: client.CoreV1Api, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.core_api = core_api

    def _list(self, namespace: str, kwargs: Dict[str, Any]):
        if namespace:
            return self.core_api.list_namespaced_config_map(namespace, **kwargs)
        return self.core_api.list_config_map_for_all_namespaces(**kwargs)

    def discover(self) -> List[Any]:
        return [
            config_map for config_map in self._list_objects("configmaps", self._list)
            if self._annotations_match(config_map)
        ]

    def fetch(self, config_map: Any) -> Iterator[CertificatePayload]:
        name, namespace, _ = _metadata(config_map)
        items = [
            (key, lambda value=value: value.encode('utf-8'))
            for key, value in sorted((config_map.data or {}).items())
        ]
        items.extend(
            (key, lambda value=value: _b64decode(value))
            for key, value in sorted((getattr(config_map, 'binary_data', None) or {}).items())
        )
        return self._payloads(config_map, items, {'configmap_name': name, 'configmap_namespace': namespace})


class WebhookSource(KubernetesSource):
    """MutatingWebhookConfiguration / ValidatingWebhookConfiguration 中的 caBundle"""

    kind = "webhook"

    def __init__(self, admission_api: client.AdmissionregistrationV1Api, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.admission_api = admission_api

    def discover(self) -> List[Tuple[str, Any]]:
        candidates = []
        listings = (
            (MUTATING_WEBHOOK_CONFIGURATION_TYPE,
             lambda _, kwargs: self.admission_api.list_mutating_webhook_configuration(**kwargs)),
            (VALIDATING_WEBHOOK_CONFIGURATION_TYPE,
             lambda _, kwargs: self.admission_api.list_validating_webhook_configuration(**kwargs)),
        )
        for type_name, list_call in listings:
            for configuration in self._list_objects(type_name, list_call, namespaced=False):
                if self._annotations_match(configuration):
                    candidates.append((type_name, configuration))
        return candidates

    def describe(self, candidate: Tuple[str, Any]) -> str:
        type_name, configuration = candidate
        name, _, _ = _metadata(configuration)
        return f"{type_name} {name}"

    def fetch(self, candidate: Tuple[str, Any]) -> Iterator[CertificatePayload]:
        type_name, configuration = candidate
        name, _, _ = _metadata(configuration)

        for webhook in configuration.webhooks or []:
            client_config = webhook.client_config
            ca_bundle = client_config.ca_bundle if client_config is not None else None
            if not ca_bundle:
                self.logger.info(f"忽略 {type_name} {name} 的 {webhook.name}，没有 caBundle 证书")
                continue
            try:
                data = _b64decode(ca_bundle)
            except (binascii.Error, ValueError) as e:
                self._record(f"{type_name} {name} webhook {webhook.name}", e)
                continue

            yield CertificatePayload(
                data=data,
                labels={
                    'type_name': type_name,
                    'webhook_name': name,
                    'admission_review_version_name': webhook.name
                },
                passphrase=self.passphrase,
                description=f"{type_name} {name} [{webhook.name}]"
            )


class CertificateRequestSource(KubernetesSource):
    """cert-manager CertificateRequest（只检查 Ready=True 的请求）"""

    kind = "certrequest"

    def __init__(self, custom_api: client.CustomObjectsApi, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.custom_api = custom_api

    def _list(self, namespace: str, kwargs: Dict[str, Any]):
        if namespace:
            return self.custom_api.list_namespaced_custom_object(
                CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, namespace, CERTIFICATE_REQUEST_PLURAL, **kwargs
            )
        return self.custom_api.list_cluster_custom_object(
            CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, CERTIFICATE_REQUEST_PLURAL, **kwargs
        )

    @staticmethod
    def is_ready(certificate_request: Dict[str, Any]) -> bool:
        conditions = (certificate_request.get('status') or {}).get('conditions') or []
        return any(
            condition.get('type') == 'Ready' and condition.get('status') == 'True'
            for condition in conditions
        )

    def discover(self) -> List[Dict[str, Any]]:
        selected = []
        for certificate_request in self._list_objects("certificaterequests", self._list):
            if not self.is_ready(certificate_request):
                self.logger.info(f"忽略未就绪的 {self.describe(certificate_request)}")
                continue
            if not self._annotations_match(certificate_request):
                continue
            selected.append(certificate_request)
        return selected

    def fetch(self, certificate_request: Dict[str, Any]) -> Iterator[CertificatePayload]:
        name, namespace, _ = _metadata(certificate_request)
        certificate = (certificate_request.get('status') or {}).get('certificate')
        if not certificate:
            raise ValueError(f"certificaterequest {namespace}/{name} has no issued certificate")

        yield CertificatePayload(
            data=_b64decode(certificate),
            labels={'cert_request': name, 'certrequest_namespace': namespace},
            passphrase=self.passphrase,
            description=self.describe(certificate_request)
        )

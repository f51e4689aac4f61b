"""
Kubernetes资源证书来源测试
"""
import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client
from kubernetes.config.config_exception import ConfigException

from cert_expiry_exporter.services.error_handler import ConfigurationError, DiscoveryError
from cert_expiry_exporter.services.kubernetes_sources import (
    CertificateRequestSource, ConfigMapSource, SecretSource, WebhookSource, build_api_client
)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def make_secret(name, namespace, data, secret_type="kubernetes.io/tls", annotations=None):
    return client.V1Secret(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, annotations=annotations),
        data=data,
        type=secret_type
    )


class TestSecretSource:
    """Secret来源测试类"""

    def setup_method(self):
        """测试前准备"""
        self.core_api = MagicMock()
        self.recorder = MagicMock()

    def source(self, **kwargs):
        kwargs.setdefault('error_recorder', self.recorder)
        return SecretSource(self.core_api, **kwargs)

    def test_list_all_namespaces_with_timeout(self):
        """测试列出全部命名空间并带上请求超时"""
        self.core_api.list_secret_for_all_namespaces.return_value = client.V1SecretList(items=[
            make_secret("tls", "default", {'tls.crt': b64(b"x")}),
        ])

        secrets = self.source(request_timeout=10).discover()

        assert [s.metadata.name for s in secrets] == ["tls"]
        self.core_api.list_secret_for_all_namespaces.assert_called_once_with(_request_timeout=10)

    def test_namespaces_and_selectors(self):
        """测试按命名空间和标签选择器分别请求并去重"""
        shared = make_secret("shared", "a", {})
        self.core_api.list_namespaced_secret.side_effect = lambda namespace, **kwargs: client.V1SecretList(
            items=[shared] if namespace == "a" else [make_secret("other", namespace, {})]
        )

        secrets = self.source(namespaces=["a", "b"], label_selectors=["app=x", "team=y"]).discover()

        assert [(s.metadata.namespace, s.metadata.name) for s in secrets] == [("a", "shared"), ("b", "other")]
        assert self.core_api.list_namespaced_secret.call_count == 4
        self.core_api.list_namespaced_secret.assert_any_call("b", label_selector="team=y")

    def test_type_and_annotation_filters(self):
        """测试类型和注解过滤"""
        self.core_api.list_secret_for_all_namespaces.return_value = client.V1SecretList(items=[
            make_secret("tls", "ns", {}, annotations={'cert-exporter/watch': 'true'}),
            make_secret("opaque", "ns", {}, secret_type="Opaque", annotations={'cert-exporter/watch': 'true'}),
            make_secret("unannotated", "ns", {}),
        ])

        secrets = self.source(
            include_types=["kubernetes.io/tls"], annotation_selectors=["cert-exporter/watch"]
        ).discover()

        assert [s.metadata.name for s in secrets] == ["tls"]

    def test_list_failure_is_recorded(self):
        """测试列表请求失败被记录后继续"""
        self.core_api.list_namespaced_secret.side_effect = [
            RuntimeError("forbidden"),
            client.V1SecretList(items=[make_secret("ok", "b", {})]),
        ]

        secrets = self.source(namespaces=["a", "b"]).discover()

        assert [s.metadata.name for s in secrets] == ["ok"]
        context, error = self.recorder.record.call_args[0]
        assert isinstance(error, DiscoveryError)
        assert "namespace=a" in context

    def test_fetch_key_globs(self):
        """测试数据键的 include/exclude glob"""
        secret = make_secret("tls", "prod", {
            'tls.crt': b64(b"cert"),
            'ca.crt': b64(b"ca"),
            'tls.key': b64(b"key"),
        })

        payloads = list(self.source(include_globs=["*.crt"], exclude_globs=["ca.*"]).fetch(secret))

        assert len(payloads) == 1
        assert payloads[0].data == b"cert"
        assert payloads[0].labels == {'key_name': 'tls.crt', 'secret_name': 'tls', 'secret_namespace': 'prod'}

    def test_fetch_default_includes_every_key(self):
        """测试默认包含全部数据键"""
        secret = make_secret("tls", "prod", {'b': b64(b"2"), 'a': b64(b"1")})

        payloads = list(self.source().fetch(secret))

        assert [p.labels['key_name'] for p in payloads] == ['a', 'b']

    def test_fetch_invalid_base64_is_isolated(self):
        """测试单个键解码失败不影响其他键"""
        secret = make_secret("tls", "prod", {'bad.crt': "!!!not-base64!!!", 'good.crt': b64(b"ok")})

        payloads = list(self.source().fetch(secret))

        assert [p.labels['key_name'] for p in payloads] == ['good.crt']
        self.recorder.record.assert_called_once()

    def test_malformed_key_glob_is_recorded(self):
        """测试格式错误的键glob被记录并视为不匹配"""
        secret = make_secret("tls", "prod", {'tls.crt': b64(b"ok")})

        payloads = list(self.source(include_globs=["[bad", "*.crt"]).fetch(secret))

        assert len(payloads) == 1
        assert isinstance(self.recorder.record.call_args[0][1], DiscoveryError)


class TestConfigMapSource:
    """ConfigMap来源测试类"""

    def setup_method(self):
        """测试前准备"""
        self.core_api = MagicMock()

    def test_data_and_binary_data(self):
        """测试文本数据和二进制数据"""
        config_map = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name="bundle", namespace="kube-system"),
            data={'ca.pem': "-----BEGIN CERTIFICATE-----\n"},
            binary_data={'ca.der': b64(b"\x30\x82")}
        )
        source = ConfigMapSource(self.core_api)

        payloads = list(source.fetch(config_map))

        assert [p.labels['key_name'] for p in payloads] == ['ca.pem', 'ca.der']
        assert payloads[0].data == b"-----BEGIN CERTIFICATE-----\n"
        assert payloads[1].data == b"\x30\x82"
        assert payloads[1].labels['configmap_name'] == 'bundle'
        assert payloads[1].labels['configmap_namespace'] == 'kube-system'

    def test_discover_namespaced(self):
        """测试按命名空间列出"""
        self.core_api.list_namespaced_config_map.return_value = client.V1ConfigMapList(items=[
            client.V1ConfigMap(metadata=client.V1ObjectMeta(name="bundle", namespace="ns")),
        ])

        config_maps = ConfigMapSource(self.core_api, namespaces=["ns"], label_selectors=["app=x"]).discover()

        assert len(config_maps) == 1
        self.core_api.list_namespaced_config_map.assert_called_once_with("ns", label_selector="app=x")


class TestWebhookSource:
    """Webhook来源测试类"""

    def setup_method(self):
        """测试前准备"""
        self.admission_api = MagicMock()

    def configuration(self, name, webhooks):
        return SimpleNamespace(
            metadata=SimpleNamespace(name=name, namespace=None, annotations=None),
            webhooks=webhooks
        )

    def webhook(self, name, ca_bundle):
        return SimpleNamespace(name=name, client_config=SimpleNamespace(ca_bundle=ca_bundle))

    def test_mutating_and_validating(self):
        """测试同时列出 mutating 和 validating 配置"""
        self.admission_api.list_mutating_webhook_configuration.return_value = SimpleNamespace(items=[
            self.configuration("mutator", [self.webhook("m.example.com", b64(b"ca1"))]),
        ])
        self.admission_api.list_validating_webhook_configuration.return_value = SimpleNamespace(items=[
            self.configuration("validator", [
                self.webhook("v.example.com", b64(b"ca2")),
                self.webhook("no-bundle.example.com", None),
            ]),
        ])
        source = WebhookSource(self.admission_api)

        candidates = source.discover()
        payloads = [payload for candidate in candidates for payload in source.fetch(candidate)]

        assert [p.labels for p in payloads] == [
            {'type_name': 'mutatingwebhookconfiguration', 'webhook_name': 'mutator',
             'admission_review_version_name': 'm.example.com'},
            {'type_name': 'validatingwebhookconfiguration', 'webhook_name': 'validator',
             'admission_review_version_name': 'v.example.com'},
        ]
        assert [p.data for p in payloads] == [b"ca1", b"ca2"]
        assert source.describe(candidates[0]) == "mutatingwebhookconfiguration mutator"


class TestCertificateRequestSource:
    """CertificateRequest来源测试类"""

    def setup_method(self):
        """测试前准备"""
        self.custom_api = MagicMock()

    def request(self, name, ready, certificate=None):
        return {
            'metadata': {'name': name, 'namespace': 'certs'},
            'status': {
                'conditions': [{'type': 'Ready', 'status': 'True' if ready else 'False'}],
                'certificate': certificate,
            }
        }

    def test_only_ready_requests(self):
        """测试只检查已就绪的请求"""
        self.custom_api.list_namespaced_custom_object.return_value = {'items': [
            self.request("ready", True, b64(b"pem")),
            self.request("pending", False),
        ]}
        source = CertificateRequestSource(self.custom_api, namespaces=["certs"])

        requests = source.discover()
        payloads = list(source.fetch(requests[0]))

        assert [r['metadata']['name'] for r in requests] == ["ready"]
        assert payloads[0].data == b"pem"
        assert payloads[0].labels == {'cert_request': 'ready', 'certrequest_namespace': 'certs'}
        self.custom_api.list_namespaced_custom_object.assert_called_once_with(
            "cert-manager.io", "v1", "certs", "certificaterequests"
        )

    def test_cluster_scope(self):
        """测试全部命名空间"""
        self.custom_api.list_cluster_custom_object.return_value = {'items': []}

        assert CertificateRequestSource(self.custom_api).discover() == []
        self.custom_api.list_cluster_custom_object.assert_called_once_with(
            "cert-manager.io", "v1", "certificaterequests"
        )

    def test_ready_without_certificate(self):
        """测试已就绪但没有证书"""
        source = CertificateRequestSource(self.custom_api)

        with pytest.raises(ValueError):
            list(source.fetch(self.request("empty", True)))


class TestBuildApiClient:
    """Kubernetes客户端创建测试类"""

    @patch('cert_expiry_exporter.services.kubernetes_sources.config')
    def test_with_kubeconfig(self, mock_config):
        """测试指定kubeconfig"""
        build_api_client("/root/.kube/config")

        mock_config.new_client_from_config.assert_called_once_with(config_file="/root/.kube/config")

    @patch('cert_expiry_exporter.services.kubernetes_sources.config')
    def test_fallback_to_default_kubeconfig(self, mock_config):
        """测试集群内配置不可用时使用默认kubeconfig"""
        mock_config.load_incluster_config.side_effect = ConfigException("not in cluster")

        build_api_client()

        mock_config.load_kube_config.assert_called_once()

    @patch('cert_expiry_exporter.services.kubernetes_sources.config')
    def test_no_credentials(self, mock_config):
        """测试没有任何可用凭据"""
        mock_config.load_incluster_config.side_effect = ConfigException("not in cluster")
        mock_config.load_kube_config.side_effect = ConfigException("no kubeconfig")

        with pytest.raises(ConfigurationError):
            build_api_client()

"""
错误处理服务测试
"""
from unittest.mock import MagicMock

from cert_expiry_exporter.models import CertificateMetric
from cert_expiry_exporter.services.error_handler import (
    CertExporterError, ConfigurationError, DiscoveryError, EntryError, ErrorRecorder, FormatError
)


class TestExceptions:
    """错误类型测试类"""

    def test_format_error_message(self):
        """测试格式错误汇总三个阶段的原因"""
        error = FormatError(
            ValueError("no PEM data found in input"),
            ValueError("Could not deserialize PKCS12 data"),
            ValueError("failed to decode JKS: bad magic")
        )

        message = str(error)
        assert message.startswith("failed to parse certificate data")
        assert "as pem (error: no PEM data found in input)" in message
        assert "as pkcs12 (error: Could not deserialize PKCS12 data)" in message
        assert "as jks (error: failed to decode JKS: bad magic)" in message
        assert isinstance(error.pem_error, ValueError)

    def test_entry_error_keeps_partial_metrics(self):
        """测试条目错误携带部分指标"""
        metric = MagicMock(spec=CertificateMetric)

        error = EntryError(["alias 'a' failed", "alias 'b' failed"], [metric])

        assert str(error) == "alias 'a' failed; alias 'b' failed"
        assert error.failures == ["alias 'a' failed", "alias 'b' failed"]
        assert error.metrics == [metric]

    def test_entry_error_without_metrics(self):
        """测试没有部分指标的条目错误"""
        error = EntryError(["key 'tls.crt' failed"])

        assert error.metrics == []

    def test_exception_hierarchy(self):
        """测试所有错误都继承自基类"""
        for error_class in (ConfigurationError, DiscoveryError, EntryError, FormatError):
            assert issubclass(error_class, CertExporterError)


class TestErrorRecorder:
    """错误记录器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.counter = MagicMock()
        self.recorder = ErrorRecorder(self.counter, max_recent=3)

    def test_record(self):
        """测试记录错误"""
        self.recorder.logger = MagicMock()

        error_info = self.recorder.record("/etc/ssl/bad.pem", ValueError("broken"))

        self.counter.inc.assert_called_once()
        assert error_info['context'] == "/etc/ssl/bad.pem"
        assert error_info['error_type'] == "ValueError"
        assert error_info['error_message'] == "broken"
        self.recorder.logger.error.assert_called_once_with("/etc/ssl/bad.pem 处理失败: ValueError: broken")

    def test_recent_errors_bounded(self):
        """测试只保留最近的错误"""
        for index in range(5):
            self.recorder.record(f"item-{index}", ValueError(str(index)))

        recent = self.recorder.recent_errors()

        assert self.counter.inc.call_count == 5
        assert [info['context'] for info in recent] == ["item-2", "item-3", "item-4"]

    def test_get_error_statistics(self):
        """测试获取错误统计"""
        self.recorder.record("a.pem", ValueError("bad"))
        self.recorder.record("b.pem", FormatError(None, None, None))
        self.recorder.record("c.pem", ValueError("bad"))

        stats = self.recorder.get_error_statistics()

        assert stats['total_errors'] == 3
        assert stats['error_types'] == {'ValueError': 2, 'FormatError': 1}
        assert stats['most_common_error'] == 'ValueError'
        assert stats['most_common_error_count'] == 2

    def test_get_error_statistics_explicit_list(self):
        """测试统计指定的错误列表"""
        error_list = [
            {'error_type': 'DiscoveryError'},
            {'error_message': 'no type'}
        ]

        stats = self.recorder.get_error_statistics(error_list)

        assert stats['total_errors'] == 2
        assert stats['error_types'] == {'DiscoveryError': 1, 'Unknown': 1}

    def test_get_error_statistics_empty(self):
        """测试没有错误时的统计"""
        stats = self.recorder.get_error_statistics()

        assert stats['total_errors'] == 0
        assert stats['error_types'] == {}
        assert stats['most_common_error'] is None
        assert stats['most_common_error_count'] == 0

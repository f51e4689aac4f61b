"""
Glob匹配服务测试
"""
import os
from unittest.mock import MagicMock

import pytest

from cert_expiry_exporter.services.error_handler import DiscoveryError
from cert_expiry_exporter.services.glob_matcher import (
    GlobMatcher, SourceGlob, compile_pattern, expand_braces, match_pattern, split_pattern
)


def touch(path):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as f:
        f.write("x")


class TestPatternHelpers:
    """glob表达式工具函数测试类"""

    def test_star_does_not_cross_separator(self):
        """测试 * 不跨越目录"""
        assert match_pattern("*.crt", "server.crt")
        assert not match_pattern("*.crt", "dir/server.crt")

    def test_character_class_negation(self):
        """测试字符类取反（^ 和 ! 都支持）"""
        assert match_pattern("cert[!0-9].pem", "certa.pem")
        assert not match_pattern("cert[^0-9].pem", "cert1.pem")
        assert match_pattern("cert[0-9].pem", "cert7.pem")

    def test_question_mark_and_escape(self):
        """测试 ? 和转义字符"""
        assert match_pattern("tls.?rt", "tls.crt")
        assert match_pattern(r"literal\*", "literal*")
        assert not match_pattern(r"literal\*", "literalx")

    @pytest.mark.parametrize("pattern", ["[abc", "cert\\", "[!"])
    def test_malformed_pattern(self, pattern):
        """测试格式错误的表达式"""
        with pytest.raises(DiscoveryError):
            compile_pattern(pattern)

    def test_expand_braces(self):
        """测试花括号展开（含嵌套）"""
        assert expand_braces("*.{crt,pem}") == ["*.crt", "*.pem"]
        assert expand_braces("a{b,c{d,e}}") == ["ab", "acd", "ace"]
        assert expand_braces("plain.pem") == ["plain.pem"]

    @pytest.mark.parametrize("pattern", ["*.{crt,pem", "*.crt}"])
    def test_expand_braces_unbalanced(self, pattern):
        """测试花括号不成对"""
        with pytest.raises(DiscoveryError):
            expand_braces(pattern)

    def test_split_pattern(self):
        """测试拆分搜索根目录和通配表达式"""
        assert split_pattern("/etc/ssl/**/*.crt") == ("/etc/ssl", "**/*.crt")
        assert split_pattern("/etc/ssl/server.crt") == ("/etc/ssl", "server.crt")
        assert split_pattern("*.pem") == (".", "*.pem")
        assert split_pattern("/*.pem") == ("/", "*.pem")
        assert split_pattern("certs/{a,b}/*.pem") == ("certs", "{a,b}/*.pem")


class TestGlobMatcher:
    """Glob匹配器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.recorder = MagicMock()
        self.matcher = GlobMatcher(self.recorder)

    def test_recursive_include(self, tmp_path):
        """测试 ** 递归匹配并只返回文件"""
        touch(str(tmp_path / "a.crt"))
        touch(str(tmp_path / "nested" / "deep" / "b.crt"))
        touch(str(tmp_path / "nested" / "c.key"))
        os.makedirs(str(tmp_path / "dir.crt"))

        result = self.matcher.resolve([f"{tmp_path}/**/*.crt"])

        assert result == {str(tmp_path / "a.crt"), str(tmp_path / "nested" / "deep" / "b.crt")}

    def test_hidden_files_are_matched(self, tmp_path):
        """测试隐藏文件也会被匹配"""
        touch(str(tmp_path / ".hidden.pem"))

        assert self.matcher.resolve([f"{tmp_path}/*.pem"]) == {str(tmp_path / ".hidden.pem")}

    def test_union_minus_excludes(self, tmp_path):
        """测试 include 取并集后减去 exclude"""
        touch(str(tmp_path / "keep.pem"))
        touch(str(tmp_path / "drop.pem"))
        touch(str(tmp_path / "other.crt"))

        result = self.matcher.resolve(
            [f"{tmp_path}/*.pem", f"{tmp_path}/*.{{pem,crt}}"],
            [f"{tmp_path}/drop.*"]
        )

        assert result == {str(tmp_path / "keep.pem"), str(tmp_path / "other.crt")}

    def test_exact_path(self, tmp_path):
        """测试不含通配符的路径"""
        touch(str(tmp_path / "server.crt"))

        assert self.matcher.resolve([str(tmp_path / "server.crt")]) == {str(tmp_path / "server.crt")}

    def test_missing_root_yields_nothing(self, tmp_path):
        """测试搜索根目录不存在"""
        assert self.matcher.resolve([f"{tmp_path}/missing/*.crt"]) == set()
        self.recorder.record.assert_not_called()

    def test_malformed_glob_is_recorded_and_skipped(self, tmp_path):
        """测试格式错误的glob被记录后跳过，不影响其他glob"""
        touch(str(tmp_path / "good.pem"))

        result = self.matcher.resolve([f"{tmp_path}/[bad.pem", f"{tmp_path}/*.pem"])

        assert result == {str(tmp_path / "good.pem")}
        self.recorder.record.assert_called_once()
        context, error = self.recorder.record.call_args[0]
        assert isinstance(error, DiscoveryError)

    def test_malformed_exclude_does_not_remove(self, tmp_path):
        """测试格式错误的exclude不会排除任何文件"""
        touch(str(tmp_path / "good.pem"))

        result = self.matcher.resolve([f"{tmp_path}/*.pem"], [f"{tmp_path}/*.{{pem"])

        assert result == {str(tmp_path / "good.pem")}
        self.recorder.record.assert_called_once()

    def test_backslash_in_path_glob_is_rejected(self, tmp_path):
        """测试路径glob中的反斜杠转义被记录后跳过，而不是静默匹配不到"""
        touch(str(tmp_path / "*.pem"))
        touch(str(tmp_path / "good.pem"))

        result = self.matcher.resolve([f"{tmp_path}/\\*.pem"])

        assert result == set()
        self.recorder.record.assert_called_once()
        context, error = self.recorder.record.call_args[0]
        assert isinstance(error, DiscoveryError)
        assert "escape sequences are not supported" in str(error)

    def test_source_glob_str(self):
        """测试SourceGlob的字符串形式"""
        source_glob = SourceGlob.from_expression("/etc/ssl/**/*.crt")

        assert source_glob.search_root == "/etc/ssl"
        assert str(source_glob) == "/etc/ssl/**/*.crt"

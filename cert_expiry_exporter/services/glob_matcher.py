"""
Glob匹配与证书来源发现服务
"""
import glob
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional, Set, Tuple
import logging

from .error_handler import DiscoveryError, ErrorRecorder


GLOB_META_CHARS = frozenset('*?[{')


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> "re.Pattern":
    """
    将单个glob表达式编译为正则表达式

    语义与常见的路径匹配一致：'*' 和 '?' 不跨越 '/'，
    字符类支持 '^' 或 '!' 取反，反斜杠转义下一个字符。

    Args:
        pattern: glob表达式

    Returns:
        re.Pattern: 编译后的正则表达式

    Raises:
        DiscoveryError: 表达式格式错误（未闭合的字符类、结尾的转义符等）
    """
    parts = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == '*':
            parts.append('[^/]*')
            i += 1
        elif c == '?':
            parts.append('[^/]')
            i += 1
        elif c == '\\':
            if i + 1 >= n:
                raise DiscoveryError(f"malformed glob pattern {pattern!r}: trailing escape")
            parts.append(re.escape(pattern[i + 1]))
            i += 2
        elif c == '[':
            j = i + 1
            negate = False
            if j < n and pattern[j] in '^!':
                negate = True
                j += 1
            members = []
            closed = False
            while j < n:
                if pattern[j] == ']' and members:
                    closed = True
                    break
                if pattern[j] == '\\':
                    if j + 1 >= n:
                        break
                    members.append(re.escape(pattern[j + 1]))
                    j += 2
                    continue
                if pattern[j] == '-' and members and j + 1 < n and pattern[j + 1] != ']':
                    members.append('-')
                else:
                    members.append(re.escape(pattern[j]))
                j += 1
            if not closed:
                raise DiscoveryError(f"malformed glob pattern {pattern!r}: unclosed character class")
            parts.append('[' + ('^' if negate else '') + ''.join(members) + ']')
            i = j + 1
        else:
            parts.append(re.escape(c))
            i += 1
    return re.compile('^' + ''.join(parts) + '$', re.DOTALL)


def match_pattern(pattern: str, name: str) -> bool:
    """判断名称是否匹配glob表达式，格式错误时抛出 DiscoveryError"""
    return compile_pattern(pattern).match(name) is not None


def expand_braces(pattern: str) -> List[str]:
    """
    展开 {a,b} 形式的备选分组，支持嵌套

    Args:
        pattern: 可能包含花括号的glob表达式

    Returns:
        List[str]: 展开后的表达式列表

    Raises:
        DiscoveryError: 花括号不成对
    """
    start = -1
    depth = 0
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == '\\':
            i += 2
            continue
        if c == '{':
            if depth == 0:
                start = i
            depth += 1
        elif c == '}':
            if depth == 0:
                raise DiscoveryError(f"malformed glob pattern {pattern!r}: unmatched '}}'")
            depth -= 1
            if depth == 0:
                prefix, body, suffix = pattern[:start], pattern[start + 1:i], pattern[i + 1:]
                expanded = []
                for alternative in _split_alternatives(body):
                    expanded.extend(expand_braces(prefix + alternative + suffix))
                return expanded
        i += 1

    if depth != 0:
        raise DiscoveryError(f"malformed glob pattern {pattern!r}: unclosed '{{'")
    return [pattern]


def _split_alternatives(body: str) -> List[str]:
    """按顶层逗号切分花括号内容"""
    alternatives = []
    depth = 0
    current = []
    i = 0
    while i < len(body):
        c = body[i]
        if c == '\\' and i + 1 < len(body):
            current.append(body[i:i + 2])
            i += 2
            continue
        if c == '{':
            depth += 1
        elif c == '}':
            depth -= 1
        if c == ',' and depth == 0:
            alternatives.append(''.join(current))
            current = []
        else:
            current.append(c)
        i += 1
    alternatives.append(''.join(current))
    return alternatives


def split_pattern(expression: str) -> Tuple[str, str]:
    """
    将glob表达式拆分为固定的搜索根目录和通配后缀

    例如 '/etc/ssl/**/*.crt' -> ('/etc/ssl', '**/*.crt')

    Args:
        expression: 用户提供的glob表达式

    Returns:
        Tuple[str, str]: (搜索根目录, 通配表达式)
    """
    meta_index = len(expression)
    for index, c in enumerate(expression):
        if c in GLOB_META_CHARS:
            meta_index = index
            break

    separator = expression.rfind('/', 0, meta_index)
    if separator == -1:
        return '.', expression
    if separator == 0:
        return '/', expression[1:]
    return expression[:separator], expression[separator + 1:]


@dataclass(frozen=True)
class SourceGlob:
    """由用户字符串构造的不可变glob（搜索根目录 + 通配表达式）"""
    search_root: str
    pattern: str

    @classmethod
    def from_expression(cls, expression: str) -> "SourceGlob":
        search_root, pattern = split_pattern(expression)
        return cls(search_root=search_root, pattern=pattern)

    def join(self, relative_path: str) -> str:
        """将相对于搜索根目录的路径还原为接近原始输入的路径"""
        return os.path.normpath(os.path.join(self.search_root, relative_path))

    def validate(self) -> List[str]:
        """
        检查通配表达式并返回展开后的备选表达式

        Raises:
            DiscoveryError: 表达式格式错误
        """
        # glob.glob 不支持反斜杠转义
        if '\\' in self.pattern:
            raise DiscoveryError(
                f"malformed glob pattern {self.pattern!r}: escape sequences are not supported in path globs"
            )
        expanded = expand_braces(self.pattern)
        for alternative in expanded:
            compile_pattern(alternative)
        return expanded

    def apply(self) -> Set[str]:
        """
        在搜索根目录下执行匹配，只返回文件

        Returns:
            Set[str]: 相对于搜索根目录的匹配路径

        Raises:
            DiscoveryError: 表达式格式错误或搜索根目录不可读
        """
        matches = set()
        for expanded in self.validate():
            try:
                found = glob.glob(expanded, root_dir=self.search_root, recursive=True, include_hidden=True)
            except OSError as e:
                raise DiscoveryError(f"cannot search {self.search_root}: {e}") from e
            for relative_path in found:
                if os.path.isfile(os.path.join(self.search_root, relative_path)):
                    matches.add(relative_path)
        return matches

    def __str__(self) -> str:
        return self.join(self.pattern) if self.pattern else self.search_root


class GlobMatcher:
    """将 include/exclude glob 解析为去重后的候选路径集合"""

    def __init__(self, error_recorder: Optional[ErrorRecorder] = None):
        """
        初始化Glob匹配器

        Args:
            error_recorder: 错误记录器，格式错误的glob会被记录后跳过
        """
        self.error_recorder = error_recorder
        self.logger = logging.getLogger(__name__)

    def resolve(self, include_globs: Iterable[str], exclude_globs: Iterable[str] = ()) -> Set[str]:
        """
        解析 include/exclude glob

        Args:
            include_globs: 包含的glob表达式
            exclude_globs: 排除的glob表达式

        Returns:
            Set[str]: 候选路径集合
        """
        resolved = set()
        for source_glob in self._to_globs(include_globs):
            resolved.update(self._apply(source_glob))

        for source_glob in self._to_globs(exclude_globs):
            resolved.difference_update(self._apply(source_glob))

        self.logger.debug(f"glob解析完成，共 {len(resolved)} 个候选")
        return resolved

    def _to_globs(self, expressions: Iterable[str]) -> List[SourceGlob]:
        return [
            expression if isinstance(expression, SourceGlob) else SourceGlob.from_expression(expression)
            for expression in expressions
        ]

    def _apply(self, source_glob: SourceGlob) -> Set[str]:
        try:
            return {source_glob.join(match) for match in source_glob.apply()}
        except DiscoveryError as e:
            if self.error_recorder:
                self.error_recorder.record(f"glob {source_glob}", e)
            else:
                self.logger.error(f"glob {source_glob} 匹配失败: {e}")
            return set()

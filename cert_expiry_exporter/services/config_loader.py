"""
配置加载与验证服务
"""
import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import logging

from .error_handler import ConfigurationError, DiscoveryError
from .glob_matcher import SourceGlob, compile_pattern, expand_braces
from .password_resolver import PasswordResolver


ENV_PREFIX = "CERT_EXPORTER_"

DEFAULT_POLLING_PERIOD = 3600.0
DEFAULT_LISTEN_ADDRESS = "0.0.0.0"
DEFAULT_LISTEN_PORT = 8080
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_AWS_KEY_SUBSTRING = ".pem"

TRUE_VALUES = ('1', 'true', 'yes', 'on')

PATH_GLOB_FIELDS = frozenset((
    'include_cert_globs', 'exclude_cert_globs', 'include_kubeconfig_globs', 'exclude_kubeconfig_globs'
))


def split_list(value: Optional[str], separator: str = ',') -> List[str]:
    """按分隔符拆分列表值，去掉空白和空项"""
    if not value:
        return []
    return [item.strip() for item in value.split(separator) if item.strip()]


def split_globs(value: Optional[str]) -> List[str]:
    """按逗号拆分glob列表，花括号内的逗号属于 {a,b} 备选分组，不作为分隔符"""
    if not value:
        return []

    items = []
    current = []
    depth = 0
    escaped = False
    for c in value:
        if escaped:
            escaped = False
        elif c == '\\':
            escaped = True
        elif c == '{':
            depth += 1
        elif c == '}' and depth > 0:
            depth -= 1
        elif c == ',' and depth == 0:
            items.append(''.join(current))
            current = []
            continue
        current.append(c)
    items.append(''.join(current))

    return [item.strip() for item in items if item.strip()]


@dataclass
class ExporterConfig:
    """导出器配置（全部来自 CERT_EXPORTER_* 环境变量）"""
    polling_period: float = DEFAULT_POLLING_PERIOD
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    listen_port: int = DEFAULT_LISTEN_PORT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    node_name: str = ""
    kubeconfig: str = ""
    disable_exporter_metrics: bool = False

    include_cert_globs: List[str] = field(default_factory=list)
    exclude_cert_globs: List[str] = field(default_factory=list)
    include_kubeconfig_globs: List[str] = field(default_factory=list)
    exclude_kubeconfig_globs: List[str] = field(default_factory=list)

    cert_password: str = ""
    cert_password_specs: List[str] = field(default_factory=list)

    exclude_cn_globs: List[str] = field(default_factory=list)
    exclude_alias_globs: List[str] = field(default_factory=list)
    exclude_issuer_globs: List[str] = field(default_factory=list)

    secrets_label_selectors: List[str] = field(default_factory=list)
    secrets_annotation_selectors: List[str] = field(default_factory=list)
    secrets_namespaces: List[str] = field(default_factory=list)
    secrets_include_globs: List[str] = field(default_factory=list)
    secrets_exclude_globs: List[str] = field(default_factory=list)
    secrets_include_types: List[str] = field(default_factory=list)

    configmaps_label_selectors: List[str] = field(default_factory=list)
    configmaps_annotation_selectors: List[str] = field(default_factory=list)
    configmaps_namespaces: List[str] = field(default_factory=list)
    configmaps_include_globs: List[str] = field(default_factory=list)
    configmaps_exclude_globs: List[str] = field(default_factory=list)

    enable_webhook_check: bool = False
    webhooks_label_selectors: List[str] = field(default_factory=list)
    webhooks_annotation_selectors: List[str] = field(default_factory=list)

    enable_certrequests_check: bool = False
    certrequests_label_selectors: List[str] = field(default_factory=list)
    certrequests_annotation_selectors: List[str] = field(default_factory=list)
    certrequests_namespaces: List[str] = field(default_factory=list)

    aws_account: str = ""
    aws_region: str = ""
    aws_secrets: List[str] = field(default_factory=list)
    aws_key_substring: str = DEFAULT_AWS_KEY_SUBSTRING
    aws_include_file_in_metrics: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ExporterConfig":
        """
        从环境变量加载配置

        Args:
            environ: 环境变量映射，默认使用 os.environ

        Raises:
            ConfigurationError: 数值类型的变量无法解析
        """
        environ = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            return environ.get(ENV_PREFIX + name, default).strip()

        def get_list(name: str, separator: str = ',') -> List[str]:
            return split_list(environ.get(ENV_PREFIX + name), separator)

        def get_globs(name: str) -> List[str]:
            return split_globs(environ.get(ENV_PREFIX + name))

        def get_bool(name: str) -> bool:
            return get(name).lower() in TRUE_VALUES

        def get_number(name: str, default, convert):
            raw = get(name)
            if not raw:
                return default
            try:
                return convert(raw)
            except ValueError:
                raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}")

        return cls(
            polling_period=get_number('POLLING_PERIOD', DEFAULT_POLLING_PERIOD, float),
            listen_address=get('LISTEN_ADDRESS', DEFAULT_LISTEN_ADDRESS),
            listen_port=get_number('LISTEN_PORT', DEFAULT_LISTEN_PORT, int),
            request_timeout=get_number('REQUEST_TIMEOUT', DEFAULT_REQUEST_TIMEOUT, float),
            node_name=get('NODE_NAME') or environ.get('NODE_NAME', ''),
            kubeconfig=get('KUBECONFIG'),
            disable_exporter_metrics=get_bool('DISABLE_EXPORTER_METRICS'),

            include_cert_globs=get_globs('INCLUDE_CERT_GLOBS'),
            exclude_cert_globs=get_globs('EXCLUDE_CERT_GLOBS'),
            include_kubeconfig_globs=get_globs('INCLUDE_KUBECONFIG_GLOBS'),
            exclude_kubeconfig_globs=get_globs('EXCLUDE_KUBECONFIG_GLOBS'),

            cert_password=environ.get(ENV_PREFIX + 'CERT_PASSWORD', ''),
            cert_password_specs=get_list('CERT_PASSWORD_SPECS', ';'),

            exclude_cn_globs=get_globs('EXCLUDE_CN_GLOBS'),
            exclude_alias_globs=get_globs('EXCLUDE_ALIAS_GLOBS'),
            exclude_issuer_globs=get_globs('EXCLUDE_ISSUER_GLOBS'),

            secrets_label_selectors=get_list('SECRETS_LABEL_SELECTORS', ';'),
            secrets_annotation_selectors=get_list('SECRETS_ANNOTATION_SELECTORS'),
            secrets_namespaces=get_list('SECRETS_NAMESPACES'),
            secrets_include_globs=get_globs('SECRETS_INCLUDE_GLOBS'),
            secrets_exclude_globs=get_globs('SECRETS_EXCLUDE_GLOBS'),
            secrets_include_types=get_list('SECRETS_INCLUDE_TYPES'),

            configmaps_label_selectors=get_list('CONFIGMAPS_LABEL_SELECTORS', ';'),
            configmaps_annotation_selectors=get_list('CONFIGMAPS_ANNOTATION_SELECTORS'),
            configmaps_namespaces=get_list('CONFIGMAPS_NAMESPACES'),
            configmaps_include_globs=get_globs('CONFIGMAPS_INCLUDE_GLOBS'),
            configmaps_exclude_globs=get_globs('CONFIGMAPS_EXCLUDE_GLOBS'),

            enable_webhook_check=get_bool('ENABLE_WEBHOOK_CHECK'),
            webhooks_label_selectors=get_list('WEBHOOKS_LABEL_SELECTORS', ';'),
            webhooks_annotation_selectors=get_list('WEBHOOKS_ANNOTATION_SELECTORS'),

            enable_certrequests_check=get_bool('ENABLE_CERTREQUESTS_CHECK'),
            certrequests_label_selectors=get_list('CERTREQUESTS_LABEL_SELECTORS', ';'),
            certrequests_annotation_selectors=get_list('CERTREQUESTS_ANNOTATION_SELECTORS'),
            certrequests_namespaces=get_list('CERTREQUESTS_NAMESPACES'),

            aws_account=get('AWS_ACCOUNT'),
            aws_region=get('AWS_REGION'),
            aws_secrets=get_list('AWS_SECRETS'),
            aws_key_substring=get('AWS_KEY_SUBSTRING', DEFAULT_AWS_KEY_SUBSTRING),
            aws_include_file_in_metrics=get_bool('AWS_INCLUDE_FILE_IN_METRICS'),
        )

    # 检查器启用规则

    @property
    def files_enabled(self) -> bool:
        return bool(self.include_cert_globs)

    @property
    def kubeconfigs_enabled(self) -> bool:
        return bool(self.include_kubeconfig_globs)

    @property
    def secrets_enabled(self) -> bool:
        return bool(self.secrets_label_selectors or self.secrets_annotation_selectors
                    or self.secrets_include_globs)

    @property
    def configmaps_enabled(self) -> bool:
        return bool(self.configmaps_label_selectors or self.configmaps_annotation_selectors
                    or self.configmaps_include_globs)

    @property
    def webhooks_enabled(self) -> bool:
        return self.enable_webhook_check

    @property
    def certrequests_enabled(self) -> bool:
        return bool(self.enable_certrequests_check or self.certrequests_label_selectors
                    or self.certrequests_annotation_selectors)

    @property
    def aws_enabled(self) -> bool:
        return bool(self.aws_account and self.aws_region and self.aws_secrets)

    @property
    def kubernetes_enabled(self) -> bool:
        return self.secrets_enabled or self.configmaps_enabled or self.webhooks_enabled or self.certrequests_enabled

    def password_resolver(self) -> PasswordResolver:
        return PasswordResolver.from_strings(self.cert_password_specs, self.cert_password)

    def to_log_dict(self) -> Dict[str, Any]:
        """用于日志输出的配置字典（敏感字段由 LoggerService 脱敏）"""
        return asdict(self)

    def validate(self) -> Dict[str, Any]:
        """
        验证所有配置

        Returns:
            Dict[str, Any]: 验证结果
        """
        validation_result = {
            'is_valid': True,
            'errors': [],
            'warnings': [],
            'configurations': {}
        }

        sections = {
            'general': self._validate_general(),
            'globs': self._validate_globs(),
            'passwords': self._validate_passwords(),
            'aws': self._validate_aws(),
        }

        for name, section in sections.items():
            validation_result['configurations'][name] = section
            if not section['is_valid']:
                validation_result['is_valid'] = False
                validation_result['errors'].extend(section['errors'])
            validation_result['warnings'].extend(section['warnings'])

        if not any((self.files_enabled, self.kubeconfigs_enabled, self.kubernetes_enabled, self.aws_enabled)):
            validation_result['warnings'].append("没有启用任何检查器，只会导出错误计数指标")

        return validation_result

    def _validate_general(self) -> Dict[str, Any]:
        result = {'is_valid': True, 'errors': [], 'warnings': []}

        if self.polling_period <= 0:
            result['is_valid'] = False
            result['errors'].append(f"检查周期必须大于0: {self.polling_period}")
        elif self.polling_period < 60:
            result['warnings'].append(f"检查周期过短: {self.polling_period}秒")

        if not 0 < self.listen_port < 65536:
            result['is_valid'] = False
            result['errors'].append(f"监听端口无效: {self.listen_port}")

        if self.request_timeout <= 0:
            result['is_valid'] = False
            result['errors'].append(f"请求超时时间必须大于0: {self.request_timeout}")

        if (self.files_enabled or self.kubeconfigs_enabled) and not self.node_name:
            result['warnings'].append("NODE_NAME未设置，nodename标签将为空")

        return result

    def _validate_globs(self) -> Dict[str, Any]:
        result = {'is_valid': True, 'errors': [], 'warnings': []}

        glob_fields = (
            'include_cert_globs', 'exclude_cert_globs',
            'include_kubeconfig_globs', 'exclude_kubeconfig_globs',
            'exclude_cn_globs', 'exclude_alias_globs', 'exclude_issuer_globs',
            'secrets_include_globs', 'secrets_exclude_globs',
            'configmaps_include_globs', 'configmaps_exclude_globs',
        )
        for field_name in glob_fields:
            for pattern in getattr(self, field_name):
                try:
                    if field_name in PATH_GLOB_FIELDS:
                        SourceGlob.from_expression(pattern).validate()
                        continue
                    for alternative in expand_braces(pattern):
                        compile_pattern(alternative)
                except DiscoveryError as e:
                    # 无效的glob只在运行时跳过，不阻止启动
                    result['warnings'].append(f"{field_name} 中的glob无效: {e}")

        return result

    def _validate_passwords(self) -> Dict[str, Any]:
        result = {'is_valid': True, 'errors': [], 'warnings': []}
        try:
            self.password_resolver()
        except ConfigurationError as e:
            result['is_valid'] = False
            result['errors'].append(f"{ENV_PREFIX}CERT_PASSWORD_SPECS 无效: {e}")
        return result

    def _validate_aws(self) -> Dict[str, Any]:
        result = {'is_valid': True, 'errors': [], 'warnings': []}

        configured = [bool(self.aws_account), bool(self.aws_region), bool(self.aws_secrets)]
        if any(configured) and not all(configured):
            result['warnings'].append("AWS_ACCOUNT、AWS_REGION 和 AWS_SECRETS 需要同时设置，AWS检查器未启用")

        if self.aws_account and not re.match(r'^\d{12}$', self.aws_account):
            result['warnings'].append(f"AWS账号格式可能无效: {self.aws_account}")

        if self.aws_enabled and not self.aws_key_substring:
            result['is_valid'] = False
            result['errors'].append("AWS_KEY_SUBSTRING 不能为空")

        return result

    def get_configuration_summary(self) -> str:
        """
        获取配置摘要

        Returns:
            str: 配置摘要文本
        """
        validation_result = self.validate()

        lines = [
            "配置验证摘要",
            "=" * 30
        ]

        if validation_result['is_valid']:
            lines.append("✅ 配置验证通过")
        else:
            lines.append("❌ 配置验证失败")

        if validation_result['errors']:
            lines.append("\n错误:")
            for error in validation_result['errors']:
                lines.append(f"  • {error}")

        if validation_result['warnings']:
            lines.append("\n警告:")
            for warning in validation_result['warnings']:
                lines.append(f"  • {warning}")

        enabled = [
            name for name, flag in (
                ('cert', self.files_enabled),
                ('kubeconfig', self.kubeconfigs_enabled),
                ('secret', self.secrets_enabled),
                ('configmap', self.configmaps_enabled),
                ('webhook', self.webhooks_enabled),
                ('certrequest', self.certrequests_enabled),
                ('aws_secret', self.aws_enabled),
            ) if flag
        ]
        lines.append(f"\n启用的检查器: {', '.join(enabled) if enabled else '无'}")

        return "\n".join(lines)


def load_config(environ: Optional[Mapping[str, str]] = None) -> ExporterConfig:
    """加载并验证配置，验证失败时抛出 ConfigurationError"""
    config = ExporterConfig.from_env(environ)
    result = config.validate()

    logger = logging.getLogger(__name__)
    for warning in result['warnings']:
        logger.warning(warning)

    if not result['is_valid']:
        raise ConfigurationError("; ".join(result['errors']))
    return config

"""
日志服务
"""
import os
import logging
import traceback
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from ..interfaces import LoggerServiceInterface


def _empty_stats() -> Dict[str, Any]:
    return {
        'start_time': None,
        'end_time': None,
        'total_candidates': 0,
        'exported_candidates': 0,
        'exported_samples': 0,
        'failed_items': 0,
        'errors': []
    }


class LoggerService(LoggerServiceInterface):
    """日志服务实现（每个检查器一个实例，共享同一个日志器配置）"""

    def __init__(self, logger_name: str = "cert_expiry_exporter", log_level: Optional[str] = None):
        """
        初始化日志服务

        Args:
            logger_name: 日志器名称
            log_level: 日志级别，如果为None则从环境变量读取
        """
        self.logger_name = logger_name
        self.log_level = log_level or os.getenv('LOG_LEVEL', 'INFO')

        # 配置日志器
        self.logger = logging.getLogger(logger_name)
        self._configure_logger()

        # 执行统计
        self.execution_stats = _empty_stats()

    def _configure_logger(self):
        """配置日志器"""
        level = getattr(logging, self.log_level.upper(), logging.INFO)
        self.logger.setLevel(level)

        # 避免重复添加处理器
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(level)

            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            handler.setFormatter(formatter)

            self.logger.addHandler(handler)

        # 防止日志传播到根日志器
        self.logger.propagate = False

    def log_check_start(self, checker_name: str, candidate_count: int):
        """
        记录检查开始

        Args:
            checker_name: 检查器名称
            candidate_count: 本周期发现的候选资源数量
        """
        self.reset_stats()
        self.execution_stats['start_time'] = datetime.now(timezone.utc)
        self.execution_stats['total_candidates'] = candidate_count

        self.logger.info(f"[{checker_name}] 开始周期检查，共 {candidate_count} 个候选资源")

    def log_candidate_exported(self, checker_name: str, description: str, sample_count: int):
        """
        记录候选资源导出结果

        Args:
            checker_name: 检查器名称
            description: 候选资源描述
            sample_count: 写入的证书数量
        """
        self.execution_stats['exported_candidates'] += 1
        self.execution_stats['exported_samples'] += sample_count
        self.logger.info(f"[{checker_name}] 发布指标 - {description}, 证书数量: {sample_count}")

    def log_error(self, context: str, error: Exception):
        """
        记录错误信息

        Args:
            context: 出错位置
            error: 异常对象
        """
        error_info = {
            'context': context,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'timestamp': datetime.now(timezone.utc).isoformat()
        }

        self.execution_stats['failed_items'] += 1
        self.execution_stats['errors'].append(error_info)

        # 记录详细的堆栈跟踪（调试级别）
        self.logger.debug(f"{context} 错误堆栈跟踪:\n{traceback.format_exc()}")

    def log_check_end(self, checker_name: str):
        """记录检查结束"""
        self.execution_stats['end_time'] = datetime.now(timezone.utc)
        summary = self.get_execution_summary()

        self.logger.info(
            f"[{checker_name}] 周期检查完成，耗时 {summary['duration_seconds']:.2f} 秒, "
            f"候选 {summary['total_candidates']} 个, "
            f"导出证书 {summary['exported_samples']} 个, "
            f"失败 {summary['failed_items']} 项"
        )

    def log_configuration_info(self, config: Dict[str, Any]):
        """
        记录配置信息

        Args:
            config: 配置信息字典
        """
        safe_config = self._sanitize_config(config)

        self.logger.info("系统配置信息:")
        for key, value in safe_config.items():
            self.logger.info(f"  {key}: {value}")

    def _sanitize_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        清理配置信息中的敏感数据

        Args:
            config: 原始配置

        Returns:
            Dict[str, Any]: 清理后的配置
        """
        safe_config = {}
        for key, value in config.items():
            key_lower = key.lower()

            is_sensitive = (
                key_lower in ('password', 'secret', 'token', 'key') or
                key_lower.endswith('_key') or
                key_lower.endswith('_secret') or
                key_lower.endswith('_password') or
                key_lower.endswith('_token') or
                key_lower.endswith('_specs')
            )

            # 密码类配置不显示任何字符
            is_password = key_lower == 'password' or key_lower.endswith(('_password', '_specs'))

            if is_sensitive and value:
                if is_password:
                    safe_value = "***"
                elif isinstance(value, str) and 'arn:' in value:
                    # ARN类型，只显示前缀和后缀
                    parts = value.split(':')
                    if len(parts) >= 6:
                        safe_value = f"{':'.join(parts[:3])}:***:{parts[-2]}:{parts[-1]}"
                    else:
                        safe_value = "***"
                elif isinstance(value, str):
                    safe_value = value[:3] + "***" if len(value) > 3 else "***"
                else:
                    safe_value = "***"
                safe_config[key] = safe_value
            else:
                safe_config[key] = value

        return safe_config

    def get_execution_summary(self) -> Dict[str, Any]:
        """
        获取执行摘要

        Returns:
            Dict[str, Any]: 执行摘要信息
        """
        stats = self.execution_stats
        duration = 0
        if stats['start_time'] and stats['end_time']:
            duration = (stats['end_time'] - stats['start_time']).total_seconds()

        return {
            'start_time': stats['start_time'].isoformat() if stats['start_time'] else None,
            'end_time': stats['end_time'].isoformat() if stats['end_time'] else None,
            'duration_seconds': duration,
            'total_candidates': stats['total_candidates'],
            'exported_candidates': stats['exported_candidates'],
            'exported_samples': stats['exported_samples'],
            'failed_items': stats['failed_items'],
            'error_count': len(stats['errors']),
            'errors': list(stats['errors'])
        }

    def reset_stats(self):
        """重置执行统计"""
        self.execution_stats = _empty_stats()

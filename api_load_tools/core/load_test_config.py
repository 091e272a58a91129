#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
配置管理模块
负责配置文件的加载、验证和合并
"""

import os
import json
import logging
from typing import Dict, Mapping, Optional

logger = logging.getLogger("load_test")

# 按执行顺序排列的用例名称
CASE_NAMES = [
    'sequential_login',
    'concurrent_login',
    'sustained_load',
    'invalid_login',
    'invalid_auth',
    'token_auth',
    'feedback',
    'resource_usage',
]

# 按键合并而不是整体覆盖的嵌套配置
NESTED_KEYS = ('thresholds', 'readiness', 'credentials')

POSITIVE_INT_KEYS = ('iterations', 'concurrent_users', 'batch_size', 'sustained_batch_size')
POSITIVE_NUMBER_KEYS = ('timeout', 'sustained_duration', 'monitor_duration', 'monitor_interval', 'suite_timeout')


def load_config(config_path: str) -> Dict:
    """
    加载配置文件

    Args:
        config_path: 配置文件路径

    Returns:
        配置字典，如果文件不存在或读取失败则返回空字典
    """
    if not os.path.exists(config_path):
        logger.warning(f"配置文件不存在: {config_path}，使用默认配置")
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"无法读取配置文件 {config_path}: {str(e)}")
        return {}

    if not isinstance(config, dict):
        logger.warning(f"配置文件 {config_path} 顶层必须是对象，已忽略")
        return {}
    return config


def load_env_config(environ: Optional[Mapping[str, str]] = None) -> Dict:
    """
    从环境变量读取配置

    支持的变量:
        LOAD_TEST_CONFIG: 配置文件路径
        LOAD_TEST_URL: 被测服务地址
        LOAD_TEST_TIMEOUT: 单请求超时（秒）
    """
    environ = os.environ if environ is None else environ
    config = {}

    config_path = environ.get('LOAD_TEST_CONFIG')
    if config_path:
        config.update(load_config(config_path))
    if environ.get('LOAD_TEST_URL'):
        config['url'] = environ['LOAD_TEST_URL']
    if environ.get('LOAD_TEST_TIMEOUT'):
        try:
            config['timeout'] = float(environ['LOAD_TEST_TIMEOUT'])
        except ValueError:
            raise ValueError(f"LOAD_TEST_TIMEOUT 必须是数字: {environ['LOAD_TEST_TIMEOUT']}")

    return config


def validate_config(config: Dict) -> bool:
    """
    验证配置完整性

    Args:
        config: 配置字典

    Returns:
        验证是否通过

    Raises:
        ValueError: 当配置验证失败时
    """
    # 必需参数检查
    if not config.get('url'):
        raise ValueError("配置缺少必需参数: url")
    if not str(config['url']).startswith(('http://', 'https://')):
        raise ValueError(f"url 必须以 http:// 或 https:// 开头: {config['url']}")

    for key in POSITIVE_INT_KEYS:
        value = config.get(key)
        if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value <= 0):
            raise ValueError(f"{key} 必须是正整数: {value}")

    for key in POSITIVE_NUMBER_KEYS:
        value = config.get(key)
        if value is not None and (not _is_number(value) or value <= 0):
            raise ValueError(f"{key} 必须是正数: {value}")

    for key, value in config.get('thresholds', {}).items():
        if not _is_number(value) or value <= 0:
            raise ValueError(f"阈值 {key} 必须是正数: {value}")

    readiness = config.get('readiness') or {}
    retries = readiness.get('retries')
    if retries is not None and (not isinstance(retries, int) or isinstance(retries, bool) or retries <= 0):
        raise ValueError(f"readiness.retries 必须是正整数: {retries}")
    interval = readiness.get('interval')
    if interval is not None and (not _is_number(interval) or interval < 0):
        raise ValueError(f"readiness.interval 必须是非负数: {interval}")

    unknown = [name for name in config.get('cases') or [] if name not in CASE_NAMES]
    if unknown:
        raise ValueError(f"未知的用例: {', '.join(unknown)}，可选: {', '.join(CASE_NAMES)}")

    return True


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def merge_config(
    file_config: Dict,
    cli_config: Dict,
    defaults: Dict
) -> Dict:
    """
    合并配置：默认值 -> 配置文件 -> 命令行参数

    thresholds / readiness / credentials 按键合并，其余参数整体覆盖

    Args:
        file_config: 从配置文件读取的配置
        cli_config: 命令行参数配置
        defaults: 默认配置

    Returns:
        合并后的配置
    """
    merged = {
        key: dict(value) if key in NESTED_KEYS else value
        for key, value in defaults.items()
    }
    for layer in (file_config, cli_config):
        for key, value in layer.items():
            if key in NESTED_KEYS and isinstance(value, dict):
                merged.setdefault(key, {}).update(value)
            else:
                merged[key] = value
    return merged


def get_default_config() -> Dict:
    """
    获取默认配置

    Returns:
        默认配置字典
    """
    return {
        'url': 'http://127.0.0.1:3000',
        'timeout': 5,
        'iterations': 1000,
        'concurrent_users': 1000,
        'batch_size': 50,
        'sustained_duration': 300,
        'sustained_batch_size': 10,
        'feedback_cooldown': 1,
        'monitor_duration': 30,
        'monitor_interval': 1,
        'suite_timeout': 30 * 60,
        'teardown_delay': 1,
        'readiness': {
            'path': '/status',
            'retries': 5,
            'interval': 1,
        },
        'credentials': {
            'username': 'test',
            'password': 'test',
        },
        # 延迟阈值单位为毫秒；cpu_load 为 1 分钟平均负载；memory_mb 为内存峰值
        'thresholds': {
            'sequential_login_ms': 500,
            'concurrent_login_ms': 1000,
            'sustained_load_ms': 1000,
            'invalid_login_ms': 200,
            'invalid_auth_ms': 100,
            'token_auth_ms': 500,
            'feedback_ms': 2000,
            'cpu_load': 80,
            'memory_mb': 1024,
        },
        'cases': [],
        'output_dir': 'reports',
        'save_report': False,
        'json': False,
    }

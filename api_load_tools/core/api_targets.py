#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
目标接口定义
被测服务的各个接口及其允许的状态码
"""

import random
from typing import Dict

from .load_test_core import EndpointTarget

STATUS_PATH = '/status'
LOGIN_PATH = '/login/'
AUTH_PATH = '/auth/'
FEEDBACK_PATH = '/feedback/'

# 登录和反馈接口允许被限流
RATE_LIMITED_OK = frozenset({200, 429})


def login_target(username: str = 'test', password: str = 'test') -> EndpointTarget:
    """正常登录: 200 返回 {token}，或 429 限流"""
    return EndpointTarget(
        method='GET',
        path=LOGIN_PATH,
        params={'username': username, 'password': password},
        expected_statuses=RATE_LIMITED_OK,
    )


def invalid_login_target() -> EndpointTarget:
    """非法登录，必须返回 403"""
    return EndpointTarget(
        method='GET',
        path=LOGIN_PATH,
        params={'name': 'invalid', 'password': 'invalid'},
        expected_statuses=frozenset({403}),
    )


def invalid_auth_target(token: str = 'invalid_token') -> EndpointTarget:
    """携带非法令牌访问 /auth/，必须返回 403"""
    return EndpointTarget(
        method='GET',
        path=AUTH_PATH,
        headers={'Authorization': token},
        expected_statuses=frozenset({403}),
    )


def token_auth_target(token: str) -> EndpointTarget:
    """携带初始化阶段获取的令牌访问 /auth/，应返回 200"""
    return EndpointTarget(
        method='GET',
        path=AUTH_PATH,
        headers={'Authorization': f'Bearer {token}'},
        expected_statuses=frozenset({200}),
    )


def random_feedback_payload() -> Dict[str, str]:
    return {
        'name': f"test{random.randint(0, 999)}",
        'message': 'test',
    }


def feedback_target() -> EndpointTarget:
    """提交反馈，每次请求使用随机用户名"""
    return EndpointTarget(
        method='POST',
        path=FEEDBACK_PATH,
        body_factory=random_feedback_payload,
        expected_statuses=RATE_LIMITED_OK,
    )

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
测试上下文
初始化阶段获取一次令牌，之后通过上下文对象传给每个用例
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp
import jwt

from .api_targets import login_target
from .load_test_core import AuthSetupError, fetch_json, wait_for_server

logger = logging.getLogger("load_test")


class SuiteContext:
    """
    一次压测运行共享的上下文

    Attributes:
        session: 共享的 HTTP 会话
        base_url: 被测服务地址
        config: 合并后的配置
        token: 初始化阶段获取的令牌
        claims: 令牌中的声明（未验签，仅用于诊断输出）
    """

    def __init__(self, session: aiohttp.ClientSession, base_url: str, config: Dict,
                 token: Optional[str] = None, claims: Optional[Dict[str, Any]] = None):
        self.session = session
        self.base_url = base_url
        self.config = config
        self.token = token
        self.claims = claims or {}

    @property
    def timeout(self) -> float:
        return self.config.get('timeout', 5)

    @property
    def thresholds(self) -> Dict[str, float]:
        return self.config['thresholds']


def decode_token_claims(token: str) -> Dict[str, Any]:
    """不验签解析 JWT 声明；令牌不是 JWT 时返回空字典"""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.warning(f"令牌无法按 JWT 解析: {e}")
        return {}

    exp = claims.get('exp')
    if isinstance(exp, (int, float)):
        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        logger.info(f"令牌过期时间: {expires_at.isoformat()}")
    return claims


async def obtain_token(
    session: aiohttp.ClientSession,
    base_url: str,
    username: str,
    password: str,
    timeout: float = 5
) -> str:
    """
    登录并返回令牌

    Raises:
        AuthSetupError: 登录未返回 200 或响应中没有 token
    """
    try:
        status, body = await fetch_json(session, base_url, login_target(username, password), timeout)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise AuthSetupError(f"登录请求失败: {e}") from e

    if status != 200:
        raise AuthSetupError(f"登录失败: 期望状态码 200，实际 {status}")

    token = body.get('token')
    if not isinstance(token, str) or not token:
        raise AuthSetupError("登录响应缺少 token")
    return token


async def setup_suite(session: aiohttp.ClientSession, config: Dict) -> SuiteContext:
    """等待服务就绪并获取令牌，返回测试上下文"""
    base_url = config['url']
    readiness = config.get('readiness', {})

    await wait_for_server(
        session,
        base_url,
        path=readiness.get('path', '/status'),
        retries=readiness.get('retries', 5),
        interval=readiness.get('interval', 1),
        timeout=config.get('timeout', 5),
    )

    credentials = config.get('credentials', {})
    token = await obtain_token(
        session,
        base_url,
        credentials.get('username', 'test'),
        credentials.get('password', 'test'),
        timeout=config.get('timeout', 5),
    )
    logger.info("初始化完成，已获取令牌")

    return SuiteContext(session, base_url, config, token=token, claims=decode_token_claims(token))

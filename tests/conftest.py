#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
测试夹具
用 aiohttp.web 在进程内启动一个模拟的被测服务（/status、/login/、/auth/、/feedback/）
"""

import asyncio
import time

import aiohttp
import jwt
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from api_load_tools.core.load_test_config import get_default_config, merge_config

FAKE_SECRET = "fake-api-secret"


class FakeApiState:
    """模拟服务的可调行为和调用记录"""

    def __init__(self):
        self.login_calls = 0
        self.status_calls = 0
        self.feedback = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.login_delay = 0.0
        self.rate_limit_every = 0
        self.feedback_status = 200

    def issue_token(self) -> str:
        return jwt.encode({'sub': 'test', 'exp': int(time.time()) + 3600}, FAKE_SECRET, algorithm='HS256')


def make_fake_api(state: FakeApiState) -> web.Application:
    async def status(request):
        state.status_calls += 1
        return web.json_response({'status': 'ok'})

    async def login(request):
        state.login_calls += 1
        state.in_flight += 1
        state.max_in_flight = max(state.max_in_flight, state.in_flight)
        try:
            if state.login_delay:
                await asyncio.sleep(state.login_delay)
            query = request.query
            if query.get('username') != 'test' or query.get('password') != 'test':
                return web.json_response({'error': 'forbidden'}, status=403)
            if state.rate_limit_every and state.login_calls % state.rate_limit_every == 0:
                return web.json_response({'error': 'too many requests'}, status=429)
            return web.json_response({'token': state.issue_token()})
        finally:
            state.in_flight -= 1

    async def auth(request):
        scheme, _, token = request.headers.get('Authorization', '').partition(' ')
        if scheme.lower() == 'bearer':
            try:
                jwt.decode(token, FAKE_SECRET, algorithms=['HS256'])
                return web.json_response({'ok': True})
            except jwt.InvalidTokenError:
                pass
        return web.json_response({'error': 'forbidden'}, status=403)

    async def feedback(request):
        state.feedback.append(await request.json())
        return web.json_response({'ok': state.feedback_status == 200}, status=state.feedback_status)

    app = web.Application()
    app.router.add_get('/status', status)
    app.router.add_get('/login/', login)
    app.router.add_get('/auth/', auth)
    app.router.add_post('/feedback/', feedback)
    return app


@pytest.fixture
def api_state():
    return FakeApiState()


@pytest_asyncio.fixture
async def api_server(api_state):
    server = TestServer(make_fake_api(api_state))
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def base_url(api_server):
    return f"http://{api_server.host}:{api_server.port}"


@pytest_asyncio.fixture
async def session():
    async with aiohttp.ClientSession() as client_session:
        yield client_session


@pytest.fixture
def fast_config(base_url):
    """缩小规模的完整配置，阈值放宽到与机器负载无关"""
    return merge_config(
        {
            'url': base_url,
            'iterations': 5,
            'concurrent_users': 12,
            'batch_size': 5,
            'sustained_duration': 0.2,
            'sustained_batch_size': 4,
            'feedback_cooldown': 0,
            'monitor_duration': 0.1,
            'monitor_interval': 0.02,
            'teardown_delay': 0,
            'readiness': {'interval': 0},
            'thresholds': {'cpu_load': 10000, 'memory_mb': 1024 * 1024},
        },
        {},
        get_default_config(),
    )

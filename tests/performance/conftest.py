#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
实际环境压测夹具

目标服务地址取自 LOAD_TEST_URL（默认 http://127.0.0.1:3000），配置文件取自 LOAD_TEST_CONFIG。
整个模块共享一次就绪等待和登录得到的上下文。
"""

import pytest
import pytest_asyncio

from api_load_tools.core.load_test_config import (
    get_default_config,
    load_env_config,
    merge_config,
    validate_config,
)
from api_load_tools.core.load_test_core import create_session
from api_load_tools.core.suite_context import setup_suite


@pytest.fixture(scope="module")
def live_config():
    config = merge_config(load_env_config(), {}, get_default_config())
    validate_config(config)
    return config


@pytest_asyncio.fixture(scope="module", loop_scope="module")
async def live_context(live_config):
    async with create_session(max(live_config['batch_size'], live_config['sustained_batch_size'])) as session:
        yield await setup_suite(session, live_config)

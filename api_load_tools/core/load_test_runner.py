#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
测试运行器
提供高级测试流程控制：初始化、逐个执行用例、阈值断言、报告保存
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import aiohttp
import psutil

from .api_targets import (
    feedback_target,
    invalid_auth_target,
    invalid_login_target,
    login_target,
    token_auth_target,
)
from .load_test_config import CASE_NAMES, validate_config
from .load_test_core import (
    LoadTestResult,
    create_session,
    run_batched_test,
    run_sequential_test,
    run_single_request,
    run_sustained_test,
)
from .load_test_reporter import save_reports
from .resource_monitor import monitor_resources
from .suite_context import SuiteContext, setup_suite

logger = logging.getLogger("load_test")


class CaseOutcome:
    """单个用例的执行结果"""

    def __init__(self, name: str, result: Optional[LoadTestResult] = None):
        self.name = name
        self.result = result
        self.metrics: Dict[str, float] = {}
        self.thresholds: Dict[str, float] = {}
        self.failures: List[str] = []
        self.error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return not self.failures and self.error is None

    def check_below(self, metric: str, value: Optional[float], limit: float, unit: str = ''):
        """断言 value < limit，value 为 None（无数据）时同样视为失败"""
        self.thresholds[metric] = limit
        if value is None:
            self.failures.append(f"{metric}: 无数据")
            return
        self.metrics[metric] = value
        if value >= limit:
            self.failures.append(f"{metric}: {value:.2f}{unit} 超过阈值 {limit}{unit}")

    def check_statuses(self):
        """断言所有响应状态码都在允许集合内"""
        if self.result is None or not self.result.unexpected_statuses:
            return
        unexpected = sorted(set(self.result.unexpected_statuses))
        expected = sorted(self.result.expected_statuses or [])
        self.failures.append(
            f"{len(self.result.unexpected_statuses)} 个响应状态码不符合预期 {expected}: {unexpected}"
        )

    def check_latency(self, limit: float):
        """状态码检查 + 平均延迟阈值检查"""
        self.check_statuses()
        if self.result is not None:
            self.metrics['count'] = self.result.count
            if self.result.peak is not None:
                self.metrics['peak_ms'] = self.result.peak
        self.check_below('average_ms', self.result.average if self.result else None, limit, 'ms')

    def summary_line(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        parts = [f"{key}={value:.2f}" for key, value in self.metrics.items()]
        line = f"[{status}] {self.name}: {', '.join(parts)}"
        if self.error:
            line += f" 错误: {self.error}"
        for failure in self.failures:
            line += f"\n    - {failure}"
        return line


async def case_sequential_login(ctx: SuiteContext) -> CaseOutcome:
    credentials = ctx.config['credentials']
    result = await run_sequential_test(
        ctx.session, ctx.base_url,
        login_target(credentials['username'], credentials['password']),
        iterations=ctx.config['iterations'],
        timeout=ctx.timeout,
        name='sequential_login',
    )
    outcome = CaseOutcome('sequential_login', result)
    outcome.check_latency(ctx.thresholds['sequential_login_ms'])
    return outcome


async def case_concurrent_login(ctx: SuiteContext) -> CaseOutcome:
    credentials = ctx.config['credentials']
    result = await run_batched_test(
        ctx.session, ctx.base_url,
        login_target(credentials['username'], credentials['password']),
        total=ctx.config['concurrent_users'],
        batch_size=ctx.config['batch_size'],
        timeout=ctx.timeout,
        name='concurrent_login',
    )
    outcome = CaseOutcome('concurrent_login', result)
    outcome.check_latency(ctx.thresholds['concurrent_login_ms'])
    return outcome


async def case_sustained_load(ctx: SuiteContext) -> CaseOutcome:
    credentials = ctx.config['credentials']
    result = await run_sustained_test(
        ctx.session, ctx.base_url,
        login_target(credentials['username'], credentials['password']),
        duration=ctx.config['sustained_duration'],
        batch_size=ctx.config['sustained_batch_size'],
        timeout=ctx.timeout,
        name='sustained_load',
    )
    outcome = CaseOutcome('sustained_load', result)
    outcome.check_latency(ctx.thresholds['sustained_load_ms'])
    return outcome


async def case_invalid_login(ctx: SuiteContext) -> CaseOutcome:
    result = await run_single_request(
        ctx.session, ctx.base_url, invalid_login_target(), ctx.timeout, name='invalid_login'
    )
    outcome = CaseOutcome('invalid_login', result)
    outcome.check_latency(ctx.thresholds['invalid_login_ms'])
    return outcome


async def case_invalid_auth(ctx: SuiteContext) -> CaseOutcome:
    result = await run_single_request(
        ctx.session, ctx.base_url, invalid_auth_target(), ctx.timeout, name='invalid_auth'
    )
    outcome = CaseOutcome('invalid_auth', result)
    outcome.check_latency(ctx.thresholds['invalid_auth_ms'])
    return outcome


async def case_token_auth(ctx: SuiteContext) -> CaseOutcome:
    if not ctx.token:
        outcome = CaseOutcome('token_auth')
        outcome.error = "上下文中没有令牌"
        return outcome

    result = await run_single_request(
        ctx.session, ctx.base_url, token_auth_target(ctx.token), ctx.timeout, name='token_auth'
    )
    outcome = CaseOutcome('token_auth', result)
    outcome.check_latency(ctx.thresholds['token_auth_ms'])
    return outcome


async def case_feedback(ctx: SuiteContext) -> CaseOutcome:
    requested = ctx.config['concurrent_users']
    result = await run_batched_test(
        ctx.session, ctx.base_url,
        feedback_target(),
        total=requested,
        batch_size=ctx.config['batch_size'],
        timeout=ctx.timeout,
        cooldown=ctx.config.get('feedback_cooldown', 0),
        name='feedback',
    )
    outcome = CaseOutcome('feedback', result)
    outcome.check_latency(ctx.thresholds['feedback_ms'])

    # 成功处理 = 状态码在允许集合内的请求
    processed = result.count - len(result.unexpected_statuses)
    outcome.metrics['processed'] = processed
    outcome.metrics['success_rate'] = processed / requested * 100
    logger.info(f"反馈提交处理数: {processed}/{requested}")
    return outcome


async def case_resource_usage(ctx: SuiteContext) -> CaseOutcome:
    monitor = await monitor_resources(
        duration=ctx.config['monitor_duration'],
        interval=ctx.config['monitor_interval'],
    )
    summary = monitor.summary()

    outcome = CaseOutcome('resource_usage')
    outcome.metrics['samples'] = summary['samples']
    outcome.check_below('avg_cpu', summary['avg_cpu'], ctx.thresholds['cpu_load'])
    outcome.check_below('peak_memory_mb', summary['peak_memory_mb'], ctx.thresholds['memory_mb'], 'MB')
    return outcome


CASES: Dict[str, Callable[[SuiteContext], Awaitable[CaseOutcome]]] = {
    'sequential_login': case_sequential_login,
    'concurrent_login': case_concurrent_login,
    'sustained_load': case_sustained_load,
    'invalid_login': case_invalid_login,
    'invalid_auth': case_invalid_auth,
    'token_auth': case_token_auth,
    'feedback': case_feedback,
    'resource_usage': case_resource_usage,
}


async def run_case(name: str, ctx: SuiteContext) -> CaseOutcome:
    """
    运行单个用例

    用例内的网络错误和资源采样错误只让该用例失败，不影响后续用例
    """
    logger.info(f"开始用例: {name}")
    try:
        outcome = await CASES[name](ctx)
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError, psutil.Error) as e:
        logger.error(f"用例 {name} 执行出错: {e}")
        outcome = CaseOutcome(name)
        outcome.error = str(e) or type(e).__name__

    if outcome.passed:
        logger.info(f"用例通过: {name}")
    else:
        logger.error(f"用例失败: {outcome.summary_line()}")
    return outcome


async def run_cases(ctx: SuiteContext, cases: Optional[List[str]] = None) -> List[CaseOutcome]:
    """按注册顺序依次运行选中的用例"""
    selected = cases or CASE_NAMES
    return [await run_case(name, ctx) for name in CASE_NAMES if name in selected]


async def run_api_performance_suite(config: Dict, cases: Optional[List[str]] = None) -> List[CaseOutcome]:
    """
    运行完整的接口性能测试

    Args:
        config: 合并后的配置（见 get_default_config）
        cases: 要运行的用例名称，为空时使用配置中的 cases，仍为空则运行全部

    Returns:
        用例结果列表

    Raises:
        ValueError: 配置不合法
        ServerNotReadyError: 服务未就绪
        AuthSetupError: 初始化登录失败
        asyncio.TimeoutError: 整体运行超过 suite_timeout
    """
    validate_config(config)
    selected = cases or config.get('cases') or CASE_NAMES

    # 连接池需容纳最宽的一批，否则部分请求会在连接池中排队
    pool_size = max(config.get('batch_size', 50), config.get('sustained_batch_size', 10))
    async with create_session(pool_size) as session:
        async def _run() -> List[CaseOutcome]:
            ctx = await setup_suite(session, config)
            return await run_cases(ctx, selected)

        outcomes = await asyncio.wait_for(_run(), timeout=config.get('suite_timeout'))

    # 给服务端留出处理剩余请求的时间
    teardown_delay = config.get('teardown_delay', 0)
    if teardown_delay:
        await asyncio.sleep(teardown_delay)

    if config.get('save_report'):
        reports = save_reports(outcomes, config, config.get('output_dir', 'reports'), config.get('json', False))
        logger.info(f"报告已保存: {reports['text_report']}")

    return outcomes

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""测试运行器测试"""

import asyncio
import json
import os

import aiohttp
import psutil
import pytest

from api_load_tools.core import load_test_runner
from api_load_tools.core.load_test_config import CASE_NAMES
from api_load_tools.core.load_test_core import LoadTestResult
from api_load_tools.core.load_test_runner import (
    CaseOutcome,
    run_api_performance_suite,
    run_case,
)
from api_load_tools.core.resource_monitor import ResourceSample
from api_load_tools.core.suite_context import setup_suite


def outcomes_by_name(outcomes):
    return {outcome.name: outcome for outcome in outcomes}


class TestCaseOutcome:

    def test_passes_under_threshold(self):
        result = LoadTestResult(name='x', expected_statuses=frozenset({200}))
        result.extend([(10.0, 200, None), (20.0, 200, None)])
        outcome = CaseOutcome('x', result)
        outcome.check_latency(100)

        assert outcome.passed
        assert outcome.metrics == {'count': 2, 'peak_ms': 20.0, 'average_ms': 15.0}
        assert outcome.thresholds == {'average_ms': 100}

    def test_threshold_is_exclusive(self):
        result = LoadTestResult(name='x', expected_statuses=frozenset({200}))
        result.add_result(100.0, 200)
        outcome = CaseOutcome('x', result)
        outcome.check_latency(100)
        assert not outcome.passed

    def test_unexpected_status_fails(self):
        result = LoadTestResult(name='x', expected_statuses=frozenset({403}))
        result.add_result(1.0, 200)
        outcome = CaseOutcome('x', result)
        outcome.check_latency(100)

        assert not outcome.passed
        assert "[403]" in outcome.failures[0]
        assert "[200]" in outcome.failures[0]

    def test_missing_data_fails(self):
        outcome = CaseOutcome('resource_usage')
        outcome.check_below('avg_cpu', None, 80)
        assert not outcome.passed
        assert outcome.failures == ["avg_cpu: 无数据"]

    def test_summary_line(self):
        outcome = CaseOutcome('x')
        outcome.error = "timeout"
        assert outcome.summary_line().startswith("[FAIL] x")
        assert "timeout" in outcome.summary_line()


@pytest.mark.asyncio
class TestSuite:

    async def test_full_suite_passes(self, fast_config, api_state):
        outcomes = await run_api_performance_suite(fast_config)

        assert [o.name for o in outcomes] == CASE_NAMES
        assert all(o.passed for o in outcomes), [o.summary_line() for o in outcomes]

        by_name = outcomes_by_name(outcomes)
        assert by_name['sequential_login'].result.count == 5
        assert by_name['concurrent_login'].result.count == 12
        assert by_name['invalid_login'].result.status_codes == {403: 1}
        assert by_name['invalid_auth'].result.status_codes == {403: 1}
        assert by_name['token_auth'].result.status_codes == {200: 1}
        assert by_name['feedback'].metrics['processed'] == 12
        assert by_name['feedback'].metrics['success_rate'] == 100
        assert by_name['resource_usage'].metrics['samples'] >= 1
        assert len(api_state.feedback) == 12

    async def test_selected_cases_only(self, fast_config, api_state):
        outcomes = await run_api_performance_suite(fast_config, cases=['invalid_auth', 'invalid_login'])

        # 保持注册顺序
        assert [o.name for o in outcomes] == ['invalid_login', 'invalid_auth']
        # 只有初始化登录
        assert api_state.login_calls == 2

    async def test_failing_case_does_not_stop_suite(self, fast_config):
        fast_config['thresholds']['sequential_login_ms'] = 0.0001
        outcomes = outcomes_by_name(await run_api_performance_suite(
            fast_config, cases=['sequential_login', 'invalid_login']
        ))

        assert not outcomes['sequential_login'].passed
        assert "average_ms" in outcomes['sequential_login'].failures[0]
        assert outcomes['invalid_login'].passed

    async def test_unexpected_feedback_status(self, fast_config, api_state):
        api_state.feedback_status = 500
        outcome = (await run_api_performance_suite(fast_config, cases=['feedback']))[0]

        assert not outcome.passed
        assert outcome.metrics['processed'] == 0
        assert outcome.metrics['success_rate'] == 0

    async def test_resource_ceiling_violation(self, fast_config, monkeypatch):
        monkeypatch.setattr(
            'api_load_tools.core.resource_monitor.take_sample',
            lambda process=None: ResourceSample(cpu_load=95.0, memory_mb=2048.0, sampled_at=0.0),
        )
        fast_config['thresholds'].update({'cpu_load': 80, 'memory_mb': 1024})
        outcome = (await run_api_performance_suite(fast_config, cases=['resource_usage']))[0]

        assert not outcome.passed
        assert outcome.metrics['avg_cpu'] == 95.0
        assert outcome.metrics['peak_memory_mb'] == 2048.0
        assert len(outcome.failures) == 2

    async def test_sustained_batch_wider_than_concurrent_batch(self, fast_config, api_state):
        fast_config.update({'batch_size': 2, 'sustained_batch_size': 10, 'sustained_duration': 0.1})
        api_state.login_delay = 0.05
        outcome = (await run_api_performance_suite(fast_config, cases=['sustained_load']))[0]

        assert outcome.passed, outcome.summary_line()
        # 整批请求同时到达服务端，没有在连接池中排队
        assert api_state.max_in_flight == 10

    async def test_suite_timeout(self, fast_config):
        fast_config.update({'sustained_duration': 5, 'suite_timeout': 0.2})
        with pytest.raises(asyncio.TimeoutError):
            await run_api_performance_suite(fast_config, cases=['sustained_load'])

    async def test_invalid_config_rejected(self, fast_config):
        fast_config['iterations'] = 0
        with pytest.raises(ValueError):
            await run_api_performance_suite(fast_config)

    async def test_saves_reports(self, fast_config, tmp_path):
        fast_config.update({'save_report': True, 'json': True, 'output_dir': str(tmp_path)})
        await run_api_performance_suite(fast_config, cases=['invalid_login'])

        files = sorted(os.listdir(tmp_path))
        assert len(files) == 2
        json_file = [f for f in files if f.endswith('.json')][0]
        with open(tmp_path / json_file, encoding='utf-8') as f:
            data = json.load(f)
        assert data['cases'][0]['name'] == 'invalid_login'
        assert data['cases'][0]['passed'] is True

    async def test_no_reports_by_default(self, fast_config, tmp_path):
        fast_config['output_dir'] = str(tmp_path / 'reports')
        await run_api_performance_suite(fast_config, cases=['invalid_login'])
        assert not (tmp_path / 'reports').exists()


@pytest.mark.asyncio
class TestRunCase:

    async def test_transport_error_becomes_failed_outcome(self, session, fast_config, monkeypatch):
        async def broken_case(ctx):
            raise aiohttp.ServerDisconnectedError()

        ctx = await setup_suite(session, fast_config)
        monkeypatch.setitem(load_test_runner.CASES, 'invalid_login', broken_case)
        outcome = await run_case('invalid_login', ctx)

        assert not outcome.passed
        assert outcome.error

    async def test_token_auth_without_token(self, session, fast_config):
        ctx = await setup_suite(session, fast_config)
        ctx.token = None
        outcome = await run_case('token_auth', ctx)
        assert not outcome.passed
        assert outcome.error

    @pytest.mark.parametrize("error", [OSError("loadavg unavailable"), psutil.Error("process gone")])
    async def test_sampler_error_fails_only_resource_case(self, session, fast_config, monkeypatch, error):
        def broken_sampler(process=None):
            raise error

        monkeypatch.setattr('api_load_tools.core.resource_monitor.take_sample', broken_sampler)
        ctx = await setup_suite(session, fast_config)

        resource = await run_case('resource_usage', ctx)
        assert not resource.passed
        assert resource.error

        feedback = await run_case('feedback', ctx)
        assert feedback.passed, feedback.summary_line()

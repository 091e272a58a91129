#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
压测核心模块
提供可复用的接口压测功能
"""

from .load_test_core import (
    AuthSetupError,
    EndpointTarget,
    LoadTestError,
    LoadTestResult,
    ServerNotReadyError,
    run_batched_test,
    run_sequential_test,
    run_single_request,
    run_sustained_test,
    wait_for_server,
)
from .load_test_runner import CaseOutcome, run_api_performance_suite, run_case
from .load_test_config import get_default_config, load_config, merge_config, validate_config
from .resource_monitor import ResourceMonitor, monitor_resources
from .suite_context import SuiteContext, setup_suite

__all__ = [
    'AuthSetupError',
    'EndpointTarget',
    'LoadTestError',
    'LoadTestResult',
    'ServerNotReadyError',
    'run_batched_test',
    'run_sequential_test',
    'run_single_request',
    'run_sustained_test',
    'wait_for_server',
    'CaseOutcome',
    'run_api_performance_suite',
    'run_case',
    'get_default_config',
    'load_config',
    'merge_config',
    'validate_config',
    'ResourceMonitor',
    'monitor_resources',
    'SuiteContext',
    'setup_suite',
]

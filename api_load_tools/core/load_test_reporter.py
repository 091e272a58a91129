#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
报告生成器
负责测试汇总报告的生成和保存
"""

import os
import json
from typing import List, Dict
from datetime import datetime


def generate_suite_report(outcomes: List, config: Dict) -> str:
    """
    生成接口性能测试汇总报告

    Args:
        outcomes: 用例结果列表（CaseOutcome）
        config: 本次运行的配置

    Returns:
        汇总报告文本
    """
    lines = []

    lines.append("=" * 80)
    lines.append("接口性能测试汇总报告")
    lines.append("=" * 80)
    lines.append(f"测试时间: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    lines.append(f"\n【测试配置】")
    lines.append(f"  URL: {config.get('url', 'N/A')}")
    lines.append(f"  超时: {config.get('timeout')}秒")
    lines.append(f"  顺序请求数: {config.get('iterations')}")
    lines.append(f"  并发用户数: {config.get('concurrent_users')} (每批 {config.get('batch_size')})")
    lines.append(f"  持续压测: {config.get('sustained_duration')}秒 (每批 {config.get('sustained_batch_size')})")

    # 表头
    header = f"{'用例':<18} | {'结果':>4} | {'请求数':>8} | {'平均':>10} | {'峰值':>10} | {'阈值':>10}"
    lines.append(f"\n【结果一览】")
    lines.append(header)
    lines.append("-" * len(header))

    # 数据行
    for outcome in outcomes:
        status = "PASS" if outcome.passed else "FAIL"
        count = outcome.result.count if outcome.result else 0
        average = outcome.metrics.get('average_ms')
        peak = outcome.metrics.get('peak_ms')
        limit = outcome.thresholds.get('average_ms')
        row = (
            f"{outcome.name:<18} | {status:>4} | {count:>8} | "
            f"{_fmt_ms(average):>10} | {_fmt_ms(peak):>10} | {_fmt_ms(limit):>10}"
        )
        lines.append(row)

    failed = [o for o in outcomes if not o.passed]
    lines.append(f"\n【汇总】")
    lines.append(f"  通过: {len(outcomes) - len(failed)}/{len(outcomes)}")

    if failed:
        lines.append(f"\n【失败详情】")
        for outcome in failed:
            lines.append(f"  {outcome.name}:")
            if outcome.error:
                lines.append(f"    - 错误: {outcome.error}")
            for failure in outcome.failures:
                lines.append(f"    - {failure}")

    lines.append("=" * 80)

    return "\n".join(lines)


def _fmt_ms(value) -> str:
    return "-" if value is None else f"{value:.1f}ms"


def save_reports(
    outcomes: List,
    config: Dict,
    output_dir: str,
    save_json: bool = False
) -> Dict[str, str]:
    """
    统一的报告保存接口

    Args:
        outcomes: 用例结果列表
        config: 测试配置
        output_dir: 输出目录
        save_json: 是否保存JSON报告

    Returns:
        {
            'text_report': 'path/to/text_report.txt',
            'json_report': 'path/to/json_report.json'  # 可选
        }
    """
    # 创建报告目录
    os.makedirs(output_dir, exist_ok=True)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')

    sections = [generate_suite_report(outcomes, config)]
    for outcome in outcomes:
        if outcome.result is not None:
            sections.append(outcome.result.generate_report_text())

    text_file = os.path.join(output_dir, f"api_perf_report_{timestamp}.txt")
    with open(text_file, 'w', encoding='utf-8') as f:
        f.write("\n\n".join(sections))

    reports = {'text_report': text_file}

    if save_json:
        report_data = {
            'test_time': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
            'test_config': config,
            'cases': [
                {
                    'name': outcome.name,
                    'passed': outcome.passed,
                    'metrics': outcome.metrics,
                    'thresholds': outcome.thresholds,
                    'failures': outcome.failures,
                    'error': outcome.error,
                    'result': outcome.result.to_dict() if outcome.result else None,
                }
                for outcome in outcomes
            ],
        }
        json_file = os.path.join(output_dir, f"api_perf_report_{timestamp}.json")
        with open(json_file, 'w', encoding='utf-8') as f:
            json.dump(report_data, f, ensure_ascii=False, indent=2)
        reports['json_report'] = json_file

    return reports

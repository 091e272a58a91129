#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
核心测试引擎
包含压测的核心逻辑：请求发送、就绪等待、顺序/分批并发/持续压测、结果统计等
"""

import asyncio
import aiohttp
import logging
import math
import time
import statistics
from dataclasses import dataclass
from typing import Callable, List, Dict, FrozenSet, NamedTuple, Optional, Tuple
from collections import defaultdict
from datetime import datetime

logger = logging.getLogger("load_test")


class LoadTestError(Exception):
    """压测框架异常基类"""


class ServerNotReadyError(LoadTestError):
    """目标服务在重试次数内未就绪"""


class AuthSetupError(LoadTestError):
    """初始化阶段登录失败，无法获取令牌"""


class TimingSample(NamedTuple):
    """单个请求的计时结果"""
    response_time: float
    status_code: int
    error: Optional[str]
    started_at: float


@dataclass(frozen=True)
class EndpointTarget:
    """
    压测目标接口（不可变）

    Attributes:
        method: HTTP 方法
        path: 接口路径，如 /login/
        expected_statuses: 允许的响应状态码集合
        params: 查询参数
        body: 固定的 JSON 请求体
        body_factory: 每次请求生成请求体的函数（优先于 body）
        headers: 请求头
    """
    method: str
    path: str
    expected_statuses: FrozenSet[int]
    params: Optional[Dict[str, str]] = None
    body: Optional[Dict] = None
    body_factory: Optional[Callable[[], Dict]] = None
    headers: Optional[Dict[str, str]] = None

    def build_body(self) -> Optional[Dict]:
        if self.body_factory is not None:
            return self.body_factory()
        return self.body

    def url(self, base_url: str) -> str:
        return base_url.rstrip('/') + self.path

    def describe(self) -> str:
        return f"{self.method} {self.path}"


class LoadTestResult:
    """压测结果统计（响应时间单位: 毫秒）"""

    def __init__(self, name: str = "load_test", expected_statuses: Optional[FrozenSet[int]] = None):
        self.name = name
        self.expected_statuses = expected_statuses
        self.response_times: List[float] = []
        self.status_codes: Dict[int, int] = defaultdict(int)
        self.unexpected_statuses: List[int] = []
        self.errors: List[str] = []
        self.request_starts: List[float] = []
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def add_result(self, response_time: float, status_code: int, error: Optional[str] = None,
                   started_at: Optional[float] = None):
        """添加一次请求结果，状态码不在允许集合内时记为异常状态"""
        self.response_times.append(response_time)
        if started_at is not None:
            self.request_starts.append(started_at)
        self.status_codes[status_code] += 1

        if self.expected_statuses is not None and status_code not in self.expected_statuses:
            self.unexpected_statuses.append(status_code)
        if error:
            self.errors.append(error)

    def extend(self, samples: List[TimingSample]):
        """批量添加一组请求结果（按批次返回顺序）"""
        for sample in samples:
            self.add_result(*sample)

    @property
    def count(self) -> int:
        return len(self.response_times)

    @property
    def average(self) -> Optional[float]:
        if not self.response_times:
            return None
        return statistics.mean(self.response_times)

    @property
    def peak(self) -> Optional[float]:
        if not self.response_times:
            return None
        return max(self.response_times)

    def get_statistics(self) -> Dict:
        """获取统计信息"""
        if not self.response_times:
            return {}

        sorted_times = sorted(self.response_times)
        total_requests = len(self.response_times)

        stats = {
            'total_requests': total_requests,
            'unexpected_count': len(self.unexpected_statuses),
            'error_count': len(self.errors),
            'status_codes': dict(self.status_codes),
            'response_time': {
                'min': sorted_times[0],
                'max': sorted_times[-1],
                'mean': statistics.mean(self.response_times),
                'median': statistics.median(self.response_times),
            },
        }

        # 计算百分位数
        stats['response_time']['p50'] = sorted_times[int(total_requests * 0.50)]
        stats['response_time']['p90'] = sorted_times[int(total_requests * 0.90)]
        stats['response_time']['p95'] = sorted_times[int(total_requests * 0.95)]
        stats['response_time']['p99'] = sorted_times[int(total_requests * 0.99)]

        # 计算QPS
        if self.start_time and self.end_time:
            duration = self.end_time - self.start_time
            stats['duration'] = duration
            stats['qps'] = total_requests / duration if duration > 0 else 0

        return stats

    def generate_report_text(self, test_config: Optional[Dict] = None) -> str:
        """生成单个用例的报告文本"""
        stats = self.get_statistics()
        lines = []

        lines.append("=" * 80)
        lines.append(f"压测报告: {self.name}")
        lines.append("=" * 80)
        lines.append(f"测试时间: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

        if test_config:
            lines.append(f"\n【测试配置】")
            for key, value in test_config.items():
                lines.append(f"  {key}: {value}")

        if not stats:
            lines.append("\n无请求数据")
            lines.append("=" * 80)
            return "\n".join(lines)

        lines.append(f"\n【请求统计】")
        lines.append(f"  总请求数: {stats['total_requests']}")
        lines.append(f"  异常状态数: {stats['unexpected_count']}")
        lines.append(f"  网络错误数: {stats['error_count']}")

        if stats.get('duration'):
            lines.append(f"\n【性能统计】")
            lines.append(f"  测试时长: {stats['duration']:.2f} 秒")
            lines.append(f"  QPS: {stats['qps']:.2f}")

        lines.append(f"\n【响应时间统计】(单位: 毫秒)")
        rt = stats['response_time']
        lines.append(f"  最小值: {rt['min']:.1f}ms")
        lines.append(f"  最大值: {rt['max']:.1f}ms")
        lines.append(f"  平均值: {rt['mean']:.1f}ms")
        lines.append(f"  中位数: {rt['median']:.1f}ms")
        lines.append(f"  P50: {rt['p50']:.1f}ms")
        lines.append(f"  P90: {rt['p90']:.1f}ms")
        lines.append(f"  P95: {rt['p95']:.1f}ms")
        lines.append(f"  P99: {rt['p99']:.1f}ms")

        lines.append(f"\n【HTTP状态码统计】")
        for code, count in sorted(stats['status_codes'].items()):
            lines.append(f"  {code}: {count}")

        if self.errors:
            lines.append(f"\n【错误信息】(前50条)")
            for error in self.errors[:50]:
                lines.append(f"  {error}")
            if len(self.errors) > 50:
                lines.append(f"  ... 还有 {len(self.errors) - 50} 条错误")

        lines.append("=" * 80)

        return "\n".join(lines)

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'statistics': self.get_statistics(),
            'errors': self.errors[:100],
        }


def create_session(concurrent: int = 50) -> aiohttp.ClientSession:
    """创建HTTP会话，连接池大小按并发数放大"""
    connector = aiohttp.TCPConnector(limit=concurrent * 2, limit_per_host=concurrent * 2)
    return aiohttp.ClientSession(connector=connector)


async def make_request(
    session: aiohttp.ClientSession,
    base_url: str,
    target: EndpointTarget,
    timeout: float = 5
) -> TimingSample:
    """
    发送单个请求

    Returns:
        TimingSample(响应时间毫秒, 状态码, 错误信息, 发送时间戳)；网络错误或超时时状态码为 0
    """
    start_time = time.time()

    try:
        async with session.request(
            target.method,
            target.url(base_url),
            params=target.params,
            json=target.build_body(),
            headers=target.headers,
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            status_code = response.status
            # 读完响应体再计时，与客户端实际感知一致
            await response.read()
            return TimingSample((time.time() - start_time) * 1000, status_code, None, start_time)

    except asyncio.TimeoutError:
        response_time = (time.time() - start_time) * 1000
        return TimingSample(response_time, 0, f"请求超时 (>{timeout}s): {target.describe()}", start_time)

    except aiohttp.ClientError as e:
        response_time = (time.time() - start_time) * 1000
        return TimingSample(response_time, 0, f"客户端错误: {target.describe()}: {str(e)}", start_time)


async def fetch_json(
    session: aiohttp.ClientSession,
    base_url: str,
    target: EndpointTarget,
    timeout: float = 5
) -> Tuple[int, Dict]:
    """发送请求并返回 (状态码, JSON响应体)，响应体不是 JSON 对象时返回空字典"""
    async with session.request(
        target.method,
        target.url(base_url),
        params=target.params,
        json=target.build_body(),
        headers=target.headers,
        timeout=aiohttp.ClientTimeout(total=timeout)
    ) as response:
        try:
            data = await response.json(content_type=None)
        except ValueError:
            return response.status, {}
        if not isinstance(data, dict):
            return response.status, {}
        return response.status, data


async def wait_for_server(
    session: aiohttp.ClientSession,
    base_url: str,
    path: str = '/status',
    retries: int = 5,
    interval: float = 1.0,
    timeout: float = 5
):
    """
    等待目标服务就绪

    只要收到任意 HTTP 响应即视为就绪；连接失败或超时消耗一次重试机会，
    并等待 interval 秒后再试。

    Raises:
        ServerNotReadyError: 重试次数用尽
    """
    url = base_url.rstrip('/') + path
    attempts = retries
    while attempts > 0:
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                logger.info(f"服务已就绪: {url} -> {response.status}")
                return
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            attempts -= 1
            logger.warning(f"服务未就绪 ({url}): {e}，剩余重试次数 {attempts}")
            await asyncio.sleep(interval)

    raise ServerNotReadyError(f"Server not ready: {url} 在 {retries} 次尝试后仍无响应")


async def run_single_request(
    session: aiohttp.ClientSession,
    base_url: str,
    target: EndpointTarget,
    timeout: float = 5,
    name: Optional[str] = None
) -> LoadTestResult:
    """发送单个请求并记录耗时（用于错误路径延迟检查）"""
    result = LoadTestResult(name=name or target.describe(), expected_statuses=target.expected_statuses)
    result.start_time = time.time()
    result.add_result(*await make_request(session, base_url, target, timeout))
    result.end_time = time.time()
    return result


async def run_sequential_test(
    session: aiohttp.ClientSession,
    base_url: str,
    target: EndpointTarget,
    iterations: int,
    timeout: float = 5,
    name: Optional[str] = None
) -> LoadTestResult:
    """逐个发送 iterations 个请求，前一个完成后才发送下一个"""
    result = LoadTestResult(name=name or target.describe(), expected_statuses=target.expected_statuses)
    result.start_time = time.time()

    for _ in range(iterations):
        result.add_result(*await make_request(session, base_url, target, timeout))

    result.end_time = time.time()
    logger.info(f"[{result.name}] 顺序请求完成: {result.count} 次")
    return result


async def run_batch(
    session: aiohttp.ClientSession,
    base_url: str,
    target: EndpointTarget,
    size: int,
    timeout: float = 5
) -> List[TimingSample]:
    """同时发出一批请求，等待整批全部完成后返回每个请求的结果"""
    return await asyncio.gather(*[
        make_request(session, base_url, target, timeout) for _ in range(size)
    ])


async def run_batched_test(
    session: aiohttp.ClientSession,
    base_url: str,
    target: EndpointTarget,
    total: int,
    batch_size: int,
    timeout: float = 5,
    cooldown: float = 0,
    name: Optional[str] = None
) -> LoadTestResult:
    """
    分批并发压测

    将 total 个虚拟用户切分为 ceil(total / batch_size) 批，批内并发，
    批与批之间串行；最后一批为剩余数量。cooldown 为批次间隔（秒）。
    """
    result = LoadTestResult(name=name or target.describe(), expected_statuses=target.expected_statuses)
    total_batches = math.ceil(total / batch_size)
    result.start_time = time.time()

    for i in range(total_batches):
        size = min(batch_size, total - i * batch_size)
        batch_results = await run_batch(session, base_url, target, size, timeout)
        result.extend(batch_results)
        logger.debug(f"[{result.name}] 批次 {i + 1}/{total_batches} 完成 ({size} 个请求)")

        # 冷却时间（最后一批不需要等待）
        if cooldown and i < total_batches - 1:
            await asyncio.sleep(cooldown)

    result.end_time = time.time()
    logger.info(f"[{result.name}] 分批并发完成: {result.count} 次, {total_batches} 批")
    return result


async def run_sustained_test(
    session: aiohttp.ClientSession,
    base_url: str,
    target: EndpointTarget,
    duration: float,
    batch_size: int = 10,
    timeout: float = 5,
    name: Optional[str] = None
) -> LoadTestResult:
    """在 duration 秒内持续发送固定宽度的并发批次；截止时正在进行的批次会等待完成"""
    result = LoadTestResult(name=name or target.describe(), expected_statuses=target.expected_statuses)
    result.start_time = time.time()
    batches = 0

    while time.time() - result.start_time < duration:
        result.extend(await run_batch(session, base_url, target, batch_size, timeout))
        batches += 1

    result.end_time = time.time()
    logger.info(f"[{result.name}] 持续压测完成: {duration}秒, {batches} 批, {result.count} 次")
    return result


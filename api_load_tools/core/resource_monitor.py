#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
资源监控模块
按固定周期采样主机 1 分钟负载与当前进程内存，窗口结束后汇总平均 CPU 负载与内存峰值
"""

import asyncio
import logging
import statistics
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import psutil

logger = logging.getLogger("load_test")


@dataclass
class ResourceSample:
    """单次资源采样"""
    cpu_load: float
    memory_mb: float
    sampled_at: float


def take_sample(process: Optional[psutil.Process] = None) -> ResourceSample:
    """采样主机 1 分钟平均负载和进程常驻内存（MB）"""
    process = process or psutil.Process()
    return ResourceSample(
        cpu_load=psutil.getloadavg()[0],
        memory_mb=process.memory_info().rss / 1024 / 1024,
        sampled_at=time.time(),
    )


class ResourceMonitor:
    """
    周期性资源采样任务

    start() 启动后台采样任务，stop() 取消任务并等待其退出。
    作为异步上下文管理器使用时，无论窗口正常结束还是抛出异常，退出时都会停止采样：

        async with ResourceMonitor(interval=1.0) as monitor:
            await asyncio.sleep(30)
        summary = monitor.summary()
    """

    def __init__(self, interval: float = 1.0, sampler: Optional[Callable[[], ResourceSample]] = None):
        if interval <= 0:
            raise ValueError(f"采样周期必须大于0: {interval}")
        self.interval = interval
        self.samples: List[ResourceSample] = []
        self._process = psutil.Process()
        self._sampler = sampler or (lambda: take_sample(self._process))
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "ResourceMonitor":
        if self.running:
            raise RuntimeError("资源监控已在运行")
        self._task = asyncio.create_task(self._run())
        return self

    async def stop(self):
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self):
        # 与 setInterval 一致：首次采样发生在一个周期之后
        while True:
            await asyncio.sleep(self.interval)
            self.samples.append(self._sampler())

    async def __aenter__(self) -> "ResourceMonitor":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    def summary(self) -> Dict:
        """汇总采样结果；没有采样时平均值和峰值为 None"""
        if not self.samples:
            return {'samples': 0, 'avg_cpu': None, 'peak_memory_mb': None}
        return {
            'samples': len(self.samples),
            'avg_cpu': statistics.mean(s.cpu_load for s in self.samples),
            'peak_memory_mb': max(s.memory_mb for s in self.samples),
        }


async def monitor_resources(
    duration: float = 30,
    interval: float = 1.0,
    sampler: Optional[Callable[[], ResourceSample]] = None
) -> ResourceMonitor:
    """在 duration 秒的窗口内按 interval 周期采样，返回已停止的监控器"""
    async with ResourceMonitor(interval=interval, sampler=sampler) as monitor:
        await asyncio.sleep(duration)

    summary = monitor.summary()
    logger.info(f"资源监控完成: {summary['samples']} 个采样点")
    return monitor

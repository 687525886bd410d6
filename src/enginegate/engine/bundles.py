"""Engine bundle 解析

Bundle 描述 worker 需要的一组产物和运行参数：用哪种 multiprocessing
start method 启动 worker、worker 内实例化哪个引擎模块、给引擎多少线程。

解析基于平台能力（start method 可用性、CPU 数、引擎模块是否可导入），
而不是写死某一个 bundle。
"""

import importlib.util
import multiprocessing
import os
import sys
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from .. import config
from ..telemetry import get_logger

logger = get_logger(__name__)

# 能力名
CAP_ENGINE = "engine"
CAP_THREADS = "threads"


def start_method_capability(method: str) -> str:
    """start method 对应的能力名"""
    return f"start:{method}"


@dataclass(frozen=True)
class BundleDescriptor:
    """Bundle 描述

    Attributes:
        name: bundle 名
        start_method: worker 的 multiprocessing start method
        module: worker 内实例化的引擎模块
        threads: 引擎线程数（0 => 解析时按 CPU 数填充）
        requires: 需要的平台能力
        priority: 多个 bundle 同时匹配时，优先级高者胜出
    """

    name: str
    start_method: str
    module: str = config.ENGINE_MODULE
    threads: int = 1
    requires: frozenset[str] = field(default_factory=frozenset)
    priority: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["requires"] = sorted(self.requires)
        return data


@dataclass(frozen=True)
class PlatformCapabilities:
    """当前运行环境的能力快照"""

    start_methods: tuple[str, ...]
    cpu_count: int
    platform: str
    engine_available: bool

    @classmethod
    def detect(cls, module: str = config.ENGINE_MODULE) -> "PlatformCapabilities":
        """探测当前解释器的能力"""
        return cls(
            start_methods=tuple(multiprocessing.get_all_start_methods()),
            cpu_count=os.cpu_count() or 1,
            platform=sys.platform,
            engine_available=importlib.util.find_spec(module) is not None,
        )

    def provides(self) -> set[str]:
        """能力名集合"""
        caps = {start_method_capability(m) for m in self.start_methods}
        if self.cpu_count > 1:
            caps.add(CAP_THREADS)
        if self.engine_available:
            caps.add(CAP_ENGINE)
        return caps


# fork 在持有事件循环和线程的父进程里不安全，只提供 forkserver/spawn
DEFAULT_BUNDLES: tuple[BundleDescriptor, ...] = (
    BundleDescriptor(
        name="forkserver-mt",
        start_method="forkserver",
        threads=0,
        requires=frozenset({start_method_capability("forkserver"), CAP_THREADS, CAP_ENGINE}),
        priority=30,
    ),
    BundleDescriptor(
        name="spawn-mt",
        start_method="spawn",
        threads=0,
        requires=frozenset({start_method_capability("spawn"), CAP_THREADS, CAP_ENGINE}),
        priority=20,
    ),
    BundleDescriptor(
        name="spawn",
        start_method="spawn",
        threads=1,
        requires=frozenset({start_method_capability("spawn"), CAP_ENGINE}),
        priority=10,
    ),
)


def select_bundle(
    capabilities: PlatformCapabilities,
    bundles: tuple[BundleDescriptor, ...] = DEFAULT_BUNDLES,
    start_method: str | None = None,
    threads: int | None = None,
) -> BundleDescriptor:
    """选择最匹配的 bundle

    Args:
        capabilities: 平台能力
        bundles: 候选 bundle
        start_method: 强制的 start method（None 使用 config.START_METHOD，空串表示不限）
        threads: 强制线程数（None 使用 config.ENGINE_THREADS，0 表示自动）

    Returns:
        线程数已填充的 BundleDescriptor

    Raises:
        LookupError: 没有 bundle 满足当前平台能力
    """
    if start_method is None:
        start_method = config.START_METHOD
    if threads is None:
        threads = config.ENGINE_THREADS

    provided = capabilities.provides()
    if CAP_ENGINE not in provided:
        # 引擎缺失时给出明确的诊断
        module = bundles[0].module if bundles else config.ENGINE_MODULE
        raise LookupError(f"engine module '{module}' is not installed")

    candidates = [b for b in bundles if b.requires <= provided]
    if start_method:
        candidates = [b for b in candidates if b.start_method == start_method]

    if not candidates:
        raise LookupError(
            f"no engine bundle matches platform {capabilities.platform} "
            f"(start methods: {', '.join(capabilities.start_methods) or 'none'})"
        )

    best = max(candidates, key=lambda b: b.priority)
    if threads > 0:
        best = replace(best, threads=threads)
    elif best.threads == 0:
        best = replace(best, threads=capabilities.cpu_count)

    logger.debug(f"[Bundles] Selected {best.name} (start={best.start_method}, threads={best.threads})")
    return best


def resolve_bundle() -> BundleDescriptor:
    """探测平台能力并解析 bundle（Bootstrapper 默认能力）"""
    return select_bundle(PlatformCapabilities.detect())

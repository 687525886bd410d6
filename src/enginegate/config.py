"""enginegate 配置

配置分为以下几类：
- 引擎配置：引擎模块、数据库、线程数
- Bundle 配置：worker 启动方式偏好
- Bootstrap 配置：超时、worker 握手
- Web 配置：监听地址
- 日志/指标配置
"""

import os

# === 引擎配置 ===
ENGINE_MODULE = "duckdb"  # worker 内实例化的引擎模块
ENGINE_DATABASE = ":memory:"  # 引擎数据库路径（默认内存库）
ENGINE_THREADS = int(os.environ.get("ENGINEGATE_THREADS", "0"))  # 0 => 按 CPU 数自动选择

# === Bundle 配置 ===
# 强制指定 multiprocessing start method（空 => 按能力自动选择）
START_METHOD = os.environ.get("ENGINEGATE_START_METHOD", "")

# === Bootstrap 配置 ===
# 引擎初始化总超时（秒），0 => 不限时
BOOTSTRAP_TIMEOUT_SECONDS = float(os.environ.get("ENGINEGATE_BOOTSTRAP_TIMEOUT", "60"))
WORKER_READY_TIMEOUT_SECONDS = 30.0  # 等待 worker 握手的时间（秒）
WORKER_REQUEST_TIMEOUT_SECONDS = 0.0  # 单次引擎请求超时（秒），0 => 不限时
WORKER_JOIN_TIMEOUT_SECONDS = 2.0  # 关闭 worker 时等待退出的时间（秒）
STAGING_PREFIX = "enginegate-bundle-"  # handoff 临时文件前缀

# === Web 配置 ===
WEB_HOST = os.environ.get("ENGINEGATE_HOST", "127.0.0.1")
WEB_PORT = int(os.environ.get("ENGINEGATE_PORT", "8766"))
GATE_RETRY_AFTER_SECONDS = 1  # pending 状态下 503 响应的 Retry-After

# === 日志配置 ===
LOG_LEVEL = os.environ.get("ENGINEGATE_LOG_LEVEL", "INFO")  # 日志级别
LOG_MAX_SQL_LEN = 120  # SQL 日志截断长度

# === 指标配置 ===
METRICS_ENABLED = True  # 是否启用指标收集

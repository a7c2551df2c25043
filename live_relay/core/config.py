"""
live_relay.core.config
~~~~~~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Live Stream Relay", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 身份认证 ──────────────────────────────────────────────────────
    JWT_SECRET: str = Field(..., description="签发 JWT 时使用的共享密钥")
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT 签名算法")

    # ── 直播会话策略 ──────────────────────────────────────────────────
    BROADCASTER_POLICY: Literal["reject", "replace"] = Field(
        default="reject",
        description="已有主播在线时新的主播申请如何处理：reject 拒绝 / replace 强制接管",
    )
    MIC_AUTO_APPROVE: bool = Field(
        default=False,
        description="是否自动批准连麦申请（旧版演示行为，默认关闭，需主播确认）",
    )

    # ── 心跳 / 连接 ──────────────────────────────────────────────────
    HEARTBEAT_TIMEOUT: float = Field(
        default=60.0,
        description="参与者静默超过该秒数即视为掉线；<= 0 表示关闭心跳检测",
    )
    HEARTBEAT_SWEEP_INTERVAL: float = Field(
        default=15.0,
        description="心跳巡检间隔（秒）",
    )
    OUTBOX_MAX_SIZE: int = Field(
        default=256,
        description="每个连接待发送消息队列的最大长度",
    )

    # ── 事件限流（固定窗口）────────────────────────────────────────────
    RATE_LIMIT_WINDOW: float = Field(default=60.0, description="限流窗口长度（秒）")
    CHAT_RATE_LIMIT: int = Field(default=20, description="每窗口允许的聊天消息数")
    MIC_RATE_LIMIT: int = Field(default=5, description="每窗口允许的连麦申请数")
    DEFAULT_RATE_LIMIT: int = Field(default=30, description="其他事件每窗口允许数")

    # ── MongoDB ───────────────────────────────────────────────────────
    MONGO_ENABLED: bool = Field(default=True, description="是否启用聊天/连麦日志持久化")
    MONGO_URI: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB 连接串",
    )
    MONGO_DB_NAME: str = Field(default="institute_live", description="数据库名称")
    CHAT_HISTORY_LIMIT: int = Field(default=100, description="历史回看单页最大条数")

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=8000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        """当前是否为测试环境。"""
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()

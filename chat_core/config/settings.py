"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：显式参数 > 环境变量 > .env > config.yaml > 默认值。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 生成端点 ----
    base_url: str = Field(
        default="http://localhost:3001",
        description="生成服务与消息存储服务的基础URL",
    )
    default_endpoint: str = Field(
        default="chat",
        description="默认使用的流式端点名称，由 registry 映射为具体路径，例如 chat、chat-context",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 重试 / 退避 ----
    max_retries: int = Field(default=3, ge=0, le=10, description="单次交换的最大重试次数")
    initial_backoff_ms: int = Field(default=1000, ge=1, description="指数退避的基础延迟（毫秒）")
    retry_status_codes: List[int] = Field(
        default_factory=lambda: [429, 500, 502, 503, 504],
        description="视为瞬时故障、允许重试的 HTTP 状态码",
    )

    # ---- 本地缓存 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    cache_key: str = Field(default="chat_messages_cache", description="本地缓存槽位名")
    enable_local_cache: bool = Field(default=True, description="是否启用本地持久化缓存")

    # ---- 上下文 / 轮询 ----
    max_context_messages: int = Field(default=20, ge=1, le=100, description="上下文模式下携带的最大历史消息数")
    poll_interval: float = Field(default=0.9, gt=0, description="消息轮询间隔（秒）")
    user_id: str = Field(default="local-user", description="连接消息存储服务时使用的用户标识")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("retry_status_codes")
    @classmethod
    def validate_status_codes(cls, v: List[int]) -> List[int]:
        for code in v:
            if code < 400 or code > 599:
                raise ValueError(f"retry status code out of range: {code}")
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()

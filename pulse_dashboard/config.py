"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。

环境变量格式：PULSE_<SECTION>__<FIELD>，例如 PULSE_BACKEND__BASE_URL。
环境变量优先级高于 YAML 文件。
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendConfig(BaseModel):
    """检查后端（REST API）配置"""
    base_url: str = "http://127.0.0.1:8080"
    timeout: float = 5.0
    page_size: int = Field(default=100, ge=1, le=1000)
    detail_page_size: int = Field(default=50, ge=1, le=1000)
    period_page_size: int = Field(default=1000, ge=1, le=1000)


class RefreshConfig(BaseModel):
    """刷新周期配置"""
    interval: float = Field(default=30.0, gt=0)
    surface_ready_timeout: float = Field(default=2.0, gt=0)


class ViewConfig(BaseModel):
    """聚合窗口配置"""
    window_count: int = Field(default=10, ge=1)
    window_width_seconds: int = Field(default=60, ge=1)
    trailing_offset_seconds: int = Field(default=60, ge=0)


class APIConfig(BaseModel):
    """API 服务配置"""
    host: str = "0.0.0.0"
    port: int = 8090
    cors_origins: List[str] = ["http://localhost:8090", "http://127.0.0.1:8090"]


class FrontendConfig(BaseModel):
    """前端配置"""
    path: str = "frontend"
    enabled: bool = False


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None


class AppConfig(BaseSettings):
    """应用配置（完整配置）"""

    model_config = SettingsConfigDict(env_prefix="PULSE_", env_nested_delimiter="__")

    backend: BackendConfig = Field(default_factory=BackendConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    view: ViewConfig = Field(default_factory=ViewConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    frontend: FrontendConfig = Field(default_factory=FrontendConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # 环境变量覆盖 YAML（YAML 通过 init 参数传入）
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 PULSE_CONFIG_PATH
    3. 默认路径 config.yaml
    """
    if config_path is None:
        config_path = os.environ.get("PULSE_CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
        if raw_config:
            # 相对路径按配置文件所在目录解析，避免依赖 CWD
            base_dir = config_file.resolve().parent

            def _resolve_path(value: Optional[str]) -> Optional[str]:
                if not value:
                    return value
                path = Path(value)
                if path.is_absolute():
                    return str(path)
                return str((base_dir / path).resolve())

            if isinstance(raw_config.get("frontend"), dict) and "path" in raw_config["frontend"]:
                raw_config["frontend"]["path"] = _resolve_path(raw_config["frontend"]["path"])
            if isinstance(raw_config.get("logging"), dict) and raw_config["logging"].get("file"):
                raw_config["logging"]["file"] = _resolve_path(raw_config["logging"]["file"])

            return AppConfig(**raw_config)

    # 配置文件不存在时使用默认配置
    return AppConfig()


# 全局配置实例（延迟加载）
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """获取全局配置实例（单例模式）"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    """重置配置（主要用于测试）"""
    global _config
    _config = None

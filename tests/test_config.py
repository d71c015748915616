"""
单元测试：配置加载

测试覆盖：
- 默认配置
- YAML 加载与相对路径解析
- 环境变量覆盖 YAML
"""

import sys
from pathlib import Path

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pulse_dashboard.config import get_config, load_config, reset_config


def write_config(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        "backend:\n"
        "  base_url: http://checks.internal:9000\n"
        "  page_size: 200\n"
        "refresh:\n"
        "  interval: 15\n"
        "frontend:\n"
        "  path: web\n"
        "logging:\n"
        "  file: logs/dashboard.log\n",
        encoding="utf-8",
    )
    return path


def test_defaults(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"))

    assert config.backend.base_url == "http://127.0.0.1:8080"
    assert config.backend.page_size == 100
    assert config.backend.detail_page_size == 50
    assert config.backend.period_page_size == 1000
    assert config.refresh.interval == 30
    assert config.view.window_count == 10
    assert config.view.trailing_offset_seconds == 60


def test_yaml_values(tmp_path):
    config = load_config(str(write_config(tmp_path)))

    assert config.backend.base_url == "http://checks.internal:9000"
    assert config.backend.page_size == 200
    assert config.refresh.interval == 15
    # 相对路径按配置文件目录解析
    assert Path(config.frontend.path) == (tmp_path / "web").resolve()
    assert Path(config.logging.file) == (tmp_path / "logs" / "dashboard.log").resolve()


def test_env_overrides_yaml(tmp_path, monkeypatch):
    """测试：环境变量优先于 YAML"""
    monkeypatch.setenv("PULSE_BACKEND__BASE_URL", "http://override:1234")
    monkeypatch.setenv("PULSE_REFRESH__INTERVAL", "5")

    config = load_config(str(write_config(tmp_path)))

    assert config.backend.base_url == "http://override:1234"
    assert config.refresh.interval == 5
    # 未覆盖的字段仍来自 YAML
    assert config.backend.page_size == 200


def test_config_path_env(tmp_path, monkeypatch):
    monkeypatch.setenv("PULSE_CONFIG_PATH", str(write_config(tmp_path)))
    reset_config()

    assert get_config().backend.page_size == 200
    assert get_config() is get_config()

"""
配置模块 (config)
================
本模块是 relaybot 的配置系统入口，负责：
1. 定义配置数据模型（schema.py）：使用 Pydantic 定义所有配置项的结构和默认值
2. 加载/保存配置文件（loader.py）：从 JSON 文件读取配置，支持 camelCase ↔ snake_case 自动转换
3. AI 画像存储（store.py）：运行期可修改的业务画像，最后写入者获胜
"""

from relaybot.config.loader import get_config_path, load_config, save_config
from relaybot.config.schema import AIProfile, Config
from relaybot.config.store import AIProfileStore

__all__ = ["Config", "AIProfile", "AIProfileStore", "load_config", "save_config", "get_config_path"]

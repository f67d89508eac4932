"""LLM 工厂模块

根据配置文件创建 LLM 实例和助手运行时。
遵循安全协议：从不读取 .env 文件，只从系统环境变量获取密钥。
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AssistantSettings(BaseModel):
    """助手运行时配置（llm_config.json 中的 assistant 段）"""

    # openai_assistant: 托管的 Assistants API；graph: 进程内 LangGraph 运行时
    runtime: Literal["openai_assistant", "graph"] = "openai_assistant"

    # assistant ID，未填写时从 assistant_id_env 指向的环境变量读取
    assistant_id: Optional[str] = None
    assistant_id_env: str = "OPENAI_ASSISTANT_ID"

    # Assistants API 使用的密钥环境变量
    api_env_key: str = "OPENAI_API_KEY"

    # 轮询策略：间隔 1 秒，最多 60 次
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    max_poll_attempts: int = Field(default=60, ge=1)


# 环境变量覆盖项：环境变量名 -> AssistantSettings 字段
SETTINGS_ENV_OVERRIDES = {
    "ASSISTANT_RUNTIME": "runtime",
    "ASSISTANT_POLL_INTERVAL": "poll_interval_seconds",
    "ASSISTANT_MAX_POLL_ATTEMPTS": "max_poll_attempts",
}


class LLMFactory:
    """LLM 工厂类，负责创建和管理 LLM 实例与助手运行时"""

    def __init__(self, config_path: str = None):
        """初始化工厂，加载配置文件

        Args:
            config_path: 配置文件路径，如果为 None 则使用环境变量 LLM_CONFIG_PATH 或 backend/llm_config.json
        """
        if config_path is None:
            # 默认路径：从 backend/resume_assistant/assistant/llm_factory.py 到 backend/llm_config.json
            default_path = Path(__file__).parent.parent.parent / "llm_config.json"
            self.config_path = os.getenv("LLM_CONFIG_PATH", str(default_path))
        else:
            self.config_path = config_path
        self._loaded_config = None

    def _load_config(self) -> Dict[str, Any]:
        """加载配置文件

        Returns:
            配置字典

        Raises:
            FileNotFoundError: 配置文件不存在
            json.JSONDecodeError: JSON 格式错误
        """
        if self._loaded_config is None:
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    self._loaded_config = json.load(f)
            except FileNotFoundError:
                raise FileNotFoundError(f"配置文件不存在: {self.config_path}")
            except json.JSONDecodeError as e:
                raise json.JSONDecodeError(f"JSON 格式错误: {e}", e.doc, e.pos)

        return self._loaded_config

    def get_active_model_config(self) -> Dict[str, Any]:
        """获取当前激活的模型配置

        Returns:
            当前激活模型的配置字典

        Raises:
            ValueError: active_model 不存在或对应的 provider 配置不存在
        """
        config = self._load_config()

        active_model = config.get("active_model")
        if not active_model:
            raise ValueError("配置文件中缺少 active_model 字段")

        providers = config.get("providers")
        if not providers:
            raise ValueError("配置文件中缺少 providers 字段")

        model_config = providers.get(active_model)
        if not model_config:
            raise ValueError(f"providers 中找不到 '{active_model}' 的配置")

        return model_config

    def get_assistant_settings(self) -> AssistantSettings:
        """获取助手运行时配置

        文件中的 assistant 段为基础，环境变量 ASSISTANT_* 覆盖对应字段

        Returns:
            AssistantSettings 对象

        Raises:
            pydantic.ValidationError: 配置值不合法
        """
        config = self._load_config()
        raw_settings = dict(config.get("assistant") or {})

        for env_key, field_name in SETTINGS_ENV_OVERRIDES.items():
            value = os.getenv(env_key)
            if value:
                raw_settings[field_name] = value

        return AssistantSettings(**raw_settings)

    def _get_api_key(self, env_key: str) -> str:
        """从系统环境变量获取 API Key

        Raises:
            ValueError: 环境变量不存在或为空
        """
        api_key = os.getenv(env_key)
        if not api_key:
            raise ValueError(f"环境变量 '{env_key}' 未设置或为空，无法初始化 LLM")

        return api_key

    def create_llm(self) -> Any:
        """创建并返回 LLM 实例

        Returns:
            LangChain LLM 对象 (ChatOpenAI 或 ChatGoogleGenerativeAI)

        Raises:
            ValueError: 配置错误或环境变量缺失
            NotImplementedError: 不支持的模型类型
        """
        model_config = self.get_active_model_config()

        env_key_map = model_config.get("env_key_map")
        if not env_key_map:
            raise ValueError("模型配置中缺少 env_key_map 字段")

        api_key = self._get_api_key(env_key_map)

        base_url = model_config.get("base_url")
        model_name = model_config.get("model_name")
        temperature = model_config.get("temperature", 0.7)

        if not model_name:
            raise ValueError("模型配置中缺少 model_name 字段")

        active_model = self._load_config()["active_model"]

        if active_model in ("moonshot", "openai_official"):
            # Moonshot 使用 OpenAI 兼容接口
            return ChatOpenAI(
                api_key=api_key,
                base_url=base_url,
                model=model_name,
                temperature=temperature
            )
        elif active_model == "gemini":
            return ChatGoogleGenerativeAI(
                google_api_key=api_key,
                model=model_name,
                temperature=temperature
            )
        else:
            raise NotImplementedError(f"不支持的模型类型: {active_model}")

    def create_runtime(self):
        """根据 assistant.runtime 创建助手运行时

        Returns:
            OpenAIAssistantRuntime 或 GraphAssistantRuntime

        Raises:
            ValueError: 缺少 assistant ID 或 API Key
        """
        settings = self.get_assistant_settings()

        if settings.runtime == "graph":
            from resume_assistant.assistant.graph_runtime import GraphAssistantRuntime

            logger.info("[LLMFactory] Using in-process graph runtime")
            return GraphAssistantRuntime(llm=self.create_llm())

        from openai import AsyncOpenAI
        from resume_assistant.assistant.openai_runtime import OpenAIAssistantRuntime

        assistant_id = settings.assistant_id or os.getenv(settings.assistant_id_env)
        if not assistant_id:
            raise ValueError(f"未配置 assistant_id，且环境变量 '{settings.assistant_id_env}' 为空")

        api_key = self._get_api_key(settings.api_env_key)
        logger.info("[LLMFactory] Using OpenAI assistant runtime: %s", assistant_id)
        return OpenAIAssistantRuntime(client=AsyncOpenAI(api_key=api_key), assistant_id=assistant_id)


# 全局工厂实例
llm_factory = LLMFactory()


def get_llm():
    """获取 LLM 实例的便捷函数"""
    return llm_factory.create_llm()


def get_assistant_settings() -> AssistantSettings:
    """获取助手运行时配置的便捷函数"""
    return llm_factory.get_assistant_settings()


def get_runtime():
    """获取助手运行时的便捷函数"""
    return llm_factory.create_runtime()

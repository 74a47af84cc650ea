"""
Provider 注册表 - 统一管理各 LLM Provider 的配置和 Chat 模型实例化

设计原则：
1. Provider 通过注册表动态管理，新增 Provider 只需注册配置
2. 模型类按需动态导入，langchain_openai 等集成包是可选依赖
3. OpenAI 兼容 API 统一使用 ChatOpenAI（包括 Hugging Face 推理路由）

支持的 Provider：
- OpenAI 兼容层：openai, huggingface
- 专用 SDK：anthropic, google, cohere
"""
import importlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type

from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)


# ============================================================================
# Provider 配置
# ============================================================================

@dataclass
class ProviderConfig:
    """Provider 配置"""
    name: str  # Provider 名称（小写）
    display_name: str

    chat_module: str = ""  # 模块路径，如 "langchain_openai"
    chat_class: str = ""  # 类名，如 "ChatOpenAI"

    supports_base_url: bool = True
    default_base_url: Optional[str] = None

    # 读取 API Key 的配置项名称（Settings 字段）
    api_key_setting: str = ""

    # 参数映射（将统一参数名映射到 Provider 特定参数名）
    param_mapping: Dict[str, str] = field(default_factory=dict)


# Provider 注册表
PROVIDER_REGISTRY: Dict[str, ProviderConfig] = {}


def register_provider(config: ProviderConfig) -> None:
    """注册一个 Provider 配置"""
    PROVIDER_REGISTRY[config.name.lower()] = config
    logger.debug(f"Registered provider: {config.name}")


def get_provider_config(provider_name: str) -> Optional[ProviderConfig]:
    return PROVIDER_REGISTRY.get(provider_name.lower())


def _register_default_providers():
    """注册默认支持的 Provider"""

    register_provider(ProviderConfig(
        name="openai",
        display_name="OpenAI",
        chat_module="langchain_openai",
        chat_class="ChatOpenAI",
        default_base_url="https://api.openai.com/v1",
        api_key_setting="OPENAI_API_KEY",
    ))

    # Hugging Face 推理路由提供 OpenAI 兼容 API
    register_provider(ProviderConfig(
        name="huggingface",
        display_name="Hugging Face",
        chat_module="langchain_openai",
        chat_class="ChatOpenAI",
        default_base_url="https://router.huggingface.co/v1",
        api_key_setting="HUGGING_FACE_API_KEY",
    ))

    register_provider(ProviderConfig(
        name="anthropic",
        display_name="Anthropic",
        chat_module="langchain_anthropic",
        chat_class="ChatAnthropic",
        supports_base_url=False,
        api_key_setting="ANTHROPIC_API_KEY",
    ))

    register_provider(ProviderConfig(
        name="google",
        display_name="Google Gemini",
        chat_module="langchain_google_genai",
        chat_class="ChatGoogleGenerativeAI",
        supports_base_url=False,
        api_key_setting="GOOGLE_API_KEY",
        param_mapping={"api_key": "google_api_key"},
    ))

    register_provider(ProviderConfig(
        name="cohere",
        display_name="Cohere",
        chat_module="langchain_cohere",
        chat_class="ChatCohere",
        supports_base_url=False,
        api_key_setting="COHERE_API_KEY",
        param_mapping={"api_key": "cohere_api_key", "timeout": "timeout_seconds"},
    ))

    logger.debug(f"Registered {len(PROVIDER_REGISTRY)} providers")


# ============================================================================
# 模型工厂函数
# ============================================================================

def _import_class(module_path: str, class_name: str) -> Type:
    """动态导入类"""
    module = importlib.import_module(module_path)
    return getattr(module, class_name)


def _normalize_openai_compatible_base_url(base_url: str) -> str:
    s = (base_url or "").strip()
    if not s:
        return s
    s = s.rstrip("/")
    if s.lower().endswith("/chat/completions"):
        s = s[: -len("/chat/completions")].rstrip("/")
    return s


def create_chat_model(
    provider: str,
    model_name: str,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    temperature: float = 0.0,
    max_tokens: int = 2048,
    timeout: float = 30.0,
    max_retries: int = 1,
    **kwargs
) -> BaseChatModel:
    """
    创建 Chat 模型实例

    Args:
        provider: Provider 名称（openai, anthropic, google, huggingface, cohere）
        model_name: 模型名称
        api_key: API 密钥
        base_url: API 基础 URL（仅 OpenAI 兼容类型）
        temperature: 温度参数
        max_tokens: 最大 token 数
        timeout: 请求超时时间
        max_retries: SDK 内部重试次数（回退由编排器负责，默认只重试一次）

    Raises:
        ValueError: Provider 不支持
        ImportError: 缺少对应的集成包
    """
    config = get_provider_config(provider)
    if not config:
        logger.warning(f"Unknown provider '{provider}', attempting OpenAI-compatible mode")
        config = get_provider_config("openai")

    if not config or not config.chat_class:
        raise ValueError(f"Provider '{provider}' does not support chat models")

    try:
        model_class = _import_class(config.chat_module, config.chat_class)
    except ImportError as e:
        logger.error(f"Failed to import {config.chat_module}.{config.chat_class}: {e}")
        raise ImportError(
            f"Provider '{provider}' requires package '{config.chat_module}'. "
            f"Please install it with: pip install {config.chat_module.replace('_', '-')}"
        ) from e

    params: Dict[str, Any] = {
        "model": model_name,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "timeout": timeout,
        "max_retries": max_retries,
    }
    if api_key:
        params["api_key"] = api_key

    if config.supports_base_url:
        effective_base_url = base_url or config.default_base_url
        if effective_base_url:
            params["base_url"] = _normalize_openai_compatible_base_url(effective_base_url)

    params.update(kwargs)
    params = {config.param_mapping.get(k, k): v for k, v in params.items()}

    logger.info(f"Creating chat model: provider={config.display_name}, model={model_name}")
    return model_class(**params)


# 模块加载时自动注册默认 Provider
_register_default_providers()

# config.py
# =============================================================================
# LLM 配置加载与合并模块 / LLM config loading & merging module
#
# 职责 / Responsibilities:
#   - 定义单个模型端点的配置结构（ModelEndpointConfig）
#     / Define per-endpoint model config (ModelEndpointConfig)
#   - 三层优先级加载：代码传入 > 配置文件 > 环境变量
#     / Three-tier priority loading: code > config file > env vars
#   - 为引擎的四个调用角色（interviewer / reflection / enhancement /
#     synthesis）解析出完整配置
#     / Resolve complete configs for the engine's four calling roles
#   - 配置缺失时抛出 ConfigurationError，不提供硬编码默认模型
#     / Raise ConfigurationError on missing config; no hardcoded default model
# =============================================================================

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


# =============================================================================
# 数据结构 / Data Structures
# =============================================================================

API_MODES = ("chat_completions", "anthropic")

# 未显式配置 api_key 时按平台回退读取的环境变量 / Env fallbacks for api_key by platform
_API_KEY_ENV_FALLBACKS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}


@dataclass
class ModelEndpointConfig:
    """单个模型端点的完整配置。
    / Complete config for a single model endpoint.

    对应一个调用角色；适配器通过 from_endpoint_config() 读取本配置。
    / One per calling role; adapters build themselves via from_endpoint_config().
    """

    model_platform: str  # "openai" / "anthropic" / "deepseek" ...
    model_name: str

    api_key: Optional[str] = None
    url: Optional[str] = None

    # "chat_completions": OpenAI 兼容格式（默认） / OpenAI-compatible (default)
    # "anthropic"       : Anthropic Messages API
    api_mode: str = "chat_completions"

    temperature: float = 0.7
    max_tokens: Optional[int] = 4096
    timeout: Optional[float] = None
    max_retries: int = 3

    api_version: Optional[str] = None  # Azure 专用 / Azure only

    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        "model", "model_name", "model_platform", "api_key", "url",
        "api_mode", "temperature", "max_tokens", "timeout", "max_retries",
        "api_version",
    )

    @classmethod
    def from_dict(cls, data: Any) -> ModelEndpointConfig:
        """从字典或模型名简写构建配置。 / Build from a dict or a bare model name.

        简写 "claude-sonnet-4-20250514" 会自动推断平台。
        / A bare model name infers its platform.
        """
        if isinstance(data, str):
            data = {"model_name": data}

        model_name = data.get("model_name") or data.get("model", "")
        platform = data.get("model_platform") or _infer_platform(model_name)

        api_mode = data.get("api_mode") or _infer_api_mode(
            platform, data.get("url")
        )
        if api_mode not in API_MODES:
            raise ValueError(
                f"不支持的 api_mode: '{api_mode}'。仅支持: {', '.join(API_MODES)}。"
            )

        api_key = data.get("api_key")
        if not api_key and platform in _API_KEY_ENV_FALLBACKS:
            api_key = os.environ.get(_API_KEY_ENV_FALLBACKS[platform])

        return cls(
            model_platform=platform,
            model_name=model_name,
            api_key=api_key,
            url=data.get("url"),
            api_mode=api_mode,
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=data["max_tokens"] if "max_tokens" in data else 4096,
            timeout=data.get("timeout"),
            max_retries=int(data.get("max_retries", 3)),
            api_version=data.get("api_version"),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )


# =============================================================================
# 平台与 API 模式推断 / Platform & API mode inference
# =============================================================================

_PLATFORM_INFERENCE_RULES: List[tuple] = [
    (["claude"], "anthropic"),
    (["gpt-", "o1-", "o3-", "o4-", "chatgpt"], "openai"),
    (["deepseek"], "deepseek"),
    (["qwen", "qwq"], "qwen"),
    (["llama", "mistral"], "ollama"),
]


def _infer_platform(model_name: str) -> str:
    """根据模型名称推断平台，未能推断时回退为 "openai"。 / Infer platform; falls back to "openai"."""
    name_lower = (model_name or "").lower()
    for keywords, platform in _PLATFORM_INFERENCE_RULES:
        if any(kw in name_lower for kw in keywords):
            return platform
    logger.debug("无法从模型名称 '%s' 推断平台，使用默认 'openai'", model_name)
    return "openai"


def _infer_api_mode(platform: str, url: Optional[str] = None) -> str:
    """Anthropic 官方端点走 Messages API，其余走 Chat Completions。"""
    if (platform or "").lower() == "anthropic" and (
        not url or "/messages" in url or "anthropic.com" in url
    ):
        return "anthropic"
    return "chat_completions"


# =============================================================================
# 角色 / Roles
# =============================================================================

# 引擎内部的模型调用角色，仅用于配置缺失时给出友好提示。
# / The engine's calling roles; used for friendlier missing-config errors.
ROLE_INTERVIEWER = "interviewer"
ROLE_REFLECTION = "reflection"
ROLE_ENHANCEMENT = "enhancement"
ROLE_SYNTHESIS = "synthesis"
KNOWN_ROLES = [ROLE_INTERVIEWER, ROLE_REFLECTION, ROLE_ENHANCEMENT, ROLE_SYNTHESIS]


# =============================================================================
# 配置加载器 / Config Loader
# =============================================================================


class LLMConfigLoader:
    """LLM 配置加载器: 三层优先级合并。
    / LLM config loader: three-tier priority merging.

    优先级（高→低） / Priority (high→low):
    1. 代码传入的 llm_config 字典 / Code-level config dict
    2. 配置文件 llm_config.yaml / Config file
    3. 环境变量（YAML 中的 ${VAR} / ${VAR:-default}） / Env vars referenced in YAML

    llm_config 字典格式 / Dict format:
    {
        "_default": {"model_name": "claude-sonnet-4-20250514", "api_key": "${ANTHROPIC_API_KEY}"},
        "interviewer": {"temperature": 0.6},
        "synthesis": "claude-opus-4-1",   # 简写 / shorthand
    }
    """

    _CONFIG_SEARCH_PATHS = (
        "llm_config.yaml",
        "llm_config.yml",
        "config/llm_config.yaml",
        "config/llm_config.yml",
    )

    _META_KEYS = {"_default"}

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
    ):
        self._code_config = _expand_env_vars(llm_config or {})
        self._file_config: Dict[str, Any] = {}
        self._load_config_file(config_file)

    def _load_config_file(self, config_file: Optional[str]) -> None:
        if config_file:
            path = Path(config_file)
            if path.exists():
                self._file_config = self._read_yaml(path)
                logger.info("LLM 配置文件已加载: %s", path)
            else:
                logger.warning("指定的 LLM 配置文件不存在: %s", path)
            return

        # 环境变量 MERIDIAN_LLM_CONFIG 可指定配置文件路径 / Env override for file path
        env_path = os.environ.get("MERIDIAN_LLM_CONFIG")
        candidates = [env_path] if env_path else []
        candidates.extend(self._CONFIG_SEARCH_PATHS)
        for search_path in candidates:
            path = Path(search_path)
            if path.exists():
                self._file_config = self._read_yaml(path)
                logger.info("自动发现 LLM 配置文件: %s", path)
                return

        logger.debug("未发现 LLM 配置文件，将依赖代码配置")

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return _expand_env_vars(raw)

    @staticmethod
    def _layer(merged: Dict[str, Any], value: Any) -> None:
        if isinstance(value, str):
            merged["model_name"] = value
            merged["model_platform"] = _infer_platform(value)
        elif isinstance(value, dict):
            merged.update({k: v for k, v in value.items() if v is not None})

    def resolve(self, role: str) -> ModelEndpointConfig:
        """解析指定角色的完整模型配置。 / Resolve the full model config for a role.

        合并顺序（后者覆盖前者） / Merge order (later wins):
        文件 _default → 文件角色 → 代码 _default → 代码角色
        / file _default → file role → code _default → code role

        Raises:
            ConfigurationError: 合并后仍没有 model_name。 / No model_name after merging.
        """
        from meridian.llm.router import ConfigurationError

        merged: Dict[str, Any] = {}
        self._layer(merged, self._file_config.get("_default"))
        self._layer(merged, self._file_config.get(role))
        self._layer(merged, self._code_config.get("_default"))
        self._layer(merged, self._code_config.get(role))

        model_name = merged.get("model_name") or merged.get("model", "")
        if not model_name:
            hint = ""
            if role in KNOWN_ROLES:
                hint = (
                    f"\n提示：'{role}' 是评估引擎的调用角色，"
                    f"请在 llm_config、llm_config.yaml 或 _default 中为其指定模型。"
                )
            raise ConfigurationError(
                f"角色 '{role}' 的 LLM 模型配置缺失：未找到 model_name。{hint}"
            )
        merged["model_name"] = model_name
        return ModelEndpointConfig.from_dict(merged)

    def has_role(self, role: str) -> bool:
        """角色是否有配置（直接配置或可继承 _default）。 / Whether a role is configured directly or via _default."""
        for cfg in (self._code_config, self._file_config):
            if role in cfg:
                return True
            default = cfg.get("_default")
            if isinstance(default, dict) and (
                default.get("model_name") or default.get("model")
            ):
                return True
        return False

    def all_configured_roles(self) -> List[str]:
        roles = set()
        for cfg in (self._code_config, self._file_config):
            roles.update(k for k in cfg if k not in self._META_KEYS and not k.startswith("_"))
        return sorted(roles)

    def summary(self) -> Dict[str, Dict[str, str]]:
        """配置摘要（隐藏 API Key），用于启动日志。 / Config summary with masked keys for startup logs."""
        from meridian.llm.router import ConfigurationError

        roles = set(self.all_configured_roles())
        roles.update(r for r in KNOWN_ROLES if self.has_role(r))
        result: Dict[str, Dict[str, str]] = {}
        for role in sorted(roles):
            try:
                cfg = self.resolve(role)
            except (ConfigurationError, ValueError) as exc:
                logger.debug("摘要中跳过无法解析的角色 %s: %s", role, exc)
                continue
            result[role] = {
                "platform": cfg.model_platform,
                "model": cfg.model_name,
                "api_mode": cfg.api_mode,
                "url": cfg.url or "(auto)",
                "api_key": _mask_key(cfg.api_key),
            }
        return result


# =============================================================================
# 工具函数 / Utility Functions
# =============================================================================

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(obj: Any) -> Any:
    """递归展开 ${VAR} 与 ${VAR:-default}。 / Recursively expand ${VAR} and ${VAR:-default}."""
    if isinstance(obj, str):

        def _replace(match):
            expr = match.group(1)
            if ":-" in expr:
                name, default = expr.split(":-", 1)
                return os.environ.get(name.strip(), default.strip())
            return os.environ.get(expr.strip(), match.group(0))

        return _ENV_PATTERN.sub(_replace, obj)
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    return obj


def _mask_key(key: Optional[str]) -> str:
    """遮蔽 API Key。 / Mask an API key."""
    if not key:
        return "(env)"
    if len(key) <= 12:
        return key[:3] + "***"
    return key[:8] + "..." + key[-4:]

import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from models.errors import ConfigError

SETTINGS_PATH = Path(__file__).resolve().parent / "settings.yaml"


class ModelType(Enum):
    """Supported LLM providers (all reached through OpenAI-compatible endpoints)."""
    OPENAI = "openai"
    DEEPSEEK = "deepseek"
    GROK = "grok"
    GEMINI = "gemini"


class SearchProviderType(Enum):
    """Supported web search backends."""
    SERPER = "serper"
    BRAVE = "brave"
    TAVILY = "tavily"


# Credential setting per provider
LLM_API_KEY_SETTINGS = {
    ModelType.OPENAI.value: "OPENAI_API_KEY",
    ModelType.DEEPSEEK.value: "DEEPSEEK_API_KEY",
    ModelType.GROK.value: "GROK_API_KEY",
    ModelType.GEMINI.value: "GOOGLE_GEMINI_API_KEY",
}

SEARCH_API_KEY_SETTINGS = {
    SearchProviderType.SERPER.value: "SERPER_API_KEY",
    SearchProviderType.BRAVE.value: "BRAVE_SEARCH_API_KEY",
    SearchProviderType.TAVILY.value: "TAVILY_API_KEY",
}


def _load_defaults(path: Path) -> dict[str, Any]:
    """Flatten settings.yaml sections into one {setting: value} dict."""
    if not path.exists():
        raise ValueError(f"Settings file not found at {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    flat: dict[str, Any] = {}
    for section in data.values():
        if isinstance(section, dict):
            flat.update(section)
    return flat


class Config:
    """Configuration management for the application."""

    def __init__(self, settings_path: Path | None = None):
        """Initialize configuration from settings.yaml, .env and the process environment."""
        env_path = Path(__file__).parent.parent / '.env'
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)

        defaults = _load_defaults(settings_path or SETTINGS_PATH)

        # LLM
        self.LLM_PROVIDER = self._get('LLM_PROVIDER', defaults).lower()
        self.DEFAULT_MODEL = self._get('DEFAULT_MODEL', defaults)
        self.LLM_TIMEOUT_S = float(self._get('LLM_TIMEOUT_S', defaults))
        self.OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
        self.DEEPSEEK_API_KEY = os.getenv('DEEPSEEK_API_KEY')
        self.GROK_API_KEY = os.getenv('GROK_API_KEY')
        self.GOOGLE_GEMINI_API_KEY = os.getenv('GOOGLE_GEMINI_API_KEY')

        # Search
        self.SEARCH_PROVIDER = self._get('SEARCH_PROVIDER', defaults).lower()
        self.SEARCH_NUM_RESULTS = int(self._get('SEARCH_NUM_RESULTS', defaults))
        self.SEARCH_TIMEOUT_S = float(self._get('SEARCH_TIMEOUT_S', defaults))
        self.SERPER_API_KEY = os.getenv('SERPER_API_KEY')
        self.BRAVE_SEARCH_API_KEY = os.getenv('BRAVE_SEARCH_API_KEY')
        self.TAVILY_API_KEY = os.getenv('TAVILY_API_KEY')

        # Fetch
        self.FETCH_CONCURRENCY = int(self._get('FETCH_CONCURRENCY', defaults))
        self.FETCH_TIMEOUT_S = float(self._get('FETCH_TIMEOUT_S', defaults))
        self.FETCH_MAX_RETRIES = int(self._get('FETCH_MAX_RETRIES', defaults))
        self.FETCH_USER_AGENT = self._get('FETCH_USER_AGENT', defaults)

        # Cache
        self.CACHE_TTL_SECONDS = int(self._get('CACHE_TTL_SECONDS', defaults))
        self.CACHE_KEY_PREFIX = self._get('CACHE_KEY_PREFIX', defaults)
        self.NAMESPACE_TTL_SECONDS = {
            name: int(os.getenv(f'CACHE_TTL_{name.upper()}_SECONDS', ttl))
            for name, ttl in (defaults.get('namespace_ttl_seconds') or {}).items()
        }

        # Rate limiting
        self.RATE_LIMIT_SCOPE = self._get('RATE_LIMIT_SCOPE', defaults).lower()
        self.RATE_LIMIT_REQUESTS = int(self._get('RATE_LIMIT_REQUESTS', defaults))
        self.RATE_LIMIT_WINDOW_MS = int(self._get('RATE_LIMIT_WINDOW_MS', defaults))
        self.RATE_LIMIT_MAX_RETRIES = int(self._get('RATE_LIMIT_MAX_RETRIES', defaults))

        # Agent
        self.MAX_STEPS = int(self._get('MAX_STEPS', defaults))

        # Storage
        self.REDIS_URL = self._get('REDIS_URL', defaults) or None
        self.DATABASE_URL = self._get('DATABASE_URL', defaults)

    @staticmethod
    def _get(name: str, defaults: dict[str, Any]) -> Any:
        value = os.getenv(name)
        if value is not None and value != "":
            return value
        return defaults.get(name.lower())

    def require(self, setting: str) -> str:
        """
        Return a setting's value, raising ConfigError naming the setting when unset.

        Args:
            setting: Attribute name, e.g. 'SERPER_API_KEY'
        """
        value = getattr(self, setting, None)
        if not value:
            raise ConfigError(setting)
        return value

    def llm_api_key(self) -> str:
        setting = LLM_API_KEY_SETTINGS.get(self.LLM_PROVIDER)
        if setting is None:
            raise ConfigError(
                'LLM_PROVIDER',
                f"Unknown LLM_PROVIDER '{self.LLM_PROVIDER}'. "
                f"Must be one of: {', '.join(e.value for e in ModelType)}",
            )
        return self.require(setting)

    def search_api_key(self) -> str:
        setting = SEARCH_API_KEY_SETTINGS.get(self.SEARCH_PROVIDER)
        if setting is None:
            raise ConfigError(
                'SEARCH_PROVIDER',
                f"Unknown SEARCH_PROVIDER '{self.SEARCH_PROVIDER}'. "
                f"Must be one of: {', '.join(e.value for e in SearchProviderType)}",
            )
        return self.require(setting)

    def validate(self) -> bool:
        """
        Validate that the credentials for the selected providers are present.

        Raises:
            ConfigError: naming the first missing setting
        """
        self.llm_api_key()
        self.search_api_key()
        return True

    def get_model_info(self) -> str:
        return f"{self.LLM_PROVIDER} ({self.DEFAULT_MODEL}) + {self.SEARCH_PROVIDER} search"


_config: Config | None = None


def get_config() -> Config:
    """Process-wide Config, created on first use."""
    global _config
    if _config is None:
        _config = Config()
    return _config

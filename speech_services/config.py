"""Client configuration loaded from environment variables."""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings


class XFYunAppSettings(BaseSettings):
    """Credential triple of one xfyun application plus its endpoint."""

    app_id: str = ""
    api_key: str = ""
    api_secret: str = ""
    url: str = ""
    timeout: int = 10

    model_config = {"env_prefix": "XFYUN_"}


class XFYunIATSettings(XFYunAppSettings):
    url: str = "wss://iat-api.xfyun.cn/v2/iat"

    model_config = {"env_prefix": "XFYUN_IAT_"}


class XFYunISESettings(XFYunAppSettings):
    url: str = "wss://ise-api.xfyun.cn/v2/open-ise"

    model_config = {"env_prefix": "XFYUN_ISE_"}


class XFYunTTSSettings(XFYunAppSettings):
    url: str = "wss://tts-api.xfyun.cn/v2/tts"

    model_config = {"env_prefix": "XFYUN_TTS_"}


class XFYunOTSSettings(XFYunAppSettings):
    url: str = "https://ntrans.xfyun.cn/v2/ots"

    model_config = {"env_prefix": "XFYUN_OTS_"}


class BaiduSettings(BaseSettings):
    app_id: str = ""
    key: str = ""
    secret: str = ""
    token_url: str = "https://openapi.baidu.com/oauth/2.0/token"
    timeout: int = 10

    model_config = {"env_prefix": "BAIDU_"}


class AzureSettings(BaseSettings):
    region: str = ""
    subscription_key: str = ""
    timeout: int = 15

    model_config = {"env_prefix": "AZURE_TTS_"}


class RecognitionSettings(BaseSettings):
    punctuation: bool = True
    vad_eos: int = 5000  # silence (ms) after which the vendor ends the utterance
    nunum: bool = False
    language: str = "zh_cn"
    domain: str = "iat"
    accent: str = "mandarin"

    model_config = {"env_prefix": "IAT_"}


class EvaluationSettings(BaseSettings):
    category: str = "read_sentence"
    ent: str = "cn_vip"

    model_config = {"env_prefix": "ISE_"}


class StreamingSettings(BaseSettings):
    chunk_size: int = 1280  # 40 ms of 16 kHz 16-bit mono PCM
    connect_timeout: float = 10.0

    model_config = {"env_prefix": "STREAM_"}


class RateLimitSettings(BaseSettings):
    """Requests per second allowed for each baidu endpoint."""

    baidu_asr: int = 5
    baidu_tts: int = 10
    baidu_tts_premium: int = 3
    baidu_nlp: int = 2

    model_config = {"env_prefix": "RATE_LIMIT_"}


class LoggingSettings(BaseSettings):
    level: str = "INFO"
    format: str = "json"

    model_config = {"env_prefix": "LOG_"}


@dataclass
class ValidationError:
    """A single config validation error."""

    field: str
    message: str
    hint: str


@dataclass
class ValidationResult:
    """Result of config validation."""

    errors: list[ValidationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return len(self.errors) == 0

    def add(self, field_name: str, message: str, hint: str = "") -> None:
        self.errors.append(ValidationError(field=field_name, message=message, hint=hint))


_XFYUN_GROUPS = ("iat", "ise", "tts", "ots")
_ALL_SERVICES = (*(f"xfyun_{g}" for g in _XFYUN_GROUPS), "baidu", "azure")


class Settings(BaseSettings):
    """Root settings, aggregating all sub-settings."""

    xfyun_iat: XFYunIATSettings = Field(default_factory=XFYunIATSettings)
    xfyun_ise: XFYunISESettings = Field(default_factory=XFYunISESettings)
    xfyun_tts: XFYunTTSSettings = Field(default_factory=XFYunTTSSettings)
    xfyun_ots: XFYunOTSSettings = Field(default_factory=XFYunOTSSettings)
    baidu: BaiduSettings = Field(default_factory=BaiduSettings)
    azure: AzureSettings = Field(default_factory=AzureSettings)
    recognition: RecognitionSettings = Field(default_factory=RecognitionSettings)
    evaluation: EvaluationSettings = Field(default_factory=EvaluationSettings)
    streaming: StreamingSettings = Field(default_factory=StreamingSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {"env_prefix": ""}

    def validate_required(self, services: tuple[str, ...] = _ALL_SERVICES) -> ValidationResult:
        """Validate credentials for the services the caller intends to use.

        Pydantic already validates types; this checks that values
        are meaningful (non-empty keys, valid URL schemes).
        """
        result = ValidationResult()

        for group in _XFYUN_GROUPS:
            name = f"xfyun_{group}"
            if name not in services:
                continue
            app = getattr(self, name)
            prefix = f"XFYUN_{group.upper()}_"
            for attr in ("app_id", "api_key", "api_secret"):
                if not getattr(app, attr):
                    result.add(
                        f"{prefix}{attr.upper()}",
                        "not set",
                        f"Set: export {prefix}{attr.upper()}=...",
                    )
            parsed = urlparse(app.url)
            if parsed.scheme not in ("ws", "wss", "http", "https") or not parsed.netloc:
                result.add(
                    f"{prefix}URL",
                    f"invalid URL: {app.url!r}",
                    "Expected wss://host/path or https://host/path",
                )

        if "baidu" in services:
            for attr in ("app_id", "key", "secret"):
                if not getattr(self.baidu, attr):
                    result.add(
                        f"BAIDU_{attr.upper()}",
                        "not set",
                        f"Set: export BAIDU_{attr.upper()}=...",
                    )

        if "azure" in services:
            if not self.azure.region:
                result.add("AZURE_TTS_REGION", "not set", "Set: export AZURE_TTS_REGION=eastasia")
            if not self.azure.subscription_key:
                result.add(
                    "AZURE_TTS_SUBSCRIPTION_KEY",
                    "not set",
                    "Set: export AZURE_TTS_SUBSCRIPTION_KEY=...",
                )

        if self.streaming.chunk_size <= 0:
            result.add(
                "STREAM_CHUNK_SIZE",
                f"must be positive, got {self.streaming.chunk_size}",
                "The vendor expects 1280-byte frames",
            )

        return result


def get_settings() -> Settings:
    """Create and return client settings."""
    return Settings()

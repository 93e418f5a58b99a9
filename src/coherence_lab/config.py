"""Configuration for the Gemini-backed oracle.

Keeps env var semantics in one place so the CLI and any embedding
application read the same variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MODEL = "gemini-2.5-flash"


@dataclass(frozen=True)
class OracleSettings:
    """Configuration for the generative oracle client.

    Attributes:
        api_key: Google API key used by the GenAI client.
        default_model: Model used when a request does not name one.
        temperature: Sampling temperature for free-text generation.
        max_output_tokens: Output ceiling for generation calls so long
            passages are not cut short.
    """

    api_key: str = ""
    default_model: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_output_tokens: int = 65536

    @property
    def configured(self) -> bool:
        """True when an API key is available."""
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> "OracleSettings":
        """Create OracleSettings from environment variables."""
        raw_temperature = os.getenv("GEMINI_TEMPERATURE", str(cls.temperature))
        try:
            temperature = float(raw_temperature)
        except ValueError:
            temperature = cls.temperature
        if not 0.0 <= temperature <= 2.0:
            temperature = cls.temperature

        raw_max_tokens = os.getenv(
            "GEMINI_MAX_OUTPUT_TOKENS", str(cls.max_output_tokens)
        )
        try:
            max_tokens = int(raw_max_tokens)
        except ValueError:
            max_tokens = cls.max_output_tokens
        if max_tokens <= 0:
            max_tokens = cls.max_output_tokens

        return cls(
            api_key=os.getenv("GOOGLE_API_KEY", cls.api_key),
            default_model=os.getenv("GEMINI_MODEL_NAME", cls.default_model),
            temperature=temperature,
            max_output_tokens=max_tokens,
        )

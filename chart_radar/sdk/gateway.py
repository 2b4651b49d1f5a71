"""
Analysis provider gateway.

Sends a chart capture or a pair symbol to an OpenAI-compatible chat
completions endpoint and returns the raw completion text. The gateway never
interprets the text; that is the parser's job.
"""

import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import openai
from openai import OpenAI

from .prompts import SYSTEM_PROMPT, build_chart_prompt, build_pair_prompt
from chart_radar.core.capture import CaptureArtifact
from chart_radar.core.parser import AUTO_DETECT
from chart_radar.core.errors import EmptyResponse, ProviderRejected, ProviderUnavailable
from chart_radar.utils.logger import get_logger

logger = get_logger("sdk.gateway")


@dataclass(frozen=True)
class SymbolQuery:
    """A pair-only analysis request."""
    symbol: str
    timeframe: str = "1D"


@dataclass(frozen=True)
class AnalysisOptions:
    """Per-request options for chart analysis."""
    pair_name: str = AUTO_DETECT
    timeframe: str = AUTO_DETECT
    detailed: bool = False
    image_detail: str = "high"


@dataclass(frozen=True)
class ProviderResponse:
    """Raw provider output plus usage metadata when reported."""
    text: str
    model: str
    request_id: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


AnalysisInput = Union[CaptureArtifact, SymbolQuery]


class ProviderGateway:
    """OpenAI-compatible client for chart and pair analysis.

    Works against OpenAI, OpenRouter or DeepSeek by pointing ``base_url`` at
    the provider. Automatic client retries are disabled; failures surface
    immediately as ProviderUnavailable, ProviderRejected or EmptyResponse.
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        max_tokens: int = 2000,
        temperature: float = 0.1
    ):
        """Initialize the gateway.

        Args:
            model: Provider model name (required)
            api_key: API key; the OpenAI client falls back to OPENAI_API_KEY
            base_url: Endpoint root for OpenAI-compatible providers
            timeout: Seconds to wait for a completion
            max_tokens: Completion token cap
            temperature: Sampling temperature

        Raises:
            ValueError: If model is empty or timeout is not positive
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    def build_messages(
        self,
        analysis_input: AnalysisInput,
        options: Optional[AnalysisOptions] = None
    ) -> List[Dict[str, Any]]:
        """Build the chat messages for a capture or a symbol."""
        options = options or AnalysisOptions()

        if isinstance(analysis_input, SymbolQuery):
            return [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": build_pair_prompt(analysis_input.symbol, analysis_input.timeframe),
                },
            ]

        if not isinstance(analysis_input, CaptureArtifact):
            raise TypeError(f"Unsupported analysis input: {type(analysis_input).__name__}")

        encoded = base64.b64encode(analysis_input.to_png_bytes()).decode("ascii")
        prompt = build_chart_prompt(
            options.pair_name,
            options.timeframe,
            detailed=options.detailed,
            captured_at=datetime.now(timezone.utc),
        )
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:image/png;base64,{encoded}",
                            "detail": options.image_detail,
                        },
                    },
                ],
            },
        ]

    def analyze(
        self,
        analysis_input: AnalysisInput,
        options: Optional[AnalysisOptions] = None
    ) -> ProviderResponse:
        """Send one analysis request.

        Args:
            analysis_input: Chart capture or symbol query
            options: Chart options (ignored for symbol queries)

        Returns:
            ProviderResponse with the completion text

        Raises:
            ProviderUnavailable: Connection failure or timeout
            ProviderRejected: Non-2xx status or any other client error
            EmptyResponse: Successful call without completion text, or an unreadable body
        """
        messages = self.build_messages(analysis_input, options)
        kind = "pair" if isinstance(analysis_input, SymbolQuery) else "chart"
        logger.info("provider_request_started", model=self.model, input=kind)

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.APITimeoutError as e:
            logger.warning("provider_request_failed", model=self.model, error="timeout")
            raise ProviderUnavailable(
                f"Provider did not answer within {self.timeout:g}s"
            ) from e
        except openai.APIConnectionError as e:
            logger.warning("provider_request_failed", model=self.model, error=str(e))
            raise ProviderUnavailable(f"Could not reach provider: {e}") from e
        except openai.APIStatusError as e:
            logger.warning(
                "provider_request_failed",
                model=self.model,
                status=e.status_code,
                error=e.message,
            )
            raise ProviderRejected(
                f"Provider rejected the request ({e.status_code}): {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APIResponseValidationError as e:
            logger.warning("provider_request_failed", model=self.model, error="invalid_response_body")
            raise EmptyResponse(f"Provider returned an unreadable response: {e.message}") from e
        except openai.OpenAIError as e:
            logger.warning("provider_request_failed", model=self.model, error=str(e))
            raise ProviderRejected(f"Provider request failed: {e}") from e

        text = self._completion_text(response)
        if not text:
            logger.warning("provider_empty_response", model=self.model)
            raise EmptyResponse("Provider returned no analysis content")

        usage = getattr(response, "usage", None)
        result = ProviderResponse(
            text=text,
            model=getattr(response, "model", None) or self.model,
            request_id=getattr(response, "id", None),
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        logger.info(
            "provider_request_completed",
            model=result.model,
            content_length=len(text),
            tokens=result.total_tokens,
        )
        return result

    @staticmethod
    def _completion_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if not isinstance(content, str):
            return ""
        return content.strip()

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from assessment_recorder.config import Settings

logger = logging.getLogger("recorder.model")


class ModelInvocationFailed(RuntimeError):
    """Raised when the evaluation model cannot be reached or returns no text."""


class EvaluationModel(Protocol):
    def invoke(self, instructions: str, content: str) -> str:
        ...


class BedrockEvaluationModel:
    """Text-in/JSON-text-out evaluation model backed by the Bedrock `converse` API."""

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client or self._create_bedrock_client()

    @property
    def model_id(self) -> str:
        return self._settings.bedrock_model_id

    def _create_bedrock_client(self) -> Any:
        try:
            import boto3  # type: ignore
        except ImportError as exc:
            raise ModelInvocationFailed("boto3 is required for the Bedrock evaluation model.") from exc

        return boto3.client("bedrock-runtime", region_name=self._settings.aws_region)

    def invoke(self, instructions: str, content: str) -> str:
        model_id = self.model_id
        if not model_id:
            raise ModelInvocationFailed("Bedrock model ID is not configured.")

        started = time.perf_counter()
        try:
            response = self._client.converse(
                modelId=model_id,
                system=[{"text": instructions}],
                messages=[{"role": "user", "content": [{"text": content}]}],
                inferenceConfig={
                    "temperature": self._settings.agent_temperature,
                    "topP": self._settings.agent_top_p,
                    "maxTokens": self._settings.agent_max_tokens,
                },
                additionalModelRequestFields={"inferenceConfig": {"topK": self._settings.agent_top_k}},
            )
        except Exception as exc:  # pragma: no cover - exercised via runtime integration
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.warning(
                "model_invoke_failed",
                extra={
                    "event": "model_invoke_failed",
                    "model_id": model_id,
                    "duration_ms": duration_ms,
                    "error": str(exc),
                },
            )
            if "model identifier is invalid" in str(exc).lower():
                raise ModelInvocationFailed(
                    "Bedrock invocation failed: the configured model identifier is invalid "
                    f"(AWS_REGION={self._settings.aws_region}, BEDROCK_MODEL_ID={model_id})."
                ) from exc
            raise ModelInvocationFailed(f"Bedrock invocation failed for model '{model_id}': {exc}") from exc

        text = self._extract_text(response)
        logger.info(
            "model_invoke_completed",
            extra={
                "event": "model_invoke_completed",
                "model_id": model_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "instructions_chars": len(instructions),
                "content_chars": len(content),
                "response_chars": len(text),
                "stop_reason": response.get("stopReason"),
            },
        )
        return text

    @staticmethod
    def _extract_text(response: Any) -> str:
        outputs = response.get("output", {}).get("message", {}).get("content", [])
        parts: list[str] = []
        for item in outputs:
            text = item.get("text")
            if isinstance(text, str) and text.strip():
                parts.append(text)
        if not parts:
            raise ModelInvocationFailed("Model response did not include textual output.")
        return "\n".join(parts).strip()

"""Builds the configured inference engine."""

from __future__ import annotations

import logging

from app.config import Settings
from app.engine.base import InferenceEngine
from app.engine.langchain_engine import LangChainEngine
from app.engine.mock import ScriptedEngine

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> InferenceEngine:
    """Return the engine selected by ``settings.engine_provider``.

    Raises:
        ValueError: If the provider name is unknown.
    """
    provider = settings.engine_provider.lower()

    if provider == "mock":
        logger.info("Using scripted mock engine")
        return ScriptedEngine()

    if provider == "gemini":

        def _build_gemini():
            from langchain_google_genai import ChatGoogleGenerativeAI

            if not settings.google_api_key:
                raise RuntimeError("GOOGLE_API_KEY is not configured")
            return ChatGoogleGenerativeAI(
                model=settings.gemini_model,
                google_api_key=settings.google_api_key,
                temperature=settings.temperature,
            )

        return LangChainEngine(
            _build_gemini,
            model_name=settings.gemini_model,
            family="gemini",
        )

    raise ValueError(f"Unknown engine provider: {settings.engine_provider}")

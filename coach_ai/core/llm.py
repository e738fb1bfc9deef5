"""
Language Model (LLM) client configuration.

This module provides:
- ChatOpenAI pointed at SeaLion's OpenAI-compatible endpoint (ASEAN languages)
- ChatOpenAI for OpenAI (general purpose)
- ChatGroq (general purpose, fast)
- GenAI SDK client for Gemini

Clients are built on demand from settings; nothing is created at import time,
so the layer can start with any subset of API keys configured.
"""
from google import genai
from langchain_groq import ChatGroq
from langchain_openai import ChatOpenAI

from coach_ai.core.config import Settings, settings


def build_sealion_chat(config: Settings = settings) -> ChatOpenAI:
    """SeaLion speaks the OpenAI chat completions protocol."""
    return ChatOpenAI(
        model=config.SEALION_MODEL,
        api_key=config.SEALION_API_KEY,
        base_url=config.SEALION_BASE_URL,
        temperature=0.7,
        max_retries=0,  # RetryExecutor owns retries
    )


def build_openai_chat(config: Settings = settings) -> ChatOpenAI:
    return ChatOpenAI(
        model=config.OPENAI_MODEL,
        api_key=config.OPENAI_API_KEY,
        temperature=0.7,
        max_retries=0,
    )


def build_groq_chat(config: Settings = settings) -> ChatGroq:
    return ChatGroq(
        model=config.GROQ_MODEL,
        api_key=config.GROQ_API_KEY,
        temperature=0.7,
        max_retries=0,
    )


def build_genai_client(config: Settings = settings) -> genai.Client:
    """Get a GenAI SDK client instance for Gemini."""
    return genai.Client(api_key=config.GEMINI_API_KEY)

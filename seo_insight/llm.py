from __future__ import annotations

from langchain_openai import AzureChatOpenAI

from seo_insight.config import DashboardConfig


def build_llm(config: DashboardConfig) -> AzureChatOpenAI:
    if not config.llm_enabled:
        raise RuntimeError(
            "LLM config missing. Required: LLM_ENDPOINT, LLM_API_KEY "
            "(or OPENAI_API_KEY), LLM_API_VERSION, LLM_MODEL."
        )

    return AzureChatOpenAI(
        azure_endpoint=config.llm_endpoint,
        api_key=config.llm_api_key,
        openai_api_version=config.llm_api_version,
        azure_deployment=config.llm_model,
        temperature=config.llm_temperature,
        max_tokens=max(200, int(config.llm_max_output_tokens)),
        timeout=max(30, int(config.llm_timeout_sec)),
        max_retries=max(0, int(config.llm_max_retries)),
    )

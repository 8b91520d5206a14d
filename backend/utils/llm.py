"""LLM client and gateway singletons."""

import logging
from typing import Optional

from config import runtime_config
from services.llm_client import LLMClient

logger = logging.getLogger(__name__)

_client: Optional[LLMClient] = None
_gateway = None


def get_llm_client() -> LLMClient:
    """Get the shared LLM client for the configured endpoint."""
    global _client
    if _client is None:
        _client = LLMClient(
            base_url=runtime_config.llm_base_url,
            api_key=runtime_config.llm_api_key,
            timeout=runtime_config.llm_timeout,
        )
        logger.info(f"LLM client ready: {runtime_config.llm_base_url}")
    return _client


def get_model_gateway():
    """Get the shared ModelGateway wrapping the LLM client."""
    global _gateway
    if _gateway is None:
        from services.model_gateway import ModelGateway

        _gateway = ModelGateway(get_llm_client())
    return _gateway


def reset_llm_clients() -> None:
    """Rebuild the client from current endpoint settings.

    The gateway instance is kept (the coordinator holds a reference to it)
    and re-pointed at the new client.
    """
    global _client
    _client = None
    if _gateway is not None:
        _gateway.client = get_llm_client()

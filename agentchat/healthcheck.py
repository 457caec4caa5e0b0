"""Endpoint health checks: ping each resolved endpoint before a run."""

import asyncio
import logging

from agentchat.messages import CoreMessage
from agentchat.providers.base import GenerationRequest, ModelEndpoint

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(name: str, endpoint: ModelEndpoint) -> tuple[str, bool, str]:
    """Ping a single endpoint. Returns (name, ok, error_message)."""
    request = GenerationRequest(system_prompt=None, messages=[CoreMessage(role="user", content=_PING_PROMPT)])
    try:
        await asyncio.wait_for(endpoint.generate(request), timeout=_TIMEOUT_SEC)
        return name, True, ""
    except TimeoutError:
        return name, False, f"No reply within {_TIMEOUT_SEC:g}s"
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", name, exc)
        return name, False, str(exc)


async def run_health_checks(
    endpoints: dict[str, ModelEndpoint],
) -> dict[str, tuple[bool, str]]:
    """Ping all endpoints in parallel.

    Returns:
        Dict mapping endpoint name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, e) for n, e in endpoints.items()))
    return {name: (ok, err) for name, ok, err in results}

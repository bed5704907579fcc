"""Rewrite inbound request bodies into the upstream /v1/responses shape.

No schema validation happens here: clients such as Cursor attach extension
fields the gateway does not know, and those must reach the upstream unchanged.
"""

import copy

from codex_gateway.proxy.models import ModelMapper


def _requested_model(body: dict) -> str | None:
    model = body.get("model")
    return model if isinstance(model, str) else None


def rewrite_direct(body: dict, mapper: ModelMapper) -> dict:
    """Body is already upstream-shaped; only the model name changes."""
    rewritten = copy.deepcopy(body)
    rewritten["model"] = mapper.map(_requested_model(body))
    return rewritten


def rewrite_from_chat(body: dict, mapper: ModelMapper) -> dict:
    """Bridge a chat-completions body to a responses body (messages -> input).

    The messages array moves to ``input`` without structural changes; every
    other key (stream, tools, temperature, ...) is copied as-is.
    """
    rewritten = {
        key: copy.deepcopy(value)
        for key, value in body.items()
        if key.lower() != "messages"
    }
    rewritten["model"] = mapper.map(_requested_model(body))

    messages = body.get("messages")
    if isinstance(messages, list):
        rewritten["input"] = copy.deepcopy(messages)

    return rewritten

"""Model discovery through the Ollama client library."""
from __future__ import annotations

import logging
from typing import Any

import ollama

logger = logging.getLogger(__name__)


def supports_tools(model: str, host: str) -> bool:
    """Whether ``model`` advertises tool calling.

    Servers that do not report capabilities are assumed to support tools;
    the endpoint will then reject the request itself if it cannot.
    """
    try:
        info = ollama.Client(host=host).show(model)
    except (ollama.ResponseError, ConnectionError) as e:
        logger.warning("Could not query capabilities of %s: %s", model, e)
        return True
    caps = getattr(info, "capabilities", None)
    if not caps:
        return True
    return "tools" in caps


def list_models(host: str) -> list[dict[str, Any]]:
    """Local models as ``{name, size, modified_at}`` dicts, sorted by name."""
    response = ollama.Client(host=host).list()
    models = []
    for m in response.models:
        models.append({
            "name": m.model or "",
            "size": m.size or 0,
            "modified_at": m.modified_at,
        })
    return sorted(models, key=lambda m: m["name"])

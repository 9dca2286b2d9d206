"""Token estimation and cost calculation in nano-dollars.

One nano-dollar is 1e-9 USD. Prices are expressed in USD per million
tokens; a price of ``p`` therefore costs ``p * 1000`` nano-dollars per token.
Costs are always rounded up so usage is never undercharged.
"""

import logging
import math
from functools import lru_cache

import tiktoken
from pydantic import BaseModel

from chronomem.core.exceptions import ConfigurationError
from chronomem.core.types import TokenUsage

logger = logging.getLogger(__name__)

ENCODING_NAME = "cl100k_base"

# Applied to provider-reported USD costs to cover credit purchase fees
PROVIDER_COST_MARKUP = 1.055

NANO_DOLLARS_PER_USD = 1_000_000_000


class ModelPrice(BaseModel):
    """USD price per million tokens."""

    input: float
    output: float = 0.0


DEFAULT_PRICE = ModelPrice(input=0.5, output=1.5)

MODEL_PRICES: dict[str, ModelPrice] = {
    "nomic-embed-text": ModelPrice(input=0.02),
    "mxbai-embed-large": ModelPrice(input=0.02),
    "mistral:7b": ModelPrice(input=0.25, output=0.25),
    "llama3:8b": ModelPrice(input=0.2, output=0.2),
    "llama3.1:8b": ModelPrice(input=0.2, output=0.2),
}


@lru_cache(maxsize=1)
def _encoder() -> tiktoken.Encoding:
    try:
        return tiktoken.get_encoding(ENCODING_NAME)
    except Exception as e:
        logger.error(f"Failed to load tiktoken encoding {ENCODING_NAME}: {e}")
        raise ConfigurationError(f"Tiktoken encoding {ENCODING_NAME} unavailable: {e}") from e


def estimate_tokens(text: str) -> int:
    """Estimate the tokens a text will consume before calling a model.

    Uses the ``cl100k_base`` encoding. Blank text costs nothing; anything
    else costs at least one token.

    Raises:
        ConfigurationError: If the encoding cannot be loaded.

    Example:
        >>> estimate_tokens("   ")
        0
    """
    trimmed = text.strip()
    if not trimmed:
        return 0
    return max(1, len(_encoder().encode(trimmed)))


def price_for(model: str) -> ModelPrice:
    return MODEL_PRICES.get(model, DEFAULT_PRICE)


def token_cost(model: str, prompt_tokens: int, completion_tokens: int = 0) -> int:
    """Cost in nano-dollars of a call with the given token counts."""
    if prompt_tokens <= 0 and completion_tokens <= 0:
        return 0
    price = price_for(model)
    nano = (max(prompt_tokens, 0) * price.input + max(completion_tokens, 0) * price.output) * 1000
    return math.ceil(nano)


def usd_cost_to_nano(cost_usd: float) -> int:
    """Convert a provider-reported USD cost to nano-dollars with markup."""
    base = math.ceil(cost_usd * NANO_DOLLARS_PER_USD)
    return max(0, math.ceil(base * PROVIDER_COST_MARKUP))


def embedding_cost(model: str, tokens: int) -> int:
    return token_cost(model, tokens, 0)


def estimate_completion_cost(model: str, prompt_text: str, max_completion_tokens: int) -> int:
    """Upper-bound cost used to size a completion reservation."""
    return token_cost(model, estimate_tokens(prompt_text), max_completion_tokens)


def usage_cost(model: str, usage: TokenUsage) -> int | None:
    """Actual cost of a call, or None when the usage is unknown.

    A provider-reported USD cost wins over token counts.
    """
    if usage.cost is not None:
        return usd_cost_to_nano(usage.cost)
    if usage.prompt_tokens is None and usage.completion_tokens is None:
        if usage.total_tokens is None:
            return None
        return token_cost(model, usage.total_tokens, 0)
    return token_cost(model, usage.prompt_tokens or 0, usage.completion_tokens or 0)

"""Token pricing for the OpenAI models used by the generation client.

Rates are published per million tokens and stored here per single token
as ``Decimal`` so that cost is exact and reproducible from
``(model, prompt_tokens, completion_tokens)`` alone.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

import structlog

logger = structlog.get_logger()

ONE_MILLION = Decimal(1_000_000)


@dataclass(frozen=True)
class ModelRate:
    input_per_token: Decimal
    output_per_token: Decimal

    @classmethod
    def per_million(cls, input_rate: str, output_rate: str) -> "ModelRate":
        return cls(
            input_per_token=Decimal(input_rate) / ONE_MILLION,
            output_per_token=Decimal(output_rate) / ONE_MILLION,
        )


DEFAULT_MODEL = "gpt-4o-mini"
VISION_MODEL = "gpt-4o"

# USD per 1M tokens: gpt-4o-mini $0.15 in / $0.60 out, gpt-4o $2.50 in / $10.00 out
PRICING: Dict[str, ModelRate] = {
    DEFAULT_MODEL: ModelRate.per_million("0.15", "0.60"),
    VISION_MODEL: ModelRate.per_million("2.50", "10.00"),
}


def rate_for(model: str, pricing: Optional[Dict[str, ModelRate]] = None) -> ModelRate:
    table = pricing or PRICING
    rate = table.get(model)
    if rate is None:
        logger.warning("No pricing for model, using default model rates", model=model, default=DEFAULT_MODEL)
        rate = table.get(DEFAULT_MODEL, PRICING[DEFAULT_MODEL])
    return rate


def calculate_cost(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    pricing: Optional[Dict[str, ModelRate]] = None,
) -> Decimal:
    """Return the USD cost of one call.

    Raises:
        ValueError: If a token count is negative.
    """
    if prompt_tokens < 0 or completion_tokens < 0:
        raise ValueError("Token counts must be non-negative integers.")
    rate = rate_for(model, pricing)
    return prompt_tokens * rate.input_per_token + completion_tokens * rate.output_per_token

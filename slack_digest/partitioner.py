"""Batch partitioning for Slack Digest.

Splits an ordered record sequence into fixed-size batches for the LLM.
"""

import logging
import math
from typing import Sequence

from .errors import InputError
from .models import Batch, MessageRecord

logger = logging.getLogger(__name__)

# Rough heuristic: ~4 characters per token for English text
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the token cost of a piece of text."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def partition_records(records: Sequence[MessageRecord], batch_size: int) -> list[Batch]:
    """
    Split records into consecutive batches.

    Args:
        records: Records in their original order
        batch_size: Maximum records per batch (>= 1)

    Returns:
        ceil(N / batch_size) batches, 1-based, preserving order. The last
        batch may be smaller. No records means no batches.

    Raises:
        InputError: If batch_size is less than 1
    """
    if batch_size < 1:
        raise InputError(f"batch_size must be at least 1, got {batch_size}", operation="partition_records")

    total = math.ceil(len(records) / batch_size)
    batches = []

    for start in range(0, len(records), batch_size):
        chunk = tuple(records[start:start + batch_size])
        batches.append(Batch(
            index=start // batch_size + 1,
            total=total,
            records=chunk,
            token_estimate=sum(estimate_tokens(r.text) for r in chunk),
        ))

    logger.info(f"Partitioned {len(records)} messages into {len(batches)} batches of up to {batch_size}")
    return batches


def batch_stats(batches: Sequence[Batch]) -> dict:
    """Summarize a list of batches for logging and display."""
    if not batches:
        return {
            "total_batches": 0,
            "total_messages": 0,
            "average_tokens": 0,
            "max_tokens": 0,
            "min_tokens": 0,
        }

    tokens = [b.token_estimate for b in batches]
    return {
        "total_batches": len(batches),
        "total_messages": sum(len(b) for b in batches),
        "average_tokens": round(sum(tokens) / len(batches)),
        "max_tokens": max(tokens),
        "min_tokens": min(tokens),
    }

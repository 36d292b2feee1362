"""
Model Orchestrator - Chunk Planner

Splits an oversized prompt into ordered, bounded-size chunks whose split
points snap back to whitespace.  The whitespace consumed at each split is
kept on the chunk as its ``separator`` so that

    "".join(c.text + c.separator for c in chunks) == prompt

holds for every input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger("model-orchestrator.chunk-planner")


@dataclass(frozen=True)
class Chunk:
    """A whitespace-bounded slice of the source prompt."""
    index: int
    start: int
    end: int
    text: str
    separator: str = ""

    def __len__(self) -> int:
        return len(self.text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "start": self.start,
            "end": self.end,
            "length": len(self.text),
            "separator": self.separator,
        }


def reassemble(chunks: List[Chunk]) -> str:
    """Inverse of ``ChunkPlanner.plan``."""
    return "".join(c.text + c.separator for c in chunks)


class ChunkPlanner:
    """
    Greedy whitespace-snapping splitter.

    Parameters
    ----------
    chunk_size : int
        Maximum characters per chunk.
    lookback_chars : int, optional
        How far back from the size limit to look for whitespace before
        falling back to a hard cut.  Defaults to a quarter of the chunk size.
    """

    def __init__(self, chunk_size: int = 1000, lookback_chars: Optional[int] = None):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if lookback_chars is not None and lookback_chars < 0:
            raise ValueError("lookback_chars must be >= 0")
        self.chunk_size = chunk_size
        self.lookback_chars = lookback_chars

    def _lookback(self, chunk_size: int) -> int:
        if self.lookback_chars is not None:
            return self.lookback_chars
        return max(1, chunk_size // 4)

    def plan(self, prompt: str, chunk_size: Optional[int] = None) -> List[Chunk]:
        """Split *prompt* into ordered chunks of at most *chunk_size* characters."""
        size = self.chunk_size if chunk_size is None else chunk_size
        if size <= 0:
            raise ValueError("chunk_size must be > 0")

        n = len(prompt)
        lookback = self._lookback(size)
        chunks: List[Chunk] = []
        pos = 0

        while pos < n:
            limit = pos + size
            if limit >= n:
                chunks.append(Chunk(len(chunks), pos, n, prompt[pos:n]))
                break

            # The character at `limit` is the first one past the budget; a
            # whitespace there means a full-size chunk ends cleanly.
            end = None
            floor = max(pos + 1, limit - lookback)
            for i in range(limit, floor - 1, -1):
                if prompt[i].isspace():
                    j = i
                    while j > pos and prompt[j - 1].isspace():
                        j -= 1
                    if j > pos:
                        end = j
                    break
            if end is None:
                end = limit

            nxt = end
            while nxt < n and prompt[nxt].isspace():
                nxt += 1

            chunks.append(Chunk(len(chunks), pos, end, prompt[pos:end], prompt[end:nxt]))
            pos = nxt

        logger.debug("plan: %d chars -> %d chunks (size=%d lookback=%d)",
                     n, len(chunks), size, lookback)
        return chunks

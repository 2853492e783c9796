"""Cost accounting for extraction requests.

This module provides:
- estimate_tokens, the chars/4 heuristic used when an agent reports no usage
- MetricsTracker, which accumulates per-attempt figures and produces the
  ExtractionMetrics attached to every outcome
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .types import ExtractionMetrics

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate tokens as ceil(chars / 4)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass
class AttemptUsage:
    """Token figures for one attempt."""

    estimated_input: int
    estimated_output: int
    reported: Optional[Tuple[int, int]] = None


@dataclass
class MetricsTracker:
    """Metrics collected during one extraction request.

    Attributes:
        started: Monotonic start time.
        attempts: Per-attempt usage, in order.
        finished: Monotonic end time, set by finalize().
    """

    started: float = field(default_factory=time.monotonic)
    attempts: List[AttemptUsage] = field(default_factory=list)
    finished: Optional[float] = None

    def record_attempt(
        self,
        prompt: str,
        output: str,
        reported: Optional[Tuple[int, int]] = None,
    ) -> None:
        """Record an attempt that ran (the agent process was spawned)."""
        self.attempts.append(
            AttemptUsage(
                estimated_input=estimate_tokens(prompt),
                estimated_output=estimate_tokens(output),
                reported=reported,
            )
        )

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def finalize(self) -> ExtractionMetrics:
        """Produce the metrics snapshot. Can be called more than once.

        Reported usage is used only when every attempt reported it;
        otherwise a reported total would undercount.
        """
        if self.finished is None:
            self.finished = time.monotonic()

        reported_in: Optional[int] = None
        reported_out: Optional[int] = None
        if self.attempts and all(a.reported is not None for a in self.attempts):
            reported_in = sum(a.reported[0] for a in self.attempts)  # type: ignore[index]
            reported_out = sum(a.reported[1] for a in self.attempts)  # type: ignore[index]

        return ExtractionMetrics(
            attempts=len(self.attempts),
            wall_time=self.finished - self.started,
            estimated_input_tokens=sum(a.estimated_input for a in self.attempts),
            estimated_output_tokens=sum(a.estimated_output for a in self.attempts),
            reported_input_tokens=reported_in,
            reported_output_tokens=reported_out,
        )

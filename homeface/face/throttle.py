from __future__ import annotations

import time

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from homeface.config import RECOGNITION_COOLDOWN_MS
from homeface.face.gallery import Gallery
from homeface.face.matcher import CosineMatcher
from homeface.face.types import MatchResult
from homeface.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class ThrottleConfig:
    cooldown_ms: int = RECOGNITION_COOLDOWN_MS


class RecognitionThrottle:
    """Runs embed + match at most once per cooldown after an accepted match.

    The cooldown is process-wide: once anyone is recognized, all recognition is
    skipped until it expires. Skipped attempts never call the embedder.
    """

    def __init__(
        self,
        matcher: CosineMatcher,
        gallery: Gallery,
        config: Optional[ThrottleConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.matcher = matcher
        self.gallery = gallery
        self.config = config or ThrottleConfig()
        self.clock = clock
        self.wall_clock = wall_clock
        self.last_accept: Optional[float] = None
        self.skipped = 0

    def in_cooldown(self) -> bool:
        if self.last_accept is None:
            return False
        elapsed_ms = (self.clock() - self.last_accept) * 1000.0
        return elapsed_ms < float(self.config.cooldown_ms)

    def reset(self) -> None:
        self.last_accept = None

    def recognize(self, compute_embedding: Callable[[], np.ndarray]) -> Optional[MatchResult]:
        """`compute_embedding` is only invoked when outside the cooldown window."""
        if self.in_cooldown():
            self.skipped += 1
            return None
        if len(self.gallery) == 0:
            return None

        embedding = compute_embedding()
        result = self.matcher.match(embedding, self.gallery.list())
        if result is None:
            return None

        self.last_accept = self.clock()
        self.gallery.record_sighting(result.name, self.wall_clock())
        logger.info(f"Recognized {result.name} ({result.matched_angle.value}, score={result.score:.3f})")
        return result

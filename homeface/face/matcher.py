from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from homeface.config import MATCH_THRESHOLD
from homeface.face.types import Identity, MatchResult
from homeface.utils.log import get_logger
from homeface.utils.math import cosine_similarity

logger = get_logger(__name__)


@dataclass
class MatcherConfig:
    # A pair must score strictly above this to be accepted.
    threshold: float = MATCH_THRESHOLD


class CosineMatcher:
    """Linear scan over every (identity, angle sample) pair.

    Galleries are household-sized, so no index is kept. Any single sample scoring
    above the threshold is enough; angles are interchangeable here.
    """

    def __init__(self, config: Optional[MatcherConfig] = None):
        self.config = config or MatcherConfig()

    def match(self, embedding: np.ndarray, identities: Iterable[Identity]) -> Optional[MatchResult]:
        q = np.asarray(embedding, dtype=np.float32).reshape(-1)
        best: Optional[MatchResult] = None
        best_score = float(self.config.threshold)

        for identity in identities:
            for sample in identity.samples:
                if sample.embedding.shape[0] != q.shape[0]:
                    logger.debug(f"Skipping {identity.name}/{sample.angle.value}: dim {sample.embedding.shape[0]}")
                    continue
                score = cosine_similarity(q, sample.embedding)
                # strict '>' keeps the first-seen pair on ties
                if score > best_score:
                    best_score = score
                    best = MatchResult(name=identity.name, matched_angle=sample.angle, score=score)
        return best

"""Same-source variant detection over per-second frame hash sequences.

A new asset is compared with the owner's existing assets, most recent first.
A candidate matches when it is the audible version of a silent upload, or a
longer cut of the same footage, and the new frame sequence lines up with some
contiguous window of the candidate's frames within the Hamming tolerance.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence

from clipvault.core.config import Settings

NIBBLE_BITS = 4


class Fingerprinted(Protocol):
    id: str
    has_audio: bool
    duration_ms: Optional[int]
    frame_hashes: Optional[list]
    source_url: Optional[str]


class MatchReason(str, enum.Enum):
    AUDIO = "audio-variant-found"
    LONGER = "longer-variant-found"


@dataclass(slots=True, frozen=True)
class PotentialMatch:
    candidate_id: str
    source_url: Optional[str]
    reason: MatchReason
    score: float


@dataclass(slots=True, frozen=True)
class SimilarityPolicy:
    strict_threshold: float = 12.0
    loose_threshold: float = 24.0
    short_sequence_frames: int = 20
    duration_margin_ms: int = 500

    @classmethod
    def from_settings(cls, settings: Settings) -> "SimilarityPolicy":
        return cls(
            strict_threshold=settings.similarity_strict_threshold,
            loose_threshold=settings.similarity_loose_threshold,
            short_sequence_frames=settings.similarity_short_sequence_frames,
            duration_margin_ms=settings.similarity_duration_margin_ms,
        )

    def threshold_for(self, frame_count: int) -> float:
        """Short clips get the looser tolerance."""
        if frame_count <= self.short_sequence_frames:
            return self.loose_threshold
        return self.strict_threshold


def _nibble(char: str) -> Optional[int]:
    try:
        return int(char, 16)
    except ValueError:
        return None


def hamming_hex(a: str, b: str) -> int:
    """Bit distance between two hex strings, summed nibble by nibble.

    Characters past the end of the shorter string count as fully different,
    so the distance is zero only for identical (case-insensitive) strings.
    """
    a = a.lower()
    b = b.lower()
    distance = NIBBLE_BITS * abs(len(a) - len(b))
    for left, right in zip(a, b):
        if left == right:
            continue
        x, y = _nibble(left), _nibble(right)
        if x is None or y is None:
            distance += NIBBLE_BITS
        else:
            distance += bin(x ^ y).count("1")
    return distance


def best_window_distance(new: Sequence[str], candidate: Sequence[str]) -> Optional[float]:
    """Lowest average per-frame distance over every alignment of the shorter sequence.

    Returns ``None`` when either sequence is empty.
    """
    if not new or not candidate:
        return None
    short, long_ = (new, candidate) if len(new) <= len(candidate) else (candidate, new)
    width = len(short)
    best: Optional[float] = None
    for offset in range(len(long_) - width + 1):
        total = 0
        for index in range(width):
            total += hamming_hex(short[index], long_[offset + index])
            if best is not None and total / width >= best:
                break
        else:
            score = total / width
            if best is None or score < best:
                best = score
                if best == 0:
                    break
    return best


def _is_longer(new: Fingerprinted, candidate: Fingerprinted, policy: SimilarityPolicy) -> bool:
    if len(candidate.frame_hashes or []) > len(new.frame_hashes or []):
        return True
    if candidate.duration_ms is None or new.duration_ms is None:
        return False
    return candidate.duration_ms - new.duration_ms >= policy.duration_margin_ms


def match_candidate(
    new: Fingerprinted,
    candidate: Fingerprinted,
    policy: SimilarityPolicy,
) -> Optional[PotentialMatch]:
    new_frames = list(new.frame_hashes or [])
    candidate_frames = list(candidate.frame_hashes or [])
    if not new_frames or not candidate_frames:
        return None
    threshold = policy.threshold_for(len(new_frames))

    checks = []
    if not new.has_audio and candidate.has_audio:
        checks.append(MatchReason.AUDIO)
    if _is_longer(new, candidate, policy):
        checks.append(MatchReason.LONGER)
    if not checks:
        return None

    score = best_window_distance(new_frames, candidate_frames)
    if score is None or score > threshold:
        return None
    return PotentialMatch(
        candidate_id=candidate.id,
        source_url=candidate.source_url,
        reason=checks[0],
        score=score,
    )


def find_potential_match(
    new: Fingerprinted,
    candidates: Iterable[Fingerprinted],
    policy: SimilarityPolicy,
) -> Optional[PotentialMatch]:
    """Return the first qualifying candidate in iteration order.

    Callers pass candidates most recent first; the new asset itself is skipped.
    """
    for candidate in candidates:
        if candidate.id == new.id:
            continue
        match = match_candidate(new, candidate, policy)
        if match is not None:
            return match
    return None


__all__ = [
    "MatchReason",
    "PotentialMatch",
    "SimilarityPolicy",
    "best_window_distance",
    "find_potential_match",
    "hamming_hex",
    "match_candidate",
]

from __future__ import annotations

from dataclasses import dataclass
from hashlib import md5, sha256
from pathlib import Path

from clipvault.db.repository import AssetRepository

__all__ = [
    "QuickHash",
    "quick_hash",
    "combine_digests",
    "check_duplicate",
]

CHUNK_SIZE = 8 * 1024 * 1024


@dataclass(slots=True, frozen=True)
class QuickHash:
    """Digests gathered in one pass over a file."""

    combined: str
    sha256: str
    md5: str
    size_bytes: int


def combine_digests(sha256_hex: str, md5_hex: str) -> str:
    """Return the dedup key: SHA-256 over the concatenated hex digests."""
    return sha256(f"{sha256_hex}{md5_hex}".encode("ascii")).hexdigest()


def quick_hash(path: Path, *, chunk_size: int = CHUNK_SIZE) -> QuickHash:
    """Stream ``path`` once, feeding SHA-256 and MD5 side by side.

    Args:
        path: The file to hash.
        chunk_size: The read size used while streaming.

    Returns:
        The combined hash plus both component digests and the byte count.
    """
    strong = sha256()
    weak = md5(usedforsecurity=False)
    size = 0
    with path.open("rb") as handle:
        while chunk := handle.read(chunk_size):
            strong.update(chunk)
            weak.update(chunk)
            size += len(chunk)
    sha_hex = strong.hexdigest()
    md5_hex = weak.hexdigest()
    return QuickHash(combined=combine_digests(sha_hex, md5_hex), sha256=sha_hex, md5=md5_hex, size_bytes=size)


async def check_duplicate(repository: AssetRepository, combined_hash: str, owner_id: str) -> str | None:
    """Return the id of the owner's asset already holding ``combined_hash``, if any."""
    existing = await repository.find_by_hash(owner_id, combined_hash)
    return existing.id if existing is not None else None

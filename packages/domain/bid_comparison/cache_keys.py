"""
Deterministic cache keys for comparison requests

Equal inputs give equal keys regardless of caller ordering: owner ids are
sorted, and the optional content set is sorted by id before hashing.
"""
import hashlib
from typing import Iterable, Optional, Sequence, Union

from packages.domain.bid_comparison.schemas import LineItem, TakeoffItem

FIELD_DELIMITER = "|"
MEMBER_DELIMITER = "\n"

ContentMember = Union[LineItem, TakeoffItem]


def _field(value) -> str:
    return "" if value is None else str(value)


def _member_fingerprint(member: ContentMember) -> str:
    cost = member.unit_cost if isinstance(member, TakeoffItem) else member.unit_price
    return FIELD_DELIMITER.join([
        _field(member.id),
        _field(member.description),
        _field(member.quantity),
        _field(member.unit),
        _field(cost),
    ])


def hash_content_set(members: Iterable[ContentMember]) -> str:
    """
    SHA-256 over the canonicalized members.

    Any change to id, description, quantity, unit or cost changes the hash.
    """
    ordered = sorted(members, key=lambda m: m.id)
    canonical = MEMBER_DELIMITER.join(_member_fingerprint(m) for m in ordered)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_cache_key(
    anchor_id: str,
    comparison_owner_ids: Sequence[str],
    content_set: Optional[Iterable[ContentMember]] = None,
) -> str:
    """
    Build the memoization key for a comparison request.

    Example:
        build_cache_key("bid-1", ["bid-3", "bid-2"])
        # "bid-1|bid-2,bid-3|"
    """
    owners = ",".join(sorted(comparison_owner_ids))
    digest = hash_content_set(content_set) if content_set is not None else ""
    return f"{anchor_id}{FIELD_DELIMITER}{owners}{FIELD_DELIMITER}{digest}"

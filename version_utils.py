"""Tag shape matching and version ordering.

A tag is chunked into alternating runs of ASCII digits and non-digits.
Tags whose non-digit runs are identical (same text, same positions) share
a *skeleton* and are considered the same kind of version; within such a
family tags are ordered by the numeric value of their digit runs, left to
right.

    v15.010-rc.1  ->  'v' 15 '.' 10 '-rc.' 1

Examples of tags with the same skeleton: ``v1.0.10`` / ``v3.44.247``,
``2.1`` / ``10.0``, ``1.0.0-rc.1`` / ``2.0.0-rc.3``.

Examples of tags with different skeletons: ``latest`` /
``2025-11-12T13-14-15Z``, ``.34`` / ``0.34``, ``1.1.0`` / ``v1.1.0``,
``2.0.0-alpha.1`` / ``2.0.0-beta.1``.
"""

import enum
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Only ASCII digits: str.isdigit() also accepts characters like '²'
_DIGIT_RUN = re.compile(r'[0-9]+')
_SEGMENT = re.compile(r'[0-9]+|[^0-9]+')


class SkeletonMismatchError(AssertionError):
    """Two version keys that should share a skeleton do not.

    Raised when keys handed to the comparator disagree on segment count,
    segment kind, or literal text. It means the candidate filter let through
    a tag it should have rejected, so it is a bug, not bad input.
    """


class Ordering(enum.IntEnum):
    LESS = -1
    EQUAL = 0
    GREATER = 1


@dataclass(frozen=True)
class Numeric:
    """A run of ASCII digits, ordered by magnitude."""
    text: str

    @property
    def magnitude(self) -> Tuple[int, str]:
        # Digit count then digits: no int() conversion, so runs of any
        # length compare correctly
        digits = self.text.lstrip('0')
        return (len(digits), digits)

    def canonical(self) -> str:
        return self.text.lstrip('0') or '0'


@dataclass(frozen=True)
class Literal:
    """A run of non-digit characters, compared by exact text."""
    text: str


Segment = Union[Numeric, Literal]
TagSkeleton = Tuple[str, ...]
VersionKey = Tuple[Segment, ...]


@dataclass(frozen=True)
class Found:
    """The newest tag sharing the original's skeleton (may be the original)."""
    tag: str


@dataclass(frozen=True)
class NoCandidates:
    """The registry has no tag shaped like the original."""


Outcome = Union[Found, NoCandidates]


def tag_skeleton(tag: str) -> TagSkeleton:
    """Return the non-digit fragments of *tag*, in order.

    Digit runs are dropped but leave their position behind: a tag starting
    or ending with digits gets an empty leading or trailing fragment, so
    ``v2.0.0`` -> ``('v', '.', '.', '')`` and ``2.0.0v`` ->
    ``('', '.', '.', 'v')``.
    """
    return tuple(_DIGIT_RUN.split(tag))


def filter_candidates(original: str, candidates: Iterable[str]) -> List[str]:
    """Return the tags in *candidates* sharing *original*'s skeleton.

    The original tag itself is never returned.
    """
    skeleton = tag_skeleton(original)
    return [
        tag for tag in candidates
        if tag != original and tag_skeleton(tag) == skeleton
    ]


def parse_version_key(tag: str) -> VersionKey:
    """Split *tag* into alternating Numeric and Literal segments."""
    return tuple(
        Numeric(chunk) if chunk[0] in '0123456789' else Literal(chunk)
        for chunk in _SEGMENT.findall(tag)
    )


def format_version_key(key: VersionKey, canonical: bool = False) -> str:
    """Render *key* back to a tag.

    With ``canonical=True`` numeric segments lose their leading zeros, so
    ``v1.050`` renders as ``v1.50``. The result parses to the same
    segment kinds and compares EQUAL to the original, but is not the
    original text.
    """
    if canonical:
        return ''.join(
            seg.canonical() if isinstance(seg, Numeric) else seg.text
            for seg in key
        )
    return ''.join(seg.text for seg in key)


def compare_version_keys(a: VersionKey, b: VersionKey) -> Ordering:
    """Compare two keys built from tags with the same skeleton.

    The first numeric position with differing magnitudes decides the order.
    Literal positions must match exactly; any structural disagreement raises
    SkeletonMismatchError.
    """
    if len(a) != len(b):
        raise SkeletonMismatchError(
            f"Segment count differs: {format_version_key(a)!r} has {len(a)}, "
            f"{format_version_key(b)!r} has {len(b)}"
        )

    for pos, (seg_a, seg_b) in enumerate(zip(a, b)):
        if type(seg_a) is not type(seg_b):
            raise SkeletonMismatchError(
                f"Segment kind differs at position {pos}: {seg_a!r} vs {seg_b!r}"
            )
        if isinstance(seg_a, Literal):
            if seg_a.text != seg_b.text:
                raise SkeletonMismatchError(
                    f"Literal differs at position {pos}: {seg_a.text!r} vs {seg_b.text!r}"
                )
            continue
        mag_a, mag_b = seg_a.magnitude, seg_b.magnitude
        if mag_a < mag_b:
            return Ordering.LESS
        if mag_a > mag_b:
            return Ordering.GREATER

    return Ordering.EQUAL


def resolve(original: str, raw_tags: Iterable[str]) -> Outcome:
    """Pick the newest tag in *raw_tags* shaped like *original*.

    Args:
        original: The tag currently in use
        raw_tags: Every tag the registry reports for the repository

    Returns:
        Found(tag) with the maximum tag. The original is part of the
        comparison and wins any tie, so Found(original) means nothing newer
        exists. NoCandidates() when the registry has no tag of this shape
        at all.
    """
    if not original:
        raise ValueError("Original tag must not be empty")

    raw_tags = list(raw_tags)
    candidates = filter_candidates(original, raw_tags)
    logger.debug(f"{len(candidates)} of {len(raw_tags)} tags share the shape of '{original}'")

    if not candidates:
        if original in raw_tags:
            return Found(original)
        return NoCandidates()

    keys: Dict[str, VersionKey] = {}

    def key_for(tag: str) -> VersionKey:
        if tag not in keys:
            keys[tag] = parse_version_key(tag)
        return keys[tag]

    best = original
    for tag in candidates:
        # Strictly greater only: earlier entries keep ties
        if compare_version_keys(key_for(tag), key_for(best)) is Ordering.GREATER:
            best = tag

    return Found(best)


def latest_similar_tag(original: str, raw_tags: Iterable[str]) -> Optional[str]:
    """Return the tag chosen by resolve(), or None if there is none."""
    outcome = resolve(original, raw_tags)
    if isinstance(outcome, Found):
        return outcome.tag
    return None

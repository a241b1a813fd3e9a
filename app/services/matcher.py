"""
Identifier matching between loosely named folders/files and known records.

Scores are integers in 0..100:
    100  identical after normalization
     85  one normalized label contains the other
  15-85  word-set overlap, round(overlap / max(words) * 70) + 15
      0  nothing in common

Everything here is pure and deterministic; no I/O.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

# Matches at or above this confidence are proposed automatically
ACCEPTANCE_FLOOR = 50

EXACT_SCORE = 100
CONTAINS_SCORE = 85
OVERLAP_WEIGHT = 70
OVERLAP_BASE = 15

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_DEDUPE_SUFFIX = re.compile(r"^(.+)-(\d+)$")
_VEHICLE_PREFIX = re.compile(r"^((?:19|20)\d{2})[-\s]+([^-\s]+)[-\s]+([^-\s]+)[-\s]+(.+)$")


def normalize(label: str) -> str:
    """Lowercase and drop everything but letters and digits."""
    return _NON_ALNUM.sub("", (label or "").lower())


def score(candidate_label: str, target_label: str) -> int:
    a = normalize(candidate_label)
    b = normalize(target_label)
    if not a or not b:
        return 0

    if a == b:
        return EXACT_SCORE
    if a in b or b in a:
        return CONTAINS_SCORE

    words_a = set(candidate_label.lower().split())
    words_b = set(target_label.lower().split())
    overlap = len(words_a & words_b)
    if overlap > 0:
        # halves round up
        return int(overlap / max(len(words_a), len(words_b)) * OVERLAP_WEIGHT + 0.5) + OVERLAP_BASE
    return 0


@dataclass
class RankedMatch:
    index: int
    confidence: int
    ambiguous: bool = False


def rank_candidates(subject: str, candidate_labels: Sequence[str]) -> Optional[RankedMatch]:
    """
    Best-scoring candidate for `subject`, or None when nothing scores above 0.
    Ties keep the first candidate in caller order and flag the result ambiguous.
    """
    best: Optional[RankedMatch] = None
    for i, label in enumerate(candidate_labels):
        confidence = score(subject, label)
        if confidence <= 0:
            continue
        if best is None or confidence > best.confidence:
            best = RankedMatch(index=i, confidence=confidence)
        elif confidence == best.confidence:
            best.ambiguous = True
    return best


def best_match(subject: str, candidate_labels: Sequence[str], floor: int = ACCEPTANCE_FLOOR) -> Optional[RankedMatch]:
    """Like rank_candidates, but only returns a match that clears the acceptance floor."""
    ranked = rank_candidates(subject, candidate_labels)
    if ranked and ranked.confidence >= floor:
        return ranked
    return None


@dataclass
class ParsedFileName:
    title: str
    extension: str
    suffix: Optional[int] = None
    year: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None


def split_extension(file_name: str) -> tuple:
    """('Garage', 'jpg') for 'Garage.JPG'; dotfiles and extensionless names keep an empty extension."""
    base = file_name.rsplit("/", 1)[-1]
    dot = base.rfind(".")
    if dot <= 0:
        return base, ""
    return base[:dot], base[dot + 1:].lower()


def parse_import_file_name(file_name: str) -> ParsedFileName:
    """
    Splits an attachment file name into the title used for matching.

    '2019-Honda-CBR650F-Registration-2.pdf' -> title 'Registration', suffix 2,
    year/make/model filled in. Numeric suffixes of 100 or more are kept so a
    trailing year is not mistaken for a de-duplication counter.
    """
    base, extension = split_extension(file_name)

    suffix = None
    title_part = base
    m = _DEDUPE_SUFFIX.match(base)
    if m and int(m.group(2)) < 100:
        suffix = int(m.group(2))
        title_part = m.group(1)

    m = _VEHICLE_PREFIX.match(title_part)
    if m:
        return ParsedFileName(
            title=re.sub(r"[-_]", " ", m.group(4)).strip(),
            extension=extension,
            suffix=suffix,
            year=m.group(1),
            make=m.group(2),
            model=m.group(3),
        )

    return ParsedFileName(
        title=re.sub(r"[-_]", " ", title_part).strip(),
        extension=extension,
        suffix=suffix,
    )


@dataclass
class FileRecordMatch:
    index: int
    title: str
    confidence: int
    ambiguous: bool = False


def match_file_to_record(file_name: str, candidate_titles: List[str], floor: int = ACCEPTANCE_FLOOR) -> Optional[FileRecordMatch]:
    """Best record title for an attachment file, or None below the acceptance floor."""
    parsed = parse_import_file_name(file_name)
    if not normalize(parsed.title):
        return None

    ranked = best_match(parsed.title, candidate_titles, floor=floor)
    if ranked is None:
        return None
    return FileRecordMatch(
        index=ranked.index,
        title=candidate_titles[ranked.index],
        confidence=ranked.confidence,
        ambiguous=ranked.ambiguous,
    )

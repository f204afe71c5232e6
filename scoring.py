"""
Scoring for IELTS reading and listening tests.

An answer key maps question keys to canonical answers. A key such as
``"21&22"`` (or any key whose canonical answer is a list) is a multi-select
group: the test taker picks several options and earns one point for each
picked option that is in the canonical set, up to one point per member
question. Every other key is graded by ``answer_matching.is_correct``.

Raw scores convert to band scores with the published Cambridge conversion
tables, which differ slightly between Reading and Listening.
"""

import logging
import math
from dataclasses import dataclass, asdict
from enum import Enum

from answer_matching import is_correct, normalize

logger = logging.getLogger(__name__)

GROUP_SEPARATOR = '&'
MAX_RAW_SCORE = 40


class ModuleKind(str, Enum):
    READING = 'reading'
    LISTENING = 'listening'


# (minimum correct answers, band), highest band first
LISTENING_BANDS = (
    (39, 9.0), (37, 8.5), (35, 8.0), (32, 7.5), (30, 7.0), (26, 6.5),
    (23, 6.0), (18, 5.5), (16, 5.0), (13, 4.5), (10, 4.0), (8, 3.5),
    (6, 3.0), (4, 2.5), (3, 2.0), (2, 1.5), (1, 1.0), (0, 0.5),
)

READING_BANDS = (
    (39, 9.0), (37, 8.5), (35, 8.0), (33, 7.5), (30, 7.0), (27, 6.5),
    (23, 6.0), (19, 5.5), (15, 5.0), (13, 4.5), (10, 4.0), (8, 3.5),
    (6, 3.0), (4, 2.5), (3, 2.0), (2, 1.5), (1, 1.0), (0, 0.5),
)

BAND_TABLES = {
    ModuleKind.READING: READING_BANDS,
    ModuleKind.LISTENING: LISTENING_BANDS,
}


@dataclass(frozen=True)
class ScoreResult:
    """Result of grading one submitted test."""

    raw_correct_count: int
    total_questions: int
    percentage: int
    band_score: float

    def to_dict(self):
        return asdict(self)


def to_band_score(raw_correct_count, module_kind=ModuleKind.LISTENING):
    """
    Convert a raw score out of 40 to an IELTS band score.

    Counts outside 0-40 clamp to the ends of the table.

    Args:
        raw_correct_count: Number of correctly answered questions
        module_kind: ModuleKind or its value ('reading' / 'listening')

    Returns:
        Band score between 0.5 and 9.0 in half-band steps

    Example:
        >>> to_band_score(30, ModuleKind.READING)
        7.0
        >>> to_band_score(32, ModuleKind.LISTENING)
        7.5
    """
    table = BAND_TABLES[ModuleKind(module_kind)]
    raw = min(max(int(raw_correct_count), 0), MAX_RAW_SCORE)
    for minimum, band in table:
        if raw >= minimum:
            return band
    return table[-1][1]


def group_members(question_key):
    """Question numbers covered by a key: '20&21&22' -> ['20', '21', '22']."""
    return [part.strip() for part in str(question_key).split(GROUP_SEPARATOR) if part.strip()]


def is_group_key(question_key, canonical=None):
    return GROUP_SEPARATOR in str(question_key) or isinstance(canonical, (list, tuple))


def group_size(question_key, canonical=None):
    """Number of question slots a key stands for."""
    members = group_members(question_key)
    if len(members) > 1:
        return len(members)
    if isinstance(canonical, (list, tuple)):
        return len(canonical)
    return 1


def selected_options(value):
    """
    Distinct options picked for a multi-select group.

    Accepts a list/tuple/set of options or one comma-separated string.
    Order is kept (sets are sorted); repeats and blanks are dropped.
    """
    if isinstance(value, str):
        items = value.split(',')
    elif isinstance(value, (set, frozenset)):
        items = sorted(v for v in value if isinstance(v, str))
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return []

    seen = set()
    options = []
    for item in items:
        key = normalize(item)
        if key and key not in seen:
            seen.add(key)
            options.append(item.strip())
    return options


def group_points(selection, canonical, size):
    """Points for one group: one per picked option in the canonical set."""
    if not isinstance(canonical, (list, tuple)):
        return 0
    remaining = list(canonical)
    points = 0
    for option in selected_options(selection):
        for index, expected in enumerate(remaining):
            if is_correct(option, expected):
                # each canonical option is credited once
                del remaining[index]
                points += 1
                break
    return min(points, size)


def _display(canonical):
    if isinstance(canonical, (list, tuple)):
        return ', '.join(str(option) for option in canonical)
    return '' if canonical is None else str(canonical)


def review(answer_key, user_answers):
    """
    Per-question breakdown of a submission, in answer-key order.

    Each item has ``question_key``, ``user_answer``, ``correct_answer``,
    ``is_correct``, ``points`` and ``max_points``. A group counts as correct
    only when exactly the full set was chosen; ``points`` carries the
    partial credit. Single keys already covered by a group key are left out
    so they are not counted twice.
    """
    answers = {str(key): value for key, value in (user_answers or {}).items()}

    covered = set()
    for key, canonical in answer_key.items():
        if is_group_key(key, canonical):
            covered.update(group_members(key))

    items = []
    for key, canonical in answer_key.items():
        key = str(key)
        if is_group_key(key, canonical):
            size = group_size(key, canonical)
            chosen = selected_options(answers.get(key))
            points = group_points(chosen, canonical, size)
            items.append({
                'question_key': key,
                'user_answer': ', '.join(chosen),
                'correct_answer': _display(canonical),
                'is_correct': points == size and len(chosen) == size,
                'points': points,
                'max_points': size,
            })
        elif key in covered:
            continue
        else:
            user_answer = answers.get(key, '')
            correct = is_correct(user_answer, canonical, key)
            items.append({
                'question_key': key,
                'user_answer': user_answer if isinstance(user_answer, str) else '',
                'correct_answer': _display(canonical),
                'is_correct': correct,
                'points': 1 if correct else 0,
                'max_points': 1,
            })
    return items


def question_slots(answer_key):
    """Number of individually graded questions in an answer key."""
    return sum(item['max_points'] for item in review(answer_key, {}))


def _percentage(raw_correct_count, total_questions):
    if total_questions <= 0:
        return 0
    # halves round up
    return int(math.floor(raw_correct_count * 100 / total_questions + 0.5))


def score(answer_key, user_answers, module_kind=ModuleKind.LISTENING):
    """
    Grade a submission.

    Args:
        answer_key: Mapping of question key to canonical answer
        user_answers: Mapping of question key to the test taker's answer
            (text, or the picked options for a group)
        module_kind: Which band table to use

    Returns:
        ScoreResult
    """
    items = review(answer_key, user_answers)
    raw_correct_count = sum(item['points'] for item in items)
    total_questions = sum(item['max_points'] for item in items)

    result = ScoreResult(
        raw_correct_count=raw_correct_count,
        total_questions=total_questions,
        percentage=_percentage(raw_correct_count, total_questions),
        band_score=to_band_score(raw_correct_count, module_kind),
    )
    logger.debug("Scored %s/%s (band %s)", raw_correct_count, total_questions, result.band_score)
    return result

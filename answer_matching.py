"""
Answer matching for IELTS reading and listening answer keys.

Canonical answers follow the conventions of the Cambridge answer keys:

- ``/`` separates acceptable alternatives: ``co-operation/collaboration``
- words in parentheses are optional: ``(the) 1992 Earth Summit``, ``waiter(s)``
- a slash inside parentheses offers alternatives for that part only:
  ``dark (coloured/colored)``
- ``(or)`` joins two answers that are each accepted on their own
- hyphenated words are also accepted spaced or closed up:
  ``car-park``, ``car park``, ``carpark``

Matching is exact against the set of variations generated from the key.
There is no spelling tolerance. A key that cannot be read as one of the
forms above never matches anything.
"""

import logging
import re
import unicodedata

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'\s+')
_OPTIONAL_PART = re.compile(r'\(([^()]*)\)')
_LETTER_LABEL = re.compile(r'^[A-Z]$')

_EDGE_PUNCTUATION = '.,;:!?'
_TYPOGRAPHIC = str.maketrans({
    '‘': "'", '’': "'",
    '“': '"', '”': '"',
    '‐': '-', '‑': '-', '–': '-', '—': '-',
})


class MalformedAnswerKey(ValueError):
    """Raised internally when a canonical answer cannot be parsed."""


def normalize(value):
    """Lowercase, trim and collapse whitespace. Non-strings become ''."""
    if not isinstance(value, str):
        return ''
    text = unicodedata.normalize('NFKD', value.translate(_TYPOGRAPHIC))
    text = ''.join(ch for ch in text if not unicodedata.combining(ch))
    text = unicodedata.normalize('NFKC', text).lower()
    text = _WHITESPACE.sub(' ', text).strip()
    return text.strip(_EDGE_PUNCTUATION).strip()


def _split_alternatives(text):
    """Split on slashes that are not inside parentheses."""
    parts = []
    current = []
    depth = 0
    for ch in text:
        if ch == '(':
            depth += 1
            if depth > 1:
                raise MalformedAnswerKey('nested parentheses')
        elif ch == ')':
            depth -= 1
            if depth < 0:
                raise MalformedAnswerKey('unbalanced parentheses')
        if ch == '/' and depth == 0:
            parts.append(''.join(current))
            current = []
        else:
            current.append(ch)
    if depth != 0:
        raise MalformedAnswerKey('unbalanced parentheses')
    parts.append(''.join(current))
    return [part.strip() for part in parts if part.strip()]


def _tidy(text):
    return _WHITESPACE.sub(' ', text).strip()


def _expand_optional(text):
    """All readings of one alternative, with each optional part in or out."""
    match = _OPTIONAL_PART.search(text)
    if match is None:
        return {_tidy(text)}

    head = text[:match.start()]
    inner = match.group(1).strip()
    tail = text[match.end():]

    if inner == 'or':
        halves = {_tidy(head)} | _expand_optional(tail)
        return {half for half in halves if half}

    choices = [''] + [choice.strip() for choice in inner.split('/') if choice.strip()]
    return {
        _tidy(head + choice + rest)
        for choice in choices
        for rest in _expand_optional(tail)
    }


def _with_hyphen_forms(variations):
    expanded = set(variations)
    for variation in variations:
        if '-' in variation:
            expanded.add(_tidy(variation.replace('-', ' ')))
            expanded.add(variation.replace('-', ''))
    return expanded


def answer_variations(canonical):
    """
    Every answer accepted for a canonical answer string.

    Args:
        canonical: Answer as written in the answer key

    Returns:
        frozenset of normalized accepted answers; empty when the key is
        not a string or cannot be parsed

    Example:
        >>> sorted(answer_variations('(the) 1992 Earth Summit'))
        ['1992 earth summit', 'the 1992 earth summit']
    """
    if not isinstance(canonical, str):
        return frozenset()
    try:
        alternatives = _split_alternatives(normalize(canonical))
    except MalformedAnswerKey:
        return frozenset()

    variations = set()
    for alternative in alternatives:
        variations |= _expand_optional(alternative)
    return frozenset(v for v in _with_hyphen_forms(variations) if v)


def is_correct(user_answer, canonical, question_key=None):
    """
    Check one answer against its canonical answer.

    Unanswered questions and unreadable keys are simply wrong; this never
    raises, so one bad entry in an answer key cannot break grading.

    Args:
        user_answer: Raw text typed or chosen by the test taker
        canonical: Answer from the answer key
        question_key: Question identifier, used for diagnostics only

    Returns:
        True when the answer is accepted
    """
    answer = normalize(user_answer)
    if not answer:
        return False

    if not isinstance(canonical, str):
        logger.warning("Unmatchable answer key for question %s: %r", question_key, canonical)
        return False

    # Multiple-choice labels: exact letter only
    label = canonical.strip()
    if _LETTER_LABEL.match(label):
        return answer == label.lower()

    variations = answer_variations(canonical)
    if not variations:
        logger.warning("Unmatchable answer key for question %s: %r", question_key, canonical)
        return False
    # Only the key expands. A typed "x or y", "x/y" or "x|y" hedges between
    # answers and is marked wrong, and "x (or) y" does not accept "x y".
    return answer in variations

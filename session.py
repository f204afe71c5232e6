"""
Test session state.

One PracticeSession per attempt at a test. It owns the answers, the
start/submit timestamps and the graded result, and moves through

    NOT_STARTED -> IN_PROGRESS -> SUBMITTED

with reset() returning to NOT_STARTED. Grading happens exactly once per
submission: a manual submit racing the timer's auto-submit only grades
(and persists) for whichever arrives first.
"""

import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum

from answer_matching import normalize
from database import TestScoreRecord
from scoring import ModuleKind, group_size, is_group_key, review, score, selected_options

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    NOT_STARTED = 'not_started'
    IN_PROGRESS = 'in_progress'
    SUBMITTED = 'submitted'


class SessionStateError(Exception):
    """Action not allowed in the session's current state."""


class PracticeSession:
    def __init__(self, test, session_id=None, user_id=None):
        self.session_id = session_id or str(uuid.uuid4())
        self.test = test
        self.user_id = user_id
        self.last_seen = datetime.now()
        self._clear()

    def _clear(self):
        self.status = SessionStatus.NOT_STARTED
        self.answers = {}
        self.started_at = None
        self.submitted_at = None
        self.result = None
        self.auto_submitted = False
        self._save_claimed = False

    @property
    def answer_key(self):
        return self.test['answers']

    @property
    def module_kind(self):
        return ModuleKind(self.test['module'])

    @property
    def time_limit(self):
        return timedelta(minutes=self.test['time_limit'])

    def belongs_to(self, test):
        return (
            self.test['book'] == test['book']
            and self.test['module'] == test['module']
            and self.test['test_number'] == test['test_number']
        )

    def _require(self, status, action):
        if self.status != status:
            raise SessionStateError(f"Cannot {action} a test that is {self.status.value}")

    def _canonical(self, question_key):
        if question_key not in self.answer_key:
            raise KeyError(question_key)
        return self.answer_key[question_key]

    def start(self, now=None):
        self._require(SessionStatus.NOT_STARTED, 'start')
        self.started_at = now or datetime.now()
        self.status = SessionStatus.IN_PROGRESS
        logger.info("Session %s started %s %s test %s", self.session_id,
                    self.test['book'], self.test['module'], self.test['test_number'])

    def set_answer(self, question_key, value):
        """Record the answer to a single question; blank clears it."""
        self._require(SessionStatus.IN_PROGRESS, 'answer')
        canonical = self._canonical(question_key)
        if is_group_key(question_key, canonical):
            raise SessionStateError(f"Question {question_key} takes several options")

        if value is None or not str(value).strip():
            self.answers.pop(question_key, None)
        else:
            self.answers[question_key] = str(value)

    def set_selection(self, question_key, options):
        """Replace the options picked for a group, keeping at most the group size."""
        self._require(SessionStatus.IN_PROGRESS, 'answer')
        canonical = self._canonical(question_key)
        if not is_group_key(question_key, canonical):
            raise SessionStateError(f"Question {question_key} takes a single answer")

        chosen = selected_options(options)[:group_size(question_key, canonical)]
        self.answers[question_key] = chosen
        return list(chosen)

    def toggle_option(self, question_key, option):
        """
        Pick or unpick one option of a group.

        Picking beyond the group size is ignored, the same as the checkbox
        list in the page.
        """
        self._require(SessionStatus.IN_PROGRESS, 'answer')
        canonical = self._canonical(question_key)
        if not is_group_key(question_key, canonical):
            raise SessionStateError(f"Question {question_key} takes a single answer")

        chosen = list(self.answers.get(question_key, []))
        picked = normalize(option)
        if not picked:
            return chosen

        existing = [item for item in chosen if normalize(item) == picked]
        if existing:
            chosen.remove(existing[0])
        elif len(chosen) < group_size(question_key, canonical):
            chosen.append(option.strip())
        self.answers[question_key] = chosen
        return list(chosen)

    def submit(self, now=None):
        """
        Grade the answers.

        Returns:
            True if this call graded the test, False if it was already
            submitted (the earlier result is kept)
        """
        if self.status == SessionStatus.SUBMITTED:
            return False
        self._require(SessionStatus.IN_PROGRESS, 'submit')

        self.result = score(self.answer_key, self.answers, self.module_kind)
        self.submitted_at = now or datetime.now()
        self.status = SessionStatus.SUBMITTED
        logger.info("Session %s submitted: %s/%s, band %s", self.session_id,
                    self.result.raw_correct_count, self.result.total_questions,
                    self.result.band_score)
        return True

    def check_timer(self, now=None):
        """Auto-submit once the time limit has run out. True if it did."""
        if self.status != SessionStatus.IN_PROGRESS:
            return False
        now = now or datetime.now()
        deadline = self.started_at + self.time_limit
        if now < deadline:
            return False
        self.auto_submitted = True
        return self.submit(deadline)

    def time_remaining(self, now=None):
        """Seconds left on the countdown"""
        if self.status == SessionStatus.NOT_STARTED:
            return int(self.time_limit.total_seconds())
        if self.status == SessionStatus.SUBMITTED:
            return 0
        left = self.started_at + self.time_limit - (now or datetime.now())
        return max(0, int(left.total_seconds()))

    @property
    def time_taken(self):
        if self.started_at is None or self.submitted_at is None:
            return None
        return int((self.submitted_at - self.started_at).total_seconds())

    def review(self):
        self._require(SessionStatus.SUBMITTED, 'review')
        return review(self.answer_key, self.answers)

    def reset(self):
        """Back to NOT_STARTED; answers and result are discarded."""
        self._clear()

    def claim_save(self):
        """True exactly once per graded submission; the caller then persists it."""
        if self.status != SessionStatus.SUBMITTED or self._save_claimed:
            return False
        self._save_claimed = True
        return True

    def to_score_record(self):
        self._require(SessionStatus.SUBMITTED, 'save')
        return TestScoreRecord(
            book=self.test['book'],
            module=self.test['module'],
            test_number=self.test['test_number'],
            score=self.result.raw_correct_count,
            total_questions=self.result.total_questions,
            percentage=self.result.percentage,
            ielts_band_score=self.result.band_score,
            time_taken=self.time_taken,
            user_id=self.user_id,
        )

    def to_dict(self, now=None):
        return {
            'session_id': self.session_id,
            'book': self.test['book'],
            'module': self.test['module'],
            'test_number': self.test['test_number'],
            'status': self.status.value,
            'answers': {key: (list(value) if isinstance(value, list) else value)
                        for key, value in self.answers.items()},
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'submitted_at': self.submitted_at.isoformat() if self.submitted_at else None,
            'time_remaining': self.time_remaining(now),
            'time_taken': self.time_taken,
            'auto_submitted': self.auto_submitted,
            'result': self.result.to_dict() if self.result else None,
        }


class SessionStore:
    """Live sessions, kept in memory; idle ones expire with their cookie."""

    def __init__(self, max_age=7200):
        self.max_age = timedelta(seconds=max_age)
        self._sessions = {}

    def create(self, test, user_id=None, now=None):
        session = PracticeSession(test, user_id=user_id)
        session.last_seen = now or datetime.now()
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id, now=None):
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_seen = now or datetime.now()
        return session

    def discard(self, session_id):
        self._sessions.pop(session_id, None)

    def prune(self, now=None):
        """Remove and return the sessions idle for longer than max_age."""
        cutoff = (now or datetime.now()) - self.max_age
        expired = [session for session in self._sessions.values() if session.last_seen < cutoff]
        for session in expired:
            del self._sessions[session.session_id]
        if expired:
            logger.info("Expired %d idle sessions", len(expired))
        return expired

    def __len__(self):
        return len(self._sessions)

"""
Retake eligibility policy for course completion interviews.

Pure decision logic: no I/O, no clock reads beyond the optional ``now``
default, so the same policy gates new attempts and answers status queries.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from coursecert.services.records import Interview, InterviewStatus


@dataclass(frozen=True)
class InterviewPolicyConfig:
    min_pass_score: int = 70
    max_attempts: int = 3
    cooldown: timedelta = timedelta(days=7)


class RetakeReason(str, Enum):
    IN_PROGRESS = "in_progress"
    MAX_ATTEMPTS = "max_attempts"
    PASSED = "passed"
    COOLDOWN = "cooldown"
    ELIGIBLE = "eligible"


@dataclass(frozen=True)
class RetakeDecision:
    eligible: bool
    reason: RetakeReason
    next_retake_date: Optional[datetime] = None


class RetakePolicy:
    def __init__(self, config: InterviewPolicyConfig | None = None):
        self.config = config or InterviewPolicyConfig()

    def decide(self, interview: Interview, now: datetime | None = None) -> RetakeDecision:
        """Evaluate the retake rules in order; the first matching rule wins."""
        now = now or datetime.now(timezone.utc)

        if interview.status == InterviewStatus.PENDING:
            return RetakeDecision(True, RetakeReason.IN_PROGRESS)

        if interview.attempt_count >= self.config.max_attempts:
            return RetakeDecision(False, RetakeReason.MAX_ATTEMPTS, interview.next_retake_date)

        feedback = interview.feedback
        if feedback is not None and feedback.total_score >= self.config.min_pass_score:
            return RetakeDecision(False, RetakeReason.PASSED, interview.next_retake_date)

        if (
            interview.status == InterviewStatus.COMPLETED
            and interview.next_retake_date is not None
            and now <= interview.next_retake_date
        ):
            return RetakeDecision(False, RetakeReason.COOLDOWN, interview.next_retake_date)

        return RetakeDecision(True, RetakeReason.ELIGIBLE, interview.next_retake_date)

    def can_retake(self, interview: Interview, now: datetime | None = None) -> bool:
        return self.decide(interview, now).eligible

    def attempts_remaining(self, attempt_count: int) -> int:
        return max(0, self.config.max_attempts - attempt_count)

    def requires_retake(self, total_score: int) -> bool:
        return total_score < self.config.min_pass_score

"""Upload validation against category policies. No I/O happens here."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .exceptions import FileRejectedError, RejectionReason
from .interfaces import StorageCategory
from .policies import CategoryPolicy, CategoryPolicyTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    reasons: Tuple[RejectionReason, ...] = ()
    message: str = ''

    @property
    def ok(self) -> bool:
        return not self.reasons

    def __bool__(self) -> bool:
        return self.ok


def _format_mb(num_bytes: int) -> str:
    return f"{round(num_bytes / (1024 * 1024))}MB"


def check_against_policy(policy: CategoryPolicy, mime_type: Optional[str], byte_size: int) -> ValidationResult:
    """
    Check a candidate upload against one category policy.

    MIME types are compared exactly (case-sensitive). Both reasons are reported
    when both apply. An empty allow-list rejects every type.
    """
    reasons = []
    messages = []

    if not policy.allowed_mime_types:
        logger.warning(f"Category '{policy.category.value}' has an empty MIME allow-list; rejecting upload")
    if not mime_type or mime_type not in policy.allowed_mime_types:
        reasons.append(RejectionReason.UNSUPPORTED_TYPE)
        allowed = ', '.join(sorted(policy.allowed_mime_types)) or 'none'
        messages.append(f"File type '{mime_type}' not allowed for {policy.folder}. Allowed types: {allowed}")

    if byte_size > policy.max_bytes:
        reasons.append(RejectionReason.TOO_LARGE)
        messages.append(f"File too large. Maximum: {_format_mb(policy.max_bytes)}")

    return ValidationResult(reasons=tuple(reasons), message='; '.join(messages))


class FileValidator:
    """Validates uploads for every configured category."""

    def __init__(self, policies: Optional[CategoryPolicyTable] = None):
        self.policies = policies or CategoryPolicyTable()

    def validate(self, category: Union[StorageCategory, str], mime_type: Optional[str],
                 byte_size: int) -> ValidationResult:
        """Raises ConfigurationError for an unknown category."""
        return check_against_policy(self.policies.get(category), mime_type, byte_size)

    def ensure_valid(self, category: Union[StorageCategory, str], mime_type: Optional[str], byte_size: int) -> None:
        policy = self.policies.get(category)
        result = check_against_policy(policy, mime_type, byte_size)
        if not result.ok:
            raise FileRejectedError(result.message, result.reasons, category=policy.category.value)

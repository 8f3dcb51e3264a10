"""
Error taxonomy for the staging core.

Every error is recoverable by the caller except StaleSelectionError, which is
internal: a load that finished after its selection changed is dropped silently.
"""
from typing import Any, Optional


class StagingError(Exception):
    """Base exception for staging errors"""

    pass


class ValidationError(StagingError):
    """Submitted data is rejected; nothing was mutated"""

    pass


class NotFoundError(StagingError):
    """Entity is not present in the Entity Store"""

    pass


class AlreadyAssignedError(StagingError):
    """Couple already belongs to another group of the same stage"""

    def __init__(self, couple_id: int, group_id: int):
        super().__init__(
            f"Couple {couple_id} is already assigned to group {group_id}; remove it from that group first"
        )
        self.couple_id = couple_id
        self.group_id = group_id


class NoGroupsError(StagingError):
    """Stage has no groups to assign couples into"""

    def __init__(self, stage_id: int):
        super().__init__(f"Stage {stage_id} has no groups; create a group first")
        self.stage_id = stage_id


class ConfirmationRequiredError(StagingError):
    """Match generation would replace an existing match set"""

    pass


class RemoteError(StagingError):
    """Failure reported by the remote staging service, propagated verbatim"""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class StaleSelectionError(StagingError):
    """A load finished after the selection it belonged to was replaced"""

    pass

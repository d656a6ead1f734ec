"""Classification of local edits against remote content changes."""

from typing import Optional

from stargazer_sync.data.models import ConflictDetectionResult, ConflictState


class ConflictDetector:
    """
    Pure classifier over (local modified, remote changed).

    Only the case where both sides changed is a conflict; resolving it is
    left to the caller.
    """

    def detect_conflict(
        self,
        local_modified: bool,
        stored_fingerprint: Optional[str],
        remote_fingerprint: Optional[str],
        item_id: str = "",
    ) -> ConflictDetectionResult:
        remote_modified = remote_fingerprint is not None and remote_fingerprint != stored_fingerprint

        if local_modified and remote_modified:
            state = ConflictState.CONFLICT
            reason = "Both local and remote content have changed"
        elif local_modified:
            state = ConflictState.NO_CONFLICT
            reason = "Remote content unchanged"
        else:
            state = ConflictState.NO_CONFLICT
            reason = "Local content not modified"

        return ConflictDetectionResult(
            has_conflict=state is ConflictState.CONFLICT,
            state=state,
            local_modified=local_modified,
            remote_modified=remote_modified,
            local_fingerprint=stored_fingerprint,
            remote_fingerprint=remote_fingerprint,
            reason=reason,
            item_id=item_id,
        )

from __future__ import annotations


class TranscriptError(ValueError):
    """Raised when the caller hands the assembler structurally invalid input."""

    def __init__(
        self,
        reason: str,
        *,
        message_id: str | None = None,
        index: int | None = None,
        detail: str | None = None,
    ):
        self.reason = reason
        self.message_id = message_id
        self.index = index
        self.detail = detail
        message_by_reason = {
            "malformed_message": "Malformed message",
            "missing_id": "Message has no id",
            "missing_author": "Message has no author",
            "invalid_timestamp": "Message timestamp is missing or invalid",
            "duplicate_message": "Duplicate message id",
            "unsupported_type": "Unsupported message value",
        }
        message = message_by_reason.get(reason, "Invalid transcript input")
        location: list[str] = []
        if message_id is not None:
            location.append(f"id={message_id}")
        if index is not None:
            location.append(f"index={index}")
        if location:
            message = f"{message} ({', '.join(location)})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    def with_index(self, index: int) -> "TranscriptError":
        return TranscriptError(
            self.reason,
            message_id=self.message_id,
            index=index,
            detail=self.detail,
        )

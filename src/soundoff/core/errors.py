"""Exception hierarchy shared by the scheduling and delivery pipeline."""

from __future__ import annotations


class SoundOffError(Exception):
    """Base class for all SoundOff errors."""


class InvalidCronExpression(SoundOffError, ValueError):
    def __init__(self, expression: str, reason: str = "") -> None:
        self.expression = expression
        self.reason = reason
        message = f"Invalid cron expression {expression!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidCount(SoundOffError, ValueError):
    def __init__(self, count: int) -> None:
        self.count = count
        super().__init__(f"count must be greater than 0, got {count}")


class StorageError(SoundOffError):
    """A schedule store operation failed at the database layer."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        message = f"{operation} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class SoundCronNotFound(SoundOffError, LookupError):
    def __init__(self, soundcron_id: str) -> None:
        self.soundcron_id = soundcron_id
        super().__init__(f"soundcron {soundcron_id} not found")


class UserError(SoundOffError):
    """An error whose message can be shown to the requesting user as-is."""


class SoundCronAlreadyExists(UserError):
    def __init__(self, guild_id: str, name: str) -> None:
        self.guild_id = guild_id
        self.name = name
        super().__init__(f"soundcron already exists for guild {guild_id} with name {name}")


class StorageLimitExceeded(UserError):
    def __init__(self, requested: int, current: int, maximum: int) -> None:
        self.requested = requested
        self.current = current
        self.maximum = maximum
        super().__init__(
            f"storage limit exceeded: requested {requested}, current {current}, max {maximum}"
        )


class BlacklistError(SoundOffError):
    pass


class BlobFetchError(SoundOffError):
    pass


class VoiceJoinError(SoundOffError):
    pass


class VoiceSendTimeout(SoundOffError, TimeoutError):
    """The voice transport did not accept a frame within the send timeout."""

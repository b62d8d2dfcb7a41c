"""SQLAlchemy models package."""

from soundoff.models.soundcron import SoundCron, SoundCronJob, new_soundcron_id

__all__ = [
    "SoundCron",
    "SoundCronJob",
    "new_soundcron_id",
]

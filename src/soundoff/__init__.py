"""SoundOff — recurring audio clips played into voice channels."""

__version__ = "0.1.0"

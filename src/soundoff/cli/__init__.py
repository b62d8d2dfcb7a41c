"""SoundOff command line."""

"""Core modules for Dragonbreath: configuration, statistics and the session lifecycle."""

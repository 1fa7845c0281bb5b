"""Audio sources and breath detection for Dragonbreath."""

"""
Dragonbreath - Pursed-lip breathing trainer.

Listens to a microphone, detects exhaled breaths, and scores
their duration and intensity over a training session.
"""

__version__ = "0.1.0"
__author__ = "Dragonbreath Contributors"

"""End-of-session feedback for Dragonbreath."""

from dragonbreath.feedback.base import BaseFeedbackGenerator
from dragonbreath.feedback.template import TemplateFeedbackGenerator
from dragonbreath.feedback.gemini import GeminiFeedbackGenerator, create_feedback_generator

__all__ = [
    "BaseFeedbackGenerator",
    "TemplateFeedbackGenerator",
    "GeminiFeedbackGenerator",
    "create_feedback_generator",
]

"""Neuroleaf flashcard learning service"""

__version__ = '1.0.0'

"""mnemo: FSRS scheduling core for flashcard decks."""

from mnemo.consts import VERSION

__version__ = VERSION

"""Subject, document and chunk storage."""
from kortex.library.manager import LibraryManager

__all__ = ["LibraryManager"]

"""KORTEX: a study assistant that answers questions from uploaded PDFs."""

__version__ = "0.1.0"

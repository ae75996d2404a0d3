"""Query understanding, candidate retrieval and ranking for music recommendations."""

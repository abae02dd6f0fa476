"""Text shortening helpers for excerpts and key phrases"""

import re

SENTENCE_END = re.compile(r"[.!?]\s")
ELLIPSIS = "..."


def extract_excerpt(content: str, max_length: int = 150) -> str:
    """
    Short preview of entity content for search results

    Returns the whole text when it fits, else the first sentence if it ends
    within max_length, else a word-boundary truncation with an ellipsis.
    """
    if len(content) <= max_length:
        return content

    match = SENTENCE_END.search(content)
    if match and match.start() < max_length:
        return content[: match.start() + 1]

    truncated = content[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.8:
        return truncated[:last_space] + ELLIPSIS

    return truncated + ELLIPSIS


def extract_key_phrase(content: str, max_length: int = 40) -> str:
    """
    First meaningful phrase of a text, used to name a theme

    Cuts at the first sentence boundary when it occurs within max_length,
    otherwise truncates and backs off to the last word boundary. An ellipsis
    marks any shortening.
    """
    text = content.strip()

    match = SENTENCE_END.search(text)
    if match and match.start() < max_length:
        phrase = text[: match.start()]
    else:
        phrase = text[:max_length]
        last_space = phrase.rfind(" ")
        if last_space > max_length * 0.7:
            phrase = phrase[:last_space]

    if len(phrase) < len(text):
        phrase += ELLIPSIS

    return phrase

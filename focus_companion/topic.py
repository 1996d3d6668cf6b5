"""
============================================================
 Focus Companion — Topic Relevance
============================================================
"""

from focus_companion import config


def is_on_topic(notes: str, subject_keywords, whitelist_keywords=()) -> bool:
    """
    Pure check: do the notes mention any subject or whitelisted keyword?
    Short notes and an empty keyword list are on-topic by default.
    """
    text = (notes or "").strip()
    if len(text) < config.TOPIC_MIN_NOTES_LENGTH:
        return True

    keywords = [k.strip().lower() for k in list(subject_keywords or ()) + list(whitelist_keywords or ())]
    keywords = [k for k in keywords if k]
    if not keywords:
        return True

    lowered = text.lower()
    return any(k in lowered for k in keywords)

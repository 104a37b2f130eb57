"""
Response Formatter - channel-specific rendering of the final reply

Web clients render markdown themselves; SMS gets plain text packed into
carrier-sized segments.
"""
import re

from steambot.core.config import settings
from steambot.db.models.conversation import Channel

CODE_FENCE = re.compile(r"```.*?(?:```|$)", re.DOTALL)
INLINE_CODE = re.compile(r"`([^`\n]+)`")
LINK = re.compile(r"\[([^\]]+)\]\([^)]*\)")
BOLD = re.compile(r"(\*\*|__)(.+?)\1", re.DOTALL)
ITALIC = re.compile(r"(?<![\w*])([*_])(?!\s)(.+?)(?<!\s)\1(?![\w*])")
HEADER = re.compile(r"^[ \t]*#{1,6}[ \t]+", re.MULTILINE)
BULLET = re.compile(r"^[ \t]*(?:[-*+•]|\d+[.)])[ \t]+", re.MULTILINE)
EXCESS_NEWLINES = re.compile(r"\n{3,}")

SENTENCE_END = re.compile(r"[.!?]+[\"')\]]*$")


def strip_markdown(text: str) -> str:
    """Plain-text rendering: styling, links (text kept), code and bullets removed"""
    text = CODE_FENCE.sub("", text)
    text = INLINE_CODE.sub(r"\1", text)
    text = LINK.sub(r"\1", text)
    text = BOLD.sub(r"\2", text)
    text = ITALIC.sub(r"\2", text)
    text = HEADER.sub("", text)
    text = BULLET.sub("", text)
    text = EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def _sentences(text: str) -> list[str]:
    """
    Whitespace-normalized sentences. A sentence ends at a line break or at a
    word ending in terminal punctuation; dots inside a word (addresses,
    domains, prices) never split it.
    """
    sentences: list[str] = []
    for line in text.splitlines():
        words: list[str] = []
        for word in line.split():
            words.append(word)
            if SENTENCE_END.search(word):
                sentences.append(" ".join(words))
                words = []
        if words:
            sentences.append(" ".join(words))
    return sentences


def _pack_words(sentence: str, limit: int) -> list[str]:
    # a word longer than the limit is cut into limit-sized pieces; the pieces
    # concatenate back to the word
    segments: list[str] = []
    current = ""
    for word in sentence.split(" "):
        if len(word) > limit:
            if current:
                segments.append(current)
            pieces = [word[i:i + limit] for i in range(0, len(word), limit)]
            segments.extend(pieces[:-1])
            current = pieces[-1]
        elif not current:
            current = word
        elif len(current) + 1 + len(word) <= limit:
            current = f"{current} {word}"
        else:
            segments.append(current)
            current = word
    if current:
        segments.append(current)
    return segments


def segment_sms(text: str, limit: int | None = None) -> list[str]:
    """
    Split plain text into segments of at most ``limit`` characters.

    Whole sentences are packed greedily; a sentence longer than the limit is
    packed word by word, and a single word longer than the limit is split.
    Segments of a split reply are whitespace-normalized: joined with single
    spaces they give back the text with its whitespace collapsed.
    """
    limit = limit or settings.SMS_SEGMENT_CHARS
    if not text:
        return []
    if len(text) <= limit:
        return [text]

    segments: list[str] = []
    current = ""
    for sentence in _sentences(text):
        if len(sentence) > limit:
            if current:
                segments.append(current)
                current = ""
            segments.extend(_pack_words(sentence, limit))
            continue
        if not current:
            current = sentence
        elif len(current) + 1 + len(sentence) <= limit:
            current = f"{current} {sentence}"
        else:
            segments.append(current)
            current = sentence
    if current:
        segments.append(current)
    return segments


def format_for_channel(text: str, channel: Channel | str) -> str | list[str]:
    """Web: unchanged string. SMS: list of plain-text segments."""
    if Channel(channel) == Channel.SMS:
        return segment_sms(strip_markdown(text or ""))
    return text

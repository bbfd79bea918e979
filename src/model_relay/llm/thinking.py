"""Separate reasoning ("thinking") text from answer text.

Two modes:

SEPARATED
    The backend puts reasoning on its own field; each chunk's reasoning
    becomes a ``Thought`` and its ordinary text a ``Content``.
INLINE
    Reasoning is wrapped in ``<think>...</think>`` inside ordinary text.
    Chunk boundaries can fall anywhere, including inside a tag, so the
    inside-block flag, the thought buffer and a possible partial tag are
    carried between chunks.
"""

from __future__ import annotations

import enum

from model_relay.events import Content, StreamEvent, Thought

OPEN_TAG = "<think>"
CLOSE_TAG = "</think>"


class ThinkingMode(enum.Enum):
    SEPARATED = "separated"
    INLINE = "inline"


def _partial_tag_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of *text* that is a proper prefix of *tag*."""
    for size in range(min(len(text), len(tag) - 1), 0, -1):
        if tag.startswith(text[-size:]):
            return size
    return 0


class ThinkingExtractor:
    """Per-turn state machine turning text deltas into Content/Thought events."""

    def __init__(
        self,
        mode: ThinkingMode = ThinkingMode.INLINE,
        open_tag: str = OPEN_TAG,
        close_tag: str = CLOSE_TAG,
    ) -> None:
        self.mode = mode
        self._open = open_tag
        self._close = close_tag
        self._inside = False
        self._thought = ""
        self._tail = ""

    @property
    def inside_block(self) -> bool:
        return self._inside

    def feed(self, text: str | None = None, reasoning: str | None = None) -> list[StreamEvent]:
        """Process one chunk's ordinary *text* and side-channel *reasoning*."""
        if self.mode is ThinkingMode.SEPARATED:
            events: list[StreamEvent] = []
            if reasoning:
                events.append(Thought(reasoning))
            if text:
                events.append(Content(text))
            return events
        # Inline mode never sees a side channel; surface it if one shows up
        events = [Thought(reasoning)] if reasoning else []
        if text:
            events.extend(self._feed_inline(text))
        return events

    def _feed_inline(self, text: str) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        buf = self._tail + text
        self._tail = ""

        while buf:
            if not self._inside:
                idx = buf.find(self._open)
                if idx >= 0:
                    if idx:
                        events.append(Content(buf[:idx]))
                    self._inside = True
                    buf = buf[idx + len(self._open):]
                    continue
                hold = _partial_tag_suffix(buf, self._open)
                emit = buf[: len(buf) - hold]
                if emit:
                    events.append(Content(emit))
                self._tail = buf[len(buf) - hold:]
                break

            idx = buf.find(self._close)
            if idx >= 0:
                self._thought += buf[:idx]
                if self._thought:
                    events.append(Thought(self._thought))
                self._thought = ""
                self._inside = False
                buf = buf[idx + len(self._close):]
                continue
            hold = _partial_tag_suffix(buf, self._close)
            self._thought += buf[: len(buf) - hold]
            self._tail = buf[len(buf) - hold:]
            break

        return events

    def finish(self) -> list[StreamEvent]:
        """Flush held state at the end of a pass.

        A block still open here (truncated stream) is surfaced as a
        best-effort ``Thought`` rather than dropped.
        """
        events: list[StreamEvent] = []
        if self._inside:
            thought = self._thought + self._tail
            if thought:
                events.append(Thought(thought))
        elif self._tail:
            events.append(Content(self._tail))
        self.reset()
        return events

    def reset(self) -> None:
        self._inside = False
        self._thought = ""
        self._tail = ""

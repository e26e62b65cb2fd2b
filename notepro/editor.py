"""
Edit session for a single note.

Holds a working copy of the note being edited. Every change re-runs format
detection over the joined text blocks and schedules a debounced save
through the context's autosave. The stored format only switches when the
detected value differs, and each switch emits one notice.
"""

import logging
from dataclasses import replace
from typing import Callable, Optional

from .context import NotesContext
from .formats import detect_format
from .types import (
    ContentBlock,
    ImageBlock,
    Note,
    NoteFormat,
    TextBlock,
    new_image_block,
    new_text_block,
    note_text,
)

logger = logging.getLogger(__name__)


def format_notice(fmt: NoteFormat) -> str:
    return f"Format detected: {fmt.value}"


class EditSession:
    """
    Working copy of one note, saved through autosave.

    Call ``close()`` when navigating away so the last edit is not lost.
    """

    def __init__(
        self,
        context: NotesContext,
        note_id: str,
        on_notice: Optional[Callable[[str], None]] = None,
    ):
        note = context.state.note(note_id)
        if note is None:
            raise KeyError(f"Unknown note: {note_id}")
        if note.is_legacy:
            raise ValueError(f"Note {note_id} has not been migrated yet")
        self._context = context
        self._note = note
        self._on_notice = on_notice
        self._last_detected_text = note_text(note)
        self._modified = False

    @property
    def note(self) -> Note:
        return self._note

    @property
    def modified(self) -> bool:
        return self._modified

    # -------------------------------------------------------------------------
    # Edits
    # -------------------------------------------------------------------------

    def set_title(self, title: str) -> Note:
        return self._apply(replace(self._note, title=title), content_changed=False)

    def set_tags(self, tags: Optional[list[str]]) -> Note:
        new_tags = tuple(dict.fromkeys(tags)) if tags is not None else None
        return self._apply(replace(self._note, tags=new_tags), content_changed=False)

    def update_text_block(self, block_id: str, text: str) -> Note:
        """Replace the text of one block, addressed by id."""
        block = self._note.block(block_id)
        if not isinstance(block, TextBlock):
            raise KeyError(f"No text block {block_id} in note {self._note.id}")
        return self._set_content(tuple(
            replace(b, content=text) if b.id == block_id else b
            for b in self._note.content
        ))

    def add_text_block(self, text: str = "") -> TextBlock:
        block = new_text_block(text)
        self._set_content(self._note.content + (block,))
        return block

    def add_image_block(self, data_url: str, alt: Optional[str] = None) -> ImageBlock:
        block = new_image_block(data_url, alt=alt)
        self._set_content(self._note.content + (block,))
        return block

    def delete_block(self, block_id: str) -> Note:
        if self._note.block(block_id) is None:
            raise KeyError(f"No block {block_id} in note {self._note.id}")
        return self._set_content(tuple(b for b in self._note.content if b.id != block_id))

    def move_block(self, block_id: str, index: int) -> Note:
        """Move a block to ``index`` (clamped), keeping every other block in order."""
        block = self._note.block(block_id)
        if block is None:
            raise KeyError(f"No block {block_id} in note {self._note.id}")
        rest = [b for b in self._note.content if b.id != block_id]
        index = max(0, min(index, len(rest)))
        rest.insert(index, block)
        return self._set_content(tuple(rest))

    def apply_ai_content(self, content: str) -> Note:
        """
        Replace the text with an AI result.

        The result becomes the first text block; the other text blocks are
        dropped and image blocks are kept in place.
        """
        blocks: list[ContentBlock] = []
        placed = False
        for b in self._note.content:
            if isinstance(b, TextBlock):
                if not placed:
                    blocks.append(replace(b, content=content))
                    placed = True
            elif isinstance(b, ImageBlock):
                blocks.append(b)
            else:
                raise TypeError(f"Unknown content block: {b!r}")
        if not placed:
            blocks.insert(0, new_text_block(content))
        return self._set_content(tuple(blocks))

    # -------------------------------------------------------------------------
    # Saving
    # -------------------------------------------------------------------------

    def save_now(self) -> None:
        """Save immediately, cancelling the pending debounce."""
        self._context.autosave.flush(self._note.id)
        self._modified = False

    def close(self) -> None:
        """Flush the pending save; call when navigating away from the note."""
        self.save_now()

    def _set_content(self, content: tuple[ContentBlock, ...]) -> Note:
        return self._apply(replace(self._note, content=content), content_changed=True)

    def _apply(self, note: Note, content_changed: bool) -> Note:
        if content_changed:
            note = self._redetect(note)
        self._note = note
        self._modified = True
        self._context.autosave.schedule(note)
        return note

    def _redetect(self, note: Note) -> Note:
        text = note_text(note)
        if not text or text == self._last_detected_text:
            return note
        self._last_detected_text = text
        detected = detect_format(text)
        if detected == note.format:
            return note
        logger.debug("Note %s format %s -> %s", note.id, note.format.value, detected.value)
        if self._on_notice is not None:
            self._on_notice(format_notice(detected))
        return replace(note, format=detected)

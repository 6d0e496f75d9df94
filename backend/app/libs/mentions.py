"""
Mention Composer

Handles ``@name`` (project image) and ``#name`` (data collection) references
typed into the editor chat input.

Each selected mention is written into the text as ``"<name> [n]"`` where ``n``
is its 1-based position in the mention list. On submit the markers are
stripped and replaced by explicit instructions for the model.
"""

import html
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from app.libs.models import ChatMention, MentionData, MentionType, ProjectCollection, ProjectImage

IMAGE_TRIGGER = re.compile(r"\B@([a-zA-Z0-9_.-]*)$")
COLLECTION_TRIGGER = re.compile(r"\B#([a-zA-Z0-9_.-]*)$")

THUMBNAIL_SIZE = 32
SUGGESTION_THUMBNAIL_SIZE = 40


@dataclass
class MentionTrigger:
    """An open ``@``/``#`` trigger immediately before the cursor"""
    type: MentionType
    query: str
    start: int
    end: int


def detect_trigger(text: str, cursor: Optional[int] = None) -> Optional[MentionTrigger]:
    """Find a mention trigger ending at the cursor (end of text by default)."""
    if cursor is None:
        cursor = len(text)
    before = text[:cursor]
    for mention_type, pattern in ((MentionType.IMAGE, IMAGE_TRIGGER), (MentionType.COLLECTION, COLLECTION_TRIGGER)):
        match = pattern.search(before)
        if match:
            return MentionTrigger(mention_type, match.group(1).lower(), match.start(), cursor)
    return None


def thumbnail_url(url: Optional[str], size: int = THUMBNAIL_SIZE) -> str:
    """Rewrite a CDN delivery URL to a square cropped thumbnail."""
    if not url:
        return ""
    return url.replace("/upload/", f"/upload/w_{size},h_{size},c_fill/")


def filter_images(images: Sequence[ProjectImage], query: str) -> List[ProjectImage]:
    # Same-named images collapse to the last one uploaded
    unique: Dict[str, ProjectImage] = {}
    for image in images:
        unique[image.name] = image
    return [img for img in unique.values() if query in img.name.lower()]


def filter_collections(collections: Sequence[ProjectCollection], query: str) -> List[ProjectCollection]:
    unique: Dict[str, ProjectCollection] = {}
    for collection in collections:
        unique[collection.id] = collection
    return [
        c for c in unique.values()
        if query in c.name.lower() or query in c.id.lower()
    ]


def suggest(
    text: str,
    cursor: Optional[int],
    images: Sequence[ProjectImage],
    collections: Sequence[ProjectCollection],
) -> Tuple[Optional[MentionType], List[Dict]]:
    """
    Autocomplete candidates for the trigger at the cursor.

    Returns:
        (trigger type, candidate dicts); (None, []) when no trigger is open
    """
    trigger = detect_trigger(text, cursor)
    if trigger is None:
        return None, []
    if trigger.type == MentionType.IMAGE:
        return trigger.type, [
            {
                "id": img.id,
                "name": img.name,
                "url": img.url,
                "thumbnail_url": thumbnail_url(img.url, SUGGESTION_THUMBNAIL_SIZE),
            }
            for img in filter_images(images, trigger.query)
        ]
    return trigger.type, [{"id": c.id, "name": c.name} for c in filter_collections(collections, trigger.query)]


def _marker_text(name: str, number: int) -> str:
    return f"{name} [{number}]"


def build_prompt(raw_text: str, mentions: Sequence[ChatMention]) -> str:
    """Replace mention markers with asset and database instructions."""
    prompt = raw_text
    for index in range(len(mentions) - 1, -1, -1):
        mention = mentions[index]
        if mention.type == MentionType.IMAGE:
            instruction = (
                f'CRITICAL ASSET INSTRUCTION: For the user-mentioned asset "{mention.data.name}", '
                f"you MUST use this exact URL: {mention.data.url}. "
            )
        else:
            instruction = (
                f'CRITICAL DATABASE INSTRUCTION: For any form related to "{mention.data.name}", '
                f"you MUST use this exact ID in the hidden input: {mention.data.id}. "
            )
        prompt = prompt.replace(_marker_text(mention.data.name, index + 1), "", 1).strip()
        prompt = instruction + prompt
    return prompt


@dataclass
class MentionComposer:
    """Chat input text plus its ordered mention list."""
    text: str = ""
    mentions: List[ChatMention] = field(default_factory=list)

    def select(self, mention_type: MentionType, data: MentionData, cursor: Optional[int] = None) -> str:
        """
        Insert a picked suggestion in place of the open trigger.

        Args:
            mention_type: Image or collection
            data: The picked asset
            cursor: Cursor position in ``self.text`` (end of text by default)

        Returns:
            The updated input text
        """
        self.mentions.append(ChatMention(type=mention_type, data=data))
        number = len(self.mentions)
        if cursor is None:
            cursor = len(self.text)
        trigger = detect_trigger(self.text, cursor)
        insert = _marker_text(data.name, number) + " "
        if trigger is not None:
            self.text = self.text[:trigger.start] + insert + self.text[cursor:]
        else:
            self.text = self.text[:cursor] + insert + self.text[cursor:]
        return self.text

    def remove(self, index: int) -> str:
        """
        Drop the mention at ``index`` and renumber the ones after it.

        Every ``"<name> [k]"`` marker is rewritten in a single pass keyed on its
        number: the removed marker disappears and later markers shift down by one.
        """
        if index < 0 or index >= len(self.mentions):
            raise IndexError(f"No mention at position {index}")
        names_by_number = {i + 1: m.data.name for i, m in enumerate(self.mentions)}
        removed_number = index + 1
        del self.mentions[index]

        names = sorted({re.escape(name) for name in names_by_number.values()}, key=len, reverse=True)
        pattern = re.compile(r"(" + "|".join(names) + r") \[(\d+)\]")
        removed_once = False

        def renumber(match: re.Match) -> str:
            nonlocal removed_once
            name, number = match.group(1), int(match.group(2))
            if names_by_number.get(number) != name:
                return match.group(0)
            if number == removed_number:
                if removed_once:
                    return match.group(0)
                removed_once = True
                return ""
            if number > removed_number:
                return _marker_text(name, number - 1)
            return match.group(0)

        text = pattern.sub(renumber, self.text)
        self.text = re.sub(r"\s\s+", " ", text).strip()
        return self.text

    def render_visual(self) -> str:
        """HTML for the input overlay: escaped text with mentions as pills."""
        visual = html.escape(self.text, quote=False)
        for index in range(len(self.mentions) - 1, -1, -1):
            mention = self.mentions[index]
            name = html.escape(mention.data.name, quote=False)
            marker = f"[{index + 1}]"
            target = f"{name} {marker}"
            if target in visual:
                pill_type = "mention-pill--image" if mention.type == MentionType.IMAGE else "mention-pill--db"
                pill = f'<span class="mention-pill {pill_type}">{name} <strong>{marker}</strong></span>'
                visual = visual.replace(target, pill, 1)
        return visual.replace("\n", "<br>")

    def render_thumbnails(self) -> List[Dict]:
        thumbnails = []
        for index, mention in enumerate(self.mentions):
            thumbnails.append({
                "index": index + 1,
                "type": mention.type.value,
                "name": mention.data.name,
                "thumbnail_url": thumbnail_url(mention.data.url) if mention.type == MentionType.IMAGE else None,
            })
        return thumbnails

    def submit(self) -> Optional[Tuple[str, str]]:
        """
        Consume the input.

        Returns:
            (chat text, model prompt), or None when the input is blank. The
            text and mention list are cleared either way.
        """
        text = self.text.strip()
        mentions = list(self.mentions)
        self.clear()
        if not text:
            return None
        return text, build_prompt(text, mentions)

    def clear(self) -> None:
        self.text = ""
        self.mentions = []

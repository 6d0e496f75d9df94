import re

import pytest

from app.libs.mentions import MentionComposer, build_prompt, detect_trigger, suggest, thumbnail_url
from app.libs.models import MentionData, MentionType, ProjectCollection, ProjectImage

IMAGES = [
    ProjectImage(id="i1", name="logo", url="https://res.cloudinary.com/demo/image/upload/v1/logo.png"),
    ProjectImage(id="i2", name="hero", url="https://res.cloudinary.com/demo/image/upload/v1/hero.png"),
    ProjectImage(id="i3", name="logo", url="https://res.cloudinary.com/demo/image/upload/v2/logo.png"),
]
COLLECTIONS = [ProjectCollection(id="leadsXyz", name="Leads"), ProjectCollection(id="prod01", name="Products")]


def markers(text):
    return [int(n) for n in re.findall(r"\[(\d+)\]", text)]


def compose_three():
    composer = MentionComposer(text="Use @lo")
    composer.select(MentionType.IMAGE, MentionData("i1", "logo", IMAGES[0].url))
    composer.text += "and #le"
    composer.select(MentionType.COLLECTION, MentionData("leadsXyz", "Leads"))
    composer.text += "with @he"
    composer.select(MentionType.IMAGE, MentionData("i2", "hero", IMAGES[1].url))
    return composer


class TestTriggerDetection:
    def test_image_trigger_at_cursor(self):
        trigger = detect_trigger("Add the @Lo", None)
        assert trigger.type == MentionType.IMAGE
        assert trigger.query == "lo"
        assert trigger.start == 8

    def test_collection_trigger(self):
        trigger = detect_trigger("Send to #", None)
        assert trigger.type == MentionType.COLLECTION
        assert trigger.query == ""

    def test_no_trigger_inside_word(self):
        assert detect_trigger("mail me at me@example", None) is None

    def test_trigger_only_counts_text_before_cursor(self):
        assert detect_trigger("Use @logo please", 9).query == "logo"
        assert detect_trigger("Use @logo please", 16) is None


class TestSuggestions:
    def test_images_are_filtered_and_deduplicated_by_name(self):
        mention_type, candidates = suggest("@LO", None, IMAGES, COLLECTIONS)
        assert mention_type == MentionType.IMAGE
        assert [c["id"] for c in candidates] == ["i3"]
        assert "/upload/w_40,h_40,c_fill/" in candidates[0]["thumbnail_url"]

    def test_collections_match_on_name_or_id(self):
        _, by_name = suggest("#lead", None, IMAGES, COLLECTIONS)
        _, by_id = suggest("#prod0", None, IMAGES, COLLECTIONS)
        assert [c["id"] for c in by_name] == ["leadsXyz"]
        assert [c["id"] for c in by_id] == ["prod01"]

    def test_no_trigger_returns_nothing(self):
        assert suggest("plain text", None, IMAGES, COLLECTIONS) == (None, [])

    def test_thumbnail_url_transform(self):
        assert thumbnail_url("https://cdn/x/upload/v1/a.png") == "https://cdn/x/upload/w_32,h_32,c_fill/v1/a.png"
        assert thumbnail_url(None) == ""


class TestComposer:
    def test_select_replaces_trigger_with_marker(self):
        composer = MentionComposer(text="Put @lo")
        text = composer.select(MentionType.IMAGE, MentionData("i1", "logo", IMAGES[0].url))
        assert text == "Put logo [1] "
        assert len(composer.mentions) == 1

    def test_markers_follow_list_positions(self):
        composer = compose_three()
        assert composer.text == "Use logo [1] and Leads [2] with hero [3] "
        assert markers(composer.text) == [1, 2, 3]

    @pytest.mark.parametrize("index", [0, 1, 2])
    def test_removal_keeps_markers_contiguous(self, index):
        composer = compose_three()
        removed = composer.mentions[index].data.name

        text = composer.remove(index)

        assert markers(text) == list(range(1, len(composer.mentions) + 1))
        assert f"{removed} [" not in text
        for position, mention in enumerate(composer.mentions, start=1):
            assert f"{mention.data.name} [{position}]" in text

    def test_removal_collapses_whitespace(self):
        composer = compose_three()
        assert composer.remove(0) == "Use and Leads [1] with hero [2]"

    def test_removal_with_duplicate_names_removes_only_its_marker(self):
        composer = MentionComposer(text="@lo")
        composer.select(MentionType.IMAGE, MentionData("i1", "logo", IMAGES[0].url))
        composer.text += "then @lo"
        composer.select(MentionType.IMAGE, MentionData("i3", "logo", IMAGES[2].url))

        text = composer.remove(0)

        assert text == "then logo [1]"
        assert composer.mentions[0].data.id == "i3"

    def test_remove_out_of_range(self):
        with pytest.raises(IndexError):
            MentionComposer().remove(0)

    def test_visual_rendering_escapes_and_pills(self):
        composer = MentionComposer(text="<b>@lo")
        composer.select(MentionType.IMAGE, MentionData("i1", "logo", IMAGES[0].url))
        visual = composer.render_visual()
        assert visual.startswith("&lt;b&gt;")
        assert '<span class="mention-pill mention-pill--image">logo <strong>[1]</strong></span>' in visual

    def test_submit_builds_prompt_and_clears(self):
        composer = compose_three()

        chat_text, prompt = composer.submit()

        assert chat_text == "Use logo [1] and Leads [2] with hero [3]"
        assert prompt.startswith('CRITICAL ASSET INSTRUCTION: For the user-mentioned asset "logo"')
        assert f"you MUST use this exact URL: {IMAGES[0].url}." in prompt
        assert "you MUST use this exact ID in the hidden input: leadsXyz." in prompt
        assert "[1]" not in prompt and "[2]" not in prompt and "[3]" not in prompt
        assert composer.text == "" and composer.mentions == []

    def test_submit_blank_input(self):
        assert MentionComposer(text="   ").submit() is None


def test_build_prompt_without_mentions_is_identity():
    assert build_prompt("make it blue", []) == "make it blue"

import asyncio
import json

import pytest

from app.auth import create_access_token, end_auth_session, get_auth_session, get_current_user
from app.libs.ai_stream import GenerationError, StreamConsumer
from app.libs.document_store import DocumentNotFoundError, DocumentSnapshot, InMemoryDocumentStore
from app.libs.editor_session import (
    AI_FAILURE_REPLY,
    AI_SUCCESS_REPLY,
    EditorContext,
    close_editor_context,
    get_editor_context,
)
from app.libs.models import ChatMessage, ChatRole, CollaboratorRole, MentionType
from app.libs.project_data import collections_path, images_path, project_path
from app.libs.settings import API_KEYS_DOCUMENT

PAGE = ["<!DOCTYPE html><html><body>", "<h1>Asha Bakes</h1>", "</body></html>"]


async def sse_lines(fragments):
    for fragment in fragments:
        event = {"candidates": [{"content": {"parts": [{"text": fragment}]}}]}
        yield f"data: {json.dumps(event)}"


class FakeGenerator:
    """Stands in for the streaming client; records what it was asked."""

    def __init__(self, fragments=None, error=None):
        self.fragments = fragments or PAGE
        self.error = error
        self.keys = []
        self.requests = []

    def __call__(self, api_key):
        self.keys.append(api_key)
        return self

    async def generate(self, contents, consumer=None, on_preview=None):
        self.requests.append(contents)
        consumer = consumer or StreamConsumer(on_preview)
        if self.error is not None:
            raise self.error
        return await consumer.consume(sse_lines(self.fragments))


async def open_editor(store, user, generator=None, name="Bakery"):
    context = EditorContext(user, store, generator_factory=generator or FakeGenerator())
    project_id = await context.create_project(name)
    return context, project_id


def messages(context):
    return [n["message"] for n in context.drain_notifications()]


class TestPreflight:
    @pytest.mark.asyncio
    async def test_requires_open_project(self, store, register):
        user = await register("asha@example.com")
        context = EditorContext(user, store, generator_factory=FakeGenerator())

        assert await context.generate("Make a page") is False
        assert messages(context) == ["Please create or load a project first."]

    @pytest.mark.asyncio
    async def test_requires_api_key(self, store, register):
        user = await register("asha@example.com")
        context, _ = await open_editor(store, user)

        assert await context.generate("Make a page") is False
        assert messages(context) == ["Could not find API key."]

    @pytest.mark.asyncio
    async def test_stored_key_beats_environment(self, store, register, monkeypatch):
        from app.libs.settings import get_settings

        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        get_settings.cache_clear()
        user = await register("asha@example.com")
        generator = FakeGenerator()
        context, _ = await open_editor(store, user, generator)

        assert await context.resolve_api_key() == "env-key"
        await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "stored-key"})
        assert await context.generate("Make a page") is True
        assert generator.keys == ["stored-key"]

    @pytest.mark.asyncio
    async def test_viewer_cannot_generate(self, store, register):
        owner = await register("asha@example.com")
        viewer = await register("ravi@example.com")
        await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "k"})
        owner_context, project_id = await open_editor(store, owner)
        assert await owner_context.share("ravi@example.com", CollaboratorRole.VIEWER)

        viewer_context = EditorContext(viewer, store, generator_factory=FakeGenerator())
        await viewer_context.load_project(project_id)

        assert viewer_context.role == CollaboratorRole.VIEWER
        assert await viewer_context.generate("Make a page") is False
        assert messages(viewer_context) == ["You have view-only access."]


class TestGeneration:
    @pytest.mark.asyncio
    async def test_successful_generation_persists_page(self, store, register):
        user = await register("asha@example.com", display_name="Asha")
        await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "k"})
        generator = FakeGenerator()
        context, project_id = await open_editor(store, user, generator)
        previews = []
        context.add_preview_listener(previews.append)

        assert await context.submit_chat("Make a page for my bakery") is True

        stored = (await store.get(project_path(project_id))).data
        assert stored["htmlContent"] == "".join(PAGE)
        assert stored["isBeingEditedBy"] is None
        assert stored["isDirty"] is True
        assert [m["role"] for m in stored["chatHistory"]] == ["ai", "user", "ai"]
        assert stored["chatHistory"][-1]["text"] == AI_SUCCESS_REPLY
        assert context.html == "".join(PAGE)
        assert previews[-1] == "".join(PAGE)
        assert not context.is_generating
        assert [v["action"] for v in await context.list_versions()] == ["AI Edit"]
        assert "NEW WEBSITE MODE" in generator.requests[0][-1]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_second_generation_edits_current_page(self, store, register):
        user = await register("asha@example.com")
        await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "k"})
        generator = FakeGenerator()
        context, _ = await open_editor(store, user, generator)
        await context.generate("Make a page")

        await context.generate("Make the heading blue")

        turn = generator.requests[1][-1]["parts"][0]["text"]
        assert "EDITING MODE" in turn
        assert "<h1>Asha Bakes</h1>" in turn

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_page(self, store, register):
        user = await register("asha@example.com")
        await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "k"})
        generator = FakeGenerator()
        context, project_id = await open_editor(store, user, generator)
        await context.generate("Make a page")
        context.drain_notifications()

        generator.error = GenerationError("quota exceeded")
        assert await context.submit_chat("Make it pink") is False

        stored = (await store.get(project_path(project_id))).data
        assert stored["htmlContent"] == "".join(PAGE)
        assert stored["isBeingEditedBy"] is None
        assert stored["chatHistory"][-1]["text"] == AI_FAILURE_REPLY
        assert messages(context) == ["AI Error: quota exceeded"]

    @pytest.mark.asyncio
    async def test_store_request_creates_collections(self, store, register):
        user = await register("asha@example.com")
        await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "k"})
        generator = FakeGenerator()
        context, project_id = await open_editor(store, user, generator)

        await context.generate("Build an online shop for cakes")
        await context.generate("Add a shop banner")

        names = sorted(s.data["name"] for s in await store.query(collections_path(project_id)))
        assert names == ["Orders", "Products"]
        assert "CRITICAL DATABASE INSTRUCTION" in generator.requests[0][-1]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_locked_while_generating(self, store, register):
        user = await register("asha@example.com")
        await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "k"})
        context, _ = await open_editor(store, user)
        context.is_generating = True

        assert await context.generate("Make a page") is False
        assert messages(context) == ["A generation is already in progress."]

    @pytest.mark.asyncio
    async def test_concurrent_requests_run_one_generation(self, register):
        class SlowStore(InMemoryDocumentStore):
            async def get(self, path):
                await asyncio.sleep(0)
                return await super().get(path)

        store = SlowStore()
        user = await register("asha@example.com")
        await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "k"})
        generator = FakeGenerator()
        context, _ = await open_editor(store, user, generator)

        results = await asyncio.gather(context.generate("Make a page"), context.generate("Make another page"))

        assert sorted(results) == [False, True]
        assert generator.keys == ["k"]
        assert messages(context) == ["A generation is already in progress."]
        assert not context.is_generating

    @pytest.mark.asyncio
    async def test_project_deleted_before_generation(self, register):
        class VanishingStore(InMemoryDocumentStore):
            async def update(self, path, fields):
                if fields.get("isBeingEditedBy"):
                    raise DocumentNotFoundError("Document not found", path)
                await super().update(path, fields)

        store = VanishingStore()
        user = await register("asha@example.com")
        await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "k"})
        generator = FakeGenerator()
        context, _ = await open_editor(store, user, generator)

        assert await context.generate("Make a page") is False

        assert messages(context) == ["This project no longer exists."]
        assert context.project_id is None
        assert generator.keys == []
        assert not context.is_generating


class TestChatActions:
    @pytest.fixture
    def context(self, store, register):
        async def build():
            user = await register("asha@example.com")
            await store.set(API_KEYS_DOCUMENT, {"geminiApiKey": "k"})
            context, _ = await open_editor(store, user)
            context.chat_history = [
                ChatMessage(ChatRole.AI, "Welcome"),
                ChatMessage(ChatRole.USER, "Make a page"),
                ChatMessage(ChatRole.AI, AI_SUCCESS_REPLY),
                ChatMessage(ChatRole.USER, "Make it blue"),
            ]
            return context
        return build

    @pytest.mark.asyncio
    async def test_edit_moves_text_to_input(self, context):
        context = await context()
        assert await context.chat_action("edit", 3) == "Make it blue"
        assert context.composer.text == "Make it blue"
        assert len(context.chat_history) == 3

    @pytest.mark.asyncio
    async def test_delete_removes_reply_too(self, context):
        context = await context()
        await context.chat_action("delete", 1)
        assert [m.text for m in context.chat_history] == ["Welcome", "Make it blue"]

    @pytest.mark.asyncio
    async def test_rerun_truncates_and_resubmits(self, context):
        context = await context()
        await context.chat_action("rerun", 1)
        assert [m.role for m in context.chat_history] == [ChatRole.AI, ChatRole.USER, ChatRole.AI]
        assert context.chat_history[1].text == "Make a page"

    @pytest.mark.asyncio
    async def test_ai_messages_have_no_actions(self, context):
        context = await context()
        with pytest.raises(ValueError):
            await context.chat_action("delete", 0)


class TestProjects:
    @pytest.mark.asyncio
    async def test_loading_a_foreign_project_makes_a_copy(self, store, register):
        owner = await register("asha@example.com")
        other = await register("ravi@example.com")
        _, project_id = await open_editor(store, owner, name="Bakery")

        context = EditorContext(other, store)
        copy_id = await context.load_project(project_id)

        assert copy_id != project_id
        copy = (await store.get(project_path(copy_id))).data
        assert copy["name"] == "Copy of Bakery"
        assert copy["userId"] == other.sub
        assert copy["userEmail"] == "ravi@example.com"
        assert context.role == CollaboratorRole.OWNER

    @pytest.mark.asyncio
    async def test_share_and_remove_collaborator(self, store, register):
        owner = await register("asha@example.com")
        editor = await register("ravi@example.com")
        context, project_id = await open_editor(store, owner)

        assert await context.share("RAVI@example.com") is True
        assert await context.share("ravi@example.com") is False
        assert await context.share("ghost@example.com") is False

        project = (await store.get(project_path(project_id))).data
        assert project["sharedWith"] == [editor.sub]
        assert project["collaborators"][editor.sub]["role"] == "editor"
        assert (await EditorContext(editor, store).list_shared_projects())[0]["id"] == project_id

        assert await context.remove_collaborator(editor.sub) is True
        project = (await store.get(project_path(project_id))).data
        assert project["sharedWith"] == []
        assert editor.sub not in project["collaborators"]

    @pytest.mark.asyncio
    async def test_only_owner_deletes(self, store, register):
        owner = await register("asha@example.com")
        other = await register("ravi@example.com")
        _, project_id = await open_editor(store, owner)

        assert await EditorContext(other, store).delete_project(project_id) is False
        owner_context = EditorContext(owner, store)
        assert await owner_context.delete_project(project_id) is True
        assert not (await store.get(project_path(project_id))).exists

    @pytest.mark.asyncio
    async def test_save_and_restore_versions(self, store, register):
        user = await register("asha@example.com")
        context, project_id = await open_editor(store, user)
        context.html = "<p>first</p>"
        await context.save_project()
        context.html = "<p>second</p>"
        await context.save_project()

        versions = await context.list_versions()
        assert [v["action"] for v in versions] == ["Manual Save", "Manual Save"]

        assert await context.restore_version(versions[-1]["id"]) is True
        assert (await store.get(project_path(project_id))).data["htmlContent"] == "<p>first</p>"
        assert context.html == "<p>first</p>"
        assert (await context.list_versions())[0]["action"].startswith("Restored from version saved at")

    @pytest.mark.asyncio
    async def test_list_projects_flags_stale_deployments(self, store, register):
        user = await register("asha@example.com")
        _, project_id = await open_editor(store, user)
        await store.update(project_path(project_id), {"deploymentUrl": "https://bakery.example", "isDirty": True})

        cards = await EditorContext(user, store).list_projects()

        assert cards[0]["id"] == project_id
        assert cards[0]["needsUpdate"] is True


class TestSync:
    @pytest.mark.asyncio
    async def test_remote_edits_are_applied(self, store, register):
        user = await register("asha@example.com")
        context, project_id = await open_editor(store, user)

        await store.update(project_path(project_id), {"htmlContent": "<p>remote</p>"})

        assert context.html == "<p>remote</p>"

    @pytest.mark.asyncio
    async def test_stale_snapshot_is_ignored(self, store, register):
        user = await register("asha@example.com")
        context, project_id = await open_editor(store, user)
        await store.update(project_path(project_id), {"htmlContent": "<p>new</p>"})

        context.apply_snapshot(DocumentSnapshot(project_path(project_id), {"htmlContent": "<p>old</p>"}, revision=1))

        assert context.html == "<p>new</p>"

    @pytest.mark.asyncio
    async def test_other_editor_notice(self, store, register):
        user = await register("asha@example.com")
        context, project_id = await open_editor(store, user)

        await store.update(project_path(project_id), {"isBeingEditedBy": {"uid": "someone", "name": "Ravi"}})
        assert context.editing_notice == "Ravi is editing..."

        await store.update(project_path(project_id), {"isBeingEditedBy": None})
        assert context.editing_notice is None

    @pytest.mark.asyncio
    async def test_deleted_project_resets_workspace(self, store, register):
        user = await register("asha@example.com")
        context, project_id = await open_editor(store, user)

        await store.delete(project_path(project_id))

        assert context.project_id is None
        assert messages(context) == ["This project no longer exists."]

    @pytest.mark.asyncio
    async def test_sign_out_closes_project(self, store, register):
        user = await register("asha@example.com")
        context, _ = await open_editor(store, user)
        context.on_auth_state_changed(None)
        assert context.project_id is None and context.user is None


class TestAssets:
    @pytest.mark.asyncio
    async def test_rename_and_delete_image(self, store, register):
        user = await register("asha@example.com")
        context, project_id = await open_editor(store, user)
        image_id = await store.add(images_path(project_id), {"name": "hero", "url": "https://cdn.example/h.png",
                                                              "createdAt": "2026-01-01T00:00:00+00:00"})
        await context.refresh_assets()

        assert await context.rename_asset(MentionType.IMAGE, image_id, "banner") is True
        assert context.images[0].name == "banner"
        assert await context.delete_asset(MentionType.IMAGE, image_id) is True
        assert context.images == []

    @pytest.mark.asyncio
    async def test_mentions_use_project_assets(self, store, register):
        user = await register("asha@example.com")
        context, project_id = await open_editor(store, user)
        await context.create_collection("Leads")
        collection_id = context.collections[0].id

        suggestions = context.suggest_mentions("Send the form to #Le")
        text = context.select_mention("Send the form to #Le", MentionType.COLLECTION, collection_id)

        assert suggestions == (MentionType.COLLECTION, [{"id": collection_id, "name": "Leads"}])
        assert text == "Send the form to Leads [1] "
        with pytest.raises(KeyError):
            context.select_mention(text, MentionType.IMAGE, "missing")


class TestRegistry:
    def test_one_context_per_user(self, store):
        from app.auth import User

        user = User(sub="u1", email="asha@example.com")
        first = get_editor_context(user)
        assert get_editor_context(user) is first
        close_editor_context("u1")
        assert get_editor_context(user) is not first

    @pytest.mark.asyncio
    async def test_ending_the_auth_session_closes_the_project(self, store, register):
        user = await register("asha@example.com")
        context = get_editor_context(user)
        await context.create_project("Bakery")

        end_auth_session(user.sub)

        assert context.project_id is None
        assert context.user is None

    @pytest.mark.asyncio
    async def test_token_refresh_updates_the_session_user(self, store, register):
        user = await register("asha@example.com", display_name="Asha")
        context = get_editor_context(user)
        await store.update(f"users/{user.sub}", {"displayName": "Asha R"})

        await get_current_user(create_access_token({"sub": user.sub}))

        assert context.user.display_name == "Asha R"

        close_editor_context(user.sub)
        await get_current_user(create_access_token({"sub": user.sub}))
        assert get_auth_session(user.sub)._listeners == []

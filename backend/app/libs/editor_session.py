"""
Editor Session

One ``EditorContext`` per signed-in editor: the open project, its HTML, chat
history, pending mentions, the user's role and the generation lock. The
context stays in sync with the stored project through a live document
subscription, and every action reports its outcome as notifications.

Generation flow:
    1. Take the lock, then pre-flight checks (project, role, API key)
    2. Mark the project as being edited, find or create form collections
    3. Stream the page, pushing throttled previews
    4. Always persist html/chat, clear the edit marker and save an "AI Edit" version
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.auth import AuthClient, User, get_auth_session
from app.libs.ai_stream import GeminiStreamClient, GenerationError, StreamConsumer, post_process
from app.libs.ai_system_prompt import build_contents, build_database_instructions, build_user_turn, detect_intent
from app.libs.cdn_client import CloudinaryClient, UploadError, image_name_from_filename
from app.libs.deploy_client import DeployClient, DeploymentError, slugify
from app.libs.document_store import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    DocumentNotFoundError,
    DocumentSnapshot,
    DocumentStore,
    DocumentStoreError,
    get_document_store,
)
from app.libs.mentions import MentionComposer, suggest
from app.libs.models import (
    ChatMessage,
    ChatRole,
    CollaboratorRole,
    GenerationState,
    MentionData,
    MentionType,
    Notification,
    NotificationType,
    ProjectCollection,
    ProjectImage,
)
from app.libs.project_data import (
    PROJECTS_COLLECTION,
    collections_path,
    images_path,
    list_submissions,
    project_path,
    versions_path,
)
from app.libs.settings import API_KEYS_DOCUMENT, get_settings

logger = logging.getLogger("stylo.editor")

WELCOME_MESSAGE = "Hello! How can I help you build a website today?"
AI_SUCCESS_REPLY = "Here are the requested refinements. What would you like to do next?"
AI_FAILURE_REPLY = "Sorry, I encountered an error. Please try again or rephrase your request."
APPLYING_CHANGES_HTML = (
    '<body><p style="font-family: sans-serif; text-align: center; padding: 2rem;">Applying changes...</p></body>'
)

GeneratorFactory = Callable[[str], GeminiStreamClient]
PreviewListener = Callable[[str], None]


class EditorContext:
    """Per-session editor state."""

    def __init__(self, user: User, store: Optional[DocumentStore] = None,
                 generator_factory: Optional[GeneratorFactory] = None,
                 cdn: Optional[CloudinaryClient] = None,
                 deployer_factory: Optional[Callable[[], DeployClient]] = None):
        self.user: Optional[User] = user
        self.store = store or get_document_store()
        self.generator_factory = generator_factory or (lambda api_key: GeminiStreamClient(api_key))
        self.cdn = cdn
        self.deployer_factory = deployer_factory or DeployClient

        self.project_id: Optional[str] = None
        self.project: Optional[Dict[str, Any]] = None
        self.html = ""
        self.chat_history: List[ChatMessage] = [ChatMessage(ChatRole.AI, WELCOME_MESSAGE)]
        self.composer = MentionComposer()
        self.role: Optional[CollaboratorRole] = None
        self.images: List[ProjectImage] = []
        self.collections: List[ProjectCollection] = []

        self.is_generating = False
        self.generation_state = GenerationState.IDLE
        self.editing_notice: Optional[str] = None
        self.notifications: List[Notification] = []

        self._last_revision = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._auth_unsubscribe: Optional[Callable[[], None]] = None
        self._preview_listeners: List[PreviewListener] = []

    # =========================================================================
    # NOTIFICATIONS & PREVIEW
    # =========================================================================

    def notify(self, message: str, type: NotificationType = NotificationType.SUCCESS, blocking: bool = False) -> None:
        if type == NotificationType.ERROR:
            logger.warning("[%s] %s", self.project_id or "-", message)
        self.notifications.append(Notification(message, type, blocking))

    def drain_notifications(self) -> List[Dict[str, Any]]:
        drained = [n.to_dict() for n in self.notifications]
        self.notifications = []
        return drained

    def last_error(self) -> Optional[str]:
        """Most recent pending error message, left in the queue."""
        errors = [n.message for n in self.notifications if n.type == NotificationType.ERROR]
        return errors[-1] if errors else None

    def add_preview_listener(self, listener: PreviewListener) -> Callable[[], None]:
        self._preview_listeners.append(listener)

        def remove():
            if listener in self._preview_listeners:
                self._preview_listeners.remove(listener)

        return remove

    def push_preview(self, html: str) -> None:
        for listener in list(self._preview_listeners):
            listener(html)

    def on_auth_state_changed(self, user: Optional[User]) -> None:
        """Auth listener: signing out closes the open project."""
        if user is None:
            self.reset_workspace()
        self.user = user

    def follow_auth(self, client: AuthClient) -> None:
        """Listen to ``client`` for sign-in changes, seeding it with this session's user."""
        if client.current_user is None:
            client.current_user = self.user
        self._auth_unsubscribe = client.on_auth_state_changed(self.on_auth_state_changed)

    # =========================================================================
    # PROJECT SYNC
    # =========================================================================

    def reset_workspace(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.project_id = None
        self.project = None
        self.html = ""
        self.role = None
        self.chat_history = [ChatMessage(ChatRole.AI, WELCOME_MESSAGE)]
        self.composer.clear()
        self.images = []
        self.collections = []
        self.editing_notice = None
        self._last_revision = 0
        self.push_preview("")

    async def refresh_assets(self) -> None:
        if not self.project_id:
            return
        try:
            image_docs = await self.store.query(images_path(self.project_id), order_by="createdAt", descending=True)
            collection_docs = await self.store.query(
                collections_path(self.project_id), order_by="createdAt", descending=True
            )
        except DocumentStoreError as e:
            logger.error("Could not load project assets for %s: %s", self.project_id, e)
            return
        self.images = [
            ProjectImage(id=d.id, name=d.data.get("name", ""), url=d.data.get("url", ""), public_id=d.data.get("publicId"))
            for d in image_docs
        ]
        self.collections = [ProjectCollection(id=d.id, name=d.data.get("name", "")) for d in collection_docs]

    async def _subscribe(self, project_id: str) -> None:
        self.reset_workspace()
        self.project_id = project_id
        await self.refresh_assets()
        self._unsubscribe = await self.store.subscribe_document(
            project_path(project_id), self.apply_snapshot, on_error=self._on_subscription_error
        )

    def _on_subscription_error(self, error: Exception) -> None:
        logger.error("Real-time listener error: %s", error)
        self.notify("Lost connection to the project. Please refresh.", NotificationType.ERROR)

    def apply_snapshot(self, snapshot: DocumentSnapshot) -> None:
        """Merge a server snapshot of the open project into the session."""
        if snapshot.path != project_path(self.project_id or ""):
            return
        if not snapshot.exists:
            self.notify("This project no longer exists.", NotificationType.ERROR)
            self.reset_workspace()
            return
        if snapshot.revision < self._last_revision:
            logger.debug("Ignoring stale snapshot r%s of %s", snapshot.revision, snapshot.path)
            return
        self._last_revision = snapshot.revision

        data = snapshot.data
        self.project = snapshot.to_dict()
        uid = self.user.sub if self.user else None
        collaborator = (data.get("collaborators") or {}).get(uid) or {}
        self.role = CollaboratorRole(collaborator.get("role", CollaboratorRole.VIEWER.value))
        if data.get("userId") == uid:
            self.role = CollaboratorRole.OWNER

        editor = data.get("isBeingEditedBy")
        if editor and editor.get("uid") != uid:
            self.editing_notice = f"{editor.get('name')} is editing..."
        else:
            self.editing_notice = None

        html = data.get("htmlContent") or ""
        if html != self.html and not self.is_generating:
            self.html = html
            self.push_preview(html)

        history = [ChatMessage.from_dict(m) for m in data.get("chatHistory") or []]
        if history != self.chat_history and not self.is_generating:
            self.chat_history = history or [ChatMessage(ChatRole.AI, f'Project "{data.get("name")}" loaded.')]

    def _require_project(self) -> bool:
        if not self.project_id:
            self.notify("Please create or load a project first.", NotificationType.ERROR)
            return False
        return True

    def _can_edit(self) -> bool:
        return self.role in (CollaboratorRole.OWNER, CollaboratorRole.EDITOR)

    def _owner_entry(self) -> Dict[str, Any]:
        return {"email": self.user.email, "displayName": self.user.display_name, "role": CollaboratorRole.OWNER.value}

    # =========================================================================
    # PROJECT LIFECYCLE
    # =========================================================================

    async def load_project(self, project_id: str) -> Optional[str]:
        """
        Open a project.

        Owners and collaborators subscribe to it directly. Anyone else gets an
        editable copy in their own account.

        Returns:
            Id of the opened project, or None when it could not be opened
        """
        if not self.user:
            self.notify("Please sign in to load a project.", NotificationType.ERROR)
            return None
        if self.project_id == project_id:
            return project_id

        snapshot = await self.store.get(project_path(project_id))
        if not snapshot.exists:
            self.notify("This project no longer exists.", NotificationType.ERROR)
            return None
        data = snapshot.data
        if data.get("userId") == self.user.sub or (data.get("collaborators") or {}).get(self.user.sub):
            await self._subscribe(project_id)
            return project_id

        try:
            copy_id = await self.store.add(PROJECTS_COLLECTION, {
                "name": f"Copy of {data.get('name')}",
                "htmlContent": data.get("htmlContent", ""),
                "chatHistory": [{"role": "ai", "text": f"This project was started from the '{data.get('name')}' template."}],
                "userId": self.user.sub,
                "userEmail": self.user.email,
                "createdAt": SERVER_TIMESTAMP,
                "isDirty": False,
                "sharedWith": [],
                "collaborators": {self.user.sub: self._owner_entry()},
            })
        except DocumentStoreError as e:
            self.notify(f"Error importing template: {e.message}", NotificationType.ERROR)
            return None
        self.notify("Creating your editable copy of the template...")
        await self._subscribe(copy_id)
        return copy_id

    async def create_project(self, name: str) -> Optional[str]:
        name = name.strip()
        if not name:
            self.notify("Please enter a name.", NotificationType.ERROR)
            return None
        project_id = await self.store.add(PROJECTS_COLLECTION, {
            "name": name,
            "siteName": slugify(name),
            "htmlContent": "",
            "chatHistory": [{"role": "ai", "text": f'Let\'s start building "{name}"! What should we create first?'}],
            "userId": self.user.sub,
            "userEmail": self.user.email,
            "isDirty": False,
            "createdAt": SERVER_TIMESTAMP,
            "sharedWith": [],
            "collaborators": {self.user.sub: self._owner_entry()},
        })
        logger.info("Created project %s for %s", project_id, self.user.sub)
        await self._subscribe(project_id)
        return project_id

    async def save_project(self, name: Optional[str] = None) -> bool:
        """Save the open project, or create one from the current workspace."""
        name = (name or (self.project or {}).get("name") or "").strip()
        if not name:
            self.notify("Please enter a name.", NotificationType.ERROR)
            return False
        if self.project_id and self.role == CollaboratorRole.VIEWER:
            self.notify("You have view-only access.", NotificationType.ERROR)
            return False
        chat = [m.to_dict() for m in self.chat_history]
        try:
            if self.project_id:
                await self.store.update(project_path(self.project_id), {
                    "name": name, "htmlContent": self.html, "chatHistory": chat,
                })
                await self.save_version("Manual Save")
            else:
                html, history = self.html, list(self.chat_history)
                project_id = await self.store.add(PROJECTS_COLLECTION, {
                    "name": name,
                    "siteName": slugify(name),
                    "htmlContent": html,
                    "chatHistory": chat,
                    "userId": self.user.sub,
                    "userEmail": self.user.email,
                    "isDirty": False,
                    "createdAt": SERVER_TIMESTAMP,
                    "sharedWith": [],
                    "collaborators": {self.user.sub: self._owner_entry()},
                })
                await self._subscribe(project_id)
                self.html, self.chat_history = html, history
        except DocumentStoreError as e:
            self.notify(f"Save failed: {e.message}", NotificationType.ERROR)
            return False
        self.notify("Project saved successfully!")
        return True

    async def delete_project(self, project_id: str) -> bool:
        snapshot = await self.store.get(project_path(project_id))
        if not snapshot.exists:
            self.notify("This project no longer exists.", NotificationType.ERROR)
            return False
        if snapshot.data.get("userId") != self.user.sub:
            self.notify("Only the owner can delete this project.", NotificationType.ERROR)
            return False
        await self.store.delete(project_path(project_id))
        if self.project_id == project_id:
            self.reset_workspace()
        return True

    async def list_projects(self) -> List[Dict[str, Any]]:
        snapshots = await self.store.query(
            PROJECTS_COLLECTION, where=[("userId", "==", self.user.sub)], order_by="createdAt", descending=True
        )
        return [_project_card(s) for s in snapshots]

    async def list_shared_projects(self) -> List[Dict[str, Any]]:
        snapshots = await self.store.query(
            PROJECTS_COLLECTION, where=[("sharedWith", "array-contains", self.user.sub)]
        )
        return [_project_card(s) for s in snapshots]

    async def deploy(self, project_id: str) -> Optional[str]:
        snapshot = await self.store.get(project_path(project_id))
        if not snapshot.exists:
            self.notify("This project no longer exists.", NotificationType.ERROR)
            return None
        data = snapshot.data
        site_name = data.get("siteName") or slugify(data.get("name", ""))
        try:
            url = await self.deployer_factory().deploy(data.get("htmlContent", ""), site_name)
            await self.store.update(project_path(project_id), {
                "deploymentUrl": url, "siteName": site_name, "isDirty": False,
            })
        except (DeploymentError, DocumentStoreError) as e:
            self.notify(f"Deploy failed: {e.message}", NotificationType.ERROR)
            return None
        self.notify("Deployment successful!")
        return url

    # =========================================================================
    # VERSIONS
    # =========================================================================

    async def save_version(self, action: str = "Manual Save") -> None:
        if not self.project_id or self.role == CollaboratorRole.VIEWER:
            return
        try:
            await self.store.add(versions_path(self.project_id), {
                "htmlContent": self.html,
                "chatHistory": [m.to_dict() for m in self.chat_history],
                "savedAt": SERVER_TIMESTAMP,
                "savedBy": {"uid": self.user.sub, "name": self.user.name},
                "action": action,
            })
        except DocumentStoreError as e:
            logger.error("Failed to save version: %s", e)
            self.notify("Could not save project version.", NotificationType.ERROR)

    async def list_versions(self) -> List[Dict[str, Any]]:
        if not self.project_id:
            return []
        snapshots = await self.store.query(versions_path(self.project_id), order_by="savedAt", descending=True)
        return [
            {"id": s.id, "action": s.data.get("action"), "savedAt": s.data.get("savedAt"),
             "savedBy": s.data.get("savedBy")}
            for s in snapshots
        ]

    async def restore_version(self, version_id: str) -> bool:
        if not self.project_id or not self._can_edit():
            self.notify("You don't have permission to restore versions.", NotificationType.ERROR)
            return False
        try:
            version = await self.store.get(f"{versions_path(self.project_id)}/{version_id}")
            if not version.exists:
                raise DocumentStoreError("Version not found.")
            await self.store.update(project_path(self.project_id), {
                "htmlContent": version.data.get("htmlContent", ""),
                "chatHistory": version.data.get("chatHistory", []),
            })
        except DocumentStoreError as e:
            self.notify(f"Restore failed: {e.message}", NotificationType.ERROR)
            return False
        saved_at = version.data.get("savedAt")
        saved_time = datetime.fromisoformat(saved_at).strftime("%H:%M:%S") if saved_at else "unknown time"
        await self.save_version(f"Restored from version saved at {saved_time}")
        self.notify("Project restored successfully!")
        return True

    # =========================================================================
    # COLLABORATION
    # =========================================================================

    async def share(self, email: str, role: CollaboratorRole = CollaboratorRole.EDITOR) -> bool:
        email = email.strip().lower()
        if not self.project_id or not email:
            return False
        if not self._can_edit():
            self.notify("You have view-only access.", NotificationType.ERROR)
            return False
        try:
            matches = await self.store.query("users", where=[("email", "==", email)], limit=1)
            if not matches:
                raise DocumentStoreError(
                    f'User with email "{email}" not found. Please ensure they have logged into Stylo AI at least once.'
                )
            invited = matches[0]
            if invited.id in ((self.project or {}).get("collaborators") or {}):
                raise DocumentStoreError("This user is already a collaborator on the project.")
            await self.store.update(project_path(self.project_id), {
                "sharedWith": ArrayUnion([invited.id]),
                f"collaborators.{invited.id}": {
                    "email": invited.data.get("email"),
                    "displayName": invited.data.get("displayName") or invited.data.get("email"),
                    "photoURL": invited.data.get("photoURL"),
                    "role": role.value,
                },
            })
        except DocumentStoreError as e:
            self.notify(f"Error: {e.message}", NotificationType.ERROR)
            return False
        self.notify("User added to project!")
        return True

    async def remove_collaborator(self, uid: str) -> bool:
        if self.role != CollaboratorRole.OWNER or not self.project_id:
            self.notify("Only the owner can remove collaborators.", NotificationType.ERROR)
            return False
        try:
            await self.store.update(project_path(self.project_id), {
                "sharedWith": ArrayRemove([uid]),
                f"collaborators.{uid}": DELETE_FIELD,
            })
        except DocumentStoreError as e:
            self.notify(f"Error removing collaborator: {e.message}", NotificationType.ERROR)
            return False
        self.notify("Collaborator removed.")
        return True

    # =========================================================================
    # CHAT & MENTIONS
    # =========================================================================

    def suggest_mentions(self, text: str, cursor: Optional[int] = None):
        self.composer.text = text
        return suggest(text, cursor, self.images, self.collections)

    def select_mention(self, text: str, mention_type: MentionType, asset_id: str, cursor: Optional[int] = None) -> str:
        self.composer.text = text
        if mention_type == MentionType.IMAGE:
            asset = next((i for i in self.images if i.id == asset_id), None)
            data = MentionData(id=asset.id, name=asset.name, url=asset.url) if asset else None
        else:
            asset = next((c for c in self.collections if c.id == asset_id), None)
            data = MentionData(id=asset.id, name=asset.name) if asset else None
        if data is None:
            raise KeyError(asset_id)
        return self.composer.select(mention_type, data, cursor)

    def remove_mention(self, text: str, index: int) -> str:
        self.composer.text = text
        return self.composer.remove(index)

    async def submit_chat(self, text: Optional[str] = None, persona: Optional[str] = None) -> bool:
        """Push the input as a user message and run a generation for it."""
        if text is not None:
            self.composer.text = text
        submission = self.composer.submit()
        if submission is None:
            return False
        chat_text, prompt = submission
        self.chat_history.append(ChatMessage(ChatRole.USER, chat_text))
        return await self.generate(prompt, persona)

    async def chat_action(self, action: str, index: int, persona: Optional[str] = None) -> Optional[str]:
        """
        Act on a user message in the chat history.

        Args:
            action: ``edit`` moves the text back into the input, ``rerun``
                drops everything from the message on and resubmits it,
                ``delete`` removes the message and the AI reply after it
            index: Position in the chat history

        Returns:
            The input text after ``edit``, otherwise None
        """
        if index < 0 or index >= len(self.chat_history):
            raise IndexError(f"No chat message at position {index}")
        message = self.chat_history[index]
        if message.role != ChatRole.USER:
            raise ValueError("Only user messages support chat actions")

        if action == "edit":
            self.composer.text = message.text
            del self.chat_history[index]
            return message.text
        if action == "rerun":
            del self.chat_history[index:]
            await self.submit_chat(message.text, persona)
            return None
        if action == "delete":
            follows_ai = index + 1 < len(self.chat_history) and self.chat_history[index + 1].role == ChatRole.AI
            del self.chat_history[index:index + (2 if follows_ai else 1)]
            return None
        raise ValueError(f"Unknown chat action: {action}")

    # =========================================================================
    # GENERATION
    # =========================================================================

    async def resolve_api_key(self) -> Optional[str]:
        try:
            snapshot = await self.store.get(API_KEYS_DOCUMENT)
        except DocumentStoreError as e:
            logger.error("Could not read API keys: %s", e)
            snapshot = None
        if snapshot is not None and snapshot.exists and snapshot.data.get("geminiApiKey"):
            return snapshot.data["geminiApiKey"]
        return get_settings().gemini_api_key

    async def find_or_create_collection(self, name: str) -> str:
        existing = next((c for c in self.collections if c.name.lower() == name.lower()), None)
        if existing:
            return existing.id
        collection_id = await self.store.add(collections_path(self.project_id), {
            "name": name, "createdAt": SERVER_TIMESTAMP,
        })
        self.collections.append(ProjectCollection(id=collection_id, name=name))
        self.notify(f'A "{name}" database was created.')
        return collection_id

    async def _prepare_collections(self, prompt: str) -> Tuple[str, str, str]:
        """Returns (database instructions, products id, orders id)."""
        intent = detect_intent(prompt)
        products_id = orders_id = contact_id = ""
        if not intent.has_forms:
            return "", "", ""
        try:
            if intent.name == "ecommerce":
                products_id = await self.find_or_create_collection("Products")
                orders_id = await self.find_or_create_collection("Orders")
            else:
                contact_id = await self.find_or_create_collection("Leads")
        except DocumentStoreError as e:
            self.notify(f"Error setting up databases: {e.message}", NotificationType.ERROR)
        return build_database_instructions(contact_id, products_id, orders_id), products_id, orders_id

    async def generate(self, prompt: str, persona: Optional[str] = None) -> bool:
        """
        Run one streamed generation for the open project.

        Returns:
            True when a page was generated. Pre-flight failures and generation
            errors return False after recording a notification.
        """
        if self.is_generating:
            self.notify("A generation is already in progress.", NotificationType.ERROR)
            return False
        if not self.user:
            self.notify("Please sign in first.", NotificationType.ERROR)
            return False
        if not self._require_project():
            return False
        if self.role == CollaboratorRole.VIEWER:
            self.notify("You have view-only access.", NotificationType.ERROR)
            return False

        # Held across every await below, including the key lookup
        self.is_generating = True
        self.generation_state = GenerationState.REQUESTING
        succeeded = False
        try:
            succeeded = await self._run_generation(prompt, persona)
        finally:
            self.is_generating = False
            if not succeeded:
                self.generation_state = GenerationState.FAILED
        return succeeded

    async def _run_generation(self, prompt: str, persona: Optional[str]) -> bool:
        api_key = await self.resolve_api_key()
        if not api_key:
            self.notify("Could not find API key.", NotificationType.ERROR)
            return False

        project_id = self.project_id
        try:
            await self.store.update(project_path(project_id), {
                "isBeingEditedBy": {"uid": self.user.sub, "name": self.user.name},
            })
        except DocumentNotFoundError:
            self.notify("This project no longer exists.", NotificationType.ERROR)
            self.reset_workspace()
            return False
        except DocumentStoreError as e:
            logger.error("Could not mark %s as being edited: %s", project_id, e)
            self.notify(f"Error starting generation: {e.message}", NotificationType.ERROR)
            return False

        previous_html = self.html
        succeeded = False
        try:
            database_instructions, products_id, orders_id = await self._prepare_collections(prompt)
            user_turn = build_user_turn(prompt, self.html, persona, database_instructions)
            contents = build_contents(user_turn)

            if self.html.strip():
                self.push_preview(APPLYING_CHANGES_HTML)

            consumer = StreamConsumer(self.push_preview)
            try:
                raw_html = await self.generator_factory(api_key).generate(contents, consumer=consumer)
                self.html = post_process(raw_html, project_id, products_id, orders_id)
                self.push_preview(self.html)
                self.chat_history.append(ChatMessage(ChatRole.AI, AI_SUCCESS_REPLY))
                succeeded = True
            except GenerationError as e:
                self.html = previous_html
                self.notify(f"AI Error: {e.message}", NotificationType.ERROR)
                self.chat_history.append(ChatMessage(ChatRole.AI, AI_FAILURE_REPLY))
            self.generation_state = consumer.state
        finally:
            try:
                await self.store.update(project_path(project_id), {
                    "htmlContent": self.html,
                    "chatHistory": [m.to_dict() for m in self.chat_history],
                    "isBeingEditedBy": None,
                    "isDirty": True,
                })
                await self.save_version("AI Edit")
            except DocumentStoreError as e:
                logger.error("Could not persist generation for %s: %s", project_id, e)
                self.notify("Could not save AI-generated changes.", NotificationType.ERROR)
        return succeeded

    # =========================================================================
    # PROJECT ASSETS
    # =========================================================================

    async def create_collection(self, name: str) -> Optional[str]:
        name = name.strip()
        if not name or not self._require_project():
            return None
        try:
            collection_id = await self.store.add(collections_path(self.project_id), {
                "name": name, "createdAt": SERVER_TIMESTAMP,
            })
        except DocumentStoreError as e:
            self.notify(f"Error creating collection: {e.message}", NotificationType.ERROR)
            return None
        self.notify("Collection created!")
        await self.refresh_assets()
        return collection_id

    async def submissions(self, collection_id: str) -> List[Dict[str, Any]]:
        if not self.project_id:
            self.notify("No active project selected.", NotificationType.ERROR)
            return []
        try:
            return await list_submissions(self.store, self.project_id, collection_id)
        except DocumentStoreError as e:
            logger.error("Error loading submissions: %s", e)
            self.notify("Failed to load submissions.", NotificationType.ERROR)
            return []

    async def upload_images(self, files: List[Tuple[str, bytes, str]]) -> int:
        """
        Upload images to the CDN and register them with the project.

        Args:
            files: (filename, content, content type) triples

        Returns:
            Number of images stored
        """
        if not self._require_project() or not files:
            return 0
        cdn = self.cdn or CloudinaryClient()
        stored = 0
        for filename, content, content_type in files:
            try:
                uploaded = await cdn.upload(filename, content, content_type)
                await self.store.add(images_path(self.project_id), {
                    "name": image_name_from_filename(filename),
                    "url": uploaded["secure_url"],
                    "publicId": uploaded["public_id"],
                    "createdAt": SERVER_TIMESTAMP,
                })
                stored += 1
            except (UploadError, DocumentStoreError) as e:
                logger.error("Upload of %s failed: %s", filename, e)
                self.notify(f"Failed to upload {filename}.", NotificationType.ERROR)
        await self.refresh_assets()
        return stored

    async def rename_asset(self, asset_type: MentionType, asset_id: str, name: str) -> bool:
        name = name.strip()
        if not name or not self._require_project():
            return False
        path = images_path(self.project_id) if asset_type == MentionType.IMAGE else collections_path(self.project_id)
        try:
            await self.store.update(f"{path}/{asset_id}", {"name": name})
        except DocumentStoreError as e:
            self.notify(f"Rename failed: {e.message}", NotificationType.ERROR)
            return False
        self.notify("Rename successful!")
        await self.refresh_assets()
        return True

    async def delete_asset(self, asset_type: MentionType, asset_id: str) -> bool:
        if not self._require_project():
            return False
        path = images_path(self.project_id) if asset_type == MentionType.IMAGE else collections_path(self.project_id)
        try:
            await self.store.delete(f"{path}/{asset_id}")
        except DocumentStoreError as e:
            self.notify(f"Delete failed: {e.message}", NotificationType.ERROR)
            return False
        if asset_type == MentionType.IMAGE:
            self.images = [i for i in self.images if i.id != asset_id]
        else:
            self.collections = [c for c in self.collections if c.id != asset_id]
        self.notify("Item removed.")
        return True

    # =========================================================================
    # VIEW
    # =========================================================================

    def state(self) -> Dict[str, Any]:
        """Serializable snapshot of the session for API responses."""
        return {
            "project_id": self.project_id,
            "name": (self.project or {}).get("name"),
            "role": self.role.value if self.role else None,
            "html": self.html,
            "chat_history": [m.to_dict() for m in self.chat_history],
            "input": {
                "text": self.composer.text,
                "visual": self.composer.render_visual(),
                "mentions": self.composer.render_thumbnails(),
            },
            "images": [
                {"id": i.id, "name": i.name, "url": i.url, "publicId": i.public_id} for i in self.images
            ],
            "collections": [{"id": c.id, "name": c.name} for c in self.collections],
            "collaborators": (self.project or {}).get("collaborators", {}),
            "is_generating": self.is_generating,
            "generation_state": self.generation_state.value,
            "editing_notice": self.editing_notice,
            "notifications": self.drain_notifications(),
        }

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._auth_unsubscribe is not None:
            self._auth_unsubscribe()
            self._auth_unsubscribe = None
        self._preview_listeners.clear()


def _project_card(snapshot: DocumentSnapshot) -> Dict[str, Any]:
    data = snapshot.data
    return {
        "id": snapshot.id,
        "name": data.get("name"),
        "deploymentUrl": data.get("deploymentUrl"),
        "thumbnailUrl": data.get("thumbnailUrl"),
        "isDirty": bool(data.get("isDirty")),
        "needsUpdate": bool(data.get("isDirty") and data.get("deploymentUrl")),
        "createdAt": data.get("createdAt"),
    }


_sessions: Dict[str, EditorContext] = {}


def get_editor_context(user: User) -> EditorContext:
    """Session for a user, created on first use."""
    context = _sessions.get(user.sub)
    if context is None:
        context = EditorContext(user)
        context.follow_auth(get_auth_session(user.sub))
        _sessions[user.sub] = context
    return context


def close_editor_context(user_id: str) -> None:
    context = _sessions.pop(user_id, None)
    if context is not None:
        context.close()

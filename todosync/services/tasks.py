"""Live mirror of the signed-in user's Firestore task collection.

The store keeps one snapshot listener on users/{uid}/tasks ordered by
timestamp (newest first) and republishes every snapshot as the whole task
list. Mutations go straight to Firestore and never touch the local list; the
listener brings the change back.
"""

import logging
import threading
from collections.abc import Callable
from functools import lru_cache

import grpc
from google.api_core import exceptions as api_exceptions
from google.cloud import firestore

from todosync.auth import get_auth_gateway
from todosync.config import get_settings
from todosync.models.tasks import Task, TaskStatus, now_ms
from todosync.observable import Observable

logger = logging.getLogger(__name__)

ORDER_FIELD = "timestamp"
COMPLETED_FIELD = "isCompleted"


def _default_client() -> firestore.Client:
    settings = get_settings()
    return firestore.Client(
        project=settings.firebase_project_id or None,
        credentials=get_auth_gateway().get_credentials(),
    )


def _sorted_newest_first(tasks: list[Task]) -> list[Task]:
    # sort is stable, so equal timestamps keep the backend's order
    return sorted(tasks, key=lambda t: t.timestamp, reverse=True)


def _stream_error_message(reason) -> str:
    if reason is None:
        return "Task listener stopped unexpectedly"
    # The stream finishes with the grpc call itself, e.g. PERMISSION_DENIED.
    if isinstance(reason, grpc.RpcError):
        reason = api_exceptions.from_grpc_error(reason)
    return f"Task listener stopped: {reason}"


class TaskStore:
    def __init__(
        self,
        client_factory: Callable[[], firestore.Client] = _default_client,
        users_collection: str = "users",
        tasks_collection: str = "tasks",
    ):
        self._client_factory = client_factory
        self._users_collection = users_collection
        self._tasks_collection = tasks_collection

        self.tasks: Observable[list[Task]] = Observable([])
        self.status: Observable[TaskStatus] = Observable(TaskStatus.idle())

        # _lock serializes subscribe/unsubscribe and is held while a watch is
        # torn down, which joins the watch's consumer thread. _publish_lock
        # guards _generation and _watch and is held for the whole
        # check-then-publish of a snapshot, so it must never be held across
        # watch.unsubscribe().
        self._lock = threading.Lock()
        self._publish_lock = threading.RLock()
        self._client: firestore.Client | None = None
        self._watch = None
        self._user_id: str | None = None
        self._generation = 0

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_subscribed(self) -> bool:
        self.check_listener()
        return self._watch is not None

    def _collection(self, client: firestore.Client, user_id: str):
        return client.collection(self._users_collection).document(user_id).collection(self._tasks_collection)

    # --- Subscription ---

    def subscribe(self, user_id: str) -> None:
        """Start listening to the user's tasks, replacing any earlier listener."""
        with self._lock:
            self._release_locked()
            with self._publish_lock:
                self._generation += 1
                generation = self._generation
            self._user_id = user_id
            try:
                if self._client is None:
                    self._client = self._client_factory()
                query = self._collection(self._client, user_id).order_by(
                    ORDER_FIELD, direction=firestore.Query.DESCENDING
                )
                watch = query.on_snapshot(self._make_listener(generation))
            except Exception as e:
                logger.exception("Could not subscribe to tasks for %s", user_id)
                self.status.set(TaskStatus.error(str(e) or "Error fetching tasks"))
                return
            with self._publish_lock:
                if generation == self._generation:
                    self._watch = watch
            # Watch has no public hook for stream termination; its bidi rpc does.
            rpc = getattr(watch, "_rpc", None)
            if rpc is not None:
                rpc.add_done_callback(self._make_stream_watcher(generation))
        logger.info("Listening to tasks for %s", user_id)

    def _make_listener(self, generation: int):
        def on_snapshot(docs, changes, read_time):
            try:
                decoded = [Task.from_document(doc.id, doc.to_dict()) for doc in docs]
            except Exception as e:
                with self._publish_lock:
                    if generation != self._generation:
                        return
                    logger.error("Error parsing tasks snapshot: %s", e)
                    self.status.set(TaskStatus.error(f"Error parsing tasks: {e}"))
                return
            with self._publish_lock:
                if generation != self._generation:
                    return
                self.tasks.set(_sorted_newest_first(decoded))
                self.status.set(TaskStatus.success())
            logger.debug("Snapshot with %d tasks", len(decoded))

        return on_snapshot

    def _make_stream_watcher(self, generation: int):
        def on_stream_done(reason):
            self._listener_stopped(generation, reason)

        return on_stream_done

    def _listener_stopped(self, generation: int, reason=None) -> None:
        with self._publish_lock:
            if generation != self._generation:
                return
            self._generation += 1
            self._watch = None
            message = _stream_error_message(reason)
            logger.error("%s", message)
            self.status.set(TaskStatus.error(message))

    def check_listener(self) -> TaskStatus:
        """Report a watch that has closed on its own as an error. Returns the current status."""
        with self._publish_lock:
            watch, generation = self._watch, self._generation
        if watch is not None and not getattr(watch, "is_active", True):
            self._listener_stopped(generation)
        return self.status.value

    def refresh(self) -> None:
        """Re-establish the listener for the current user."""
        if self._user_id is None:
            self.status.set(TaskStatus.error("Not signed in"))
            return
        self.subscribe(self._user_id)

    def _release_locked(self) -> None:
        with self._publish_lock:
            self._generation += 1
            watch, self._watch = self._watch, None
        if watch is not None:
            try:
                watch.unsubscribe()
            except Exception:
                logger.exception("Error while releasing the tasks listener")

    def unsubscribe(self) -> None:
        """Release the listener. No further list updates are published."""
        with self._lock:
            self._release_locked()
        logger.debug("Tasks listener released")

    def reset(self) -> None:
        """Forget the current user: release the listener and clear the list and status."""
        with self._lock:
            self._release_locked()
            self._user_id = None
            self._client = None
        self.tasks.set([])
        self.status.set(TaskStatus.idle())

    # --- Mutations ---

    def _run(self, action: str, failure_prefix: str, op: Callable[[firestore.Client, str], None]) -> TaskStatus:
        self.status.set(TaskStatus.loading())
        user_id, client = self._user_id, self._client
        if user_id is None or client is None:
            status = TaskStatus.error("Not signed in")
            self.status.set(status)
            return status
        try:
            op(client, user_id)
        except Exception as e:
            logger.error("Error %s: %s", action, e)
            status = TaskStatus.error(f"{failure_prefix}: {e}")
        else:
            logger.info("Task %s successfully", action)
            status = TaskStatus.success()
        self.status.set(status)
        return status

    def add(self, title: str, description: str) -> TaskStatus:
        def op(client, user_id):
            task = Task(
                user_id=user_id,
                title=title,
                description=description,
                is_completed=False,
                timestamp=now_ms(),
            )
            self._collection(client, user_id).add(task.to_document())

        return self._run("added", "Failed to add task", op)

    def toggle(self, task: Task) -> TaskStatus:
        def op(client, user_id):
            self._collection(client, user_id).document(task.id).update({COMPLETED_FIELD: not task.is_completed})

        return self._run("toggled", "Failed to update task", op)

    def update(self, task: Task) -> TaskStatus:
        def op(client, user_id):
            self._collection(client, user_id).document(task.id).set(task.to_document(), merge=True)

        return self._run("updated", "Failed to update task", op)

    def delete(self, task_id: str) -> TaskStatus:
        def op(client, user_id):
            self._collection(client, user_id).document(task_id).delete()

        return self._run("deleted", "Failed to delete task", op)

    def get(self, task_id: str) -> Task | None:
        return next((t for t in self.tasks.value if t.id == task_id), None)


@lru_cache
def get_task_store() -> TaskStore:
    settings = get_settings()
    return TaskStore(
        users_collection=settings.users_collection,
        tasks_collection=settings.tasks_collection,
    )


def bind_to_auth(store: TaskStore, auth=None) -> Callable[[], None]:
    """Follow the signed-in user: subscribe on sign-in, reset on sign-out.

    Returns a function that stops following.
    """
    auth = auth or get_auth_gateway()

    def on_auth_state(state) -> None:
        if state.state == "authenticated":
            if state.user.uid != store.user_id or not store.is_subscribed:
                store.reset()
                store.subscribe(state.user.uid)
        elif state.state == "unauthenticated":
            store.reset()

    return auth.state.listen(on_auth_state)

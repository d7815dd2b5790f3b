from fastmcp import FastMCP

from todosync.auth import get_auth_gateway
from todosync.exceptions import AuthenticationError
from todosync.services.tasks import get_task_store

mcp = FastMCP("todosync")


def _handle_mcp_error(e: AuthenticationError) -> dict:
    """Convert a sign-in failure to an agent-friendly error dict."""
    return {"error": "auth_error", "message": str(e), "action": "Ask the user to sign in with auth_sign_in"}


def _signed_in_store():
    store = get_task_store()
    if store.user_id is None:
        raise AuthenticationError("Not signed in.")
    return store


def _status_result(status) -> dict:
    if status.is_error:
        return {"error": "task_error", "message": status.message}
    return status.model_dump()


def _not_found(task_id: str) -> dict:
    return {"error": "not_found", "message": f"Task {task_id} not found. Use todo_list to get task IDs."}


# --- Auth tools ---

@mcp.tool
def auth_sign_in(email: str, password: str) -> dict:
    """Sign in with email and password. Tasks for that user start syncing right away."""
    return get_auth_gateway().sign_in(email, password).model_dump()


@mcp.tool
def auth_sign_up(email: str, password: str) -> dict:
    """Create a new account with email and password and sign in to it."""
    return get_auth_gateway().sign_up(email, password).model_dump()


@mcp.tool
def auth_sign_out() -> dict:
    """Sign out the current user and stop syncing their tasks."""
    return get_auth_gateway().sign_out().model_dump()


@mcp.tool
def auth_status() -> dict:
    """Return the current authentication state (unauthenticated, loading, authenticated or error)."""
    return get_auth_gateway().state.value.model_dump()


# --- Todo tools ---

@mcp.tool
def todo_list(include_completed: bool = True) -> dict:
    """List the signed-in user's tasks, newest first, with the status of the last operation."""
    try:
        store = _signed_in_store()
    except AuthenticationError as e:
        return _handle_mcp_error(e)
    status = store.check_listener()
    tasks = store.tasks.value
    if not include_completed:
        tasks = [t for t in tasks if not t.is_completed]
    return {
        "tasks": [t.model_dump() for t in tasks],
        "count": len(tasks),
        "status": status.model_dump(),
    }


@mcp.tool
def todo_add(title: str, description: str = "") -> dict:
    """Add a task. It shows up in todo_list once Firestore confirms it."""
    if not title.strip():
        return {"error": "invalid_request", "message": "title must not be blank"}
    try:
        return _status_result(_signed_in_store().add(title, description))
    except AuthenticationError as e:
        return _handle_mcp_error(e)


@mcp.tool
def todo_update(task_id: str, title: str | None = None, description: str | None = None) -> dict:
    """Change the title and/or description of a task. Only provided fields are changed."""
    if title is not None and not title.strip():
        return {"error": "invalid_request", "message": "title must not be blank"}
    try:
        store = _signed_in_store()
    except AuthenticationError as e:
        return _handle_mcp_error(e)
    task = store.get(task_id)
    if task is None:
        return _not_found(task_id)
    changes = {k: v for k, v in {"title": title, "description": description}.items() if v is not None}
    return _status_result(store.update(task.model_copy(update=changes)))


@mcp.tool
def todo_toggle(task_id: str) -> dict:
    """Flip a task between completed and not completed."""
    try:
        store = _signed_in_store()
    except AuthenticationError as e:
        return _handle_mcp_error(e)
    task = store.get(task_id)
    if task is None:
        return _not_found(task_id)
    return _status_result(store.toggle(task))


@mcp.tool
def todo_delete(task_id: str) -> dict:
    """Permanently delete a task."""
    try:
        return _status_result(_signed_in_store().delete(task_id))
    except AuthenticationError as e:
        return _handle_mcp_error(e)

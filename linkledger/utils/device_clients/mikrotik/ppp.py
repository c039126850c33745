from typing import Any, Dict, Optional

from routeros_api.api import RouterOsApi


class SecretNotFoundError(Exception):
    pass


def find_pppoe_secret(
    api: RouterOsApi, username: Optional[str] = None, secret_id: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    resource = api.get_resource("/ppp/secret")
    if secret_id:
        found = resource.get(id=secret_id)
    else:
        found = resource.get(name=username)
    return found[0] if found else None


def set_pppoe_secret_disabled(
    api: RouterOsApi, disable: bool, username: Optional[str] = None, secret_id: Optional[str] = None
) -> Dict[str, Any]:
    """Enable/disable a PPP secret; a secret already in the wanted state is left alone."""
    secret = find_pppoe_secret(api, username=username, secret_id=secret_id)
    if not secret:
        raise SecretNotFoundError(f"PPP secret not found (name={username}, id={secret_id})")

    wanted = "true" if disable else "false"
    if secret.get("disabled") == wanted:
        return {"status": "success", "changed": False}

    api.get_resource("/ppp/secret").set(
        id=secret.get("id") or secret.get(".id"), disabled="yes" if disable else "no"
    )
    return {"status": "success", "changed": True}


def kill_active_pppoe_connection(api: RouterOsApi, username: str) -> Dict[str, Any]:
    """
    Terminate active PPPoE sessions for a user so the next login picks up
    the new secret/queue state. No session is a successful no-op.
    """
    resource = api.get_resource("/ppp/active")
    active_sessions = resource.get(name=username)
    for session in active_sessions:
        resource.remove(id=session.get("id") or session.get(".id"))
    return {"status": "success", "killed": len(active_sessions)}

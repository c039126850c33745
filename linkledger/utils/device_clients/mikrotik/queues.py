from logging import getLogger
from typing import Any, Dict, Optional

from routeros_api.api import RouterOsApi

logger = getLogger(__name__)


class QueueNotFoundError(Exception):
    pass


def find_simple_queue(api: RouterOsApi, target: str) -> Optional[Dict[str, Any]]:
    """Look up a Simple Queue by target, trying the bare IP and the /32 form."""
    res = api.get_resource("/queue/simple")
    for target_variant in (target, f"{target}/32"):
        queues = res.get(target=target_variant)
        if queues:
            return queues[0]
    return None


def set_simple_queue_limit(api: RouterOsApi, target: str, max_limit: str) -> Dict[str, Any]:
    """
    Set the max-limit of the queue for `target`. Setting the value it
    already has is a no-op.
    """
    queue = find_simple_queue(api, target)
    if not queue:
        raise QueueNotFoundError(f"No Simple Queue for target {target}")

    queue_id = queue.get("id") or queue.get(".id")
    if queue.get("max-limit") == max_limit:
        return {"status": "success", "changed": False, "message": f"Queue already at {max_limit}"}

    logger.info(
        f"Queue '{queue.get('name')}' ({queue_id}): {queue.get('max-limit', 'N/A')} -> {max_limit}"
    )
    api.get_resource("/queue/simple").set(id=queue_id, **{"max-limit": max_limit})
    return {"status": "success", "changed": True, "message": f"Queue for {target} set to {max_limit}"}

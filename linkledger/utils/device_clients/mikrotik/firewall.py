from typing import Any, Dict

from routeros_api.api import RouterOsApi


def ensure_address_list_entry(
    api: RouterOsApi, list_name: str, address: str, comment: str = ""
) -> Dict[str, Any]:
    """Put an address on a list. Already present (even disabled) counts as done."""
    res = api.get_resource("/ip/firewall/address-list")
    existing = res.get(list=list_name, address=address)

    if not existing:
        res.add(list=list_name, address=address, comment=comment)
        return {"status": "success", "changed": True, "message": f"Added {address} to {list_name}"}

    changed = False
    for item in existing:
        if item.get("disabled") == "true":
            res.set(id=item["id"], disabled="no")
            changed = True
    return {"status": "success", "changed": changed, "message": f"{address} already in {list_name}"}


def remove_address_list_entry(api: RouterOsApi, list_name: str, address: str) -> Dict[str, Any]:
    """Take an address off a list. Absent counts as done."""
    res = api.get_resource("/ip/firewall/address-list")
    existing = res.get(list=list_name, address=address)
    for item in existing:
        res.remove(id=item["id"])
    return {
        "status": "success",
        "changed": bool(existing),
        "message": f"Removed {address} from {list_name}" if existing else f"{address} not in {list_name}",
    }

"""
Content Hashing

All hashes computed from canonical JSON with sort_keys=True.
Numeric fields are rendered with fixed precision so a value read back from
any backend hashes the same as the value that was written.
"""
import json
from hashlib import sha256
from typing import Any, Dict


def _money(value: Any) -> str:
    return f"{float(value):.2f}"


def canonical_json(content: Dict[str, Any]) -> str:
    return json.dumps(content, sort_keys=True, separators=(",", ":"))


def core_fields(
    owner_name: str,
    address: Dict[str, str],
    area_sqft: float,
    value: float,
) -> Dict[str, Any]:
    """The fields a certification vouches for: owner, address, area, value."""
    return {
        "owner": (owner_name or "").strip(),
        "address": {
            "line1": (address.get("line1") or "").strip(),
            "line2": (address.get("line2") or "").strip(),
            "district": (address.get("district") or "").strip(),
            "state": (address.get("state") or "").strip(),
            "pincode": (address.get("pincode") or "").strip(),
        },
        "area_sqft": _money(area_sqft),
        "value": _money(value),
    }


def content_hash(
    owner_name: str,
    address: Dict[str, str],
    area_sqft: float,
    value: float,
) -> str:
    """Deterministic SHA-256 over the core fields."""
    content = core_fields(owner_name, address, area_sqft, value)
    return sha256(canonical_json(content).encode()).hexdigest()


def property_content_hash(prop) -> str:
    """Content hash of a PropertyDB row as currently stored."""
    return content_hash(prop.owner_name, prop.address_dict(), prop.area_sqft, prop.value)


def certificate_number(property_id: str, tx_hash: str) -> str:
    digest = sha256(f"{property_id}:{tx_hash}".encode()).hexdigest()
    return f"CERT-{digest[:12].upper()}"

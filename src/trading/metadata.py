"""
Token metadata carried inline as ``data:application/json;base64,...`` URIs.

The registry treats metadata as an opaque string; these helpers build and
read the self-contained card descriptions wallets attach when minting.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List

DATA_URI_PREFIX = "data:application/json;base64,"


@dataclass
class CardMetadata:
    """Display metadata for a card asset"""
    name: str
    image: str
    description: str = ""
    attributes: List[Dict[str, Any]] = field(default_factory=list)


def encode_metadata_uri(metadata: CardMetadata) -> str:
    """Serialize metadata into a data URI suitable for ``AssetRegistry.create``"""
    if not metadata.name:
        raise ValueError("Card metadata requires a name")
    raw = json.dumps(asdict(metadata), separators=(",", ":")).encode("utf-8")
    return DATA_URI_PREFIX + base64.b64encode(raw).decode("ascii")


def decode_metadata_uri(uri: str) -> Dict[str, Any]:
    """
    Decode a metadata data URI into its JSON object.

    Raises:
        ValueError: If the URI is not a base64 JSON data URI
    """
    if not isinstance(uri, str) or not uri.startswith(DATA_URI_PREFIX):
        raise ValueError("Metadata is not a base64 JSON data URI")
    try:
        raw = base64.b64decode(uri[len(DATA_URI_PREFIX):], validate=True)
        document = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Malformed metadata URI: {e}") from e
    if not isinstance(document, dict):
        raise ValueError("Metadata must decode to a JSON object")
    return document


def parse_card(uri: str) -> CardMetadata:
    """Decode a metadata URI into ``CardMetadata``, tolerating missing optional keys"""
    document = decode_metadata_uri(uri)
    if "name" not in document or "image" not in document:
        raise ValueError("Card metadata requires name and image")
    attributes = document.get("attributes", [])
    if not isinstance(attributes, list):
        raise ValueError(f"Card attributes must be a list, got {type(attributes).__name__}")
    return CardMetadata(
        name=str(document["name"]),
        image=str(document["image"]),
        description=str(document.get("description", "")),
        attributes=list(attributes),
    )

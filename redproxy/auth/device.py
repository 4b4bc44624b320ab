"""
Device identifier for the impersonated native client.

The id is generated once per process and held by the credential acquirer.
It is never persisted, so every restart presents a fresh device to upstream.
"""

import logging
import uuid
from typing import Optional

logger = logging.getLogger(__name__)


def generate_device_id() -> str:
    """
    Generate a random device id in the format the Android client sends.

    Returns:
        str: Lower-case UUID4 string (e.g., "0f8fad5b-d9cb-469f-a165-70867728950e")
    """
    device_id = str(uuid.uuid4())
    logger.debug(f"Device ID generated: {device_id}")
    return device_id


def validate_device_id(device_id: Optional[str]) -> bool:
    """
    Validate a configured device id.

    Args:
        device_id: Device ID to validate

    Returns:
        bool: True if it parses as a UUID, False otherwise
    """
    if not device_id or not isinstance(device_id, str):
        return False

    try:
        uuid.UUID(device_id)
    except ValueError:
        return False

    return True

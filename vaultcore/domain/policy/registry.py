import json
import logging
import os
from typing import List

from pydantic import ValidationError as PydanticValidationError

from vaultcore.errors import ValidationError

from .models import AccessPolicy

logger = logging.getLogger(__name__)


def load_policies(path: str) -> List[AccessPolicy]:
    """Load access policies from a JSON document ``{"policies": [...]}``."""
    if not os.path.exists(path):
        logger.warning(f"Policy file not found at {path}. All secret access will be denied.")
        return []

    try:
        with open(path, 'r') as f:
            data = json.load(f)

        if not isinstance(data, dict) or not isinstance(data.get("policies", []), list):
            raise ValueError("expected an object with a 'policies' list")

        policies = [AccessPolicy.model_validate(item) for item in data.get("policies", [])]
        logger.info(f"Loaded {len(policies)} access policies from {path}")
        return policies

    except (OSError, ValueError, PydanticValidationError) as e:
        logger.error(f"Failed to load policies from {path}: {e}")
        raise ValidationError(f"Policy file load failed: {e}", details={"path": path})

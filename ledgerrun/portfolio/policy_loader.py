"""Load policy documents from JSON files."""

import json
from pathlib import Path
from typing import Any, Dict

from ledgerrun.portfolio.validation import validate_policy
from ledgerrun.utils.exceptions import ConfigurationError
from ledgerrun.utils.logging import get_logger

logger = get_logger(__name__)


def load_policy(filepath: str | Path) -> Dict[str, Any]:
    """Read and validate a policy JSON document.

    Args:
        filepath: Path to the policy file

    Returns:
        The parsed policy document (camelCase keys)

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigurationError: If the file is not valid JSON
        ValidationError: If the document is not a valid policy
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {filepath}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            policy = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in policy file {filepath}: {e}") from e

    validate_policy(policy)
    logger.debug("Loaded policy '%s' from %s", policy.get("name"), path)
    return policy

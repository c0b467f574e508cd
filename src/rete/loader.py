"""
Fact file loading for the demo driver.

Accepts either ``{"facts": [[id, attr, value], ...]}`` or a bare list.
Each entry is a 3-item list or an object with identifier/attribute/value.
"""

import json
import logging
from pathlib import Path
from typing import Union

from rete.errors import ConfigurationError
from rete.models import Fact

logger = logging.getLogger(__name__)

_KEYS = ("identifier", "attribute", "value")


def parse_facts(data: Union[dict, list]) -> list[Fact]:
    if isinstance(data, dict):
        if "facts" not in data:
            raise ConfigurationError("Fact file object has no 'facts' key")
        data = data["facts"]
    if not isinstance(data, list):
        raise ConfigurationError(f"Expected a list of facts, got {type(data).__name__}")

    facts: list[Fact] = []
    for i, entry in enumerate(data):
        if isinstance(entry, dict):
            missing = [k for k in _KEYS if k not in entry]
            if missing:
                raise ConfigurationError(f"Fact #{i} is missing {', '.join(missing)}")
            entry = [entry[k] for k in _KEYS]
        if not isinstance(entry, list) or len(entry) != 3:
            raise ConfigurationError(f"Fact #{i} is not an (identifier, attribute, value) triple: {entry!r}")
        if any(isinstance(part, (list, dict)) for part in entry):
            raise ConfigurationError(f"Fact #{i} must hold scalar values: {entry!r}")
        facts.append(Fact(*entry))
    return facts


def load_facts(path: Union[str, Path]) -> list[Fact]:
    """Read facts from a JSON file.

    Raises:
        ConfigurationError: if the file is not valid JSON or not a fact list.
        OSError: if the file cannot be read.
    """
    path = Path(path)
    with open(path) as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    facts = parse_facts(data)
    logger.info(f"Loaded {len(facts)} facts from {path}")
    return facts

"""
Alias book: bidirectional alias <-> peer identifier mapping.

The file is a JSON (or YAML) object mapping alias to identifier, either at
the top level or nested under an "aliases" key:

    {"aliases": {"max": "447700900123"}}
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from relaylog.utils.config import load_document
from relaylog.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AliasBook:
    """
    Alias lookups in both directions.

    Attributes:
        alias_to_id: Alias name -> raw identifier
        id_to_alias: Raw identifier -> alias name
    """
    alias_to_id: Dict[str, str] = field(default_factory=dict)
    id_to_alias: Dict[str, str] = field(default_factory=dict)

    def add(self, alias: str, identifier: str) -> None:
        self.alias_to_id[alias] = identifier
        self.id_to_alias[identifier] = alias

    def peer_key(self, identifier: str) -> str:
        """Alias for display and shard naming, or the identifier itself."""
        return self.id_to_alias.get(identifier, identifier)

    def address_for(self, name: str) -> str:
        """Identifier to send to, resolving an alias if `name` is one."""
        return self.alias_to_id.get(name, name)

    def __len__(self) -> int:
        return len(self.alias_to_id)

    @classmethod
    def from_mapping(cls, data: object) -> "AliasBook":
        book = cls()
        if not isinstance(data, dict):
            return book

        entries = data.get("aliases") if isinstance(data.get("aliases"), dict) else data
        for alias, identifier in entries.items():
            if isinstance(alias, str) and isinstance(identifier, str):
                book.add(alias, identifier)
        return book

    @classmethod
    def load(cls, path: Optional[Path]) -> "AliasBook":
        """
        Load the alias file. A missing or unreadable file yields an empty book.

        Args:
            path: Alias file path
        """
        if path is None:
            return cls()

        try:
            data = load_document(path)
        except FileNotFoundError:
            return cls()
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable alias file", path=str(path), error=str(e))
            return cls()

        return cls.from_mapping(data)

# tradebook/domain/tags.py
"""Resolve tags for reconstructed positions from position-key associations."""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

from sqlmodel import Session, select

from tradebook.db.models import PositionTag, TagDefinition
from tradebook.domain.models import TagInfo
from tradebook.domain.position_key import generate_position_key, legacy_position_key


class TagResolver:
    """Looks up tags for a position through its stored, re-derived, or legacy key."""

    def __init__(
        self,
        position_tags: Optional[Mapping[str, Sequence[str]]] = None,
        tag_defs: Optional[Mapping[str, TagInfo]] = None,
    ):
        self.position_tags = position_tags or {}
        self.tag_defs = tag_defs or {}

    @classmethod
    def from_session(cls, session: Session) -> "TagResolver":
        """Build the key->tag ids and id->definition maps from the database."""
        rows = session.exec(
            select(PositionTag, TagDefinition).join(
                TagDefinition, PositionTag.tag_definition_id == TagDefinition.id
            )
        ).all()

        position_tags: Dict[str, List[str]] = defaultdict(list)
        tag_defs: Dict[str, TagInfo] = {}
        for pt, tag in rows:
            position_tags[pt.position_key].append(tag.id)
            if tag.id not in tag_defs:
                tag_defs[tag.id] = TagInfo(
                    id=tag.id,
                    name=tag.name,
                    color=tag.color,
                    category=tag.category,
                    icon=tag.icon,
                )
        return cls(dict(position_tags), tag_defs)

    def candidate_keys(
        self,
        account_id: str,
        symbol: str,
        opened_at: datetime,
        position_key: Optional[str] = None,
    ) -> List[str]:
        """Keys to try, most reliable first."""
        keys = []
        if position_key:
            keys.append(position_key)
        keys.append(generate_position_key(account_id, symbol, opened_at))
        keys.append(legacy_position_key(account_id, symbol, opened_at))
        return keys

    def tag_ids_for(
        self,
        account_id: str,
        symbol: str,
        opened_at: datetime,
        position_key: Optional[str] = None,
    ) -> List[str]:
        """Tag ids of the first candidate key with associations, else empty."""
        for key in self.candidate_keys(account_id, symbol, opened_at, position_key):
            tag_ids = self.position_tags.get(key)
            if tag_ids:
                return list(tag_ids)
        return []

    def resolve(
        self,
        account_id: str,
        symbol: str,
        opened_at: datetime,
        position_key: Optional[str] = None,
    ) -> List[TagInfo]:
        tag_ids = self.tag_ids_for(account_id, symbol, opened_at, position_key)
        return [self.tag_defs[tag_id] for tag_id in tag_ids if tag_id in self.tag_defs]

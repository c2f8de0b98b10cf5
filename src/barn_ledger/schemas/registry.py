"""Canonical horse/person registry records and alias records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class EntityType(str, Enum):
    """Alias namespace / matcher parameterization."""

    HORSE = "horse"
    PERSON = "person"


class PersonRole(str, Enum):
    """Role of a person in the business."""

    RIDER = "rider"
    GROOM = "groom"
    FREELANCE = "freelance"
    TRAINER = "trainer"


@dataclass
class Horse:
    """Canonical horse."""

    id: int
    name: str
    status: str = "active"

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass
class Person:
    """Canonical person."""

    id: int
    name: str
    role: str = PersonRole.FREELANCE.value
    is_active: bool = True


@dataclass
class AliasRecord:
    """Learned mapping from a normalized raw name to a canonical entity."""

    alias_key: str
    canonical_entity_id: int
    canonical_name: str
    updated_at: str


@dataclass
class RegistrySnapshot:
    """
    Registry state read once at the start of a parse.

    Aliases are {alias_key: canonical_name}. Entities added or aliases
    learned after the snapshot was taken do not affect the parse using it.
    """

    horses: list[Horse] = field(default_factory=list)
    people: list[Person] = field(default_factory=list)
    horse_aliases: dict[str, str] = field(default_factory=dict)
    person_aliases: dict[str, str] = field(default_factory=dict)

    def entities(self, entity_type: EntityType) -> list[Horse] | list[Person]:
        """Active entities of one type."""
        if entity_type == EntityType.HORSE:
            return [horse for horse in self.horses if horse.is_active]
        return [person for person in self.people if person.is_active]

    def aliases(self, entity_type: EntityType) -> dict[str, str]:
        """Learned aliases of one type."""
        if entity_type == EntityType.HORSE:
            return self.horse_aliases
        return self.person_aliases


@dataclass
class Provider:
    """Invoice vendor with its extraction prompt and contact details."""

    id: int
    slug: str
    name: str
    category: str | None = None
    extraction_prompt: str | None = None
    expected_fields: list[str] = field(default_factory=list)

    full_name: str | None = None
    primary_contact_name: str | None = None
    primary_contact_phone: str | None = None
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    account_number: str | None = None

"""
Character catalogue - immutable per-character configuration.

Display names, domains and bump messages are static; backend URLs and bot
tokens come from settings and are folded in once at startup.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping

from companion_accounts.config import Settings
from companion_accounts.exceptions import ValidationError
from companion_accounts.models.api import Character


@dataclass(frozen=True)
class CharacterProfile:
    """Static and configured data for one character."""

    character: Character
    display_name: str
    domain: str
    bump_message: str
    backend_url: str | None = None
    bot_token: str | None = None

    def __post_init__(self) -> None:
        """Validate profile configuration."""
        if not self.display_name:
            raise ValueError("Display name required")
        if not self.bump_message:
            raise ValueError("Bump message required")

    @property
    def first_name(self) -> str:
        return self.display_name.split(" ", 1)[0]


_STATIC_PROFILES: dict[Character, tuple[str, str, str]] = {
    Character.SADIE: (
        "Sadie Hartley",
        "Fun & Play",
        "Hey stranger! Miss me? 10 more on the house. Let's play.",
    ),
    Character.COLE: (
        "Cole Mercer",
        "Health & Fitness",
        "You went quiet on me. That's fine - but I'm not done with you yet. "
        "10 more. Let's see what you're made of.",
    ),
    Character.NORA: (
        "Nora Vance",
        "Wealth & Finance",
        "I'll float you 10 more. Consider it a small investment in figuring out "
        "if I'm worth it.",
    ),
    Character.ELLIOTT: (
        "Elliott Sayer",
        "Mind & Clarity",
        "Noticed you stepped back. That's usually when the real work starts. "
        "Come back. 10 more, no strings.",
    ),
    Character.CLARA: (
        "Clara Stone",
        "Spirit & Presence",
        "Sometimes we need space before we're ready. I'm here when you are. 10 more.",
    ),
    Character.SEAN: (
        "Sean Brennan",
        "Relationships",
        "Look, relationships take time to build. 10 more messages - let's keep going.",
    ),
}


class CharacterCatalogue:
    """
    Read-only lookup keyed by Character.

    Every Character must have a profile; a missing entry is a startup error.
    """

    def __init__(self, profiles: Mapping[Character, CharacterProfile]) -> None:
        missing = [c.value for c in Character if c not in profiles]
        if missing:
            raise ValueError(f"Character catalogue missing profiles: {missing}")
        self._profiles: Mapping[Character, CharacterProfile] = MappingProxyType(dict(profiles))

    @classmethod
    def from_settings(cls, settings: Settings) -> "CharacterCatalogue":
        """Build the catalogue from static data plus per-character settings."""
        profiles = {}
        for character, (display_name, domain, bump_message) in _STATIC_PROFILES.items():
            profiles[character] = CharacterProfile(
                character=character,
                display_name=display_name,
                domain=domain,
                bump_message=bump_message,
                backend_url=getattr(settings, f"{character.value}_url") or None,
                bot_token=getattr(settings, f"{character.value}_bot_token") or None,
            )
        return cls(profiles)

    def __getitem__(self, character: Character) -> CharacterProfile:
        return self._profiles[character]

    def __iter__(self) -> Iterator[CharacterProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)


def parse_character(value: str) -> Character:
    """
    Parse a character name.

    Raises:
        ValidationError: If the name is not in the catalogue
    """
    try:
        return Character(value.strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown character: {value}") from None

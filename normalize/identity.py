"""
Contributor identity resolution.

Reconciles login handles, free-text display names and emails into one canonical key per
contributor. Resolution is single-pass and first-come-wins: once an alias is bound to a
canonical key it is never rebound, and two existing keys are never merged.
"""
import re
from typing import Dict, Iterable, List, Optional, Tuple

from normalize.models import CanonicalIdentity

USERNAME_PATTERN = re.compile(r"^[a-z\d](?:[a-z\d-]{0,38})$", re.IGNORECASE)
NOREPLY_SUFFIX = "@users.noreply.github.com"
UNKNOWN_SEED = "unknown"


def looks_like_username(value: Optional[str]) -> bool:
    """True for short alphanumeric-and-hyphen handles without spaces (GitHub login rules)."""
    return bool(value) and bool(USERNAME_PATTERN.match(value))


def normalize_alias(value: Optional[str]) -> str:
    """Casefold and keep only letters and digits, in any script."""
    if not value:
        return ""
    return "".join(c for c in value.casefold() if c.isalnum())


def username_from_noreply(email: Optional[str]) -> str:
    """
    Extract the GitHub username from noreply addresses:
      - username@users.noreply.github.com
      - 123456+username@users.noreply.github.com
    Returns "" for any other address.
    """
    e = (email or "").strip().lower()
    if not e.endswith(NOREPLY_SUFFIX):
        return ""
    local = e.split("@", 1)[0]
    if "+" in local:
        local = local.rsplit("+", 1)[-1]
    return local if looks_like_username(local) else ""


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def choose_key_seed(login: str, display: str, email: str) -> str:
    if looks_like_username(login):
        return login
    if looks_like_username(display):
        return display
    return login or display or email or UNKNOWN_SEED


def choose_display_label(login: str, display: str, seed: str) -> str:
    if display and not looks_like_username(display):
        return display
    if login and not looks_like_username(login):
        return login
    return seed


def alias_candidates(login: str, display: str, email: str, seed: str) -> List[str]:
    """Ordered, de-duplicated, non-empty normalized aliases for one observation."""
    raw = []
    if seed != UNKNOWN_SEED or any((login, display, email)):
        raw.append(seed)
    raw.extend([login, display, email, username_from_noreply(email)])
    out: List[str] = []
    for value in raw:
        alias = normalize_alias(value)
        if alias and alias not in out:
            out.append(alias)
    return out


class IdentityResolver:
    """
    Session-scoped alias table. Call reset() between unrelated report sessions.
    """

    def __init__(self):
        self._aliases: Dict[str, str] = {}
        self._identities: Dict[str, CanonicalIdentity] = {}
        self._unknown_counter = 0

    def reset(self):
        self._aliases.clear()
        self._identities.clear()
        self._unknown_counter = 0

    def resolve(self, raw_login: Optional[str] = None, raw_display_name: Optional[str] = None,
                raw_email: Optional[str] = None) -> Tuple[str, str]:
        """
        Resolve raw identity fields to (canonical_key, display_label).

        Reuses the canonical key of the first candidate alias that is already bound and
        registers the still-unbound candidates under it; otherwise mints a key from the
        first candidate, or "unknown-N" when no field carries anything usable.
        """
        login = _clean(raw_login)
        display = _clean(raw_display_name)
        email = _clean(raw_email)

        seed = choose_key_seed(login, display, email)
        label = choose_display_label(login, display, seed)
        candidates = alias_candidates(login, display, email, seed)

        canonical = next((self._aliases[a] for a in candidates if a in self._aliases), None)
        if canonical is None:
            if candidates:
                canonical = candidates[0]
            else:
                self._unknown_counter += 1
                canonical = f"{UNKNOWN_SEED}-{self._unknown_counter}"
            self._identities[canonical] = CanonicalIdentity(canonical, label)

        identity = self._identities[canonical]
        for alias in candidates:
            # append-only: never rebind an alias that already points somewhere
            if alias not in self._aliases:
                self._aliases[alias] = canonical
                identity.aka.add(alias)
        return canonical, label

    def lookup(self, alias: Optional[str]) -> Optional[str]:
        """Canonical key bound to an alias (raw or normalized), or None."""
        return self._aliases.get(normalize_alias(alias))

    def identity(self, canonical_key: str) -> Optional[CanonicalIdentity]:
        return self._identities.get(canonical_key)

    def identities(self) -> Iterable[CanonicalIdentity]:
        return list(self._identities.values())

    def __len__(self):
        return len(self._identities)


__all__ = [
    "IdentityResolver",
    "looks_like_username",
    "normalize_alias",
    "username_from_noreply",
]

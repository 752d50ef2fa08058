"""Loading signing keys and keyrings, and finding keys by name."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from chartprov.errors import AmbiguousIdentityError, KeyLoadError
from chartprov.openpgp import Entity, OpenPGPError, read_keyring
from chartprov.security import SecurityLimits, safe_read_file

logger = logging.getLogger(__name__)


def _read_entities(path: Path, limits: SecurityLimits | None) -> list[Entity]:
    data = safe_read_file(Path(path), limits)
    try:
        return read_keyring(data)
    except OpenPGPError as e:
        raise KeyLoadError(f"cannot read keys from {path}: {e}")


def load_key(path: Path, limits: SecurityLimits | None = None) -> Entity:
    """Load a single key (public, or public plus private) from a key file.

    Raises:
        OSError: If the file cannot be read
        KeyLoadError: If the file holds no parseable key
    """
    entities = _read_entities(path, limits)
    if not entities:
        raise KeyLoadError(f"no key found in {path}")
    entity = entities[0]
    logger.debug(f"Loaded key {entity.primary_key.key_id_hex} ({entity.name}) from {path}")
    return entity


def load_keyring(path: Path, limits: SecurityLimits | None = None) -> list[Entity]:
    """Load every key in a keyring file.

    Raises:
        OSError: If the file cannot be read
        KeyLoadError: If the file is not a valid keyring
    """
    entities = _read_entities(path, limits)
    logger.debug(f"Loaded {len(entities)} key(s) from keyring {path}")
    return entities


def resolve_identity(keyring: Iterable[Entity], name: str) -> Entity | None:
    """Find the key whose user ID best matches ``name``.

    An exact user ID match wins immediately. Otherwise every key with a user
    ID containing ``name`` is a candidate: one candidate is returned, none
    gives None, and more than one is ambiguous. Matching is case-sensitive.

    Raises:
        AmbiguousIdentityError: If several distinct keys contain ``name``
    """
    entities = list(keyring)

    for entity in entities:
        if name in entity.identities:
            return entity

    candidates: dict[bytes, Entity] = {}
    for entity in entities:
        if any(name in identity for identity in entity.identities):
            candidates.setdefault(entity.fingerprint, entity)

    if len(candidates) > 1:
        raise AmbiguousIdentityError(name, [entity.name for entity in candidates.values()])
    return next(iter(candidates.values()), None)


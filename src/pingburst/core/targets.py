"""Target Registry.

Holds the static, ordered list of backends under supervision. Each target is
a base address plus the shared probe path; the base address is the target's
identity and the key into its statistics.

Author: PingBurst Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


def normalize_probe_path(path: str) -> str:
    """Return the probe path with a leading slash (empty stays empty)."""
    path = (path or "").strip()
    if path and not path.startswith("/"):
        path = "/" + path
    return path


@dataclass(frozen=True)
class Target:
    """A backend endpoint under health-check supervision."""
    base_url: str
    probe_path: str = "/api/health"

    @property
    def identity(self) -> str:
        return self.base_url

    @property
    def url(self) -> str:
        """Full probe address."""
        return f"{self.base_url.rstrip('/')}{normalize_probe_path(self.probe_path)}"

    @property
    def is_secure(self) -> bool:
        return self.base_url.lower().startswith("https://")


class TargetRegistry:
    """Immutable, order-preserving collection of targets."""

    def __init__(self, targets: Iterable[Target]):
        """Initialize the registry.

        Args:
            targets: Targets in probe order

        Raises:
            ConfigurationError: If no targets are given
        """
        self._targets: Tuple[Target, ...] = tuple(targets)
        if not self._targets:
            raise ConfigurationError("At least one backend URL must be configured")

        self._by_identity: Dict[str, Target] = {}
        for target in self._targets:
            if target.identity in self._by_identity:
                logger.warning(f"Duplicate backend URL configured: {target.identity}")
                continue
            self._by_identity[target.identity] = target

    @classmethod
    def from_urls(cls, urls: Iterable[str], probe_path: str = "/api/health") -> "TargetRegistry":
        """Build a registry from base addresses and a shared probe path.

        Blank entries are skipped; surrounding whitespace is trimmed.
        """
        cleaned = [u.strip() for u in urls if u and u.strip()]
        return cls(Target(base_url=u, probe_path=probe_path) for u in cleaned)

    @property
    def targets(self) -> Tuple[Target, ...]:
        return self._targets

    def identities(self) -> List[str]:
        """Unique target identities in registration order."""
        return list(self._by_identity)

    def get(self, identity: str) -> Optional[Target]:
        return self._by_identity.get(identity)

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    def __repr__(self) -> str:
        return f"TargetRegistry({[t.identity for t in self._targets]!r})"

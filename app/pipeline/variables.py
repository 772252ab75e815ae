"""
Environment / Secret Resolver
=============================
Builds the read-only VariableSet a run sees, once, before its first stage.

Resolution order for each name:
    1. process environment
    2. ``SECRETS_DIR/<name>`` (mounted secret file, trailing newline stripped)

Resolution is all-or-nothing: if any name is missing the run fails with
SecretResolutionFailure and no stage starts.

Derived values (registry addresses, image references) are computed by the
pure helpers at the bottom of this module from already-resolved values.
"""
import os
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Iterable, Iterator, Optional

from app.core.config import (
    SECRETS_DIR,
    REGISTRY_HOST_TEMPLATE,
    REGISTRY_PATH_SEGMENT,
)
from app.core.constants import MASK
from app.core.errors import SecretResolutionFailure

logger = logging.getLogger(__name__)


class VariableSet(Mapping):
    """
    Immutable name → value mapping.

    ``secret_names`` are masked in ``repr`` and are the values registered
    with the logging secret filter for the lifetime of the run.
    """

    def __init__(self, values: Mapping, secret_names: Iterable[str] = ()) -> None:
        self._values = MappingProxyType(dict(values))
        self._secret_names = frozenset(secret_names)

    def __getitem__(self, name: str) -> str:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        shown = {
            k: (MASK if k in self._secret_names else v) for k, v in self._values.items()
        }
        return f"VariableSet({shown})"

    @property
    def secret_names(self) -> frozenset:
        return self._secret_names

    def secret_values(self) -> list[str]:
        return [self._values[n] for n in self._secret_names if self._values.get(n)]


class SecretResolver:
    """Resolves named secrets from the environment and a secrets directory."""

    def __init__(
        self,
        environ: Optional[Mapping] = None,
        secrets_dir: str = SECRETS_DIR,
    ) -> None:
        self.environ = os.environ if environ is None else environ
        self.secrets_dir = secrets_dir

    def _lookup(self, name: str) -> Optional[str]:
        value = self.environ.get(name)
        if value:
            return value
        if self.secrets_dir:
            path = os.path.join(self.secrets_dir, name)
            if os.path.isfile(path):
                with open(path, "r", encoding="utf-8") as f:
                    value = f.read().strip()
                return value or None
        return None

    def resolve(
        self,
        names: Iterable[str],
        metadata: Optional[Mapping] = None,
        secret_names: Optional[Iterable[str]] = None,
    ) -> VariableSet:
        """
        Resolve every name in ``names`` or raise SecretResolutionFailure.

        Every resolved name is treated as secret unless ``secret_names``
        narrows that down.

        ``metadata`` (build number, branch, commit) is merged in as
        non-secret values; it never comes from the environment.
        """
        names = list(dict.fromkeys(names))
        resolved: dict[str, str] = {}
        missing: list[str] = []

        for name in names:
            value = self._lookup(name)
            if value is None:
                missing.append(name)
            else:
                resolved[name] = value

        if missing:
            logger.error("Secret resolution failed, missing: %s", ", ".join(sorted(missing)))
            raise SecretResolutionFailure(missing)

        values = dict(resolved)
        for key, value in (metadata or {}).items():
            values[key] = str(value)

        logger.info("Resolved %d variable(s) and %d metadata value(s)", len(resolved), len(metadata or {}))
        secrets = resolved.keys() if secret_names is None else set(secret_names) & resolved.keys()
        return VariableSet(values, secret_names=secrets)


# ---------------------------------------------------------------------------
# Derived values (pure)
# ---------------------------------------------------------------------------
def registry_host(account_id: str, region: str, template: str = REGISTRY_HOST_TEMPLATE) -> str:
    return template.format(account_id=account_id, region=region)


def registry_address(
    account_id: str,
    region: str,
    path: str,
    segment: str = REGISTRY_PATH_SEGMENT,
    template: str = REGISTRY_HOST_TEMPLATE,
) -> str:
    """e.g. ``123.dkr.ecr.eu-west-1.amazonaws.com/platform/staging``"""
    parts = [registry_host(account_id, region, template), segment.strip("/"), path.strip("/")]
    return "/".join(p for p in parts if p)


def image_ref(address: str, image: str, tag: str) -> str:
    return f"{address}/{image}:{tag}"

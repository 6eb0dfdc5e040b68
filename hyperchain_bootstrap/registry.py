"""Address registry of deployed contracts.

Maps logical contract names (``"BridgehubProxy"``, ``"Governance"``, ...)
to checksummed on-chain addresses.

- Starts from a snapshot given in the deployment configuration
- Every successful deployment step adds or overwrites an entry
- Entries are never removed during a run

Persisting the registry is not the orchestrator's job, but
:py:func:`save_address_registry` is provided for scripts.
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping

from eth_typing import ChecksumAddress, HexAddress
from eth_utils import is_address, to_checksum_address
from filelock import FileLock

logger = logging.getLogger(__name__)


class AddressRegistry(Mapping[str, ChecksumAddress]):
    """Name to address mapping owned by one orchestrator run.

    Read access follows the :py:class:`collections.abc.Mapping` interface.
    Entries cannot be removed.
    """

    def __init__(self, initial: Mapping[str, HexAddress | str] | None = None):
        self._addresses: dict[str, ChecksumAddress] = {}
        for name, address in (initial or {}).items():
            self.set(name, address)

    def __getitem__(self, name: str) -> ChecksumAddress:
        try:
            return self._addresses[name]
        except KeyError:
            raise KeyError(f"No address registered for {name}. Registered: {', '.join(sorted(self._addresses)) or '<none>'}") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._addresses)

    def __len__(self) -> int:
        return len(self._addresses)

    def __repr__(self) -> str:
        return f"<AddressRegistry {len(self)} entries>"

    def set(self, name: str, address: HexAddress | str) -> ChecksumAddress:
        """Add or overwrite an entry.

        :return:
            The checksummed address stored.
        """
        assert name, "Registry key must be a non-empty string"
        if not is_address(address):
            raise ValueError(f"Not a valid address for {name}: {address}")
        checksummed = to_checksum_address(address)
        previous = self._addresses.get(name)
        if previous is not None and previous != checksummed:
            logger.warning("Overwriting registry entry %s: %s -> %s", name, previous, checksummed)
        self._addresses[name] = checksummed
        return checksummed

    def snapshot(self) -> Mapping[str, ChecksumAddress]:
        """Read-only copy of the current contents."""
        return MappingProxyType(dict(self._addresses))


def load_address_registry(path: Path) -> AddressRegistry:
    """Load a registry snapshot from a JSON file.

    The file is a flat ``{"name": "0x..."}`` object. Nested objects are
    flattened one level, so ``{"Bridges": {"SharedBridgeProxy": "0x..."}}``
    becomes ``SharedBridgeProxy``.
    """
    with open(path, "r") as inp:
        data = json.load(inp)

    assert isinstance(data, dict), f"Address file {path} must contain a JSON object"

    flat = {}
    for name, value in data.items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[name] = value

    registry = AddressRegistry(flat)
    logger.info("Loaded %d addresses from %s", len(registry), path)
    return registry


def save_address_registry(registry: Mapping[str, str], path: Path, timeout: int = 60):
    """Write the registry as a JSON file.

    Takes a file lock next to the output, so two processes
    writing the same file do not interleave.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(path.parent / (path.name + ".lock"), timeout=timeout)
    with lock:
        with open(path, "w") as out:
            json.dump(dict(registry), out, indent=2, sort_keys=True)
    logger.info("Wrote %d addresses to %s", len(registry), path)

"""Read compiled contract artifacts.

Compilation is not our job. We read the JSON files Hardhat or Foundry
leave behind:

- Hardhat: ``artifacts/contracts/<File>.sol/<Name>.json`` with ``"bytecode": "0x..."``
- Foundry: ``out/<File>.sol/<Name>.json`` with ``"bytecode": {"object": "0x..."}``
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from eth_utils import to_bytes

from hyperchain_bootstrap.transactions import function_selector

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ContractArtifact:
    """Compiled contract."""

    name: str

    #: Creation bytecode
    bytecode: bytes

    abi: list[dict] = field(default_factory=list)

    def get_function_selectors(self) -> list[bytes]:
        """4-byte selectors of every function in the ABI, in ABI order."""
        return get_function_selectors(self.abi)


class ArtifactSource(Protocol):
    """Where steps get their bytecode from."""

    def get(self, name: str) -> ContractArtifact:
        ...


def _read_bytecode(data: dict, key: str) -> bytes:
    value = data.get(key)
    if isinstance(value, dict):
        # Foundry
        value = value.get("object")
    if not value:
        return b""
    if not value.startswith("0x"):
        value = "0x" + value
    return to_bytes(hexstr=value)


def load_artifact(path: Path, name: str | None = None) -> ContractArtifact:
    """Load one compiled artifact JSON file.

    :param name:
        Contract name. Defaults to ``contractName`` in the file, or the file stem.
    """
    with open(path, "r") as inp:
        data = json.load(inp)

    name = name or data.get("contractName") or Path(path).stem
    bytecode = _read_bytecode(data, "bytecode")
    assert bytecode, f"No creation bytecode in {path}"
    return ContractArtifact(name=name, bytecode=bytecode, abi=data.get("abi", []))


class ArtifactStore:
    """Look up artifacts by contract name under a build output directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        assert self.root.is_dir(), f"Artifact directory does not exist: {self.root}"
        self._cache: dict[str, ContractArtifact] = {}

    def __repr__(self) -> str:
        return f"<ArtifactStore {self.root}>"

    def get(self, name: str) -> ContractArtifact:
        if name in self._cache:
            return self._cache[name]

        # Skip Hardhat debug files (Name.dbg.json) and Foundry build info
        candidates = [p for p in self.root.rglob(f"{name}.json") if "build-info" not in p.parts]
        if not candidates:
            raise FileNotFoundError(f"No artifact for {name} under {self.root}")
        if len(candidates) > 1:
            raise ValueError(f"Ambiguous artifact {name}: {', '.join(str(c) for c in candidates)}")

        artifact = load_artifact(candidates[0], name)
        logger.debug("Loaded artifact %s from %s, %d bytes", name, candidates[0], len(artifact.bytecode))
        self._cache[name] = artifact
        return artifact


def _canonical_type(abi_input: dict) -> str:
    """Expand ``tuple`` ABI types into their component form."""
    abi_type = abi_input["type"]
    if abi_type.startswith("tuple"):
        suffix = abi_type[len("tuple") :]
        inner = ",".join(_canonical_type(c) for c in abi_input.get("components", []))
        return f"({inner}){suffix}"
    return abi_type


def get_function_selectors(abi: list[dict]) -> list[bytes]:
    """Selectors of all functions in an ABI.

    Used to build diamond facet cuts.
    """
    selectors = []
    for entry in abi:
        if entry.get("type") != "function":
            continue
        arg_types = [_canonical_type(i) for i in entry.get("inputs", [])]
        selectors.append(function_selector(entry["name"], arg_types))
    return selectors

# artifacts.py
from __future__ import annotations

import hashlib
import json
import shutil
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from .errors import ExternalServiceFailure
from .model import ArtifactRef

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Jobs pass data to their dependents by name, never through ambient files:
#
#   producer instance  --put(name, data)-->  relay  --get(name)-->  consumer
#
# The relay is scoped to one run. A name has exactly one producer; a
# consumer only reads after its producer dependency has SUCCEEDED, which the
# scheduler guarantees, so reads never race with writes.
#
# Where the bytes live is the store's business (memory, a run directory,
# an object store behind the same two calls).
# ---------------------------------------------------------------------

Payload = Union[bytes, str, Path]


class ArtifactStore(Protocol):
    def put(self, name: str, data: Payload) -> object: ...

    def get(self, handle: object) -> Union[bytes, str, Path]: ...


class MemoryStore:
    """Keeps payloads in a dict. Handles are the artifact names."""

    def __init__(self):
        self._items: Dict[str, Payload] = {}

    def put(self, name: str, data: Payload) -> str:
        self._items[name] = data
        return name

    def get(self, handle: object) -> Payload:
        try:
            return self._items[str(handle)]
        except KeyError:
            raise ExternalServiceFailure("artifact_store", f"No artifact stored under {handle!r}")


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


class DirectoryStore:
    """
    Copies artifacts into a run-scoped directory:

        <root>/<name>/<file or dir>
        <root>/manifest.json        name -> {path, sha256}

    Strings are treated as small text values (e.g. an upload URL), bytes
    are written to a file, paths are copied.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._manifest_path = self.root / "manifest.json"
        self._manifest: Dict[str, Dict[str, str]] = {}

    def _write_manifest(self) -> None:
        self._manifest_path.write_text(
            json.dumps(self._manifest, sort_keys=True, indent=2),
            encoding="utf-8",
        )

    def put(self, name: str, data: Payload) -> Path:
        slot = self.root / name.replace("/", "_")
        try:
            if slot.exists():
                shutil.rmtree(slot)
            slot.mkdir(parents=True)

            if isinstance(data, Path):
                if not data.exists():
                    raise ExternalServiceFailure("artifact_store", f"Output path does not exist: {data}", artifact=name)
                target = slot / data.name
                if data.is_dir():
                    shutil.copytree(data, target)
                else:
                    shutil.copy2(data, target)
                digest = _sha256_file(target) if target.is_file() else ""
                kind = "path"
            elif isinstance(data, bytes):
                target = slot / "data.bin"
                target.write_bytes(data)
                digest = hashlib.sha256(data).hexdigest()
                kind = "bytes"
            else:
                target = slot / "value.txt"
                target.write_text(data, encoding="utf-8")
                digest = hashlib.sha256(data.encode("utf-8")).hexdigest()
                kind = "text"
        except OSError as e:
            raise ExternalServiceFailure("artifact_store", f"Could not store artifact {name!r}: {e}", artifact=name) from e

        self._manifest[name] = {"path": str(target.relative_to(self.root)), "sha256": digest, "kind": kind}
        self._write_manifest()
        return target

    def get(self, handle: object) -> Payload:
        path = Path(str(handle))
        if not path.exists():
            raise ExternalServiceFailure("artifact_store", f"Artifact missing from store: {path}")
        if path.name == "value.txt":
            return path.read_text(encoding="utf-8")
        if path.name == "data.bin":
            return path.read_bytes()
        return path


class ArtifactRelay:
    """Run-scoped, by-name store of outputs passed between job instances."""

    def __init__(self, store: Optional[ArtifactStore] = None):
        self.store = store if store is not None else MemoryStore()
        self._lock = threading.Lock()
        self._entries: Dict[str, ArtifactRef] = {}

    def put(self, producer_instance_id: str, name: str, data: Payload) -> ArtifactRef:
        with self._lock:
            existing = self._entries.get(name)
            if existing is not None and existing.producer_instance_id != producer_instance_id:
                raise ExternalServiceFailure(
                    "artifact_store",
                    f"Artifact {name!r} already written by {existing.producer_instance_id}",
                    job=producer_instance_id,
                )
            handle = self.store.put(name, data)
            ref = ArtifactRef(producer_instance_id=producer_instance_id, name=name, location_handle=handle)
            self._entries[name] = ref
            return ref

    def ref(self, name: str) -> ArtifactRef:
        with self._lock:
            ref = self._entries.get(name)
        if ref is None:
            raise ExternalServiceFailure("artifact_store", f"No artifact named {name!r} in this run")
        return ref

    def get(self, ref_or_name: ArtifactRef | str) -> Payload:
        ref = self.ref(ref_or_name) if isinstance(ref_or_name, str) else ref_or_name
        return self.store.get(ref.location_handle)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries

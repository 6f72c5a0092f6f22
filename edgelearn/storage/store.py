"""
EdgeLearn Core - Weight Stores

The engine consumes any object with ``load``/``save``/``delete``/``users``
that is atomic per key. Two implementations ship with the package:

    - InMemoryWeightStore: deep-copied records, for tests and single-process use
    - FileWeightStore: one ``.npz`` per user, written through a temp file
      and ``os.replace`` so a reader never sees a partial write
"""

from typing import Dict, List, Optional, Protocol
import json
import os
import tempfile
import threading
from pathlib import Path

import numpy as np
from loguru import logger

from ..core.errors import ValidationError
from ..core.types import LayerKind, LayerWeights, ModelWeights
from ..privacy.anonymize import pseudonymize, DEFAULT_SALT


class WeightStore(Protocol):
    def load(self, user_id: str) -> Optional[ModelWeights]: ...

    def save(self, user_id: str, weights: ModelWeights) -> None: ...

    def delete(self, user_id: str) -> bool: ...

    def users(self) -> List[str]: ...


class InMemoryWeightStore:
    def __init__(self):
        self._records: Dict[str, ModelWeights] = {}
        self._lock = threading.Lock()
        self.writes = 0

    def load(self, user_id: str) -> Optional[ModelWeights]:
        with self._lock:
            record = self._records.get(user_id)
            return record.copy() if record is not None else None

    def save(self, user_id: str, weights: ModelWeights) -> None:
        snapshot = weights.copy()
        with self._lock:
            self._records[user_id] = snapshot
            self.writes += 1

    def delete(self, user_id: str) -> bool:
        with self._lock:
            return self._records.pop(user_id, None) is not None

    def users(self) -> List[str]:
        with self._lock:
            return list(self._records)


class FileWeightStore:
    """
    File-backed store. File names are pseudonyms; the user index maps them
    back and is itself replaced atomically.

    ``index.json`` holds raw user ids so recovery can enumerate users. It is
    trusted device-local state: every file is created owner-only (0600) and
    the directory must not be shared or synced off the device.
    """

    INDEX_FILE = "index.json"

    def __init__(self, root, salt: str = DEFAULT_SALT):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._salt = salt
        self._lock = threading.Lock()

    def _path(self, user_id: str) -> Path:
        return self.root / f"{pseudonymize(user_id, self._salt)}.npz"

    def _read_index(self) -> Dict[str, str]:
        path = self.root / self.INDEX_FILE
        if not path.exists():
            return {}
        with open(path, "r") as f:
            return json.load(f)

    def _write_index(self, index: Dict[str, str]) -> None:
        self._atomic_write(self.root / self.INDEX_FILE, lambda f: f.write(json.dumps(index).encode("utf-8")))

    def _atomic_write(self, target: Path, writer) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=target.suffix)
        try:
            with os.fdopen(fd, "wb") as f:
                writer(f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def load(self, user_id: str) -> Optional[ModelWeights]:
        path = self._path(user_id)
        if not path.exists():
            return None
        with np.load(path, allow_pickle=False) as data:
            meta = json.loads(str(data["meta"]))
            layers = []
            for i, layer_meta in enumerate(meta["layers"]):
                layers.append(LayerWeights(
                    weights=data[f"w{i}"].astype(np.float32),
                    biases=data[f"b{i}"].astype(np.float32),
                    kind=LayerKind(layer_meta["kind"]),
                    activation=layer_meta["activation"],
                ))
        return ModelWeights(
            layers=layers,
            version=meta["version"],
            precision_bits=meta["precision_bits"],
            sparse=meta["sparse"],
        )

    def save(self, user_id: str, weights: ModelWeights) -> None:
        if not weights.layers:
            raise ValidationError("Refusing to persist a model without layers")
        meta = {
            "version": weights.version,
            "precision_bits": weights.precision_bits,
            "sparse": weights.sparse,
            "layers": [{"kind": layer.kind.value, "activation": layer.activation} for layer in weights.layers],
        }
        arrays = {"meta": np.array(json.dumps(meta))}
        for i, layer in enumerate(weights.layers):
            arrays[f"w{i}"] = layer.weights
            arrays[f"b{i}"] = layer.biases

        with self._lock:
            self._atomic_write(self._path(user_id), lambda f: np.savez(f, **arrays))
            index = self._read_index()
            index[pseudonymize(user_id, self._salt)] = user_id
            self._write_index(index)
        logger.debug(f"Persisted model v{weights.version} to {self._path(user_id).name}")

    def delete(self, user_id: str) -> bool:
        with self._lock:
            path = self._path(user_id)
            existed = path.exists()
            if existed:
                path.unlink()
            index = self._read_index()
            if index.pop(pseudonymize(user_id, self._salt), None) is not None:
                self._write_index(index)
            return existed

    def users(self) -> List[str]:
        with self._lock:
            return list(self._read_index().values())


__all__ = ['WeightStore', 'InMemoryWeightStore', 'FileWeightStore']

# deck/components/workflows/layout.py
"""
Project-local directory layout of the three layers.

    <project>/.deck/templates/<name>/
    <project>/.deck/custom/<name>/
    <project>/.deck/images/<name>/
"""
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from deck.constants import (
    CUSTOM_DIR_NAME,
    DECK_DIR_NAME,
    ENV_FILE,
    IMAGES_DIR_NAME,
    TEMPLATES_DIR_NAME,
)
from deck.core.environments import Layer
from deck.utils.env_files import read_env
from deck.utils.logging import get_logger

logger = get_logger(__name__)

_STAGING_MARKER = ".tmp-"


class LayerArtifact(BaseModel):
    """A Template, Custom or Image directory."""
    name: str
    path: Path
    layer: Layer
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    variables: Dict[str, str] = Field(default_factory=dict)


def find_project_root(start: Optional[Path] = None) -> Path:
    """Walk up from ``start`` to the nearest directory holding ``.deck``; else ``start``."""
    start = Path(start or Path.cwd()).resolve()
    for candidate in (start, *start.parents):
        if (candidate / DECK_DIR_NAME).is_dir():
            return candidate
    return start


def copy_tree_atomic(source: Path, destination: Path, ignore=None) -> Path:
    """
    Copy ``source`` (hidden files included) to ``destination`` via a staging
    directory and a rename, so ``destination`` appears complete or not at all.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=f".{destination.name}{_STAGING_MARKER}", dir=destination.parent))
    try:
        shutil.copytree(source, staging, symlinks=True, ignore=ignore, dirs_exist_ok=True)
        os.rename(staging, destination)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise
    return destination


class ProjectLayout:
    """Paths and listings for one project's ``.deck`` directory."""

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)
        self.deck_dir = self.project_root / DECK_DIR_NAME
        self._layer_dirs = {
            Layer.TEMPLATE: self.deck_dir / TEMPLATES_DIR_NAME,
            Layer.CUSTOM: self.deck_dir / CUSTOM_DIR_NAME,
            Layer.IMAGE: self.deck_dir / IMAGES_DIR_NAME,
        }

    @property
    def templates_dir(self) -> Path:
        return self._layer_dirs[Layer.TEMPLATE]

    @property
    def custom_dir(self) -> Path:
        return self._layer_dirs[Layer.CUSTOM]

    @property
    def images_dir(self) -> Path:
        return self._layer_dirs[Layer.IMAGE]

    def ensure(self) -> None:
        for path in self._layer_dirs.values():
            path.mkdir(parents=True, exist_ok=True)

    def layer_dir(self, layer: Layer) -> Path:
        return self._layer_dirs[layer]

    def path_for(self, layer: Layer, name: str) -> Path:
        return self._layer_dirs[layer] / name

    def list_names(self, layer: Layer) -> List[str]:
        """Artifact directory names in a layer, hidden and staging entries excluded."""
        root = self._layer_dirs[layer]
        if not root.is_dir():
            return []
        return sorted(
            entry.name for entry in root.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def exists(self, layer: Layer, name: str) -> bool:
        return self.path_for(layer, name).is_dir()

    def unique_name(self, layer: Layer, base: str) -> str:
        """``base``, or ``base-2``, ``base-3``... whichever is free in the layer."""
        if not self.exists(layer, base):
            return base
        sequence = 2
        while self.exists(layer, f"{base}-{sequence}"):
            sequence += 1
        return f"{base}-{sequence}"

    def artifact(self, layer: Layer, name: str) -> Optional[LayerArtifact]:
        path = self.path_for(layer, name)
        if not path.is_dir():
            return None
        stat = path.stat()
        return LayerArtifact(
            name=name,
            path=path,
            layer=layer,
            created_at=datetime.fromtimestamp(stat.st_ctime).astimezone(),
            modified_at=datetime.fromtimestamp(stat.st_mtime).astimezone(),
            variables=read_env(path / ENV_FILE),
        )

    def artifacts(self, layer: Layer) -> List[LayerArtifact]:
        return [a for a in (self.artifact(layer, n) for n in self.list_names(layer)) if a is not None]

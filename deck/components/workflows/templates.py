# deck/components/workflows/templates.py
"""
Template synchronisation from a remote git repository.

Templates are read-only and replaced wholesale on every sync. When the
repository cannot be reached, cached templates keep working in offline mode.
"""
import os
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

import aiohttp
from pydantic import BaseModel, Field

from deck.components.execution.engine import ExecutionEngine, execution_engine
from deck.components.workflows.layout import ProjectLayout, copy_tree_atomic
from deck.config import TemplatesConfig
from deck.constants import TEMPLATES_SUBDIR
from deck.core.environments import Layer
from deck.core.errors import EngineUnavailableError, ErrorKind, OperationResult
from deck.utils.logging import get_logger

logger = get_logger(__name__)

SYNC_MARKER = ".last-sync"
SYNC_FRESHNESS = timedelta(hours=1)


class TemplateInfo(BaseModel):
    name: str
    path: Path
    description: str = ""
    files: List[str] = Field(default_factory=list)


class TemplateSyncResult(OperationResult):
    synced: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    offline: bool = False
    skipped: bool = False


class TemplateManager:
    """Keeps the project's Template layer in step with the remote repository."""

    def __init__(
        self,
        layout: ProjectLayout,
        config: Optional[TemplatesConfig] = None,
        executor: Optional[ExecutionEngine] = None,
    ):
        self._layout = layout
        self._config = config or TemplatesConfig()
        self._executor = executor or execution_engine
        self._logger = logger

    # --- Network ---

    async def check_repository_reachable(self, url: Optional[str] = None) -> bool:
        """
        Probe the repository host over HTTP(S).

        Non-HTTP URLs (ssh, local paths) are left to git itself.
        """
        url = url or self._config.repository
        if urlparse(url).scheme not in ("http", "https"):
            return True

        timeout = aiohttp.ClientTimeout(total=self._config.sync_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.head(url, allow_redirects=True) as response:
                    reachable = response.status < 500
        except (aiohttp.ClientError, TimeoutError) as e:
            self._logger.warning(f"Template repository {url} is unreachable: {e}")
            return False
        self._logger.debug(f"Template repository {url} reachable: {reachable}")
        return reachable

    # --- Sync ---

    def _last_sync(self) -> Optional[datetime]:
        marker = self._layout.templates_dir / SYNC_MARKER
        if not marker.is_file():
            return None
        try:
            return datetime.fromisoformat(marker.read_text(encoding="utf-8").strip())
        except ValueError:
            return None

    def _replace_template(self, source: Path, name: str) -> None:
        destination = self._layout.path_for(Layer.TEMPLATE, name)
        retired = None
        if destination.exists():
            retired = Path(tempfile.mkdtemp(prefix=f".{name}.old-", dir=destination.parent))
            os.rmdir(retired)
            os.rename(destination, retired)
        try:
            copy_tree_atomic(source, destination, ignore=shutil.ignore_patterns(".git"))
        except BaseException:
            if retired is not None:
                os.rename(retired, destination)
            raise
        if retired is not None:
            shutil.rmtree(retired, ignore_errors=True)

    async def sync_templates(self, force: bool = False) -> TemplateSyncResult:
        """
        Clone the repository and replace the local templates.

        Args:
            force: Sync even if the last sync is recent

        Returns:
            Names synced and removed; network_unreachable when the
            repository could not be fetched
        """
        last = self._last_sync()
        if not force and last is not None and datetime.now().astimezone() - last < SYNC_FRESHNESS:
            self._logger.debug(f"Templates synced at {last.isoformat()}, skipping")
            return TemplateSyncResult.ok("Templates are up to date", skipped=True, synced=self.template_names())

        repository = self._config.repository
        if not await self.check_repository_reachable(repository):
            return TemplateSyncResult.fail(
                ErrorKind.NETWORK_UNREACHABLE,
                f"Cannot reach template repository {repository}",
                resource=repository,
                operation="sync_templates",
                layer=Layer.TEMPLATE.value,
                remediation="Check your network connection or set DECK_TEMPLATE_REPOSITORY",
            )

        self._layout.ensure()
        with tempfile.TemporaryDirectory(prefix="deck-templates-") as tmp:
            checkout = Path(tmp) / "repo"
            try:
                _, stderr, code = await self._executor.execute_command(
                    ["git", "clone", "--depth", "1", "--branch", self._config.branch, repository, str(checkout)],
                    timeout=self._config.sync_timeout * 10,
                )
            except EngineUnavailableError as e:
                return TemplateSyncResult.fail(
                    ErrorKind.NETWORK_UNREACHABLE,
                    str(e),
                    resource=repository,
                    operation="sync_templates",
                    layer=Layer.TEMPLATE.value,
                    remediation="Install git or check your network connection",
                )
            if code != 0:
                return TemplateSyncResult.fail(
                    ErrorKind.NETWORK_UNREACHABLE,
                    f"git clone failed: {stderr.strip()}",
                    resource=repository,
                    operation="sync_templates",
                    layer=Layer.TEMPLATE.value,
                )

            source_root = checkout / TEMPLATES_SUBDIR
            if not source_root.is_dir():
                return TemplateSyncResult.fail(
                    ErrorKind.CONFIGURATION_INVALID,
                    f"Repository has no '{TEMPLATES_SUBDIR}' directory",
                    resource=repository,
                    operation="sync_templates",
                    layer=Layer.TEMPLATE.value,
                )

            upstream = sorted(p.name for p in source_root.iterdir() if p.is_dir() and not p.name.startswith("."))
            for name in upstream:
                self._replace_template(source_root / name, name)

        removed = [name for name in self.template_names() if name not in upstream]
        for name in removed:
            shutil.rmtree(self._layout.path_for(Layer.TEMPLATE, name), ignore_errors=True)

        (self._layout.templates_dir / SYNC_MARKER).write_text(
            datetime.now().astimezone().isoformat(), encoding="utf-8"
        )
        self._logger.info(f"Synced {len(upstream)} template(s) from {repository}")
        return TemplateSyncResult.ok(
            f"Synced {len(upstream)} template(s)",
            synced=upstream,
            removed=removed,
        )

    async def ensure_templates(self, sync: bool = True) -> TemplateSyncResult:
        """
        Make templates available, falling back to the cache when offline.

        Args:
            sync: Try to sync first (honours ``auto_update``)
        """
        cached = self.template_names()
        if sync and self._config.auto_update:
            result = await self.sync_templates()
            if result.success:
                return result
            if cached:
                self._logger.warning(f"Using cached templates (offline): {result.message}")
                return TemplateSyncResult.ok(
                    "Using cached templates",
                    synced=cached,
                    offline=True,
                    warnings=[f"Template sync failed, working offline: {result.message}"],
                )
            return TemplateSyncResult.fail(
                ErrorKind.NETWORK_UNREACHABLE,
                f"No cached templates and sync failed: {result.message}",
                resource=self._config.repository,
                operation="ensure_templates",
                layer=Layer.TEMPLATE.value,
                remediation="Connect to the network and run 'deck templates sync'",
            )

        if cached:
            return TemplateSyncResult.ok("Using local templates", synced=cached, skipped=True)
        return TemplateSyncResult.fail(
            ErrorKind.RESOURCE_NOT_FOUND,
            "No templates available",
            operation="ensure_templates",
            layer=Layer.TEMPLATE.value,
            remediation="Run 'deck templates sync'",
        )

    # --- Listing ---

    def template_names(self) -> List[str]:
        return self._layout.list_names(Layer.TEMPLATE)

    def list_templates(self) -> List[TemplateInfo]:
        """Local templates with the first README line as description."""
        templates = []
        for name in self.template_names():
            path = self._layout.path_for(Layer.TEMPLATE, name)
            description = ""
            for readme in ("README.md", "README.txt", "README"):
                readme_path = path / readme
                if readme_path.is_file():
                    lines = readme_path.read_text(encoding="utf-8", errors="replace").splitlines()
                    first = next((line for line in lines if line.strip()), "")
                    description = first.lstrip("# ").strip()
                    break
            files = sorted(p.name for p in path.iterdir() if p.is_file())
            templates.append(TemplateInfo(name=name, path=path, description=description, files=files))
        return templates

"""
Fileset sync: applies a planned FilesetDiff to a volume.

Steps run in a fixed order: copy created/updated files, remove deleted
paths, apply ownership, write the sentinel manifest, restart services.
The sentinel is written only after the content it describes is in place.
"""

import asyncio
import logging

from ..concurrency import check_cancelled
from ..errors import ErrorKind, HarbormasterError, aggregate, common_kind
from ..filesets import SENTINEL_FILENAME, build_archive, build_ownership_script
from ..models import ApplyMode, AttachedServices, FilesetSpec
from ..runtime import ExtractArchive, RemovePaths, RunScript, RuntimeClient, StagingOp, WriteFile
from ..assembly import FilesetChange

logger = logging.getLogger(__name__)


class FilesetSyncer:
    """Moves file content into volumes through the runtime's staging container."""

    def __init__(self, runtime: RuntimeClient):
        self.runtime = runtime

    async def _staging(self, context: str, spec: FilesetSpec, op: StagingOp, cancel) -> None:
        check_cancelled(cancel, f"fileset.{spec.name}")
        try:
            result = await self.runtime.run_staging_container(context, spec.target_volume, op)
        except HarbormasterError:
            raise
        except Exception as e:
            raise HarbormasterError(
                f"fileset.{spec.name}", ErrorKind.EXTERNAL, f"{type(op).__name__} failed: {e}", cause=e
            ) from e
        if result is not None and result.stderr:
            for line in result.stderr.decode("utf-8", "replace").splitlines():
                if line.strip():
                    logger.warning(f"[{context}] fileset {spec.name}: {line}")

    async def restart_targets(self, context: str, spec: FilesetSpec) -> list[str]:
        """Services to restart (or stop/start) around a sync of ``spec``."""
        target = spec.restart_services
        if isinstance(target, AttachedServices):
            services = await self.runtime.discover_attached_services(context, spec.target_volume)
            return sorted(set(services))
        return list(target.services)

    async def sync(self, context: str, change: FilesetChange, cancel: asyncio.Event | None = None) -> None:
        """Apply ``change`` to its target volume.

        In cold mode the target services are started again even when a
        step fails; a failed restart is reported together with the step's
        error.

        Raises:
            HarbormasterError: on the first failing step; later steps do not run
        """
        spec = change.spec
        content_changed = not change.diff.is_empty()
        targets = await self.restart_targets(context, spec) if content_changed else []

        if spec.apply_mode != ApplyMode.COLD or not targets:
            await self._write(context, change, cancel)
            if targets:
                check_cancelled(cancel, f"fileset.{spec.name}")
                logger.info(f"[{context}] restarting {', '.join(targets)} after sync of {spec.name}")
                await self.runtime.restart_services(context, targets)
            return

        logger.info(f"[{context}] stopping {', '.join(targets)} for cold sync of {spec.name}")
        await self.runtime.stop_services(context, targets)
        try:
            await self._write(context, change, cancel)
        except Exception as e:
            logger.warning(f"[{context}] cold sync of {spec.name} failed, starting {', '.join(targets)} again")
            try:
                await self.runtime.start_services(context, targets)
            except Exception as restart_err:
                errors = [e, restart_err]
                err = aggregate(
                    f"fileset.{spec.name}", common_kind(errors, ErrorKind.EXTERNAL),
                    "cold sync failed and services did not restart", errors,
                )
                raise err
            raise
        await self.runtime.start_services(context, targets)

    async def _write(self, context: str, change: FilesetChange, cancel) -> None:
        spec = change.spec
        diff = change.diff

        paths = diff.changed_paths()
        if paths:
            archive = await asyncio.to_thread(build_archive, spec.source, paths)
            await self._staging(context, spec, ExtractArchive(spec.target_path, archive), cancel)
            logger.debug(f"[{context}] fileset {spec.name}: copied {len(paths)} files")

        if diff.to_delete:
            await self._staging(context, spec, RemovePaths(spec.target_path, tuple(diff.to_delete)), cancel)
            logger.debug(f"[{context}] fileset {spec.name}: removed {len(diff.to_delete)} paths")

        if spec.ownership is not None and not spec.ownership.is_empty() and not diff.is_empty():
            script = build_ownership_script(spec.target_path, spec.ownership, diff)
            await self._staging(context, spec, RunScript(spec.target_path, script), cancel)

        if change.manifest is not None:
            content = change.manifest.to_json().encode("utf-8")
            await self._staging(context, spec, WriteFile(spec.target_path, SENTINEL_FILENAME, content), cancel)

    async def remove(self, context: str, change: FilesetChange, cancel: asyncio.Event | None = None) -> None:
        """Remove every file the remote sentinel lists, then the sentinel."""
        spec = change.spec
        paths = [entry.path for entry in change.remote.files] if change.remote else []
        paths.append(SENTINEL_FILENAME)
        await self._staging(context, spec, RemovePaths(spec.target_path, tuple(paths)), cancel)

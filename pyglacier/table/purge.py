# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
"""Reclaim the files of a dropped table.

Every file that is reachable from any snapshot of the table is deleted: the data and
delete files listed in the manifests, the manifests, the manifest lists and the
metadata files. The work is best effort. A file that cannot be read or deleted is
logged and recorded in the result, and the remaining files are still processed.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from pyglacier.io import FileIO
from pyglacier.manifest import ManifestFile
from pyglacier.table import TableProperties
from pyglacier.table.metadata import TableMetadata
from pyglacier.table.snapshots import Snapshot
from pyglacier.utils.concurrent import ExecutorFactory
from pyglacier.utils.properties import property_as_bool
from pyglacier.utils.tasks import for_each_suppressing_failures

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRACKED_FILES = 100_000


class DeletedFileSet:
    """A thread-safe set of the paths that were deleted, holding at most `max_size` paths.

    When full, the path that was added first is evicted. An evicted path can be added
    again, so a file that is shared by many manifests may be deleted more than once.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_TRACKED_FILES) -> None:
        if max_size < 1:
            raise ValueError(f"max_size should be positive: {max_size}")
        self._max_size = max_size
        self._paths: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()
        self.evictions = 0

    def add(self, path: str) -> bool:
        """Add the path, and return whether it was absent."""
        with self._lock:
            if path in self._paths:
                return False
            self._paths[path] = None
            if len(self._paths) > self._max_size:
                self._paths.popitem(last=False)
                self.evictions += 1
            return True

    def __contains__(self, path: object) -> bool:
        """Return whether the path is currently tracked."""
        with self._lock:
            return path in self._paths

    def __len__(self) -> int:
        """Return the number of tracked paths."""
        with self._lock:
            return len(self._paths)


@dataclass(kw_only=True)
class DropTableDataResult:
    deleted_manifest_lists: int = 0
    deleted_manifests: int = 0
    deleted_metadata_files: int = 0
    deleted_data_files: int = 0
    already_deleted_files: int = 0
    failed_deletions: Set[str] = field(default_factory=set)
    failed_manifest_reads: Set[str] = field(default_factory=set)
    skipped_manifests: Set[str] = field(default_factory=set)


def _collect_reachable(io: FileIO, metadata: TableMetadata, result: DropTableDataResult) -> Tuple[List[ManifestFile], List[str]]:
    """Return the distinct manifests and manifest lists of all the snapshots."""
    snapshots_by_manifest_list: Dict[str, Snapshot] = {}
    for snapshot in metadata.snapshots:
        if snapshot.manifest_list is not None:
            snapshots_by_manifest_list.setdefault(snapshot.manifest_list, snapshot)

    manifests: Dict[str, ManifestFile] = {}

    def _read_manifest_list(snapshot: Snapshot) -> None:
        for manifest in snapshot.manifests(io):
            manifests.setdefault(manifest.manifest_path, manifest)

    outcome = for_each_suppressing_failures(
        list(snapshots_by_manifest_list.values()),
        _read_manifest_list,
        on_failure=lambda snapshot, exc: logger.warning(
            "Failed to read manifest list: %s", snapshot.manifest_list, exc_info=exc
        ),
    )
    result.failed_manifest_reads.update(snapshot.manifest_list for snapshot in outcome.failed_items)

    return list(manifests.values()), list(snapshots_by_manifest_list)


def _delete_all(
    io: FileIO, locations: List[str], kind: str, result: DropTableDataResult, executor: Optional[Executor] = None
) -> int:
    outcome = for_each_suppressing_failures(
        locations,
        io.delete,
        executor=executor,
        on_failure=lambda location, exc: logger.warning("Delete failed for %s: %s", kind, location, exc_info=exc),
    )
    result.failed_deletions.update(outcome.failed_items)
    return len(outcome.succeeded)


def _delete_data_files(
    io: FileIO,
    manifests: List[ManifestFile],
    result: DropTableDataResult,
    executor: Executor,
    max_tracked_files: int,
    should_stop: Optional[Callable[[], bool]],
) -> None:
    deleted_files = DeletedFileSet(max_tracked_files)
    lock = threading.Lock()
    deleted: List[str] = []
    already_deleted: List[str] = []

    def _delete_entries(manifest: ManifestFile) -> None:
        for entry in manifest.fetch_manifest_entry(io, discard_deleted=False):
            path = entry.data_file.file_path
            if not deleted_files.add(path):
                logger.debug("Skipping file that was already deleted: %s", path)
                continue
            try:
                io.delete(path)
            except FileNotFoundError:
                # expected when the path was evicted from the set and deleted before
                logger.debug("File was already deleted: %s", path)
                with lock:
                    already_deleted.append(path)
            except Exception as exc:
                logger.warning("Delete failed for data file: %s", path, exc_info=exc)
                with lock:
                    result.failed_deletions.add(path)
            else:
                with lock:
                    deleted.append(path)

    outcome = for_each_suppressing_failures(
        manifests,
        _delete_entries,
        executor=executor,
        on_failure=lambda manifest, exc: logger.warning(
            "Failed to get deleted files: this may cause orphaned data files: %s", manifest.manifest_path, exc_info=exc
        ),
        should_stop=should_stop,
    )
    result.failed_manifest_reads.update(manifest.manifest_path for manifest in outcome.failed_items)
    result.skipped_manifests.update(manifest.manifest_path for manifest in outcome.skipped)
    result.deleted_data_files = len(deleted)
    result.already_deleted_files = len(already_deleted)


def drop_table_data(
    io: FileIO,
    metadata: TableMetadata,
    metadata_location: Optional[str] = None,
    executor: Optional[Executor] = None,
    max_tracked_files: int = DEFAULT_MAX_TRACKED_FILES,
    should_stop: Optional[Callable[[], bool]] = None,
) -> DropTableDataResult:
    """Delete all the files of a table that is no longer in the catalog.

    The manifests are read before anything is deleted. Unless the table disabled
    `gc.enabled`, the data and delete files listed in the manifests are deleted first, in
    parallel, followed by the manifests, the manifest lists and the metadata files.
    A manifest list that cannot be read is kept, and so are the metadata files that
    reference it, so that the table can be purged again later.

    Never raises for a file that cannot be read or deleted.

    Args:
        io: The FileIO to read and delete the files with.
        metadata: The last metadata of the dropped table.
        metadata_location: The location of the metadata file of `metadata`.
        executor: The executor to process the manifests on. Defaults to the shared executor.
        max_tracked_files: The number of deleted paths that are remembered to avoid deleting a shared file twice.
        should_stop: Checked before a manifest is processed. Once it returns True, the remaining
            manifests are skipped and kept.

    Returns:
        What was deleted, and what failed.
    """
    result = DropTableDataResult()
    manifests, manifest_lists = _collect_reachable(io, metadata, result)
    # an unreadable manifest list is the only reference to its manifests, so it is kept
    unreadable_lists = [location for location in manifest_lists if location in result.failed_manifest_reads]
    manifest_lists = [location for location in manifest_lists if location not in result.failed_manifest_reads]
    logger.info("Manifests to delete: %s", ", ".join(manifest.manifest_path for manifest in manifests))

    if property_as_bool(metadata.properties, TableProperties.GC_ENABLED, TableProperties.GC_ENABLED_DEFAULT):
        _delete_data_files(
            io,
            manifests,
            result,
            executor or ExecutorFactory.get_or_create(),
            max_tracked_files,
            should_stop,
        )
    else:
        logger.info("Not deleting data files, %s is disabled", TableProperties.GC_ENABLED)

    # manifests that were skipped still reference files that were not deleted
    manifest_paths = [manifest.manifest_path for manifest in manifests if manifest.manifest_path not in result.skipped_manifests]
    result.deleted_manifests = _delete_all(io, manifest_paths, "manifest", result, executor)
    result.deleted_manifest_lists = _delete_all(io, manifest_lists, "manifest list", result, executor)

    metadata_files = list(
        dict.fromkeys(
            [entry.metadata_file for entry in metadata.metadata_log] + ([metadata_location] if metadata_location else [])
        )
    )
    if unreadable_lists:
        # the metadata files still reference the manifest lists that were kept
        logger.warning(
            "Keeping %d metadata files, failed to read manifest lists: %s", len(metadata_files), ", ".join(unreadable_lists)
        )
    else:
        result.deleted_metadata_files = _delete_all(io, metadata_files, "metadata file", result, executor)

    logger.info(
        "Deleted %d data files, %d manifests, %d manifest lists and %d metadata files",
        result.deleted_data_files,
        result.deleted_manifests,
        result.deleted_manifest_lists,
        result.deleted_metadata_files,
    )
    if result.failed_deletions or result.failed_manifest_reads:
        logger.warning(
            "Failed to delete %d files and to read %d manifests, these may be orphaned",
            len(result.failed_deletions),
            len(result.failed_manifest_reads),
        )
    return result

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
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from pyglacier.manifest import DataFileContent, ManifestContent, ManifestEntry, ManifestFile
from pyglacier.table.snapshots import MetadataLogEntry, Snapshot, ancestors_of
from pyglacier.typedef import Identifier
from pyglacier.utils.concurrent import ExecutorFactory

if TYPE_CHECKING:
    import pyarrow as pa

    from pyglacier.table import Table

DELETE_FILE_CONTENT = {DataFileContent.POSITION_DELETES, DataFileContent.EQUALITY_DELETES}


class MetadataTableType(Enum):
    """The read-only views that can be addressed as `<table>.<view>`."""

    ENTRIES = "entries"
    FILES = "files"
    DATA_FILES = "data_files"
    DELETE_FILES = "delete_files"
    HISTORY = "history"
    METADATA_LOG_ENTRIES = "metadata_log_entries"
    SNAPSHOTS = "snapshots"
    MANIFESTS = "manifests"
    ALL_DATA_FILES = "all_data_files"
    ALL_DELETE_FILES = "all_delete_files"
    ALL_FILES = "all_files"
    ALL_MANIFESTS = "all_manifests"
    ALL_ENTRIES = "all_entries"

    @classmethod
    def from_name(cls, name: str) -> Optional[MetadataTableType]:
        """Look up the view by name, case insensitive. Return None for an unknown name."""
        lowered = name.lower()
        return next((table_type for table_type in cls if table_type.value == lowered), None)

    def __repr__(self) -> str:
        """Return the string representation of the MetadataTableType class."""
        return f"MetadataTableType.{self.name}"


class InspectTable:
    """A utility class for inspecting the metadata of a table.

    Attributes:
        tbl(table): The table object to be inspected.
    """

    tbl: Table

    def __init__(self, tbl: Table) -> None:
        self.tbl = tbl

        try:
            import pyarrow as pa  # noqa
        except ModuleNotFoundError as e:
            raise ModuleNotFoundError("For metadata operations PyArrow needs to be installed") from e

    def _get_snapshot(self, snapshot_id: Optional[int] = None) -> Optional[Snapshot]:
        if snapshot_id is not None:
            if snapshot := self.tbl.metadata.snapshot_by_id(snapshot_id):
                return snapshot
            raise ValueError(f"Cannot find snapshot with ID {snapshot_id}")
        return self.tbl.metadata.current_snapshot()

    def snapshots(self) -> "pa.Table":
        """Return a table with a row per snapshot.

        Columns: committed_at, snapshot_id, parent_id, operation, manifest_list and summary.
        """
        import pyarrow as pa

        snapshots_schema = pa.schema(
            [
                pa.field("committed_at", pa.timestamp(unit="ms"), nullable=False),
                pa.field("snapshot_id", pa.int64(), nullable=False),
                pa.field("parent_id", pa.int64(), nullable=True),
                pa.field("operation", pa.string(), nullable=True),
                pa.field("manifest_list", pa.string(), nullable=True),
                pa.field("summary", pa.map_(pa.string(), pa.string()), nullable=True),
            ]
        )
        snapshots = []
        for snapshot in self.tbl.metadata.snapshots:
            if summary := snapshot.summary:
                operation = summary.operation.value
                additional_properties = summary.additional_properties
            else:
                operation = None
                additional_properties = None

            snapshots.append(
                {
                    "committed_at": datetime.fromtimestamp(snapshot.timestamp_ms / 1000.0, tz=timezone.utc),
                    "snapshot_id": snapshot.snapshot_id,
                    "parent_id": snapshot.parent_snapshot_id,
                    "operation": operation,
                    "manifest_list": snapshot.manifest_list,
                    "summary": additional_properties,
                }
            )

        return pa.Table.from_pylist(snapshots, schema=snapshots_schema)

    def _get_entries_schema(self) -> "pa.Schema":
        import pyarrow as pa

        return pa.schema(
            [
                pa.field("status", pa.int8(), nullable=False),
                pa.field("snapshot_id", pa.int64(), nullable=True),
                pa.field("sequence_number", pa.int64(), nullable=True),
                pa.field("file_sequence_number", pa.int64(), nullable=True),
                pa.field("content", pa.int8(), nullable=False),
                pa.field("file_path", pa.string(), nullable=False),
                pa.field("file_format", pa.string(), nullable=False),
                pa.field("record_count", pa.int64(), nullable=False),
                pa.field("file_size_in_bytes", pa.int64(), nullable=False),
            ]
        )

    def _entries_from_manifest(self, manifest: ManifestFile) -> List[Dict[str, Any]]:
        return [_entry_to_row(entry) for entry in manifest.fetch_manifest_entry(self.tbl.io, discard_deleted=False)]

    def entries(self, snapshot_id: Optional[int] = None) -> "pa.Table":
        """Return a table with a row per manifest entry of a snapshot, the current one by default."""
        import pyarrow as pa

        rows: List[Dict[str, Any]] = []
        if snapshot := self._get_snapshot(snapshot_id):
            executor = ExecutorFactory.get_or_create()
            for manifest_rows in executor.map(self._entries_from_manifest, snapshot.manifests(self.tbl.io)):
                rows.extend(manifest_rows)
        return pa.Table.from_pylist(rows, schema=self._get_entries_schema())

    def all_entries(self) -> "pa.Table":
        """Return a table with a row per manifest entry, over the manifests of every snapshot."""
        import pyarrow as pa

        rows: List[Dict[str, Any]] = []
        executor = ExecutorFactory.get_or_create()
        for manifest_rows in executor.map(self._entries_from_manifest, self._all_manifests()):
            rows.extend(manifest_rows)
        return pa.Table.from_pylist(rows, schema=self._get_entries_schema())

    def _get_files_schema(self) -> "pa.Schema":
        import pyarrow as pa

        return pa.schema(
            [
                pa.field("content", pa.int8(), nullable=False),
                pa.field("file_path", pa.string(), nullable=False),
                pa.field("file_format", pa.string(), nullable=False),
                pa.field("spec_id", pa.int32(), nullable=True),
                pa.field("record_count", pa.int64(), nullable=False),
                pa.field("file_size_in_bytes", pa.int64(), nullable=False),
            ]
        )

    def _files_from_manifest(
        self, manifest: ManifestFile, data_file_filter: Optional[Set[DataFileContent]] = None
    ) -> List[Dict[str, Any]]:
        rows = []
        for entry in manifest.fetch_manifest_entry(self.tbl.io):
            data_file = entry.data_file
            if data_file_filter and data_file.content not in data_file_filter:
                continue
            rows.append(
                {
                    "content": data_file.content.value,
                    "file_path": data_file.file_path,
                    "file_format": data_file.file_format.value,
                    "spec_id": data_file.spec_id,
                    "record_count": data_file.record_count,
                    "file_size_in_bytes": data_file.file_size_in_bytes,
                }
            )
        return rows

    def _files(self, manifests: List[ManifestFile], data_file_filter: Optional[Set[DataFileContent]] = None) -> "pa.Table":
        import pyarrow as pa

        rows: List[Dict[str, Any]] = []
        executor = ExecutorFactory.get_or_create()
        for manifest_rows in executor.map(lambda manifest: self._files_from_manifest(manifest, data_file_filter), manifests):
            rows.extend(manifest_rows)
        return pa.Table.from_pylist(rows, schema=self._get_files_schema())

    def _snapshot_manifests(self, snapshot_id: Optional[int] = None) -> List[ManifestFile]:
        if snapshot := self._get_snapshot(snapshot_id):
            return snapshot.manifests(self.tbl.io)
        return []

    def files(self, snapshot_id: Optional[int] = None) -> "pa.Table":
        return self._files(self._snapshot_manifests(snapshot_id))

    def data_files(self, snapshot_id: Optional[int] = None) -> "pa.Table":
        return self._files(self._snapshot_manifests(snapshot_id), {DataFileContent.DATA})

    def delete_files(self, snapshot_id: Optional[int] = None) -> "pa.Table":
        return self._files(self._snapshot_manifests(snapshot_id), DELETE_FILE_CONTENT)

    def _all_manifests(self) -> List[ManifestFile]:
        """Return the manifests of every snapshot, each manifest once."""
        executor = ExecutorFactory.get_or_create()
        manifest_lists = executor.map(lambda snapshot: snapshot.manifests(self.tbl.io), self.tbl.snapshots())
        unique_manifests: Dict[str, ManifestFile] = {}
        for manifest_list in manifest_lists:
            for manifest in manifest_list:
                unique_manifests.setdefault(manifest.manifest_path, manifest)
        return list(unique_manifests.values())

    def all_files(self) -> "pa.Table":
        return self._files(self._all_manifests())

    def all_data_files(self) -> "pa.Table":
        return self._files(self._all_manifests(), {DataFileContent.DATA})

    def all_delete_files(self) -> "pa.Table":
        return self._files(self._all_manifests(), DELETE_FILE_CONTENT)

    def _get_manifests_schema(self) -> "pa.Schema":
        import pyarrow as pa

        return pa.schema(
            [
                pa.field("content", pa.int8(), nullable=False),
                pa.field("path", pa.string(), nullable=False),
                pa.field("length", pa.int64(), nullable=False),
                pa.field("partition_spec_id", pa.int32(), nullable=False),
                pa.field("added_snapshot_id", pa.int64(), nullable=True),
                pa.field("added_data_files_count", pa.int32(), nullable=False),
                pa.field("existing_data_files_count", pa.int32(), nullable=False),
                pa.field("deleted_data_files_count", pa.int32(), nullable=False),
                pa.field("added_delete_files_count", pa.int32(), nullable=False),
                pa.field("existing_delete_files_count", pa.int32(), nullable=False),
                pa.field("deleted_delete_files_count", pa.int32(), nullable=False),
            ]
        )

    def _get_all_manifests_schema(self) -> "pa.Schema":
        import pyarrow as pa

        return self._get_manifests_schema().append(pa.field("reference_snapshot_id", pa.int64(), nullable=False))

    def _manifest_rows(self, snapshot: Snapshot, is_all_manifests_table: bool = False) -> List[Dict[str, Any]]:
        rows = []
        for manifest in snapshot.manifests(self.tbl.io):
            is_data_file = manifest.content == ManifestContent.DATA
            is_delete_file = manifest.content == ManifestContent.DELETES
            row = {
                "content": manifest.content.value,
                "path": manifest.manifest_path,
                "length": manifest.manifest_length,
                "partition_spec_id": manifest.partition_spec_id,
                "added_snapshot_id": manifest.added_snapshot_id,
                "added_data_files_count": (manifest.added_files_count or 0) if is_data_file else 0,
                "existing_data_files_count": (manifest.existing_files_count or 0) if is_data_file else 0,
                "deleted_data_files_count": (manifest.deleted_files_count or 0) if is_data_file else 0,
                "added_delete_files_count": (manifest.added_files_count or 0) if is_delete_file else 0,
                "existing_delete_files_count": (manifest.existing_files_count or 0) if is_delete_file else 0,
                "deleted_delete_files_count": (manifest.deleted_files_count or 0) if is_delete_file else 0,
            }
            if is_all_manifests_table:
                row["reference_snapshot_id"] = snapshot.snapshot_id
            rows.append(row)
        return rows

    def manifests(self) -> "pa.Table":
        """Return a table with a row per manifest of the current snapshot."""
        import pyarrow as pa

        snapshot = self.tbl.current_snapshot()
        rows = self._manifest_rows(snapshot) if snapshot else []
        return pa.Table.from_pylist(rows, schema=self._get_manifests_schema())

    def all_manifests(self) -> "pa.Table":
        """Return a table with a row per manifest of every snapshot, with the snapshot that references it."""
        import pyarrow as pa

        rows: List[Dict[str, Any]] = []
        executor = ExecutorFactory.get_or_create()
        for snapshot_rows in executor.map(lambda snapshot: self._manifest_rows(snapshot, True), self.tbl.snapshots()):
            rows.extend(snapshot_rows)
        return pa.Table.from_pylist(rows, schema=self._get_all_manifests_schema())

    def metadata_log_entries(self) -> "pa.Table":
        """Return a table with a row per metadata file, the previous ones and the current one.

        Columns: timestamp, file, latest_snapshot_id, latest_schema_id and latest_sequence_number.
        """
        import pyarrow as pa

        table_schema = pa.schema(
            [
                pa.field("timestamp", pa.timestamp(unit="ms"), nullable=False),
                pa.field("file", pa.string(), nullable=False),
                pa.field("latest_snapshot_id", pa.int64(), nullable=True),
                pa.field("latest_schema_id", pa.int32(), nullable=True),
                pa.field("latest_sequence_number", pa.int64(), nullable=True),
            ]
        )

        def metadata_log_entry_to_row(metadata_entry: MetadataLogEntry) -> Dict[str, Any]:
            latest_snapshot = self.tbl.snapshot_as_of_timestamp(metadata_entry.timestamp_ms)
            return {
                "timestamp": metadata_entry.timestamp_ms,
                "file": metadata_entry.metadata_file,
                "latest_snapshot_id": latest_snapshot.snapshot_id if latest_snapshot else None,
                "latest_schema_id": latest_snapshot.schema_id if latest_snapshot else None,
                "latest_sequence_number": latest_snapshot.sequence_number if latest_snapshot else None,
            }

        metadata_log_entries = list(self.tbl.metadata.metadata_log)
        if self.tbl.metadata_location:
            metadata_log_entries.append(
                MetadataLogEntry(metadata_file=self.tbl.metadata_location, timestamp_ms=self.tbl.metadata.last_updated_ms)
            )

        return pa.Table.from_pylist(
            [metadata_log_entry_to_row(entry) for entry in metadata_log_entries],
            schema=table_schema,
        )

    def history(self) -> "pa.Table":
        """Return a table with a row per change of the current snapshot.

        Columns: made_current_at, snapshot_id, parent_id and is_current_ancestor.
        """
        import pyarrow as pa

        history_schema = pa.schema(
            [
                pa.field("made_current_at", pa.timestamp(unit="ms"), nullable=False),
                pa.field("snapshot_id", pa.int64(), nullable=False),
                pa.field("parent_id", pa.int64(), nullable=True),
                pa.field("is_current_ancestor", pa.bool_(), nullable=False),
            ]
        )

        metadata = self.tbl.metadata
        ancestors_ids = {snapshot.snapshot_id for snapshot in ancestors_of(metadata.current_snapshot_id, metadata.snapshot_by_id)}

        history = []
        for snapshot_entry in metadata.snapshot_log:
            snapshot = metadata.snapshot_by_id(snapshot_entry.snapshot_id)
            history.append(
                {
                    "made_current_at": datetime.fromtimestamp(snapshot_entry.timestamp_ms / 1000.0, tz=timezone.utc),
                    "snapshot_id": snapshot_entry.snapshot_id,
                    "parent_id": snapshot.parent_snapshot_id if snapshot else None,
                    "is_current_ancestor": snapshot_entry.snapshot_id in ancestors_ids,
                }
            )

        return pa.Table.from_pylist(history, schema=history_schema)


def _entry_to_row(entry: ManifestEntry) -> Dict[str, Any]:
    return {
        "status": entry.status.value,
        "snapshot_id": entry.snapshot_id,
        "sequence_number": entry.sequence_number,
        "file_sequence_number": entry.file_sequence_number,
        "content": entry.data_file.content.value,
        "file_path": entry.data_file.file_path,
        "file_format": entry.data_file.file_format.value,
        "record_count": entry.data_file.record_count,
        "file_size_in_bytes": entry.data_file.file_size_in_bytes,
    }


class MetadataTable:
    """A read-only view over the metadata of a base table, such as its snapshots or its files.

    A metadata table never changes the store. `to_arrow` renders the view from the
    metadata the base table was loaded with.
    """

    base_table: Table
    type: MetadataTableType

    def __init__(self, base_table: Table, metadata_table_type: MetadataTableType) -> None:
        self.base_table = base_table
        self.type = metadata_table_type

    def name(self) -> Identifier:
        """Return the identifier of the view: the identifier of the base table followed by the view."""
        return self.base_table.name() + (self.type.value,)

    @property
    def full_name(self) -> str:
        return f"{self.base_table.full_name}.{self.type.value}"

    def to_arrow(self) -> "pa.Table":
        """Render the view as a PyArrow table."""
        return getattr(self.base_table.inspect, self.type.value)()

    def __repr__(self) -> str:
        """Return the string representation of the MetadataTable class."""
        return f"MetadataTable({self.full_name})"

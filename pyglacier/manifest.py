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
"""Manifests and manifest lists.

A manifest lists data or delete files, one `ManifestEntry` per file. A manifest list
lists the manifests that make up a snapshot. Both are stored as newline-delimited JSON
documents, one model per line, and are read lazily so that large manifests never have
to fit in memory at once.
"""

from __future__ import annotations

from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    Optional,
    Type,
    TypeVar,
)

from pydantic import Field

from pyglacier.io import FileIO, InputFile, InputStream, OutputFile
from pyglacier.typedef import UTF8, GlacierBaseModel

READ_CHUNK_SIZE = 1024 * 1024

M = TypeVar("M", bound=GlacierBaseModel)


class DataFileContent(int, Enum):
    DATA = 0
    POSITION_DELETES = 1
    EQUALITY_DELETES = 2

    def __repr__(self) -> str:
        """Return the string representation of the DataFileContent class."""
        return f"DataFileContent.{self.name}"


class ManifestContent(int, Enum):
    DATA = 0
    DELETES = 1

    def __repr__(self) -> str:
        """Return the string representation of the ManifestContent class."""
        return f"ManifestContent.{self.name}"


class ManifestEntryStatus(int, Enum):
    EXISTING = 0
    ADDED = 1
    DELETED = 2

    def __repr__(self) -> str:
        """Return the string representation of the ManifestEntryStatus class."""
        return f"ManifestEntryStatus.{self.name}"


class FileFormat(str, Enum):
    AVRO = "AVRO"
    PARQUET = "PARQUET"
    ORC = "ORC"

    def __repr__(self) -> str:
        """Return the string representation of the FileFormat class."""
        return f"FileFormat.{self.name}"


class DataFile(GlacierBaseModel):
    """A data or delete file referenced from a manifest."""

    content: DataFileContent = Field(default=DataFileContent.DATA)
    file_path: str = Field(alias="file-path")
    file_format: FileFormat = Field(alias="file-format", default=FileFormat.PARQUET)
    partition: Dict[str, Any] = Field(default_factory=dict)
    record_count: int = Field(alias="record-count", default=0)
    file_size_in_bytes: int = Field(alias="file-size-in-bytes", default=0)
    spec_id: Optional[int] = Field(alias="spec-id", default=None)

    def __hash__(self) -> int:
        """Return the hash of the file path."""
        return hash(self.file_path)

    def __eq__(self, other: Any) -> bool:
        """Compare the file path of the data file with another object."""
        return self.file_path == other.file_path if isinstance(other, DataFile) else False


class ManifestEntry(GlacierBaseModel):
    status: ManifestEntryStatus = Field(default=ManifestEntryStatus.ADDED)
    snapshot_id: Optional[int] = Field(alias="snapshot-id", default=None)
    sequence_number: Optional[int] = Field(alias="sequence-number", default=None)
    file_sequence_number: Optional[int] = Field(alias="file-sequence-number", default=None)
    data_file: DataFile = Field(alias="data-file")


class ManifestFile(GlacierBaseModel):
    manifest_path: str = Field(alias="manifest-path")
    manifest_length: int = Field(alias="manifest-length", default=0)
    partition_spec_id: int = Field(alias="partition-spec-id", default=0)
    content: ManifestContent = Field(default=ManifestContent.DATA)
    sequence_number: int = Field(alias="sequence-number", default=0)
    min_sequence_number: int = Field(alias="min-sequence-number", default=0)
    added_snapshot_id: Optional[int] = Field(alias="added-snapshot-id", default=None)
    added_files_count: Optional[int] = Field(alias="added-files-count", default=None)
    existing_files_count: Optional[int] = Field(alias="existing-files-count", default=None)
    deleted_files_count: Optional[int] = Field(alias="deleted-files-count", default=None)
    added_rows_count: Optional[int] = Field(alias="added-rows-count", default=None)
    existing_rows_count: Optional[int] = Field(alias="existing-rows-count", default=None)
    deleted_rows_count: Optional[int] = Field(alias="deleted-rows-count", default=None)

    def __hash__(self) -> int:
        """Return the hash of the manifest path."""
        return hash(self.manifest_path)

    def __eq__(self, other: Any) -> bool:
        """Manifests are identified by their location."""
        return self.manifest_path == other.manifest_path if isinstance(other, ManifestFile) else False

    def has_added_files(self) -> bool:
        return self.added_files_count is None or self.added_files_count > 0

    def has_existing_files(self) -> bool:
        return self.existing_files_count is None or self.existing_files_count > 0

    def fetch_manifest_entry(self, io: FileIO, discard_deleted: bool = True) -> Iterator[ManifestEntry]:
        """
        Read the manifest entries from the manifest file.

        The entries are read lazily, one line at a time.

        Args:
            io: The FileIO to fetch the file.
            discard_deleted: Filter on live entries.

        Returns:
            An Iterator of manifest entries.
        """
        return read_manifest(io.new_input(self.manifest_path), discard_deleted=discard_deleted)


def _iter_lines(stream: InputStream) -> Iterator[bytes]:
    pending = b""
    while chunk := stream.read(READ_CHUNK_SIZE):
        pending += chunk
        *lines, pending = pending.split(b"\n")
        yield from lines
    if pending:
        yield pending


def _read_models(input_file: InputFile, model: Type[M]) -> Iterator[M]:
    with input_file.open() as stream:
        for line in _iter_lines(stream):
            if line.strip():
                yield model.model_validate_json(line)


def _write_models(output_file: OutputFile, models: Iterable[GlacierBaseModel], overwrite: bool) -> None:
    with output_file.create(overwrite=overwrite) as stream:
        for model in models:
            stream.write(model.model_dump_json().encode(UTF8))
            stream.write(b"\n")


def read_manifest(input_file: InputFile, discard_deleted: bool = True) -> Iterator[ManifestEntry]:
    """Lazily read the entries of a manifest.

    Args:
        input_file: The manifest to read.
        discard_deleted: Skip the entries with the DELETED status.
    """
    for entry in _read_models(input_file, ManifestEntry):
        if not discard_deleted or entry.status != ManifestEntryStatus.DELETED:
            yield entry


def write_manifest(
    output_file: OutputFile,
    entries: Iterable[ManifestEntry],
    snapshot_id: Optional[int] = None,
    spec_id: int = 0,
    content: ManifestContent = ManifestContent.DATA,
    sequence_number: int = 0,
    overwrite: bool = False,
) -> ManifestFile:
    """Write the entries to a manifest and return the ManifestFile that describes it."""
    entries = list(entries)
    _write_models(output_file, entries, overwrite=overwrite)

    def _count(status: ManifestEntryStatus) -> int:
        return sum(1 for entry in entries if entry.status == status)

    def _rows(status: ManifestEntryStatus) -> int:
        return sum(entry.data_file.record_count for entry in entries if entry.status == status)

    return ManifestFile(
        manifest_path=output_file.location,
        manifest_length=len(output_file),
        partition_spec_id=spec_id,
        content=content,
        sequence_number=sequence_number,
        min_sequence_number=sequence_number,
        added_snapshot_id=snapshot_id,
        added_files_count=_count(ManifestEntryStatus.ADDED),
        existing_files_count=_count(ManifestEntryStatus.EXISTING),
        deleted_files_count=_count(ManifestEntryStatus.DELETED),
        added_rows_count=_rows(ManifestEntryStatus.ADDED),
        existing_rows_count=_rows(ManifestEntryStatus.EXISTING),
        deleted_rows_count=_rows(ManifestEntryStatus.DELETED),
    )


def read_manifest_list(input_file: InputFile) -> Iterator[ManifestFile]:
    """Lazily read the manifests of a manifest list.

    Args:
        input_file: The input file where the stream can be read from.

    Returns:
        An iterator of ManifestFiles that are part of the list.
    """
    yield from _read_models(input_file, ManifestFile)


def write_manifest_list(output_file: OutputFile, manifests: Iterable[ManifestFile], overwrite: bool = False) -> None:
    _write_models(output_file, manifests, overwrite=overwrite)

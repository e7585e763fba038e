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
# pylint:disable=redefined-outer-name
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import pytest

from pyglacier.partitioning import UNPARTITIONED_PARTITION_SPEC
from pyglacier.schema import Schema
from pyglacier.table.metadata import TableMetadata, new_table_metadata
from pyglacier.table.purge import DeletedFileSet, drop_table_data
from pyglacier.table.sorting import UNSORTED_SORT_ORDER
from tests.conftest import InMemoryFileIO, write_file

LOCATION = "mem://warehouse/db/tbl"
DATA_A = f"{LOCATION}/data/a.parquet"
DATA_B = f"{LOCATION}/data/b.parquet"
DATA_C = f"{LOCATION}/data/c.parquet"
MANIFEST_M = f"{LOCATION}/metadata/m.json"
MANIFEST_N = f"{LOCATION}/metadata/n.json"
LIST_1 = f"{LOCATION}/metadata/snap-1.json"
LIST_2 = f"{LOCATION}/metadata/snap-2.json"
METADATA_V0 = f"{LOCATION}/metadata/00000-a.metadata.json"
METADATA_V1 = f"{LOCATION}/metadata/00001-b.metadata.json"


@pytest.fixture
def shared_files_metadata(memory_io: InMemoryFileIO, table_schema_simple: Schema, make_snapshot: Callable) -> TableMetadata:  # type: ignore
    """Two snapshots that share the manifest M, and the data file b through M and N."""
    return _table_with_snapshots(memory_io, table_schema_simple, make_snapshot, {}, [DATA_B, DATA_C])


def _table_with_snapshots(
    io: InMemoryFileIO,
    schema: Schema,
    make_snapshot: Callable,  # type: ignore
    properties: dict,  # type: ignore
    files_of_n: list,  # type: ignore
) -> TableMetadata:
    metadata = new_table_metadata(schema, UNPARTITIONED_PARTITION_SPEC, UNSORTED_SORT_ORDER, LOCATION, properties)
    first = make_snapshot(io, LOCATION, 1, {MANIFEST_M: [DATA_A, DATA_B]})
    second = make_snapshot(io, LOCATION, 2, {MANIFEST_M: [DATA_A, DATA_B], MANIFEST_N: files_of_n}, parent_snapshot_id=1)
    metadata = metadata.with_snapshot(first).with_snapshot(second)
    metadata = metadata.with_previous_metadata_file(METADATA_V0, 0, 10)
    write_file(io, METADATA_V0)
    write_file(io, METADATA_V1)
    return metadata


def test_every_reachable_file_is_deleted_once(memory_io: InMemoryFileIO, shared_files_metadata: TableMetadata) -> None:
    result = drop_table_data(memory_io, shared_files_metadata, METADATA_V1)

    assert memory_io.files == {}
    for path in (DATA_A, DATA_B, DATA_C, MANIFEST_M, MANIFEST_N, LIST_1, LIST_2, METADATA_V0, METADATA_V1):
        assert memory_io.delete_attempts[path] == 1, path
    assert result.deleted_data_files == 3
    assert result.deleted_manifests == 2
    assert result.deleted_manifest_lists == 2
    assert result.deleted_metadata_files == 2
    assert not result.failed_deletions
    assert not result.failed_manifest_reads
    assert not result.skipped_manifests


def test_data_files_are_deleted_before_the_manifests(
    memory_io: InMemoryFileIO, shared_files_metadata: TableMetadata
) -> None:
    order = []
    delete = memory_io.delete

    def _recording_delete(location: str) -> None:  # type: ignore
        order.append(location)
        delete(location)

    memory_io.delete = _recording_delete  # type: ignore

    drop_table_data(memory_io, shared_files_metadata, METADATA_V1, executor=ThreadPoolExecutor(max_workers=1))

    assert sorted(order[:3]) == [DATA_A, DATA_B, DATA_C]
    assert order[3:5] == [MANIFEST_M, MANIFEST_N]
    assert order[5:7] == [LIST_1, LIST_2]
    assert order[7:] == [METADATA_V0, METADATA_V1]


def test_failed_deletions_are_reported(memory_io: InMemoryFileIO, shared_files_metadata: TableMetadata) -> None:
    memory_io.fail_deletes = {DATA_A, MANIFEST_N}

    result = drop_table_data(memory_io, shared_files_metadata, METADATA_V1)

    assert result.failed_deletions == {DATA_A, MANIFEST_N}
    assert result.deleted_data_files == 2
    assert result.deleted_manifests == 1
    assert set(memory_io.files) == {DATA_A, MANIFEST_N}


def test_gc_disabled_keeps_data_files(
    memory_io: InMemoryFileIO, table_schema_simple: Schema, make_snapshot: Callable  # type: ignore
) -> None:
    metadata = _table_with_snapshots(memory_io, table_schema_simple, make_snapshot, {"gc.enabled": "false"}, [DATA_C])

    result = drop_table_data(memory_io, metadata, METADATA_V1)

    assert result.deleted_data_files == 0
    assert result.deleted_manifests == 2
    assert result.deleted_manifest_lists == 2
    assert result.deleted_metadata_files == 2
    assert set(memory_io.files) == {DATA_A, DATA_B, DATA_C}


def test_stop_keeps_skipped_manifests(memory_io: InMemoryFileIO, shared_files_metadata: TableMetadata) -> None:
    result = drop_table_data(memory_io, shared_files_metadata, METADATA_V1, should_stop=lambda: True)

    assert result.skipped_manifests == {MANIFEST_M, MANIFEST_N}
    assert result.deleted_data_files == 0
    assert result.deleted_manifests == 0
    assert result.deleted_manifest_lists == 2
    # the skipped manifests still track the data files
    assert set(memory_io.files) == {DATA_A, DATA_B, DATA_C, MANIFEST_M, MANIFEST_N}


def test_unreadable_manifest_list(memory_io: InMemoryFileIO, shared_files_metadata: TableMetadata) -> None:
    memory_io.fail_reads = {LIST_2}

    result = drop_table_data(memory_io, shared_files_metadata, METADATA_V1)

    assert result.failed_manifest_reads == {LIST_2}
    # the manifests of the first snapshot are still processed
    assert result.deleted_data_files == 2
    assert result.deleted_manifest_lists == 1
    # the unreadable list and the metadata that references it are kept for a later purge
    assert result.deleted_metadata_files == 0
    assert memory_io.delete_attempts[LIST_2] == 0
    assert set(memory_io.files) == {DATA_C, MANIFEST_N, LIST_2, METADATA_V0, METADATA_V1}


def test_unreadable_manifest(memory_io: InMemoryFileIO, shared_files_metadata: TableMetadata) -> None:
    memory_io.fail_reads = {MANIFEST_M}

    result = drop_table_data(memory_io, shared_files_metadata, METADATA_V1)

    assert result.failed_manifest_reads == {MANIFEST_M}
    assert result.deleted_data_files == 2
    assert set(memory_io.files) == {DATA_A}
    assert not result.failed_deletions


def test_evicted_path_is_deleted_again(
    memory_io: InMemoryFileIO, table_schema_simple: Schema, make_snapshot: Callable  # type: ignore
) -> None:
    metadata = _table_with_snapshots(memory_io, table_schema_simple, make_snapshot, {}, [DATA_C, DATA_B])

    result = drop_table_data(
        memory_io, metadata, METADATA_V1, executor=ThreadPoolExecutor(max_workers=1), max_tracked_files=1
    )

    assert memory_io.delete_attempts[DATA_B] == 2
    assert result.deleted_data_files == 3
    assert result.already_deleted_files == 1
    assert not result.failed_deletions


def test_shared_files_are_deleted_once_by_concurrent_workers(
    memory_io: InMemoryFileIO, table_schema_simple: Schema, make_snapshot: Callable  # type: ignore
) -> None:
    data_files = [f"{LOCATION}/data/shared-{i}.parquet" for i in range(200)]
    manifests = {f"{LOCATION}/metadata/m-{i}.json": data_files for i in range(32)}
    snapshot = make_snapshot(memory_io, LOCATION, 1, manifests)
    metadata = new_table_metadata(
        table_schema_simple, UNPARTITIONED_PARTITION_SPEC, UNSORTED_SORT_ORDER, LOCATION
    ).with_snapshot(snapshot)

    with ThreadPoolExecutor(max_workers=16) as executor:
        result = drop_table_data(memory_io, metadata, executor=executor)

    for path in data_files:
        assert memory_io.delete_attempts[path] == 1, path
    assert result.deleted_data_files == 200
    assert result.deleted_manifests == 32
    assert result.already_deleted_files == 0
    assert not result.failed_deletions
    assert memory_io.files == {}


def test_missing_metadata_location(memory_io: InMemoryFileIO, shared_files_metadata: TableMetadata) -> None:
    result = drop_table_data(memory_io, shared_files_metadata)

    assert result.deleted_metadata_files == 1
    assert METADATA_V1 in memory_io.files


def test_table_without_snapshots(memory_io: InMemoryFileIO, table_schema_simple: Schema) -> None:
    metadata = new_table_metadata(table_schema_simple, UNPARTITIONED_PARTITION_SPEC, UNSORTED_SORT_ORDER, LOCATION)
    write_file(memory_io, METADATA_V0)

    result = drop_table_data(memory_io, metadata, METADATA_V0)

    assert result.deleted_metadata_files == 1
    assert result.deleted_data_files == 0
    assert memory_io.files == {}


def test_deleted_file_set() -> None:
    deleted = DeletedFileSet(max_size=2)

    assert deleted.add("a")
    assert not deleted.add("a")
    assert deleted.add("b")
    assert deleted.add("c")

    assert "a" not in deleted
    assert "b" in deleted
    assert "c" in deleted
    assert len(deleted) == 2
    assert deleted.evictions == 1
    # evicted paths can be added again
    assert deleted.add("a")


def test_deleted_file_set_requires_a_positive_size() -> None:
    with pytest.raises(ValueError, match="max_size should be positive"):
        DeletedFileSet(max_size=0)

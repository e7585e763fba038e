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
"""This contains global pytest configurations.

Fixtures contained in this file will be automatically used if provided as an argument
to any pytest function.

`InMemoryFileIO` keeps the files in a dict, and records every delete, so tests can
check that a file was deleted exactly once, and can make reads or deletes fail.
"""

import threading
from collections import Counter
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Set, Union

import pytest

from pyglacier.catalog import MetastoreCatalog
from pyglacier.catalog.memory import InMemoryCatalog
from pyglacier.catalog.sql import SqlCatalog
from pyglacier.io import FileIO, InputFile, InputStream, OutputFile, OutputStream
from pyglacier.manifest import DataFile, ManifestEntry, write_manifest, write_manifest_list
from pyglacier.partitioning import PartitionField, PartitionSpec
from pyglacier.schema import NestedField, Schema
from pyglacier.table.snapshots import Operation, Snapshot, Summary
from pyglacier.table.sorting import NullOrder, SortDirection, SortField, SortOrder
from pyglacier.typedef import EMPTY_DICT, Properties


class _MemoryOutputStream(BytesIO):
    def __init__(self, io: "InMemoryFileIO", location: str) -> None:
        super().__init__()
        self._io = io
        self._location = location

    def close(self) -> None:
        if not self.closed:
            with self._io.lock:
                self._io.files[self._location] = self.getvalue()
        super().close()


class InMemoryFile(InputFile, OutputFile):
    def __init__(self, location: str, io: "InMemoryFileIO") -> None:
        super().__init__(location)
        self._io = io

    def __len__(self) -> int:
        return len(self._io.files[self.location])

    def exists(self) -> bool:
        return self.location in self._io.files

    def open(self, seekable: bool = True) -> InputStream:
        if self.location in self._io.fail_reads:
            raise PermissionError(f"Cannot open file, access denied: {self.location}")
        try:
            return BytesIO(self._io.files[self.location])
        except KeyError as e:
            raise FileNotFoundError(f"Cannot open file, does not exist: {self.location}") from e

    def create(self, overwrite: bool = False) -> OutputStream:
        if not overwrite and self.exists():
            raise FileExistsError(f"Cannot create file, already exists: {self.location}")
        return _MemoryOutputStream(self._io, self.location)

    def to_input_file(self) -> "InMemoryFile":
        return self


class InMemoryFileIO(FileIO):
    files: Dict[str, bytes]
    delete_attempts: Counter
    fail_reads: Set[str]
    fail_deletes: Set[str]

    def __init__(self, properties: Properties = EMPTY_DICT):
        super().__init__(properties)
        self.files = {}
        self.delete_attempts = Counter()
        self.fail_reads = set()
        self.fail_deletes = set()
        self.lock = threading.Lock()

    def new_input(self, location: str) -> InMemoryFile:
        return InMemoryFile(location, self)

    def new_output(self, location: str) -> InMemoryFile:
        return InMemoryFile(location, self)

    def delete(self, location: Union[str, InputFile, OutputFile]) -> None:
        str_location = location.location if isinstance(location, (InputFile, OutputFile)) else location
        with self.lock:
            self.delete_attempts[str_location] += 1
            if str_location in self.fail_deletes:
                raise PermissionError(f"Cannot delete file, access denied: {str_location}")
            if self.files.pop(str_location, None) is None:
                raise FileNotFoundError(f"Cannot delete file, does not exist: {str_location}")


def write_file(io: FileIO, location: str, content: bytes = b"data") -> str:
    with io.new_output(location).create(overwrite=True) as output_stream:
        output_stream.write(content)
    return location


SnapshotFactory = Callable[..., Snapshot]


@pytest.fixture
def make_snapshot() -> SnapshotFactory:
    """Write the manifests and the manifest list of a snapshot, and the data files they list."""

    def _make_snapshot(
        io: FileIO,
        location: str,
        snapshot_id: int,
        manifests: Dict[str, List[str]],
        parent_snapshot_id: Optional[int] = None,
    ) -> Snapshot:
        manifest_files = []
        for manifest_path, data_files in manifests.items():
            for data_file in data_files:
                write_file(io, data_file)
            entries = [
                ManifestEntry(snapshot_id=snapshot_id, data_file=DataFile(file_path=data_file, record_count=10))
                for data_file in data_files
            ]
            manifest_files.append(write_manifest(io.new_output(manifest_path), entries, snapshot_id=snapshot_id, overwrite=True))

        manifest_list = f"{location}/metadata/snap-{snapshot_id}.json"
        write_manifest_list(io.new_output(manifest_list), manifest_files, overwrite=True)
        return Snapshot(
            snapshot_id=snapshot_id,
            parent_snapshot_id=parent_snapshot_id,
            manifest_list=manifest_list,
            summary=Summary(Operation.APPEND, **{"added-data-files": str(sum(len(f) for f in manifests.values()))}),
            schema_id=0,
        )

    return _make_snapshot


@pytest.fixture
def memory_io() -> InMemoryFileIO:
    return InMemoryFileIO()


@pytest.fixture(scope="session")
def table_schema_simple() -> Schema:
    return Schema(
        NestedField(field_id=1, name="foo", field_type="string", required=False),
        NestedField(field_id=2, name="bar", field_type="int", required=True),
        NestedField(field_id=3, name="baz", field_type="boolean", required=False),
        schema_id=0,
        identifier_field_ids=[2],
    )


@pytest.fixture(scope="session")
def table_schema_with_more_columns() -> Schema:
    return Schema(
        NestedField(field_id=1, name="foo", field_type="string", required=False),
        NestedField(field_id=2, name="bar", field_type="int", required=True),
        NestedField(field_id=3, name="baz", field_type="boolean", required=False),
        NestedField(field_id=4, name="qux", field_type="timestamp", required=False),
        schema_id=0,
    )


@pytest.fixture(scope="session")
def partition_spec_on_bar() -> PartitionSpec:
    return PartitionSpec(PartitionField(source_id=2, field_id=1000, transform="bucket[16]", name="bar_bucket"))


@pytest.fixture(scope="session")
def sort_order_on_foo() -> SortOrder:
    return SortOrder(SortField(source_id=1, transform="identity", direction=SortDirection.DESC, null_order=NullOrder.NULLS_LAST))


@pytest.fixture
def warehouse(tmp_path: Path) -> Path:
    path = tmp_path / "warehouse"
    path.mkdir()
    return path


def _create_memory_catalog(name: str, warehouse: Path) -> MetastoreCatalog:
    return InMemoryCatalog(name, warehouse=f"file://{warehouse}")


def _create_sql_catalog(name: str, warehouse: Path) -> MetastoreCatalog:
    catalog = SqlCatalog(
        name,
        uri=f"sqlite:///{warehouse}/sql-catalog.db",
        warehouse=f"file://{warehouse}",
    )
    catalog.create_tables()
    return catalog


def _create_sql_without_rowcount_catalog(name: str, warehouse: Path) -> MetastoreCatalog:
    catalog = SqlCatalog(
        name,
        uri=f"sqlite:///{warehouse}/sql-catalog.db",
        warehouse=f"file://{warehouse}",
    )
    catalog.engine.dialect.supports_sane_rowcount = False
    catalog.create_tables()
    return catalog


_CATALOG_FACTORIES = {
    "memory": _create_memory_catalog,
    "sql": _create_sql_catalog,
    "sql_without_rowcount": _create_sql_without_rowcount_catalog,
}


@pytest.fixture(params=list(_CATALOG_FACTORIES.keys()))
def catalog(request: pytest.FixtureRequest, warehouse: Path) -> Generator[MetastoreCatalog, None, None]:
    """Parameterized fixture that yields catalogs listed in _CATALOG_FACTORIES."""
    cat = _CATALOG_FACTORIES[request.param]("test_catalog", warehouse)
    yield cat
    if isinstance(cat, SqlCatalog):
        cat.destroy_tables()
        cat.engine.dispose()

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
import threading
from typing import (
    Dict,
    List,
    Optional,
    Union,
)

from pyglacier.catalog import (
    Catalog,
    MetastoreCatalog,
    TableOperations,
    full_table_name,
)
from pyglacier.exceptions import (
    CommitFailedException,
    NoSuchNamespaceError,
    NoSuchTableError,
    TableAlreadyExistsError,
)
from pyglacier.io import WAREHOUSE
from pyglacier.table import Table
from pyglacier.table.metadata import TableMetadata
from pyglacier.typedef import Identifier

DEFAULT_WAREHOUSE_LOCATION = "file:///tmp/warehouse"


class _MetadataPointers:
    """The locations of the current metadata files, guarded by a lock."""

    _locations: Dict[Identifier, str]

    def __init__(self) -> None:
        self._locations = {}
        self._lock = threading.Lock()

    def get(self, identifier: Identifier) -> Optional[str]:
        with self._lock:
            return self._locations.get(identifier)

    def compare_and_set(self, identifier: Identifier, expected: Optional[str], location: str) -> None:
        with self._lock:
            current = self._locations.get(identifier)
            if current != expected:
                raise CommitFailedException(f"Table has been updated by another process: {identifier}, expected {expected}")
            self._locations[identifier] = location

    def remove(self, identifier: Identifier) -> str:
        with self._lock:
            return self._locations.pop(identifier)

    def move(self, from_identifier: Identifier, to_identifier: Identifier) -> None:
        with self._lock:
            if to_identifier in self._locations:
                raise TableAlreadyExistsError(f"Table already exists: {to_identifier}")
            self._locations[to_identifier] = self._locations.pop(from_identifier)

    def identifiers(self) -> List[Identifier]:
        with self._lock:
            return list(self._locations)

    def namespaces(self) -> List[Identifier]:
        """Return the namespaces that hold at least one table."""
        with self._lock:
            return sorted({Catalog.namespace_from(identifier) for identifier in self._locations})


class _InMemoryTableOperations(TableOperations):
    def __init__(self, catalog: "InMemoryCatalog", identifier: Identifier, pointers: _MetadataPointers) -> None:
        super().__init__(catalog, identifier, catalog._load_file_io())  # pylint: disable=W0212
        self._pointers = pointers

    def _current_metadata_location(self) -> Optional[str]:
        return self._pointers.get(self.identifier)

    def _do_commit(self, base_location: Optional[str], new_location: str, metadata: TableMetadata) -> None:
        self._pointers.compare_and_set(self.identifier, base_location, new_location)


class InMemoryCatalog(MetastoreCatalog):
    """A catalog that keeps the pointers to the metadata files of its tables in the memory of the process.

    The metadata files themselves are written to the warehouse. Namespaces are created
    implicitly by the first table that is created in them, and go away with the last one.
    """

    __pointers: _MetadataPointers

    def __init__(self, name: str, **properties: str) -> None:
        super().__init__(name, **{WAREHOUSE: DEFAULT_WAREHOUSE_LOCATION, **properties})
        self.__pointers = _MetadataPointers()

    def new_table_ops(self, identifier: Identifier) -> TableOperations:
        return _InMemoryTableOperations(self, identifier, self.__pointers)

    def drop_table(self, identifier: Union[str, Identifier]) -> None:
        identifier = Catalog.identifier_to_tuple(identifier)
        try:
            self.__pointers.remove(identifier)
        except KeyError as error:
            raise NoSuchTableError(f"Table does not exist: {full_table_name(self.name, identifier)}") from error

    def rename_table(self, from_identifier: Union[str, Identifier], to_identifier: Union[str, Identifier]) -> Table:
        from_identifier = Catalog.identifier_to_tuple(from_identifier)
        to_identifier = Catalog.identifier_to_tuple(to_identifier)
        try:
            self.__pointers.move(from_identifier, to_identifier)
        except KeyError as error:
            raise NoSuchTableError(f"Table does not exist: {full_table_name(self.name, from_identifier)}") from error
        return self.load_table(to_identifier)  # type: ignore

    def list_tables(self, namespace: Union[str, Identifier]) -> List[Identifier]:
        namespace = Catalog.identifier_to_tuple(namespace)
        if namespace not in self.__pointers.namespaces():
            raise NoSuchNamespaceError(f"Namespace does not exist: {namespace}")
        return [identifier for identifier in self.__pointers.identifiers() if namespace == identifier[:-1]]

    def list_namespaces(self, namespace: Union[str, Identifier] = ()) -> List[Identifier]:
        namespace = Catalog.identifier_to_tuple(namespace) if namespace else ()
        return [
            existing
            for existing in self.__pointers.namespaces()
            if len(existing) > len(namespace) and existing[: len(namespace)] == namespace
        ]

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

import importlib
import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import (
    Callable,
    Dict,
    List,
    Optional,
    Union,
    cast,
)

from pyglacier.exceptions import (
    CommitFailedException,
    NoSuchTableError,
    TableAlreadyExistsError,
)
from pyglacier.io import WAREHOUSE, FileIO, load_file_io
from pyglacier.partitioning import UNPARTITIONED_PARTITION_SPEC, PartitionSpec
from pyglacier.schema import Schema
from pyglacier.serializers import FromInputFile, ToOutputFile
from pyglacier.table import (
    CreateTableTransaction,
    ReplaceTableTransaction,
    StagedTable,
    Table,
    TableProperties,
)
from pyglacier.table.inspect import MetadataTable, MetadataTableType
from pyglacier.table.metadata import TableMetadata, new_table_metadata
from pyglacier.table.purge import DropTableDataResult, drop_table_data
from pyglacier.table.sorting import UNSORTED_SORT_ORDER, SortOrder
from pyglacier.typedef import (
    EMPTY_DICT,
    Identifier,
    Properties,
    RecursiveDict,
)
from pyglacier.utils.config import Config, merge_config
from pyglacier.utils.properties import property_as_int

logger = logging.getLogger(__name__)

_ENV_CONFIG = Config()

TYPE = "type"
PY_CATALOG_IMPL = "py-catalog-impl"

METADATA_FILE_NAME_REGEX = re.compile(r"^(\d+)-.*\.metadata\.json$")


class CatalogType(Enum):
    IN_MEMORY = "in-memory"
    SQL = "sql"


def load_in_memory(name: str, conf: Properties) -> Catalog:
    from pyglacier.catalog.memory import InMemoryCatalog

    return InMemoryCatalog(name, **conf)


def load_sql(name: str, conf: Properties) -> Catalog:
    from pyglacier.catalog.sql import SqlCatalog

    return SqlCatalog(name, **conf)


AVAILABLE_CATALOGS: Dict[CatalogType, Callable[[str, Properties], Catalog]] = {
    CatalogType.IN_MEMORY: load_in_memory,
    CatalogType.SQL: load_sql,
}


def infer_catalog_type(name: str, catalog_properties: RecursiveDict) -> Optional[CatalogType]:
    """Try to infer the type based on the dict.

    Args:
        name: Name of the catalog.
        catalog_properties: Catalog properties.

    Returns:
        The inferred type based on the provided properties.

    Raises:
        ValueError: Raises a ValueError in case properties are missing, or the wrong type.
    """
    if uri := catalog_properties.get("uri"):
        if isinstance(uri, str):
            if uri.startswith(("sqlite", "postgresql", "mysql")):
                return CatalogType.SQL
            raise ValueError(f"Could not infer the catalog type from the uri: {uri}")
        raise ValueError(f"Expects the URI to be a string, got: {type(uri)}")
    raise ValueError(
        f"URI missing, please provide using --uri, the config or environment variable PYGLACIER_CATALOG__{name.upper()}__URI"
    )


def _import_catalog(name: str, catalog_impl: str, properties: Properties) -> Optional[Catalog]:
    try:
        path_parts = catalog_impl.split(".")
        if len(path_parts) < 2:
            raise ValueError(f"py-catalog-impl should be full path (module.CustomCatalog), got: {catalog_impl}")
        module_name, class_name = ".".join(path_parts[:-1]), path_parts[-1]
        module = importlib.import_module(module_name)
        class_ = getattr(module, class_name)
        return class_(name, **properties)
    except ModuleNotFoundError:
        logger.warning("Could not initialize Catalog: %s", catalog_impl)
        return None


def load_catalog(name: Optional[str] = None, **properties: Optional[str]) -> Catalog:
    """Load the catalog based on the properties.

    Will look up the properties from the config, based on the name.

    Args:
        name: The name of the catalog.
        properties: The properties that are used next to the configuration.

    Returns:
        An initialized Catalog.

    Raises:
        ValueError: Raises a ValueError in case properties are missing or malformed,
            or if it could not determine the catalog based on the properties.
    """
    if name is None:
        name = _ENV_CONFIG.get_default_catalog_name()

    env = _ENV_CONFIG.get_catalog_config(name)
    conf: RecursiveDict = merge_config(env or {}, cast(RecursiveDict, properties))

    provided_catalog_type = conf.get(TYPE)
    if catalog_impl := conf.get(PY_CATALOG_IMPL):
        if provided_catalog_type:
            raise ValueError(
                "Must not set both catalog type and py-catalog-impl configurations, "
                f"but found type {provided_catalog_type} and py-catalog-impl {catalog_impl}"
            )
        if catalog := _import_catalog(name, str(catalog_impl), cast(Dict[str, str], conf)):
            logger.info("Loaded Catalog: %s", catalog_impl)
            return catalog
        raise ValueError(f"Could not initialize Catalog: {catalog_impl}")

    catalog_type: Optional[CatalogType]
    if provided_catalog_type and isinstance(provided_catalog_type, str):
        try:
            catalog_type = CatalogType(provided_catalog_type.lower())
        except ValueError as e:
            raise ValueError(f"Unknown catalog type: {provided_catalog_type}") from e
    else:
        catalog_type = infer_catalog_type(name, conf)

    if catalog_type:
        return AVAILABLE_CATALOGS[catalog_type](name, cast(Dict[str, str], conf))

    raise ValueError(f"Could not initialize catalog with the following properties: {properties}")


def full_table_name(catalog_name: str, identifier: Identifier) -> str:
    """Return the name of the table, prefixed with the name of the catalog.

    A catalog name that looks like a URI (it contains a `/` or a `:`) is separated from the
    table by a `/`, any other name by a `.`.

    Args:
        catalog_name: The name of the catalog.
        identifier: The namespace levels followed by the name of the table.

    Returns:
        The fully qualified name, such as `prod.db.table` or `thrift://host:9083/db.table`.
    """
    if "/" in catalog_name or ":" in catalog_name:
        prefix = catalog_name if catalog_name.endswith("/") else f"{catalog_name}/"
    else:
        prefix = f"{catalog_name}."
    return prefix + ".".join(identifier)


class IdentifierKind(Enum):
    BASE_TABLE = "base-table"
    METADATA_TABLE = "metadata-table"
    INVALID = "invalid"


@dataclass(frozen=True)
class ResolvedIdentifier:
    """The classification of an identifier by a catalog."""

    kind: IdentifierKind
    identifier: Identifier
    base_identifier: Optional[Identifier] = None
    metadata_table_type: Optional[MetadataTableType] = None


class TableOperations(ABC):
    """Reads and swaps the pointer to the current metadata file of a single table.

    The store behind the pointer is the only arbiter of concurrent changes: `_do_commit`
    must atomically replace the pointer when, and only when, it still points at the
    location the change was based on.
    """

    catalog: MetastoreCatalog
    identifier: Identifier
    io: FileIO
    metadata_location: Optional[str]
    _current: Optional[TableMetadata]
    _should_refresh: bool

    def __init__(self, catalog: MetastoreCatalog, identifier: Identifier, io: FileIO) -> None:
        self.catalog = catalog
        self.identifier = identifier
        self.io = io
        self.metadata_location = None
        self._current = None
        self._should_refresh = True

    @property
    def table_name(self) -> str:
        return full_table_name(self.catalog.name, self.identifier)

    @abstractmethod
    def _current_metadata_location(self) -> Optional[str]:
        """Return the location of the current metadata file, or None when the table does not exist."""

    @abstractmethod
    def _do_commit(self, base_location: Optional[str], new_location: str, metadata: TableMetadata) -> None:
        """Point the table at `new_location`, if it still points at `base_location`.

        A `base_location` of None means the table must not exist yet.

        Raises:
            CommitFailedException: If the table points elsewhere.
        """

    def current(self) -> Optional[TableMetadata]:
        """Return the last observed metadata, reading it on first use."""
        if self._should_refresh:
            return self.refresh()
        return self._current

    def refresh(self) -> Optional[TableMetadata]:
        """Read the current metadata from the store."""
        location = self._current_metadata_location()
        if location is None:
            self._current = None
            self.metadata_location = None
        elif location != self.metadata_location:
            self._current = FromInputFile.table_metadata(self.io.new_input(location))
            self.metadata_location = location
        self._should_refresh = False
        return self._current

    def commit(self, base: Optional[TableMetadata], metadata: TableMetadata) -> None:
        """Replace `base` by `metadata`, or create the table when `base` is None.

        Args:
            base: The metadata the change is based on.
            metadata: The new metadata.

        Raises:
            CommitFailedException: When `base` is not the current metadata of the table.
        """
        if metadata is base:
            logger.info("Nothing to commit for table: %s", self.table_name)
            return

        if base != self.current():
            raise CommitFailedException(f"Cannot commit {self.table_name}: stale table metadata")

        base_location = self.metadata_location if base is not None else None
        if base is not None and base_location is not None:
            max_entries = property_as_int(
                metadata.properties,
                TableProperties.METADATA_PREVIOUS_VERSIONS_MAX,
                TableProperties.METADATA_PREVIOUS_VERSIONS_MAX_DEFAULT,
            )
            metadata = metadata.with_previous_metadata_file(base_location, base.last_updated_ms, cast(int, max_entries))

        new_location = self._new_metadata_location(metadata.location, base_location)
        ToOutputFile.table_metadata(metadata, self.io.new_output(new_location))

        try:
            self._do_commit(base_location, new_location, metadata)
        except CommitFailedException:
            self._should_refresh = True
            self._delete_uncommitted(new_location)
            raise
        except Exception:
            # the outcome is unknown, so the written file is kept
            self._should_refresh = True
            raise

        logger.info("Committed metadata of %s: %s", self.table_name, new_location)
        self._current = metadata
        self.metadata_location = new_location
        self._should_refresh = False

    def _delete_uncommitted(self, location: str) -> None:
        try:
            self.io.delete(location)
        except OSError as e:
            logger.warning("Failed to delete uncommitted metadata file: %s", location, exc_info=e)

    @staticmethod
    def _parse_metadata_version(metadata_location: str) -> int:
        """Parse the version from the name of a metadata file.

        Args:
            metadata_location: The location of the metadata file.

        Returns:
            The version of the metadata file, or -1 when the name does not carry one.
        """
        file_name = metadata_location.split("/")[-1]
        if match := METADATA_FILE_NAME_REGEX.match(file_name):
            return int(match.group(1))
        return -1

    @staticmethod
    def _new_metadata_location(location: str, base_location: Optional[str]) -> str:
        version = TableOperations._parse_metadata_version(base_location) + 1 if base_location else 0
        return f"{location}/metadata/{version:05d}-{uuid.uuid4()}.metadata.json"


class Catalog(ABC):
    """Base Catalog for table operations like - create, drop, load, list and others.

    The catalog table APIs accept a table identifier, which is fully classified table name. The identifier can be a string or
    tuple of strings. If the identifier is a string, it is split into a tuple on '.'. If it is a tuple, it is used as-is.

    Attributes:
        name (str): Name of the catalog.
        properties (Properties): Catalog properties.
    """

    name: str
    properties: Properties

    def __init__(self, name: str, **properties: str):
        self.name = name
        self.properties = properties

    def _load_file_io(self, properties: Properties = EMPTY_DICT, location: Optional[str] = None) -> FileIO:
        return load_file_io({**self.properties, **properties}, location)

    @abstractmethod
    def load_table(self, identifier: Union[str, Identifier]) -> Union[Table, MetadataTable]:
        """Load the table's metadata and returns the table instance.

        Raises:
            NoSuchTableError: If a table with the name does not exist.
        """

    @abstractmethod
    def create_table(
        self,
        identifier: Union[str, Identifier],
        schema: Schema,
        location: Optional[str] = None,
        partition_spec: PartitionSpec = UNPARTITIONED_PARTITION_SPEC,
        sort_order: SortOrder = UNSORTED_SORT_ORDER,
        properties: Properties = EMPTY_DICT,
    ) -> Table:
        """Create a table.

        Raises:
            TableAlreadyExistsError: If a table with the name already exists.
        """

    @abstractmethod
    def drop_table(self, identifier: Union[str, Identifier]) -> None:
        """Drop a table, and keep its files.

        Raises:
            NoSuchTableError: If a table with the name does not exist.
        """

    @abstractmethod
    def purge_table(self, identifier: Union[str, Identifier]) -> DropTableDataResult:
        """Drop a table and delete all of its files.

        Raises:
            NoSuchTableError: If a table with the name does not exist.
        """

    @abstractmethod
    def rename_table(self, from_identifier: Union[str, Identifier], to_identifier: Union[str, Identifier]) -> Table:
        """Rename a fully classified table name.

        Raises:
            NoSuchTableError: If a table with the name does not exist.
            TableAlreadyExistsError: If a table with the new name already exists.
        """

    @abstractmethod
    def list_tables(self, namespace: Union[str, Identifier]) -> List[Identifier]:
        """List tables under the given namespace in the catalog.

        Raises:
            NoSuchNamespaceError: If a namespace with the given name does not exist.
        """

    @abstractmethod
    def list_namespaces(self, namespace: Union[str, Identifier] = ()) -> List[Identifier]:
        """List namespaces from the given namespace. If not given, list top-level namespaces from the catalog."""

    def table_exists(self, identifier: Union[str, Identifier]) -> bool:
        try:
            table = self.load_table(identifier)
        except NoSuchTableError:
            return False
        return isinstance(table, Table)

    @staticmethod
    def identifier_to_tuple(identifier: Union[str, Identifier]) -> Identifier:
        """Parse an identifier to a tuple.

        If the identifier is a string, it is split into a tuple on '.'. If it is a tuple, it is used as-is.

        Args:
            identifier (str | Identifier): an identifier, either a string or tuple of strings.

        Returns:
            Identifier: a tuple of strings.
        """
        return identifier if isinstance(identifier, tuple) else tuple(str.split(identifier, "."))

    @staticmethod
    def table_name_from(identifier: Union[str, Identifier]) -> str:
        """Extract table name from a table identifier.

        Args:
            identifier (str | Identifier): a table identifier.

        Returns:
            str: Table name.
        """
        return Catalog.identifier_to_tuple(identifier)[-1]

    @staticmethod
    def namespace_from(identifier: Union[str, Identifier]) -> Identifier:
        """Extract table namespace from a table identifier.

        Args:
            identifier (Union[str, Identifier]): a table identifier.

        Returns:
            Identifier: Namespace identifier.
        """
        return Catalog.identifier_to_tuple(identifier)[:-1]

    @staticmethod
    def namespace_to_string(identifier: Union[str, Identifier]) -> str:
        """Transform a namespace identifier into a string.

        Args:
            identifier (Union[str, Identifier]): a namespace identifier.

        Returns:
            str: The namespace, with its levels separated by '.'.
        """
        return ".".join(Catalog.identifier_to_tuple(identifier))

    def __repr__(self) -> str:
        """Return the string representation of the Catalog class."""
        return f"{self.name} ({self.__class__})"


class MetastoreCatalog(Catalog, ABC):
    """A catalog that stores a pointer to the current metadata file of each table.

    Creating, loading and replacing tables is implemented on top of `TableOperations`.
    Concurrent callers are reconciled solely by the conditional update of the store, no
    lock is held across calls.
    """

    @abstractmethod
    def new_table_ops(self, identifier: Identifier) -> TableOperations:
        """Return the operations that read and swap the metadata pointer of the table."""

    def default_warehouse_location(self, identifier: Identifier) -> str:
        """Return the location of a table that is created without one.

        Raises:
            ValueError: When the catalog has no warehouse.
        """
        if not (warehouse := self.properties.get(WAREHOUSE)):
            raise ValueError("No default path is set, please specify a location when creating a table")
        warehouse = warehouse.rstrip("/")
        namespace = Catalog.namespace_from(identifier)
        table_name = Catalog.table_name_from(identifier)
        if namespace:
            return f"{warehouse}/{Catalog.namespace_to_string(namespace)}.db/{table_name}"
        return f"{warehouse}/{table_name}"

    def _is_valid_identifier(self, identifier: Identifier) -> bool:
        return True

    def is_valid_metadata_identifier(self, identifier: Identifier) -> bool:
        """Return whether the identifier names a metadata table of a valid base table."""
        return (
            len(identifier) > 1
            and MetadataTableType.from_name(identifier[-1]) is not None
            and self._is_valid_identifier(identifier[:-1])
        )

    def resolve_identifier(self, identifier: Union[str, Identifier]) -> ResolvedIdentifier:
        """Classify an identifier as a table, a metadata table or invalid, without reading the store."""
        identifier = Catalog.identifier_to_tuple(identifier)
        if self._is_valid_identifier(identifier):
            return ResolvedIdentifier(IdentifierKind.BASE_TABLE, identifier)
        if self.is_valid_metadata_identifier(identifier):
            return ResolvedIdentifier(
                IdentifierKind.METADATA_TABLE,
                identifier,
                base_identifier=identifier[:-1],
                metadata_table_type=MetadataTableType.from_name(identifier[-1]),
            )
        return ResolvedIdentifier(IdentifierKind.INVALID, identifier)

    def load_table(self, identifier: Union[str, Identifier]) -> Union[Table, MetadataTable]:
        """Load the table, or the metadata table, with the identifier.

        An identifier that is valid both ways, such as `db.tbl.files`, resolves to the table
        when it exists, and otherwise to the metadata table `files` of `db.tbl`.

        Args:
            identifier (str | Identifier): Table identifier.

        Returns:
            Table | MetadataTable: The table, or a view over the metadata of the base table.

        Raises:
            NoSuchTableError: If the table, or the base table of the metadata table, does not exist.
        """
        identifier = Catalog.identifier_to_tuple(identifier)
        result: Union[Table, MetadataTable]
        if self._is_valid_identifier(identifier):
            ops = self.new_table_ops(identifier)
            if (metadata := ops.current()) is not None:
                result = Table(identifier, metadata, ops.metadata_location, ops.io, self, ops)
            elif self.is_valid_metadata_identifier(identifier):
                result = self._load_metadata_table(identifier)
            else:
                raise NoSuchTableError(f"Table does not exist: {full_table_name(self.name, identifier)}")
        elif self.is_valid_metadata_identifier(identifier):
            result = self._load_metadata_table(identifier)
        else:
            raise NoSuchTableError(f"Invalid table identifier: {full_table_name(self.name, identifier)}")

        logger.info("Table loaded by catalog: %s", full_table_name(self.name, identifier))
        return result

    def _load_metadata_table(self, identifier: Identifier) -> MetadataTable:
        base_identifier = identifier[:-1]
        metadata_table_type = cast(MetadataTableType, MetadataTableType.from_name(identifier[-1]))
        ops = self.new_table_ops(base_identifier)
        if (metadata := ops.current()) is None:
            raise NoSuchTableError(f"Table does not exist: {full_table_name(self.name, base_identifier)}")
        base_table = Table(base_identifier, metadata, ops.metadata_location, ops.io, self, ops)
        return MetadataTable(base_table, metadata_table_type)

    def build_table(self, identifier: Union[str, Identifier], schema: Schema) -> TableBuilder:
        """Return a builder to create or replace the table.

        Raises:
            ValueError: If the identifier is invalid for this catalog.
        """
        return TableBuilder(self, Catalog.identifier_to_tuple(identifier), schema)

    def create_table(
        self,
        identifier: Union[str, Identifier],
        schema: Schema,
        location: Optional[str] = None,
        partition_spec: PartitionSpec = UNPARTITIONED_PARTITION_SPEC,
        sort_order: SortOrder = UNSORTED_SORT_ORDER,
        properties: Properties = EMPTY_DICT,
    ) -> Table:
        """Create a table.

        Args:
            identifier (str | Identifier): Table identifier.
            schema (Schema): Table's schema.
            location (str | None): Location for the table. Optional Argument.
            partition_spec (PartitionSpec): PartitionSpec for the table.
            sort_order (SortOrder): SortOrder for the table.
            properties (Properties): Table properties that can be a string based dictionary.

        Returns:
            Table: the created table instance.

        Raises:
            TableAlreadyExistsError: If a table with the name already exists, or was created concurrently.
        """
        return self._builder(identifier, schema, location, partition_spec, sort_order, properties).create()

    def create_table_if_not_exists(
        self,
        identifier: Union[str, Identifier],
        schema: Schema,
        location: Optional[str] = None,
        partition_spec: PartitionSpec = UNPARTITIONED_PARTITION_SPEC,
        sort_order: SortOrder = UNSORTED_SORT_ORDER,
        properties: Properties = EMPTY_DICT,
    ) -> Table:
        """Create a table if it does not exist, and return the existing table otherwise."""
        try:
            return self.create_table(identifier, schema, location, partition_spec, sort_order, properties)
        except TableAlreadyExistsError:
            return cast(Table, self.load_table(identifier))

    def create_table_transaction(
        self,
        identifier: Union[str, Identifier],
        schema: Schema,
        location: Optional[str] = None,
        partition_spec: PartitionSpec = UNPARTITIONED_PARTITION_SPEC,
        sort_order: SortOrder = UNSORTED_SORT_ORDER,
        properties: Properties = EMPTY_DICT,
    ) -> CreateTableTransaction:
        """Create a CreateTableTransaction.

        Raises:
            TableAlreadyExistsError: If a table with the name already exists.
        """
        return self._builder(identifier, schema, location, partition_spec, sort_order, properties).create_transaction()

    def replace_table_transaction(
        self,
        identifier: Union[str, Identifier],
        schema: Schema,
        location: Optional[str] = None,
        partition_spec: PartitionSpec = UNPARTITIONED_PARTITION_SPEC,
        sort_order: SortOrder = UNSORTED_SORT_ORDER,
        properties: Properties = EMPTY_DICT,
        or_create: bool = False,
    ) -> ReplaceTableTransaction:
        """Create a ReplaceTableTransaction.

        Raises:
            NoSuchTableError: If the table does not exist, and `or_create` is not set.
        """
        builder = self._builder(identifier, schema, location, partition_spec, sort_order, properties)
        return builder.create_or_replace_transaction() if or_create else builder.replace_transaction()

    def purge_table(self, identifier: Union[str, Identifier]) -> DropTableDataResult:
        """Drop the table and delete all the files reachable from any of its snapshots.

        The entry of the table is removed from the catalog first. Failing to delete a file
        does not fail the purge, it is reported in the result.
        """
        identifier = Catalog.identifier_to_tuple(identifier)
        table = self.load_table(identifier)
        if not isinstance(table, Table):
            raise NoSuchTableError(f"Table does not exist: {full_table_name(self.name, identifier)}")
        self.drop_table(identifier)
        return drop_table_data(table.io, table.metadata, table.metadata_location)

    def _builder(
        self,
        identifier: Union[str, Identifier],
        schema: Schema,
        location: Optional[str],
        partition_spec: PartitionSpec,
        sort_order: SortOrder,
        properties: Properties,
    ) -> TableBuilder:
        builder = (
            self.build_table(identifier, schema)
            .with_partition_spec(partition_spec)
            .with_sort_order(sort_order)
            .with_properties(properties)
        )
        if location:
            builder.with_location(location)
        return builder


def _prepare_metadata(
    base: Optional[TableMetadata],
    schema: Schema,
    partition_spec: PartitionSpec,
    sort_order: SortOrder,
    location: Optional[str],
    default_location: Callable[[], str],
    properties: Properties,
) -> TableMetadata:
    if base is None:
        return new_table_metadata(schema, partition_spec, sort_order, location or default_location(), properties)
    return base.build_replacement(schema, partition_spec, sort_order, location=location, properties=properties)


class TableBuilder:
    """Collects the definition of a table, to create or replace it.

    Every terminal operation reads the store afresh, so the builder can be used more than once.
    """

    _catalog: MetastoreCatalog
    _identifier: Identifier
    _schema: Schema
    _partition_spec: PartitionSpec
    _sort_order: SortOrder
    _location: Optional[str]
    _properties: Dict[str, str]

    def __init__(self, catalog: MetastoreCatalog, identifier: Identifier, schema: Schema) -> None:
        if not catalog._is_valid_identifier(identifier):  # pylint: disable=W0212
            raise ValueError(f"Invalid table identifier: {full_table_name(catalog.name, identifier)}")
        self._catalog = catalog
        self._identifier = identifier
        self._schema = schema
        self._partition_spec = UNPARTITIONED_PARTITION_SPEC
        self._sort_order = UNSORTED_SORT_ORDER
        self._location = None
        self._properties = {}

    @property
    def _full_name(self) -> str:
        return full_table_name(self._catalog.name, self._identifier)

    def with_partition_spec(self, partition_spec: Optional[PartitionSpec]) -> TableBuilder:
        self._partition_spec = partition_spec if partition_spec is not None else UNPARTITIONED_PARTITION_SPEC
        return self

    def with_sort_order(self, sort_order: Optional[SortOrder]) -> TableBuilder:
        self._sort_order = sort_order if sort_order is not None else UNSORTED_SORT_ORDER
        return self

    def with_location(self, location: Optional[str]) -> TableBuilder:
        self._location = location.rstrip("/") if location else None
        return self

    def with_properties(self, properties: Optional[Properties]) -> TableBuilder:
        if properties:
            self._properties.update(properties)
        return self

    def with_property(self, key: str, value: str) -> TableBuilder:
        self._properties[key] = value
        return self

    def _rebuild(self) -> Callable[[Optional[TableMetadata]], TableMetadata]:
        # bound to the current definition, later calls to the setters do not leak into it
        return partial(
            _prepare_metadata,
            schema=self._schema,
            partition_spec=self._partition_spec,
            sort_order=self._sort_order,
            location=self._location,
            default_location=partial(self._catalog.default_warehouse_location, self._identifier),
            properties=dict(self._properties),
        )

    def _new_ops_without_table(self) -> TableOperations:
        ops = self._catalog.new_table_ops(self._identifier)
        if ops.current() is not None:
            raise TableAlreadyExistsError(f"Table already exists: {self._full_name}")
        return ops

    def create(self) -> Table:
        """Create the table.

        Raises:
            TableAlreadyExistsError: If the table exists, or was created concurrently.
        """
        ops = self._new_ops_without_table()
        metadata = self._rebuild()(None)
        try:
            ops.commit(None, metadata)
        except CommitFailedException as e:
            raise TableAlreadyExistsError(f"Table was created concurrently: {self._full_name}") from e

        logger.info("Table created: %s", self._full_name)
        return Table(self._identifier, cast(TableMetadata, ops.current()), ops.metadata_location, ops.io, self._catalog, ops)

    def create_transaction(self) -> CreateTableTransaction:
        """Stage the creation of the table, which happens on commit.

        Raises:
            TableAlreadyExistsError: If the table exists.
        """
        ops = self._new_ops_without_table()
        metadata = self._rebuild()(None)
        return CreateTableTransaction(StagedTable(self._identifier, metadata, None, ops.io, self._catalog, ops))

    def replace_transaction(self) -> ReplaceTableTransaction:
        """Stage the replacement of the table, which happens on commit.

        Raises:
            NoSuchTableError: If the table does not exist.
        """
        return self._replace_transaction(or_create=False)

    def create_or_replace_transaction(self) -> ReplaceTableTransaction:
        """Stage the replacement of the table, or its creation when it does not exist."""
        return self._replace_transaction(or_create=True)

    def _replace_transaction(self, or_create: bool) -> ReplaceTableTransaction:
        ops = self._catalog.new_table_ops(self._identifier)
        base = ops.current()
        if base is None and not or_create:
            raise NoSuchTableError(f"No such table: {self._full_name}")

        rebuild = self._rebuild()
        staged = StagedTable(self._identifier, rebuild(base), ops.metadata_location, ops.io, self._catalog, ops)
        return ReplaceTableTransaction(staged, base, rebuild, or_create=or_create)

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

import logging
from functools import reduce
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
)

from pyglacier.exceptions import CommitFailedException, NoSuchTableError, TableAlreadyExistsError
from pyglacier.io import FileIO
from pyglacier.partitioning import PartitionSpec
from pyglacier.schema import Schema
from pyglacier.table.inspect import InspectTable
from pyglacier.table.metadata import TableMetadata
from pyglacier.table.snapshots import Snapshot, SnapshotLogEntry
from pyglacier.table.sorting import SortOrder
from pyglacier.typedef import EMPTY_DICT, Identifier, Properties
from pyglacier.utils import retry

if TYPE_CHECKING:
    from pyglacier.catalog import Catalog, TableOperations

logger = logging.getLogger(__name__)

MetadataUpdate = Callable[[TableMetadata], TableMetadata]


class TableProperties:
    GC_ENABLED = "gc.enabled"
    GC_ENABLED_DEFAULT = True

    COMMIT_NUM_RETRIES = retry.COMMIT_NUM_RETRIES
    COMMIT_NUM_RETRIES_DEFAULT = retry.COMMIT_NUM_RETRIES_DEFAULT

    COMMIT_MIN_RETRY_WAIT_MS = retry.COMMIT_MIN_RETRY_WAIT_MS
    COMMIT_MIN_RETRY_WAIT_MS_DEFAULT = retry.COMMIT_MIN_RETRY_WAIT_MS_DEFAULT

    COMMIT_MAX_RETRY_WAIT_MS = retry.COMMIT_MAX_RETRY_WAIT_MS
    COMMIT_MAX_RETRY_WAIT_MS_DEFAULT = retry.COMMIT_MAX_RETRY_WAIT_MS_DEFAULT

    COMMIT_TOTAL_RETRY_TIME_MS = retry.COMMIT_TOTAL_RETRY_TIME_MS
    COMMIT_TOTAL_RETRY_TIME_MS_DEFAULT = retry.COMMIT_TOTAL_RETRY_TIME_MS_DEFAULT

    METADATA_PREVIOUS_VERSIONS_MAX = "write.metadata.previous-versions-max"
    METADATA_PREVIOUS_VERSIONS_MAX_DEFAULT = 100


class Transaction:
    _table: Table
    _base: Optional[TableMetadata]
    table_metadata: TableMetadata
    _autocommit: bool
    _updates: Tuple[MetadataUpdate, ...]

    def __init__(self, table: Table, autocommit: bool = False):
        """Open a transaction to stage and commit changes to a table.

        Args:
            table: The table that will be altered.
            autocommit: Option to automatically commit the changes when they are staged.
        """
        self._base = table.metadata
        self.table_metadata = table.metadata
        self._table = table
        self._autocommit = autocommit
        self._updates = ()

    def __enter__(self) -> Transaction:
        """Start a transaction to update the table."""
        return self

    def __exit__(self, exctype: Any, value: Any, traceback: Any) -> None:
        """Close and commit the transaction, unless the block raised."""
        if exctype is None:
            self.commit_transaction()

    def _apply(self, *updates: MetadataUpdate) -> Transaction:
        """Stage the updates and apply them to the metadata of the transaction."""
        self._updates += updates
        self.table_metadata = reduce(lambda metadata, update: update(metadata), updates, self.table_metadata)

        if self._autocommit:
            self.commit_transaction()

        return self

    def set_properties(self, properties: Properties = EMPTY_DICT, **kwargs: Any) -> Transaction:
        """Set properties.

        When a property is already set, it will be overwritten.

        Args:
            properties: The properties set on the table.
            kwargs: properties can also be pass as kwargs.

        Returns:
            The alter table builder.
        """
        if properties and kwargs:
            raise ValueError("Cannot pass both properties and kwargs")
        updates = dict(properties or kwargs)
        return self._apply(lambda metadata: metadata.with_properties(updates))

    def remove_properties(self, *removals: str) -> Transaction:
        """Remove properties.

        Args:
            removals: Properties to be removed.

        Returns:
            The alter table builder.
        """
        return self._apply(lambda metadata: metadata.without_properties(list(removals)))

    def update_location(self, location: str) -> Transaction:
        """Set the new table location.

        Args:
            location: The new location of the table.

        Returns:
            The alter table builder.
        """
        return self._apply(lambda metadata: metadata.with_location(location))

    def add_snapshot(self, snapshot: Snapshot) -> Transaction:
        """Add a new snapshot to the table and make it the current snapshot.

        Args:
            snapshot: The snapshot to add.

        Returns:
            The alter table builder.
        """
        return self._apply(lambda metadata: metadata.with_snapshot(snapshot))

    def commit_transaction(self) -> Table:
        """Commit the changes against the metadata the transaction started from.

        Returns:
            The table with the updates applied.

        Raises:
            CommitFailedException: When the table was changed concurrently.
        """
        if len(self._updates) > 0:
            self._table._do_commit(self._base, self.table_metadata)  # pylint: disable=W0212
            self._base = self._table.metadata
            self.table_metadata = self._table.metadata
            self._updates = ()
        return self._table


class CreateTableTransaction(Transaction):
    """Stages the metadata of a table that does not exist yet.

    Nothing is written to the store until `commit_transaction`, which commits the
    staged metadata without a predecessor.
    """

    def __init__(self, table: StagedTable):
        super().__init__(table, autocommit=False)
        self._base = None

    def commit_transaction(self) -> Table:
        """Commit the staged table.

        Returns:
            The created table.

        Raises:
            TableAlreadyExistsError: When another caller created the table first.
        """
        try:
            self._table._do_commit(None, self.table_metadata)  # pylint: disable=W0212
        except CommitFailedException as e:
            raise TableAlreadyExistsError(f"Table was created concurrently: {self._table.full_name}") from e
        return self._table


class ReplaceTableTransaction(Transaction):
    """Stages the replacement of the definition of a table.

    When the commit loses a race against a concurrent change, the table is refreshed, the
    replacement is rebuilt over the new state and the staged updates are applied again,
    for as long as the commit.retry.* table properties allow.
    """

    _rebuild: Callable[[Optional[TableMetadata]], TableMetadata]
    _or_create: bool

    def __init__(
        self,
        table: StagedTable,
        base: Optional[TableMetadata],
        rebuild: Callable[[Optional[TableMetadata]], TableMetadata],
        or_create: bool = False,
    ):
        super().__init__(table, autocommit=False)
        self._base = base
        self._rebuild = rebuild
        self._or_create = or_create

    def _rebase(self) -> None:
        fresh = self._table.ops.refresh()
        if fresh is None and not self._or_create:
            raise NoSuchTableError(f"No such table: {self._table.full_name}")
        self._base = fresh
        self.table_metadata = reduce(lambda metadata, update: update(metadata), self._updates, self._rebuild(fresh))

    def commit_transaction(self) -> Table:
        """Commit the replacement, retrying against fresh state when the table changed concurrently.

        Returns:
            The table with the replacement applied.

        Raises:
            CommitFailedException: When the retries are exhausted.
            NoSuchTableError: When the table disappeared, and the transaction may not create it.
        """

        def _attempt(attempt: int) -> None:
            if attempt > 1:
                self._rebase()
            self._table._do_commit(self._base, self.table_metadata)  # pylint: disable=W0212

        config = retry.RetryConfig.from_table_properties(self.table_metadata.properties)
        retry.run_with_retry(_attempt, config, retry_on=(CommitFailedException,))
        return self._table


class Table:
    _identifier: Identifier
    metadata: TableMetadata
    metadata_location: Optional[str]
    io: FileIO
    catalog: Catalog
    ops: TableOperations

    def __init__(
        self,
        identifier: Identifier,
        metadata: TableMetadata,
        metadata_location: Optional[str],
        io: FileIO,
        catalog: Catalog,
        ops: TableOperations,
    ) -> None:
        self._identifier = identifier
        self.metadata = metadata
        self.metadata_location = metadata_location
        self.io = io
        self.catalog = catalog
        self.ops = ops

    def transaction(self) -> Transaction:
        """Create a new transaction object to first stage the changes, and then commit them to the catalog.

        Returns:
            The transaction object
        """
        return Transaction(self)

    @property
    def inspect(self) -> InspectTable:
        """Return the InspectTable object to browse the table metadata."""
        return InspectTable(self)

    def refresh(self) -> Table:
        """Refresh the current table metadata."""
        fresh = self.ops.refresh()
        if fresh is None:
            raise NoSuchTableError(f"Table does not exist: {self.full_name}")
        self.metadata = fresh
        self.metadata_location = self.ops.metadata_location
        return self

    def name(self) -> Identifier:
        """Return the identifier of this table."""
        return self._identifier

    @property
    def full_name(self) -> str:
        """Return the fully qualified name, prefixed with the name of the catalog."""
        from pyglacier.catalog import full_table_name

        return full_table_name(self.catalog.name, self._identifier)

    def schema(self) -> Schema:
        """Return the schema for this table."""
        return self.metadata.schema()

    def schemas(self) -> Dict[int, Schema]:
        """Return a dict of the schema of this table."""
        return {schema.schema_id: schema for schema in self.metadata.schemas}

    def spec(self) -> PartitionSpec:
        """Return the partition spec of this table."""
        return self.metadata.spec()

    def specs(self) -> Dict[int, PartitionSpec]:
        """Return a dict the partition specs this table."""
        return self.metadata.specs()

    def sort_order(self) -> SortOrder:
        """Return the sort order of this table."""
        return self.metadata.sort_order()

    @property
    def properties(self) -> Dict[str, str]:
        """Properties of the table."""
        return self.metadata.properties

    def location(self) -> str:
        """Return the table's base location."""
        return self.metadata.location

    def current_snapshot(self) -> Optional[Snapshot]:
        """Get the current snapshot for this table, or None if there is no snapshot."""
        return self.metadata.current_snapshot()

    def snapshots(self) -> List[Snapshot]:
        return self.metadata.snapshots

    def snapshot_by_id(self, snapshot_id: int) -> Optional[Snapshot]:
        """Get the snapshot of this table with the given id, or None if there is no matching snapshot."""
        return self.metadata.snapshot_by_id(snapshot_id)

    def snapshot_as_of_timestamp(self, timestamp_ms: int, inclusive: bool = True) -> Optional[Snapshot]:
        """Get the snapshot that was current as of or right before the given timestamp, or None if there is no matching snapshot.

        Args:
            timestamp_ms: Find snapshot that was current at/before this timestamp
            inclusive: Includes timestamp_ms in search when True. Excludes timestamp_ms when False
        """
        for log_entry in reversed(self.history()):
            if (inclusive and log_entry.timestamp_ms <= timestamp_ms) or log_entry.timestamp_ms < timestamp_ms:
                return self.snapshot_by_id(log_entry.snapshot_id)
        return None

    def history(self) -> List[SnapshotLogEntry]:
        """Get the snapshot history of this table."""
        return self.metadata.snapshot_log

    def _do_commit(self, base: Optional[TableMetadata], metadata: TableMetadata) -> None:
        self.ops.commit(base, metadata)
        # the committed version also records the metadata file it succeeds
        self.metadata = self.ops.current() or metadata
        self.metadata_location = self.ops.metadata_location

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the Table class."""
        return (
            self.name() == other.name() and self.metadata == other.metadata and self.metadata_location == other.metadata_location
            if isinstance(other, Table)
            else False
        )

    def __repr__(self) -> str:
        """Return the string representation of the Table class."""
        schema_str = ",\n  ".join(str(column) for column in self.schema().columns)
        partition_str = f"partition by: [{', '.join(field.name for field in self.spec().fields)}]"
        sort_order_str = f"sort order: [{', '.join(str(field) for field in self.sort_order().fields)}]"
        snapshot_str = f"snapshot: {str(self.current_snapshot()) if self.current_snapshot() else 'null'}"
        result_str = f"{self.full_name}(\n  {schema_str}\n),\n{partition_str},\n{sort_order_str},\n{snapshot_str}"
        return result_str


class StagedTable(Table):
    """A table whose metadata has not been committed yet."""

    def refresh(self) -> Table:
        raise ValueError("Cannot refresh a staged table")

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

import time
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator, model_validator

from pyglacier.partitioning import (
    INITIAL_PARTITION_SPEC_ID,
    PARTITION_FIELD_ID_START,
    UNPARTITIONED_PARTITION_SPEC,
    PartitionField,
    PartitionSpec,
)
from pyglacier.schema import INITIAL_SCHEMA_ID, Schema
from pyglacier.table.snapshots import MetadataLogEntry, Snapshot, SnapshotLogEntry
from pyglacier.table.sorting import (
    INITIAL_SORT_ORDER_ID,
    UNSORTED_SORT_ORDER,
    UNSORTED_SORT_ORDER_ID,
    SortOrder,
)
from pyglacier.typedef import EMPTY_DICT, GlacierBaseModel, Properties

TABLE_FORMAT_VERSION = 2
INITIAL_SEQUENCE_NUMBER = 0


def _current_time_ms() -> int:
    return int(time.time() * 1000)


def transform_dict_value_to_str(dict: Dict[str, Any]) -> Dict[str, str]:
    """Transform all values in the dictionary to string. Raise an error if any value is None."""
    for key, value in dict.items():
        if value is None:
            raise ValueError(f"None type is not a supported value in properties: {key}")
    return {k: str(v).lower() if isinstance(v, bool) else str(v) for k, v in dict.items()}


class TableMetadata(GlacierBaseModel):
    """The metadata of a table.

    Instances are immutable. Every change produces a new instance, which becomes the
    table's current state once it has been committed against its predecessor.
    """

    format_version: Literal[2] = Field(alias="format-version", default=TABLE_FORMAT_VERSION)
    """An integer version number for the format."""

    table_uuid: uuid.UUID = Field(alias="table-uuid", default_factory=uuid.uuid4)
    """A UUID that identifies the table, generated when the table is created.
    A replacement keeps the UUID of the table it replaces."""

    location: str = Field()
    """The table's base location. This is used by writers to determine where
    to store data files, manifest files, and table metadata files."""

    last_sequence_number: int = Field(alias="last-sequence-number", default=INITIAL_SEQUENCE_NUMBER)
    """The table's highest assigned sequence number."""

    last_updated_ms: int = Field(alias="last-updated-ms", default_factory=_current_time_ms)
    """Timestamp in milliseconds from the unix epoch when the table was last updated."""

    last_column_id: int = Field(alias="last-column-id")
    """An integer; the highest assigned column ID for the table."""

    schemas: List[Schema] = Field(default_factory=list)
    """A list of schemas, stored as objects with schema-id."""

    current_schema_id: int = Field(alias="current-schema-id", default=INITIAL_SCHEMA_ID)
    """ID of the table's current schema."""

    partition_specs: List[PartitionSpec] = Field(alias="partition-specs", default_factory=list)
    """A list of partition specs, stored as full partition spec objects."""

    default_spec_id: int = Field(alias="default-spec-id", default=INITIAL_PARTITION_SPEC_ID)
    """ID of the "current" spec that writers should use by default."""

    last_partition_id: int = Field(alias="last-partition-id", default=PARTITION_FIELD_ID_START - 1)
    """An integer; the highest assigned partition field ID across all partition specs."""

    properties: Dict[str, str] = Field(default_factory=dict)
    """A string to string map of table properties."""

    current_snapshot_id: Optional[int] = Field(alias="current-snapshot-id", default=None)
    """ID of the current table snapshot."""

    snapshots: List[Snapshot] = Field(default_factory=list)
    """A list of valid snapshots. Every file reachable from one of these snapshots
    belongs to the table."""

    snapshot_log: List[SnapshotLogEntry] = Field(alias="snapshot-log", default_factory=list)
    """A list of timestamp and snapshot ID pairs that encodes changes to the current
    snapshot for the table."""

    metadata_log: List[MetadataLogEntry] = Field(alias="metadata-log", default_factory=list)
    """A list of timestamp and metadata file location pairs of the previous metadata
    files of the table."""

    sort_orders: List[SortOrder] = Field(alias="sort-orders", default_factory=lambda: [UNSORTED_SORT_ORDER])
    """A list of sort orders, stored as full sort order objects."""

    default_sort_order_id: int = Field(alias="default-sort-order-id", default=UNSORTED_SORT_ORDER_ID)
    """Default sort order id of the table."""

    @field_validator("properties", mode="before")
    def transform_properties_dict_value_to_str(cls, properties: Properties) -> Dict[str, str]:
        return transform_dict_value_to_str(properties)

    @model_validator(mode="after")
    def check_current_ids(self) -> TableMetadata:
        if self.current_schema_id not in {schema.schema_id for schema in self.schemas}:
            raise ValueError(f"current-schema-id {self.current_schema_id} can't be found in the schemas")
        if self.default_spec_id not in {spec.spec_id for spec in self.partition_specs}:
            raise ValueError(f"default-spec-id {self.default_spec_id} can't be found")
        if self.default_sort_order_id not in {sort_order.order_id for sort_order in self.sort_orders}:
            raise ValueError(f"default-sort-order-id {self.default_sort_order_id} can't be found in {self.sort_orders}")
        if self.current_snapshot_id is not None and self.snapshot_by_id(self.current_snapshot_id) is None:
            raise ValueError(f"current-snapshot-id {self.current_snapshot_id} can't be found in the snapshots")
        return self

    def schema(self) -> Schema:
        """Return the current schema."""
        return next(schema for schema in self.schemas if schema.schema_id == self.current_schema_id)

    def schema_by_id(self, schema_id: int) -> Optional[Schema]:
        return next((schema for schema in self.schemas if schema.schema_id == schema_id), None)

    def spec(self) -> PartitionSpec:
        """Return the default partition spec."""
        return next(spec for spec in self.partition_specs if spec.spec_id == self.default_spec_id)

    def specs(self) -> Dict[int, PartitionSpec]:
        return {spec.spec_id: spec for spec in self.partition_specs}

    def sort_order(self) -> SortOrder:
        """Return the default sort order."""
        return next(sort_order for sort_order in self.sort_orders if sort_order.order_id == self.default_sort_order_id)

    def snapshot_by_id(self, snapshot_id: int) -> Optional[Snapshot]:
        """Get the snapshot by snapshot_id."""
        return next((snapshot for snapshot in self.snapshots if snapshot.snapshot_id == snapshot_id), None)

    def current_snapshot(self) -> Optional[Snapshot]:
        """Get the current snapshot for this table, or None if there is no snapshot."""
        if self.current_snapshot_id is not None:
            return self.snapshot_by_id(self.current_snapshot_id)
        return None

    def next_sequence_number(self) -> int:
        return self.last_sequence_number + 1

    def new_snapshot_id(self) -> int:
        """Generate a new snapshot-id that is not in use by this table."""
        existing = {snapshot.snapshot_id for snapshot in self.snapshots}
        while True:
            snapshot_id = _generate_snapshot_id()
            if snapshot_id not in existing:
                return snapshot_id

    def build_replacement(
        self,
        schema: Schema,
        partition_spec: PartitionSpec = UNPARTITIONED_PARTITION_SPEC,
        sort_order: SortOrder = UNSORTED_SORT_ORDER,
        location: Optional[str] = None,
        properties: Properties = EMPTY_DICT,
    ) -> TableMetadata:
        """Build the metadata that replaces the definition of this table.

        The table keeps its UUID, its snapshots and its logs, so that no file that was
        reachable before the replacement is lost track of. The replacement has no current
        snapshot. The schema, partition spec and sort order become the current ones,
        reusing the ids of equal existing definitions. The properties are merged into the
        existing ones.

        Args:
            schema: The schema of the replacement.
            partition_spec: The partition spec of the replacement.
            sort_order: The sort order of the replacement.
            location: The new location of the table, defaults to the existing location.
            properties: Properties that are added to, or override, the existing properties.

        Returns:
            The replacement metadata.
        """
        _check_source_ids(schema, partition_spec, sort_order)

        schemas = list(self.schemas)
        if existing_schema := next((existing for existing in schemas if existing == schema), None):
            schema_id = existing_schema.schema_id
        else:
            schema_id = max((existing.schema_id for existing in schemas), default=INITIAL_SCHEMA_ID - 1) + 1
            schemas.append(schema.model_copy(update={"schema_id": schema_id}))

        specs = list(self.partition_specs)
        last_partition_id = self.last_partition_id
        if existing_spec := next((existing for existing in specs if existing.compatible_with(partition_spec)), None):
            spec_id = existing_spec.spec_id
        else:
            spec_id = max((existing.spec_id for existing in specs), default=INITIAL_PARTITION_SPEC_ID - 1) + 1
            fresh_spec = _assign_fresh_partition_field_ids(partition_spec, spec_id, last_partition_id)
            last_partition_id = fresh_spec.last_assigned_field_id or last_partition_id
            specs.append(fresh_spec)

        sort_orders = list(self.sort_orders)
        if sort_order.is_unsorted:
            order_id = UNSORTED_SORT_ORDER_ID
            if not any(existing.order_id == UNSORTED_SORT_ORDER_ID for existing in sort_orders):
                sort_orders.append(UNSORTED_SORT_ORDER)
        elif existing_order := next((existing for existing in sort_orders if existing.fields == sort_order.fields), None):
            order_id = existing_order.order_id
        else:
            order_id = max((existing.order_id for existing in sort_orders), default=UNSORTED_SORT_ORDER_ID) + 1
            sort_orders.append(sort_order.model_copy(update={"order_id": order_id}))

        return self.model_copy(
            update={
                "location": location or self.location,
                "last_updated_ms": _current_time_ms(),
                "last_column_id": max(self.last_column_id, schema.highest_field_id),
                "schemas": schemas,
                "current_schema_id": schema_id,
                "partition_specs": specs,
                "default_spec_id": spec_id,
                "last_partition_id": last_partition_id,
                "sort_orders": sort_orders,
                "default_sort_order_id": order_id,
                "properties": {**self.properties, **transform_dict_value_to_str(dict(properties))},
                "current_snapshot_id": None,
            }
        )

    def with_properties(self, updates: Properties) -> TableMetadata:
        return self.model_copy(
            update={
                "properties": {**self.properties, **transform_dict_value_to_str(dict(updates))},
                "last_updated_ms": _current_time_ms(),
            }
        )

    def without_properties(self, removals: List[str]) -> TableMetadata:
        return self.model_copy(
            update={
                "properties": {key: value for key, value in self.properties.items() if key not in removals},
                "last_updated_ms": _current_time_ms(),
            }
        )

    def with_location(self, location: str) -> TableMetadata:
        return self.model_copy(update={"location": location.rstrip("/"), "last_updated_ms": _current_time_ms()})

    def with_snapshot(self, snapshot: Snapshot) -> TableMetadata:
        """Add a snapshot and make it the current snapshot."""
        if self.snapshot_by_id(snapshot.snapshot_id) is not None:
            raise ValueError(f"Snapshot with id {snapshot.snapshot_id} already exists")
        sequence_number = snapshot.sequence_number if snapshot.sequence_number is not None else self.next_sequence_number()
        snapshot = snapshot.model_copy(update={"sequence_number": sequence_number})
        return self.model_copy(
            update={
                "snapshots": [*self.snapshots, snapshot],
                "current_snapshot_id": snapshot.snapshot_id,
                "snapshot_log": [
                    *self.snapshot_log,
                    SnapshotLogEntry(snapshot_id=snapshot.snapshot_id, timestamp_ms=snapshot.timestamp_ms),
                ],
                "last_sequence_number": max(self.last_sequence_number, sequence_number),
                "last_updated_ms": snapshot.timestamp_ms,
            }
        )

    def with_previous_metadata_file(self, metadata_file: str, timestamp_ms: int, max_entries: int) -> TableMetadata:
        """Record the location of the metadata file this version succeeds.

        Only the most recent `max_entries` locations are kept.
        """
        metadata_log = [*self.metadata_log, MetadataLogEntry(metadata_file=metadata_file, timestamp_ms=timestamp_ms)]
        metadata_log = metadata_log[-max_entries:] if max_entries > 0 else []
        return self.model_copy(update={"metadata_log": metadata_log})


def _generate_snapshot_id() -> int:
    """Generate a new Snapshot ID from a UUID.

    Returns: A positive 64-bit long value.
    """
    rnd_uuid = uuid.uuid4()
    snapshot_id = int.from_bytes(
        bytes(lhs ^ rhs for lhs, rhs in zip(rnd_uuid.bytes[0:8], rnd_uuid.bytes[8:16])), byteorder="little", signed=True
    )
    snapshot_id = snapshot_id if snapshot_id >= 0 else snapshot_id * -1

    return snapshot_id


def _check_source_ids(schema: Schema, partition_spec: PartitionSpec, sort_order: SortOrder) -> None:
    field_ids = {field.field_id for field in schema.fields}
    for partition_field in partition_spec.fields:
        if partition_field.source_id not in field_ids:
            raise ValueError(f"Could not find in old schema: {partition_field}")
    for sort_field in sort_order.fields:
        if sort_field.source_id not in field_ids:
            raise ValueError(f"Could not find in old schema: {sort_field}")


def _assign_fresh_partition_field_ids(partition_spec: PartitionSpec, spec_id: int, last_partition_id: int) -> PartitionSpec:
    partition_fields = []
    for pos, field in enumerate(partition_spec.fields, start=1):
        partition_fields.append(
            PartitionField(
                source_id=field.source_id,
                field_id=last_partition_id + pos,
                transform=field.transform,
                name=field.name,
            )
        )
    return PartitionSpec(*partition_fields, spec_id=spec_id)


def new_table_metadata(
    schema: Schema,
    partition_spec: PartitionSpec,
    sort_order: SortOrder,
    location: str,
    properties: Properties = EMPTY_DICT,
    table_uuid: Optional[uuid.UUID] = None,
) -> TableMetadata:
    """Build the metadata of a new table.

    The schema, partition spec and sort order get their initial ids, and the partition
    fields get fresh ids.
    """
    _check_source_ids(schema, partition_spec, sort_order)

    fresh_schema = schema.model_copy(update={"schema_id": INITIAL_SCHEMA_ID})
    fresh_partition_spec = _assign_fresh_partition_field_ids(
        partition_spec, INITIAL_PARTITION_SPEC_ID, PARTITION_FIELD_ID_START - 1
    )
    if sort_order.is_unsorted:
        fresh_sort_order = UNSORTED_SORT_ORDER
    else:
        fresh_sort_order = sort_order.model_copy(update={"order_id": INITIAL_SORT_ORDER_ID})

    return TableMetadata(
        location=location,
        schemas=[fresh_schema],
        last_column_id=fresh_schema.highest_field_id,
        current_schema_id=fresh_schema.schema_id,
        partition_specs=[fresh_partition_spec],
        default_spec_id=fresh_partition_spec.spec_id,
        last_partition_id=fresh_partition_spec.last_assigned_field_id or PARTITION_FIELD_ID_START - 1,
        sort_orders=[fresh_sort_order],
        default_sort_order_id=fresh_sort_order.order_id,
        properties=properties,
        table_uuid=table_uuid or uuid.uuid4(),
    )

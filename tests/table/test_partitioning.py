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
import pytest
from pydantic import ValidationError

from pyglacier.partitioning import UNPARTITIONED_PARTITION_SPEC, PartitionField, PartitionSpec


def test_partition_field_init() -> None:
    partition_field = PartitionField(source_id=3, field_id=1000, transform="truncate[4]", name="id")

    assert str(partition_field) == "1000: id: truncate[4](3)"
    assert repr(partition_field) == "PartitionField(source_id=3, field_id=1000, transform='truncate[4]', name='id')"


@pytest.mark.parametrize("transform", ["bucket", "truncate[x]", "years", ""])
def test_unsupported_transform(transform: str) -> None:
    with pytest.raises(ValidationError, match="Unsupported partition transform"):
        PartitionField(source_id=1, field_id=1000, transform=transform, name="x")


def test_partition_spec_init() -> None:
    bucket_field = PartitionField(source_id=3, field_id=1001, transform="bucket[4]", name="id")
    day_field = PartitionField(source_id=4, field_id=1002, transform="day", name="ts_day")
    partition_spec = PartitionSpec(bucket_field, day_field, spec_id=3)

    assert partition_spec.spec_id == 3
    assert partition_spec.fields == (bucket_field, day_field)
    assert partition_spec.last_assigned_field_id == 1002
    assert not partition_spec.is_unpartitioned()
    assert str(partition_spec) == "[\n  1001: id: bucket[4](3)\n  1002: ts_day: day(4)\n]"


def test_unpartitioned() -> None:
    assert UNPARTITIONED_PARTITION_SPEC.is_unpartitioned()
    assert UNPARTITIONED_PARTITION_SPEC.last_assigned_field_id is None
    assert str(UNPARTITIONED_PARTITION_SPEC) == "[]"
    assert repr(UNPARTITIONED_PARTITION_SPEC) == "PartitionSpec(spec_id=0)"


def test_partition_spec_equality() -> None:
    field = PartitionField(source_id=3, field_id=1001, transform="identity", name="id")

    assert PartitionSpec(field, spec_id=1) == PartitionSpec(field, spec_id=1)
    assert PartitionSpec(field, spec_id=1) != PartitionSpec(field, spec_id=2)
    assert PartitionSpec(field, spec_id=1) != field


def test_compatible_with() -> None:
    field = PartitionField(source_id=1, field_id=1000, transform="bucket[4]", name="id")
    renumbered = PartitionField(source_id=1, field_id=1005, transform="bucket[4]", name="id")
    other_transform = PartitionField(source_id=1, field_id=1000, transform="identity", name="id")

    assert PartitionSpec(field, spec_id=0).compatible_with(PartitionSpec(renumbered, spec_id=1))
    assert not PartitionSpec(field).compatible_with(PartitionSpec(other_transform))
    assert not PartitionSpec(field).compatible_with(UNPARTITIONED_PARTITION_SPEC)


def test_partition_spec_serialization() -> None:
    spec = PartitionSpec(PartitionField(source_id=1, field_id=1000, transform="month", name="ts_month"), spec_id=2)

    assert spec.model_dump(mode="json") == {
        "spec-id": 2,
        "fields": [{"source-id": 1, "field-id": 1000, "transform": "month", "name": "ts_month"}],
    }
    assert PartitionSpec.model_validate_json(spec.model_dump_json()) == spec

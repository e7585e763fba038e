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

from pyglacier.schema import NestedField, Schema


def test_nested_field_str() -> None:
    assert str(NestedField(field_id=1, name="foo", field_type="long", required=True)) == "1: foo: required long"
    assert str(NestedField(2, "bar", "decimal(9, 2)", doc="price")) == "2: bar: optional decimal(9, 2) (price)"


@pytest.mark.parametrize("field_type", ["string", "timestamptz", "decimal(38,10)", "fixed[16]"])
def test_supported_column_types(field_type: str) -> None:
    assert NestedField(1, "col", field_type).field_type == field_type


@pytest.mark.parametrize("field_type", ["varchar", "list<int>", "fixed"])
def test_unsupported_column_types(field_type: str) -> None:
    with pytest.raises(ValidationError, match=f"Unsupported column type: {field_type}"):
        NestedField(1, "col", field_type)


def test_nested_field_from_aliases() -> None:
    field = NestedField.model_validate({"id": 3, "name": "baz", "type": "boolean", "required": True})
    assert field == NestedField(3, "baz", "boolean", required=True)


def test_schema_str(table_schema_simple: Schema) -> None:
    assert str(table_schema_simple) == "table {\n  1: foo: optional string\n  2: bar: required int\n  3: baz: optional boolean\n}"


def test_schema_equality_ignores_the_schema_id(table_schema_simple: Schema) -> None:
    assert table_schema_simple == Schema(*table_schema_simple.fields, schema_id=9, identifier_field_ids=[2])
    assert table_schema_simple != Schema(*table_schema_simple.fields[:2], schema_id=1, identifier_field_ids=[2])
    assert table_schema_simple != Schema(*table_schema_simple.fields, schema_id=1)


def test_schema_duplicate_field_ids() -> None:
    with pytest.raises(ValidationError, match="Duplicate field id in schema: 1"):
        Schema(NestedField(1, "a", "int"), NestedField(1, "b", "int"))


def test_schema_unknown_identifier_field() -> None:
    with pytest.raises(ValidationError, match="Identifier field 5 is not part of the schema"):
        Schema(NestedField(1, "a", "int", required=True), identifier_field_ids=[5])


def test_find_field(table_schema_simple: Schema) -> None:
    assert table_schema_simple.find_field(2).name == "bar"
    assert table_schema_simple.find_field("baz").field_id == 3
    assert table_schema_simple.find_field("BAZ", case_sensitive=False).field_id == 3

    with pytest.raises(ValueError, match="Could not find field with name BAZ, case_sensitive=True"):
        table_schema_simple.find_field("BAZ")
    with pytest.raises(ValueError, match="Could not find field with id: 42"):
        table_schema_simple.find_field(42)


def test_highest_field_id(table_schema_simple: Schema) -> None:
    assert table_schema_simple.highest_field_id == 3
    assert Schema().highest_field_id == 0


def test_schema_serialization(table_schema_simple: Schema) -> None:
    document = table_schema_simple.model_dump()

    assert document["schema-id"] == 0
    assert document["identifier-field-ids"] == [2]
    assert Schema.model_validate(document) == table_schema_simple

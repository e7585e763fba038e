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

import re
from functools import cached_property
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Tuple,
    Union,
)

from pydantic import Field, field_validator, model_validator

from pyglacier.typedef import GlacierBaseModel

INITIAL_SCHEMA_ID = 0

PRIMITIVE_TYPES = {
    "boolean",
    "int",
    "long",
    "float",
    "double",
    "date",
    "time",
    "timestamp",
    "timestamptz",
    "string",
    "uuid",
    "binary",
}
DECIMAL_REGEX = re.compile(r"^decimal\(\s*(\d+)\s*,\s*(\d+)\s*\)$")
FIXED_REGEX = re.compile(r"^fixed\[\s*(\d+)\s*\]$")


class NestedField(GlacierBaseModel):
    """Represents a column of a table.

    Args:
        field_id (int): The unique ID of the column.
        name (str): The name of the column.
        field_type (str): The primitive type of the column, for example `long` or `decimal(9, 2)`.
        required (bool): Whether the column is required.
        doc (Optional[str]): A documentation string for the column.

    Example:
        >>> str(NestedField(field_id=1, name='foo', field_type="long", required=True))
        '1: foo: required long'
    """

    field_id: int = Field(alias="id")
    name: str = Field()
    field_type: str = Field(alias="type")
    required: bool = Field(default=False)
    doc: Optional[str] = Field(default=None, repr=False)

    def __init__(
        self,
        field_id: Optional[int] = None,
        name: Optional[str] = None,
        field_type: Optional[str] = None,
        required: bool = False,
        doc: Optional[str] = None,
        **data: Any,
    ):
        # We need an init when we want to use positional arguments, but
        # need also to support the aliases.
        data["id"] = data["id"] if "id" in data else field_id
        data["name"] = name
        data["type"] = data["type"] if "type" in data else field_type
        data["required"] = required
        data["doc"] = doc
        super().__init__(**data)

    @field_validator("field_type")
    def check_type(cls, field_type: str) -> str:
        if field_type in PRIMITIVE_TYPES or DECIMAL_REGEX.match(field_type) or FIXED_REGEX.match(field_type):
            return field_type
        raise ValueError(f"Unsupported column type: {field_type}")

    def __str__(self) -> str:
        """Return the string representation of the NestedField class."""
        doc = "" if not self.doc else f" ({self.doc})"
        req = "required" if self.required else "optional"
        return f"{self.field_id}: {self.name}: {req} {self.field_type}{doc}"


class Schema(GlacierBaseModel):
    """A table Schema.

    Example:
        >>> from pyglacier.schema import NestedField, Schema
        >>> schema = Schema(NestedField(1, "id", "long", required=True), schema_id=1)
    """

    type: Literal["struct"] = Field(default="struct")
    fields: Tuple[NestedField, ...] = Field(default_factory=tuple)
    schema_id: int = Field(alias="schema-id", default=INITIAL_SCHEMA_ID)
    identifier_field_ids: List[int] = Field(alias="identifier-field-ids", default_factory=list)

    def __init__(self, *fields: NestedField, **data: Any):
        if fields:
            data["fields"] = fields
        super().__init__(**data)

    @model_validator(mode="after")
    def check_unique_field_ids(self) -> Schema:
        seen = set()
        for field in self.fields:
            if field.field_id in seen:
                raise ValueError(f"Duplicate field id in schema: {field.field_id}")
            seen.add(field.field_id)
        for identifier_field_id in self.identifier_field_ids:
            if identifier_field_id not in seen:
                raise ValueError(f"Identifier field {identifier_field_id} is not part of the schema")
        return self

    def __str__(self) -> str:
        """Return the string representation of the Schema class."""
        return "table {\n" + "\n".join(["  " + str(field) for field in self.columns]) + "\n}"

    def __repr__(self) -> str:
        """Return the string representation of the Schema class."""
        return f"Schema({', '.join(repr(column) for column in self.columns)}, schema_id={self.schema_id}, identifier_field_ids={self.identifier_field_ids})"

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the Schema class."""
        if not other:
            return False

        if not isinstance(other, Schema):
            return False

        if len(self.columns) != len(other.columns):
            return False

        identifier_field_ids_is_equal = self.identifier_field_ids == other.identifier_field_ids
        schema_is_equal = all(lhs == rhs for lhs, rhs in zip(self.columns, other.columns))

        return identifier_field_ids_is_equal and schema_is_equal

    @property
    def columns(self) -> Tuple[NestedField, ...]:
        """A tuple of the top-level fields."""
        return self.fields

    @cached_property
    def _lazy_id_to_field(self) -> Dict[int, NestedField]:
        return {field.field_id: field for field in self.fields}

    @cached_property
    def _lazy_name_to_field(self) -> Dict[str, NestedField]:
        return {field.name.lower(): field for field in self.fields}

    @property
    def highest_field_id(self) -> int:
        return max(self._lazy_id_to_field.keys(), default=0)

    def find_field(self, name_or_id: Union[str, int], case_sensitive: bool = True) -> NestedField:
        """Find a field using a field name or field ID.

        Args:
            name_or_id (Union[str, int]): Either a field name or a field ID.
            case_sensitive (bool, optional): Whether to perform a case-sensitive lookup using a field name. Defaults to True.

        Raises:
            ValueError: When the value cannot be found.

        Returns:
            NestedField: The matched NestedField.
        """
        if isinstance(name_or_id, int):
            if name_or_id not in self._lazy_id_to_field:
                raise ValueError(f"Could not find field with id: {name_or_id}")
            return self._lazy_id_to_field[name_or_id]

        if case_sensitive:
            for field in self.fields:
                if field.name == name_or_id:
                    return field
        elif field := self._lazy_name_to_field.get(name_or_id.lower()):
            return field
        raise ValueError(f"Could not find field with name {name_or_id}, case_sensitive={case_sensitive}")

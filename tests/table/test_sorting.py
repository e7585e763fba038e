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
from pyglacier.table.sorting import (
    UNSORTED_SORT_ORDER,
    NullOrder,
    SortDirection,
    SortField,
    SortOrder,
)


def test_null_order_follows_the_direction() -> None:
    assert SortField(source_id=1).null_order == NullOrder.NULLS_FIRST
    assert SortField(source_id=1, direction=SortDirection.DESC).null_order == NullOrder.NULLS_LAST
    assert SortField(source_id=1, direction=SortDirection.DESC, null_order=NullOrder.NULLS_FIRST).null_order == NullOrder.NULLS_FIRST


def test_sort_field_str() -> None:
    assert str(SortField(source_id=19)) == "19 ASC NULLS FIRST"
    assert str(SortField(source_id=25, transform="bucket[4]", direction=SortDirection.DESC)) == "bucket[4](25) DESC NULLS LAST"


def test_sort_order(sort_order_on_foo: SortOrder) -> None:
    assert sort_order_on_foo.order_id == 1
    assert not sort_order_on_foo.is_unsorted
    assert str(sort_order_on_foo) == "[\n  1 DESC NULLS LAST\n]"
    assert (
        repr(sort_order_on_foo)
        == "SortOrder(SortField(source_id=1, transform='identity', direction=SortDirection.DESC, null_order=NullOrder.NULLS_LAST), order_id=1)"
    )


def test_unsorted() -> None:
    assert UNSORTED_SORT_ORDER.is_unsorted
    assert UNSORTED_SORT_ORDER.order_id == 0
    assert str(UNSORTED_SORT_ORDER) == "[]"


def test_sort_order_serialization(sort_order_on_foo: SortOrder) -> None:
    document = sort_order_on_foo.model_dump()

    assert document == {
        "order-id": 1,
        "fields": [{"source-id": 1, "transform": "identity", "direction": SortDirection.DESC, "null-order": NullOrder.NULLS_LAST}],
    }
    assert SortOrder.model_validate_json(sort_order_on_foo.model_dump_json()) == sort_order_on_foo

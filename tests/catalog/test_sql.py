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
from pathlib import Path
from typing import Generator, Optional, Union

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session

from pyglacier.catalog.sql import DEFAULT_ECHO_VALUE, DEFAULT_POOL_PRE_PING_VALUE, GlacierTables, SqlCatalog
from pyglacier.exceptions import NoSuchNamespaceError, NoSuchPropertyException, NoSuchTableError
from pyglacier.schema import Schema
from pyglacier.utils.properties import strtobool


@pytest.fixture
def catalog_uri(warehouse: Path) -> str:
    return f"sqlite:///{warehouse}/sql-catalog.db"


@pytest.fixture
def sql_catalog(catalog_uri: str, warehouse: Path) -> Generator[SqlCatalog, None, None]:
    catalog = SqlCatalog("test_sql_catalog", uri=catalog_uri, warehouse=f"file://{warehouse}")
    yield catalog
    catalog.destroy_tables()
    catalog.engine.dispose()


def test_creation_with_no_uri() -> None:
    with pytest.raises(NoSuchPropertyException, match="SQL connection URI is required"):
        SqlCatalog("test_sql_catalog", not_uri="unused")


def test_creation_with_unsupported_uri() -> None:
    with pytest.raises(ArgumentError):
        SqlCatalog("test_sql_catalog", uri="unsupported:xxx")


@pytest.mark.parametrize(
    "echo_param,expected_echo_value",
    [(None, strtobool(DEFAULT_ECHO_VALUE)), ("debug", "debug"), ("true", True), ("false", False)],
)
def test_creation_with_echo_parameter(catalog_uri: str, echo_param: Optional[str], expected_echo_value: Union[bool, str]) -> None:
    props = {"uri": catalog_uri}
    # None is for default value
    if echo_param is not None:
        props["echo"] = echo_param

    catalog = SqlCatalog("test_sql_catalog", **props)

    assert catalog.engine._echo == expected_echo_value
    catalog.engine.dispose()


@pytest.mark.parametrize(
    "pool_pre_ping_param,expected_pool_pre_ping_value",
    [(None, strtobool(DEFAULT_POOL_PRE_PING_VALUE)), ("true", True), ("false", False)],
)
def test_creation_with_pool_pre_ping_parameter(
    catalog_uri: str, pool_pre_ping_param: Optional[str], expected_pool_pre_ping_value: bool
) -> None:
    props = {"uri": catalog_uri}
    if pool_pre_ping_param is not None:
        props["pool_pre_ping"] = pool_pre_ping_param

    catalog = SqlCatalog("test_sql_catalog", **props)

    assert catalog.engine.pool._pre_ping == expected_pool_pre_ping_value
    catalog.engine.dispose()


def test_creation_creates_the_catalog_table(sql_catalog: SqlCatalog) -> None:
    assert GlacierTables.__tablename__ in inspect(sql_catalog.engine).get_table_names()


def test_creation_without_init_catalog_tables(catalog_uri: str) -> None:
    catalog = SqlCatalog("test_sql_catalog", uri=catalog_uri, init_catalog_tables="false")

    assert GlacierTables.__tablename__ not in inspect(catalog.engine).get_table_names()
    catalog.create_tables()
    assert GlacierTables.__tablename__ in inspect(catalog.engine).get_table_names()
    catalog.destroy_tables()
    catalog.engine.dispose()


def test_create_tables_idempotency(sql_catalog: SqlCatalog) -> None:
    # Second initialization should not fail even if tables are already created
    sql_catalog.create_tables()
    sql_catalog.create_tables()
    SqlCatalog("test_sql_catalog", uri=str(sql_catalog.engine.url)).engine.dispose()


def test_table_requires_a_namespace(sql_catalog: SqlCatalog, table_schema_simple: Schema) -> None:
    with pytest.raises(NoSuchTableError, match="Invalid table identifier: test_sql_catalog.tbl"):
        sql_catalog.load_table(("tbl",))
    with pytest.raises(ValueError, match="Invalid table identifier"):
        sql_catalog.build_table(("tbl",), table_schema_simple)
    with pytest.raises(ValueError, match="Invalid table identifier"):
        sql_catalog.create_table("tbl", table_schema_simple)


def test_metadata_table_of_a_single_level_identifier(sql_catalog: SqlCatalog) -> None:
    # "db" alone is not a valid base table, so "db.files" is only looked up as a table
    with pytest.raises(NoSuchTableError, match="Table does not exist: test_sql_catalog.db.files"):
        sql_catalog.load_table(("db", "files"))


def test_create_table_stores_a_row(sql_catalog: SqlCatalog, table_schema_simple: Schema) -> None:
    table = sql_catalog.create_table(("ns1", "ns2", "tbl"), table_schema_simple)

    with Session(sql_catalog.engine) as session:
        row = session.scalars(select(GlacierTables)).one()
    assert (row.catalog_name, row.table_namespace, row.table_name) == ("test_sql_catalog", "ns1.ns2", "tbl")
    assert row.metadata_location == table.metadata_location
    assert row.previous_metadata_location is None
    assert sql_catalog.list_namespaces() == [("ns1", "ns2")]
    assert sql_catalog.list_namespaces("ns1") == [("ns1", "ns2")]
    assert sql_catalog.list_tables("ns1.ns2") == [("ns1", "ns2", "tbl")]


def test_commit_records_the_previous_location(sql_catalog: SqlCatalog, table_schema_simple: Schema) -> None:
    table = sql_catalog.create_table(("db", "tbl"), table_schema_simple)
    first_location = table.metadata_location

    with table.transaction() as transaction:
        transaction.set_properties(owner="glacier")

    with Session(sql_catalog.engine) as session:
        row = session.scalars(select(GlacierTables)).one()
    assert row.previous_metadata_location == first_location
    assert row.metadata_location != first_location


def test_rename_table_without_namespace(sql_catalog: SqlCatalog, table_schema_simple: Schema) -> None:
    sql_catalog.create_table(("db", "tbl"), table_schema_simple)

    with pytest.raises(NoSuchNamespaceError, match="Namespace is required"):
        sql_catalog.rename_table(("db", "tbl"), ("tbl",))
    assert sql_catalog.table_exists(("db", "tbl"))


def test_catalogs_share_the_store_by_name(sql_catalog: SqlCatalog, catalog_uri: str, table_schema_simple: Schema) -> None:
    other = SqlCatalog("other_catalog", uri=catalog_uri)
    sql_catalog.create_table(("db", "tbl"), table_schema_simple)

    assert not other.table_exists(("db", "tbl"))
    with pytest.raises(NoSuchNamespaceError):
        other.list_tables("db")
    assert other.list_namespaces() == []

    other.create_table(("db", "tbl"), table_schema_simple, location=f"{sql_catalog.properties['warehouse']}/other")
    other.drop_table(("db", "tbl"))
    assert sql_catalog.table_exists(("db", "tbl"))
    other.engine.dispose()


def test_catalog_sees_commits_of_another_instance(sql_catalog: SqlCatalog, catalog_uri: str, table_schema_simple: Schema) -> None:
    same = SqlCatalog("test_sql_catalog", uri=catalog_uri, warehouse=sql_catalog.properties["warehouse"])
    sql_catalog.create_table(("db", "tbl"), table_schema_simple)

    table = same.load_table(("db", "tbl"))
    with table.transaction() as transaction:  # type: ignore
        transaction.set_properties(owner="glacier")

    assert sql_catalog.load_table(("db", "tbl")).properties == {"owner": "glacier"}  # type: ignore
    same.engine.dispose()

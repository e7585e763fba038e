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
from pathlib import Path

import pytest

import pyglacier.catalog
from pyglacier.catalog import CatalogType, infer_catalog_type, load_catalog
from pyglacier.catalog.memory import InMemoryCatalog
from pyglacier.catalog.sql import SqlCatalog
from pyglacier.utils.config import Config


@pytest.fixture(autouse=True)
def empty_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pyglacier.catalog, "_ENV_CONFIG", Config(environ={}))


def test_load_in_memory_catalog() -> None:
    catalog = load_catalog("local", type="in-memory", warehouse="file:///tmp/warehouse")

    assert isinstance(catalog, InMemoryCatalog)
    assert catalog.name == "local"
    assert catalog.properties["warehouse"] == "file:///tmp/warehouse"


def test_load_catalog_type_is_case_insensitive() -> None:
    assert isinstance(load_catalog("local", type="IN-MEMORY"), InMemoryCatalog)


def test_load_sql_catalog(tmp_path: Path) -> None:
    catalog = load_catalog("local", type="sql", uri=f"sqlite:///{tmp_path}/catalog.db")

    assert isinstance(catalog, SqlCatalog)
    catalog.engine.dispose()


def test_load_sql_catalog_from_uri(tmp_path: Path) -> None:
    catalog = load_catalog("local", uri=f"sqlite:///{tmp_path}/catalog.db")

    assert isinstance(catalog, SqlCatalog)
    catalog.engine.dispose()


def test_load_unknown_catalog_type() -> None:
    with pytest.raises(ValueError, match="Unknown catalog type: hive"):
        load_catalog("local", type="hive")


def test_load_catalog_without_type_or_uri() -> None:
    with pytest.raises(ValueError, match="URI missing, please provide using --uri"):
        load_catalog("local")


@pytest.mark.parametrize(
    "properties,expected",
    [
        ({"uri": "sqlite:///:memory:"}, CatalogType.SQL),
        ({"uri": "postgresql+psycopg2://user@localhost/db"}, CatalogType.SQL),
        ({"uri": "mysql://localhost/db"}, CatalogType.SQL),
    ],
)
def test_infer_catalog_type(properties: dict, expected: CatalogType) -> None:  # type: ignore
    assert infer_catalog_type("local", properties) == expected


def test_infer_catalog_type_from_unknown_uri() -> None:
    with pytest.raises(ValueError, match="Could not infer the catalog type from the uri: thrift://localhost:9083"):
        infer_catalog_type("local", {"uri": "thrift://localhost:9083"})


def test_infer_catalog_type_from_non_string_uri() -> None:
    with pytest.raises(ValueError, match="Expects the URI to be a string"):
        infer_catalog_type("local", {"uri": {"nested": "value"}})


def test_load_catalog_from_impl() -> None:
    catalog = load_catalog("local", **{"py-catalog-impl": "pyglacier.catalog.memory.InMemoryCatalog"})

    assert isinstance(catalog, InMemoryCatalog)
    assert catalog.name == "local"


def test_load_catalog_from_impl_without_module() -> None:
    with pytest.raises(ValueError, match="py-catalog-impl should be full path"):
        load_catalog("local", **{"py-catalog-impl": "InMemoryCatalog"})


def test_load_catalog_from_missing_module() -> None:
    with pytest.raises(ValueError, match="Could not initialize Catalog: not_a_module.Catalog"):
        load_catalog("local", **{"py-catalog-impl": "not_a_module.Catalog"})


def test_load_catalog_with_type_and_impl() -> None:
    with pytest.raises(ValueError, match="Must not set both catalog type and py-catalog-impl configurations"):
        load_catalog("local", type="in-memory", **{"py-catalog-impl": "pyglacier.catalog.memory.InMemoryCatalog"})


def test_load_catalog_from_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    environ = {
        "PYGLACIER_CATALOG__PRODUCTION__URI": f"sqlite:///{tmp_path}/catalog.db",
        "PYGLACIER_CATALOG__PRODUCTION__WAREHOUSE": f"file://{tmp_path}",
    }
    monkeypatch.setattr(pyglacier.catalog, "_ENV_CONFIG", Config(environ=environ))

    catalog = load_catalog("production")

    assert isinstance(catalog, SqlCatalog)
    assert catalog.properties["warehouse"] == f"file://{tmp_path}"
    catalog.engine.dispose()


def test_properties_override_the_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    environ = {"PYGLACIER_CATALOG__PRODUCTION__TYPE": "in-memory", "PYGLACIER_CATALOG__PRODUCTION__WAREHOUSE": "file:///a"}
    monkeypatch.setattr(pyglacier.catalog, "_ENV_CONFIG", Config(environ=environ))

    catalog = load_catalog("production", warehouse="file:///b")

    assert isinstance(catalog, InMemoryCatalog)
    assert catalog.properties["warehouse"] == "file:///b"


def test_load_default_catalog(monkeypatch: pytest.MonkeyPatch) -> None:
    environ = {"PYGLACIER_DEFAULT_CATALOG": "mine", "PYGLACIER_CATALOG__MINE__TYPE": "in-memory"}
    monkeypatch.setattr(pyglacier.catalog, "_ENV_CONFIG", Config(environ=environ))

    assert load_catalog().name == "mine"

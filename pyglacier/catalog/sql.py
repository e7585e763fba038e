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

from typing import (
    List,
    Optional,
    Union,
)

from sqlalchemy import (
    ColumnElement,
    String,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError, ProgrammingError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    MappedAsDataclass,
    Session,
    mapped_column,
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
    NoSuchPropertyException,
    NoSuchTableError,
    TableAlreadyExistsError,
)
from pyglacier.table import Table
from pyglacier.table.metadata import TableMetadata
from pyglacier.typedef import Identifier
from pyglacier.utils.properties import strtobool

DEFAULT_ECHO_VALUE = "false"
DEFAULT_POOL_PRE_PING_VALUE = "false"
DEFAULT_INIT_CATALOG_TABLES = "true"


class SqlCatalogBaseTable(MappedAsDataclass, DeclarativeBase):
    pass


class GlacierTables(SqlCatalogBaseTable):
    __tablename__ = "glacier_tables"

    catalog_name: Mapped[str] = mapped_column(String(255), nullable=False, primary_key=True)
    table_namespace: Mapped[str] = mapped_column(String(255), nullable=False, primary_key=True)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False, primary_key=True)
    metadata_location: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    previous_metadata_location: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)


class _SqlTableOperations(TableOperations):
    catalog: "SqlCatalog"

    def _current_metadata_location(self) -> Optional[str]:
        stmt = select(GlacierTables.metadata_location).where(*self.catalog._table_filter(self.identifier))  # pylint: disable=W0212
        with Session(self.catalog.engine) as session:
            return session.scalar(stmt)

    def _do_commit(self, base_location: Optional[str], new_location: str, metadata: TableMetadata) -> None:
        table_filter = self.catalog._table_filter(self.identifier)  # pylint: disable=W0212
        with Session(self.catalog.engine) as session:
            if base_location is None:
                try:
                    session.add(
                        GlacierTables(
                            catalog_name=self.catalog.name,
                            table_namespace=Catalog.namespace_to_string(Catalog.namespace_from(self.identifier)),
                            table_name=Catalog.table_name_from(self.identifier),
                            metadata_location=new_location,
                            previous_metadata_location=None,
                        )
                    )
                    session.commit()
                except IntegrityError as e:
                    raise CommitFailedException(f"Table already exists: {self.table_name}") from e
                return

            if self.catalog.engine.dialect.supports_sane_rowcount:
                stmt = (
                    update(GlacierTables)
                    .where(*table_filter, GlacierTables.metadata_location == base_location)
                    .values(metadata_location=new_location, previous_metadata_location=base_location)
                )
                result = session.execute(stmt)
                if result.rowcount < 1:
                    raise CommitFailedException(f"Table has been updated by another process: {self.table_name}")
            else:
                try:
                    tbl = (
                        session.query(GlacierTables)
                        .with_for_update(of=GlacierTables)
                        .filter(*table_filter, GlacierTables.metadata_location == base_location)
                        .one()
                    )
                    tbl.metadata_location = new_location
                    tbl.previous_metadata_location = base_location
                except NoResultFound as e:
                    raise CommitFailedException(f"Table has been updated by another process: {self.table_name}") from e
            session.commit()


class SqlCatalog(MetastoreCatalog):
    """Implementation of a SQL based catalog.

    A namespace is stored as its levels separated by dots, such as `'ns1.ns2.ns3'`.
    Here the namespace is the identifier of the table without its name, and it must have
    at least one level.

    The pointer to the current metadata file of each table is a row of the `glacier_tables`
    table. A change of the pointer is a conditional update of that row, so concurrent
    writers are reconciled by the database.

    Properties:
        uri: The SQLAlchemy connection URI, required.
        warehouse: The location under which tables without a location are created.
        echo: Log the emitted SQL, "true", "false" or "debug".
        pool_pre_ping: Test the connections of the pool before using them.
        init_catalog_tables: Create the catalog table when it does not exist, defaults to "true".
    """

    def __init__(self, name: str, **properties: str):
        super().__init__(name, **properties)

        if not (uri_prop := self.properties.get("uri")):
            raise NoSuchPropertyException("SQL connection URI is required")

        echo_str = str(self.properties.get("echo", DEFAULT_ECHO_VALUE)).lower()
        echo = strtobool(echo_str) if echo_str != "debug" else "debug"
        pool_pre_ping = strtobool(self.properties.get("pool_pre_ping", DEFAULT_POOL_PRE_PING_VALUE))
        init_catalog_tables = strtobool(self.properties.get("init_catalog_tables", DEFAULT_INIT_CATALOG_TABLES))

        self.engine = create_engine(uri_prop, echo=echo, pool_pre_ping=pool_pre_ping)

        if init_catalog_tables:
            self._ensure_tables_exist()

    def _ensure_tables_exist(self) -> None:
        with Session(self.engine) as session:
            try:
                session.scalar(select(1).select_from(GlacierTables))
            except (OperationalError, ProgrammingError):  # sqlalchemy returns an OperationalError in case of sqlite and ProgrammingError with postgres.
                self.create_tables()

    def create_tables(self) -> None:
        SqlCatalogBaseTable.metadata.create_all(self.engine)

    def destroy_tables(self) -> None:
        SqlCatalogBaseTable.metadata.drop_all(self.engine)

    def _is_valid_identifier(self, identifier: Identifier) -> bool:
        return len(identifier) > 1

    def new_table_ops(self, identifier: Identifier) -> TableOperations:
        return _SqlTableOperations(self, identifier, self._load_file_io())

    def _table_filter(self, identifier: Identifier) -> List[ColumnElement[bool]]:
        return [
            GlacierTables.catalog_name == self.name,
            GlacierTables.table_namespace == Catalog.namespace_to_string(Catalog.namespace_from(identifier)),
            GlacierTables.table_name == Catalog.table_name_from(identifier),
        ]

    def drop_table(self, identifier: Union[str, Identifier]) -> None:
        """Drop a table.

        Args:
            identifier (str | Identifier): Table identifier.

        Raises:
            NoSuchTableError: If a table with the name does not exist.
        """
        identifier = Catalog.identifier_to_tuple(identifier)
        with Session(self.engine) as session:
            if self.engine.dialect.supports_sane_rowcount:
                res = session.execute(delete(GlacierTables).where(*self._table_filter(identifier)))
                if res.rowcount < 1:
                    raise NoSuchTableError(f"Table does not exist: {full_table_name(self.name, identifier)}")
            else:
                try:
                    tbl = (
                        session.query(GlacierTables)
                        .with_for_update(of=GlacierTables)
                        .filter(*self._table_filter(identifier))
                        .one()
                    )
                    session.delete(tbl)
                except NoResultFound as e:
                    raise NoSuchTableError(f"Table does not exist: {full_table_name(self.name, identifier)}") from e
            session.commit()

    def rename_table(self, from_identifier: Union[str, Identifier], to_identifier: Union[str, Identifier]) -> Table:
        """Rename a fully classified table name.

        Args:
            from_identifier (str | Identifier): Existing table identifier.
            to_identifier (str | Identifier): New table identifier.

        Returns:
            Table: the updated table instance with its metadata.

        Raises:
            NoSuchTableError: If a table with the name does not exist.
            TableAlreadyExistsError: If a table with the new name already exist.
        """
        from_identifier = Catalog.identifier_to_tuple(from_identifier)
        to_identifier = Catalog.identifier_to_tuple(to_identifier)
        if not self._is_valid_identifier(to_identifier):
            raise NoSuchNamespaceError(f"Namespace is required: {full_table_name(self.name, to_identifier)}")
        with Session(self.engine) as session:
            try:
                stmt = (
                    update(GlacierTables)
                    .where(*self._table_filter(from_identifier))
                    .values(
                        table_namespace=Catalog.namespace_to_string(Catalog.namespace_from(to_identifier)),
                        table_name=Catalog.table_name_from(to_identifier),
                    )
                )
                result = session.execute(stmt)
                if result.rowcount < 1:
                    raise NoSuchTableError(f"Table does not exist: {full_table_name(self.name, from_identifier)}")
                session.commit()
            except IntegrityError as e:
                raise TableAlreadyExistsError(f"Table {full_table_name(self.name, to_identifier)} already exists") from e
        return self.load_table(to_identifier)  # type: ignore

    def list_tables(self, namespace: Union[str, Identifier]) -> List[Identifier]:
        """List tables under the given namespace in the catalog.

        Args:
            namespace (str | Identifier): Namespace to list against.

        Returns:
            List[Identifier]: list of table identifiers.

        Raises:
            NoSuchNamespaceError: If a namespace with the given name does not exist.
        """
        namespace = Catalog.identifier_to_tuple(namespace)
        stmt = select(GlacierTables).where(
            GlacierTables.catalog_name == self.name,
            GlacierTables.table_namespace == Catalog.namespace_to_string(namespace),
        )
        with Session(self.engine) as session:
            result = session.scalars(stmt).all()
        if not result:
            raise NoSuchNamespaceError(f"Namespace does not exist: {namespace}")
        return [(*Catalog.identifier_to_tuple(table.table_namespace), table.table_name) for table in result]

    def list_namespaces(self, namespace: Union[str, Identifier] = ()) -> List[Identifier]:
        """List namespaces from the given namespace. If not given, list top-level namespaces from the catalog.

        Args:
            namespace (str | Identifier): Namespace identifier to search.

        Returns:
            List[Identifier]: a List of namespace identifiers.
        """
        namespace = Catalog.identifier_to_tuple(namespace) if namespace else ()
        stmt = select(GlacierTables.table_namespace).where(GlacierTables.catalog_name == self.name).distinct()
        with Session(self.engine) as session:
            namespaces = [Catalog.identifier_to_tuple(ns) for ns in session.scalars(stmt)]
        return sorted(ns for ns in namespaces if len(ns) > len(namespace) and ns[: len(namespace)] == namespace)

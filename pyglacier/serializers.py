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

from pyglacier.io import InputFile, InputStream, OutputFile
from pyglacier.table.metadata import TableMetadata
from pyglacier.typedef import UTF8


def _read_all(input_stream: InputStream) -> bytes:
    chunks = []
    while chunk := input_stream.read(1024 * 1024):
        chunks.append(chunk)
    return b"".join(chunks)


class FromByteStream:
    """A collection of methods that deserialize dictionaries into Glacier objects."""

    @staticmethod
    def table_metadata(byte_stream: InputStream, encoding: str = UTF8) -> TableMetadata:
        """Instantiate a TableMetadata object from a byte stream.

        Args:
            byte_stream: A file-like byte stream object.
            encoding (default "utf-8"): The byte encoder to use for the reader.
        """
        metadata = _read_all(byte_stream).decode(encoding)
        return TableMetadata.model_validate_json(metadata)


class FromInputFile:
    """A collection of methods that deserialize InputFiles into Glacier objects."""

    @staticmethod
    def table_metadata(input_file: InputFile, encoding: str = UTF8) -> TableMetadata:
        """Create a TableMetadata instance from an input file.

        Args:
            input_file (InputFile): A custom implementation of the glacier.io.file.InputFile abstract base class.
            encoding (str): Encoding to use when loading bytestream.

        Returns:
            TableMetadata: A table metadata instance.

        """
        with input_file.open() as input_stream:
            return FromByteStream.table_metadata(byte_stream=input_stream, encoding=encoding)


class ToOutputFile:
    """A collection of methods that serialize Glacier objects into files given an OutputFile instance."""

    @staticmethod
    def table_metadata(metadata: TableMetadata, output_file: OutputFile, overwrite: bool = False) -> None:
        """Write a TableMetadata instance to an output file.

        Args:
            metadata (TableMetadata): The table metadata to write.
            output_file (OutputFile): A custom implementation of the glacier.io.file.OutputFile abstract base class.
            overwrite (bool): Where to overwrite the file if it already exists. Defaults to `False`.
        """
        with output_file.create(overwrite=overwrite) as output_stream:
            output_stream.write(metadata.model_dump_json().encode(UTF8))

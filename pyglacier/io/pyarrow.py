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
"""FileIO implementation for reading, writing and deleting table files that uses pyarrow.fs.

The filesystem is picked from the scheme of the location, so metadata files, manifests and
data files can live on the local disk, S3, GCS or HDFS. Errors of the filesystems are
translated to FileNotFoundError and PermissionError, which the purge and commit paths
rely on.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from copy import copy
from functools import lru_cache
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    Optional,
    Tuple,
    Union,
)
from urllib.parse import urlparse

import pyarrow
from pyarrow.fs import (
    FileInfo,
    FileSystem,
    FileType,
)

from pyglacier.io import (
    GCS_DEFAULT_LOCATION,
    GCS_ENDPOINT,
    GCS_TOKEN,
    HDFS_HOST,
    HDFS_KERB_TICKET,
    HDFS_PORT,
    HDFS_USER,
    S3_ACCESS_KEY_ID,
    S3_CONNECT_TIMEOUT,
    S3_ENDPOINT,
    S3_PROXY_URI,
    S3_REGION,
    S3_SECRET_ACCESS_KEY,
    S3_SESSION_TOKEN,
    FileIO,
    InputFile,
    InputStream,
    OutputFile,
    OutputStream,
)
from pyglacier.typedef import EMPTY_DICT, Properties
from pyglacier.utils.properties import get_first_property_value, property_as_int

logger = logging.getLogger(__name__)

ONE_MEGABYTE = 1024 * 1024
BUFFER_SIZE = "buffer-size"

AWS_REGION = "client.region"
AWS_ACCESS_KEY_ID = "client.access-key-id"
AWS_SECRET_ACCESS_KEY = "client.secret-access-key"
AWS_SESSION_TOKEN = "client.session-token"

S3_SCHEMES = frozenset({"s3", "s3a", "s3n"})
HDFS_SCHEMES = frozenset({"hdfs", "viewfs"})
GCS_SCHEMES = frozenset({"gs", "gcs"})


@contextmanager
def _translate_os_errors(action: str, location: str) -> Iterator[None]:
    """Re-raise the OSErrors of pyarrow as the builtin errors that FileIO promises."""
    try:
        yield
    except (FileNotFoundError, PermissionError, FileExistsError):
        raise
    except OSError as e:
        message = str(e)
        if e.errno == 2 or "Path does not exist" in message:
            raise FileNotFoundError(f"Cannot {action}, does not exist: {location}") from e
        if e.errno == 13 or "AWS Error [code 15]" in message:
            raise PermissionError(f"Cannot {action}, access denied: {location}") from e
        raise


class PyArrowLocalFileSystem(pyarrow.fs.LocalFileSystem):
    def open_output_stream(self, path: str, *args: Any, **kwargs: Any) -> pyarrow.NativeFile:
        # parent directories have to exist before the stream is opened
        self.create_dir(os.path.dirname(path), recursive=True)
        return super().open_output_stream(path, *args, **kwargs)


class PyArrowFile(InputFile, OutputFile):
    """A file of a pyarrow filesystem, that can be read as well as written.

    Args:
        location (str): A URI or a path to a local file.
        path (str): The location without the scheme, as understood by the filesystem.
        fs (FileSystem): The pyarrow filesystem that holds the file.
        buffer_size (int): Buffer size for non-seekable streams.
    """

    def __init__(self, location: str, path: str, fs: FileSystem, buffer_size: int = ONE_MEGABYTE):
        super().__init__(location=location)
        self._filesystem = fs
        self._path = path
        self._buffer_size = buffer_size

    def _file_info(self) -> FileInfo:
        with _translate_os_errors("get file info", self.location):
            file_info = self._filesystem.get_file_info(self._path)
        if file_info.type == FileType.NotFound:
            raise FileNotFoundError(f"Cannot get file info, file not found: {self.location}")
        return file_info

    def __len__(self) -> int:
        """Return the total length of the file, in bytes."""
        return self._file_info().size

    def exists(self) -> bool:
        """Check whether the location exists."""
        try:
            self._file_info()
        except FileNotFoundError:
            return False
        return True

    def open(self, seekable: bool = True) -> InputStream:
        """Open the location for reading.

        Raises:
            FileNotFoundError: If the file at self.location does not exist.
            PermissionError: If the file at self.location cannot be accessed.
        """
        with _translate_os_errors("open file", self.location):
            if seekable:
                return self._filesystem.open_input_file(self._path)
            return self._filesystem.open_input_stream(self._path, buffer_size=self._buffer_size)

    def create(self, overwrite: bool = False) -> OutputStream:
        """Open the location for writing.

        The existence check is not atomic with the creation of the stream, metadata files
        therefore always carry a random component in their name.

        Raises:
            FileExistsError: If the file already exists at `self.location` and `overwrite` is False.
        """
        with _translate_os_errors("create file", self.location):
            if not overwrite and self.exists():
                raise FileExistsError(f"Cannot create file, already exists: {self.location}")
            return self._filesystem.open_output_stream(self._path, buffer_size=self._buffer_size)

    def to_input_file(self) -> PyArrowFile:
        return self


class PyArrowFileIO(FileIO):
    """FileIO over pyarrow filesystems, one filesystem per scheme and netloc."""

    fs_by_scheme: Callable[[str, Optional[str]], FileSystem]

    def __init__(self, properties: Properties = EMPTY_DICT):
        super().__init__(properties=properties)
        self.fs_by_scheme = lru_cache(self._initialize_fs)

    @staticmethod
    def parse_location(location: str) -> Tuple[str, str, str]:
        """Return the scheme, netloc and the path without the scheme."""
        uri = urlparse(location)
        if not uri.scheme:
            return "file", uri.netloc, os.path.abspath(location)
        if uri.scheme == "file":
            return "file", uri.netloc, os.path.abspath(f"{uri.netloc}{uri.path}")
        if uri.scheme in HDFS_SCHEMES:
            return uri.scheme, uri.netloc, uri.path
        return uri.scheme, uri.netloc, f"{uri.netloc}{uri.path}"

    def _initialize_fs(self, scheme: str, netloc: Optional[str] = None) -> FileSystem:
        if scheme == "file":
            return PyArrowLocalFileSystem()
        if scheme in S3_SCHEMES:
            return self._initialize_s3_fs()
        if scheme in HDFS_SCHEMES:
            return self._initialize_hdfs_fs(scheme, netloc)
        if scheme in GCS_SCHEMES:
            return self._initialize_gcs_fs()
        raise ValueError(f"Unrecognized filesystem type in URI: {scheme}")

    def _initialize_s3_fs(self) -> FileSystem:
        from pyarrow.fs import S3FileSystem

        client_kwargs: Dict[str, Any] = {
            "endpoint_override": self.properties.get(S3_ENDPOINT),
            "access_key": get_first_property_value(self.properties, S3_ACCESS_KEY_ID, AWS_ACCESS_KEY_ID),
            "secret_key": get_first_property_value(self.properties, S3_SECRET_ACCESS_KEY, AWS_SECRET_ACCESS_KEY),
            "session_token": get_first_property_value(self.properties, S3_SESSION_TOKEN, AWS_SESSION_TOKEN),
            "region": get_first_property_value(self.properties, S3_REGION, AWS_REGION),
        }
        if proxy_uri := self.properties.get(S3_PROXY_URI):
            client_kwargs["proxy_options"] = proxy_uri
        if connect_timeout := self.properties.get(S3_CONNECT_TIMEOUT):
            client_kwargs["connect_timeout"] = float(connect_timeout)
        return S3FileSystem(**client_kwargs)

    def _initialize_hdfs_fs(self, scheme: str, netloc: Optional[str]) -> FileSystem:
        from pyarrow.fs import HadoopFileSystem

        if netloc:
            return HadoopFileSystem.from_uri(f"{scheme}://{netloc}")
        hdfs_kwargs: Dict[str, Any] = {}
        for key, kwarg in ((HDFS_HOST, "host"), (HDFS_USER, "user"), (HDFS_KERB_TICKET, "kerb_ticket")):
            if value := self.properties.get(key):
                hdfs_kwargs[kwarg] = value
        if port := self.properties.get(HDFS_PORT):
            hdfs_kwargs["port"] = int(port)
        return HadoopFileSystem(**hdfs_kwargs)

    def _initialize_gcs_fs(self) -> FileSystem:
        from pyarrow.fs import GcsFileSystem

        gcs_kwargs: Dict[str, Any] = {}
        if access_token := self.properties.get(GCS_TOKEN):
            gcs_kwargs["access_token"] = access_token
        if bucket_location := self.properties.get(GCS_DEFAULT_LOCATION):
            gcs_kwargs["default_bucket_location"] = bucket_location
        if endpoint := self.properties.get(GCS_ENDPOINT):
            endpoint_uri = urlparse(endpoint)
            gcs_kwargs["scheme"] = endpoint_uri.scheme
            gcs_kwargs["endpoint_override"] = endpoint_uri.netloc
        return GcsFileSystem(**gcs_kwargs)

    def _new_file(self, location: str) -> PyArrowFile:
        scheme, netloc, path = self.parse_location(location)
        return PyArrowFile(
            location=location,
            path=path,
            fs=self.fs_by_scheme(scheme, netloc),
            buffer_size=property_as_int(self.properties, BUFFER_SIZE, ONE_MEGABYTE),  # type: ignore
        )

    def new_input(self, location: str) -> PyArrowFile:
        """Get a PyArrowFile to read bytes from the file at the given location."""
        return self._new_file(location)

    def new_output(self, location: str) -> PyArrowFile:
        """Get a PyArrowFile to write bytes to the file at the given location."""
        return self._new_file(location)

    def delete(self, location: Union[str, InputFile, OutputFile]) -> None:
        """Delete the file at the given location.

        Raises:
            FileNotFoundError: When the file at the provided location does not exist.
            PermissionError: If the file at the provided location cannot be accessed.
        """
        str_location = location.location if isinstance(location, (InputFile, OutputFile)) else location
        scheme, netloc, path = self.parse_location(str_location)
        with _translate_os_errors("delete file", str_location):
            self.fs_by_scheme(scheme, netloc).delete_file(path)

    def __getstate__(self) -> Dict[str, Any]:
        """Drop the cache of filesystems, which cannot be pickled."""
        state = copy(self.__dict__)
        state["fs_by_scheme"] = None
        return state

    def __setstate__(self, state: Dict[str, Any]) -> None:
        """Restore the state and start with an empty cache of filesystems."""
        self.__dict__ = state
        self.fs_by_scheme = lru_cache(self._initialize_fs)

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
"""Configuration of pyglacier, read from `.pyglacier.yaml` and `PYGLACIER_` environment variables.

The first configuration file that is found is used, looking in `$PYGLACIER_HOME`, the
home directory and the working directory, in that order. Environment variables take
precedence over the file. A double underscore nests, a single underscore becomes a
dash, so `PYGLACIER_CATALOG__PROD__POOL_PRE_PING=true` sets `catalog.prod.pool-pre-ping`.
All keys are lowercase.
"""

import os
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

import strictyaml

from pyglacier.typedef import UTF8, FrozenDict, RecursiveDict
from pyglacier.utils.properties import strtobool

ENV_PREFIX = "pyglacier_"
PYGLACIER_HOME = "PYGLACIER_HOME"
PYGLACIER_YML = ".pyglacier.yaml"
CATALOG = "catalog"
DEFAULT_CATALOG = "default-catalog"
DEFAULT_CATALOG_NAME = "default"

T = TypeVar("T")


def merge_config(lhs: RecursiveDict, rhs: RecursiveDict) -> RecursiveDict:
    """Merge right-hand side into the left-hand side, nested dicts are merged recursively."""
    merged = dict(lhs)
    for key, rhs_value in rhs.items():
        lhs_value = merged.get(key)
        if isinstance(lhs_value, dict) and isinstance(rhs_value, dict):
            merged[key] = merge_config(lhs_value, rhs_value)
        else:
            # an empty right-hand value does not erase the left-hand one
            merged[key] = rhs_value or lhs_value  # type: ignore
    return merged


def _lowercase_dictionary_keys(input_dict: Dict[str, Any]) -> Dict[str, Any]:
    return {k.lower(): _lowercase_dictionary_keys(v) if isinstance(v, dict) else v for k, v in input_dict.items()}


def config_directories() -> List[str]:
    """Return the directories that may hold a configuration file, by priority."""
    directories = [os.environ.get(PYGLACIER_HOME), os.path.expanduser("~"), os.getcwd()]
    return [directory for directory in directories if directory]


def read_config_file(directory: str) -> Optional[RecursiveDict]:
    path = os.path.join(directory, PYGLACIER_YML)
    if not os.path.isfile(path):
        return None
    with open(path, encoding=UTF8) as f:
        return _lowercase_dictionary_keys(strictyaml.load(f.read()).data)


def config_from_environment(environ: Mapping[str, str]) -> RecursiveDict:
    """Build the configuration that is set through `PYGLACIER_` environment variables."""
    config: RecursiveDict = {}
    for env_var, value in environ.items():
        env_var = env_var.lower()
        if not env_var.startswith(ENV_PREFIX) or env_var == PYGLACIER_HOME.lower():
            continue
        path = [part.replace("_", "-") for part in env_var[len(ENV_PREFIX) :].split("__", maxsplit=2)]
        node = config
        for element in path[:-1]:
            child = node.setdefault(element, {})
            if not isinstance(child, dict):
                raise ValueError(f"Incompatible configurations, merging dict with a value: {env_var}, value: {value}")
            node = child
        node[path[-1]] = value
    return config


class Config:
    config: RecursiveDict

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        file_config = next(
            (found for directory in config_directories() if (found := read_config_file(directory)) is not None),
            {},
        )
        env_config = config_from_environment(os.environ if environ is None else environ)
        self.config = FrozenDict(**merge_config(file_config, env_config))

    def get_default_catalog_name(self) -> str:
        """Return the value of `default-catalog`, or `default` when it is not set."""
        if default_catalog_name := self.config.get(DEFAULT_CATALOG):
            if not isinstance(default_catalog_name, str):
                raise ValueError(f"Default catalog name should be a str: {default_catalog_name}")
            return default_catalog_name
        return DEFAULT_CATALOG_NAME

    def _catalogs(self) -> RecursiveDict:
        catalogs = self.config.get(CATALOG, {})
        if not isinstance(catalogs, dict):
            raise ValueError("Catalog configurations needs to be an object")
        return catalogs

    def get_catalog_config(self, catalog_name: str) -> Optional[RecursiveDict]:
        catalog_name = catalog_name.lower()
        if (catalog_conf := self._catalogs().get(catalog_name)) is None:
            return None
        if not isinstance(catalog_conf, dict):
            raise ValueError(f"Configuration path catalog.{catalog_name} needs to be an object")
        return catalog_conf

    def get_known_catalogs(self) -> List[str]:
        return list(self._catalogs())

    def _get_typed(self, key: str, parse: Callable[[str], T], kind: str) -> Optional[T]:
        if (val := self.config.get(key)) is None:
            return None
        try:
            return parse(str(val))
        except ValueError as err:
            raise ValueError(f"{key} should be {kind} or left unset. Current value: {val}") from err

    def get_int(self, key: str) -> Optional[int]:
        return self._get_typed(key, int, "an integer")

    def get_bool(self, key: str) -> Optional[bool]:
        return self._get_typed(key, strtobool, "a boolean")

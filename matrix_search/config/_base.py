#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright (C) 2025 Element Creations Ltd
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# See the GNU Affero General Public License for more details:
# <https://www.gnu.org/licenses/agpl-3.0.html>.
#
#

import argparse
import os
from typing import Any, ClassVar, Iterable, Iterator, MutableMapping, TypeVar

import yaml

from matrix_search.types import JsonDict, StrSequence


class ConfigError(Exception):
    """Represents a problem parsing the configuration

    Args:
        msg:  A textual description of the error.
        path: Where appropriate, an indication of where in the configuration
           the problem lies.
    """

    def __init__(self, msg: str, path: StrSequence | None = None):
        self.msg = msg
        self.path = path

    def __str__(self) -> str:
        return "\n".join(format_config_error(self))


def format_config_error(e: ConfigError) -> Iterator[str]:
    """
    Formats a config error neatly

    The idea is to format the immediate error, plus the "causes" of those errors,
    hopefully in a way that makes sense to the user. For example:

        Error in configuration at 'search.meilisearch.host':
          'host' is a required property

    Args:
        e: the error to be formatted

    Returns: An iterator which yields string fragments to be formatted
    """
    yield "Error in configuration"

    if e.path:
        yield " at '%s'" % (".".join(e.path),)

    yield ":\n  %s" % (e.msg,)

    parent_e = e.__cause__
    indent = 1
    while parent_e:
        indent += 1
        yield ":\n%s%s" % ("  " * indent, str(parent_e))
        parent_e = parent_e.__cause__


class Config:
    """
    A configuration section, containing configuration keys and values.

    Attributes:
        section: The section title of this config object, such as
            "homeserver" or "search". It becomes the attribute name of the
            section on the root config.
    """

    section: ClassVar[str]

    def __init__(self, root_config: "RootConfig | None" = None):
        self.root = root_config

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        """Read the section out of the parsed config file, and set attributes on
        `self` from it.

        Raises:
            ConfigError if the section is invalid.
        """
        raise NotImplementedError()

    @staticmethod
    def parse_duration(value: int | float | str) -> float:
        """Convert a duration to seconds.

        Args:
            value: a number of seconds, or a string with a unit suffix
                (`ms`, `s`, `m` or `h`), such as `"500ms"` or `"2m"`.

        Raises:
            TypeError, if given something other than an int, float or str
            ValueError, if given a string not of the form described above.
        """
        if isinstance(value, bool):
            raise TypeError("Bad duration %r" % (value,))
        if isinstance(value, (int, float)):
            return float(value)
        if not isinstance(value, str):
            raise TypeError("Bad duration %r" % (value,))

        units = {"ms": 0.001, "s": 1, "m": 60, "h": 60 * 60}
        # Check "ms" before the single-letter suffixes.
        for suffix in ("ms", "s", "m", "h"):
            if value.endswith(suffix):
                return float(value[: -len(suffix)]) * units[suffix]
        return float(value)

    @staticmethod
    def abspath(file_path: str) -> str:
        return os.path.abspath(file_path) if file_path else file_path

    @classmethod
    def read_file(cls, file_path: Any, config_path: Iterable[str]) -> str:
        """Check the given file exists, and read it into a string

        Args:
            file_path: The file to be read
            config_path: where in the configuration file_path came from, so
                that a useful error can be emitted if it does not exist.

        Returns:
            content of the file.

        Raises:
            ConfigError if there is a problem reading the file.
        """
        if not isinstance(file_path, str):
            raise ConfigError("%r is not a string" % (file_path,), config_path)

        try:
            with open(file_path, encoding="utf-8") as file_stream:
                return file_stream.read()
        except OSError as e:
            raise ConfigError(
                "Error accessing file %r" % (file_path,), config_path
            ) from e


TRootConfig = TypeVar("TRootConfig", bound="RootConfig")


class RootConfig:
    """
    Holder of an application's configuration.

    What configuration this object holds is defined by `config_classes`, a list
    of Config classes that will be instantiated and given the contents of a
    configuration file to read. They can then be accessed on this class by
    their section name.
    """

    config_classes: list[type[Config]] = []

    def __init__(self, config_files: StrSequence = ()):
        self.config_files = [os.path.abspath(path) for path in config_files]

        for config_class in self.config_classes:
            if getattr(config_class, "section", None) is None:
                raise ValueError("%r requires a section name" % (config_class,))

            try:
                conf = config_class(self)
            except Exception as e:
                raise Exception(
                    "Failed making %s: %r" % (config_class.section, e)
                ) from e
            setattr(self, config_class.section, conf)

    def invoke_all(
        self, func_name: str, *args: Any, **kwargs: Any
    ) -> MutableMapping[str, Any]:
        """
        Invoke a function on all instantiated config objects this RootConfig is
        configured to use.

        Args:
            func_name: Name of function to invoke
            *args
            **kwargs

        Returns:
            ordered dictionary of config section name and the result of the
            function from it.
        """
        res = {}

        for config_class in self.config_classes:
            config = getattr(self, config_class.section)

            if hasattr(config, func_name):
                res[config_class.section] = getattr(config, func_name)(*args, **kwargs)

        return res

    @classmethod
    def load_config(
        cls: type[TRootConfig], description: str, argv: list[str]
    ) -> TRootConfig:
        """Parse the commandline and config files

        Doesn't support config-file-generation: used by the check tool and
        the indexer itself.

        Returns:
            Config object.

        Raises:
            ConfigError if the config is invalid.
        """
        config_parser = argparse.ArgumentParser(description=description)
        cls.add_arguments_to_parser(config_parser)
        config_args = config_parser.parse_args(argv)

        return cls.load_config_with_parser(config_args)

    @staticmethod
    def add_arguments_to_parser(config_parser: argparse.ArgumentParser) -> None:
        config_parser.add_argument(
            "-c",
            "--config-path",
            action="append",
            metavar="CONFIG_FILE",
            help="Specify config file. Can be given multiple times and"
            " may specify directories containing *.yaml files.",
        )

    @classmethod
    def load_config_with_parser(
        cls: type[TRootConfig], config_args: argparse.Namespace
    ) -> TRootConfig:
        config_files = find_config_files(search_paths=config_args.config_path)
        if not config_files:
            raise ConfigError("Must supply a config file.")

        obj = cls(config_files)
        config_dict = read_config_files(config_files)
        obj.parse_config_dict(config_dict)
        return obj

    def parse_config_dict(self, config_dict: JsonDict) -> None:
        """Read the information from the config dict into this Config object.

        Args:
            config_dict: Configuration data, as read from the yaml
        """
        self.invoke_all("read_config", config_dict)


def read_config_files(config_files: Iterable[str]) -> JsonDict:
    """Read the config files into a dict

    Later files override the top-level keys of earlier ones.

    Args:
        config_files: A list of the config files to read

    Returns:
        The configuration dictionary.

    Raises:
        ConfigError if a file can't be read or isn't a YAML mapping.
    """
    specified_config: JsonDict = {}
    for config_file in config_files:
        try:
            with open(config_file, encoding="utf-8") as file_stream:
                yaml_config = yaml.safe_load(file_stream)
        except OSError as e:
            raise ConfigError("Error reading config file %r" % (config_file,)) from e
        except yaml.YAMLError as e:
            raise ConfigError("Error parsing config file %r" % (config_file,)) from e

        if yaml_config is None:
            continue

        if not isinstance(yaml_config, dict):
            raise ConfigError(
                "File %r doesn't parse into a key-value map" % (config_file,)
            )

        specified_config.update(yaml_config)

    return specified_config


def find_config_files(search_paths: list[str] | None) -> list[str]:
    """Finds config files using a list of search paths. If a path is a file
    then that file path is added to the list. If a search path is a directory
    then all the "*.yaml" files in that directory are added to the list in
    sorted order.

    With no search paths, `config.yaml` in the working directory is used if it
    exists.

    Args:
        search_paths: A list of paths to search.

    Returns:
        A list of file paths.
    """
    if not search_paths:
        return ["config.yaml"] if os.path.exists("config.yaml") else []

    config_files = []
    for config_path in search_paths:
        if os.path.isdir(config_path):
            # We accept specifying directories as config paths, we search
            # inside that directory for all files matching *.yaml, and then
            # we apply them in *sorted* order.
            files = []
            for entry in os.listdir(config_path):
                entry_path = os.path.join(config_path, entry)
                if not os.path.isfile(entry_path):
                    continue
                if entry.startswith(".") or not entry.endswith(".yaml"):
                    continue
                files.append(entry_path)

            config_files.extend(sorted(files))
        else:
            config_files.append(config_path)
    return config_files

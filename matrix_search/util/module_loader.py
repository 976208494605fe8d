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

import importlib
from typing import Any

import jsonschema

from matrix_search.config._base import ConfigError
from matrix_search.config._util import json_error_to_config_error
from matrix_search.types import StrSequence


def load_module(provider: dict, config_path: StrSequence) -> tuple[type, Any]:
    """Loads a pluggable class, such as a crypto engine, with its config

    Args:
        provider: a dict with keys 'module' (the dotted path to the class) and
           'config' (the config dict).
        config_path: the path within the config file. This will be used as a basis
           for any error message.

    Returns
        Tuple of (provider class, parsed config object)

    Raises:
        ConfigError if the class can't be imported or rejects its config.
    """

    modulename = provider.get("module")
    if not isinstance(modulename, str) or "." not in modulename:
        raise ConfigError(
            "expected a dotted path to a class",
            path=tuple(config_path) + ("module",),
        )

    # Import the module, then pick the class out of it.
    module_name, clz = modulename.rsplit(".", 1)
    try:
        module = importlib.import_module(module_name)
        provider_class = getattr(module, clz)
    except (ImportError, AttributeError) as e:
        raise ConfigError(
            "Failed to load %r" % (modulename,), path=tuple(config_path) + ("module",)
        ) from e

    # Load the module config. If None, pass an empty dictionary instead
    module_config = provider.get("config") or {}
    if hasattr(provider_class, "parse_config"):
        try:
            provider_config = provider_class.parse_config(module_config)
        except jsonschema.ValidationError as e:
            raise json_error_to_config_error(e, tuple(config_path) + ("config",))
        except ConfigError as e:
            raise _wrap_config_error(
                "Failed to parse config for %r" % (modulename,),
                prefix=tuple(config_path) + ("config",),
                e=e,
            )
        except Exception as e:
            raise ConfigError(
                "Failed to parse config for %r" % (modulename,),
                path=tuple(config_path) + ("config",),
            ) from e
    else:
        provider_config = module_config

    return provider_class, provider_config


def _wrap_config_error(msg: str, prefix: StrSequence, e: ConfigError) -> "ConfigError":
    """Wrap a ConfigError whose path is relative to the module's config in one
    whose path is relative to the whole config file.
    """
    path = prefix
    if e.path:
        path = tuple(prefix) + tuple(e.path)

    e1 = ConfigError(msg, path)

    # Chaining `e` itself would repeat its (relative) path when the error is
    # formatted, so chain just its message.
    e1.__cause__ = Exception(e.msg)
    e1.__cause__.__cause__ = e.__cause__
    return e1

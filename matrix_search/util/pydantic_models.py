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

from pydantic import BaseModel, ConfigDict


class ParseModel(BaseModel):
    """A custom version of Pydantic's BaseModel which

     - ignores unknown fields,
     - does not allow fields to be overwritten after construction and
     - enables strict mode,

    but otherwise uses Pydantic's default behaviour.

    Unknown fields are ignored because event content is open-ended: clients put
    all sorts of extra keys in there, and we only pick out what we index.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, strict=True)

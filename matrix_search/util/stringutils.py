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
import secrets
import string


def random_string(length: int) -> str:
    """Generate a cryptographically secure string of random letters.

    Used for transaction IDs and temporary file names.
    """
    return "".join(secrets.choice(string.ascii_letters) for _ in range(length))

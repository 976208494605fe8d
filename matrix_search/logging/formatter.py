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

import logging
import traceback
from io import StringIO
from types import TracebackType


class LogFormatter(logging.Formatter):
    """Log formatter which also shows where an exception was caught

    Tracebacks normally only cover the frames between where an exception was
    raised and where it was caught. When an exception is caught deep inside the
    reactor, that says little about what we were doing at the time, so this
    formatter prints the stack leading up to the capture point as well.
    """

    def formatException(
        self,
        ei: tuple[
            type[BaseException] | None,
            BaseException | None,
            TracebackType | None,
        ],
    ) -> str:
        typ, val, tb = ei
        with StringIO() as sio:
            # Frames from Deferred callbacks may have no f_back.
            if tb is not None and getattr(tb.tb_frame, "f_back", None) is not None:
                sio.write("Capture point (most recent call last):\n")
                traceback.print_stack(tb.tb_frame.f_back, None, sio)

            traceback.print_exception(typ, val, tb, None, sio)
            return sio.getvalue().rstrip("\n")

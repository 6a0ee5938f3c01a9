#!/usr/bin/env python3
# -*- coding: utf-8 -*-

# Copyright (C) 2022 Andy Stewart
#
# Author:     Andy Stewart <lazycat.manatee@gmail.com>
# Maintainer: Andy Stewart <lazycat.manatee@gmail.com>
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.
from typing import Optional

# Popup renders signature label on its first line.
RENDER_LINE = 1

# Byte 0 of the rendered line is the popup's left padding.
PADDING_OFFSET = 1


def bytes_length(string: str) -> int:
    return len(string.encode("utf-8"))


def is_index_in_bounds(index, length) -> bool:
    # bool is a subclass of int, but never a valid LSP index.
    return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < length


def make_range(start: int, end: int) -> dict:
    return {
        "start": {"line": RENDER_LINE, "character": start},
        "end": {"line": RENDER_LINE, "character": end}
    }


def get_active_parameter_range(signature: dict, active_parameter: int) -> Optional[dict]:
    """Return the byte range of the active parameter inside signature label.

    String parameter labels are searched in the signature label (first match wins),
    offset labels are used as is. Offsets are UTF-8 bytes, shifted by the popup padding.
    """
    parameters = signature.get("parameters")
    if parameters is None:
        return None

    if not is_index_in_bounds(active_parameter, len(parameters)):
        return None

    label = signature["label"]
    parameter_label = parameters[active_parameter]["label"]

    if isinstance(parameter_label, str):
        index = label.find(parameter_label)
        if index < 0:
            return None

        start = bytes_length(label[:index]) + PADDING_OFFSET
        end = start + bytes_length(parameter_label)
    else:
        (label_start, label_end) = parameter_label
        start = label_start + PADDING_OFFSET
        end = label_end + PADDING_OFFSET

    return make_range(start, end)


def select_active_signature(signature_help: dict) -> int:
    active_signature = signature_help.get("activeSignature")
    if is_index_in_bounds(active_signature, len(signature_help["signatures"])):
        return active_signature

    return 0


def select_active_parameter(signature_help: dict, signature: dict) -> int:
    parameters = signature.get("parameters") or []

    # Per-signature value wins over the value of whole response.
    for active_parameter in [signature.get("activeParameter"), signature_help.get("activeParameter")]:
        if is_index_in_bounds(active_parameter, len(parameters)):
            return active_parameter

    return 0

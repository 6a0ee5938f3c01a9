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
import abc
from typing import Optional

from core.active_parameter import (get_active_parameter_range,
                                   select_active_parameter,
                                   select_active_signature)
from core.exceptions import EmptyResult
from core.utils import *

ACTIVE_PARAMETER_TYPE = "signature-bridge-active-parameter"
DEFAULT_ACTIVE_PARAMETER_FACE = "font-lock-type-face"


class PopupHandle:
    def __init__(self, surface: "PopupSurface", popup_id):
        self.surface = surface
        self.popup_id = popup_id

    def close(self):
        self.surface.close(self)

    def is_opened(self) -> bool:
        return self.surface.is_opened(self)


class PopupSurface(abc.ABC):
    """Rendering primitive of popup, implemented by the editor."""

    @abc.abstractmethod
    def open(self, contents: list, placement: dict) -> PopupHandle:
        raise NotImplementedError()

    @abc.abstractmethod
    def close(self, handle: PopupHandle) -> None:
        raise NotImplementedError()

    @abc.abstractmethod
    def is_opened(self, handle: PopupHandle) -> bool:
        raise NotImplementedError()

    @abc.abstractmethod
    def apply_highlight(self, handle: PopupHandle, type_name: str, face: str, ranges: list) -> None:
        raise NotImplementedError()


class EmacsPopupSurface(PopupSurface):

    def open(self, contents, placement):
        popup_id = get_emacs_func_result("signature-bridge-popup-open", contents, placement)
        return PopupHandle(self, popup_id)

    def close(self, handle):
        eval_in_emacs("signature-bridge-popup-close", handle.popup_id)

    def is_opened(self, handle):
        return bool(get_emacs_func_result("signature-bridge-popup-live-p", handle.popup_id))

    def apply_highlight(self, handle, type_name, face, ranges):
        eval_in_emacs("signature-bridge-popup-highlight", handle.popup_id, type_name, face, ranges)


class SignatureHelpPopup:
    """Show signature help response in one popup, at most one popup is opened."""

    def __init__(self, surface: Optional[PopupSurface] = None, active_parameter_face: Optional[str] = None):
        self.surface = surface or EmacsPopupSurface()
        self.active_parameter_face = active_parameter_face or DEFAULT_ACTIVE_PARAMETER_FACE
        self.handle: Optional[PopupHandle] = None

    def is_opened(self) -> bool:
        return self.handle is not None and self.handle.is_opened()

    def close(self):
        if self.handle is not None:
            self.handle.close()
            self.handle = None

    def show(self, server_name: str, signature_help: dict) -> Optional[PopupHandle]:
        try:
            signature = self.pick_signature(server_name, signature_help)
        except EmptyResult as e:
            message_emacs(str(e), e.face)
            return None

        active_parameter = select_active_parameter(signature_help, signature)
        active_parameter_range = get_active_parameter_range(signature, active_parameter)

        self.close()
        self.handle = self.surface.open([signature["label"]], {
            "line": -1,
            # Align active parameter with cursor column.
            "col": -active_parameter_range["start"]["character"] if active_parameter_range else 0,
            "pos": "botleft",
            # Left padding is the byte 0 of active parameter range.
            "padding": [0, 1, 0, 1]
        })

        if active_parameter_range:
            self.surface.apply_highlight(self.handle, ACTIVE_PARAMETER_TYPE, self.active_parameter_face, [active_parameter_range])

        return self.handle

    def pick_signature(self, server_name, signature_help) -> dict:
        signatures = signature_help.get("signatures") or []
        if len(signatures) == 0:
            raise EmptyResult(server_name)

        return signatures[select_active_signature(signature_help)]

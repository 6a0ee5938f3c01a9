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
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

import sexpdata

from core.dispatcher import (DEFAULT_SIGNATURE_HELP_TIMEOUT,
                             SignatureHelpResult, pick_signature_help_server,
                             request_signature_help)
from core.exceptions import InvalidTriggerEvent, SignatureHelpError
from core.handler.signature_help import (TRIGGER_KIND_CONTENT_CHANGE,
                                         TRIGGER_KIND_INVOKED,
                                         TRIGGER_KIND_TRIGGER_CHARACTER,
                                         build_signature_help_context)
from core.popup import SignatureHelpPopup
from core.utils import *

if TYPE_CHECKING:
    from core.fileaction import FileAction


@dataclass(frozen=True)
class ContentChange:
    """Buffer text changed around cursor."""


@dataclass(frozen=True)
class TriggerCharacter:
    """User typed one of trigger or retrigger characters declared by LSP server."""
    char: str
    is_trigger: bool
    is_retrigger: bool


TriggerEvent = Union[ContentChange, TriggerCharacter]


def parse_emacs_bool(info: dict, key: str) -> bool:
    if key not in info:
        raise InvalidTriggerEvent("Trigger event miss field '{}': {}".format(key, info))

    value = info[key]
    if value is True or value == sexpdata.Symbol("t"):
        return True
    elif value is False or value is None or value == [] or value == {}:
        # nil is an empty list, epc_arg_transformer turns it into an empty dict.
        return False
    else:
        raise InvalidTriggerEvent("Field '{}' of trigger event is not boolean: {!r}".format(key, value))


def parse_trigger_event(info) -> TriggerEvent:
    """Build trigger event from the plist sent by Emacs."""
    if isinstance(info, (ContentChange, TriggerCharacter)):
        return info

    if not isinstance(info, dict):
        raise InvalidTriggerEvent("Trigger event must be a plist: {!r}".format(info))

    kind = info.get("kind")
    if kind == "contentChange":
        return ContentChange()
    elif kind == "triggerCharacter":
        char = info.get("char")
        if not isinstance(char, str) or char == "":
            raise InvalidTriggerEvent("Trigger character must be a non-empty string: {!r}".format(char))

        return TriggerCharacter(
            char=char,
            is_trigger=parse_emacs_bool(info, "isTrigger"),
            is_retrigger=parse_emacs_bool(info, "isRetrigger"))
    else:
        raise InvalidTriggerEvent("Unknown trigger event kind: {!r}".format(kind))


class SignatureHelpSession:
    """Signature help state of one buffer.

    Popup is either closed (idle) or showing `last_result`. Every request is tagged with
    a sequence number, a response is applied only if no newer request or close happened
    while waiting for it.
    """

    def __init__(self, file_action: "FileAction", popup: Optional[SignatureHelpPopup] = None):
        self.file_action = file_action
        self.popup = popup or SignatureHelpPopup(active_parameter_face=file_action.active_parameter_face)

        self.last_result: Optional[SignatureHelpResult] = None
        self.auto_trigger_timeout = DEFAULT_SIGNATURE_HELP_TIMEOUT

        self.latest_sequence = 0
        self.lock = threading.RLock()

    def is_showing(self) -> bool:
        return self.popup.is_opened()

    def start_request(self) -> int:
        self.latest_sequence += 1
        return self.latest_sequence

    def is_outdated(self, sequence) -> bool:
        if sequence != self.latest_sequence:
            logger.debug("Discard outdated signature help: received=%d, latest=%d",
                         sequence, self.latest_sequence)
            return True

        return False

    def build_context(self, trigger_kind, is_retrigger, trigger_character=None) -> dict:
        active_signature_help = None
        if is_retrigger and self.last_result is not None:
            active_signature_help = self.last_result.signature_help

        return build_signature_help_context(trigger_kind, is_retrigger, active_signature_help, trigger_character)

    def on_trigger_event(self, info):
        event = parse_trigger_event(info)

        if isinstance(event, ContentChange):
            self.handle_content_change()
        elif isinstance(event, TriggerCharacter):
            self.handle_trigger_character(event)
        else:
            raise InvalidTriggerEvent("Unhandled trigger event: {!r}".format(event))

    def handle_content_change(self):
        with self.lock:
            sequence = self.start_request()
            is_retrigger = self.is_showing()
            context = self.build_context(TRIGGER_KIND_CONTENT_CHANGE, is_retrigger)

        result = request_signature_help(self.file_action, self.auto_trigger_timeout, context)

        with self.lock:
            if self.is_outdated(sequence):
                return

            # Neither close nor redraw popup if nothing changed, avoid flicker.
            if result == self.last_result:
                return

            self.popup.close()
            if result is not None:
                self.accept(result)

    def handle_trigger_character(self, event: TriggerCharacter):
        with self.lock:
            sequence = self.start_request()
            is_retrigger = event.is_retrigger and self.is_showing()
            context = self.build_context(TRIGGER_KIND_TRIGGER_CHARACTER, is_retrigger, event.char)

        result = request_signature_help(self.file_action, self.auto_trigger_timeout, context)

        with self.lock:
            if self.is_outdated(sequence):
                return

            self.popup.close()
            if result is not None:
                self.accept(result)

    def invoke_now(self, timeout=DEFAULT_SIGNATURE_HELP_TIMEOUT):
        with self.lock:
            sequence = self.start_request()
            is_retrigger = self.is_showing()
            self.popup.close()
            context = self.build_context(TRIGGER_KIND_INVOKED, is_retrigger)

        result = request_signature_help(self.file_action, timeout, context)

        with self.lock:
            if self.is_outdated(sequence):
                return

            if result is not None:
                self.accept(result)

    def close(self):
        with self.lock:
            # Response of in-flight request must not reopen a dismissed popup.
            self.start_request()
            self.popup.close()

    def accept(self, result: SignatureHelpResult):
        self.last_result = result
        self.popup.show(result.server_name, result.signature_help)

    def enable_auto_trigger(self, timeout=DEFAULT_SIGNATURE_HELP_TIMEOUT):
        try:
            single_server = pick_signature_help_server(self.file_action)
        except SignatureHelpError as e:
            message_emacs(str(e), e.face)
            return

        self.auto_trigger_timeout = timeout

        trigger_characters = "".join(single_server.signature_help_trigger_characters or [])
        retrigger_characters = "".join(single_server.signature_help_retrigger_characters or [])

        log_time("Enable auto signature help for {} (trigger: '{}', retrigger: '{}')".format(
            self.file_action.filepath, trigger_characters, retrigger_characters))

        eval_in_emacs("signature-bridge-signature-help--enable-auto-trigger",
                      self.file_action.filepath,
                      trigger_characters,
                      retrigger_characters)

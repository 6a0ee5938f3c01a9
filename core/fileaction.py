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
import pprint
import threading
import traceback
from typing import Dict, List

from core.dispatcher import DEFAULT_SIGNATURE_HELP_TIMEOUT
from core.exceptions import InvalidTriggerEvent
from core.handler import *
from core.lspserver import LspServer
from core.session import SignatureHelpSession
from core.utils import *


def create_file_action(filepath, lsp_servers):
    if is_in_path_dict(FILE_ACTION_DICT, filepath):
        logger.warning("File {} is opened already.".format(filepath))
        return get_from_path_dict(FILE_ACTION_DICT, filepath)

    action = FileAction(filepath, lsp_servers)
    add_to_path_dict(FILE_ACTION_DICT, filepath, action)
    return action


class FileAction:
    def __init__(self, filepath, lsp_servers: List[LspServer]):
        # Init.
        self.filepath = filepath
        # Order matters, signature help is answered by the first capable server.
        self.lsp_servers = list(lsp_servers)
        self.version = 1
        self.request_lock = threading.Lock()

        [self.active_parameter_face] = get_emacs_vars(["signature-bridge-active-parameter-face"])
        if not isinstance(self.active_parameter_face, str):
            self.active_parameter_face = None

        # Initialize handlers, one group per LSP server.
        logger.debug("Handlers: " + pprint.pformat(Handler.__subclasses__()))
        self.method_handlers: Dict[str, Dict[str, Handler]] = {}
        for single_server in self.lsp_servers:
            self.method_handlers[single_server.server_info["name"]] = {
                handler_cls.name: handler_cls(self) for handler_cls in Handler.__subclasses__()
            }

        self.signature_help_session = SignatureHelpSession(self)

        for single_server in self.lsp_servers:
            single_server.attach(self)

    def call(self, method, *args, **kwargs):
        """Call method of file action."""
        if hasattr(self, method):
            getattr(self, method)(*args, **kwargs)
        else:
            logger.error("Unsupported file action method: %s", method)

    def read_file(self):
        with open(self.filepath, encoding="utf-8", errors="ignore") as f:
            return f.read()

    def change_file(self, start, end, range_length, change_text):
        # Send didChange request to LSP server.
        for single_server in self.lsp_servers:
            single_server.send_did_change_notification(self.filepath, self.version, start, end, range_length, change_text)

        self.version += 1

    def update_file(self, file_content):
        for single_server in self.lsp_servers:
            single_server.send_whole_change_notification(self.filepath, self.version, file_content)

        self.version += 1

    def save_file(self):
        for single_server in self.lsp_servers:
            single_server.send_did_save_notification(self.filepath)

    @threaded
    def signature_help(self, timeout=DEFAULT_SIGNATURE_HELP_TIMEOUT):
        self.signature_help_session.invoke_now(timeout)

    @threaded
    def signature_help_trigger(self, info):
        try:
            self.signature_help_session.on_trigger_event(info)
        except InvalidTriggerEvent:
            logger.error(traceback.format_exc())

    def signature_help_close(self):
        self.signature_help_session.close()

    def enable_auto_signature_help(self, timeout=DEFAULT_SIGNATURE_HELP_TIMEOUT):
        self.signature_help_session.enable_auto_trigger(timeout)

    def get_handler(self, single_server, handler_name) -> Handler:
        return self.method_handlers[single_server.server_info["name"]][handler_name]

    def send_server_request(self, single_server, handler_name, *args, **kwargs):
        handler: Handler = self.get_handler(single_server, handler_name)

        # Signature help requests are sent from several threads.
        with self.request_lock:
            handler.latest_request_id = request_id = generate_request_id()

            single_server.record_request_id(request_id, handler)

            params = handler.process_request(*args, **kwargs)

        if handler.send_document_uri:
            params["textDocument"] = {"uri": single_server.parse_document_uri(self.filepath)}

        single_server.sender.send_request(
            method=handler.method,
            params=params,
            request_id=request_id)

        return request_id

    def exit(self):
        self.signature_help_session.close()

        for single_server in self.lsp_servers:
            if single_server.server_name in LSP_SERVER_DICT:
                single_server.close_file(self.filepath)

        # Clean FILE_ACTION_DICT after close file.
        remove_from_path_dict(FILE_ACTION_DICT, self.filepath)

    def get_lsp_servers(self) -> List[LspServer]:
        return self.lsp_servers

    def get_lsp_server_names(self):
        return list(map(lambda single_server: single_server.server_info["name"], self.lsp_servers))


FILE_ACTION_DICT: Dict[str, FileAction] = {}  # use for contain file action
LSP_SERVER_DICT: Dict[str, LspServer] = {}  # use for contain lsp server

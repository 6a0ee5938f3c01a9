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

import json
import os
import queue
import re
import subprocess
import threading
import traceback
from subprocess import PIPE
from sys import stderr
from typing import TYPE_CHECKING, Dict

from mergedeep import merge

from core.handler import Handler
from core.handler.signature_help import signature_help_client_capabilities

if TYPE_CHECKING:
    from core.fileaction import FileAction
from core.utils import *

DEFAULT_BUFFER_SIZE = 100000000  # we need make buffer size big enough, avoid pipe hang by big data response from LSP server


class LspServerSender(MessageSender):
    def __init__(self, process: subprocess.Popen, server_name, project_name):
        super().__init__(process)

        self.server_name = server_name
        self.project_name = project_name

        self.init_queue = queue.Queue()
        self.initialized = threading.Event()

    def enqueue_message(self, message: dict, *, init=False):
        message["jsonrpc"] = "2.0"
        if init:
            self.init_queue.put(message)
        else:
            self.queue.put(message)

    def send_request(self, method, params, request_id, **kwargs):
        self.enqueue_message(dict(
            id=request_id,
            method=method,
            params=params,
            message_type="request"
        ), **kwargs)

    def send_notification(self, method, params, **kwargs):
        self.enqueue_message(dict(
            method=method,
            params=params,
            message_type="notification"
        ), **kwargs)

    def send_response(self, request_id, result, **kwargs):
        self.enqueue_message(dict(
            id=request_id,
            result=result,
            message_type="response"
        ), **kwargs)

    def send_message(self, message: dict):
        # message_type is bookkeeping only, JSON-RPC doesn't know it.
        message_type = message.pop("message_type")

        # Content-Length counts bytes, not characters.
        body = json.dumps(message).encode("utf-8")
        self.process.stdin.write(b"Content-Length: %d\r\n\r\n" % len(body) + body)    # type: ignore
        self.process.stdin.flush()    # type: ignore

        if message_type == "notification":
            log_time_debug("Notify {} to '{}' ({})".format(message["method"], self.server_name, self.project_name))
        elif message_type == "request":
            log_time("Request {} #{} to '{}' ({})".format(message["method"], message["id"], self.server_name, self.project_name))
        else:
            log_time("Reply server request #{} of '{}' ({})".format(message["id"], self.server_name, self.project_name))

        logger.debug(json.dumps(message, indent=3))

    def run(self) -> None:
        try:
            # "initialize" goes first, everything else waits for its response.
            self.send_message(self.init_queue.get())
            self.initialized.wait()

            while not self.init_queue.empty():
                self.send_message(self.init_queue.get())

            while self.process.poll() is None:
                self.send_message(self.queue.get())
        except Exception:
            logger.error(traceback.format_exc())


class LspServerReceiver(MessageReceiver):

    def __init__(self, process: subprocess.Popen, server_name):
        super().__init__(process)

        self.server_name = server_name

    def emit_message(self, line):
        if not line:
            return
        try:
            self.queue.put({
                "name": "lsp_recv_message",
                "content": parse_json_content(line)
            })
        except Exception:
            logger.error(traceback.format_exc())

    def read_content_length(self):
        """Read header block, return None when stdout is closed."""
        content_length = None
        while True:
            line = self.process.stdout.readline()    # type: ignore
            if not line:
                return None
            elif line in (b"\r\n", b"\n"):
                if content_length is not None:
                    return content_length
            else:
                # Content-Type header and unknown headers are ignored.
                match = re.match(b"Content-Length: *([0-9]+)", line)
                if match is not None:
                    content_length = int(match.group(1))

    def run(self):
        try:
            while self.process.poll() is None:
                content_length = self.read_content_length()
                if content_length is None:
                    break

                body = self.process.stdout.read(content_length)    # type: ignore
                self.emit_message(body.decode("utf-8"))
            log_time("LSP server '{}' exited with code {}".format(self.server_name, self.process.wait()))
        except Exception:
            logger.error(traceback.format_exc())


class LspServer:
    def __init__(self, message_queue, project_path, server_info, server_name):
        self.message_queue = message_queue
        self.project_path = project_path
        self.project_name = os.path.basename(project_path)
        self.server_info = server_info

        self.initialize_id = generate_request_id()
        self.server_name = server_name
        self.request_dict: Dict[int, Handler] = dict()
        self.root_path = self.project_path

        # LSP server information.
        self.signature_help_provider = False
        self.signature_help_trigger_characters = list()
        self.signature_help_retrigger_characters = list()

        # TextDocumentSyncKind: 0 none, 1 full text, 2 incremental.
        self.text_document_sync = 2
        self.save_include_text = False

        # Project path is the file itself when no project root was found.
        cwd = os.path.dirname(self.project_path) if os.path.isfile(self.project_path) else self.project_path
        self.lsp_subprocess = subprocess.Popen(self.server_info["command"],
                                               bufsize=DEFAULT_BUFFER_SIZE,
                                               stdin=PIPE,
                                               stdout=PIPE,
                                               stderr=stderr,
                                               cwd=cwd)

        # Reader and writer threads on stdio, dispatcher thread on parsed messages.
        self.receiver = LspServerReceiver(self.lsp_subprocess, self.server_info["name"])
        self.receiver.start()

        self.sender = LspServerSender(self.lsp_subprocess, self.server_info["name"], self.project_name)
        self.sender.start()

        self.ls_message_thread = threading.Thread(target=self.lsp_message_dispatcher, daemon=True)
        self.ls_message_thread.start()

        self.files: Dict[str, "FileAction"] = dict()

    def attach(self, fa: "FileAction"):
        if is_in_path_dict(self.files, fa.filepath):
            logger.error(f"File {fa.filepath} opened again before close.")
            return

        add_to_path_dict(self.files, fa.filepath, fa)

        if len(self.files) == 1:
            # Say hello to LSP server, 'initialize' must be the first request.
            self.send_initialize_request()

        self.send_did_open_notification(fa)

    def lsp_message_dispatcher(self):
        try:
            while True:
                message = self.receiver.get_message()
                self.handle_recv_message(message["content"])
        except Exception:
            logger.error(traceback.format_exc())

    def send_initialize_request(self):
        self.sender.send_request("initialize", {
            "processId": os.getpid(),
            "rootPath": self.root_path,
            "clientInfo": {
                "name": "emacs",
                "version": "signature-bridge"
            },
            "rootUri": path_to_uri(self.project_path),
            "capabilities": self.get_capabilities(),
            "initializationOptions": self.server_info.get("initializationOptions", {})
        }, self.initialize_id, init=True)

    def get_capabilities(self):
        server_capabilities = self.server_info.get("capabilities", {})

        return merge({}, server_capabilities, {
            "workspace": {
                "configuration": True
            },
            "textDocument": {
                "synchronization": {
                    "dynamicRegistration": False,
                    "didSave": True
                }
            },
            "window": {
                "workDoneProgress": False
            }
        }, signature_help_client_capabilities())

    def parse_document_uri(self, filepath):
        return path_to_uri(filepath)

    def get_language_id(self, fa):
        extension_name = os.path.splitext(fa.filepath)[1].lstrip(os.path.extsep).lower()
        return self.server_info.get("languageIds", {}).get(extension_name) or \
            self.server_info.get("languageId") or extension_name

    def send_did_open_notification(self, fa: "FileAction"):
        self.sender.send_notification("textDocument/didOpen", {
            "textDocument": {
                "uri": self.parse_document_uri(fa.filepath),
                "languageId": self.get_language_id(fa),
                "version": 0,
                "text": fa.read_file()
            }
        })

    def send_did_close_notification(self, filepath):
        self.sender.send_notification("textDocument/didClose", {"textDocument": {"uri": path_to_uri(filepath)}})

    def send_did_save_notification(self, filepath):
        params = {"textDocument": {"uri": path_to_uri(filepath)}}
        if self.save_include_text:
            with open(filepath, encoding="utf-8", errors="ignore") as f:
                params["text"] = f.read()

        self.sender.send_notification("textDocument/didSave", params)

    def send_did_change_notification(self, filepath, version, start, end, range_length, text):
        if self.text_document_sync == 0:
            return
        elif self.text_document_sync == 1:
            # Server only accepts full document sync.
            self.send_whole_change_notification(filepath, version, get_buffer_content(filepath))
            return

        self.sender.send_notification("textDocument/didChange", {
            "textDocument": {
                "uri": path_to_uri(filepath),
                "version": version
            },
            "contentChanges": [
                {
                    "range": {
                        "start": start,
                        "end": end
                    },
                    "rangeLength": range_length,
                    "text": text
                }
            ]
        })

    def send_whole_change_notification(self, filepath, version, file_content):
        if self.text_document_sync == 0:
            return

        self.sender.send_notification("textDocument/didChange", {
            "textDocument": {
                "uri": path_to_uri(filepath),
                "version": version
            },
            "contentChanges": [
                {
                    "text": file_content
                }
            ]
        })

    def record_request_id(self, request_id: int, handler: Handler):
        self.request_dict[request_id] = handler

    def send_shutdown_request(self):
        self.sender.send_request("shutdown", {}, generate_request_id())

    def send_exit_notification(self):
        self.sender.send_notification("exit", {})

    def handle_workspace_configuration_request(self, request_id, params):
        settings = self.server_info.get("settings") or {}
        server_name = self.server_info["name"]

        # One entry per requested item, null when we have no settings at all.
        items = [settings.get(item.get("section", server_name), {}) if settings else None for item in params["items"]]
        self.sender.send_response(request_id, items)

    def handle_error_message(self, message):
        error = message["error"]
        logger.error("Recv error from '%s' (%s): %s", self.server_info["name"], self.project_name, json.dumps(message, indent=3))

        if error.get("message") == "Unhandled method textDocument/signatureHelp":
            self.signature_help_provider = False

        request_id = message.get("id")
        if request_id in self.request_dict:
            self.request_dict.pop(request_id).handle_error(request_id, error)

    def record_message(self, message):
        origin = "'{}' ({})".format(self.server_info["name"], self.project_name)
        if "method" not in message:
            handler = self.request_dict.get(message.get("id"))
            method = "initialize" if message.get("id") == self.initialize_id else getattr(handler, "method", "unknown")
            log_time("Recv {} response #{} from {}".format(method, message.get("id"), origin))
        elif "id" in message:
            log_time("Recv {} request #{} from {}".format(message["method"], message["id"], origin))
        else:
            log_time_debug("Recv {} notification from {}".format(message["method"], origin))

    def handle_log_message(self, message):
        # Only surface window/logMessage entries of type Error or Warning.
        if message.get("method") == "window/logMessage" and get_value_from_path(message, ["params", "type"]) in (1, 2):
            logger.warning("%s (%s): %s", self.project_name, self.server_info["name"], message["params"].get("message"))

    def set_attribute_from_message(self, message, attribute_name, key_list):
        value = get_value_from_path(message, key_list)
        if value is not None:
            setattr(self, attribute_name, value)

    def save_attribute_from_message(self, message):
        # Fetch LSP server's capability provider.
        attributes_to_set = [
            ("signature_help_provider", ["result", "capabilities", "signatureHelpProvider"]),
            ("signature_help_trigger_characters", ["result", "capabilities", "signatureHelpProvider", "triggerCharacters"]),
            ("signature_help_retrigger_characters", ["result", "capabilities", "signatureHelpProvider", "retriggerCharacters"]),
            ("save_include_text", ["result", "capabilities", "textDocumentSync", "save", "includeText"]),
            ("text_document_sync", ["result", "capabilities", "textDocumentSync"])]

        for attr, path in attributes_to_set:
            self.set_attribute_from_message(message, attr, path)

        # If the returned result is a dict, dig the deeper attributes.
        if isinstance(self.text_document_sync, dict):
            self.text_document_sync = self.text_document_sync.get("change", 2)

    def send_initialize_response(self, message):
        self.sender.send_notification("initialized", {}, init=True)

        self.sender.send_notification("workspace/didChangeConfiguration", {
            "settings": self.server_info.get("settings", {})
        }, init=True)

        self.sender.initialized.set()

    def handle_workspace_message(self, message):
        if message.get("method") == "workspace/configuration":
            self.handle_workspace_configuration_request(message["id"], message["params"])
        elif message.get("method") not in [None, "client/registerCapability"]:
            # Server request we don't support, such as window/workDoneProgress/create,
            # reply null to make sure LSP server won't wait for it.
            self.sender.send_response(message["id"], None)

    def handle_id_message(self, message):
        if "id" in message:
            if message["id"] == self.initialize_id:
                # Tell LSP server that client is ready after 'initialize' response.
                self.save_attribute_from_message(message)
                self.send_initialize_response(message)
            else:
                if "method" not in message and message["id"] in self.request_dict:
                    handler = self.request_dict.pop(message["id"])
                    handler.handle_response(
                        request_id=message["id"],
                        response=message.get("result"),
                    )
                else:
                    self.handle_workspace_message(message)

    def handle_register_capability_message(self, message):
        if message.get("method") == "client/registerCapability":
            try:
                for registration in message["params"]["registrations"]:
                    if registration["method"] == "textDocument/signatureHelp":
                        self.signature_help_provider = registration.get("registerOptions") or True
                        self.set_attribute_from_message(registration, "signature_help_trigger_characters", ["registerOptions", "triggerCharacters"])
                        self.set_attribute_from_message(registration, "signature_help_retrigger_characters", ["registerOptions", "retriggerCharacters"])
            except Exception:
                log_time(traceback.format_exc())

            self.sender.send_response(message["id"], None)

    def handle_recv_message(self, message: dict):
        if "error" in message:
            self.handle_error_message(message)
            return

        self.record_message(message)
        self.handle_log_message(message)
        self.handle_id_message(message)
        self.handle_register_capability_message(message)

        logger.debug(json.dumps(message, indent=3))

    def close_file(self, filepath):
        # Send didClose notification when client close file.
        if is_in_path_dict(self.files, filepath):
            self.send_did_close_notification(filepath)
            remove_from_path_dict(self.files, filepath)

        # Shutdown LSP server when last file closed, to save system memory.
        if len(self.files) == 0:
            self.message_queue.put({
                "name": "server_process_exit",
                "content": self.server_name
            })
            self.exit()

    def exit(self):
        self.send_shutdown_request()
        self.send_exit_notification()
        # Don't need to wait LSP server response, kill immediately.
        if self.lsp_subprocess is not None:
            try:
                os.kill(self.lsp_subprocess.pid, 9)
            except ProcessLookupError:
                log_time("LSP server {} ({}) already exited!".format(self.server_info["name"], self.lsp_subprocess.pid))

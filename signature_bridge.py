#!/usr/bin/env python3
# -*- coding: utf-8 -*-

# /// script
# dependencies = [
#   "epc",
#   "mergedeep",
#   "orjson",
#   "sexpdata",
# ]
# ///

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
import shutil
import sys
import threading
import traceback
from pathlib import Path

from epc.server import ThreadingEPCServer

from core.fileaction import create_file_action, FILE_ACTION_DICT, LSP_SERVER_DICT
from core.handler.signature_help import signature_help_client_capabilities
from core.lspserver import LspServer
from core.utils import *

# Functions Emacs calls with buffer file path as first argument.
FILE_ACTION_FUNCTIONS = [
    "change_file",
    "update_file",
    "save_file",
    "signature_help",
    "signature_help_trigger",
    "signature_help_close",
    "enable_auto_signature_help"
]


class SignatureBridge:
    def __init__(self, args):
        # Build EPC server.
        self.server = ThreadingEPCServer(('127.0.0.1', 0), log_traceback=True)
        self.server.allow_reuse_address = True
        self.server.register_instance(self)  # register instance functions let elisp side call

        # Start EPC server.
        self.server_thread = threading.Thread(target=self.server.serve_forever)
        self.server_thread.start()

        # Init event loop.
        self.event_queue = queue.Queue()
        self.event_loop = threading.Thread(target=self.event_dispatcher)
        self.event_loop.start()

        # All LSP server process messages running in message_thread.
        self.message_queue = queue.Queue()
        self.message_thread = threading.Thread(target=self.message_dispatcher)
        self.message_thread.start()

        init_epc_client(int(args[0]))

        # Build EPC interfaces.
        for name in FILE_ACTION_FUNCTIONS:
            self.build_file_action_function(name)

        self.init_log_level()

        eval_in_emacs('signature-bridge--first-start', self.server.server_address[1])

        # event_loop never exit, simulation event loop.
        self.event_loop.join()

    def init_log_level(self):
        [log_level] = get_emacs_vars(["signature-bridge-log-level"])
        log_level = str(log_level)
        if log_level in LOG_LEVEL_DICT:
            logger.setLevel(LOG_LEVEL_DICT[log_level])

    def event_dispatcher(self):
        try:
            while True:
                message = self.event_queue.get(True)

                if message["name"] == "close_file":
                    self._close_file(message["content"])
                elif message["name"] == "action_func":
                    (func_name, func_args) = message["content"]
                    getattr(self, func_name)(*func_args)

                self.event_queue.task_done()
        except Exception:
            logger.error(traceback.format_exc())

    def message_dispatcher(self):
        try:
            while True:
                message = self.message_queue.get(True)
                if message["name"] == "server_process_exit":
                    self.handle_server_process_exit(message["content"])
                else:
                    logger.error("Unhandled signature-bridge message: %s" % message)

                self.message_queue.task_done()
        except Exception:
            logger.error(traceback.format_exc())

    def open_file(self, filepath):
        project_path = get_project_path(filepath)
        multi_lang_server = get_emacs_func_result("get-multi-lang-server", project_path, filepath)

        if multi_lang_server:
            # Try to load multi language server when get-multi-lang-server return match one.
            multi_lang_server_path = get_lang_server_path(multi_lang_server, True)

            with open(multi_lang_server_path, encoding="utf-8", errors="ignore") as f:
                server_names = pick_multi_server_names(json.load(f))

            lsp_servers = []
            for server_name in server_names:
                lang_server_info = load_single_server_info(server_name)
                lsp_server = self.create_lsp_server(filepath, project_path, lang_server_info)
                if not lsp_server:
                    return False

                lsp_servers.append(lsp_server)

            self.enjoy_hacking(server_names, project_path)
            create_file_action(filepath, lsp_servers)

            return True
        else:
            return self.load_single_lang_server(project_path, filepath)

    def load_single_lang_server(self, project_path, filepath):
        single_lang_server = get_emacs_func_result("get-single-lang-server", project_path, filepath)

        if not single_lang_server:
            self.turn_off(filepath, "ERROR: can't find the corresponding server for {}".format(filepath))

            return False

        lang_server_info = load_single_server_info(single_lang_server)
        lsp_server = self.create_lsp_server(filepath, project_path, lang_server_info)

        if not lsp_server:
            return False

        self.enjoy_hacking([lang_server_info["name"]], project_path)
        create_file_action(filepath, [lsp_server])

        return True

    def enjoy_hacking(self, servers, project_path):
        log_time("Start lsp server ({}) for {}".format(", ".join(servers), project_path))

        message_emacs("Active {} '{}', signature help is ready.".format(
            "project" if os.path.isdir(project_path) else "file",
            os.path.basename(project_path.rstrip(os.path.sep))))

    def turn_off(self, filepath, message):
        message_emacs(message + ", disable signature help.")
        eval_in_emacs("signature-bridge--turn-off", filepath)

    def check_lang_server_command(self, lang_server_info, filepath):
        if len(lang_server_info["command"]) == 0:
            self.turn_off(filepath, "Error: {}'s command argument is empty".format(filepath))
            return False

        server_command = lang_server_info["command"][0]
        server_command_path = shutil.which(server_command)

        if server_command_path is None:
            self.turn_off(filepath, "Error: can't find command '{}' to start LSP server {} ({})".format(
                server_command, lang_server_info["name"], filepath))
            return False

        # Always start LSP server with absolute path of command.
        lang_server_info["command"][0] = server_command_path
        return True

    def create_lsp_server(self, filepath, project_path, lang_server_info):
        if not self.check_lang_server_command(lang_server_info, filepath):
            return False

        lsp_server_name = "{}#{}".format(path_as_key(project_path), lang_server_info["name"])

        if lsp_server_name not in LSP_SERVER_DICT:
            LSP_SERVER_DICT[lsp_server_name] = LspServer(
                message_queue=self.message_queue,
                project_path=project_path,
                server_info=lang_server_info,
                server_name=lsp_server_name)

        return LSP_SERVER_DICT[lsp_server_name]

    def close_file(self, filepath):
        # Add queue, make sure close file after other LSP request.
        self.event_queue.put({
            "name": "close_file",
            "content": filepath
        })

    def _close_file(self, filepath):
        if is_in_path_dict(FILE_ACTION_DICT, filepath):
            get_from_path_dict(FILE_ACTION_DICT, filepath).exit()

    def build_file_action_function(self, name):
        def _do(filepath, *args):
            open_file_success = True

            if not is_in_path_dict(FILE_ACTION_DICT, filepath):
                open_file_success = self.open_file(filepath)  # _do is called inside event_loop, so we can block here.

            if open_file_success:
                action = get_from_path_dict(FILE_ACTION_DICT, filepath)
                action.call(name, *args)

        setattr(self, "_{}".format(name), _do)

        def _do_wrap(*args):
            # To prevent long-time calculations from blocking Emacs, we need to put the function into event loop.
            self.event_queue.put({
                "name": "action_func",
                "content": ("_{}".format(name), list(map(epc_arg_transformer, args)))
            })

        setattr(self, name, _do_wrap)

    def signature_help_capabilities(self):
        """Client capabilities of signature help, sent to LSP server in 'initialize' request."""
        return signature_help_client_capabilities()

    def handle_server_process_exit(self, server_name):
        if server_name in LSP_SERVER_DICT:
            log_time("Exit server {}".format(server_name))
            del LSP_SERVER_DICT[server_name]

    def cleanup(self):
        """Do some cleanup before exit python process."""
        for lsp_server in list(LSP_SERVER_DICT.values()):
            lsp_server.exit()
        LSP_SERVER_DICT.clear()
        FILE_ACTION_DICT.clear()

        close_epc_client()


def pick_multi_server_names(multi_lang_server_info):
    servers = []
    for info in multi_lang_server_info:
        info_value = multi_lang_server_info[info]
        if isinstance(info_value, str):
            servers.append(info_value)
        else:
            servers += info_value

    return list(dict.fromkeys(servers))


def replace_template(arg):
    if isinstance(arg, str):
        return os.path.expanduser(os.path.expandvars(arg))
    elif isinstance(arg, list):
        return list(map(replace_template, arg))
    elif isinstance(arg, dict):
        return {key: replace_template(value) for key, value in arg.items()}
    else:
        return arg


def read_lang_server_info(lang_server_file):
    lang_server_info = json.load(lang_server_file)

    # Replace template in command options.
    lang_server_info["command"] = replace_template(lang_server_info["command"])

    # Replace template in initializationOptions.
    if "initializationOptions" in lang_server_info:
        lang_server_info["initializationOptions"] = replace_template(lang_server_info["initializationOptions"])

    return lang_server_info


def load_single_server_info(lang_server):
    if isinstance(lang_server, str) and os.path.exists(lang_server) and os.path.dirname(lang_server) != "":
        # If lang_server is real file path, we load the LSP server configuration from the user specified file.
        lang_server_info_path = lang_server
    else:
        # Otherwise, we load LSP server configuration from file signature-bridge/langserver/lang_server.json.
        lang_server_info_path = get_lang_server_path(lang_server)

    with open(lang_server_info_path, encoding="utf-8", errors="ignore") as f:
        return read_lang_server_info(f)


def get_lang_server_path(server_name, is_multi_server=False):
    lang_server_dir = "multiserver" if is_multi_server else "langserver"
    lang_server_dir_var = "signature-bridge-user-multiserver-dir" if is_multi_server else "signature-bridge-user-langserver-dir"

    server_dir = Path(__file__).resolve().parent / lang_server_dir
    server_path_current = server_dir / "{}_{}.json".format(server_name, get_os_name())
    server_path_default = server_dir / "{}.json".format(server_name)

    [user_server_dir] = get_emacs_vars([lang_server_dir_var])
    if isinstance(user_server_dir, str):
        user_server_dir = Path(user_server_dir).expanduser()
        user_server_path_current = user_server_dir / "{}_{}.json".format(server_name, get_os_name())
        user_server_path_default = user_server_dir / "{}.json".format(server_name)

        if user_server_path_current.exists():
            server_path_current = user_server_path_current
        elif user_server_path_default.exists():
            server_path_current = user_server_path_default

    return server_path_current if server_path_current.exists() else server_path_default


if __name__ == "__main__":
    SignatureBridge(sys.argv[1:])

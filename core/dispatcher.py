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
import queue
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from core.exceptions import (CapabilityUnsupported, NoClientAttached,
                             RequestTimeout, SignatureHelpError)
from core.utils import *

if TYPE_CHECKING:
    from core.fileaction import FileAction
    from core.lspserver import LspServer

DEFAULT_SIGNATURE_HELP_TIMEOUT = 5000  # milliseconds


@dataclass
class SignatureHelpResult:
    server_name: str
    signature_help: dict


def has_signature_help_provider(single_server: "LspServer") -> bool:
    # signatureHelpProvider can be an empty options object, which still means support.
    provider = single_server.signature_help_provider
    return provider is not None and provider is not False


def pick_signature_help_server(file_action: "FileAction") -> "LspServer":
    """Return the first attached LSP server that support signature help."""
    lsp_servers = file_action.get_lsp_servers()
    if len(lsp_servers) == 0:
        raise NoClientAttached(file_action.filepath)

    provider_servers = list(filter(has_signature_help_provider, lsp_servers))
    if len(provider_servers) == 0:
        raise CapabilityUnsupported(lsp_servers[0].server_info["name"])

    return provider_servers[0]


def request_signature_help(file_action: "FileAction", timeout, context: dict) -> Optional[SignatureHelpResult]:
    """Send textDocument/signatureHelp and wait response at most TIMEOUT milliseconds.

    Never raise for user-facing failures, notice them in Emacs and return None.
    """
    try:
        single_server = pick_signature_help_server(file_action)
        server_name = single_server.server_info["name"]

        handler = file_action.get_handler(single_server, "signature_help")
        request_id = file_action.send_server_request(single_server, "signature_help", get_cursor_position(), context)

        try:
            response = handler.wait_response(request_id, timeout)
        except queue.Empty:
            raise RequestTimeout(server_name, timeout) from None
    except SignatureHelpError as e:
        logger.info("Signature help for %s failed: %s", file_action.filepath, e)
        message_emacs(str(e), e.face)
        return None

    if not response:
        return None

    return SignatureHelpResult(server_name, response)

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


class SignatureHelpError(Exception):
    """Base class of signature help failures shown to the user as a notice."""

    face = None


class NoClientAttached(SignatureHelpError):
    def __init__(self, filepath):
        super().__init__("No client is attached to buffer: {}".format(filepath))
        self.filepath = filepath


class CapabilityUnsupported(SignatureHelpError):
    def __init__(self, server_name):
        super().__init__("Signature help is not supported by {}".format(server_name))
        self.server_name = server_name


class RequestTimeout(SignatureHelpError):
    def __init__(self, server_name, timeout):
        super().__init__("Signature help request timeout")
        self.server_name = server_name
        self.timeout = timeout


class EmptyResult(SignatureHelpError):
    face = "warning"

    def __init__(self, server_name):
        super().__init__("No signature information found")
        self.server_name = server_name


class InvalidTriggerEvent(ValueError):
    """Trigger event sent by Emacs doesn't match any known shape."""

import itertools
import os
import tempfile
import threading
import time
import unittest
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import core.utils
from core.fileaction import FileAction
from core.utils import logger, path_to_uri

BASE_DIR = Path(__file__).resolve().parent.parent

TEST_FILEPATH = str(Path(tempfile.gettempdir()) / "signature-bridge-test" / "test.py")

# Responder return value meaning "LSP server never answers".
NO_RESPONSE = object()


class ErrorResponse:
    def __init__(self, message, code=-32601):
        self.error = {"code": code, "message": message}


class FakeEmacs:
    """Answers EPC calls like the elisp side of signature-bridge.

    Synchronous calls are served from tables, every eval_in_emacs call is
    recorded in `evals`, popups are tracked by id.
    """

    def __init__(self, emacs_vars: Optional[Dict[str, Any]] = None, cursor_position=None):
        self.emacs_vars = {
            "signature-bridge-log-level": "",
            "signature-bridge-active-parameter-face": [],
            "signature-bridge-user-langserver-dir": [],
            "signature-bridge-user-multiserver-dir": [],
        }
        self.emacs_vars.update(emacs_vars or {})
        self.cursor_position = cursor_position or {"line": 3, "character": 14}
        self.func_results: Dict[str, Any] = {}

        self.evals: List[tuple] = []
        self.popups: Dict[int, dict] = {}
        self.live_popups = set()
        self.popup_ids = itertools.count(1)
        self.lock = threading.Lock()

    def install(self):
        core.utils.epc_client = self
        core.utils.test_interceptor = self.on_eval

    def uninstall(self):
        core.utils.epc_client = None
        core.utils.test_interceptor = None

    def call_sync(self, method, args, timeout=None):
        if method == "get-emacs-vars":
            return [[self.emacs_vars[name], ""] if name in self.emacs_vars else [] for name in args]
        elif method == "get-cursor-position":
            return self.cursor_position
        elif method == "signature-bridge-popup-open":
            (contents, placement) = args
            with self.lock:
                popup_id = next(self.popup_ids)
                self.popups[popup_id] = {"contents": contents, "placement": placement, "highlights": []}
                self.live_popups.add(popup_id)
            return popup_id
        elif method == "signature-bridge-popup-live-p":
            return args[0] in self.live_popups
        elif method in self.func_results:
            return self.func_results[method]
        else:
            logger.debug("FakeEmacs: unhandled sync call %s %s", method, args)
            return []

    def call(self, method, args):
        # eval-in-emacs sexps are already recorded by on_eval.
        pass

    def on_eval(self, method_name, args):
        with self.lock:
            self.evals.append((method_name, args))

            if method_name == "signature-bridge-popup-close":
                self.live_popups.discard(args[0])
            elif method_name == "signature-bridge-popup-highlight":
                (popup_id, type_name, face, ranges) = args
                self.popups[popup_id]["highlights"].append((type_name, face, ranges))

    def calls_of(self, method_name) -> List[tuple]:
        with self.lock:
            return [args for (name, args) in self.evals if name == method_name]

    def messages(self) -> List[str]:
        return [args[0] for args in self.calls_of("message")] + \
            [args[0] for args in self.calls_of("signature-bridge--message-with-face")]

    def opened_popups(self) -> List[dict]:
        return [self.popups[popup_id] for popup_id in sorted(self.popups)]

    def closed_popup_ids(self) -> List[int]:
        return [args[0] for args in self.calls_of("signature-bridge-popup-close")]


class FakeSender:
    def __init__(self, server: "FakeLspServer"):
        self.server = server

    def send_request(self, method, params, request_id, **kwargs):
        self.server.requests.append((method, params, request_id))

        if self.server.responder is None:
            return

        response = self.server.responder(params)
        if response is not NO_RESPONSE:
            self.server.respond(request_id, response)


class FakeLspServer:
    """Attached LSP server, answers requests synchronously with RESPONDER or keeps them pending."""

    def __init__(self, name, signature_help_provider=True,
                 trigger_characters=None, retrigger_characters=None,
                 responder: Optional[Callable[[dict], Any]] = None):
        self.server_info = {"name": name}
        self.server_name = "test-project#{}".format(name)
        self.signature_help_provider = signature_help_provider
        self.signature_help_trigger_characters = trigger_characters or []
        self.signature_help_retrigger_characters = retrigger_characters or []
        self.responder = responder

        self.sender = FakeSender(self)
        self.request_dict = dict()
        self.requests: List[tuple] = []
        self.notifications: List[tuple] = []
        self.attached_files: List[str] = []
        self.closed_files: List[str] = []

    def attach(self, fa):
        self.attached_files.append(fa.filepath)

    def record_request_id(self, request_id, handler):
        self.request_dict[request_id] = handler

    def parse_document_uri(self, filepath):
        return path_to_uri(filepath)

    def respond(self, request_id, response):
        handler = self.request_dict.pop(request_id)
        if isinstance(response, ErrorResponse):
            handler.handle_error(request_id, response.error)
        else:
            handler.handle_response(request_id, response)

    def send_did_change_notification(self, filepath, version, start, end, range_length, text):
        self.notifications.append(("textDocument/didChange", filepath, version, text))

    def send_whole_change_notification(self, filepath, version, file_content):
        self.notifications.append(("textDocument/didChange", filepath, version, file_content))

    def send_did_save_notification(self, filepath):
        self.notifications.append(("textDocument/didSave", filepath))

    def close_file(self, filepath):
        self.closed_files.append(filepath)


def answer(signature_help):
    """Responder returning SIGNATURE_HELP for every request."""
    return lambda params: signature_help


def never_answer(params):
    return NO_RESPONSE


def wait_until(predicate: Callable[[], bool], timeout=5):
    tick = 0.0
    while not predicate():
        time.sleep(0.01)
        tick += 0.01
        if tick >= timeout:
            logger.error("timeout")
            return False
    return True


@dataclass
class SingleFile:
    filename: str
    code: str


def with_file(file: SingleFile):
    def decorator(func):
        def wrapper(*args, **kwargs):
            with tempfile.NamedTemporaryFile(delete=False, suffix=file.filename) as t_file:
                t_file.write(file.code.encode('utf-8'))
                t_file.close()

                try:
                    func(*args, **kwargs, filename=t_file.name)
                finally:
                    os.remove(t_file.name)
        return wrapper
    return decorator


class SignatureBridgeTestCase(unittest.TestCase):
    emacs_vars: Optional[Dict[str, Any]] = None

    def setUp(self):
        self.emacs = FakeEmacs(self.emacs_vars)
        self.emacs.install()

    def tearDown(self):
        self.emacs.uninstall()

    def create_file_action(self, *lsp_servers, filepath=TEST_FILEPATH) -> FileAction:
        return FileAction(filepath, list(lsp_servers))


FN_SIGNATURE_HELP = {
    "signatures": [
        {
            "label": "fn(a: int, b: string)",
            "parameters": [
                {"label": "a: int"},
                {"label": "b: string"}
            ]
        }
    ],
    "activeParameter": 1
}

FN_SIGNATURE_HELP_FIRST_PARAMETER = {
    "signatures": FN_SIGNATURE_HELP["signatures"],
    "activeParameter": 0
}

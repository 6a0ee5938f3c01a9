import queue
from typing import Dict

from core.handler import Handler
from core.utils import *

# SignatureHelpTriggerKind in LSP.
TRIGGER_KIND_INVOKED = 1
TRIGGER_KIND_TRIGGER_CHARACTER = 2
TRIGGER_KIND_CONTENT_CHANGE = 3


def signature_help_client_capabilities() -> dict:
    return {
        "textDocument": {
            "signatureHelp": {
                "dynamicRegistration": False,
                "signatureInformation": {
                    "documentationFormat": [
                        "markdown",
                        "plaintext"
                    ],
                    "parameterInformation": {
                        "labelOffsetSupport": True
                    },
                    "activeParameterSupport": True
                },
                "contextSupport": True
            }
        }
    }


def build_signature_help_context(trigger_kind, is_retrigger, active_signature_help=None, trigger_character=None) -> dict:
    context = {
        "triggerKind": trigger_kind,
        "isRetrigger": is_retrigger
    }

    if trigger_character is not None:
        context["triggerCharacter"] = trigger_character

    # Only a retrigger carries the result currently displayed.
    if is_retrigger and active_signature_help is not None:
        context["activeSignatureHelp"] = active_signature_help

    return context


class SignatureHelp(Handler):
    name = "signature_help"
    method = "textDocument/signatureHelp"
    provider = "signature_help_provider"

    def __init__(self, file_action):
        super().__init__(file_action)

        # Requests still waited by dispatcher, keyed by request id.
        self.response_waiters: Dict[int, queue.Queue] = dict()

    def process_request(self, position, context) -> dict:
        # textDocument will be injected by FileAction.send_server_request
        self.response_waiters[self.latest_request_id] = queue.Queue()
        return dict(position=position, context=context)

    def handle_response(self, request_id, response):
        # Every waited request is answered, not only the latest one,
        # the session decides which answer is outdated.
        waiter = self.response_waiters.get(request_id)
        if waiter is None:
            logger.debug("Discard response of abandoned request %d", request_id)
            return

        waiter.put(response)

    def handle_error(self, request_id, error):
        super().handle_error(request_id, error)
        self.handle_response(request_id, None)

    def wait_response(self, request_id, timeout):
        """Wait response of REQUEST_ID at most TIMEOUT milliseconds.

        Raise queue.Empty if LSP server doesn't answer in time,
        the late response will be discarded by handle_response.
        """
        waiter = self.response_waiters.get(request_id)
        if waiter is None:
            return None

        try:
            return waiter.get(timeout=timeout / 1000)
        finally:
            self.response_waiters.pop(request_id, None)

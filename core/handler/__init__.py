import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.fileaction import FileAction
from core.utils import *

class Handler(abc.ABC):
    name: str  # Name called by Emacs
    method: str  # Method name defined by LSP
    send_document_uri = True

    def __init__(self, file_action: "FileAction"):
        self.latest_request_id = -1  # Latest request id
        self.file_action = file_action

    def process_request(self, *args, **kwargs) -> dict:
        """Called from Emacs, return the request params."""
        raise NotImplementedError()

    def handle_response(self, request_id, response) -> None:
        """Called when LSP server answers the request."""
        raise NotImplementedError()

    def handle_error(self, request_id, error):
        """Called when LSP server answers the request with an error."""
        logger.error("Request %d (%s) failed: %s", request_id, self.method, error.get("message", error))

# import subclasses so that we can use core.handler.Handler.__subclasses__()
# import at the end of this file to avoid circular import
from core.handler.signature_help import SignatureHelp

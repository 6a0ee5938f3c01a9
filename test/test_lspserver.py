import io
import json
import queue
import unittest
from unittest import mock

from core.lspserver import LspServer, LspServerReceiver, LspServerSender
from test.common import *


class LspServerTestCase(SignatureBridgeTestCase):
    server_info = {
        "name": "pylsp",
        "languageId": "python",
        "command": ["pylsp"],
        "settings": {"pylsp": {"plugins": {"jedi_signature_help": {"enabled": True}}}}
    }

    def create_lsp_server(self, **server_info) -> LspServer:
        with mock.patch("core.lspserver.subprocess.Popen"):
            lsp_server = LspServer(
                message_queue=queue.Queue(),
                project_path=str(BASE_DIR),
                server_info=dict(self.server_info, **server_info),
                server_name="{}#pylsp".format(BASE_DIR))

        lsp_server.sender = mock.Mock()
        return lsp_server


class Capabilities(LspServerTestCase):
    def test_signature_help_capabilities(self):
        capabilities = self.create_lsp_server().get_capabilities()

        self.assertEqual(capabilities["textDocument"]["signatureHelp"], {
            "dynamicRegistration": False,
            "signatureInformation": {
                "documentationFormat": ["markdown", "plaintext"],
                "parameterInformation": {"labelOffsetSupport": True},
                "activeParameterSupport": True
            },
            "contextSupport": True
        })
        self.assertTrue(capabilities["workspace"]["configuration"])

    def test_merge_server_capabilities(self):
        capabilities = self.create_lsp_server(capabilities={
            "textDocument": {"hover": {"contentFormat": ["plaintext"]}},
            "experimental": {"snippetTextEdit": True}
        }).get_capabilities()

        self.assertEqual(capabilities["textDocument"]["hover"], {"contentFormat": ["plaintext"]})
        self.assertTrue(capabilities["experimental"]["snippetTextEdit"])
        self.assertIn("signatureHelp", capabilities["textDocument"])

    def test_initialize_request(self):
        lsp_server = self.create_lsp_server()
        lsp_server.send_initialize_request()

        (method, params, request_id) = lsp_server.sender.send_request.call_args[0]
        self.assertEqual(method, "initialize")
        self.assertEqual(request_id, lsp_server.initialize_id)
        self.assertEqual(params["clientInfo"]["version"], "signature-bridge")
        self.assertEqual(params["capabilities"], lsp_server.get_capabilities())


class InitializeResponse(LspServerTestCase):
    def test_signature_help_provider(self):
        lsp_server = self.create_lsp_server()
        lsp_server.handle_recv_message({
            "id": lsp_server.initialize_id,
            "result": {
                "capabilities": {
                    "signatureHelpProvider": {
                        "triggerCharacters": ["(", ","],
                        "retriggerCharacters": [")"]
                    },
                    "textDocumentSync": {"change": 1, "save": {"includeText": True}}
                }
            }
        })

        self.assertEqual(lsp_server.signature_help_provider, {"triggerCharacters": ["(", ","], "retriggerCharacters": [")"]})
        self.assertEqual(lsp_server.signature_help_trigger_characters, ["(", ","])
        self.assertEqual(lsp_server.signature_help_retrigger_characters, [")"])
        self.assertEqual(lsp_server.text_document_sync, 1)
        self.assertTrue(lsp_server.save_include_text)
        self.assertTrue(lsp_server.sender.initialized.set.called)

    def test_without_signature_help_provider(self):
        lsp_server = self.create_lsp_server()
        lsp_server.handle_recv_message({
            "id": lsp_server.initialize_id,
            "result": {"capabilities": {"hoverProvider": True}}
        })

        self.assertFalse(lsp_server.signature_help_provider)
        self.assertEqual(lsp_server.signature_help_trigger_characters, [])


class Messages(LspServerTestCase):
    def test_route_response_to_handler(self):
        lsp_server = self.create_lsp_server()
        handler = mock.Mock()
        lsp_server.record_request_id(42, handler)

        lsp_server.handle_recv_message({"id": 42, "result": FN_SIGNATURE_HELP})

        handler.handle_response.assert_called_once_with(request_id=42, response=FN_SIGNATURE_HELP)
        self.assertNotIn(42, lsp_server.request_dict)

    def test_error_response(self):
        lsp_server = self.create_lsp_server()
        lsp_server.signature_help_provider = True
        handler = mock.Mock()
        lsp_server.record_request_id(7, handler)

        with self.assertLogs("signature-bridge", level="ERROR"):
            lsp_server.handle_recv_message({
                "id": 7,
                "error": {"code": -32601, "message": "Unhandled method textDocument/signatureHelp"}
            })

        handler.handle_error.assert_called_once_with(7, {"code": -32601, "message": "Unhandled method textDocument/signatureHelp"})
        self.assertFalse(lsp_server.signature_help_provider)

    def test_register_capability(self):
        lsp_server = self.create_lsp_server()
        lsp_server.handle_recv_message({
            "id": 3,
            "method": "client/registerCapability",
            "params": {
                "registrations": [{
                    "id": "signature-help",
                    "method": "textDocument/signatureHelp",
                    "registerOptions": {"triggerCharacters": ["("], "retriggerCharacters": [","]}
                }]
            }
        })

        self.assertEqual(lsp_server.signature_help_provider, {"triggerCharacters": ["("], "retriggerCharacters": [","]})
        self.assertEqual(lsp_server.signature_help_trigger_characters, ["("])
        self.assertEqual(lsp_server.signature_help_retrigger_characters, [","])
        lsp_server.sender.send_response.assert_called_once_with(3, None)

    def test_workspace_configuration(self):
        lsp_server = self.create_lsp_server()
        lsp_server.handle_recv_message({
            "id": 5,
            "method": "workspace/configuration",
            "params": {"items": [{"section": "pylsp"}, {"section": "python"}]}
        })

        lsp_server.sender.send_response.assert_called_once_with(5, [self.server_info["settings"]["pylsp"], {}])

    def test_log_message_warnings(self):
        lsp_server = self.create_lsp_server()

        with self.assertLogs("signature-bridge", level="WARNING") as cm:
            lsp_server.handle_recv_message({"method": "window/logMessage", "params": {"type": 4, "message": "indexing"}})
            lsp_server.handle_recv_message({"method": "window/logMessage", "params": {"type": 1, "message": "crashed"}})

        self.assertEqual(len(cm.output), 1)
        self.assertIn("crashed", cm.output[0])

    def test_unsupported_server_request(self):
        lsp_server = self.create_lsp_server()
        lsp_server.handle_recv_message({"id": 9, "method": "window/workDoneProgress/create", "params": {"token": "t"}})

        lsp_server.sender.send_response.assert_called_once_with(9, None)


class DocumentSync(LspServerTestCase):
    @with_file(SingleFile(filename="test.py", code="print('测试')\n"))
    def test_did_open(self, filename):
        lsp_server = self.create_lsp_server()
        file_action = mock.Mock(filepath=filename)
        file_action.read_file.return_value = "print('测试')\n"

        lsp_server.send_did_open_notification(file_action)

        lsp_server.sender.send_notification.assert_called_once_with("textDocument/didOpen", {
            "textDocument": {
                "uri": path_to_uri(filename),
                "languageId": "python",
                "version": 0,
                "text": "print('测试')\n"
            }
        })

    @with_file(SingleFile(filename="test.py", code="x = 1\n"))
    def test_did_save_include_text(self, filename):
        lsp_server = self.create_lsp_server()
        lsp_server.save_include_text = True

        lsp_server.send_did_save_notification(filename)

        lsp_server.sender.send_notification.assert_called_once_with("textDocument/didSave", {
            "textDocument": {"uri": path_to_uri(filename)},
            "text": "x = 1\n"
        })

    def test_incremental_change(self):
        lsp_server = self.create_lsp_server()
        start = {"line": 0, "character": 4}

        lsp_server.send_did_change_notification(TEST_FILEPATH, 3, start, start, 0, "(")

        lsp_server.sender.send_notification.assert_called_once_with("textDocument/didChange", {
            "textDocument": {"uri": path_to_uri(TEST_FILEPATH), "version": 3},
            "contentChanges": [{"range": {"start": start, "end": start}, "rangeLength": 0, "text": "("}]
        })

    def test_full_sync_sends_buffer_content(self):
        lsp_server = self.create_lsp_server()
        lsp_server.text_document_sync = 1
        self.emacs.func_results["get-buffer-content"] = "print(\n"
        start = {"line": 0, "character": 5}

        lsp_server.send_did_change_notification(TEST_FILEPATH, 3, start, start, 0, "(")

        lsp_server.sender.send_notification.assert_called_once_with("textDocument/didChange", {
            "textDocument": {"uri": path_to_uri(TEST_FILEPATH), "version": 3},
            "contentChanges": [{"text": "print(\n"}]
        })

    def test_no_sync(self):
        lsp_server = self.create_lsp_server()
        lsp_server.text_document_sync = 0
        start = {"line": 0, "character": 5}

        lsp_server.send_did_change_notification(TEST_FILEPATH, 3, start, start, 0, "(")
        lsp_server.send_whole_change_notification(TEST_FILEPATH, 4, "print(\n")

        lsp_server.sender.send_notification.assert_not_called()

    def test_language_id_by_extension(self):
        lsp_server = self.create_lsp_server(languageIds={"pyi": "python-stub"})

        self.assertEqual(lsp_server.get_language_id(mock.Mock(filepath="/tmp/a.pyi")), "python-stub")
        self.assertEqual(lsp_server.get_language_id(mock.Mock(filepath="/tmp/a.py")), "python")


class Sender(unittest.TestCase):
    def test_content_length_counts_bytes(self):
        process = mock.Mock()
        process.stdin = io.BytesIO()
        sender = LspServerSender(process, "pylsp", "project")

        sender.send_message({"jsonrpc": "2.0", "method": "x", "params": {"text": "测试"}, "message_type": "notification"})

        data = process.stdin.getvalue()
        (header, body) = data.split(b"\r\n\r\n", 1)
        self.assertEqual(header, "Content-Length: {}".format(len(body)).encode("utf-8"))
        self.assertNotIn(b"message_type", body)


class Receiver(unittest.TestCase):
    def test_read_messages(self):
        body = json.dumps({"jsonrpc": "2.0", "id": 1, "result": {"label": "测试"}}).encode("utf-8")
        process = mock.Mock()
        process.poll.return_value = None
        process.stdout = io.BytesIO(
            b"Content-Length: %d\r\nContent-Type: application/vscode-jsonrpc; charset=utf-8\r\n\r\n" % len(body) + body +
            b"Content-Length: 2\r\n\r\n{}")
        receiver = LspServerReceiver(process, "pylsp")

        receiver.run()

        self.assertEqual(receiver.queue.get_nowait()["content"], {"jsonrpc": "2.0", "id": 1, "result": {"label": "测试"}})
        self.assertEqual(receiver.queue.get_nowait()["content"], {})
        self.assertTrue(receiver.queue.empty())


if __name__ == '__main__':
    unittest.main()

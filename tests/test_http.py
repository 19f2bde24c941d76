"""Tests for the HTTP session and inventory transports."""

import base64
import json

import httpx
import pytest

from psmodule_import.cancellation import CancellationToken
from psmodule_import.errors import OperationCancelledError
from psmodule_import.errors import TransportError
from psmodule_import.models import FileKind
from psmodule_import.remote.http import HttpInventoryEndpoint
from psmodule_import.remote.http import HttpRemoteSession


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_session_invoke_posts_command():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"results": [{"Name": "Tools", "Version": "1.0"}]})

    with HttpRemoteSession("http://server01:8080/api/", client=_client(handler)) as session:
        results = session.invoke("Import-Module", {"Name": "Tools", "PassThru": True})

    assert session.computer_name == "server01"
    assert seen["url"] == "http://server01:8080/api/invoke"
    assert seen["body"] == {"command": "Import-Module", "parameters": {"Name": "Tools", "PassThru": True}}
    assert results == [{"Name": "Tools", "Version": "1.0"}]


def test_session_http_error_is_transport_error():
    def handler(request):
        return httpx.Response(500, text="boom")

    session = HttpRemoteSession("http://server01", client=_client(handler))

    with pytest.raises(TransportError) as exc_info:
        session.invoke("Get-Command", {"Module": "Tools"})
    assert exc_info.value.identifier == "Tools"


def test_session_connection_error_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    session = HttpRemoteSession("http://server01", client=_client(handler))

    with pytest.raises(TransportError):
        session.invoke("Get-Command", {"Module": "Tools"})


def test_session_invalid_json_is_transport_error():
    def handler(request):
        return httpx.Response(200, text="not json")

    session = HttpRemoteSession("http://server01", client=_client(handler))

    with pytest.raises(TransportError):
        session.invoke("Get-Command", {"Module": "Tools"})


def test_session_malformed_body_is_transport_error():
    def handler(request):
        return httpx.Response(200, json={"results": "nope"})

    session = HttpRemoteSession("http://server01", client=_client(handler))

    with pytest.raises(TransportError):
        session.invoke("Get-Command", {"Module": "Tools"})


def test_cancelled_request_is_not_sent():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"results": []})

    token = CancellationToken()
    token.cancel()
    session = HttpRemoteSession("http://server01", client=_client(handler))

    with pytest.raises(OperationCancelledError):
        session.invoke("Get-Command", {"Module": "Tools"}, token)
    assert calls == []


def test_inventory_query_decodes_files():
    seen = {}
    manifest = b"ModuleVersion: '1.0'\n"

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "modules": [
                    {
                        "module_name": "Storage",
                        "is_management_capable": True,
                        "files": [
                            {
                                "file_name": "Storage.psd1",
                                "file_kind": "Manifest",
                                "content": base64.b64encode(manifest).decode("ascii"),
                            }
                        ],
                    }
                ]
            },
        )

    endpoint = HttpInventoryEndpoint("https://cim01/wsman", client=_client(handler))
    modules = endpoint.query_modules(["Stor*"], resource_uri="http://schemas.contoso.com/storage")

    assert seen["body"] == {"names": ["Stor*"], "resource_uri": "http://schemas.contoso.com/storage", "namespace": None}
    assert endpoint.computer_name == "cim01"
    assert modules[0].module_name == "Storage"
    assert modules[0].files[0].file_kind == FileKind.MANIFEST
    assert modules[0].main_manifest.raw_bytes == manifest


def test_inventory_invalid_base64_is_transport_error():
    def handler(request):
        return httpx.Response(
            200,
            json={"modules": [{"module_name": "Storage", "files": [{"file_name": "a.cdxml", "content": "@@@"}]}]},
        )

    endpoint = HttpInventoryEndpoint("https://cim01", client=_client(handler))

    with pytest.raises(TransportError):
        endpoint.query_modules(["Storage"])

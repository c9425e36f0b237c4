"""
forge-server — Response Envelope Tests
========================================

What:  Tests for the success/error envelope helpers.
How:   Helpers return Starlette responses; tests decode their bodies directly.

Test Strategy:
    ✅ Typed errors keep their own status and message
    ✅ Generic exceptions become 500 with the generic message
    ✅ Plain error objects without a status become 400
    ✅ Forwarding variants drop the envelope
    ✅ 204 carries no body; non-success codes are rejected
"""

import json
from datetime import datetime, timezone

import pytest
from starlette.exceptions import HTTPException as StarletteHTTPException

from forge_server.exceptions import HTTPError, NotFoundError, ValidationError
from forge_server.responses import (
    GENERIC_ERROR_MESSAGE,
    forward_data_response,
    forward_error_response,
    handle_error_response,
    send_data_response,
)


def body(response):
    return json.loads(response.body)


class TestHandleErrorResponse:
    def test_not_found_error(self):
        response = handle_error_response(NotFoundError("note", "42"))
        assert response.status_code == 404
        assert body(response) == {"success": False, "message": "note with ID '42' was not found"}

    def test_validation_error(self):
        response = handle_error_response(ValidationError("name is required"))
        assert response.status_code == 400
        assert body(response)["message"] == "name is required"

    def test_http_error_custom_status(self):
        response = handle_error_response(HTTPError("Payment required", status_code=402))
        assert response.status_code == 402
        assert body(response) == {"success": False, "message": "Payment required"}

    def test_generic_exception_is_500(self):
        response = handle_error_response(RuntimeError("db password is hunter2"))
        assert response.status_code == 500
        assert body(response) == {"success": False, "message": GENERIC_ERROR_MESSAGE}

    def test_starlette_http_exception(self):
        response = handle_error_response(StarletteHTTPException(status_code=405, detail="Method Not Allowed"))
        assert response.status_code == 405
        assert body(response)["message"] == "Method Not Allowed"

    def test_status_mapping(self):
        response = handle_error_response({"status": 409, "message": "Conflict"})
        assert response.status_code == 409
        assert body(response) == {"success": False, "message": "Conflict"}

    def test_plain_object_without_status_is_400(self):
        response = handle_error_response({"message": "whatever"})
        assert response.status_code == 400
        assert body(response) == {"success": False, "message": GENERIC_ERROR_MESSAGE}

    def test_string_is_400(self):
        assert handle_error_response("boom").status_code == 400

    def test_non_numeric_status_is_400(self):
        response = handle_error_response({"status": "teapot", "message": "nope"})
        assert response.status_code == 400
        assert body(response) == {"success": False, "message": GENERIC_ERROR_MESSAGE}

    def test_out_of_range_status_is_400(self):
        assert handle_error_response({"status": 42, "message": "nope"}).status_code == 400

    def test_status_attribute_on_plain_exception_ignored(self):
        class Teapot(Exception):
            status_code = 418

        response = handle_error_response(Teapot())
        assert response.status_code == 500
        assert body(response)["message"] == GENERIC_ERROR_MESSAGE


class TestSendDataResponse:
    def test_default_ok(self):
        response = send_data_response({"id": 1})
        assert response.status_code == 200
        assert body(response) == {"success": True, "data": {"id": 1}}

    def test_created(self):
        assert send_data_response([1, 2], status_code=201).status_code == 201

    def test_no_content_has_no_body(self):
        response = send_data_response(None, status_code=204)
        assert response.status_code == 204
        assert response.body == b""

    def test_non_success_code_rejected(self):
        with pytest.raises(ValueError):
            send_data_response({}, status_code=404)

    def test_datetimes_encoded(self):
        moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert body(send_data_response({"at": moment}))["data"]["at"] == "2024-01-02T03:04:05+00:00"


class TestForwarding:
    def test_forward_data_is_raw(self):
        response = forward_data_response({"upstream": True}, status_code=202)
        assert response.status_code == 202
        assert body(response) == {"upstream": True}

    def test_forward_error_has_message_only(self):
        response = forward_error_response(NotFoundError())
        assert response.status_code == 404
        assert body(response) == {"message": "The requested resource was not found"}

    def test_forward_error_generic(self):
        response = forward_error_response(KeyError("x"))
        assert response.status_code == 500
        assert body(response) == {"message": GENERIC_ERROR_MESSAGE}

    def test_forward_data_rejects_error_code(self):
        with pytest.raises(ValueError):
            forward_data_response({}, status_code=500)

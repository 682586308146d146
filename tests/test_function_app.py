"""Test the Azure Functions ASGI entry point."""

import pytest

func = pytest.importorskip("azure.functions")


def test_function_app_wraps_fastapi_app():
    import function_app

    assert isinstance(function_app.app, func.AsgiFunctionApp)

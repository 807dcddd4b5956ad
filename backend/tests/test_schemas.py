import importlib.util
import warnings

import pytest
from pydantic import PydanticDeprecatedSince20, ValidationError

from conftest import make_params


def test_order_models_load_without_deprecated_config():
    spec = importlib.util.find_spec("hidden_orders.schemas.orders")
    module = importlib.util.module_from_spec(spec)
    with warnings.catch_warnings():
        warnings.simplefilter("error", PydanticDeprecatedSince20)
        spec.loader.exec_module(module)

    assert module.OrderParameters.model_config["frozen"] is True
    assert module.CamelModel.model_config["populate_by_name"] is True


def test_order_parameters_are_frozen():
    params = make_params(1234)
    with pytest.raises(ValidationError):
        params.maker = "0x" + "00" * 20

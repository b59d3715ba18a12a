import numpy as np

from iohcma.utils import convert_to_serializable, is_jsonable, sanitize


def test_is_jsonable():
    assert is_jsonable({"a": 1})
    assert not is_jsonable(set([1, 2, 3]))


def test_sanitize_non_finite_floats():
    assert sanitize({"a": float("inf"), "b": [1.0, float("nan")]}) == {
        "a": "inf",
        "b": [1.0, "nan"],
    }


def test_convert_to_serializable():
    data = {
        "a": np.int32(5),
        "b": np.float64(3.14),
        "arr": np.array([1, 2, 3]),
        "nested": (np.array([np.inf]), "x"),
        "normal": "string",
        "obj": object,
    }
    s = convert_to_serializable(data)
    assert s["a"] == 5
    assert s["b"] == 3.14
    assert s["arr"] == [1, 2, 3]
    assert s["nested"] == [["inf"], "x"]
    assert s["normal"] == "string"
    assert isinstance(s["obj"], str)

import pytest


DOC = {"_id": 1, "name": "Ada"}


@pytest.mark.parametrize(
    "helper, args, chain",
    [
        ("db_list", (), (("db_list", ()),)),
        ("db_create", ("shop",), (("db_create", ("shop",)),)),
        ("table_list", ("shop",), (("db", ("shop",)), ("table_list", ()))),
        (
            "table_create",
            ("shop", "orders"),
            (("db", ("shop",)), ("table_create", ("orders",))),
        ),
        (
            "table_delete",
            ("shop", "orders"),
            (("db", ("shop",)), ("table_drop", ("orders",))),
        ),
        (
            "get",
            ("shop", "orders", 7),
            (("db", ("shop",)), ("table", ("orders",)), ("get", (7,))),
        ),
        (
            "delete",
            ("shop", "orders", 7),
            (("db", ("shop",)), ("table", ("orders",)), ("get", (7,)), ("delete", ())),
        ),
        (
            "insert",
            ("shop", "orders", DOC, {"conflict": "replace"}),
            (
                ("db", ("shop",)),
                ("table", ("orders",)),
                ("insert", (DOC, {"conflict": "replace"})),
            ),
        ),
    ],
)
def test_shorthand_builds_query_and_executes(layer, store, recorder, helper, args, chain):
    layer.acquire(lambda error, session: None)

    getattr(layer, helper)(*args, recorder)

    assert recorder.error is None
    assert recorder.result == {"connection": store.handle, "chain": chain}


def test_shorthand_forwards_query_to_execute_unchanged(layer, monkeypatch):
    forwarded = []
    monkeypatch.setattr(layer, "execute", lambda query, callback: forwarded.append((query, callback)))

    def callback(error, result=None):
        pass

    layer.insert("shop", "orders", DOC, None, callback)

    query, cb = forwarded[0]
    assert cb is callback
    assert query.chain[-1] == ("insert", (DOC, None))

from dispatch.storage.jsonl_table import JsonlTable


def test_upsert_and_get_in_memory():
    table = JsonlTable("orders")
    table.upsert({"id": "a", "status": "pending"})
    table.upsert({"id": "a", "status": "confirmed"})

    assert table.get("a") == {"id": "a", "status": "confirmed"}
    assert table.count() == 1


def test_returned_rows_are_copies():
    table = JsonlTable("orders")
    table.upsert({"id": "a", "status": "pending"})

    row = table.get("a")
    row["status"] = "hacked"

    assert table.get("a")["status"] == "pending"


def test_replay_applies_latest_line_and_tombstones(tmp_path):
    path = str(tmp_path / "orders.jsonl")

    table = JsonlTable("orders", path=path)
    table.upsert({"id": "a", "status": "pending"})
    table.upsert({"id": "b", "status": "pending"})
    table.upsert({"id": "a", "status": "confirmed"})
    table.delete("b")

    reopened = JsonlTable("orders", path=path)

    assert reopened.get("a")["status"] == "confirmed"
    assert reopened.get("b") is None
    assert reopened.count() == 1


def test_corrupt_lines_are_skipped(tmp_path):
    path = tmp_path / "orders.jsonl"
    path.write_text('{"id": "a", "total": 1}\nnot json\n\n{"id": "b", "total": 2}\n', encoding="utf-8")

    table = JsonlTable("orders", path=str(path))

    assert sorted(r["id"] for r in table.all()) == ["a", "b"]


def test_missing_key_raises():
    table = JsonlTable("orders")
    try:
        table.upsert({"status": "pending"})
        assert False, "expected ValueError"
    except ValueError as e:
        assert "missing key" in str(e)


def test_delete_unknown_returns_false_and_clear_empties(tmp_path):
    path = str(tmp_path / "t.jsonl")
    table = JsonlTable("t", path=path)
    table.upsert({"id": "a"})

    assert table.delete("zzz") is False

    table.clear()
    assert table.count() == 0
    assert JsonlTable("t", path=path).count() == 0

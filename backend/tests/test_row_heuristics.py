"""Tests for result-row cell classification."""

from auction_bot.services.row_heuristics import (
    classify_cells,
    looks_like_district,
    looks_like_mileage,
    looks_like_price,
    looks_like_year,
)

# Cell texts as they appear in the auction result table (one <td> each)
TABLE_ROW = ["12345", "トヨタ ヤリス ハイブリッド", "Z", "2021年", "東京", "1.2万km", "165.0万円"]
LIST_ROW = ["日産 ノート e-POWER", "X", "R2年式", "大阪府", "32,000km", "¥1,280,000"]

def test_classify_table_row():
    fields = classify_cells(TABLE_ROW)
    assert fields == {
        "title": "トヨタ ヤリス ハイブリッド",
        "grade": "Z",
        "year": "2021年",
        "district": "東京",
        "mileage_text": "1.2万km",
        "price_text": "165.0万円",
    }

def test_classify_list_row_with_era_year():
    fields = classify_cells(LIST_ROW)
    assert fields["title"] == "日産 ノート e-POWER"
    assert fields["grade"] == "X"
    assert fields["year"] == "R2年式"
    assert fields["district"] == "大阪府"
    assert fields["mileage_text"] == "32,000km"
    assert fields["price_text"] == "¥1,280,000"

def test_lot_numbers_and_blanks_are_ignored():
    fields = classify_cells(["", "  ", "0042", "ホンダ フィット"])
    assert fields == {"title": "ホンダ フィット"}

def test_mileage_is_not_mistaken_for_price():
    assert looks_like_mileage("5万km")
    fields = classify_cells(["スズキ ジムニー", "5万km"])
    assert fields["mileage_text"] == "5万km"
    assert "price_text" not in fields

def test_shape_predicates():
    assert looks_like_price("98万円")
    assert not looks_like_price("ヤリス")
    assert looks_like_year("H30年")
    assert looks_like_year("2019")
    assert not looks_like_year("2019年モデル ヤリス")
    assert looks_like_district("横浜会場")
    assert not looks_like_district("トヨタ アルファード エグゼクティブラウンジ")

def test_empty_row():
    assert classify_cells([]) == {}

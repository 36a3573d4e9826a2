"""Tests for the art, board and queue item models."""

import json
from pathlib import Path

import pytest

from ftplace.models.art import TRANSPARENT, ArtFileError, PixelArt, find_art, list_art_files, load_art_file
from ftplace.models.board import BoardSnapshot, ColorInfo
from ftplace.models.queue_item import QueueItem, QueueStatus


class TestArtFiles:

    def test_load_derives_size_and_name(self, tmp_path: Path) -> None:
        path = tmp_path / "smiley.json"
        path.write_text(json.dumps({
            "pattern": [{"x": 0, "y": 0, "color": 2}, {"x": 2, "y": 1, "color_id": 3}],
        }))

        art = load_art_file(path)

        assert art.name == "smiley"
        assert (art.width, art.height) == (3, 2)
        assert art.pattern[1].color == 3

    def test_explicit_name_and_size_kept(self, tmp_path: Path) -> None:
        path = tmp_path / "file.json"
        path.write_text(json.dumps({
            "name": "Logo", "width": 10, "height": 4,
            "pattern": [{"x": 0, "y": 0, "color": 2}],
        }))
        art = load_art_file(path)
        assert (art.name, art.width, art.height) == ("Logo", 10, 4)

    @pytest.mark.parametrize("content", ["{", json.dumps({"pattern": [{"x": 0}]}), json.dumps([1])])
    def test_malformed_files_raise(self, tmp_path: Path, content) -> None:
        path = tmp_path / "bad.json"
        path.write_text(content)
        with pytest.raises(ArtFileError):
            load_art_file(path)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ArtFileError):
            load_art_file(tmp_path / "absent.json")

    def test_listing_and_lookup(self, tmp_path: Path) -> None:
        (tmp_path / "b.json").write_text(json.dumps({"pattern": [{"x": 0, "y": 0, "color": 1}]}))
        (tmp_path / "a.json").write_text(json.dumps({"pattern": [{"x": 0, "y": 0, "color": 1}]}))
        (tmp_path / "junk.json").write_text("nope")

        assert [a.name for a in list_art_files(tmp_path)] == ["a", "b"]
        assert find_art(tmp_path, "b").name == "b"
        assert find_art(tmp_path, "c") is None
        assert list_art_files(tmp_path / "missing") == []


class TestBoardSnapshot:

    def test_with_pixels_is_copy_on_write(self) -> None:
        board = BoardSnapshot.blank(4, 4, fill=1)
        new   = board.with_pixels({(1, 1): 2, (9, 9): 3})

        assert board.color_at(1, 1) == 1
        assert new.color_at(1, 1) == 2
        assert new.captured_at == board.captured_at

    def test_grid_size_checked(self) -> None:
        with pytest.raises(ValueError):
            BoardSnapshot(width=2, height=2, colors=(1, 1, 1))

    def test_background_ids_from_palette_names(self) -> None:
        board = BoardSnapshot.blank(1, 1, palette=(
            ColorInfo(0, "None"),
            ColorInfo(1, "Background grey"),
            ColorInfo(2, "red"),
            ColorInfo(3, "alpha"),
        ))
        assert board.background_ids == frozenset({TRANSPARENT, 0, 1, 3})

    def test_empty_payload(self) -> None:
        board = BoardSnapshot.from_api({"colors": [], "board": []}, captured_at=5.0)
        assert (board.width, board.height, board.captured_at) == (0, 0, 5.0)


class TestQueueItem:

    def test_row_round_trip_fields(self) -> None:
        art  = PixelArt.from_tuples([(0, 0, 2)], name="dot")
        item = QueueItem(id="art_1", art=art, anchor_x=3, anchor_y=4, priority=2,
                         status=QueueStatus.PAUSED, pixels_placed=1, pixels_total=5)
        columns = ["id", "position", "art", "anchor_x", "anchor_y", "priority", "status",
                   "pixels_placed", "pixels_total", "fail_reason", "created_at", "started_at", "finished_at"]

        row  = dict(zip(columns, item.to_row(0)))
        back = QueueItem.from_row(row)

        assert back == item

    def test_to_dict(self) -> None:
        item = QueueItem(id="art_1", art=PixelArt.from_tuples([(0, 0, 2)], name="dot"),
                         anchor_x=3, anchor_y=4, priority=2)
        body = item.to_dict()
        assert body["name"] == "dot"
        assert body["status"] == "pending"
        assert body["anchor"] == [3, 4]
        assert body["created_at"]

from pathlib import Path

import pytest

from deskpilot.file_manager import (
    FileManager,
    FileOperationError,
    format_file_size,
    get_file_category,
    get_file_extension,
    resolve_location,
)


class RecordingGuard:
    def __init__(self, allow=True, reason="Blocked"):
        self.allow = allow
        self.reason = reason
        self.validated = []
        self.logged = []

    def validate_file_operation(self, operation, path):
        self.validated.append((operation, path))
        return (self.allow, "" if self.allow else self.reason)

    def log_action(self, action, target, status):
        self.logged.append((action, target, status))


@pytest.fixture
def tree(tmp_path):
    (tmp_path / "b_dir").mkdir()
    (tmp_path / "a_dir").mkdir()
    (tmp_path / "zeta.txt").write_text("hello")
    (tmp_path / "Alpha.PNG").write_bytes(b"12345678")
    (tmp_path / "b_dir" / "nested_alpha.py").write_text("x")
    return tmp_path


def test_list_files_directories_first_then_by_name(tree):
    names = [f.name for f in FileManager().list_files(str(tree))]
    assert names == ["a_dir", "b_dir", "Alpha.PNG", "zeta.txt"]


def test_list_files_metadata(tree):
    infos = {f.name: f for f in FileManager().list_files(str(tree))}
    assert infos["zeta.txt"].size_bytes == len("hello")
    assert infos["zeta.txt"].extension == ".txt"
    assert infos["a_dir"].is_directory is True
    assert infos["a_dir"].size_bytes == 0
    assert infos["Alpha.PNG"].full_path == str(tree / "Alpha.PNG")


@pytest.mark.parametrize("flt", ["", "*", "all"])
def test_list_files_match_all_filters(tree, flt):
    assert len(FileManager().list_files(str(tree), flt)) == 4


def test_list_files_filter_is_case_insensitive(tree):
    names = [f.name for f in FileManager().list_files(str(tree), "ALPHA")]
    assert names == ["Alpha.PNG"]


def test_list_files_missing_directory(tmp_path):
    assert FileManager().list_files(str(tmp_path / "missing")) == []


def test_copy_file_creates_parents_and_logs(tmp_path):
    guard = RecordingGuard()
    src = tmp_path / "src.txt"
    src.write_text("data")
    dst = tmp_path / "out" / "deep" / "copy.txt"
    message = FileManager(guard).copy_file(str(src), str(dst))
    assert message == "Copied: src.txt"
    assert dst.read_text() == "data"
    assert guard.validated == [("copy", str(dst))]
    assert guard.logged == [("copy", f"{src} -> {dst}", "success")]


def test_copy_directory_recursively(tree, tmp_path):
    dst = tmp_path / "copy_of_b"
    FileManager().copy_file(str(tree / "b_dir"), str(dst))
    assert (dst / "nested_alpha.py").read_text() == "x"


def test_copy_missing_source_raises(tmp_path):
    with pytest.raises(FileOperationError, match="Copy failed"):
        FileManager().copy_file(str(tmp_path / "none"), str(tmp_path / "dst"))


def test_guard_refusal_raises_reason(tmp_path):
    src = tmp_path / "keep.txt"
    src.write_text("k")
    guard = RecordingGuard(allow=False, reason="Path is protected")
    manager = FileManager(guard)
    with pytest.raises(FileOperationError, match="Path is protected"):
        manager.move_file(str(src), str(tmp_path / "moved.txt"))
    assert src.exists()
    assert guard.logged == []


def test_move_file(tmp_path):
    src = tmp_path / "m.txt"
    src.write_text("move me")
    dst = tmp_path / "sub" / "m2.txt"
    assert FileManager().move_file(str(src), str(dst)) == "Moved: m.txt"
    assert not src.exists()
    assert dst.read_text() == "move me"


def test_rename_file(tmp_path):
    src = tmp_path / "old.txt"
    src.write_text("r")
    guard = RecordingGuard()
    assert FileManager(guard).rename_file(str(src), "new.txt") == "Renamed to: new.txt"
    assert (tmp_path / "new.txt").read_text() == "r"
    assert guard.validated == [("rename", str(src))]


def test_rename_missing_raises(tmp_path):
    with pytest.raises(FileOperationError, match="Rename failed"):
        FileManager().rename_file(str(tmp_path / "ghost"), "x")


def test_search_recursive_and_flat(tree):
    manager = FileManager()
    recursive = {f.name for f in manager.search_files(str(tree), "alpha")}
    assert recursive == {"Alpha.PNG", "nested_alpha.py"}
    flat = {f.name for f in manager.search_files(str(tree), "alpha", recursive=False)}
    assert flat == {"Alpha.PNG"}


def test_search_respects_max_results(tree):
    results = FileManager().search_files(str(tree), "", recursive=True, max_results=2)
    assert len(results) == 2


def test_search_missing_directory(tmp_path):
    assert FileManager().search_files(str(tmp_path / "nope"), "a") == []


def test_organize_by_type(tree):
    organized = FileManager().organize_by_type(str(tree))
    assert organized == {"Images": ["Alpha.PNG"], "Documents": ["zeta.txt"]}


def test_resolve_location():
    assert resolve_location("Downloads") == str(Path.home() / "Downloads")
    assert resolve_location("photos") == resolve_location("pictures")
    assert resolve_location("/some/where") == "/some/where"


def test_format_file_size():
    assert format_file_size(0) == "0 B"
    assert format_file_size(1024) == "1.0 KB"
    assert format_file_size(5 * 1024 * 1024) == "5.0 MB"
    assert format_file_size(1024**6).endswith(" TB")


def test_get_file_extension():
    assert get_file_extension("archive.tar.gz") == ".gz"
    assert get_file_extension("README") == ""


@pytest.mark.parametrize(
    "ext, category",
    [
        (".JPG", "Images"),
        (".mkv", "Videos"),
        (".flac", "Audio"),
        (".csv", "Documents"),
        (".7z", "Archives"),
        (".msi", "Programs"),
        (".ts", "Code"),
        (".xyz", "Other"),
    ],
)
def test_get_file_category(ext, category):
    assert get_file_category(ext) == category
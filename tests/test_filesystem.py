"""Tests for FileManager path confinement and scanning."""

import os

import pytest

from mediatier.core.errors import PathAuthorizationError
from mediatier.core.filesystem import FileManager, path_key, stem_key

from conftest import write_file


@pytest.fixture
def fm(library):
    return FileManager(str(library))


class TestValidatePath:
    def test_inside_root(self, fm, library):
        path = library / "movies" / "Film (2020)" / "Film.mkv"
        assert fm.validate_path(str(path)) == str(path)

    def test_root_itself(self, fm, library):
        assert fm.validate_path(str(library)) == str(library)

    def test_outside_root_raises(self, fm, tmp_path):
        with pytest.raises(PathAuthorizationError) as exc:
            fm.validate_path(str(tmp_path / "elsewhere" / "file.mkv"))
        assert exc.value.root == fm.root

    def test_traversal_raises(self, fm, library):
        with pytest.raises(PathAuthorizationError):
            fm.validate_path(str(library / "movies" / ".." / ".." / "secret.mkv"))

    def test_sibling_with_common_prefix_raises(self, fm, library):
        with pytest.raises(PathAuthorizationError):
            fm.validate_path(str(library) + "2/movie.mkv")

    def test_is_permission_error(self):
        assert issubclass(PathAuthorizationError, PermissionError)

    def test_delete_outside_root_leaves_file(self, fm, tmp_path):
        outside = write_file(tmp_path / "outside.mkv")
        with pytest.raises(PathAuthorizationError):
            fm.delete_file(str(outside))
        assert outside.exists()


class TestScanDirectory:
    def test_finds_media_extensions_only(self, fm, library):
        write_file(library / "movies" / "A" / "a.mkv")
        write_file(library / "movies" / "B" / "b.MP4")
        write_file(library / "movies" / "C" / "c.strm", "http://stream/c")
        write_file(library / "movies" / "A" / "a.nfo")
        write_file(library / "movies" / "A" / "poster.jpg")

        names = sorted(info.name for info in fm.scan_directory())
        assert names == ["a.mkv", "b.MP4", "c.strm"]

    def test_strm_counts_as_symlink(self, fm, library):
        write_file(library / "movies" / "C" / "c.strm", "http://stream/c")
        info = fm.scan_directory()[0]
        assert info.is_symlink is True

    def test_filesystem_link_counts_as_symlink(self, fm, library, tmp_path):
        target = write_file(tmp_path / "remote" / "film.mkv", "x" * 10)
        link = library / "movies" / "Film" / "film.mkv"
        link.parent.mkdir(parents=True)
        os.symlink(target, link)

        info = fm.scan_directory()[0]
        assert info.is_symlink is True
        assert info.symlink_target == str(target)
        assert info.size == 10

    def test_regular_file_size(self, fm, library):
        write_file(library / "movies" / "A" / "a.mkv", "12345")
        info = fm.scan_directory()[0]
        assert info.is_symlink is False
        assert info.size == 5

    def test_missing_root_returns_empty(self, tmp_path):
        assert FileManager(str(tmp_path / "absent")).scan_directory() == []

    def test_non_recursive(self, fm, library):
        write_file(library / "top.mkv")
        write_file(library / "movies" / "deep.mkv")
        names = [info.name for info in fm.scan_directory(recursive=False)]
        assert names == ["top.mkv"]


class TestFileOperations:
    def test_delete_file(self, fm, library):
        path = write_file(library / "movies" / "a.mkv")
        assert fm.delete_file(str(path)) is True
        assert not path.exists()

    def test_delete_missing_returns_false(self, fm, library):
        assert fm.delete_file(str(library / "movies" / "nope.mkv")) is False

    def test_delete_empty_directory(self, fm, library):
        directory = library / "movies" / "Empty"
        directory.mkdir()
        assert fm.delete_file(str(directory)) is True
        assert not directory.exists()

    def test_delete_non_empty_directory_refused(self, fm, library):
        write_file(library / "movies" / "Full" / "a.mkv")
        with pytest.raises(OSError):
            fm.delete_file(str(library / "movies" / "Full"))

    def test_strm_target(self, fm, library):
        path = write_file(library / "movies" / "c.strm", "http://stream/c\n")
        assert fm.get_symlink_target(str(path)) == "http://stream/c"

    def test_find_media_sibling(self, fm, library):
        placeholder = library / "movies" / "Film" / "Film.strm"
        imported = write_file(library / "movies" / "Film" / "Film.mkv")
        write_file(library / "movies" / "Film" / "Film.nfo")
        assert fm.find_media_sibling(str(placeholder)) == str(imported)

    def test_no_sibling(self, fm, library):
        write_file(library / "movies" / "Film" / "Other.mkv")
        assert fm.find_media_sibling(str(library / "movies" / "Film" / "Film.strm")) is None


class TestPathKeys:
    def test_path_key_normalizes(self):
        assert path_key("C:\\Media\\TV\\Show\\") == "c:/media/tv/show"

    def test_stem_key(self):
        assert stem_key("/media/Movies/Film.STRM") == "/media/movies/film"

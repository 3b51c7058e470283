"""
Tests for the local storage provider.
"""
import io

from sitework.storage.provider import StorageProvider


class TestLocalStorage:
    def test_save_open_delete(self, storage):
        storage.save("documents/rams.pdf", b"%PDF-1.4")
        storage.save("exports/run.json", io.BytesIO(b"{}"))
        assert storage.open("documents/rams.pdf") == b"%PDF-1.4"
        assert storage.open("exports/run.json") == b"{}"

        storage.delete("documents/rams.pdf")
        assert not storage.exists("documents/rams.pdf")
        storage.delete("documents/rams.pdf")

    def test_keys_stay_inside_base_dir(self, storage, tmp_path):
        storage.save("/../../escape.txt", b"x")
        assert storage.exists("escape.txt")
        assert not (tmp_path / "escape.txt").exists()

    def test_interface_is_bytes_only(self):
        public = {name for name in vars(StorageProvider) if not name.startswith("_")}
        assert public == {"save", "open", "exists", "delete"}

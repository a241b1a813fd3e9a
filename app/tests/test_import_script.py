"""
Tests for reading import payloads from disk (scripts/import_archive.py).
"""

from argparse import Namespace

from scripts.import_archive import read_payload
from services.archive_codec import bundle_from_folder_tree


def args_for(**kwargs) -> Namespace:
    values = {"archive": None, "csv": None, "json": None, "folder": None}
    values.update(kwargs)
    return Namespace(**values)


class TestReadPayload:

    def test_single_vehicle_folder_keeps_its_name(self, tmp_path):
        grom = tmp_path / "Grom"
        grom.mkdir()
        (grom / "a.jpg").write_bytes(b"a")

        payload = read_payload(args_for(folder=str(grom)))

        assert payload.folder_files == [("Grom/a.jpg", b"a")]
        assert list(bundle_from_folder_tree(payload.folder_files, "photos").vehicles) == ["Grom"]

    def test_folder_of_vehicle_folders(self, tmp_path):
        drop = tmp_path / "drop"
        for name in ("Bumblebee", "Wrench"):
            (drop / name).mkdir(parents=True)
            (drop / name / "side.jpg").write_bytes(name.encode())
        (drop / "loose.jpg").write_bytes(b"x")

        payload = read_payload(args_for(folder=str(drop)))
        bundle = bundle_from_folder_tree(payload.folder_files, "photos")

        assert set(bundle.vehicles) == {"drop", "Bumblebee", "Wrench"}
        assert [f.data for f in bundle.vehicles["Wrench"].photos] == [b"Wrench"]
        assert [f.name for f in bundle.vehicles["drop"].photos] == ["loose.jpg"]

    def test_vehicle_json(self, tmp_path):
        path = tmp_path / "Bee.json"
        path.write_bytes(b'\xef\xbb\xbf{"vehicle": {"name": "Bee"}}')

        payload = read_payload(args_for(json=str(path)))

        assert payload.json_text == '{"vehicle": {"name": "Bee"}}'

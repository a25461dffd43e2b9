import pytest

from .options import RestoreOptions, parse_resize_entries


class TestParseResizeEntries:

    def test_entries(self):
        assert parse_resize_entries(["rootdisk=50Gi", " datadisk = 100Gi "]) == {
            "rootdisk": "50Gi",
            "datadisk": "100Gi",
        }

    def test_later_entry_wins(self):
        assert parse_resize_entries(["rootdisk=50Gi", "rootdisk=60Gi"]) == {"rootdisk": "60Gi"}

    def test_none(self):
        assert parse_resize_entries(None) == {}

    @pytest.mark.parametrize("entry", ["rootdisk", "=50Gi", "rootdisk=", ""])
    def test_malformed(self, entry):
        with pytest.raises(ValueError, match="expected <disk>=<size>"):
            parse_resize_entries([entry])


def test_options_are_immutable():
    options = RestoreOptions(restore_point="rpc")

    with pytest.raises(AttributeError):
        options.force = True

    assert options.to_dict()["resize_disks"] == {}

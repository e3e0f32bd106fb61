"""Unit tests for data directory resolution."""

from pathlib import Path

import pytest

from odoo_restore.core.exceptions import DataDirectoryUnresolvable
from odoo_restore.services.datadir import read_data_dir_setting, resolve_data_dir


DEFAULT = Path("/var/lib/odoo")


def write_conf(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "odoo.conf"
    path.write_text(content)
    return path


class TestReadDataDirSetting:
    """Tests for reading the raw data_dir value."""

    def test_options_section(self, tmp_path):
        """data_dir is read from [options]."""
        conf = write_conf(tmp_path, "[options]\nadmin_passwd = x\ndata_dir = /srv/odoo\n")
        assert read_data_dir_setting(conf) == "/srv/odoo"

    def test_inline_comment(self, tmp_path):
        """Inline comments are not part of the value."""
        conf = write_conf(tmp_path, "[options]\ndata_dir = /srv/odoo ; moved in 2023\n")
        assert read_data_dir_setting(conf) == "/srv/odoo"

    def test_missing_key(self, tmp_path):
        """No data_dir key gives None."""
        conf = write_conf(tmp_path, "[options]\ndb_host = False\n")
        assert read_data_dir_setting(conf) is None

    def test_no_section_header(self, tmp_path):
        """Plain key = value files are accepted."""
        conf = write_conf(tmp_path, "# odoo\ndata_dir = /opt/odoo-data\n")
        assert read_data_dir_setting(conf) == "/opt/odoo-data"

    def test_percent_sign_is_literal(self, tmp_path):
        """Values are not interpolated."""
        conf = write_conf(tmp_path, "[options]\ndata_dir = /srv/odoo%1\n")
        assert read_data_dir_setting(conf) == "/srv/odoo%1"

    def test_unreadable(self, tmp_path):
        """A directory in place of the file cannot be read."""
        with pytest.raises(DataDirectoryUnresolvable):
            read_data_dir_setting(tmp_path)


class TestResolveDataDir:
    """Tests for resolve_data_dir."""

    def test_configured_value(self, tmp_path):
        """An absolute data_dir wins over the default."""
        conf = write_conf(tmp_path, "[options]\ndata_dir = /srv/odoo\n")
        assert resolve_data_dir(conf, default=DEFAULT) == Path("/srv/odoo")

    def test_missing_config_uses_default(self, tmp_path):
        """No instance config means the default data directory."""
        assert resolve_data_dir(tmp_path / "absent.conf", default=DEFAULT) == DEFAULT

    def test_missing_key_uses_default(self, tmp_path):
        """A config without data_dir means the default."""
        conf = write_conf(tmp_path, "[options]\nhttp_port = 8069\n")
        assert resolve_data_dir(conf, default=DEFAULT) == DEFAULT

    def test_quoted_value(self, tmp_path):
        """Surrounding quotes are stripped."""
        conf = write_conf(tmp_path, '[options]\ndata_dir = "/srv/odoo"\n')
        assert resolve_data_dir(conf, default=DEFAULT) == Path("/srv/odoo")

    def test_empty_value(self, tmp_path):
        """An empty data_dir is an error, not a silent default."""
        conf = write_conf(tmp_path, "[options]\ndata_dir =\n")
        with pytest.raises(DataDirectoryUnresolvable):
            resolve_data_dir(conf, default=DEFAULT)

    def test_relative_value(self, tmp_path):
        """A relative data_dir is refused."""
        conf = write_conf(tmp_path, "[options]\ndata_dir = odoo-data\n")
        with pytest.raises(DataDirectoryUnresolvable) as exc:
            resolve_data_dir(conf, default=DEFAULT)
        assert "absolute" in str(exc.value)

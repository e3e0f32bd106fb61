"""Instance data directory resolution.

The instance config (odoo.conf) is an INI file whose [options] section
may define data_dir. Only that key is read here.
"""

import configparser
from pathlib import Path
from typing import Optional

from odoo_restore.core.config import DEFAULT_DATA_DIR, DEFAULT_INSTANCE_CONFIG_PATH
from odoo_restore.core.exceptions import DataDirectoryUnresolvable
from odoo_restore.core.output import console


DATA_DIR_KEY = "data_dir"
OPTIONS_SECTION = "options"


def _parse_plain(content: str) -> Optional[str]:
    """Fallback for key = value files without a section header."""
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith((";", "#", "[")):
            continue
        key, sep, value = line.partition("=")
        if sep and key.strip() == DATA_DIR_KEY:
            return value.split(";")[0].split(" #")[0].strip()
    return None


def read_data_dir_setting(config_path: Path) -> Optional[str]:
    """Read the raw data_dir value from an instance config file.

    Returns:
        The value, or None when the key is not defined

    Raises:
        DataDirectoryUnresolvable: If the file cannot be read
    """
    try:
        content = config_path.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise DataDirectoryUnresolvable(
            f"Cannot read instance config: {config_path}",
            hint="Check file permissions or run with sudo",
            details=[str(e)],
        ) from e

    parser = configparser.ConfigParser(
        inline_comment_prefixes=(";", "#"),
        comment_prefixes=(";", "#"),
        interpolation=None,
        strict=False,
    )
    try:
        parser.read_string(content)
    except configparser.MissingSectionHeaderError:
        return _parse_plain(content)
    except configparser.Error as e:
        raise DataDirectoryUnresolvable(
            f"Cannot parse instance config: {config_path}",
            details=[str(e)],
        ) from e

    if parser.has_option(OPTIONS_SECTION, DATA_DIR_KEY):
        return parser.get(OPTIONS_SECTION, DATA_DIR_KEY)

    for section in parser.sections():
        if parser.has_option(section, DATA_DIR_KEY):
            return parser.get(section, DATA_DIR_KEY)

    return None


def resolve_data_dir(
    config_path: Optional[Path] = None,
    default: Path = DEFAULT_DATA_DIR,
) -> Path:
    """Determine the host's data directory.

    Uses data_dir from the instance config when the file exists and
    defines it, otherwise the default. Writability is not checked.

    Raises:
        DataDirectoryUnresolvable: If the config is unreadable, or data_dir
            is empty or relative
    """
    config_path = config_path or DEFAULT_INSTANCE_CONFIG_PATH

    if not config_path.is_file():
        console.verbose(f"Instance config {config_path} not found, using default data_dir")
        return default

    value = read_data_dir_setting(config_path)
    if value is None:
        console.verbose(f"No data_dir in {config_path}, using default")
        return default

    value = value.strip().strip('"').strip("'")
    if not value:
        raise DataDirectoryUnresolvable(
            f"data_dir is empty in {config_path}",
            hint="Set data_dir to an absolute path or remove the key",
        )

    data_dir = Path(value)
    if not data_dir.is_absolute():
        raise DataDirectoryUnresolvable(
            f"data_dir must be an absolute path: {value}",
            hint=f"Fix data_dir in {config_path}",
        )

    return data_dir

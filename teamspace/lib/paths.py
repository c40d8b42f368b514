from pathlib import Path


def dot_teamspace() -> Path:
    return Path.home() / ".teamspace"


def package_root() -> Path:
    return Path(__file__).resolve().parent.parent


def migrations_dir() -> Path:
    return package_root() / "migrations"


def config_file() -> Path:
    return dot_teamspace() / "config.yaml"


def default_config_file() -> Path:
    return package_root() / "config.yaml"

from pathlib import Path

MEMORY_DB = ":memory:"


def ensure_dir(p: str | Path) -> Path:
    path = Path(p).expanduser().resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_parent(p: str | Path) -> Path:
    """Crea el directorio padre de un archivo y devuelve la ruta absoluta del archivo."""
    path = Path(p).expanduser().resolve()
    ensure_dir(path.parent)
    return path

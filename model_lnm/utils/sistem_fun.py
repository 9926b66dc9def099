"""
Rutas y configuración del proyecto.

- Raíz del proyecto (carpeta que contiene pyproject.toml)
- Lectura de versioning/config.yaml
- Carpetas de artefactos (trazas de las cadenas, resultados del EM)
- Identificadores de experimento
"""

import yaml
from pathlib import Path
from typing import Dict, Optional, Literal
from datetime import datetime

CONFIG_RELATIVE_PATH = Path("versioning") / "config.yaml"
ARTIFACT_KEYS = {"simulation": "simulations", "real": "real"}


def get_project_root(start: Optional[Path] = None) -> Path:
    """
    Sube por los directorios padres hasta encontrar pyproject.toml.

    Parameters
    ----------
    start : Path, optional
        Punto de partida; por defecto la ubicación de este módulo

    Returns
    -------
    Path

    Raises
    ------
    FileNotFoundError
        Si ningún directorio padre contiene pyproject.toml
    """
    current = Path(start).resolve() if start is not None else Path(__file__).resolve()

    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").is_file():
            return parent

    raise FileNotFoundError(f"No hay pyproject.toml por encima de {current}")


def load_config(config_path: Optional[Path] = None) -> Dict:
    """
    Lee el archivo yaml de configuración.

    Parameters
    ----------
    config_path : Path, optional
        Por defecto ``<raíz>/versioning/config.yaml``

    Returns
    -------
    Dict
        Configuración (vacía si el archivo no tiene contenido)

    Raises
    ------
    FileNotFoundError
        Si el archivo no existe
    yaml.YAMLError
        Si el yaml está mal formado
    ValueError
        Si el contenido no es un diccionario
    """
    config_path = Path(config_path) if config_path is not None \
        else get_project_root() / CONFIG_RELATIVE_PATH

    if not config_path.is_file():
        raise FileNotFoundError(f"No existe el archivo de configuración: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"{config_path} no es un yaml válido: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(f"{config_path} debe contener un diccionario en el primer nivel")

    return config


def resolve_path(relative_path: str, root: Optional[Path] = None) -> Path:
    """
    Ruta absoluta para una entrada de config.yaml. Las rutas relativas se
    toman desde ``root`` (la raíz del proyecto si es None), ignorando los
    '../' iniciales.
    """
    path = Path(relative_path)
    if path.is_absolute():
        return path

    parts = list(path.parts)
    while parts and parts[0] == "..":
        parts.pop(0)

    base = Path(root) if root is not None else get_project_root()
    return base.joinpath(*parts)


def get_artifact_path(
    config: Dict,
    data_type: Literal["simulation", "real"] = "simulation",
    root: Optional[Path] = None
) -> Path:
    """
    Carpeta de artefactos para datos simulados o reales; se crea si no existe.

    Parameters
    ----------
    config : Dict
        Configuración con la sección ``artifacts``
    data_type : {'simulation', 'real'}
    root : Path, optional
        Base para resolver la ruta relativa

    Returns
    -------
    Path

    Raises
    ------
    ValueError
        Si ``data_type`` no es 'simulation' ni 'real'
    KeyError
        Si falta ``artifacts.<simulations|real>`` en la configuración
    """
    if data_type not in ARTIFACT_KEYS:
        raise ValueError(f"data_type debe ser 'simulation' o 'real', no '{data_type}'")

    key = ARTIFACT_KEYS[data_type]
    try:
        relative_path = config['artifacts'][key]
    except KeyError as e:
        raise KeyError(f"Falta artifacts.{key} en la configuración") from e

    path = resolve_path(relative_path, root=root)
    path.mkdir(parents=True, exist_ok=True)
    return path


def create_experiment_id(prefix: str = "lnm", G: Optional[int] = None) -> str:
    """
    Identificador ``prefix[_G<G>]_YYYYMMDD_HHMMSS`` para nombrar artefactos.

    >>> create_experiment_id("sim", G=2)  # doctest: +SKIP
    'sim_G2_20241223_143052'
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    if G is not None:
        prefix = f"{prefix}_G{int(G)}"
    return f"{prefix}_{timestamp}"

"""
Persistencia de artefactos en pickle: ``<experiment_id>_<nombre>.pkl``
dentro de la carpeta configurada en ``artifacts``.
"""

import logging
import pickle
from pathlib import Path
from typing import Any, Dict, List, Optional

from model_lnm.utils.sistem_fun import get_artifact_path

logger = logging.getLogger(__name__)


def save_artifact(
    config: Dict,
    experiment_id: str,
    artifact: Any,
    artifact_name: str,
    data_type: str = "simulation",
    root: Optional[Path] = None
) -> Path:
    """
    Serializa ``artifact`` (cubo de trazas, EMTrace, ...) para un experimento.

    Parameters
    ----------
    config : dict
        Configuración con la sección ``artifacts``
    experiment_id : str
    artifact : Any
    artifact_name : str
        Sufijo del archivo, p. ej. 'trace' o 'em'
    data_type : str
        'simulation' o 'real'
    root : Path, optional
        Base para las rutas relativas de la configuración

    Returns
    -------
    Path
        Archivo escrito
    """
    target = get_artifact_path(config, data_type, root=root) / f"{experiment_id}_{artifact_name}.pkl"

    with open(target, 'wb') as f:
        pickle.dump(artifact, f)

    logger.info("Artefacto '%s' guardado en %s", artifact_name, target)
    return target


def save_trace(config, experiment_id, cube, column_names, data_type="simulation", root=None):
    """Guarda el cubo (Niter, columnas, cadenas) junto con los nombres de columna"""
    if len(column_names) != cube.shape[1]:
        raise ValueError(
            f"{len(column_names)} nombres de columna para {cube.shape[1]} columnas de la traza"
        )
    return save_artifact(config, experiment_id, {"trace": cube, "columns": list(column_names)},
                         "trace", data_type=data_type, root=root)


def load_artifact(artifact_path: Path) -> Any:
    """Lee un artefacto guardado con ``save_artifact``"""
    artifact_path = Path(artifact_path)
    if not artifact_path.is_file():
        raise FileNotFoundError(f"No existe el artefacto {artifact_path}")

    with open(artifact_path, 'rb') as f:
        artifact = pickle.load(f)

    logger.info("Artefacto cargado desde %s", artifact_path)
    return artifact


def list_artifacts(
    config: Dict,
    experiment_id: Optional[str] = None,
    data_type: str = "simulation",
    root: Optional[Path] = None
) -> List[Path]:
    """Artefactos de un experimento (o todos), ordenados por nombre"""
    pattern = f"{experiment_id}_*.pkl" if experiment_id else "*.pkl"
    return sorted(get_artifact_path(config, data_type, root=root).glob(pattern))

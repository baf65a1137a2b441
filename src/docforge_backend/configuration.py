from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"
CONFIG_ENV_VAR = "DOCFORGE_CONFIG"


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():  # pragma: no cover - packaging error
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve)  # type: ignore[return-value]


def load_settings(
    overrides: Optional[Dict[str, Any]] = None,
    config_file: Optional[Path] = None,
) -> DictConfig:
    """
    Build the runtime configuration.

    Layers, later wins: packaged defaults, the YAML file named by
    ``config_file`` or ``$DOCFORGE_CONFIG``, then ``overrides``.
    Unknown keys are rejected because the base is in struct mode.
    """
    base = OmegaConf.create(OmegaConf.to_container(_load_default_config(), resolve=False))
    OmegaConf.set_struct(base, True)

    layers = [base]
    file_path = config_file or (Path(os.environ[CONFIG_ENV_VAR]) if os.environ.get(CONFIG_ENV_VAR) else None)
    if file_path is not None:
        layers.append(OmegaConf.load(file_path))
    if overrides:
        layers.append(OmegaConf.create(overrides))

    return OmegaConf.merge(*layers)  # type: ignore[return-value]

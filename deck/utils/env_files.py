# deck/utils/env_files.py
"""
Helpers for artifact ``.env`` files and template variable substitution.
"""
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from dotenv import dotenv_values, set_key

from deck.constants import PORT_VARIABLES, RUNTIME_VARIABLES
from deck.utils.logging import get_logger

logger = get_logger(__name__)

# ${VAR} or {{VAR}}; anything else inside the braces (defaults, filters) is left alone
VARIABLE_PATTERN = re.compile(r"\$\{([^}]+)\}|\{\{([^}]+)\}\}")
BINARY_SNIFF_BYTES = 8192


def read_env(path: Union[str, Path]) -> Dict[str, str]:
    """Read a .env file; missing files read as empty."""
    path = Path(path)
    if not path.is_file():
        return {}
    return {key: value or "" for key, value in dotenv_values(path).items()}


def update_env(path: Union[str, Path], updates: Mapping[str, Union[str, int]]) -> None:
    """Set keys in a .env file in place, appending the ones not present."""
    path = Path(path)
    if not path.exists():
        path.touch()
    for key, value in updates.items():
        set_key(str(path), key, str(value), quote_mode="never")


def port_variables(env: Mapping[str, str], runtime_only: bool = False) -> Dict[str, int]:
    """
    Extract port declarations from parsed .env content.

    Args:
        env: Parsed key/value pairs
        runtime_only: Keep only keys that may change after a build

    Returns:
        Key to port number, in declaration order
    """
    ports: Dict[str, int] = {}
    for key, value in env.items():
        upper = key.upper()
        if upper not in PORT_VARIABLES and not upper.endswith("_PORT"):
            continue
        if runtime_only and upper not in RUNTIME_VARIABLES:
            continue
        try:
            ports[key] = int(str(value).strip())
        except ValueError:
            logger.debug(f"Ignoring non-numeric port variable {key}={value!r}")
    return ports


def substitute(content: str, variables: Mapping[str, str]) -> str:
    """Replace known ``${VAR}``/``{{VAR}}`` references; unknown ones stay as written."""
    def _replace(match: re.Match) -> str:
        name = (match.group(1) if match.group(1) is not None else match.group(2)).strip()
        return str(variables[name]) if name in variables else match.group(0)

    return VARIABLE_PATTERN.sub(_replace, content)


def is_binary_file(path: Path) -> bool:
    with open(path, "rb") as f:
        chunk = f.read(BINARY_SNIFF_BYTES)
    if b"\0" in chunk:
        return True
    try:
        chunk.decode("utf-8")
    except UnicodeDecodeError as e:
        # A multi-byte character cut at the sniff boundary is still text
        return e.start < len(chunk) - 4
    return False


def substitute_in_directory(directory: Union[str, Path], variables: Optional[Mapping[str, str]]) -> List[Path]:
    """
    Substitute variables in every text file under ``directory``.

    Returns:
        Files whose content changed
    """
    changed: List[Path] = []
    if not variables:
        return changed

    for path in sorted(Path(directory).rglob("*")):
        if not path.is_file() or path.is_symlink():
            continue
        if is_binary_file(path):
            logger.debug(f"Skipping binary file {path}")
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.debug(f"Skipping non UTF-8 file {path}")
            continue
        replaced = substitute(content, variables)
        if replaced != content:
            path.write_text(replaced, encoding="utf-8")
            changed.append(path)

    if changed:
        logger.info(f"Substituted template variables in {len(changed)} file(s) under {directory}")
    return changed

import importlib.util
import inspect
import logging
import sys
from pathlib import Path
from types import ModuleType

logger = logging.getLogger(__name__)


def _load_module(name: str, path: Path) -> ModuleType:
    spec = importlib.util.spec_from_file_location(name, str(path))
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load module from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(spec.name, None)
        raise
    return module


def _tool_classes(module: ModuleType) -> list[type]:
    """Classes defined in ``module`` that expose a callable ``execute``."""
    found = []
    for _, obj in inspect.getmembers(module, inspect.isclass):
        if obj.__module__ != module.__name__:
            continue
        if callable(getattr(obj, "execute", None)):
            found.append(obj)
    return found


def discover_tools(root_path: str | Path) -> dict[str, type]:
    """
    Scans a directory of tool packages and returns a manifest of tool classes.

    Each sub-directory holding an ``__init__.py`` is a tool package. Its
    ``__init__.py`` and any ``*tool.py`` modules are imported and every class
    defined there with a callable ``execute`` is collected. A class is keyed by
    its ``tool_id`` attribute, falling back to the package directory name with
    underscores turned into dashes. Packages that fail to import are logged and
    skipped.

    :param root_path: Directory containing tool packages
    :type root_path: str | Path
    :returns: Mapping of tool id to tool class
    :rtype: dict[str, type]
    """
    root = Path(root_path)
    if not root.is_dir():
        logger.warning("Tool directory does not exist or is not a directory: %s", root)
        return {}

    manifest: dict[str, type] = {}
    packages = sorted(p for p in root.iterdir() if p.is_dir() and (p / "__init__.py").exists())
    logger.info("Scanning %s: %d candidate tool packages", root, len(packages))

    for package in packages:
        package_name = f"stepflow_tools.{package.name}"
        try:
            modules = [_load_module(package_name, package / "__init__.py")]
            for tool_file in sorted(package.glob("*tool.py")):
                modules.append(_load_module(f"{package_name}.{tool_file.stem}", tool_file))
        except Exception:
            logger.exception("Failed to load tool package %s", package)
            continue

        classes = [cls for module in modules for cls in _tool_classes(module)]
        if not classes:
            logger.warning("No tool classes found in %s", package)
            continue
        for cls in classes:
            tool_id = getattr(cls, "tool_id", None) or package.name.replace("_", "-")
            if tool_id in manifest:
                logger.warning("Duplicate tool id %s in %s, keeping %s", tool_id, package, manifest[tool_id].__name__)
                continue
            manifest[tool_id] = cls
            logger.debug("Discovered tool %s (%s)", tool_id, cls.__qualname__)

    return manifest
